"""Text helpers: sanitizing, tokenizing, similarity and lexicon sentiment."""

from __future__ import annotations

import re
from typing import Iterable, Optional

import bleach

STOP_WORDS = frozenset(
    """
    a about above after again against all am an and any are as at be because been before being
    below between both but by can could did do does doing down during each few for from further
    had has have having he her here hers herself him himself his how i if in into is it its itself
    just me more most my myself no nor not now of off on once only or other our ours ourselves out
    over own same she should so some such than that the their theirs them themselves then there
    these they this those through to too under until up very was we were what when where which
    while who whom why will with would you your yours yourself yourselves also get got really
    please would like want wish need make use using used one thing things way still even
    """.split()
)

POSITIVE_WORDS = frozenset(
    """
    love loved loving great awesome amazing excellent fantastic good helpful nice perfect
    easy fast smooth intuitive beautiful happy glad thanks thank wonderful brilliant best
    useful reliable simple clean impressive enjoy enjoyed recommend works solid
    """.split()
)

NEGATIVE_WORDS = frozenset(
    """
    hate hated bad terrible awful horrible broken bug buggy crash crashes crashed slow
    confusing annoying frustrating frustrated useless difficult hard fail fails failed
    failing error errors problem problems issue issues worse worst missing lost
    disappointed disappointing laggy unusable expensive cancel churn stuck ugly
    """.split()
)

NEGATIONS = frozenset({'not', "don't", 'dont', "doesn't", 'doesnt', 'never', 'no', "isn't", 'isnt', "can't", 'cant', "won't", 'wont'})

_WORD_RE = re.compile(r"[a-z0-9']+")


def clean_text(value, max_length: Optional[int] = None) -> str:
    """Strip markup from user supplied text and trim it."""
    cleaned = bleach.clean(str(value or ''), tags=[], strip=True).strip()
    if max_length is not None:
        cleaned = cleaned[:max_length]
    return cleaned


def words(text: str) -> list:
    return _WORD_RE.findall((text or '').lower())


def tokenize(text: str) -> list:
    """Lower-cased content words, stop words and short tokens removed."""
    return [w.strip("'") for w in words(text) if len(w) > 2 and w not in STOP_WORDS and not w.isdigit()]


def jaccard(a: Iterable, b: Iterable) -> float:
    set_a, set_b = set(a), set(b)
    if not set_a or not set_b:
        return 0.0
    return len(set_a & set_b) / len(set_a | set_b)


def text_similarity(text_a: str, text_b: str) -> float:
    return jaccard(tokenize(text_a), tokenize(text_b))


def lexicon_sentiment(text: str) -> float:
    """Score in [-1, 1]; a negation flips the polarity of the next sentiment word."""
    tokens = words(text)
    if not tokens:
        return 0.0

    positive = negative = 0
    negate = False
    for token in tokens:
        if token in NEGATIONS:
            negate = True
            continue
        if token in POSITIVE_WORDS:
            if negate:
                negative += 1
            else:
                positive += 1
        elif token in NEGATIVE_WORDS:
            if negate:
                positive += 1
            else:
                negative += 1
        negate = False

    total = positive + negative
    if total == 0:
        return 0.0
    return round((positive - negative) / total, 2)


def sentiment_label(score: float) -> str:
    if score > 0.2:
        return 'positive'
    if score < -0.2:
        return 'negative'
    return 'neutral'
