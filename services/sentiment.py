"""Sentiment scoring for feedback text."""

import logging

from services import llm
from services.text import lexicon_sentiment, sentiment_label

logger = logging.getLogger(__name__)

SENTIMENT_PROMPT = (
    'You score customer feedback sentiment. Reply with JSON '
    '{"score": <float between -1 and 1>, "label": "positive"|"neutral"|"negative"}.'
)


def analyze_sentiment(text, use_llm=True):
    """Return {'score', 'label', 'source'} for a piece of feedback."""
    if use_llm and llm.is_enabled() and text:
        try:
            data = llm.complete_json(SENTIMENT_PROMPT, text[:4000], max_tokens=60)
            score = max(-1.0, min(1.0, float(data.get('score', 0))))
            return {'score': round(score, 2), 'label': sentiment_label(score), 'source': 'llm'}
        except (llm.LLMError, TypeError, ValueError) as exc:
            logger.warning('LLM sentiment failed, using lexicon: %s', exc)

    score = lexicon_sentiment(text)
    return {'score': score, 'label': sentiment_label(score), 'source': 'lexicon'}
