"""Roadmap prioritization: score every theme and store ranked suggestions."""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from typing import Optional

from db import db_connect, from_json, parse_ts, rows_to_dicts, utcnow, utcnow_iso
from services.text import tokenize, words

logger = logging.getLogger(__name__)

WEIGHTS = {
    'frequency': 0.30,
    'sentiment': 0.25,
    'business_impact': 0.25,
    'effort': 0.10,
    'competitive': 0.10,
}

HIGH_VALUE_KEYWORDS = frozenset({
    'churn', 'cancel', 'leave', 'quit', 'unsubscribe',
    'enterprise', 'deal', 'contract', 'revenue', 'money',
    'competitor', 'switch', 'alternative', 'blocker', 'urgent',
})

EFFORT_SCORES = {'low': 0.9, 'medium': 0.5, 'high': 0.3, 'very_high': 0.1}

EFFORT_KEYWORDS = {
    'very_high': ('redesign', 'rewrite', 'architecture', 'migration', 'offline', 'sso', 'multi', 'self-hosted', 'platform'),
    'high': ('integration', 'mobile', 'android', 'ios', 'api', 'sync', 'import', 'analytics', 'permissions', 'ai', 'automation'),
    'low': ('typo', 'color', 'colour', 'label', 'tooltip', 'copy', 'text', 'link', 'icon', 'button', 'font', 'sort'),
}

DEFAULT_TOTAL_COMPETITORS = 5


@dataclass
class ThemeSignals:
    theme_id: int
    theme_name: str
    mention_count: int
    avg_sentiment: float
    first_detected_at: Optional[str]
    business_impact_keywords: list = field(default_factory=list)
    urgency_scores: list = field(default_factory=list)
    competitor_count: int = 0
    estimated_effort: str = 'medium'


def normalize_frequency(mention_count, max_mentions):
    if max_mentions == 0:
        return 0.0
    return math.log10(mention_count + 1) / math.log10(max_mentions + 1)


def normalize_sentiment(avg_sentiment):
    """Pain points rank higher: -1 maps to 1.0, neutral to 0.5, +1 to 0."""
    if avg_sentiment < 0:
        return 0.5 + abs(avg_sentiment) * 0.5
    return max(0.0, 0.5 - avg_sentiment * 0.5)


def business_impact(signals: ThemeSignals, now=None):
    score = 0.0
    if any(kw.lower() in HIGH_VALUE_KEYWORDS for kw in signals.business_impact_keywords):
        score += 0.4

    if signals.urgency_scores:
        avg_urgency = sum(signals.urgency_scores) / len(signals.urgency_scores)
        score += (avg_urgency / 5) * 0.3

    first_seen = parse_ts(signals.first_detected_at)
    if first_seen:
        days_old = ((now or utcnow()) - first_seen).total_seconds() / 86400
        if days_old < 7 and signals.mention_count > 20:
            score += 0.3
        elif days_old < 30 and signals.mention_count > 10:
            score += 0.15

    return min(1.0, score)


def effort_score(estimated_effort):
    return EFFORT_SCORES.get(estimated_effort, 0.5)


def competitive_score(competitor_count, total_competitors=DEFAULT_TOTAL_COMPETITORS):
    if total_competitors == 0:
        return 0.5
    return min(1.0, competitor_count / total_competitors)


def urgency_from_engagement(vote_count, comment_count):
    engagement = (vote_count or 0) + (comment_count or 0) * 2
    if engagement >= 50:
        return 5
    if engagement >= 20:
        return 4
    if engagement >= 10:
        return 3
    if engagement >= 5:
        return 2
    return 1


def estimate_effort(theme_name, description=''):
    text = f'{theme_name} {description or ""}'.lower()
    tokens = set(words(text))
    for level in ('very_high', 'high', 'low'):
        if any((keyword in text) if '-' in keyword else (keyword in tokens)
               for keyword in EFFORT_KEYWORDS[level]):
            return level
    return 'medium'


def priority_level(score):
    if score >= 75:
        return 'critical'
    if score >= 60:
        return 'high'
    if score >= 40:
        return 'medium'
    return 'low'


def calculate_priority(signals: ThemeSignals, max_mentions, total_competitors=DEFAULT_TOTAL_COMPETITORS, now=None):
    """Return (total_score_0_100, breakdown)."""
    breakdown = {
        'frequency': normalize_frequency(signals.mention_count, max_mentions),
        'sentiment': normalize_sentiment(signals.avg_sentiment),
        'business_impact': business_impact(signals, now),
        'effort': effort_score(signals.estimated_effort),
        'competitive': competitive_score(signals.competitor_count, total_competitors),
    }
    total = sum(breakdown[factor] * weight for factor, weight in WEIGHTS.items()) * 100
    return round(total, 2), breakdown


def _theme_signals(c, project_id, theme, gap_competitors):
    c.execute(
        '''
        SELECT p.title, p.description, p.category, p.vote_count, p.comment_count, p.sentiment_score
        FROM feedback_themes ft JOIN posts p ON p.id = ft.post_id
        WHERE ft.theme_id = ?
        ''',
        (theme['id'],),
    )
    posts = rows_to_dicts(c.fetchall())

    keywords = [post['category'] for post in posts if post['category']]
    for post in posts:
        keywords.extend(tokenize(f"{post['title']} {post['description']}"))
    keywords.extend(tokenize(theme['theme_name']))

    sentiments = [post['sentiment_score'] for post in posts if post['sentiment_score'] is not None]
    avg_sentiment = sum(sentiments) / len(sentiments) if sentiments else float(theme['avg_sentiment'] or 0)

    competitor_count = 0
    theme_tokens = set(tokenize(theme['theme_name']))
    for feature_name, competitors in gap_competitors.items():
        if theme_tokens & set(tokenize(feature_name)):
            competitor_count = max(competitor_count, len(competitors))

    return ThemeSignals(
        theme_id=theme['id'],
        theme_name=theme['theme_name'],
        mention_count=theme['frequency'] or 0,
        avg_sentiment=avg_sentiment,
        first_detected_at=theme['first_seen'],
        business_impact_keywords=keywords,
        urgency_scores=[urgency_from_engagement(p['vote_count'], p['comment_count']) for p in posts],
        competitor_count=competitor_count,
        estimated_effort=estimate_effort(theme['theme_name'], theme['description']),
    )


def generate_roadmap_suggestions(project_id):
    """Score every theme, upsert suggestions and log the run (also on failure)."""
    started = time.perf_counter()
    conn = db_connect()
    c = conn.cursor()
    themes_analyzed = 0
    try:
        c.execute('SELECT * FROM themes WHERE project_id = ? ORDER BY frequency DESC', (project_id,))
        themes = rows_to_dicts(c.fetchall())
        themes_analyzed = len(themes)

        c.execute(
            "SELECT feature_name, competitors FROM feature_gaps WHERE project_id = ? AND status != 'dismissed'",
            (project_id,),
        )
        gap_competitors = {row['feature_name']: from_json(row['competitors'], []) for row in c.fetchall()}
        c.execute(
            "SELECT COUNT(*) FROM competitors WHERE project_id = ? AND status != 'dismissed'",
            (project_id,),
        )
        total_competitors = c.fetchone()[0] or DEFAULT_TOTAL_COMPETITORS

        max_mentions = max([t['frequency'] or 0 for t in themes] + [1])
        generated_at = utcnow_iso()
        suggestions = []
        for theme in themes:
            signals = _theme_signals(c, project_id, theme, gap_competitors)
            total, breakdown = calculate_priority(signals, max_mentions, total_competitors)
            suggestion = {
                'theme_id': theme['id'],
                'theme_name': theme['theme_name'],
                'priority_score': total,
                'priority_level': priority_level(total),
                'frequency_score': round(breakdown['frequency'], 4),
                'sentiment_score': round(breakdown['sentiment'], 4),
                'business_impact_score': round(breakdown['business_impact'], 4),
                'effort_score': round(breakdown['effort'], 4),
                'competitive_score': round(breakdown['competitive'], 4),
                'estimated_effort': signals.estimated_effort,
                'generated_at': generated_at,
            }
            c.execute(
                '''
                INSERT INTO roadmap_suggestions (
                    project_id, theme_id, priority_score, priority_level, frequency_score,
                    sentiment_score, business_impact_score, effort_score, competitive_score,
                    estimated_effort, generated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(project_id, theme_id) DO UPDATE SET
                    priority_score = excluded.priority_score,
                    priority_level = excluded.priority_level,
                    frequency_score = excluded.frequency_score,
                    sentiment_score = excluded.sentiment_score,
                    business_impact_score = excluded.business_impact_score,
                    effort_score = excluded.effort_score,
                    competitive_score = excluded.competitive_score,
                    estimated_effort = excluded.estimated_effort,
                    generated_at = excluded.generated_at
                ''',
                (
                    project_id, theme['id'], total, suggestion['priority_level'],
                    suggestion['frequency_score'], suggestion['sentiment_score'],
                    suggestion['business_impact_score'], suggestion['effort_score'],
                    suggestion['competitive_score'], signals.estimated_effort, generated_at,
                ),
            )
            suggestions.append(suggestion)

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        c.execute(
            '''
            INSERT INTO roadmap_generation_logs (
                project_id, themes_analyzed, suggestions_generated, generation_time_ms, success, created_at
            )
            VALUES (?, ?, ?, ?, 1, ?)
            ''',
            (project_id, themes_analyzed, len(suggestions), elapsed_ms, utcnow_iso()),
        )
        conn.commit()
    except Exception as exc:
        conn.rollback()
        c.execute(
            '''
            INSERT INTO roadmap_generation_logs (
                project_id, themes_analyzed, suggestions_generated, generation_time_ms,
                success, error_message, created_at
            )
            VALUES (?, 0, 0, ?, 0, ?, ?)
            ''',
            (project_id, int((time.perf_counter() - started) * 1000), str(exc)[:500], utcnow_iso()),
        )
        conn.commit()
        logger.exception('Roadmap generation failed for project %s', project_id)
        raise
    finally:
        conn.close()

    suggestions.sort(key=lambda s: -s['priority_score'])
    logger.info('Generated %s roadmap suggestions for project %s in %sms', len(suggestions), project_id, elapsed_ms)
    return suggestions


def list_suggestions(project_id, level=None):
    conn = db_connect()
    c = conn.cursor()
    params = [project_id]
    level_clause = ''
    if level:
        level_clause = 'AND rs.priority_level = ?'
        params.append(level)
    c.execute(
        f'''
        SELECT rs.*, t.theme_name, t.description AS theme_description, t.frequency,
               t.avg_sentiment, t.is_emerging
        FROM roadmap_suggestions rs
        JOIN themes t ON t.id = rs.theme_id
        WHERE rs.project_id = ? {level_clause}
        ORDER BY rs.priority_score DESC
        ''',
        params,
    )
    suggestions = rows_to_dicts(c.fetchall())
    conn.close()
    return suggestions
