"""Multi-factor priority scoring for feedback posts.

Seven factor scores (0-10) come from the LLM; the business rules applied on top
of them (bug minimums, strategy weights, tier multiplier, bug boosts and floors,
level thresholds) are deterministic and live here so they can be tested without
a model. When the LLM is unavailable a simple engagement heuristic is used.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Optional

from flask import current_app

from db import db_connect, to_json, utcnow, utcnow_iso
from services import llm
from services.board import find_similar_posts

logger = logging.getLogger(__name__)

STRATEGIES = ('growth', 'retention', 'enterprise', 'profitability')
TIERS = ('free', 'pro', 'enterprise')
QUARTERS = ('Q1', 'Q2', 'Q3', 'Q4')
SUGGESTED_ACTIONS = ('implement', 'investigate', 'prototype', 'combine', 'defer', 'decline')
FACTORS = (
    'revenue_impact',
    'user_reach',
    'strategic_alignment',
    'implementation_effort',
    'competitive_advantage',
    'risk_mitigation',
    'user_satisfaction',
)

WEIGHT_PROFILES = {
    'growth': {
        'revenue_impact': 0.20, 'user_reach': 0.25, 'strategic_alignment': 0.10,
        'implementation_effort': 0.10, 'competitive_advantage': 0.20,
        'risk_mitigation': 0.05, 'user_satisfaction': 0.10,
    },
    'retention': {
        'revenue_impact': 0.15, 'user_reach': 0.15, 'strategic_alignment': 0.10,
        'implementation_effort': 0.10, 'competitive_advantage': 0.10,
        'risk_mitigation': 0.15, 'user_satisfaction': 0.25,
    },
    'enterprise': {
        'revenue_impact': 0.25, 'user_reach': 0.10, 'strategic_alignment': 0.15,
        'implementation_effort': 0.05, 'competitive_advantage': 0.15,
        'risk_mitigation': 0.20, 'user_satisfaction': 0.10,
    },
    'profitability': {
        'revenue_impact': 0.30, 'user_reach': 0.10, 'strategic_alignment': 0.15,
        'implementation_effort': 0.20, 'competitive_advantage': 0.10,
        'risk_mitigation': 0.10, 'user_satisfaction': 0.05,
    },
}

TIER_MULTIPLIERS = {'enterprise': 1.3, 'pro': 1.1, 'free': 1.0}

BUG_PATTERNS = [re.compile(p, re.IGNORECASE) for p in (
    r'bug',
    r'error',
    r'broken',
    r'not\s+work',
    r"doesn['’]?t\s+work",
    r"doesn['’]?t\s+open",
    r"won['’]?t\s+open",
    r'fail(?:ed|s)?\s+to',
    r'unable\s+to',
    r'cannot',
    r"can't",
    r"won't",
    r'stuck',
    r'block(?:er|ed)?',
    r'crash',
    r'glitch',
    r'freeze',
    r'unresponsive',
    r'partial(?:ly)?\s+open',
    r"modal\s+(?:is\s+)?(?:not|never|won['’]?t|doesn['’]?t)\s+open",
    r'loading\s+forever',
)]

FRUSTRATION_PATTERNS = [re.compile(p, re.IGNORECASE) for p in (
    r'frustrat', r'annoy', r'difficult', r'pain', r'disrupt', r'block', r'urgent',
    r'asap', r'critical', r"can't", r'cannot', r'unable', r'stuck',
)]

SEVERITY_RE = re.compile(
    r"(broken|error|fail|failed|failing|cannot|can't|cant|won't|wont|doesn't|doesnt|stuck|block|"
    r"blocked|blocking|modal|button|open|load|loading|crash|bug|urgent|critical|prevent|unable)"
)


@dataclass
class PriorityContext:
    post_id: int
    title: str
    description: str = ''
    category: Optional[str] = None
    vote_count: int = 0
    comment_count: int = 0
    unique_voters: int = 0
    percentage_of_active_users: float = 0.0
    similar_posts_count: int = 0
    tier: str = 'free'
    strategy: str = 'growth'
    current_quarter: str = 'Q1'


@dataclass
class PriorityResult:
    scores: dict
    weighted_score: float
    priority_level: str
    quarter_recommendation: str
    business_justification: str
    suggested_action: str
    estimated_days: Optional[int] = None
    is_bug: bool = False
    source: str = 'llm'
    dependencies: list = field(default_factory=list)

    def to_dict(self):
        return {
            'scores': self.scores,
            'weighted_score': self.weighted_score,
            'priority_level': self.priority_level,
            'quarter_recommendation': self.quarter_recommendation,
            'business_justification': self.business_justification,
            'suggested_action': self.suggested_action,
            'estimated_days': self.estimated_days,
            'is_bug': self.is_bug,
            'source': self.source,
            'dependencies': self.dependencies,
        }


def current_quarter(now=None):
    now = now or utcnow()
    return QUARTERS[(now.month - 1) // 3]


def detect_bug(title, description, category=None):
    text = f'{title} {description or ""}'
    combined = text.lower()
    if category == 'bug':
        return True
    if any(p.search(title) or p.search(description or '') for p in BUG_PATTERNS):
        return True
    issue_detected = 'issue' in combined or 'problem' in combined
    return issue_detected and bool(SEVERITY_RE.search(combined))


def detect_frustration(title, description):
    return any(p.search(title) or p.search(description or '') for p in FRUSTRATION_PATTERNS)


def priority_level_for(score, risk_score):
    if risk_score >= 9:
        return 'immediate'
    if score >= 8.5:
        return 'immediate'
    if score >= 7.0:
        return 'current-quarter'
    if score >= 5.0:
        return 'next-quarter'
    if score >= 3.0:
        return 'backlog'
    return 'declined'


def quarter_recommendation_for(level, quarter):
    index = QUARTERS.index(quarter) if quarter in QUARTERS else 0
    if level == 'immediate':
        return 'This Sprint'
    if level == 'current-quarter':
        return QUARTERS[index]
    if level == 'next-quarter':
        return QUARTERS[(index + 1) % 4]
    if level == 'backlog':
        return 'Future'
    return 'Not Planned'


def _clamp_score(value):
    try:
        return max(0.0, min(10.0, float(value)))
    except (TypeError, ValueError):
        return 5.0


def bug_boost(ctx, risk_score, frustration):
    boost = {'enterprise': 0.9, 'pro': 0.65}.get(ctx.tier, 0.4)
    if ctx.vote_count >= 10:
        boost += 0.5
    elif ctx.vote_count >= 3:
        boost += 0.3
    elif ctx.vote_count > 0:
        boost += 0.15
    if ctx.comment_count >= 3:
        boost += 0.25
    elif ctx.comment_count >= 1:
        boost += 0.1
    if ctx.percentage_of_active_users >= 25:
        boost += 0.5
    elif ctx.percentage_of_active_users >= 10:
        boost += 0.3
    elif ctx.percentage_of_active_users >= 5:
        boost += 0.2
    if ctx.similar_posts_count >= 3:
        boost += 0.2
    elif ctx.similar_posts_count >= 1:
        boost += 0.1
    if frustration:
        boost += 0.35
    if risk_score >= 8:
        boost += 0.2
    return boost


def apply_business_rules(ctx: PriorityContext, ai_response: dict) -> PriorityResult:
    """Turn raw factor scores into a weighted score, level and quarter."""
    raw_scores = ai_response.get('scores') or {}
    scores = {factor: _clamp_score(raw_scores.get(factor, 5)) for factor in FACTORS}
    is_bug = detect_bug(ctx.title, ctx.description, ctx.category)
    frustration = detect_frustration(ctx.title, ctx.description)
    paid = ctx.tier in ('pro', 'enterprise')

    if is_bug:
        scores['revenue_impact'] = max(scores['revenue_impact'], 8 if paid else 7)
        scores['risk_mitigation'] = max(scores['risk_mitigation'], 7)
        scores['user_satisfaction'] = max(scores['user_satisfaction'], 7)

    weights = WEIGHT_PROFILES.get(ctx.strategy, WEIGHT_PROFILES['growth'])
    weighted = sum(scores[factor] * weights[factor] for factor in FACTORS)
    weighted = min(10.0, weighted * TIER_MULTIPLIERS.get(ctx.tier, 1.0))

    high_impact_bug = False
    if is_bug:
        weighted = min(10.0, weighted + bug_boost(ctx, scores['risk_mitigation'], frustration))
        high_impact_bug = (
            paid
            or ctx.percentage_of_active_users >= 5
            or ctx.vote_count >= 3
            or ctx.comment_count >= 2
            or frustration
            or scores['risk_mitigation'] >= 8
        )
        if high_impact_bug:
            floor = {'enterprise': 9.0, 'pro': 8.6}.get(ctx.tier, 7.5)
        else:
            floor = {'enterprise': 8.4, 'pro': 7.8}.get(ctx.tier, 7.0)
        weighted = max(weighted, floor)

    level = priority_level_for(weighted, scores['risk_mitigation'])
    if is_bug:
        if high_impact_bug:
            level = 'immediate'
        elif level == 'next-quarter':
            level = 'current-quarter'

    action = ai_response.get('suggested_action') or ai_response.get('suggestedAction')
    if action not in SUGGESTED_ACTIONS:
        action = 'implement' if weighted >= 7 else 'investigate'

    estimated_days = ai_response.get('estimated_days', ai_response.get('estimatedDays'))
    try:
        estimated_days = int(estimated_days) if estimated_days is not None else None
    except (TypeError, ValueError):
        estimated_days = None

    return PriorityResult(
        scores=scores,
        weighted_score=round(weighted, 1),
        priority_level=level,
        quarter_recommendation=quarter_recommendation_for(level, ctx.current_quarter),
        business_justification=str(
            ai_response.get('business_justification') or ai_response.get('businessJustification') or ''
        )[:1000],
        suggested_action=action,
        estimated_days=estimated_days,
        is_bug=is_bug,
        dependencies=[str(d) for d in ai_response.get('dependencies') or []][:10],
    )


def fallback_score(ctx: PriorityContext) -> PriorityResult:
    """Engagement and tier heuristic used when no model is available."""
    vote_score = min(10.0, ctx.vote_count / 10)
    user_score = {'enterprise': 8, 'pro': 5}.get(ctx.tier, 3)
    engagement_score = min(10.0, ctx.comment_count / 5)
    average = (vote_score + user_score + engagement_score) / 3

    if average >= 7:
        level = 'current-quarter'
    elif average >= 4:
        level = 'next-quarter'
    else:
        level = 'backlog'

    return PriorityResult(
        scores={
            'revenue_impact': user_score,
            'user_reach': vote_score,
            'strategic_alignment': 5,
            'implementation_effort': 5,
            'competitive_advantage': 5,
            'risk_mitigation': 3,
            'user_satisfaction': engagement_score,
        },
        weighted_score=round(average, 1),
        priority_level=level,
        quarter_recommendation='Q2',
        business_justification='Prioritized based on user engagement and tier',
        suggested_action='implement' if average >= 7 else 'investigate',
        is_bug=detect_bug(ctx.title, ctx.description, ctx.category),
        source='heuristic',
    )


SYSTEM_PROMPT = """You are a senior product strategist with expertise in SaaS prioritization.
Company strategy: {strategy}. Current quarter: {quarter}.
Score the feedback on seven factors from 0 to 10:
revenue_impact, user_reach, strategic_alignment, implementation_effort (inverted: 10 = 1-2 days, 0 = 3+ months),
competitive_advantage, risk_mitigation, user_satisfaction.
Bugs that block workflow score 8-10 on revenue_impact; security or data-loss bugs score 9-10 on risk_mitigation.
Reply with JSON only: {{"scores": {{...}}, "estimated_days": <int|null>, "dependencies": [],
"business_justification": "<1-2 sentences>", "suggested_action": "implement|investigate|prototype|combine|defer|decline"}}"""


def _user_prompt(ctx, is_bug, frustration):
    lines = [
        f'Title: "{ctx.title}"',
        f'Description: "{ctx.description}"',
        f"Category: {ctx.category or 'uncategorized'}{' (detected as bug report)' if is_bug and not ctx.category else ''}",
        f'User tier: {ctx.tier}',
        f'{ctx.vote_count} votes from {ctx.unique_voters} unique users, {ctx.comment_count} comments',
        f'Affects {ctx.percentage_of_active_users:.1f}% of active users; {ctx.similar_posts_count} similar posts',
    ]
    if is_bug:
        minimum = 8 if ctx.tier in ('pro', 'enterprise') else 7
        lines.append(
            f'This is a bug report: revenue_impact >= {minimum}, risk_mitigation >= 7, user_satisfaction >= 7.'
        )
    if frustration:
        lines.append('User frustration detected: user_satisfaction should be 8-10.')
    return '\n'.join(lines)


def calculate_priority_score(ctx: PriorityContext) -> PriorityResult:
    if not llm.is_enabled():
        return fallback_score(ctx)

    is_bug = detect_bug(ctx.title, ctx.description, ctx.category)
    frustration = detect_frustration(ctx.title, ctx.description)
    try:
        ai_response = llm.complete_json(
            SYSTEM_PROMPT.format(strategy=ctx.strategy, quarter=ctx.current_quarter),
            _user_prompt(ctx, is_bug, frustration),
            model=current_app.config.get('PRIORITY_MODEL'),
            temperature=0.3,
        )
    except llm.LLMError as exc:
        logger.warning('Priority scoring fell back to heuristic for post %s: %s', ctx.post_id, exc)
        return fallback_score(ctx)

    result = apply_business_rules(ctx, ai_response)
    logger.info(
        'Priority score post=%s level=%s score=%s bug=%s',
        ctx.post_id, result.priority_level, result.weighted_score, result.is_bug,
    )
    return result


def build_context(post, tier='free', strategy='growth', quarter=None):
    """Gather engagement metrics for a post row."""
    conn = db_connect()
    c = conn.cursor()
    c.execute('SELECT COUNT(DISTINCT voter_key) FROM votes WHERE post_id = ?', (post['id'],))
    unique_voters = c.fetchone()[0]
    c.execute(
        '''
        SELECT COUNT(DISTINCT v.voter_key)
        FROM votes v JOIN posts p ON p.id = v.post_id
        WHERE p.project_id = ?
        ''',
        (post['project_id'],),
    )
    active_users = c.fetchone()[0]
    conn.close()

    similar = find_similar_posts(
        post['project_id'], f"{post['title']} {post['description']}", exclude_id=post['id']
    )
    return PriorityContext(
        post_id=post['id'],
        title=post['title'],
        description=post['description'] or '',
        category=post['category'],
        vote_count=post['vote_count'],
        comment_count=post['comment_count'],
        unique_voters=unique_voters,
        percentage_of_active_users=(unique_voters / active_users * 100) if active_users else 0.0,
        similar_posts_count=len(similar),
        tier=tier if tier in TIERS else 'free',
        strategy=strategy if strategy in STRATEGIES else 'growth',
        current_quarter=quarter if quarter in QUARTERS else current_quarter(),
    )


def save_priority_score(post_id, strategy, result: PriorityResult):
    conn = db_connect()
    c = conn.cursor()
    c.execute(
        '''
        INSERT INTO post_priority_scores (
            post_id, strategy, scores, weighted_score, priority_level, quarter_recommendation,
            business_justification, suggested_action, estimated_days, is_bug, scored_at
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(post_id) DO UPDATE SET
            strategy = excluded.strategy,
            scores = excluded.scores,
            weighted_score = excluded.weighted_score,
            priority_level = excluded.priority_level,
            quarter_recommendation = excluded.quarter_recommendation,
            business_justification = excluded.business_justification,
            suggested_action = excluded.suggested_action,
            estimated_days = excluded.estimated_days,
            is_bug = excluded.is_bug,
            scored_at = excluded.scored_at
        ''',
        (
            post_id,
            strategy,
            to_json(result.scores),
            result.weighted_score,
            result.priority_level,
            result.quarter_recommendation,
            result.business_justification,
            result.suggested_action,
            result.estimated_days,
            int(result.is_bug),
            utcnow_iso(),
        ),
    )
    conn.commit()
    conn.close()


def batch_score_open_posts(project_id, tier='free', strategy='growth', quarter=None, limit=50):
    conn = db_connect()
    c = conn.cursor()
    c.execute(
        '''
        SELECT * FROM posts
        WHERE project_id = ? AND status = 'open' AND duplicate_of IS NULL
        ORDER BY vote_count DESC, created_at DESC
        LIMIT ?
        ''',
        (project_id, limit),
    )
    posts = [dict(row) for row in c.fetchall()]
    conn.close()

    results = {}
    for post in posts:
        result = calculate_priority_score(build_context(post, tier, strategy, quarter))
        save_priority_score(post['id'], strategy, result)
        results[post['id']] = result.to_dict()
    return results
