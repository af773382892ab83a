"""Mission control dashboard: weekly metrics, the cached daily briefing and project analytics."""

import logging
from datetime import timedelta

from db import db_connect, from_json, to_json, utcnow, utcnow_iso
from services import llm

logger = logging.getLogger(__name__)

TREND_THRESHOLD = 0.05
HIGH_VOTE_THRESHOLD = 3
NEGATIVE_SENTIMENT = -0.2
MAX_OPPORTUNITIES = 5
MAX_THREATS = 5
ANALYTICS_DAYS = 30

BRIEFING_PROMPT = (
    'You are a product analyst writing a short morning briefing for a product manager. '
    'Use only the data provided. Reply with JSON {"briefing_text": <2-4 sentences>}.'
)


def sentiment_to_score(avg_sentiment):
    """Map an average -1..1 sentiment onto 0..100."""
    return int(round((max(-1.0, min(1.0, avg_sentiment)) + 1) * 50))


def trend_for(current, previous, threshold=TREND_THRESHOLD):
    if current - previous > threshold:
        return 'up'
    if previous - current > threshold:
        return 'down'
    return 'stable'


def _window_sentiment(c, project_id, start, end):
    c.execute(
        '''
        SELECT sentiment_score FROM posts
        WHERE project_id = ? AND created_at >= ? AND created_at < ? AND sentiment_score IS NOT NULL
        UNION ALL
        SELECT sentiment_score FROM discovered_feedback
        WHERE project_id = ? AND discovered_at >= ? AND discovered_at < ? AND sentiment_score IS NOT NULL
        ''',
        (project_id, start, end, project_id, start, end),
    )
    scores = [row[0] for row in c.fetchall()]
    return (sum(scores) / len(scores) if scores else 0.0), len(scores)


def collect_metrics(project_id, now=None):
    now = now or utcnow()
    week_ago = (now - timedelta(days=7)).isoformat()
    two_weeks_ago = (now - timedelta(days=14)).isoformat()
    now_iso = now.isoformat()

    conn = db_connect()
    c = conn.cursor()
    current_avg, current_count = _window_sentiment(c, project_id, week_ago, now_iso)
    previous_avg, previous_count = _window_sentiment(c, project_id, two_weeks_ago, week_ago)

    c.execute(
        "SELECT status, COUNT(*) AS total FROM posts WHERE project_id = ? AND status IN ('planned', 'in_progress') GROUP BY status",
        (project_id,),
    )
    roadmap = {row['status']: row['total'] for row in c.fetchall()}
    c.execute(
        "SELECT COUNT(*) FROM posts WHERE project_id = ? AND status = 'done' AND updated_at >= ?",
        (project_id, week_ago),
    )
    completed_this_week = c.fetchone()[0]

    c.execute('SELECT COUNT(*) FROM competitor_mentions WHERE project_id = ? AND created_at >= ?', (project_id, week_ago))
    new_insights = c.fetchone()[0]
    c.execute(
        "SELECT COUNT(*) FROM feature_gaps WHERE project_id = ? AND priority IN ('critical', 'high') AND status = 'identified'",
        (project_id,),
    )
    high_priority_gaps = c.fetchone()[0]
    c.execute("SELECT COUNT(*) FROM experiments WHERE project_id = ? AND status = 'running'", (project_id,))
    running_experiments = c.fetchone()[0]
    conn.close()

    return {
        'sentiment': {
            'score': sentiment_to_score(current_avg),
            'previous_score': sentiment_to_score(previous_avg),
            'trend': trend_for(current_avg, previous_avg),
            'samples': current_count,
        },
        'feedback': {
            'this_week': current_count,
            'last_week': previous_count,
            'trend': 'up' if current_count > previous_count else 'down' if current_count < previous_count else 'stable',
        },
        'roadmap': {
            'planned': roadmap.get('planned', 0),
            'in_progress': roadmap.get('in_progress', 0),
            'completed_this_week': completed_this_week,
        },
        'competitors': {
            'new_insights_count': new_insights,
            'high_priority_count': high_priority_gaps,
        },
        'experiments': {'running': running_experiments},
    }


def _impact(votes):
    if votes >= 10:
        return 'high'
    if votes >= HIGH_VOTE_THRESHOLD:
        return 'medium'
    return 'low'


def find_opportunities(c, project_id):
    c.execute(
        '''
        SELECT id, title, vote_count FROM posts
        WHERE project_id = ? AND status = 'open' AND duplicate_of IS NULL
        ORDER BY vote_count DESC, created_at DESC LIMIT ?
        ''',
        (project_id, MAX_OPPORTUNITIES),
    )
    return [
        {'id': row['id'], 'title': row['title'], 'votes': row['vote_count'], 'impact': _impact(row['vote_count'])}
        for row in c.fetchall()
    ]


def find_threats(c, project_id, since):
    c.execute(
        '''
        SELECT id, title, vote_count, sentiment_score FROM posts
        WHERE project_id = ? AND status NOT IN ('done', 'declined')
          AND sentiment_score < ? AND vote_count >= ?
        ORDER BY vote_count DESC LIMIT ?
        ''',
        (project_id, NEGATIVE_SENTIMENT, HIGH_VOTE_THRESHOLD, MAX_THREATS),
    )
    threats = [
        {
            'type': 'negative_feedback',
            'id': row['id'],
            'title': row['title'],
            'severity': 'high' if row['vote_count'] >= 10 else 'medium',
        }
        for row in c.fetchall()
    ]
    c.execute(
        '''
        SELECT m.id, m.context, co.name FROM competitor_mentions m
        JOIN competitors co ON co.id = m.competitor_id
        WHERE m.project_id = ? AND m.mention_type = 'switch_to' AND m.created_at >= ? AND co.status != 'dismissed'
        ORDER BY m.created_at DESC LIMIT ?
        ''',
        (project_id, since, MAX_THREATS),
    )
    threats.extend(
        {
            'type': 'competitor_switch',
            'id': row['id'],
            'title': f"User moving to {row['name']}",
            'context': row['context'],
            'severity': 'high',
        }
        for row in c.fetchall()
    )
    return threats


def build_briefing_items(c, project_id, metrics, threats, since):
    items = {'critical': [], 'warning': [], 'info': [], 'success': []}

    c.execute(
        "SELECT COUNT(*) FROM discovered_feedback WHERE project_id = ? AND classification = 'churn_risk' AND discovered_at >= ?",
        (project_id, since),
    )
    churn = c.fetchone()[0]
    if churn:
        items['critical'].append({
            'title': f'{churn} churn signal{"s" if churn != 1 else ""} this week',
            'description': 'Users talked about cancelling or leaving. Review them in the hunter feed.',
            'action': 'review_feedback',
        })
    switches = [t for t in threats if t['type'] == 'competitor_switch']
    if switches:
        items['critical'].append({
            'title': f'{len(switches)} user{"s" if len(switches) != 1 else ""} moving to competitors',
            'description': switches[0]['context'],
            'action': 'view_competitor',
        })

    if metrics['sentiment']['trend'] == 'down':
        items['warning'].append({
            'title': 'Sentiment is trending down',
            'description': f"Score dropped from {metrics['sentiment']['previous_score']} to {metrics['sentiment']['score']}.",
            'action': 'review_feedback',
        })
    if metrics['competitors']['high_priority_count']:
        items['warning'].append({
            'title': f"{metrics['competitors']['high_priority_count']} high priority feature gaps",
            'description': 'Competitors offer features your users keep asking for.',
            'action': 'update_roadmap',
        })
    for threat in (t for t in threats if t['type'] == 'negative_feedback'):
        items['warning'].append({
            'title': threat['title'],
            'description': 'Highly voted feedback with negative sentiment.',
            'action': 'review_feedback',
            'post_id': threat['id'],
        })

    c.execute('SELECT theme_name FROM themes WHERE project_id = ? AND is_emerging = 1 ORDER BY frequency DESC LIMIT 3', (project_id,))
    emerging = [row['theme_name'] for row in c.fetchall()]
    if emerging:
        items['info'].append({
            'title': 'Emerging themes',
            'description': ', '.join(emerging),
            'action': 'review_feedback',
        })
    items['info'].append({
        'title': 'Feedback volume',
        'description': f"{metrics['feedback']['this_week']} new items this week, {metrics['feedback']['last_week']} last week.",
    })
    if metrics['experiments']['running']:
        items['info'].append({
            'title': f"{metrics['experiments']['running']} experiments running",
            'description': 'Check results once they reach significance.',
        })

    if metrics['roadmap']['completed_this_week']:
        items['success'].append({
            'title': f"Shipped {metrics['roadmap']['completed_this_week']} roadmap items this week",
            'description': 'Let your voters know.',
        })
    if metrics['sentiment']['trend'] == 'up':
        items['success'].append({
            'title': 'Sentiment is improving',
            'description': f"Score rose from {metrics['sentiment']['previous_score']} to {metrics['sentiment']['score']}.",
        })
    c.execute(
        "SELECT COUNT(*) FROM competitor_mentions WHERE project_id = ? AND mention_type = 'switch_from' AND created_at >= ?",
        (project_id, since),
    )
    won = c.fetchone()[0]
    if won:
        items['success'].append({
            'title': f'{won} user{"s" if won != 1 else ""} switched to you from a competitor',
            'description': 'Find out what convinced them.',
        })
    return items


def compose_briefing_text(metrics, items):
    parts = [
        f"Sentiment is {metrics['sentiment']['score']}/100 and {metrics['sentiment']['trend']}.",
        f"{metrics['feedback']['this_week']} new feedback items arrived this week ({metrics['feedback']['last_week']} last week).",
    ]
    if items['critical']:
        parts.append(f"Needs attention: {items['critical'][0]['title'].lower()}.")
    elif items['warning']:
        parts.append(f"Keep an eye on: {items['warning'][0]['title'].lower()}.")
    if items['success']:
        parts.append(f"Good news: {items['success'][0]['title'].lower()}.")
    return ' '.join(parts)


def briefing_text(metrics, items, opportunities, threats):
    if llm.is_enabled():
        prompt = to_json({
            'metrics': metrics,
            'critical': [i['title'] for i in items['critical']],
            'warning': [i['title'] for i in items['warning']],
            'success': [i['title'] for i in items['success']],
            'opportunities': [o['title'] for o in opportunities],
            'threats': [t['title'] for t in threats],
        })
        try:
            text = str(llm.complete_json(BRIEFING_PROMPT, prompt, max_tokens=300).get('briefing_text') or '').strip()
            if text:
                return text, 'llm'
        except llm.LLMError as exc:
            logger.warning('LLM briefing failed, composing from items: %s', exc)
    return compose_briefing_text(metrics, items), 'rules'


def generate_briefing(project_id, now=None):
    now = now or utcnow()
    metrics = collect_metrics(project_id, now)
    since = (now - timedelta(days=7)).isoformat()

    conn = db_connect()
    c = conn.cursor()
    opportunities = find_opportunities(c, project_id)
    threats = find_threats(c, project_id, (now - timedelta(days=30)).isoformat())
    items = build_briefing_items(c, project_id, metrics, threats, since)
    conn.close()

    text, source = briefing_text(metrics, items, opportunities, threats)
    return {
        'sentiment_score': metrics['sentiment']['score'],
        'sentiment_trend': metrics['sentiment']['trend'],
        'critical_items': items['critical'],
        'warning_items': items['warning'],
        'info_items': items['info'],
        'success_items': items['success'],
        'opportunities': opportunities,
        'threats': threats,
        'briefing_text': text,
        'briefing_source': source,
    }


def get_daily_briefing(project_id, refresh=False, now=None):
    """Return today's briefing, generating and caching it when missing or refresh is set."""
    now = now or utcnow()
    today = now.date().isoformat()

    conn = db_connect()
    c = conn.cursor()
    c.execute(
        'SELECT content, created_at FROM daily_briefings WHERE project_id = ? AND briefing_date = ?',
        (project_id, today),
    )
    row = c.fetchone()
    conn.close()
    if row and not refresh:
        return from_json(row['content'], {}), row['created_at'], True

    content = generate_briefing(project_id, now)
    created_at = utcnow_iso()
    conn = db_connect()
    c = conn.cursor()
    c.execute(
        '''
        INSERT INTO daily_briefings (project_id, briefing_date, content, created_at)
        VALUES (?, ?, ?, ?)
        ON CONFLICT (project_id, briefing_date) DO UPDATE SET
            content = excluded.content,
            created_at = excluded.created_at
        ''',
        (project_id, today, to_json(content), created_at),
    )
    conn.commit()
    conn.close()
    logger.info('Daily briefing generated for project %s (%s)', project_id, content['briefing_source'])
    return content, created_at, False


# ===== ANALYTICS =====

def project_analytics(project_id, days=ANALYTICS_DAYS, now=None):
    now = now or utcnow()
    start_date = (now - timedelta(days=days - 1)).date()
    start = start_date.isoformat()

    conn = db_connect()
    c = conn.cursor()
    c.execute(
        '''
        SELECT
            (SELECT COUNT(*) FROM posts WHERE project_id = ?) AS posts,
            (SELECT COUNT(*) FROM votes v JOIN posts p ON p.id = v.post_id WHERE p.project_id = ?) AS votes,
            (SELECT COUNT(*) FROM comments cm JOIN posts p ON p.id = cm.post_id WHERE p.project_id = ?) AS comments,
            (SELECT COUNT(*) FROM discovered_feedback WHERE project_id = ?) AS discovered_feedback
        ''',
        (project_id, project_id, project_id, project_id),
    )
    totals = dict(c.fetchone())

    c.execute('SELECT status, COUNT(*) AS total FROM posts WHERE project_id = ? GROUP BY status', (project_id,))
    by_status = {row['status']: row['total'] for row in c.fetchall()}
    c.execute(
        "SELECT COALESCE(category, 'uncategorized') AS category, COUNT(*) AS total FROM posts WHERE project_id = ? GROUP BY 1",
        (project_id,),
    )
    by_category = {row['category']: row['total'] for row in c.fetchall()}

    c.execute(
        'SELECT substr(created_at, 1, 10) AS day, COUNT(*) AS total FROM posts WHERE project_id = ? AND created_at >= ? GROUP BY day',
        (project_id, start),
    )
    posts_per_day = {row['day']: row['total'] for row in c.fetchall()}
    c.execute(
        '''
        SELECT substr(v.created_at, 1, 10) AS day, COUNT(*) AS total
        FROM votes v JOIN posts p ON p.id = v.post_id
        WHERE p.project_id = ? AND v.created_at >= ?
        GROUP BY day
        ''',
        (project_id, start),
    )
    votes_per_day = {row['day']: row['total'] for row in c.fetchall()}

    c.execute(
        '''
        SELECT id, title, status, vote_count, comment_count FROM posts
        WHERE project_id = ? ORDER BY vote_count DESC, comment_count DESC LIMIT 10
        ''',
        (project_id,),
    )
    top_posts = [dict(row) for row in c.fetchall()]
    conn.close()

    daily = []
    for offset in range(days):
        day = (start_date + timedelta(days=offset)).isoformat()
        daily.append({'date': day, 'posts': posts_per_day.get(day, 0), 'votes': votes_per_day.get(day, 0)})

    return {
        'totals': totals,
        'posts_by_status': by_status,
        'posts_by_category': by_category,
        'daily': daily,
        'top_posts': top_posts,
    }
