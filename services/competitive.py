"""Competitor mention extraction, competitor tracking and feature gap detection."""

import logging
import re
import sqlite3

from flask import abort

from db import db_connect, row_to_dict, rows_to_dicts, to_json, utcnow_iso
from services import llm
from services.text import STOP_WORDS, lexicon_sentiment, words

logger = logging.getLogger(__name__)

MENTION_TYPES = ('comparison', 'switch_to', 'switch_from', 'feature_comparison', 'general')
COMPETITOR_STATUSES = ('active', 'monitoring', 'dismissed')
GAP_STATUSES = ('identified', 'planned', 'in_progress', 'shipped', 'dismissed')
MAX_NAME_LENGTH = 80
MAX_CONTEXT_LENGTH = 500
MAX_GAP_QUOTES = 5

# A product name: one or two capitalized tokens ("Linear", "Google Sheets").
_NAME = r'(?P<name>[A-Z][\w.+-]*(?:\s[A-Z][\w.+-]*)?)'

MENTION_PATTERNS = (
    ('switch_from', re.compile(r'(?i:\bswitch(?:ed|ing)?\s+(?:over\s+)?from)\s+' + _NAME)),
    ('switch_to', re.compile(r'(?i:\b(?:moving|moved|switching|switched|migrating|going back)\s+to)\s+' + _NAME)),
    ('comparison', re.compile(_NAME + r'\s+(?i:vs\.?|versus)\s')),
    ('comparison', re.compile(r'(?i:\bvs\.?|versus)\s+' + _NAME)),
    ('feature_comparison', re.compile(r'(?P<feature>[\w\s-]{3,80}?)\s+(?i:like)\s+' + _NAME + r'\s+(?i:has|does|offers)\b')),
)

NOT_NAMES = frozenset({
    'i', 'we', 'you', 'it', 'this', 'that', 'the', 'a', 'an', 'my', 'our', 'their',
    'they', 'he', 'she', 'there', 'here', 'then', 'now', 'one', 'another',
})

FEATURE_MARKERS = frozenset({
    'need', 'needs', 'wish', 'want', 'wants', 'had', 'have', 'has', 'add', 'lacks',
    'lacking', 'missing', 'support', 'supported',
})

DEFAULT_SENTIMENT = {
    'switch_from': 0.6,
    'switch_to': -0.8,
    'feature_comparison': -0.4,
    'general': 0.0,
}

EXTRACTION_PROMPT = (
    'You find competitor product mentions in customer feedback. Reply with JSON '
    '{"mentions": [{"competitor_name": str, "mention_type": '
    '"comparison"|"switch_to"|"switch_from"|"feature_comparison"|"general", '
    '"context": <the sentence, verbatim>, "sentiment_vs_us": <float -1..1>, '
    '"feature_name": <feature the competitor has, or null>}]}. '
    '"switch_from" means the user left the competitor for us, "switch_to" means '
    'the user is leaving us for the competitor. Reply {"mentions": []} when none.'
)


def _clean_name(name):
    name = (name or '').strip().strip('.,!?:;"\'()').lstrip('@')
    if not name or name.lower() in NOT_NAMES or len(name) > MAX_NAME_LENGTH:
        return None
    return name


def _sentence_for(text, start, end):
    """The sentence around a match, used as mention context."""
    left = max(text.rfind('.', 0, start), text.rfind('!', 0, start), text.rfind('?', 0, start)) + 1
    right_candidates = [i for i in (text.find('.', end), text.find('!', end), text.find('?', end)) if i != -1]
    right = min(right_candidates) + 1 if right_candidates else len(text)
    return text[left:right].strip()[:MAX_CONTEXT_LENGTH]


def feature_from_phrase(phrase):
    """'YourApp needs dark mode' -> 'dark mode'."""
    tokens = words(phrase)
    markers = [i for i, token in enumerate(tokens) if token in FEATURE_MARKERS]
    if markers:
        tokens = tokens[markers[-1] + 1:]
    tokens = [t for t in tokens if t not in STOP_WORDS]
    return ' '.join(tokens[-3:]) or None


def extract_mentions_patterns(text, known_competitors=(), product_name=None):
    """Pattern based extraction used when the LLM is unavailable."""
    text = text or ''
    mentions = {}
    own = (product_name or '').lower()

    for mention_type, pattern in MENTION_PATTERNS:
        for match in pattern.finditer(text):
            name = _clean_name(match.group('name'))
            if not name or name.lower() == own or name.lower() in mentions:
                continue
            context = _sentence_for(text, match.start(), match.end())
            if mention_type == 'comparison':
                sentiment = round(lexicon_sentiment(context), 2)
            else:
                sentiment = DEFAULT_SENTIMENT[mention_type]
            feature = None
            if mention_type == 'feature_comparison':
                feature = feature_from_phrase(match.group('feature'))
                if not feature:
                    continue
            mentions[name.lower()] = {
                'competitor_name': name,
                'mention_type': mention_type,
                'context': context,
                'sentiment_vs_us': sentiment,
                'feature_name': feature,
            }

    lowered = text.lower()
    for known in known_competitors or ():
        name = _clean_name(known)
        if not name or name.lower() in mentions:
            continue
        index = lowered.find(name.lower())
        if index == -1:
            continue
        mentions[name.lower()] = {
            'competitor_name': name,
            'mention_type': 'general',
            'context': _sentence_for(text, index, index + len(name)),
            'sentiment_vs_us': 0.0,
            'feature_name': None,
        }

    return list(mentions.values())


def _normalize_llm_mention(raw):
    name = _clean_name(raw.get('competitor_name'))
    if not name:
        return None
    mention_type = raw.get('mention_type')
    if mention_type not in MENTION_TYPES:
        mention_type = 'general'
    try:
        sentiment = max(-1.0, min(1.0, float(raw.get('sentiment_vs_us') or 0)))
    except (TypeError, ValueError):
        sentiment = 0.0
    feature = (raw.get('feature_name') or '').strip().lower()[:MAX_NAME_LENGTH] or None
    return {
        'competitor_name': name,
        'mention_type': mention_type,
        'context': str(raw.get('context') or '')[:MAX_CONTEXT_LENGTH],
        'sentiment_vs_us': round(sentiment, 2),
        'feature_name': feature if mention_type == 'feature_comparison' else None,
    }


def extract_mentions(text, known_competitors=(), product_name=None):
    if llm.is_enabled() and text:
        try:
            data = llm.complete_json(EXTRACTION_PROMPT, text[:4000], max_tokens=600)
            mentions = [_normalize_llm_mention(m) for m in data.get('mentions') or [] if isinstance(m, dict)]
            return [m for m in mentions if m]
        except llm.LLMError as exc:
            logger.warning('LLM competitor extraction failed, using patterns: %s', exc)
    return extract_mentions_patterns(text, known_competitors, product_name)


def _competitor_id(c, project_id, name, auto_detected=True):
    c.execute('SELECT id, status FROM competitors WHERE project_id = ? AND name = ?', (project_id, name))
    row = c.fetchone()
    if row:
        return row['id'], row['status']
    now = utcnow_iso()
    c.execute(
        '''
        INSERT INTO competitors (project_id, name, auto_detected, status, total_mentions, created_at, updated_at)
        VALUES (?, ?, ?, 'active', 0, ?, ?)
        ''',
        (project_id, name, int(auto_detected), now, now),
    )
    return c.lastrowid, 'active'


def record_mentions(project_id, mentions, feedback_id=None, post_id=None):
    """Store mentions, auto-creating competitors. Dismissed competitors are skipped."""
    if not mentions:
        return 0
    conn = db_connect()
    c = conn.cursor()
    stored = 0
    has_features = False
    for mention in mentions:
        competitor_id, status = _competitor_id(c, project_id, mention['competitor_name'])
        if status == 'dismissed':
            continue
        c.execute(
            '''
            INSERT INTO competitor_mentions (
                project_id, competitor_id, feedback_id, post_id, mention_type,
                context, sentiment_vs_us, feature_name, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ''',
            (
                project_id,
                competitor_id,
                feedback_id,
                post_id,
                mention['mention_type'],
                mention['context'] or mention['competitor_name'],
                mention['sentiment_vs_us'],
                mention.get('feature_name'),
                utcnow_iso(),
            ),
        )
        c.execute(
            'UPDATE competitors SET total_mentions = total_mentions + 1, updated_at = ? WHERE id = ?',
            (utcnow_iso(), competitor_id),
        )
        stored += 1
        has_features = has_features or mention['mention_type'] == 'feature_comparison'
    conn.commit()
    conn.close()

    if has_features:
        refresh_feature_gaps(project_id)
    return stored


def analyze_text_for_competitors(project_id, text, feedback_id=None, post_id=None):
    """Extract and store competitor mentions for one piece of feedback."""
    conn = db_connect()
    c = conn.cursor()
    c.execute('SELECT product_name, competitors FROM hunter_configs WHERE project_id = ?', (project_id,))
    config = row_to_dict(c.fetchone(), json_fields=('competitors',)) or {}
    c.execute("SELECT name FROM competitors WHERE project_id = ? AND status != 'dismissed'", (project_id,))
    known = set(config.get('competitors') or []) | {row['name'] for row in c.fetchall()}
    conn.close()

    mentions = extract_mentions(text, sorted(known), config.get('product_name'))
    stored = record_mentions(project_id, mentions, feedback_id=feedback_id, post_id=post_id)
    if stored:
        logger.info('Recorded %s competitor mentions for project %s', stored, project_id)
    return mentions


# ===== FEATURE GAPS =====

def gap_priority(mention_count):
    if mention_count > 10:
        return 'critical'
    if mention_count >= 5:
        return 'high'
    if mention_count >= 2:
        return 'medium'
    return 'low'


def refresh_feature_gaps(project_id):
    """Rebuild gap counts from feature_comparison mentions; reviewed statuses are kept."""
    conn = db_connect()
    c = conn.cursor()
    c.execute(
        '''
        SELECT m.feature_name, m.context, co.name AS competitor_name
        FROM competitor_mentions m JOIN competitors co ON co.id = m.competitor_id
        WHERE m.project_id = ? AND m.mention_type = 'feature_comparison' AND m.feature_name IS NOT NULL
        ORDER BY m.created_at DESC
        ''',
        (project_id,),
    )
    grouped = {}
    for row in c.fetchall():
        key = row['feature_name'].strip().lower()
        gap = grouped.setdefault(key, {'count': 0, 'competitors': [], 'quotes': []})
        gap['count'] += 1
        if row['competitor_name'] not in gap['competitors']:
            gap['competitors'].append(row['competitor_name'])
        if len(gap['quotes']) < MAX_GAP_QUOTES:
            gap['quotes'].append(row['context'])

    now = utcnow_iso()
    for feature_name, gap in grouped.items():
        c.execute(
            '''
            INSERT INTO feature_gaps (
                project_id, feature_name, mention_count, competitors, user_quotes,
                priority, status, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, 'identified', ?, ?)
            ON CONFLICT (project_id, feature_name) DO UPDATE SET
                mention_count = excluded.mention_count,
                competitors = excluded.competitors,
                user_quotes = excluded.user_quotes,
                priority = excluded.priority,
                updated_at = excluded.updated_at
            ''',
            (
                project_id,
                feature_name,
                gap['count'],
                to_json(gap['competitors']),
                to_json(gap['quotes']),
                gap_priority(gap['count']),
                now,
                now,
            ),
        )
    conn.commit()
    conn.close()
    return len(grouped)


def list_feature_gaps(project_id, status=None):
    conn = db_connect()
    c = conn.cursor()
    query = 'SELECT * FROM feature_gaps WHERE project_id = ?'
    params = [project_id]
    if status:
        query += ' AND status = ?'
        params.append(status)
    query += ' ORDER BY mention_count DESC, updated_at DESC'
    c.execute(query, params)
    gaps = rows_to_dicts(c.fetchall(), json_fields=('competitors', 'user_quotes'))
    conn.close()
    return gaps


def get_feature_gap(gap_id):
    conn = db_connect()
    c = conn.cursor()
    c.execute('SELECT * FROM feature_gaps WHERE id = ?', (gap_id,))
    gap = row_to_dict(c.fetchone(), json_fields=('competitors', 'user_quotes'))
    conn.close()
    if not gap:
        abort(404, description='Feature gap not found')
    return gap


def update_gap_status(gap, status):
    if status not in GAP_STATUSES:
        abort(400, description=f"status must be one of: {', '.join(GAP_STATUSES)}")
    conn = db_connect()
    c = conn.cursor()
    c.execute('UPDATE feature_gaps SET status = ?, updated_at = ? WHERE id = ?', (status, utcnow_iso(), gap['id']))
    conn.commit()
    conn.close()
    return get_feature_gap(gap['id'])


# ===== COMPETITORS =====

def get_competitor(competitor_id):
    conn = db_connect()
    c = conn.cursor()
    c.execute('SELECT * FROM competitors WHERE id = ?', (competitor_id,))
    competitor = row_to_dict(c.fetchone())
    conn.close()
    if not competitor:
        abort(404, description='Competitor not found')
    return competitor


def list_competitors(project_id, status=None):
    conn = db_connect()
    c = conn.cursor()
    query = '''
        SELECT co.*,
               COALESCE(AVG(m.sentiment_vs_us), 0) AS avg_sentiment_vs_us,
               SUM(CASE WHEN m.mention_type = 'switch_to' THEN 1 ELSE 0 END) AS switch_to_count,
               SUM(CASE WHEN m.mention_type = 'switch_from' THEN 1 ELSE 0 END) AS switch_from_count
        FROM competitors co
        LEFT JOIN competitor_mentions m ON m.competitor_id = co.id
        WHERE co.project_id = ?
    '''
    params = [project_id]
    if status:
        query += ' AND co.status = ?'
        params.append(status)
    query += ' GROUP BY co.id ORDER BY co.total_mentions DESC, co.name'
    c.execute(query, params)
    competitors = rows_to_dicts(c.fetchall())
    conn.close()
    for competitor in competitors:
        competitor['auto_detected'] = bool(competitor['auto_detected'])
        competitor['avg_sentiment_vs_us'] = round(competitor['avg_sentiment_vs_us'], 2)
        competitor['switch_to_count'] = competitor['switch_to_count'] or 0
        competitor['switch_from_count'] = competitor['switch_from_count'] or 0
    return competitors


def create_competitor(project_id, name):
    name = _clean_name(name)
    if not name:
        abort(400, description=f'Competitor name is required (max {MAX_NAME_LENGTH} characters)')
    conn = db_connect()
    c = conn.cursor()
    c.execute('SELECT id FROM competitors WHERE project_id = ? AND name = ?', (project_id, name))
    if c.fetchone():
        conn.close()
        abort(409, description='Competitor already exists')
    competitor_id, _ = _competitor_id(c, project_id, name, auto_detected=False)
    conn.commit()
    conn.close()
    return get_competitor(competitor_id)


def update_competitor(competitor, data):
    fields = {}
    if 'name' in data:
        name = _clean_name(data.get('name'))
        if not name:
            abort(400, description='Competitor name is required')
        fields['name'] = name
    if 'status' in data:
        if data['status'] not in COMPETITOR_STATUSES:
            abort(400, description=f"status must be one of: {', '.join(COMPETITOR_STATUSES)}")
        fields['status'] = data['status']
    if not fields:
        abort(400, description='Nothing to update')
    fields['updated_at'] = utcnow_iso()

    conn = db_connect()
    c = conn.cursor()
    assignments = ', '.join(f'{name} = ?' for name in fields)
    try:
        c.execute(f'UPDATE competitors SET {assignments} WHERE id = ?', list(fields.values()) + [competitor['id']])
    except sqlite3.IntegrityError:
        conn.close()
        abort(409, description='Competitor already exists')
    conn.commit()
    conn.close()
    return get_competitor(competitor['id'])


def delete_competitor(competitor):
    conn = db_connect()
    c = conn.cursor()
    c.execute('DELETE FROM competitors WHERE id = ?', (competitor['id'],))
    conn.commit()
    conn.close()
    refresh_feature_gaps(competitor['project_id'])


def list_mentions(project_id, competitor_id=None, mention_type=None, limit=50):
    conn = db_connect()
    c = conn.cursor()
    query = '''
        SELECT m.*, co.name AS competitor_name
        FROM competitor_mentions m JOIN competitors co ON co.id = m.competitor_id
        WHERE m.project_id = ?
    '''
    params = [project_id]
    if competitor_id:
        query += ' AND m.competitor_id = ?'
        params.append(competitor_id)
    if mention_type:
        query += ' AND m.mention_type = ?'
        params.append(mention_type)
    query += ' ORDER BY m.created_at DESC, m.id DESC LIMIT ?'
    params.append(limit)
    c.execute(query, params)
    mentions = rows_to_dicts(c.fetchall())
    conn.close()
    return mentions


def competitive_summary(project_id, since=None):
    """Counts used by the overview endpoint and mission control."""
    conn = db_connect()
    c = conn.cursor()
    query = '''
        SELECT m.mention_type, COUNT(*) AS total
        FROM competitor_mentions m JOIN competitors co ON co.id = m.competitor_id
        WHERE m.project_id = ? AND co.status != 'dismissed'
    '''
    params = [project_id]
    if since:
        query += ' AND m.created_at >= ?'
        params.append(since)
    query += ' GROUP BY m.mention_type'
    c.execute(query, params)
    by_type = {row['mention_type']: row['total'] for row in c.fetchall()}
    c.execute(
        "SELECT COUNT(*) FROM competitors WHERE project_id = ? AND status != 'dismissed'",
        (project_id,),
    )
    competitor_count = c.fetchone()[0]
    c.execute(
        "SELECT COUNT(*) FROM feature_gaps WHERE project_id = ? AND priority IN ('critical', 'high') AND status = 'identified'",
        (project_id,),
    )
    urgent_gaps = c.fetchone()[0]
    conn.close()
    return {
        'competitors_tracked': competitor_count,
        'total_mentions': sum(by_type.values()),
        'mentions_by_type': {t: by_type.get(t, 0) for t in MENTION_TYPES},
        'urgent_feature_gaps': urgent_gaps,
    }
