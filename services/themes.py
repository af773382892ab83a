"""Theme detection, merging, ranking and clustering over project feedback."""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from datetime import timedelta
from typing import Optional

from db import db_connect, parse_ts, rows_to_dicts, utcnow, utcnow_iso
from services import llm
from services.text import tokenize

logger = logging.getLogger(__name__)

MIN_CLUSTER_SIZE = 3
DEFAULT_BATCH_SIZE = 100
MAX_THEMES_PER_BATCH = 10
EMERGING_THEME_THRESHOLD = 1.0
SIMILAR_THEME_RATIO = 0.6

CLUSTER_DEFINITIONS = [
    ('Feature Requests', ('feature', 'add', 'implement', 'support', 'request', 'want', 'need')),
    ('Bug Reports', ('bug', 'error', 'crash', 'broken', 'issue', 'problem', 'fail', 'not working')),
    ('Performance', ('slow', 'performance', 'speed', 'lag', 'loading', 'fast', 'optimize')),
    ('User Experience', ('ui', 'ux', 'design', 'interface', 'confusing', 'difficult', 'usability')),
    ('Mobile & Platforms', ('mobile', 'app', 'ios', 'android', 'phone', 'tablet', 'desktop')),
    ('Integrations', ('integration', 'connect', 'sync', 'import', 'export', 'api', 'webhook')),
    ('Documentation & Support', ('docs', 'documentation', 'help', 'tutorial', 'guide', 'support', 'learning')),
    ('Pricing & Billing', ('price', 'pricing', 'cost', 'billing', 'subscription', 'plan', 'payment')),
]
OTHER_CLUSTER = 'Other'

THEME_DETECTION_PROMPT = """You are an expert at analyzing user feedback and identifying recurring themes for SaaS products.
Identify 3-10 recurring themes in the numbered feedback items.
Rules: only create themes that appear in at least 3 items; each theme has a concise name (2-5 words)
and a one-sentence description; list the indices of matching items; give a confidence between 0 and 1.
Prefer specific, actionable themes ("Users want dark mode") over generic ones ("UI preferences").
Return JSON only: {"themes": [{"theme_name": "...", "description": "...", "item_indices": [0, 2], "confidence": 0.85}]}"""


def sentiment_label(avg_sentiment):
    if avg_sentiment >= 0.5:
        return 'Very Positive'
    if avg_sentiment >= 0.2:
        return 'Positive'
    if avg_sentiment >= -0.2:
        return 'Neutral'
    if avg_sentiment >= -0.5:
        return 'Negative'
    return 'Very Negative'


# ===== DETECTION =====

def detect_themes_keywords(items, min_cluster_size=MIN_CLUSTER_SIZE, max_themes=MAX_THEMES_PER_BATCH):
    """Document-frequency fallback: recurring content words become themes."""
    item_tokens = [set(tokenize(f"{item['title']} {item.get('description') or ''}")) for item in items]
    doc_freq = Counter()
    for tokens in item_tokens:
        doc_freq.update(tokens)

    themes = []
    claimed = []
    for token, count in doc_freq.most_common():
        if count < min_cluster_size or len(themes) >= max_themes:
            break
        indices = [i for i, tokens in enumerate(item_tokens) if token in tokens]
        index_set = set(indices)
        if any(len(index_set & other) / len(index_set | other) >= 0.8 for other in claimed):
            continue

        companions = Counter()
        for i in indices:
            companions.update(item_tokens[i] - {token})
        name = token
        if companions:
            companion, together = companions.most_common(1)[0]
            if together >= max(min_cluster_size, 0.6 * len(indices)):
                name = f'{token} {companion}'

        claimed.append(index_set)
        themes.append({
            'theme_name': name.title(),
            'description': f'Feedback mentioning "{name}" ({len(indices)} items).',
            'item_indices': indices,
            'confidence': round(min(1.0, len(indices) / max(len(items), 1) + 0.5), 2),
        })
    return themes


def detect_themes_llm(items):
    lines = []
    for i, item in enumerate(items):
        text = f"{item['title']}. {(item.get('description') or '')[:400]}"
        lines.append(f'[{i}] {text}')
    data = llm.complete_json(THEME_DETECTION_PROMPT, '\n'.join(lines), temperature=0.3, max_tokens=2000)

    themes = []
    for theme in data.get('themes') or []:
        name = str(theme.get('theme_name') or '').strip()[:120]
        indices = sorted({
            int(i) for i in theme.get('item_indices') or []
            if isinstance(i, (int, float)) and 0 <= int(i) < len(items)
        })
        if not name or len(indices) < MIN_CLUSTER_SIZE:
            continue
        themes.append({
            'theme_name': name,
            'description': str(theme.get('description') or '')[:500],
            'item_indices': indices,
            'confidence': max(0.0, min(1.0, float(theme.get('confidence') or 0.5))),
        })
    return themes


def detect_themes(items):
    if llm.is_enabled():
        try:
            return detect_themes_llm(items), 'llm'
        except (llm.LLMError, TypeError, ValueError) as exc:
            logger.warning('LLM theme detection failed, using keyword fallback: %s', exc)
    return detect_themes_keywords(items), 'keywords'


# ===== MERGING & RANKING =====

def average_sentiment(items):
    scores = [item['sentiment_score'] for item in items if item.get('sentiment_score') is not None]
    if not scores:
        return 0.0
    return round(sum(scores) / len(scores), 2)


def is_emerging(current_frequency, previous_frequency):
    if previous_frequency == 0:
        return current_frequency >= 3
    growth = (current_frequency - previous_frequency) / previous_frequency
    return growth >= EMERGING_THEME_THRESHOLD


def _earliest(a, b):
    return a if parse_ts(a) <= parse_ts(b) else b


def _latest(a, b):
    return a if parse_ts(a) >= parse_ts(b) else b


def _theme_span(theme, items, now):
    related = [items[i] for i in theme['item_indices'] if 0 <= i < len(items)]
    first_seen = last_seen = now
    if related:
        first_seen = last_seen = related[0]['created_at']
        for item in related[1:]:
            first_seen = _earliest(item['created_at'], first_seen)
            last_seen = _latest(item['created_at'], last_seen)
    return {
        'theme_name': theme['theme_name'],
        'description': theme.get('description') or '',
        'frequency': len(theme['item_indices']),
        'avg_sentiment': average_sentiment(related),
        'first_seen': first_seen,
        'last_seen': last_seen,
        'item_indices': theme['item_indices'],
        'confidence': theme.get('confidence', 1.0),
    }


def merge_and_rank_themes(detected, existing, items):
    """Split detected themes into (new_themes, updated_themes) against stored ones.

    Near-duplicate names are merged first, both among the detected themes and
    against the stored ones.
    """
    now = utcnow_iso()
    new_themes, updated_themes = [], []
    matched_ids = set()

    candidates = merge_similar_themes([_theme_span(theme, items, now) for theme in detected])
    for theme in candidates:
        # recompute from the merged item set so sentiment covers every item once
        theme = _theme_span(theme, items, now)
        current = next(
            (e for e in existing if e['id'] not in matched_ids and are_themes_similar(e['theme_name'], theme['theme_name'])),
            None,
        )
        if current:
            matched_ids.add(current['id'])
            previous = current['frequency']
            new_frequency = max(theme['frequency'], previous)
            updated_themes.append({
                'id': current['id'],
                'theme_name': current['theme_name'],
                'frequency': new_frequency,
                'avg_sentiment': theme['avg_sentiment'],
                'first_seen': _earliest(current['first_seen'], theme['first_seen']),
                'last_seen': _latest(current['last_seen'], theme['last_seen']),
                'is_emerging': is_emerging(new_frequency, previous),
                'item_indices': theme['item_indices'],
                'confidence': theme['confidence'],
                'updated_at': now,
            })
        else:
            theme.update(is_emerging=True, created_at=now, updated_at=now)
            new_themes.append(theme)

    new_themes.sort(key=lambda t: -t['frequency'])
    updated_themes.sort(key=lambda t: -t['frequency'])
    logger.info('Processed %s themes: %s new, %s updated', len(detected), len(new_themes), len(updated_themes))
    return new_themes, updated_themes


def are_themes_similar(name_a, name_b):
    a = name_a.lower().strip()
    b = name_b.lower().strip()
    if a == b or a in b or b in a:
        return True
    words_a, words_b = set(a.split()), set(b.split())
    if not words_a or not words_b:
        return False
    return len(words_a & words_b) / min(len(words_a), len(words_b)) >= SIMILAR_THEME_RATIO


def combine_themes(themes):
    base = max(themes, key=lambda t: t['frequency'])
    first_seen = base['first_seen']
    last_seen = base['last_seen']
    for theme in themes:
        first_seen = _earliest(theme['first_seen'], first_seen)
        last_seen = _latest(theme['last_seen'], last_seen)
    combined = dict(base)
    combined.update({
        'frequency': sum(t['frequency'] for t in themes),
        'avg_sentiment': round(sum(t['avg_sentiment'] for t in themes) / len(themes), 2),
        'first_seen': first_seen,
        'last_seen': last_seen,
    })
    if all('item_indices' in t for t in themes):
        indices = sorted({i for t in themes for i in t['item_indices']})
        combined.update({
            'item_indices': indices,
            'frequency': len(indices),
            'confidence': max(t.get('confidence', 1.0) for t in themes),
        })
    return combined


def merge_similar_themes(themes):
    if len(themes) <= 1:
        return list(themes)
    merged = []
    processed = set()
    for i, current in enumerate(themes):
        if i in processed:
            continue
        similar = [current]
        for j in range(i + 1, len(themes)):
            if j not in processed and are_themes_similar(current['theme_name'], themes[j]['theme_name']):
                similar.append(themes[j])
                processed.add(j)
        processed.add(i)
        merged.append(current if len(similar) == 1 else combine_themes(similar))
    return merged


def rank_themes(themes):
    """Frequency, then recency, then emerging first, then more negative sentiment."""
    return sorted(
        themes,
        key=lambda t: (
            -t['frequency'],
            -parse_ts(t['last_seen']).timestamp(),
            0 if t['is_emerging'] else 1,
            t['avg_sentiment'],
        ),
    )


def calculate_theme_growth(current_themes, previous_themes):
    previous_by_id = {theme['id']: theme for theme in previous_themes}
    metrics = []
    for theme in current_themes:
        previous = previous_by_id.get(theme['id'])
        if not previous:
            metrics.append({
                'theme_id': theme['id'],
                'current_frequency': theme['frequency'],
                'previous_frequency': 0,
                'growth_percentage': 100,
                'growth_absolute': theme['frequency'],
                'is_new': True,
            })
            continue
        absolute = theme['frequency'] - previous['frequency']
        percentage = (absolute / previous['frequency'] * 100) if previous['frequency'] > 0 else 0
        metrics.append({
            'theme_id': theme['id'],
            'current_frequency': theme['frequency'],
            'previous_frequency': previous['frequency'],
            'growth_percentage': round(percentage),
            'growth_absolute': absolute,
            'is_new': False,
        })
    metrics.sort(key=lambda m: -m['growth_percentage'])
    return metrics


def identify_emerging_themes(current_themes, previous_themes):
    by_id = {theme['id']: theme for theme in current_themes}
    emerging = []
    for metric in calculate_theme_growth(current_themes, previous_themes):
        if not (metric['is_new'] or metric['growth_percentage'] >= EMERGING_THEME_THRESHOLD * 100):
            continue
        pct = metric['growth_percentage']
        if metric['is_new']:
            label = 'New theme'
        else:
            label = f"{'+' if pct > 0 else ''}{pct}% {'increase' if pct > 0 else 'decrease'}"
        emerging.append({
            **by_id[metric['theme_id']],
            'recent_mentions': metric['current_frequency'],
            'previous_mentions': metric['previous_frequency'],
            'growth_rate': pct,
            'growth_label': label,
        })
    return emerging


def cluster_name_for(theme):
    text = f"{theme['theme_name']} {theme.get('description') or ''}".lower()
    for name, keywords in CLUSTER_DEFINITIONS:
        if any(keyword in text for keyword in keywords):
            return name
    return OTHER_CLUSTER


def group_themes_into_clusters(themes):
    grouped = defaultdict(list)
    for theme in themes:
        grouped[cluster_name_for(theme)].append(theme)
    return dict(grouped)


def cluster_description(themes):
    top = ', '.join(t['theme_name'] for t in themes[:3])
    return f"Cluster containing themes like: {top}{', and more' if len(themes) > 3 else ''}"


# ===== PERSISTENCE =====

def load_feedback_items(project_id, days: Optional[int] = 90, limit=DEFAULT_BATCH_SIZE):
    conn = db_connect()
    c = conn.cursor()
    params = [project_id]
    since_clause = ''
    if days:
        since_clause = 'AND created_at >= ?'
        params.append((utcnow().replace(microsecond=0) - timedelta(days=days)).isoformat())
    c.execute(
        f'''
        SELECT id, title, description, category, sentiment_score, vote_count, comment_count, created_at
        FROM posts
        WHERE project_id = ? AND duplicate_of IS NULL {since_clause}
        ORDER BY created_at DESC
        LIMIT ?
        ''',
        params + [limit],
    )
    items = rows_to_dicts(c.fetchall())
    conn.close()
    return items


def load_themes(project_id):
    conn = db_connect()
    c = conn.cursor()
    c.execute('SELECT * FROM themes WHERE project_id = ?', (project_id,))
    themes = rows_to_dicts(c.fetchall())
    conn.close()
    for theme in themes:
        theme['is_emerging'] = bool(theme['is_emerging'])
    return themes


def run_theme_detection(project_id, days=90, limit=DEFAULT_BATCH_SIZE):
    """Detect themes on recent posts, merge them with stored themes and regroup clusters."""
    items = load_feedback_items(project_id, days, limit)
    if len(items) < MIN_CLUSTER_SIZE:
        return {'themes_found': 0, 'new_themes': 0, 'updated_themes': 0, 'items_analyzed': len(items), 'source': None}

    detected, source = detect_themes(items)
    existing = load_themes(project_id)
    new_themes, updated_themes = merge_and_rank_themes(detected, existing, items)

    conn = db_connect()
    c = conn.cursor()
    for theme in new_themes:
        c.execute(
            '''
            INSERT INTO themes (
                project_id, theme_name, description, frequency, avg_sentiment,
                first_seen, last_seen, is_emerging, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ''',
            (
                project_id, theme['theme_name'], theme['description'], theme['frequency'],
                theme['avg_sentiment'], theme['first_seen'], theme['last_seen'],
                int(theme['is_emerging']), theme['created_at'], theme['updated_at'],
            ),
        )
        theme['id'] = c.lastrowid
    for theme in updated_themes:
        c.execute(
            '''
            UPDATE themes
            SET frequency = ?, avg_sentiment = ?, first_seen = ?, last_seen = ?,
                is_emerging = ?, updated_at = ?
            WHERE id = ?
            ''',
            (
                theme['frequency'], theme['avg_sentiment'], theme['first_seen'],
                theme['last_seen'], int(theme['is_emerging']), theme['updated_at'], theme['id'],
            ),
        )
    for theme in new_themes + updated_themes:
        for index in theme['item_indices']:
            c.execute(
                'INSERT OR REPLACE INTO feedback_themes (post_id, theme_id, confidence) VALUES (?, ?, ?)',
                (items[index]['id'], theme['id'], theme['confidence']),
            )
    conn.commit()
    conn.close()

    cluster_count = regroup_clusters(project_id)
    logger.info('Theme detection for project %s: %s detected via %s', project_id, len(detected), source)
    return {
        'themes_found': len(detected),
        'new_themes': len(new_themes),
        'updated_themes': len(updated_themes),
        'clusters': cluster_count,
        'items_analyzed': len(items),
        'source': source,
    }


def regroup_clusters(project_id):
    themes = rank_themes(load_themes(project_id))
    grouped = group_themes_into_clusters(themes)
    now = utcnow_iso()

    conn = db_connect()
    c = conn.cursor()
    c.execute('UPDATE themes SET cluster_id = NULL WHERE project_id = ?', (project_id,))
    c.execute('DELETE FROM theme_clusters WHERE project_id = ?', (project_id,))
    for name, members in grouped.items():
        c.execute(
            '''
            INSERT INTO theme_clusters (project_id, cluster_name, description, theme_count, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ''',
            (project_id, name, cluster_description(members), len(members), now, now),
        )
        cluster_id = c.lastrowid
        c.executemany(
            'UPDATE themes SET cluster_id = ? WHERE id = ?',
            [(cluster_id, theme['id']) for theme in members],
        )
    conn.commit()
    conn.close()
    return len(grouped)


def _window_frequencies(c, project_id, start, end):
    c.execute(
        '''
        SELECT ft.theme_id AS id, COUNT(*) AS frequency
        FROM feedback_themes ft JOIN posts p ON p.id = ft.post_id
        WHERE p.project_id = ? AND p.created_at >= ? AND p.created_at < ?
        GROUP BY ft.theme_id
        ''',
        (project_id, start.isoformat(), end.isoformat()),
    )
    return {row['id']: row['frequency'] for row in c.fetchall()}


def emerging_themes(project_id, days=7):
    """Themes whose mentions in the last ``days`` at least doubled versus the window before."""
    now = utcnow()
    current_start = now - timedelta(days=days)
    previous_start = current_start - timedelta(days=days)

    conn = db_connect()
    c = conn.cursor()
    current = _window_frequencies(c, project_id, current_start, now)
    previous = _window_frequencies(c, project_id, previous_start, current_start)
    conn.close()

    themes = {theme['id']: theme for theme in load_themes(project_id)}
    current_themes = [
        {**themes[theme_id], 'frequency': count}
        for theme_id, count in current.items() if theme_id in themes
    ]
    previous_themes = [
        {'id': theme_id, 'frequency': count}
        for theme_id, count in previous.items() if count > 0
    ]
    emerging = identify_emerging_themes(current_themes, previous_themes)
    # a single brand new mention is noise, not an emerging theme
    return [t for t in emerging if t['previous_mentions'] > 0 or t['recent_mentions'] >= MIN_CLUSTER_SIZE]
