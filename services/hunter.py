"""Feedback hunter: per-project config, platform discovery, relevance scoring and classification.

A scan runs as a chain of jobs per platform::

    discovery -> relevance -> classify

Each stage is picked up by the matching worker endpoint (see routes/hunter.py),
which the cron orchestrator calls once a minute.
"""

import logging
from datetime import datetime, timezone

import requests
from flask import abort, current_app

from db import db_connect, row_to_dict, rows_to_dicts, to_json, utcnow_iso
from services import board, competitive, job_queue, llm
from services.sentiment import analyze_sentiment
from services.text import clean_text, sentiment_label, tokenize

logger = logging.getLogger(__name__)

CLASSIFICATIONS = (
    'bug',
    'feature_request',
    'usability_issue',
    'praise',
    'complaint',
    'comparison',
    'churn_risk',
    'question',
    'other',
)
RELEVANCE_INCLUDE = 80
RELEVANCE_REVIEW = 60
PASSTHROUGH_SCORE = 75
MAX_LIST_ITEMS = 20
MAX_TERM_LENGTH = 60
MAX_CONTENT_LENGTH = 5000

REDDIT_SEARCH_URL = 'https://www.reddit.com/search.json'
HN_SEARCH_URL = 'https://hn.algolia.com/api/v1/search_by_date'

RELEVANCE_PROMPT = (
    'You decide whether a social media post is real feedback about a specific product. '
    'Score 80-100 when the product is the subject and the post contains feedback, '
    '60-79 when the product is discussed but relevance is uncertain, and below 60 for '
    'tangential mentions, a different product with a similar name, or promotion. '
    'Reply with JSON {"score": <0-100>, "reason": <one sentence>}.'
)

CLASSIFY_PROMPT = (
    'Classify customer feedback about a product. Reply with JSON {"classification": '
    '"bug"|"feature_request"|"usability_issue"|"praise"|"complaint"|"comparison"|'
    '"churn_risk"|"question"|"other", "confidence": <0-1>, "sentiment_score": <-1..1>, '
    '"urgency_score": <1-5>, "tags": [<up to 5 short lowercase tags>]}.'
)

CLASSIFICATION_KEYWORDS = (
    ('churn_risk', ('cancel', 'cancelling', 'canceling', 'switching to', 'moving to', 'leaving', 'unsubscribe')),
    ('bug', ('bug', 'crash', 'crashes', 'broken', 'error', 'not working', "doesn't work", 'fails')),
    ('feature_request', ('feature request', 'wish', 'would be great', 'please add', 'should add', 'missing', 'need a way')),
    ('comparison', (' vs ', 'versus', 'compared to', 'alternative to', 'better than')),
    ('usability_issue', ('confusing', 'hard to', 'difficult', 'unintuitive', "can't find", 'cannot find')),
    ('question', ('how do i', 'how to', 'is there a way', 'does anyone know', '?')),
    ('praise', ('love', 'awesome', 'great', 'amazing', 'fantastic', 'recommend')),
    ('complaint', ('terrible', 'awful', 'frustrating', 'annoying', 'expensive', 'hate')),
)

URGENCY_BY_CLASSIFICATION = {
    'churn_risk': 5,
    'bug': 4,
    'complaint': 3,
    'usability_issue': 3,
    'feature_request': 2,
    'comparison': 2,
    'question': 2,
    'praise': 1,
    'other': 1,
}


# ===== CONFIG =====

def _clean_terms(values, field, errors):
    if values is None:
        return []
    if not isinstance(values, list):
        errors[field] = f'{field} must be a list'
        return []
    terms = []
    for value in values:
        term = clean_text(value, MAX_TERM_LENGTH)
        if term and term.lower() not in [t.lower() for t in terms]:
            terms.append(term)
    if len(terms) > MAX_LIST_ITEMS:
        errors[field] = f'At most {MAX_LIST_ITEMS} {field} are allowed'
    return terms


def validate_config_input(data):
    """Return (cleaned, errors) for hunter config payloads."""
    errors = {}
    product_name = clean_text(data.get('product_name'), 120)
    if not product_name:
        errors['product_name'] = 'Product name is required.'
    platforms = data.get('platforms') or list(job_queue.PLATFORMS)
    if not isinstance(platforms, list) or any(p not in job_queue.PLATFORMS for p in platforms):
        errors['platforms'] = f"Platforms must be a list of: {', '.join(job_queue.PLATFORMS)}."
        platforms = []
    cleaned = {
        'product_name': product_name,
        'product_description': clean_text(data.get('product_description'), 1000) or None,
        'keywords': _clean_terms(data.get('keywords'), 'keywords', errors),
        'competitors': _clean_terms(data.get('competitors'), 'competitors', errors),
        'excluded_terms': _clean_terms(data.get('excluded_terms'), 'excluded_terms', errors),
        'platforms': list(dict.fromkeys(platforms)),
        'is_active': bool(data.get('is_active', True)),
    }
    return cleaned, errors


CONFIG_JSON_FIELDS = ('keywords', 'competitors', 'excluded_terms', 'platforms')


def get_config(project_id):
    conn = db_connect()
    c = conn.cursor()
    c.execute('SELECT * FROM hunter_configs WHERE project_id = ?', (project_id,))
    config = row_to_dict(c.fetchone(), json_fields=CONFIG_JSON_FIELDS)
    conn.close()
    if config:
        config['is_active'] = bool(config['is_active'])
    return config


def save_config(project_id, cleaned):
    conn = db_connect()
    c = conn.cursor()
    c.execute(
        '''
        INSERT INTO hunter_configs (
            project_id, product_name, product_description, keywords, competitors,
            excluded_terms, platforms, is_active, updated_at
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT (project_id) DO UPDATE SET
            product_name = excluded.product_name,
            product_description = excluded.product_description,
            keywords = excluded.keywords,
            competitors = excluded.competitors,
            excluded_terms = excluded.excluded_terms,
            platforms = excluded.platforms,
            is_active = excluded.is_active,
            updated_at = excluded.updated_at
        ''',
        (
            project_id,
            cleaned['product_name'],
            cleaned['product_description'],
            to_json(cleaned['keywords']),
            to_json(cleaned['competitors']),
            to_json(cleaned['excluded_terms']),
            to_json(cleaned['platforms']),
            int(cleaned['is_active']),
            utcnow_iso(),
        ),
    )
    conn.commit()
    conn.close()
    return get_config(project_id)


def start_scan(project_id, user_id=None):
    config = get_config(project_id)
    if not config:
        abort(400, description='Configure the hunter before starting a scan')
    if not config['is_active']:
        abort(409, description='The hunter is paused for this project')
    if not config['platforms']:
        abort(400, description='Select at least one platform')

    conn = db_connect()
    c = conn.cursor()
    c.execute("SELECT id FROM hunter_scans WHERE project_id = ? AND status = 'running'", (project_id,))
    running = c.fetchone()
    conn.close()
    if running:
        abort(409, description='A scan is already running for this project')
    return job_queue.create_scan(project_id, config['platforms'], user_id)


# ===== DISCOVERY =====

def search_query(config):
    terms = [config['product_name']] + list(config.get('keywords') or [])[:3]
    return ' OR '.join(f'"{t}"' if ' ' in t else t for t in terms)


def _iso_from_epoch(value):
    try:
        return datetime.fromtimestamp(float(value), tz=timezone.utc).isoformat()
    except (TypeError, ValueError, OverflowError):
        return None


def fetch_reddit(query, limit):
    response = requests.get(
        REDDIT_SEARCH_URL,
        params={'q': query, 'sort': 'new', 't': 'week', 'limit': limit, 'raw_json': 1},
        headers={'User-Agent': current_app.config.get('HUNTER_USER_AGENT', 'SignalsLoopHunter/1.0')},
        timeout=20,
    )
    response.raise_for_status()
    items = []
    for child in (response.json().get('data') or {}).get('children') or []:
        post = child.get('data') or {}
        if not post.get('id'):
            continue
        items.append({
            'external_id': post['id'],
            'external_url': f"https://www.reddit.com{post.get('permalink', '')}",
            'title': post.get('title'),
            'content': clean_text(post.get('selftext') or post.get('title') or ''),
            'author': post.get('author'),
            'posted_at': _iso_from_epoch(post.get('created_utc')),
            'metadata': {
                'subreddit': post.get('subreddit'),
                'score': post.get('score'),
                'num_comments': post.get('num_comments'),
            },
        })
    return items[:limit]


def fetch_hackernews(query, limit):
    response = requests.get(
        HN_SEARCH_URL,
        params={'query': query, 'tags': '(story,comment)', 'hitsPerPage': limit},
        timeout=20,
    )
    response.raise_for_status()
    items = []
    for hit in response.json().get('hits') or []:
        object_id = hit.get('objectID')
        if not object_id:
            continue
        items.append({
            'external_id': str(object_id),
            'external_url': f'https://news.ycombinator.com/item?id={object_id}',
            'title': hit.get('title') or hit.get('story_title'),
            'content': clean_text(hit.get('comment_text') or hit.get('story_text') or hit.get('title') or ''),
            'author': hit.get('author'),
            'posted_at': hit.get('created_at'),
            'metadata': {'points': hit.get('points'), 'num_comments': hit.get('num_comments')},
        })
    return items[:limit]


PLATFORM_FETCHERS = {
    'reddit': fetch_reddit,
    'hackernews': fetch_hackernews,
}


def is_excluded(item, config):
    text = f"{item.get('title') or ''} {item.get('content') or ''}".lower()
    return any(term.lower() in text for term in config.get('excluded_terms') or [])


def store_raw_items(scan_id, project_id, platform, items):
    """Insert discovered items, skipping ones already seen in this scan."""
    conn = db_connect()
    c = conn.cursor()
    inserted = 0
    for item in items:
        content = (item.get('content') or '').strip()
        if not content:
            continue
        c.execute(
            '''
            INSERT OR IGNORE INTO hunter_raw_items (
                scan_id, project_id, platform, external_id, external_url, title,
                content, author, posted_at, raw_metadata, stage, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 'discovered', ?)
            ''',
            (
                scan_id,
                project_id,
                platform,
                item['external_id'],
                item.get('external_url'),
                (item.get('title') or '')[:500] or None,
                content[:MAX_CONTENT_LENGTH],
                item.get('author'),
                item.get('posted_at'),
                to_json(item.get('metadata') or {}),
                utcnow_iso(),
            ),
        )
        inserted += c.rowcount
    conn.commit()
    conn.close()
    return inserted


def run_discovery(job):
    config = get_config(job['project_id'])
    if not config:
        raise RuntimeError('Hunter config was removed')
    platform = job['platform']
    fetcher = PLATFORM_FETCHERS.get(platform)
    if not fetcher:
        raise RuntimeError(f'Unsupported platform: {platform}')

    job_queue.set_platform_status(job['scan_id'], platform, 'discovering')
    items = fetcher(search_query(config), current_app.config.get('HUNTER_DISCOVERY_LIMIT', 25))
    items = [item for item in items if not is_excluded(item, config)]
    inserted = store_raw_items(job['scan_id'], job['project_id'], platform, items)
    job_queue.increment_scan_counter(job['scan_id'], 'total_discovered', inserted)
    logger.info('Discovery for scan %s on %s stored %s items', job['scan_id'], platform, inserted)

    if inserted:
        job_queue.set_platform_status(job['scan_id'], platform, 'filtering')
        job_queue.enqueue_job(job['scan_id'], job['project_id'], 'relevance', platform)
    else:
        job_queue.set_platform_status(job['scan_id'], platform, 'complete')
    return {'discovered': inserted}


# ===== RELEVANCE =====

def relevance_decision(score):
    if score >= RELEVANCE_INCLUDE:
        return 'include'
    if score >= RELEVANCE_REVIEW:
        return 'human_review'
    return 'exclude'


def keyword_relevance(item, config):
    """Heuristic score from product name, keyword and description overlap."""
    title = (item.get('title') or '').lower()
    text = f"{title} {(item.get('content') or '').lower()}"
    product = config['product_name'].lower()

    score = 30
    if product in title:
        score += 50
    elif product in text:
        score += 35
    keyword_hits = sum(1 for k in config.get('keywords') or [] if k.lower() in text)
    score += min(keyword_hits * 8, 24)
    if config.get('product_description'):
        overlap = set(tokenize(config['product_description'])) & set(tokenize(text))
        score += min(len(overlap) * 2, 10)
    if product not in text:
        score = min(score, 55)
    return min(score, 100)


def score_relevance(item, config):
    """Return (score, decision, reason).

    Without product context or an AI provider items pass through as included
    with a score of 75; when the provider errors the keyword heuristic decides.
    """
    if not config or not config.get('product_name'):
        return PASSTHROUGH_SCORE, 'include', 'No product context configured; passing item through'
    if not llm.is_enabled():
        return PASSTHROUGH_SCORE, 'include', 'No AI provider configured; passing item through'

    prompt = (
        f"Product: {config['product_name']}\n"
        f"Description: {config.get('product_description') or 'n/a'}\n"
        f"Keywords: {', '.join(config.get('keywords') or [])}\n\n"
        f"Title: {item.get('title') or ''}\nContent: {(item.get('content') or '')[:3000]}"
    )
    try:
        data = llm.complete_json(RELEVANCE_PROMPT, prompt, max_tokens=150)
        score = max(0, min(100, int(float(data.get('score', 0)))))
        return score, relevance_decision(score), str(data.get('reason') or '')[:500]
    except (llm.LLMError, TypeError, ValueError) as exc:
        logger.warning('LLM relevance scoring failed, using keywords: %s', exc)
    score = keyword_relevance(item, config)
    return score, relevance_decision(score), 'Keyword match'


def run_relevance(job):
    config = get_config(job['project_id'])
    batch_size = current_app.config.get('HUNTER_RELEVANCE_BATCH', 15)
    conn = db_connect()
    c = conn.cursor()
    c.execute(
        '''
        SELECT * FROM hunter_raw_items
        WHERE scan_id = ? AND platform = ? AND stage = 'discovered'
        ORDER BY id LIMIT ?
        ''',
        (job['scan_id'], job['platform'], batch_size),
    )
    items = rows_to_dicts(c.fetchall())
    conn.close()

    relevant = 0
    for item in items:
        score, decision, reason = score_relevance(item, config)
        conn = db_connect()
        c = conn.cursor()
        c.execute(
            '''
            UPDATE hunter_raw_items
            SET relevance_score = ?, relevance_decision = ?, relevance_reason = ?, stage = ?
            WHERE id = ?
            ''',
            (score, decision, reason, 'excluded' if decision == 'exclude' else 'filtered', item['id']),
        )
        conn.commit()
        conn.close()
        if decision != 'exclude':
            relevant += 1
    job_queue.increment_scan_counter(job['scan_id'], 'total_relevant', relevant)

    remaining = _count_stage(job['scan_id'], job['platform'], 'discovered')
    if remaining:
        # more than one batch: the next relevance pass picks up the rest
        job_queue.enqueue_job(job['scan_id'], job['project_id'], 'relevance', job['platform'])
    elif _count_stage(job['scan_id'], job['platform'], 'filtered'):
        job_queue.set_platform_status(job['scan_id'], job['platform'], 'filtered')
        job_queue.enqueue_job(job['scan_id'], job['project_id'], 'classify', job['platform'])
    else:
        job_queue.set_platform_status(job['scan_id'], job['platform'], 'complete')
    return {'scored': len(items), 'relevant': relevant}


def _count_stage(scan_id, platform, stage):
    conn = db_connect()
    c = conn.cursor()
    c.execute(
        'SELECT COUNT(*) FROM hunter_raw_items WHERE scan_id = ? AND platform = ? AND stage = ?',
        (scan_id, platform, stage),
    )
    count = c.fetchone()[0]
    conn.close()
    return count


# ===== CLASSIFICATION =====

def keyword_classification(text):
    lowered = f' {(text or "").lower()} '
    for classification, phrases in CLASSIFICATION_KEYWORDS:
        if any(phrase in lowered for phrase in phrases):
            return classification
    return 'other'


def classify_feedback(title, content):
    """Return classification, confidence, sentiment, urgency and tags for one item."""
    text = f'{title or ""}\n{content or ""}'.strip()
    if llm.is_enabled() and text:
        try:
            data = llm.complete_json(CLASSIFY_PROMPT, text[:4000], max_tokens=200)
            classification = data.get('classification')
            if classification not in CLASSIFICATIONS:
                classification = 'other'
            sentiment = max(-1.0, min(1.0, float(data.get('sentiment_score', 0))))
            tags = [str(t).lower()[:40] for t in (data.get('tags') or []) if t][:5]
            return {
                'classification': classification,
                'confidence': max(0.0, min(1.0, float(data.get('confidence', 0.5)))),
                'sentiment_score': round(sentiment, 2),
                'sentiment_label': sentiment_label(sentiment),
                'urgency_score': max(1, min(5, int(data.get('urgency_score', 1)))),
                'tags': tags,
            }
        except (llm.LLMError, TypeError, ValueError) as exc:
            logger.warning('LLM classification failed, using keywords: %s', exc)

    sentiment = analyze_sentiment(text)
    classification = keyword_classification(text)
    return {
        'classification': classification,
        'confidence': 0.5 if classification != 'other' else 0.3,
        'sentiment_score': sentiment['score'],
        'sentiment_label': sentiment['label'],
        'urgency_score': URGENCY_BY_CLASSIFICATION[classification],
        'tags': list(dict.fromkeys(tokenize(text)))[:3],
    }


def upsert_discovered_feedback(item, result):
    """Write a classified item into discovered_feedback; returns the row id."""
    now = utcnow_iso()
    conn = db_connect()
    c = conn.cursor()
    c.execute(
        '''
        INSERT INTO discovered_feedback (
            project_id, platform, platform_id, platform_url, title, content, author_username,
            discovered_at, processing_status, classification, classification_confidence,
            sentiment_score, sentiment_label, urgency_score, tags, relevance_score,
            relevance_reasoning, needs_review, processed_at, created_at
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, 'complete', ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT (project_id, platform, platform_id) DO UPDATE SET
            classification = excluded.classification,
            classification_confidence = excluded.classification_confidence,
            sentiment_score = excluded.sentiment_score,
            sentiment_label = excluded.sentiment_label,
            urgency_score = excluded.urgency_score,
            tags = excluded.tags,
            relevance_score = excluded.relevance_score,
            relevance_reasoning = excluded.relevance_reasoning,
            processing_status = 'complete',
            processed_at = excluded.processed_at
        ''',
        (
            item['project_id'],
            item['platform'],
            item['external_id'],
            item.get('external_url'),
            item.get('title'),
            item['content'],
            item.get('author'),
            item.get('posted_at') or now,
            result['classification'],
            result['confidence'],
            result['sentiment_score'],
            result['sentiment_label'],
            result['urgency_score'],
            to_json(result['tags']),
            item.get('relevance_score'),
            item.get('relevance_reason'),
            int(item.get('relevance_decision') == 'human_review'),
            now,
            now,
        ),
    )
    c.execute(
        'SELECT id FROM discovered_feedback WHERE project_id = ? AND platform = ? AND platform_id = ?',
        (item['project_id'], item['platform'], item['external_id']),
    )
    feedback_id = c.fetchone()['id']
    c.execute(
        "UPDATE hunter_raw_items SET classification = ?, stage = 'stored' WHERE id = ?",
        (result['classification'], item['id']),
    )
    conn.commit()
    conn.close()
    return feedback_id


def run_classify(job):
    batch_size = current_app.config.get('HUNTER_CLASSIFY_BATCH', 5)
    job_queue.set_platform_status(job['scan_id'], job['platform'], 'classifying')
    conn = db_connect()
    c = conn.cursor()
    c.execute(
        '''
        SELECT * FROM hunter_raw_items
        WHERE scan_id = ? AND platform = ? AND stage = 'filtered'
        ORDER BY relevance_score DESC, id LIMIT ?
        ''',
        (job['scan_id'], job['platform'], batch_size),
    )
    items = rows_to_dicts(c.fetchall())
    conn.close()

    for item in items:
        result = classify_feedback(item.get('title'), item['content'])
        feedback_id = upsert_discovered_feedback(item, result)
        competitive.analyze_text_for_competitors(
            job['project_id'],
            f"{item.get('title') or ''}. {item['content']}",
            feedback_id=feedback_id,
        )
    job_queue.increment_scan_counter(job['scan_id'], 'total_classified', len(items))

    if _count_stage(job['scan_id'], job['platform'], 'filtered'):
        job_queue.enqueue_job(job['scan_id'], job['project_id'], 'classify', job['platform'])
    else:
        job_queue.set_platform_status(job['scan_id'], job['platform'], 'complete')
    return {'classified': len(items)}


JOB_RUNNERS = {
    'discovery': run_discovery,
    'relevance': run_relevance,
    'classify': run_classify,
}


def process_next_job(job_type, worker_id):
    """Claim and run one job. Failures go back to the queue through fail_job."""
    job = job_queue.claim_job(job_type, worker_id)
    if not job:
        return {'processed': False, 'message': f'No {job_type} jobs pending'}

    try:
        result = JOB_RUNNERS[job_type](job)
    except Exception as exc:
        logger.exception('Hunter %s job %s raised', job_type, job['id'])
        status = job_queue.fail_job(job['id'], exc)
        if status == 'failed':
            job_queue.set_platform_status(job['scan_id'], job['platform'], 'failed')
            job_queue.check_scan_completion(job['scan_id'])
        return {'processed': True, 'job_id': job['id'], 'success': False, 'error': str(exc), 'job_status': status}

    job_queue.complete_job(job['id'])
    scan_status = job_queue.check_scan_completion(job['scan_id'])
    return {
        'processed': True,
        'job_id': job['id'],
        'success': True,
        'result': result,
        'scan_status': scan_status,
    }


# ===== FEED =====

FEED_ACTIONS = ('archive', 'promote', 'mark_reviewed')


def list_feed(project_id, classification=None, platform=None, needs_review=None,
              include_archived=False, limit=50, offset=0):
    query = 'SELECT * FROM discovered_feedback WHERE project_id = ?'
    params = [project_id]
    if not include_archived:
        query += ' AND is_archived = 0'
    if classification:
        query += ' AND classification = ?'
        params.append(classification)
    if platform:
        query += ' AND platform = ?'
        params.append(platform)
    if needs_review is not None:
        query += ' AND needs_review = ?'
        params.append(int(needs_review))
    query += ' ORDER BY urgency_score DESC, discovered_at DESC LIMIT ? OFFSET ?'
    params.extend([limit, offset])

    conn = db_connect()
    c = conn.cursor()
    c.execute(query, params)
    items = rows_to_dicts(c.fetchall(), json_fields=('tags',))
    c.execute(
        '''
        SELECT classification, COUNT(*) AS total FROM discovered_feedback
        WHERE project_id = ? AND is_archived = 0 AND classification IS NOT NULL
        GROUP BY classification
        ''',
        (project_id,),
    )
    counts = {row['classification']: row['total'] for row in c.fetchall()}
    conn.close()

    for item in items:
        item['needs_review'] = bool(item['needs_review'])
        item['is_archived'] = bool(item['is_archived'])
    return items, counts


def get_feedback_item(feedback_id):
    conn = db_connect()
    c = conn.cursor()
    c.execute('SELECT * FROM discovered_feedback WHERE id = ?', (feedback_id,))
    item = row_to_dict(c.fetchone(), json_fields=('tags',))
    conn.close()
    if not item:
        abort(404, description='Feedback item not found')
    return item


POST_CATEGORY_BY_CLASSIFICATION = {
    'bug': 'bug',
    'feature_request': 'feature_request',
    'usability_issue': 'improvement',
    'question': 'question',
}


def apply_feed_action(item, action, user_id=None):
    """Archive, review or promote a discovered item. Returns (item, post)."""
    if action not in FEED_ACTIONS:
        abort(400, description=f"action must be one of: {', '.join(FEED_ACTIONS)}")

    post = None
    if action == 'archive':
        fields = {'is_archived': 1}
    elif action == 'mark_reviewed':
        fields = {'needs_review': 0}
    else:
        if item['post_id']:
            abort(409, description='This item was already promoted to the board')
        title = clean_text(item.get('title') or item['content'], board.MAX_TITLE_LENGTH)
        cleaned, errors = board.validate_post_input({
            'title': title,
            'description': f"{item['content'][:board.MAX_DESCRIPTION_LENGTH - 200]}\n\nSource: {item.get('platform_url') or item['platform']}",
            'category': POST_CATEGORY_BY_CLASSIFICATION.get(item.get('classification'), 'other'),
        })
        if errors:
            abort(400, description='; '.join(errors.values()))
        post, _ = board.create_post(
            item['project_id'],
            cleaned,
            author_id=user_id,
            author_name=item.get('author_username'),
            source='hunter',
        )
        fields = {'post_id': post['id'], 'needs_review': 0}

    conn = db_connect()
    c = conn.cursor()
    assignments = ', '.join(f'{name} = ?' for name in fields)
    c.execute(f'UPDATE discovered_feedback SET {assignments} WHERE id = ?', list(fields.values()) + [item['id']])
    conn.commit()
    conn.close()
    logger.info('Feed item %s: %s', item['id'], action)
    return get_feedback_item(item['id']), post


# ===== BACKLOG PROCESSING =====

def process_pending_feedback(batch_size=None):
    """Classify discovered_feedback rows still marked pending (e.g. imported items)."""
    if batch_size is None:
        batch_size = current_app.config.get('PROCESS_FEEDBACK_BATCH', 10)
    conn = db_connect()
    c = conn.cursor()
    c.execute(
        "SELECT * FROM discovered_feedback WHERE processing_status = 'pending' ORDER BY created_at LIMIT ?",
        (batch_size,),
    )
    items = rows_to_dicts(c.fetchall())
    for item in items:
        c.execute("UPDATE discovered_feedback SET processing_status = 'processing' WHERE id = ?", (item['id'],))
    conn.commit()
    conn.close()

    for item in items:
        result = classify_feedback(item.get('title'), item['content'])
        conn = db_connect()
        c = conn.cursor()
        c.execute(
            '''
            UPDATE discovered_feedback
            SET processing_status = 'complete', classification = ?, classification_confidence = ?,
                sentiment_score = ?, sentiment_label = ?, urgency_score = ?, tags = ?, processed_at = ?
            WHERE id = ?
            ''',
            (
                result['classification'],
                result['confidence'],
                result['sentiment_score'],
                result['sentiment_label'],
                result['urgency_score'],
                to_json(result['tags']),
                utcnow_iso(),
                item['id'],
            ),
        )
        conn.commit()
        conn.close()
        competitive.analyze_text_for_competitors(item['project_id'], item['content'], feedback_id=item['id'])

    logger.info('Processed %s pending discovered feedback items', len(items))
    return {'processed': len(items), 'batch_size': batch_size}
