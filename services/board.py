"""Feedback board operations shared by the dashboard, public board, SDK and hunter."""

import hashlib
import logging

from flask import abort

from db import db_connect, parse_ts, row_to_dict, rows_to_dicts, utcnow, utcnow_iso
from services.sentiment import analyze_sentiment
from services.text import clean_text, text_similarity
from services.webhooks import emit_event

logger = logging.getLogger(__name__)

POST_CATEGORIES = ('bug', 'feature_request', 'improvement', 'question', 'other')
POST_STATUSES = ('open', 'planned', 'in_progress', 'done', 'declined')
POST_SORTS = ('votes', 'newest', 'trending')
MAX_TITLE_LENGTH = 200
MIN_TITLE_LENGTH = 3
MAX_DESCRIPTION_LENGTH = 5000
MAX_COMMENT_LENGTH = 2000
SIMILARITY_THRESHOLD = 0.5


def validate_post_input(data):
    """Return (cleaned, errors) for post create payloads."""
    errors = {}
    title = clean_text(data.get('title'))
    description = clean_text(data.get('description'))
    category = (data.get('category') or '').strip() or None

    if len(title) < MIN_TITLE_LENGTH or len(title) > MAX_TITLE_LENGTH:
        errors['title'] = f'Title must be {MIN_TITLE_LENGTH}-{MAX_TITLE_LENGTH} characters.'
    if len(description) > MAX_DESCRIPTION_LENGTH:
        errors['description'] = f'Description must be at most {MAX_DESCRIPTION_LENGTH} characters.'
    if category and category not in POST_CATEGORIES:
        errors['category'] = f"Category must be one of: {', '.join(POST_CATEGORIES)}."

    return {'title': title, 'description': description, 'category': category}, errors


def get_post(post_id):
    conn = db_connect()
    c = conn.cursor()
    c.execute('SELECT * FROM posts WHERE id = ?', (post_id,))
    post = row_to_dict(c.fetchone())
    conn.close()
    if not post:
        abort(404, description='Post not found')
    return post


def find_similar_posts(project_id, text, exclude_id=None, threshold=SIMILARITY_THRESHOLD, limit=5):
    conn = db_connect()
    c = conn.cursor()
    c.execute(
        '''
        SELECT id, title, description, status, vote_count
        FROM posts
        WHERE project_id = ? AND duplicate_of IS NULL
        ORDER BY created_at DESC
        LIMIT 500
        ''',
        (project_id,),
    )
    candidates = rows_to_dicts(c.fetchall())
    conn.close()

    matches = []
    for candidate in candidates:
        if exclude_id and candidate['id'] == exclude_id:
            continue
        score = text_similarity(text, f"{candidate['title']} {candidate['description']}")
        if score >= threshold:
            candidate['similarity'] = round(score, 2)
            matches.append(candidate)

    matches.sort(key=lambda m: (-m['similarity'], -m['vote_count']))
    return matches[:limit]


def create_post(project_id, cleaned, *, author_id=None, author_name=None, author_email=None, source='board'):
    """Insert a validated post, emit ``post.created`` and return (post, similar_posts)."""
    text = f"{cleaned['title']} {cleaned['description']}"
    similar = find_similar_posts(project_id, text)
    sentiment = analyze_sentiment(text)
    now = utcnow_iso()

    conn = db_connect()
    c = conn.cursor()
    c.execute(
        '''
        INSERT INTO posts (
            project_id, title, description, category, status, source,
            author_id, author_name, author_email, sentiment_score, created_at, updated_at
        )
        VALUES (?, ?, ?, ?, 'open', ?, ?, ?, ?, ?, ?, ?)
        ''',
        (
            project_id,
            cleaned['title'],
            cleaned['description'],
            cleaned['category'],
            source,
            author_id,
            clean_text(author_name, 120) or None,
            (author_email or '').strip().lower() or None,
            sentiment['score'],
            now,
            now,
        ),
    )
    post_id = c.lastrowid
    conn.commit()
    c.execute('SELECT * FROM posts WHERE id = ?', (post_id,))
    post = row_to_dict(c.fetchone())
    conn.close()

    logger.info('Post %s created in project %s via %s', post_id, project_id, source)
    emit_event(project_id, 'post.created', post)
    return post, similar


def update_post_status(post, status):
    if status not in POST_STATUSES:
        abort(400, description=f"Status must be one of: {', '.join(POST_STATUSES)}")
    conn = db_connect()
    c = conn.cursor()
    c.execute(
        'UPDATE posts SET status = ?, updated_at = ? WHERE id = ?',
        (status, utcnow_iso(), post['id']),
    )
    conn.commit()
    conn.close()
    if status != post['status']:
        emit_event(post['project_id'], 'post.status_changed', {
            'post_id': post['id'],
            'title': post['title'],
            'old_status': post['status'],
            'new_status': status,
        })
    post['status'] = status
    return post


def list_posts(project_id, status=None, category=None, sort='votes', limit=50, offset=0, include_duplicates=False):
    clauses = ['project_id = ?']
    params = [project_id]
    if status:
        clauses.append('status = ?')
        params.append(status)
    if category:
        clauses.append('category = ?')
        params.append(category)
    if not include_duplicates:
        clauses.append('duplicate_of IS NULL')

    order = 'vote_count DESC, created_at DESC' if sort == 'votes' else 'created_at DESC'
    conn = db_connect()
    c = conn.cursor()
    c.execute(f"SELECT COUNT(*) FROM posts WHERE {' AND '.join(clauses)}", params)
    total = c.fetchone()[0]

    if sort == 'trending':
        c.execute(f"SELECT * FROM posts WHERE {' AND '.join(clauses)}", params)
        posts = rows_to_dicts(c.fetchall())
        posts.sort(key=trending_score, reverse=True)
        posts = posts[offset:offset + limit]
    else:
        c.execute(
            f"SELECT * FROM posts WHERE {' AND '.join(clauses)} ORDER BY {order} LIMIT ? OFFSET ?",
            params + [limit, offset],
        )
        posts = rows_to_dicts(c.fetchall())
    conn.close()
    return posts, total


def trending_score(post):
    """Votes and comments decayed by age in hours."""
    created = parse_ts(post['created_at']) or utcnow()
    age_hours = max(0.0, (utcnow() - created).total_seconds() / 3600.0)
    engagement = post['vote_count'] + 0.5 * post['comment_count']
    return engagement / ((age_hours + 2) ** 1.5)


def voter_key_for(user_id=None, remote_addr=None, user_agent=None):
    if user_id:
        return f'user:{user_id}'
    fingerprint = f"{remote_addr or ''}|{user_agent or ''}"
    return 'anon:' + hashlib.sha256(fingerprint.encode('utf-8')).hexdigest()[:32]


def add_vote(post, voter_key, user_id=None):
    """Record a vote; returns (created, vote_count)."""
    conn = db_connect()
    c = conn.cursor()
    c.execute(
        'INSERT OR IGNORE INTO votes (post_id, voter_key, user_id, created_at) VALUES (?, ?, ?, ?)',
        (post['id'], voter_key, user_id, utcnow_iso()),
    )
    created = c.rowcount == 1
    vote_count = _sync_vote_count(c, post['id'])
    conn.commit()
    conn.close()
    if created:
        emit_event(post['project_id'], 'vote.created', {'post_id': post['id'], 'vote_count': vote_count})
    return created, vote_count


def remove_vote(post, voter_key):
    conn = db_connect()
    c = conn.cursor()
    c.execute('DELETE FROM votes WHERE post_id = ? AND voter_key = ?', (post['id'], voter_key))
    removed = c.rowcount == 1
    vote_count = _sync_vote_count(c, post['id'])
    conn.commit()
    conn.close()
    return removed, vote_count


def _sync_vote_count(c, post_id):
    c.execute(
        'UPDATE posts SET vote_count = (SELECT COUNT(*) FROM votes WHERE post_id = ?) WHERE id = ?',
        (post_id, post_id),
    )
    c.execute('SELECT vote_count FROM posts WHERE id = ?', (post_id,))
    return c.fetchone()[0]


def add_comment(post, body, author_id=None, author_name=None):
    body = clean_text(body)
    if not body or len(body) > MAX_COMMENT_LENGTH:
        abort(400, description=f'Comment must be 1-{MAX_COMMENT_LENGTH} characters')
    conn = db_connect()
    c = conn.cursor()
    c.execute(
        'INSERT INTO comments (post_id, author_id, author_name, body, created_at) VALUES (?, ?, ?, ?, ?)',
        (post['id'], author_id, clean_text(author_name, 120) or None, body, utcnow_iso()),
    )
    comment_id = c.lastrowid
    _sync_comment_count(c, post['id'])
    conn.commit()
    c.execute('SELECT * FROM comments WHERE id = ?', (comment_id,))
    comment = row_to_dict(c.fetchone())
    conn.close()
    emit_event(post['project_id'], 'comment.created', {'post_id': post['id'], 'comment': comment})
    return comment


def delete_comment(comment_id, post_id):
    conn = db_connect()
    c = conn.cursor()
    c.execute('DELETE FROM comments WHERE id = ?', (comment_id,))
    _sync_comment_count(c, post_id)
    conn.commit()
    conn.close()


def _sync_comment_count(c, post_id):
    c.execute(
        'UPDATE posts SET comment_count = (SELECT COUNT(*) FROM comments WHERE post_id = ?) WHERE id = ?',
        (post_id, post_id),
    )


def group_roadmap(posts):
    roadmap = {status: [] for status in ('planned', 'in_progress', 'done')}
    for post in posts:
        if post['status'] in roadmap:
            roadmap[post['status']].append(post)
    return roadmap
