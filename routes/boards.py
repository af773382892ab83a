"""
Feedback boards: projects, members, API keys, posts, votes and comments.
Also hosts the public board, the embeddable widget loader and the /api/v1 SDK.
"""

import re

from flask import Blueprint, abort, current_app, g, jsonify, render_template, request, url_for
from flask_limiter.util import get_remote_address
from flask_login import current_user, login_required

from db import db_connect, row_to_dict, rows_to_dicts, utcnow_iso
from extensions import limiter
from services import board
from services.access import (
    WRITE_ROLES,
    api_key_required,
    authenticate_api_key,
    generate_api_key,
    project_role,
    require_project_access,
)
from services.text import clean_text
from services.webhooks import emit_event

boards_bp = Blueprint('boards', __name__, url_prefix='/api')
public_bp = Blueprint('public', __name__)
sdk_bp = Blueprint('sdk', __name__, url_prefix='/api/v1')

SLUG_RE = re.compile(r'^[a-z0-9-]{3,50}$')
MAX_PROJECT_NAME_LENGTH = 100
MEMBER_ROLES = ('admin', 'member')
WIDGET_POSITIONS = ('bottom-right', 'bottom-left', 'top-right', 'top-left')
WIDGET_SIZES = ('small', 'medium', 'large')
HEX_COLOR_RE = re.compile(r'^#[0-9a-fA-F]{3,8}$')
EMBED_RATE_LIMIT = '100 per minute'


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        abort(400, description='Request body must be a JSON object')
    return data


def _paging():
    limit = min(max(request.args.get('limit', 50, type=int), 1), 100)
    offset = max(request.args.get('offset', 0, type=int), 0)
    return limit, offset


def _post_for_user(post_id, roles=None):
    post = board.get_post(post_id)
    project = require_project_access(post['project_id'], roles)
    return post, project


# ===== PROJECTS =====

@boards_bp.route('/projects', methods=['POST'])
@login_required
def create_project():
    data = _json_body()
    name = clean_text(data.get('name'))
    slug = (data.get('slug') or '').strip().lower()
    description = clean_text(data.get('description'), 1000)

    if not name or len(name) > MAX_PROJECT_NAME_LENGTH:
        abort(400, description=f'Project name must be 1-{MAX_PROJECT_NAME_LENGTH} characters')
    if not SLUG_RE.match(slug):
        abort(400, description='Slug must be 3-50 characters of lowercase letters, digits or hyphens')

    conn = db_connect()
    c = conn.cursor()
    c.execute('SELECT id FROM projects WHERE slug = ?', (slug,))
    if c.fetchone():
        conn.close()
        abort(409, description='That slug is already taken')

    now = utcnow_iso()
    c.execute(
        '''
        INSERT INTO projects (name, slug, description, owner_id, is_private, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        ''',
        (name, slug, description or None, current_user.id, int(bool(data.get('is_private'))), now, now),
    )
    project_id = c.lastrowid
    c.execute(
        "INSERT INTO billing_profiles (project_id, plan, updated_at) VALUES (?, 'free', ?)",
        (project_id, now),
    )
    conn.commit()
    c.execute('SELECT * FROM projects WHERE id = ?', (project_id,))
    project = row_to_dict(c.fetchone())
    conn.close()

    current_app.logger.info('Project %s (%s) created by user %s', project_id, slug, current_user.id)
    project.update({'role': 'owner', 'plan': 'free'})
    return jsonify({'project': project}), 201


@boards_bp.route('/projects', methods=['GET'])
@login_required
def list_projects():
    conn = db_connect()
    c = conn.cursor()
    c.execute(
        '''
        SELECT p.*, COALESCE(b.plan, 'free') AS plan,
               CASE WHEN p.owner_id = ? THEN 'owner' ELSE m.role END AS role,
               (SELECT COUNT(*) FROM posts WHERE project_id = p.id) AS post_count
        FROM projects p
        LEFT JOIN billing_profiles b ON b.project_id = p.id
        LEFT JOIN project_members m ON m.project_id = p.id AND m.user_id = ?
        WHERE p.owner_id = ? OR m.user_id IS NOT NULL
        ORDER BY p.created_at DESC
        ''',
        (current_user.id, current_user.id, current_user.id),
    )
    projects = rows_to_dicts(c.fetchall())
    conn.close()
    return jsonify({'projects': projects})


@boards_bp.route('/projects/<int:project_id>', methods=['GET'])
@login_required
def get_project(project_id):
    project = require_project_access(project_id)
    conn = db_connect()
    c = conn.cursor()
    c.execute('SELECT plan FROM billing_profiles WHERE project_id = ?', (project_id,))
    row = c.fetchone()
    conn.close()
    project['plan'] = row['plan'] if row else 'free'
    return jsonify({'project': project})


@boards_bp.route('/projects/<int:project_id>', methods=['PATCH'])
@login_required
def update_project(project_id):
    require_project_access(project_id, WRITE_ROLES)
    data = _json_body()
    updates = {}
    if 'name' in data:
        name = clean_text(data.get('name'))
        if not name or len(name) > MAX_PROJECT_NAME_LENGTH:
            abort(400, description=f'Project name must be 1-{MAX_PROJECT_NAME_LENGTH} characters')
        updates['name'] = name
    if 'description' in data:
        updates['description'] = clean_text(data.get('description'), 1000) or None
    if 'is_private' in data:
        updates['is_private'] = int(bool(data.get('is_private')))
    if not updates:
        abort(400, description='No updatable fields supplied')

    updates['updated_at'] = utcnow_iso()
    assignments = ', '.join(f'{column} = ?' for column in updates)
    conn = db_connect()
    c = conn.cursor()
    c.execute(f'UPDATE projects SET {assignments} WHERE id = ?', list(updates.values()) + [project_id])
    conn.commit()
    c.execute('SELECT * FROM projects WHERE id = ?', (project_id,))
    project = row_to_dict(c.fetchone())
    conn.close()
    return jsonify({'project': project})


@boards_bp.route('/projects/<int:project_id>', methods=['DELETE'])
@login_required
def delete_project(project_id):
    require_project_access(project_id, ('owner',))
    conn = db_connect()
    c = conn.cursor()
    c.execute('DELETE FROM projects WHERE id = ?', (project_id,))
    conn.commit()
    conn.close()
    current_app.logger.info('Project %s deleted by user %s', project_id, current_user.id)
    return '', 204


# ===== MEMBERS =====

@boards_bp.route('/projects/<int:project_id>/members', methods=['GET'])
@login_required
def list_members(project_id):
    project = require_project_access(project_id)
    conn = db_connect()
    c = conn.cursor()
    c.execute(
        '''
        SELECT u.id AS user_id, u.email, u.name, m.role, m.created_at
        FROM project_members m
        JOIN users u ON u.id = m.user_id
        WHERE m.project_id = ?
        ORDER BY m.created_at
        ''',
        (project_id,),
    )
    members = rows_to_dicts(c.fetchall())
    c.execute('SELECT id AS user_id, email, name FROM users WHERE id = ?', (project['owner_id'],))
    owner = row_to_dict(c.fetchone())
    conn.close()
    if owner:
        owner['role'] = 'owner'
        members.insert(0, owner)
    return jsonify({'members': members})


@boards_bp.route('/projects/<int:project_id>/members', methods=['POST'])
@login_required
def add_member(project_id):
    project = require_project_access(project_id, ('owner',))
    data = _json_body()
    email = (data.get('email') or '').strip().lower()
    role = data.get('role') or 'member'
    if role not in MEMBER_ROLES:
        abort(400, description=f"Role must be one of: {', '.join(MEMBER_ROLES)}")

    conn = db_connect()
    c = conn.cursor()
    c.execute('SELECT id, email, name FROM users WHERE email = ?', (email,))
    user = row_to_dict(c.fetchone())
    if not user:
        conn.close()
        abort(404, description='No user with that email address')
    if user['id'] == project['owner_id']:
        conn.close()
        abort(409, description='The project owner is already a member')
    if project_role(conn, project_id, user['id']):
        conn.close()
        abort(409, description='User is already a member of this project')

    c.execute(
        'INSERT INTO project_members (project_id, user_id, role, created_at) VALUES (?, ?, ?, ?)',
        (project_id, user['id'], role, utcnow_iso()),
    )
    conn.commit()
    conn.close()
    return jsonify({'member': {'user_id': user['id'], 'email': user['email'], 'name': user['name'], 'role': role}}), 201


@boards_bp.route('/projects/<int:project_id>/members/<int:user_id>', methods=['DELETE'])
@login_required
def remove_member(project_id, user_id):
    require_project_access(project_id, ('owner',))
    conn = db_connect()
    c = conn.cursor()
    c.execute('DELETE FROM project_members WHERE project_id = ? AND user_id = ?', (project_id, user_id))
    removed = c.rowcount
    conn.commit()
    conn.close()
    if not removed:
        abort(404, description='Member not found')
    return '', 204


# ===== API KEYS =====

@boards_bp.route('/projects/<int:project_id>/api-keys', methods=['GET'])
@login_required
def list_api_keys(project_id):
    require_project_access(project_id, WRITE_ROLES)
    conn = db_connect()
    c = conn.cursor()
    c.execute(
        '''
        SELECT id, name, key_prefix, usage_count, last_used_at, revoked_at, created_at
        FROM api_keys WHERE project_id = ? ORDER BY created_at DESC
        ''',
        (project_id,),
    )
    keys = rows_to_dicts(c.fetchall())
    conn.close()
    return jsonify({'api_keys': keys})


@boards_bp.route('/projects/<int:project_id>/api-keys', methods=['POST'])
@login_required
def create_api_key(project_id):
    require_project_access(project_id, WRITE_ROLES)
    data = request.get_json(silent=True) or {}
    name = clean_text(data.get('name'), 80) or 'Default key'
    raw_key, prefix, key_hash = generate_api_key()

    conn = db_connect()
    c = conn.cursor()
    c.execute(
        'INSERT INTO api_keys (project_id, name, key_prefix, key_hash, created_at) VALUES (?, ?, ?, ?, ?)',
        (project_id, name, prefix, key_hash, utcnow_iso()),
    )
    key_id = c.lastrowid
    conn.commit()
    conn.close()
    return jsonify({'api_key': {'id': key_id, 'name': name, 'key_prefix': prefix, 'key': raw_key}}), 201


@boards_bp.route('/projects/<int:project_id>/api-keys/<int:key_id>', methods=['DELETE'])
@login_required
def revoke_api_key(project_id, key_id):
    require_project_access(project_id, WRITE_ROLES)
    conn = db_connect()
    c = conn.cursor()
    c.execute(
        'UPDATE api_keys SET revoked_at = ? WHERE id = ? AND project_id = ? AND revoked_at IS NULL',
        (utcnow_iso(), key_id, project_id),
    )
    revoked = c.rowcount
    conn.commit()
    conn.close()
    if not revoked:
        abort(404, description='API key not found')
    return '', 204


# ===== POSTS =====

@boards_bp.route('/projects/<int:project_id>/posts', methods=['GET'])
@login_required
def list_posts(project_id):
    require_project_access(project_id)
    status = request.args.get('status')
    category = request.args.get('category')
    sort = request.args.get('sort', 'votes')
    if status and status not in board.POST_STATUSES:
        abort(400, description='Unknown status filter')
    if category and category not in board.POST_CATEGORIES:
        abort(400, description='Unknown category filter')
    if sort not in board.POST_SORTS:
        abort(400, description=f"Sort must be one of: {', '.join(board.POST_SORTS)}")
    limit, offset = _paging()
    posts, total = board.list_posts(project_id, status, category, sort, limit, offset)
    return jsonify({'posts': posts, 'total': total, 'limit': limit, 'offset': offset})


@boards_bp.route('/projects/<int:project_id>/posts', methods=['POST'])
@login_required
@limiter.limit('60 per hour')
def create_post(project_id):
    require_project_access(project_id)
    cleaned, errors = board.validate_post_input(_json_body())
    if errors:
        return jsonify({'error': 'Validation failed', 'fields': errors}), 400
    post, similar = board.create_post(
        project_id,
        cleaned,
        author_id=current_user.id,
        author_name=current_user.name,
        author_email=current_user.email,
    )
    return jsonify({'post': post, 'similar_posts': similar}), 201


@boards_bp.route('/projects/<int:project_id>/posts/similar', methods=['GET'])
@login_required
def similar_posts(project_id):
    require_project_access(project_id)
    text = clean_text(request.args.get('q') or request.args.get('title'))
    if len(text) < 3:
        abort(400, description='Query must be at least 3 characters')
    return jsonify({'similar_posts': board.find_similar_posts(project_id, text)})


@boards_bp.route('/posts/<int:post_id>', methods=['GET'])
@login_required
def get_post(post_id):
    post, _ = _post_for_user(post_id)
    conn = db_connect()
    c = conn.cursor()
    c.execute('SELECT * FROM comments WHERE post_id = ? ORDER BY created_at', (post_id,))
    post['comments'] = rows_to_dicts(c.fetchall())
    c.execute('SELECT * FROM post_priority_scores WHERE post_id = ?', (post_id,))
    post['priority'] = row_to_dict(c.fetchone(), ('scores',))
    c.execute(
        'SELECT 1 FROM votes WHERE post_id = ? AND voter_key = ?',
        (post_id, board.voter_key_for(current_user.id)),
    )
    post['has_voted'] = c.fetchone() is not None
    conn.close()
    return jsonify({'post': post})


@boards_bp.route('/posts/<int:post_id>', methods=['PATCH'])
@login_required
def update_post(post_id):
    post, _ = _post_for_user(post_id, WRITE_ROLES)
    data = _json_body()

    if 'status' in data:
        post = board.update_post_status(post, data.get('status'))

    edits = {}
    if 'title' in data or 'description' in data or 'category' in data:
        merged = {
            'title': data.get('title', post['title']),
            'description': data.get('description', post['description']),
            'category': data.get('category', post['category']),
        }
        cleaned, errors = board.validate_post_input(merged)
        if errors:
            return jsonify({'error': 'Validation failed', 'fields': errors}), 400
        edits.update(cleaned)

    if edits:
        edits['updated_at'] = utcnow_iso()
        assignments = ', '.join(f'{column} = ?' for column in edits)
        conn = db_connect()
        c = conn.cursor()
        c.execute(f'UPDATE posts SET {assignments} WHERE id = ?', list(edits.values()) + [post_id])
        conn.commit()
        conn.close()
        post.update(edits)

    return jsonify({'post': post})


@boards_bp.route('/posts/<int:post_id>', methods=['DELETE'])
@login_required
def delete_post(post_id):
    post, _ = _post_for_user(post_id, WRITE_ROLES)
    conn = db_connect()
    c = conn.cursor()
    c.execute('DELETE FROM posts WHERE id = ?', (post_id,))
    conn.commit()
    conn.close()
    emit_event(post['project_id'], 'post.deleted', {'post_id': post_id, 'title': post['title']})
    return '', 204


@boards_bp.route('/posts/<int:post_id>/duplicate', methods=['POST'])
@login_required
def mark_duplicate(post_id):
    post, _ = _post_for_user(post_id, WRITE_ROLES)
    data = _json_body()
    original_id = data.get('duplicate_of')
    if not isinstance(original_id, int) or original_id == post_id:
        abort(400, description='duplicate_of must reference another post id')
    original = board.get_post(original_id)
    if original['project_id'] != post['project_id']:
        abort(400, description='Duplicate must reference a post in the same project')

    conn = db_connect()
    c = conn.cursor()
    c.execute(
        "UPDATE posts SET duplicate_of = ?, status = 'declined', updated_at = ? WHERE id = ?",
        (original_id, utcnow_iso(), post_id),
    )
    conn.commit()
    conn.close()
    post.update({'duplicate_of': original_id, 'status': 'declined'})
    return jsonify({'post': post})


# ===== VOTES & COMMENTS =====

@boards_bp.route('/posts/<int:post_id>/vote', methods=['POST'])
@login_required
@limiter.limit('120 per hour')
def vote(post_id):
    post, _ = _post_for_user(post_id)
    created, vote_count = board.add_vote(post, board.voter_key_for(current_user.id), current_user.id)
    if not created:
        return jsonify({'error': 'You have already voted for this post', 'vote_count': vote_count}), 409
    return jsonify({'voted': True, 'vote_count': vote_count}), 201


@boards_bp.route('/posts/<int:post_id>/vote', methods=['DELETE'])
@login_required
def unvote(post_id):
    post, _ = _post_for_user(post_id)
    removed, vote_count = board.remove_vote(post, board.voter_key_for(current_user.id))
    if not removed:
        abort(404, description='No vote to remove')
    return jsonify({'voted': False, 'vote_count': vote_count})


@boards_bp.route('/posts/<int:post_id>/comments', methods=['GET'])
@login_required
def list_comments(post_id):
    _post_for_user(post_id)
    conn = db_connect()
    c = conn.cursor()
    c.execute('SELECT * FROM comments WHERE post_id = ? ORDER BY created_at', (post_id,))
    comments = rows_to_dicts(c.fetchall())
    conn.close()
    return jsonify({'comments': comments})


@boards_bp.route('/posts/<int:post_id>/comments', methods=['POST'])
@login_required
@limiter.limit('60 per hour')
def create_comment(post_id):
    post, _ = _post_for_user(post_id)
    data = _json_body()
    comment = board.add_comment(post, data.get('body'), current_user.id, current_user.name or current_user.email)
    return jsonify({'comment': comment}), 201


@boards_bp.route('/comments/<int:comment_id>', methods=['DELETE'])
@login_required
def delete_comment(comment_id):
    conn = db_connect()
    c = conn.cursor()
    c.execute(
        '''
        SELECT cm.id, cm.author_id, cm.post_id, p.project_id
        FROM comments cm JOIN posts p ON p.id = cm.post_id
        WHERE cm.id = ?
        ''',
        (comment_id,),
    )
    comment = row_to_dict(c.fetchone())
    conn.close()
    if not comment:
        abort(404, description='Comment not found')

    project = require_project_access(comment['project_id'])
    if comment['author_id'] != current_user.id and project['role'] not in WRITE_ROLES:
        abort(403, description='Only the author or a project admin can delete this comment')
    board.delete_comment(comment_id, comment['post_id'])
    return '', 204


# ===== PUBLIC BOARD =====

def _public_project(slug):
    conn = db_connect()
    c = conn.cursor()
    c.execute(
        '''
        SELECT p.id, p.name, p.slug, p.description, p.is_private, COALESCE(b.plan, 'free') AS plan
        FROM projects p LEFT JOIN billing_profiles b ON b.project_id = p.id
        WHERE p.slug = ?
        ''',
        (slug,),
    )
    project = row_to_dict(c.fetchone())
    conn.close()
    if not project or project['is_private']:
        abort(404, description='Board not found')
    return project


@public_bp.route('/api/public/<slug>')
def public_board(slug):
    project = _public_project(slug)
    conn = db_connect()
    c = conn.cursor()
    c.execute(
        '''
        SELECT status, COUNT(*) AS count FROM posts
        WHERE project_id = ? AND duplicate_of IS NULL
        GROUP BY status
        ''',
        (project['id'],),
    )
    counts = {row['status']: row['count'] for row in c.fetchall()}
    conn.close()
    project.pop('is_private', None)
    return jsonify({'project': project, 'post_counts': counts, 'total_posts': sum(counts.values())})


@public_bp.route('/api/public/<slug>/posts')
def public_posts(slug):
    project = _public_project(slug)
    sort = request.args.get('sort', 'votes')
    if sort not in board.POST_SORTS:
        sort = 'votes'
    status = request.args.get('status')
    if status not in board.POST_STATUSES:
        status = None
    limit, offset = _paging()
    posts, total = board.list_posts(project['id'], status, request.args.get('category'), sort, limit, offset)
    for post in posts:
        post.pop('author_email', None)
    return jsonify({'posts': posts, 'total': total})


@public_bp.route('/api/public/<slug>/roadmap')
def public_roadmap(slug):
    project = _public_project(slug)
    posts, _ = board.list_posts(project['id'], sort='votes', limit=1000)
    roadmap = board.group_roadmap(posts)
    for column in roadmap.values():
        for post in column:
            post.pop('author_email', None)
    return jsonify({'project': {'name': project['name'], 'slug': project['slug']}, 'roadmap': roadmap})


def _submit_from_visitor(project, data, source):
    # Honeypot: bots fill the hidden "website" field
    if data.get('website'):
        current_app.logger.warning('Honeypot triggered on board %s', project['slug'])
        abort(400, description='Submission rejected')
    cleaned, errors = board.validate_post_input(data)
    if errors:
        return jsonify({'error': 'Validation failed', 'fields': errors}), 400
    post, _ = board.create_post(
        project['id'],
        cleaned,
        author_name=data.get('name'),
        author_email=data.get('email'),
        source=source,
    )
    post.pop('author_email', None)
    return jsonify({'post': post}), 201


@public_bp.route('/api/public/<slug>/posts', methods=['POST'])
@limiter.limit('10 per hour')
def public_submit(slug):
    project = _public_project(slug)
    data = _json_body()
    source = 'widget' if data.get('source') == 'widget' else 'board'
    return _submit_from_visitor(project, data, source)


@public_bp.route('/api/public/<slug>/posts/<int:post_id>/vote', methods=['POST'])
@limiter.limit('30 per hour')
def public_vote(slug, post_id):
    project = _public_project(slug)
    post = board.get_post(post_id)
    if post['project_id'] != project['id']:
        abort(404, description='Post not found')
    voter_key = board.voter_key_for(None, request.remote_addr, request.headers.get('User-Agent'))
    created, vote_count = board.add_vote(post, voter_key)
    if not created:
        return jsonify({'error': 'You have already voted for this post', 'vote_count': vote_count}), 409
    return jsonify({'voted': True, 'vote_count': vote_count}), 201


def _embed_site():
    """Rate limit key for the widget: the embedding site, else the caller's address."""
    return request.headers.get('Referer') or request.headers.get('Origin') or get_remote_address()


def _embed_project(key_row):
    conn = db_connect()
    c = conn.cursor()
    c.execute(
        '''
        SELECT p.id, p.name, p.slug, p.is_private, COALESCE(b.plan, 'free') AS plan
        FROM projects p LEFT JOIN billing_profiles b ON b.project_id = p.id
        WHERE p.id = ?
        ''',
        (key_row['project_id'],),
    )
    project = row_to_dict(c.fetchone())
    conn.close()
    return project


@public_bp.route('/embed/<key>.js')
@limiter.limit(EMBED_RATE_LIMIT, key_func=_embed_site)
def embed_script(key):
    """Widget loader script for an API key or a public project slug."""
    key_row = authenticate_api_key(key)
    if key_row:
        project = _embed_project(key_row)
        # private boards only accept submissions that carry the key
        submit_url = url_for('public.embed_submit', key=key, _external=True)
    else:
        project = _public_project(key)
        submit_url = url_for('public.public_submit', slug=project['slug'], _external=True)

    position = request.args.get('position', 'bottom-right')
    size = request.args.get('size', 'medium')
    color = request.args.get('color', '#6366f1')
    config = {
        'widgetId': f"signalsloop-{project['slug']}",
        'projectName': project['name'],
        'projectSlug': project['slug'],
        'submitUrl': submit_url,
        'position': position if position in WIDGET_POSITIONS else 'bottom-right',
        'size': size if size in WIDGET_SIZES else 'medium',
        'color': color if HEX_COLOR_RE.match(color) else '#6366f1',
        'text': clean_text(request.args.get('text'), 40) or 'Feedback',
        'theme': 'dark' if request.args.get('theme') == 'dark' else 'light',
        'showBranding': project['plan'] != 'pro',
    }
    body = render_template('embed/widget.js', config=config)
    return current_app.response_class(
        body,
        mimetype='application/javascript',
        headers={'Cache-Control': 'public, max-age=300'},
    )


@public_bp.route('/embed/<key>/posts', methods=['POST'])
@limiter.limit('10 per hour')
def embed_submit(key):
    """Widget submissions authorized by the embed's API key, private boards included."""
    key_row = authenticate_api_key(key)
    if not key_row:
        abort(401, description='Invalid or missing API key')
    return _submit_from_visitor(_embed_project(key_row), _json_body(), 'widget')


# ===== SDK (API key auth) =====

@sdk_bp.route('/feedback', methods=['POST'])
@api_key_required
@limiter.limit('300 per hour')
def sdk_submit_feedback():
    data = _json_body()
    cleaned, errors = board.validate_post_input(data)
    if errors:
        return jsonify({'error': 'Validation failed', 'fields': errors}), 400
    post, similar = board.create_post(
        g.api_project_id,
        cleaned,
        author_name=data.get('user_name'),
        author_email=data.get('user_email'),
        source='api',
    )
    return jsonify({'post': post, 'similar_posts': similar}), 201


@sdk_bp.route('/posts', methods=['GET'])
@api_key_required
def sdk_list_posts():
    status = request.args.get('status')
    if status and status not in board.POST_STATUSES:
        abort(400, description='Unknown status filter')
    sort = request.args.get('sort', 'votes')
    if sort not in board.POST_SORTS:
        abort(400, description='Unknown sort')
    limit, offset = _paging()
    posts, total = board.list_posts(g.api_project_id, status, request.args.get('category'), sort, limit, offset)
    return jsonify({'posts': posts, 'total': total})
