"""Authorization helpers: project roles, API keys, admin and cron guards."""

import hashlib
import hmac
import secrets
from functools import wraps

from flask import abort, current_app, g, request
from flask_login import current_user

from db import db_connect, row_to_dict, utcnow_iso

API_KEY_PREFIX = 'sl_'
WRITE_ROLES = ('owner', 'admin')


def generate_api_key():
    """Return (raw_key, display_prefix, sha256_hash)."""
    raw = API_KEY_PREFIX + secrets.token_urlsafe(32)
    return raw, raw[:10], hash_api_key(raw)


def hash_api_key(raw_key):
    return hashlib.sha256((raw_key or '').encode('utf-8')).hexdigest()


def project_role(conn, project_id, user_id):
    c = conn.cursor()
    c.execute('SELECT owner_id FROM projects WHERE id = ?', (project_id,))
    row = c.fetchone()
    if not row:
        return None
    if row['owner_id'] == user_id:
        return 'owner'
    c.execute(
        'SELECT role FROM project_members WHERE project_id = ? AND user_id = ?',
        (project_id, user_id),
    )
    member = c.fetchone()
    return member['role'] if member else None


def require_project_access(project_id, roles=None):
    """Load a project for the logged in user or abort with 404/403.

    ``roles`` restricts which project roles may proceed; admins of the
    platform always pass.
    """
    conn = db_connect()
    c = conn.cursor()
    c.execute('SELECT * FROM projects WHERE id = ?', (project_id,))
    project = row_to_dict(c.fetchone())
    if not project:
        conn.close()
        abort(404, description='Project not found')

    role = project_role(conn, project_id, current_user.id)
    conn.close()

    if current_user.is_admin and role is None:
        role = 'owner'
    if role is None:
        abort(403, description='You do not have access to this project')
    if roles and role not in roles:
        abort(403, description='Insufficient project permissions')

    project['role'] = role
    return project


def admin_required(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        if not current_user.is_authenticated:
            abort(401, description='Authentication required')
        if not current_user.is_admin:
            abort(403, description='Admin access required')
        return view(*args, **kwargs)

    return wrapper


def authenticate_api_key(raw_key):
    """Resolve an API key to its row, bumping usage counters."""
    if not raw_key or not raw_key.startswith(API_KEY_PREFIX):
        return None
    conn = db_connect()
    c = conn.cursor()
    c.execute(
        'SELECT * FROM api_keys WHERE key_hash = ? AND revoked_at IS NULL',
        (hash_api_key(raw_key),),
    )
    key_row = row_to_dict(c.fetchone())
    if key_row:
        c.execute(
            'UPDATE api_keys SET usage_count = usage_count + 1, last_used_at = ? WHERE id = ?',
            (utcnow_iso(), key_row['id']),
        )
        conn.commit()
    conn.close()
    return key_row


def api_key_required(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        key_row = authenticate_api_key(request.headers.get('X-API-Key'))
        if not key_row:
            abort(401, description='Invalid or missing API key')
        g.api_project_id = key_row['project_id']
        g.api_key_id = key_row['id']
        return view(*args, **kwargs)

    return wrapper


def cron_secret_required(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        secret = current_app.config.get('CRON_SECRET')
        if not secret:
            abort(503, description='CRON_SECRET is not configured')
        header = request.headers.get('Authorization', '')
        supplied = header[7:] if header.startswith('Bearer ') else request.args.get('secret', '')
        if not hmac.compare_digest(supplied.encode('utf-8'), secret.encode('utf-8')):
            abort(401, description='Unauthorized')
        return view(*args, **kwargs)

    return wrapper
