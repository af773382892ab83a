"""Project webhook management routes."""

import secrets
from urllib.parse import urlparse

from flask import Blueprint, abort, jsonify, request
from flask_login import login_required

from db import db_connect, row_to_dict, rows_to_dicts, to_json, utcnow_iso
from extensions import limiter
from services.access import WRITE_ROLES, require_project_access
from services.webhooks import WEBHOOK_EVENTS, deliver, is_public_host

webhooks_bp = Blueprint('webhooks', __name__, url_prefix='/api')

MAX_WEBHOOKS_PER_PROJECT = 10
MAX_URL_LENGTH = 2000


def _validate_url(url):
    parsed = urlparse(url or '')
    if parsed.scheme != 'https' or not parsed.netloc or len(url) > MAX_URL_LENGTH:
        abort(400, description='Webhook URL must be a valid https:// URL')
    if not is_public_host(parsed.hostname):
        abort(400, description='Webhook URL must point to a public host')
    return url


def _validate_events(events):
    if not isinstance(events, list) or not events:
        abort(400, description='events must be a non-empty list')
    unknown = [e for e in events if e not in WEBHOOK_EVENTS]
    if unknown:
        abort(400, description=f"Unknown events: {', '.join(map(str, unknown))}")
    return list(dict.fromkeys(events))


def _webhook_for_user(webhook_id):
    conn = db_connect()
    c = conn.cursor()
    c.execute('SELECT * FROM webhooks WHERE id = ?', (webhook_id,))
    webhook = row_to_dict(c.fetchone(), json_fields=('events',))
    conn.close()
    if not webhook:
        abort(404, description='Webhook not found')
    require_project_access(webhook['project_id'], WRITE_ROLES)
    return webhook


def _public(webhook, include_secret=False):
    data = dict(webhook)
    data['is_active'] = bool(data['is_active'])
    if not include_secret:
        data['secret'] = data['secret'][:8] + '...'
    return data


@webhooks_bp.route('/projects/<int:project_id>/webhooks', methods=['POST'])
@login_required
def create_webhook(project_id):
    require_project_access(project_id, WRITE_ROLES)
    data = request.get_json(silent=True) or {}
    url = _validate_url((data.get('url') or '').strip())
    events = _validate_events(data.get('events', list(WEBHOOK_EVENTS)))

    conn = db_connect()
    c = conn.cursor()
    c.execute('SELECT COUNT(*) FROM webhooks WHERE project_id = ?', (project_id,))
    if c.fetchone()[0] >= MAX_WEBHOOKS_PER_PROJECT:
        conn.close()
        abort(409, description=f'A project can have at most {MAX_WEBHOOKS_PER_PROJECT} webhooks')
    c.execute(
        '''
        INSERT INTO webhooks (project_id, url, events, secret, is_active, failure_count, created_at)
        VALUES (?, ?, ?, ?, 1, 0, ?)
        ''',
        (project_id, url, to_json(events), secrets.token_hex(32), utcnow_iso()),
    )
    webhook_id = c.lastrowid
    conn.commit()
    c.execute('SELECT * FROM webhooks WHERE id = ?', (webhook_id,))
    webhook = row_to_dict(c.fetchone(), json_fields=('events',))
    conn.close()
    # the signing secret is only shown in full once
    return jsonify({'webhook': _public(webhook, include_secret=True)}), 201


@webhooks_bp.route('/projects/<int:project_id>/webhooks')
@login_required
def list_webhooks(project_id):
    require_project_access(project_id, WRITE_ROLES)
    conn = db_connect()
    c = conn.cursor()
    c.execute('SELECT * FROM webhooks WHERE project_id = ? ORDER BY created_at DESC', (project_id,))
    hooks = rows_to_dicts(c.fetchall(), json_fields=('events',))
    conn.close()
    return jsonify({'webhooks': [_public(h) for h in hooks], 'available_events': list(WEBHOOK_EVENTS)})


@webhooks_bp.route('/webhooks/<int:webhook_id>', methods=['PATCH'])
@login_required
def update_webhook(webhook_id):
    webhook = _webhook_for_user(webhook_id)
    data = request.get_json(silent=True) or {}
    fields = {}
    if 'url' in data:
        fields['url'] = _validate_url((data.get('url') or '').strip())
    if 'events' in data:
        fields['events'] = to_json(_validate_events(data.get('events')))
    if 'is_active' in data:
        fields['is_active'] = int(bool(data['is_active']))
        if fields['is_active']:
            fields['failure_count'] = 0
    if not fields:
        abort(400, description='Nothing to update')

    conn = db_connect()
    c = conn.cursor()
    assignments = ', '.join(f'{name} = ?' for name in fields)
    c.execute(f'UPDATE webhooks SET {assignments} WHERE id = ?', list(fields.values()) + [webhook_id])
    conn.commit()
    c.execute('SELECT * FROM webhooks WHERE id = ?', (webhook_id,))
    webhook = row_to_dict(c.fetchone(), json_fields=('events',))
    conn.close()
    return jsonify({'webhook': _public(webhook)})


@webhooks_bp.route('/webhooks/<int:webhook_id>', methods=['DELETE'])
@login_required
def delete_webhook(webhook_id):
    _webhook_for_user(webhook_id)
    conn = db_connect()
    c = conn.cursor()
    c.execute('DELETE FROM webhooks WHERE id = ?', (webhook_id,))
    conn.commit()
    conn.close()
    return '', 204


@webhooks_bp.route('/webhooks/<int:webhook_id>/test', methods=['POST'])
@login_required
@limiter.limit('20 per hour')
def test_webhook(webhook_id):
    webhook = _webhook_for_user(webhook_id)
    success = deliver(webhook, 'webhook.test', {
        'message': 'This is a test delivery from SignalsLoop',
        'webhook_id': webhook_id,
    })
    return jsonify({'success': success})


@webhooks_bp.route('/webhooks/<int:webhook_id>/deliveries')
@login_required
def list_deliveries(webhook_id):
    _webhook_for_user(webhook_id)
    conn = db_connect()
    c = conn.cursor()
    c.execute(
        'SELECT * FROM webhook_deliveries WHERE webhook_id = ? ORDER BY id DESC LIMIT 50',
        (webhook_id,),
    )
    deliveries = rows_to_dicts(c.fetchall())
    conn.close()
    return jsonify({'deliveries': deliveries})
