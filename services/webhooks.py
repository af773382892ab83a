"""Outbound project webhooks: signing, delivery and delivery log."""

import hashlib
import hmac
import ipaddress
import json
import logging
import socket
import time
from urllib.parse import urlparse

import requests
from flask import current_app

from db import db_connect, from_json, utcnow_iso

logger = logging.getLogger(__name__)

WEBHOOK_EVENTS = (
    'post.created',
    'post.status_changed',
    'post.deleted',
    'comment.created',
    'vote.created',
)
SIGNATURE_HEADER = 'X-SignalsLoop-Signature'
INTERNAL_HOST_SUFFIXES = ('.localhost', '.local', '.internal')


def _is_public_address(value):
    address = ipaddress.ip_address(value.split('%')[0])
    return address.is_global and not address.is_multicast


def is_public_host(hostname):
    """False for hosts that are, or resolve to, loopback, private, link-local or reserved addresses.

    Names that do not resolve are allowed; the delivery itself fails for them.
    """
    host = (hostname or '').lower().rstrip('.')
    if not host or host == 'localhost' or host.endswith(INTERNAL_HOST_SUFFIXES):
        return False
    try:
        return _is_public_address(host)
    except ValueError:
        pass
    try:
        infos = socket.getaddrinfo(host, None)
    except (socket.gaierror, UnicodeError):
        return True
    return all(_is_public_address(info[4][0]) for info in infos)


def sign_payload(secret, body):
    digest = hmac.new(secret.encode('utf-8'), body, hashlib.sha256).hexdigest()
    return f'sha256={digest}'


def verify_signature(secret, body, signature):
    return hmac.compare_digest(sign_payload(secret, body), signature or '')


def deliver(webhook, event, data):
    """POST one event to one webhook and log the attempt. Returns True on 2xx."""
    payload = {
        'event': event,
        'project_id': webhook['project_id'],
        'data': data,
        'sent_at': utcnow_iso(),
    }
    body = json.dumps(payload, default=str).encode('utf-8')
    headers = {
        'Content-Type': 'application/json',
        'User-Agent': 'SignalsLoop-Webhooks/1.0',
        SIGNATURE_HEADER: sign_payload(webhook['secret'], body),
    }

    status_code = None
    error = None
    started = time.perf_counter()
    try:
        # the host is re-resolved on every delivery
        if not is_public_host(urlparse(webhook['url']).hostname):
            raise requests.RequestException('Webhook host resolves to a non-public address')
        response = requests.post(
            webhook['url'],
            data=body,
            headers=headers,
            timeout=current_app.config.get('WEBHOOK_TIMEOUT', 10),
        )
        status_code = response.status_code
        if not 200 <= status_code < 300:
            error = f'HTTP {status_code}'
    except requests.RequestException as exc:
        error = str(exc)[:500]
    duration_ms = int((time.perf_counter() - started) * 1000)
    success = error is None

    conn = db_connect()
    c = conn.cursor()
    c.execute(
        '''
        INSERT INTO webhook_deliveries (webhook_id, event, status_code, success, error, duration_ms, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        ''',
        (webhook['id'], event, status_code, int(success), error, duration_ms, utcnow_iso()),
    )
    if success:
        c.execute(
            'UPDATE webhooks SET failure_count = 0, last_delivery_at = ? WHERE id = ?',
            (utcnow_iso(), webhook['id']),
        )
    else:
        max_failures = current_app.config.get('WEBHOOK_MAX_FAILURES', 10)
        c.execute(
            '''
            UPDATE webhooks
            SET failure_count = failure_count + 1,
                last_delivery_at = ?,
                is_active = CASE WHEN failure_count + 1 >= ? THEN 0 ELSE is_active END
            WHERE id = ?
            ''',
            (utcnow_iso(), max_failures, webhook['id']),
        )
        logger.warning('Webhook %s delivery failed for %s: %s', webhook['id'], event, error)
    conn.commit()
    conn.close()
    return success


def emit_event(project_id, event, data):
    """Deliver an event to every active webhook of the project subscribed to it."""
    conn = db_connect()
    c = conn.cursor()
    c.execute('SELECT * FROM webhooks WHERE project_id = ? AND is_active = 1', (project_id,))
    hooks = [dict(row) for row in c.fetchall()]
    conn.close()

    delivered = 0
    for hook in hooks:
        if event not in from_json(hook['events'], []):
            continue
        if deliver(hook, event, data):
            delivered += 1
    return delivered
