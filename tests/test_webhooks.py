import json

import pytest
import requests

from services import webhooks
from services.webhooks import SIGNATURE_HEADER, sign_payload, verify_signature


class FakeResponse:
    def __init__(self, status_code):
        self.status_code = status_code


class Recorder(list):
    """Captured webhook POSTs; ``status`` None simulates a network error."""
    status = 200


ADDRESSES = {
    'intranet.example.com': '10.0.0.5',
}


@pytest.fixture(autouse=True)
def dns(monkeypatch):
    """Resolve every host to a public address unless listed in ADDRESSES."""
    def fake_getaddrinfo(host, port, *args, **kwargs):
        address = ADDRESSES.get(host, '93.184.216.34')
        return [(2, 1, 6, '', (address, 0))]

    monkeypatch.setattr(webhooks.socket, 'getaddrinfo', fake_getaddrinfo)


@pytest.fixture
def sent(monkeypatch):
    calls = Recorder()

    def fake_post(url, data=None, headers=None, timeout=None):
        calls.append({'url': url, 'body': data, 'headers': headers})
        if calls.status is None:
            raise requests.ConnectionError('connection refused')
        return FakeResponse(calls.status)

    monkeypatch.setattr(webhooks.requests, 'post', fake_post)
    return calls


@pytest.fixture
def webhook(client, project):
    resp = client.post(f"/api/projects/{project['id']}/webhooks", json={
        'url': 'https://hooks.example.com/signalsloop',
        'events': ['post.created', 'vote.created'],
    })
    assert resp.status_code == 201
    return resp.get_json()['webhook']


def test_signature_round_trip():
    body = b'{"event": "post.created"}'
    signature = sign_payload('topsecret', body)
    assert signature.startswith('sha256=')
    assert verify_signature('topsecret', body, signature)
    assert not verify_signature('other', body, signature)
    assert not verify_signature('topsecret', body, None)


def test_webhook_requires_https_and_known_events(client, project):
    url = f"/api/projects/{project['id']}/webhooks"
    assert client.post(url, json={'url': 'http://insecure.example.com'}).status_code == 400
    resp = client.post(url, json={'url': 'https://ok.example.com', 'events': ['post.exploded']})
    assert resp.status_code == 400
    assert 'post.exploded' in resp.get_json()['error']


def test_webhook_rejects_internal_hosts(client, project):
    url = f"/api/projects/{project['id']}/webhooks"
    for target in (
        'https://localhost/hook',
        'https://127.0.0.1/hook',
        'https://169.254.169.254/latest/meta-data',
        'https://[::1]/hook',
        'https://192.168.1.20/hook',
        'https://metadata.internal/hook',
        'https://intranet.example.com/hook',
    ):
        resp = client.post(url, json={'url': target, 'events': ['post.created']})
        assert resp.status_code == 400, target
        assert resp.get_json()['error'] == 'Webhook URL must point to a public host'


def test_delivery_skips_hosts_that_became_internal(client, webhook, make_post, sent, monkeypatch):
    monkeypatch.setitem(ADDRESSES, 'hooks.example.com', '10.1.2.3')
    make_post('Rebound host')
    assert sent == []
    deliveries = client.get(f"/api/webhooks/{webhook['id']}/deliveries").get_json()['deliveries']
    assert deliveries[0]['success'] == 0
    assert 'non-public' in deliveries[0]['error']


def test_secret_only_shown_once(client, project, webhook):
    assert len(webhook['secret']) == 64
    listed = client.get(f"/api/projects/{project['id']}/webhooks").get_json()
    assert listed['webhooks'][0]['secret'] == webhook['secret'][:8] + '...'
    assert 'comment.created' in listed['available_events']


def test_subscribed_events_are_delivered_signed(client, webhook, make_post, sent):
    post = make_post('Webhook worthy idea')
    client.post(f"/api/posts/{post['id']}/comments", json={'body': 'not subscribed'})

    assert [json.loads(call['body'])['event'] for call in sent] == ['post.created']
    call = sent[0]
    assert call['url'] == 'https://hooks.example.com/signalsloop'
    assert verify_signature(webhook['secret'], call['body'], call['headers'][SIGNATURE_HEADER])
    assert json.loads(call['body'])['data']['title'] == 'Webhook worthy idea'


def test_failed_deliveries_are_logged_and_disable_hook(client, flask_app, webhook, sent, monkeypatch):
    monkeypatch.setitem(flask_app.config, 'WEBHOOK_MAX_FAILURES', 2)
    sent.status = 500
    assert client.post(f"/api/webhooks/{webhook['id']}/test").get_json() == {'success': False}
    sent.status = None
    assert client.post(f"/api/webhooks/{webhook['id']}/test").get_json() == {'success': False}

    deliveries = client.get(f"/api/webhooks/{webhook['id']}/deliveries").get_json()['deliveries']
    assert [d['error'] for d in deliveries][1] == 'HTTP 500'
    assert 'connection refused' in deliveries[0]['error']

    hooks = client.get(f"/api/projects/{webhook['project_id']}/webhooks").get_json()['webhooks']
    assert hooks[0]['is_active'] is False
    assert hooks[0]['failure_count'] == 2

    reactivated = client.patch(f"/api/webhooks/{webhook['id']}", json={'is_active': True}).get_json()['webhook']
    assert reactivated['is_active'] is True
    assert reactivated['failure_count'] == 0


def test_successful_test_delivery(client, webhook, sent):
    assert client.post(f"/api/webhooks/{webhook['id']}/test").get_json() == {'success': True}
    assert json.loads(sent[0]['body'])['event'] == 'webhook.test'


def test_delete_webhook(client, webhook):
    assert client.delete(f"/api/webhooks/{webhook['id']}").status_code == 204
    assert client.delete(f"/api/webhooks/{webhook['id']}").status_code == 404
