from datetime import timedelta

import stripe

from db import db_connect, parse_ts, utcnow
from services import billing


def _login(client, email, password):
    client.post('/api/auth/logout')
    resp = client.post('/api/auth/login', json={'email': email, 'password': password})
    assert resp.status_code == 200


def _login_admin(client):
    _login(client, 'admin@signalsloop.local', 'changeme123')


def test_account_summary_for_free_project(client, project):
    info = client.get(f"/api/billing/account?project_id={project['id']}").get_json()
    assert info['plan'] == 'free'
    assert info['subscription_type'] is None
    assert info['trial']['eligible'] is True
    assert info['ai_usage'] == {'month': info['ai_usage']['month'], 'used': 0, 'limit': 25, 'plan': 'free'}


def test_trial_can_only_start_once(client, project):
    resp = client.post('/api/billing/trial/start', json={'project_id': project['id']})
    assert resp.status_code == 201
    body = resp.get_json()
    assert body['plan'] == 'pro'
    assert body['trial']['status'] == 'active'
    assert body['trial']['days_remaining'] in (13, 14)

    again = client.post('/api/billing/trial/start', json={'project_id': project['id']})
    assert again.status_code == 409

    info = client.get(f"/api/billing/account?project_id={project['id']}").get_json()
    assert info['subscription_type'] == 'trial'
    assert info['ai_usage']['limit'] == 1000


def test_expired_trial_is_downgraded(client, flask_app, project):
    client.post('/api/billing/trial/start', json={'project_id': project['id']})
    with flask_app.app_context():
        conn = db_connect()
        conn.execute(
            "UPDATE billing_profiles SET trial_end_date = '2020-01-01T00:00:00+00:00' WHERE project_id = ?",
            (project['id'],),
        )
        conn.commit()
        conn.close()

        summary = billing.expire_plans()
        profile = billing.get_profile(project['id'])
    assert summary['trials_expired'] == 1
    assert profile['plan'] == 'free'
    assert profile['trial_status'] == 'expired'


def test_ai_quota_is_enforced(client, flask_app, project, make_post, monkeypatch):
    monkeypatch.setitem(flask_app.config, 'AI_LIMIT_FREE', 1)
    post = make_post('Custom domains')
    assert client.post('/api/ai/priority-scoring', json={'post_id': post['id']}).status_code == 200

    blocked = client.post('/api/ai/priority-scoring', json={'post_id': post['id']})
    assert blocked.status_code == 429
    assert blocked.get_json()['plan'] == 'free'
    assert blocked.get_json()['used'] == 1
    assert blocked.get_json()['limit'] == 1

    usage = client.get(f"/api/projects/{project['id']}/ai-usage").get_json()
    assert usage['used'] == 1


def test_checkout_needs_stripe_configuration(client, project):
    resp = client.post('/api/billing/checkout', json={'project_id': project['id']})
    assert resp.status_code == 503


def test_stripe_webhook_ignored_without_secret(client):
    assert client.post('/api/stripe/webhook', data=b'{}').status_code == 204


def test_stripe_webhook_rejects_bad_signature(client, flask_app, monkeypatch):
    monkeypatch.setitem(flask_app.config, 'STRIPE_WEBHOOK_SECRET', 'whsec_test')

    def bad_signature(payload, sig_header, secret):
        raise stripe.SignatureVerificationError('bad signature', sig_header)

    monkeypatch.setattr(stripe.Webhook, 'construct_event', bad_signature)
    resp = client.post('/api/stripe/webhook', data=b'{}', headers={'Stripe-Signature': 't=1,v1=nope'})
    assert resp.status_code == 400


def test_stripe_subscription_lifecycle(client, flask_app, project, monkeypatch):
    monkeypatch.setitem(flask_app.config, 'STRIPE_WEBHOOK_SECRET', 'whsec_test')
    events = iter([
        {
            'id': 'evt_checkout',
            'type': 'checkout.session.completed',
            'data': {'object': {
                'mode': 'subscription',
                'customer': 'cus_123',
                'subscription': 'sub_123',
                'client_reference_id': str(project['id']),
                'metadata': {'project_id': str(project['id']), 'billing_cycle': 'annual'},
                'amount_total': 19000,
                'currency': 'usd',
            }},
        },
        {
            'id': 'evt_checkout',
            'type': 'checkout.session.completed',
            'data': {'object': {'mode': 'subscription'}},
        },
        {
            'id': 'evt_failed',
            'type': 'invoice.payment_failed',
            'data': {'object': {'subscription': 'sub_123', 'customer': 'cus_123', 'amount_due': 1900}},
        },
        {
            'id': 'evt_deleted',
            'type': 'customer.subscription.deleted',
            'data': {'object': {'id': 'sub_123', 'customer': 'cus_123'}},
        },
        {'id': 'evt_other', 'type': 'customer.created', 'data': {'object': {}}},
    ])
    monkeypatch.setattr(stripe.Webhook, 'construct_event', lambda payload, sig, secret: next(events))

    def post_event():
        return client.post('/api/stripe/webhook', data=b'{}', headers={'Stripe-Signature': 'sig'}).get_json()

    def profile():
        with flask_app.app_context():
            return billing.get_profile(project['id'])

    assert post_event()['result'] == 'processed'
    current = profile()
    assert (current['plan'], current['billing_cycle'], current['subscription_status']) == ('pro', 'annual', 'active')

    assert post_event()['result'] == 'duplicate'

    assert post_event()['result'] == 'processed'
    assert profile()['subscription_status'] == 'past_due'

    assert post_event()['result'] == 'processed'
    current = profile()
    assert (current['plan'], current['subscription_status']) == ('free', 'canceled')

    assert post_event()['result'] == 'ignored'


def test_set_plan_manually(client, flask_app, project):
    with flask_app.app_context():
        upgraded = billing.set_plan(project['id'], 'pro', billing_cycle='annual')
        downgraded = billing.set_plan(project['id'], 'free')
    assert (upgraded['plan'], upgraded['subscription_status']) == ('pro', 'active')
    assert downgraded['plan'] == 'free'
    assert downgraded['billing_cycle'] is None


def test_gift_admin_only(client, project):
    resp = client.post('/api/admin/gifts', json={'recipient_email': 'owner@example.com'})
    assert resp.status_code == 403


def test_gift_create_and_claim(client, project):
    _login_admin(client)
    resp = client.post('/api/admin/gifts', json={
        'recipient_email': 'owner@example.com',
        'duration_months': 3,
        'gift_message': 'Enjoy Pro!',
    })
    assert resp.status_code == 201
    gift = resp.get_json()['gift']
    assert gift['status'] == 'pending'
    assert gift['email_sent'] is False
    token = gift['claim_link'].rsplit('/', 1)[-1]

    assert client.post('/api/admin/gifts', json={'recipient_email': 'x@example.com', 'duration_months': 99}).status_code == 400

    _login(client, 'owner@example.com', 'Sup3rSecret1')
    claimed = client.post(f'/api/gifts/claim/{token}')
    assert claimed.status_code == 200
    assert claimed.get_json()['gift']['projects_upgraded'] == [project['id']]

    info = client.get(f"/api/billing/account?project_id={project['id']}").get_json()
    assert info['plan'] == 'pro'
    assert info['subscription_type'] == 'gifted'

    assert client.post(f'/api/gifts/claim/{token}').status_code == 410


def test_gift_for_other_email_cannot_be_claimed(client, project):
    _login_admin(client)
    gift = client.post('/api/admin/gifts', json={'recipient_email': 'someone@example.com'}).get_json()['gift']
    token = gift['claim_link'].rsplit('/', 1)[-1]

    _login(client, 'owner@example.com', 'Sup3rSecret1')
    assert client.post(f'/api/gifts/claim/{token}').status_code == 403


def test_pending_gift_claimed_on_account_view(client, project):
    _login_admin(client)
    client.post('/api/admin/gifts', json={'recipient_email': 'owner@example.com', 'duration_months': 1})

    _login(client, 'owner@example.com', 'Sup3rSecret1')
    info = client.get(f"/api/billing/account?project_id={project['id']}").get_json()
    assert len(info['claimed_gifts']) == 1
    assert info['plan'] == 'pro'


def test_cancel_gift(client, project):
    _login_admin(client)
    gift = client.post('/api/admin/gifts', json={'recipient_email': 'later@example.com'}).get_json()['gift']
    assert client.post(f"/api/admin/gifts/{gift['id']}/cancel").get_json()['gift']['status'] == 'cancelled'
    assert client.post(f"/api/admin/gifts/{gift['id']}/cancel").status_code == 409
    listed = client.get('/api/admin/gifts?status=cancelled').get_json()['gifts']
    assert [g['id'] for g in listed] == [gift['id']]


def test_unclaimed_gift_lapses_after_claim_window(client, flask_app, project):
    _login_admin(client)
    gift = client.post('/api/admin/gifts', json={'recipient_email': 'owner@example.com'}).get_json()['gift']
    claim_by = parse_ts(gift['expires_at'])
    assert timedelta(days=29) < claim_by - utcnow() <= timedelta(days=billing.GIFT_CLAIM_DAYS)

    with flask_app.app_context():
        conn = db_connect()
        conn.execute(
            'UPDATE gift_subscriptions SET expires_at = ? WHERE id = ?',
            ((utcnow() - timedelta(days=1)).isoformat(), gift['id']),
        )
        conn.commit()
        conn.close()
        assert billing.expire_plans()['gifts_expired'] == 1

    _login(client, 'owner@example.com', 'Sup3rSecret1')
    token = gift['claim_link'].rsplit('/', 1)[-1]
    assert client.post(f'/api/gifts/claim/{token}').status_code == 410


def test_claimed_gift_runs_for_its_duration(client, project):
    _login_admin(client)
    gift = client.post('/api/admin/gifts', json={'recipient_email': 'owner@example.com', 'duration_months': 3}).get_json()['gift']
    _login(client, 'owner@example.com', 'Sup3rSecret1')
    claimed = client.post(f"/api/gifts/claim/{gift['claim_link'].rsplit('/', 1)[-1]}").get_json()['gift']
    plan_end = parse_ts(claimed['expires_at'])
    assert timedelta(days=89) < plan_end - utcnow() <= timedelta(days=90)


def test_checkout_with_malformed_project_id_is_ignored(client, flask_app, project, monkeypatch):
    monkeypatch.setitem(flask_app.config, 'STRIPE_WEBHOOK_SECRET', 'whsec_test')
    event = {
        'id': 'evt_bad_metadata',
        'type': 'checkout.session.completed',
        'data': {'object': {'mode': 'subscription', 'customer': 'cus_unknown', 'metadata': {'project_id': 'abc'}}},
    }
    monkeypatch.setattr(stripe.Webhook, 'construct_event', lambda payload, sig, secret: event)
    resp = client.post('/api/stripe/webhook', data=b'{}', headers={'Stripe-Signature': 'sig'})
    assert resp.status_code == 200
    assert resp.get_json()['result'] == 'processed'
    with flask_app.app_context():
        assert billing.get_profile(project['id'])['plan'] == 'free'
