def test_register_rejects_weak_password(client):
    resp = client.post('/api/auth/register', json={
        'email': 'jane@example.com',
        'name': 'Jane Doe',
        'password': 'weak',
    })
    assert resp.status_code == 400
    body = resp.get_json()
    assert body['fields']['password'] == 'Password must be at least 8 characters long.'


def test_register_rejects_password_without_digit(client):
    resp = client.post('/api/auth/register', json={
        'email': 'jane@example.com',
        'password': 'NoDigitsHere',
    })
    assert resp.status_code == 400
    assert 'number' in resp.get_json()['fields']['password']


def test_register_rejects_invalid_email(client):
    resp = client.post('/api/auth/register', json={'email': 'not-an-email', 'password': 'StrongPass1'})
    assert resp.status_code == 400
    assert 'email' in resp.get_json()['fields']


def test_register_and_login_success(client):
    register_resp = client.post('/api/auth/register', json={
        'email': 'Builder@Example.com',
        'name': 'Builder',
        'password': 'StrongPass1',
    })
    assert register_resp.status_code == 201
    assert register_resp.get_json()['user']['email'] == 'builder@example.com'

    client.post('/api/auth/logout')
    assert client.get('/api/auth/me').status_code == 401

    login_resp = client.post('/api/auth/login', json={
        'email': 'builder@example.com',
        'password': 'StrongPass1',
    })
    assert login_resp.status_code == 200
    me = client.get('/api/auth/me').get_json()['user']
    assert me['email'] == 'builder@example.com'
    assert me['is_admin'] is False


def test_duplicate_registration_conflicts(client, owner):
    client.post('/api/auth/logout')
    resp = client.post('/api/auth/register', json={
        'email': 'owner@example.com',
        'password': 'AnotherPass1',
    })
    assert resp.status_code == 409


def test_login_rejects_wrong_password(client, owner):
    client.post('/api/auth/logout')
    resp = client.post('/api/auth/login', json={'email': 'owner@example.com', 'password': 'WrongPass1'})
    assert resp.status_code == 401
    assert resp.get_json()['error'] == 'Invalid email or password'


def test_bootstrap_admin_can_sign_in(client):
    resp = client.post('/api/auth/login', json={
        'email': 'admin@signalsloop.local',
        'password': 'changeme123',
    })
    assert resp.status_code == 200
    assert resp.get_json()['user']['is_admin'] is True


def test_protected_api_requires_login(client):
    resp = client.get('/api/projects')
    assert resp.status_code == 401
    assert resp.get_json() == {'error': 'Authentication required'}


def test_csrf_token_endpoint(client):
    resp = client.get('/api/auth/csrf-token')
    assert resp.status_code == 200
    assert resp.get_json()['csrf_token']


def test_health_and_metrics(client):
    health = client.get('/health')
    assert health.status_code == 200
    assert health.get_json() == {'status': 'ok', 'service': 'signalsloop'}

    metrics = client.get('/metrics').get_json()
    assert metrics['requests_total'] >= 1
    assert 'avg_latency_ms' in metrics


def test_unknown_route_returns_json_error(client):
    resp = client.get('/api/does-not-exist')
    assert resp.status_code == 404
    assert 'error' in resp.get_json()
