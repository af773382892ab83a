import os
import tempfile

import pytest

os.environ.setdefault('SECRET_KEY', 'test-secret')

from app import app, db_connect, init_db

OWNER_PASSWORD = 'Sup3rSecret1'


@pytest.fixture
def client():
    db_fd, db_path = tempfile.mkstemp()
    app.config.update(
        DATABASE_PATH=db_path,
        TESTING=True,
        WTF_CSRF_ENABLED=False,
        MAIL_ENABLED=False,
        SESSION_COOKIE_SECURE=False,
        OPENAI_API_KEY=None,
        CRON_SECRET='test-cron-secret',
        STRIPE_SECRET_KEY=None,
        STRIPE_WEBHOOK_SECRET=None,
        SITE_URL='http://localhost',
    )
    with app.app_context():
        init_db()
    with app.test_client() as c:
        yield c
    os.close(db_fd)
    os.unlink(db_path)


@pytest.fixture
def flask_app(client):
    """The application bound to the temporary database of ``client``."""
    return app


@pytest.fixture
def owner(client):
    resp = client.post('/api/auth/register', json={
        'email': 'owner@example.com',
        'name': 'Olivia Owner',
        'password': OWNER_PASSWORD,
    })
    assert resp.status_code == 201
    return resp.get_json()['user']


@pytest.fixture
def project(client, owner):
    resp = client.post('/api/projects', json={'name': 'Acme Board', 'slug': 'acme-board'})
    assert resp.status_code == 201
    return resp.get_json()['project']


@pytest.fixture
def make_post(client, project):
    def _make(title, description='', category=None):
        payload = {'title': title, 'description': description}
        if category:
            payload['category'] = category
        resp = client.post(f"/api/projects/{project['id']}/posts", json=payload)
        assert resp.status_code == 201
        return resp.get_json()['post']

    return _make


@pytest.fixture
def cron_headers():
    return {'Authorization': 'Bearer test-cron-secret'}


@pytest.fixture
def query_one(client):
    def _query(sql, params=()):
        with app.app_context():
            conn = db_connect()
            row = conn.execute(sql, params).fetchone()
            conn.close()
        return row

    return _query
