import pytest
import requests

from services import orchestrator


class FakeResponse:
    def __init__(self, status_code, text=''):
        self.status_code = status_code
        self.text = text


@pytest.fixture
def called(monkeypatch):
    """Record orchestrator calls; the classify worker fails and process-feedback is unreachable."""
    calls = []

    def fake_get(url, headers=None, timeout=None):
        calls.append({'url': url, 'headers': headers})
        if url.endswith('/classify'):
            return FakeResponse(500, 'Internal Server Error')
        if url.endswith('/process-feedback'):
            raise requests.Timeout('read timed out')
        return FakeResponse(200, '{}')

    monkeypatch.setattr(orchestrator.requests, 'get', fake_get)
    return calls


def test_cron_secret_must_be_configured(client, flask_app, monkeypatch):
    monkeypatch.setitem(flask_app.config, 'CRON_SECRET', None)
    assert client.get('/api/cron/expire-trials').status_code == 503


def test_cron_secret_must_match(client):
    assert client.get('/api/cron/expire-trials').status_code == 401
    assert client.get('/api/cron/expire-trials', headers={'Authorization': 'Bearer wrong'}).status_code == 401
    assert client.get('/api/cron/expire-trials?secret=test-cron-secret').status_code == 200


def test_orchestrator_runs_every_job_in_order(client, cron_headers, called):
    resp = client.post('/api/cron/orchestrator', headers=cron_headers)
    assert resp.status_code == 200
    summary = resp.get_json()

    assert [r['job'] for r in summary['results']] == list(orchestrator.CRON_JOBS)
    assert [c['url'] for c in called] == [f'http://localhost{job}' for job in orchestrator.CRON_JOBS]
    assert all(c['headers'] == cron_headers for c in called)
    assert (summary['total'], summary['succeeded'], summary['failed']) == (6, 4, 2)

    by_job = {r['job']: r for r in summary['results']}
    assert by_job['/api/hunter/worker/classify']['error'] == 'HTTP 500: Internal Server Error'
    assert by_job['/api/cron/process-feedback']['status_code'] is None
    assert 'timed out' in by_job['/api/cron/process-feedback']['error']
    assert by_job['/api/cron/expire-trials']['success'] is True

    runs = client.get('/api/cron/runs', headers=cron_headers).get_json()['runs']
    assert len(runs) == 6
    assert {r['run_id'] for r in runs} == {summary['run_id']}
    assert runs[0]['job_path'] == '/api/cron/expire-trials'
    assert [r['success'] for r in runs].count(False) == 2


def test_orchestrator_requires_secret(client, flask_app, called, monkeypatch):
    monkeypatch.setitem(flask_app.config, 'CRON_SECRET', None)
    with flask_app.app_context():
        with pytest.raises(RuntimeError):
            orchestrator.run_cron_jobs('http://localhost')
    assert called == []


def test_runs_limit(client, flask_app, cron_headers, called):
    with flask_app.app_context():
        orchestrator.run_cron_jobs('http://localhost/', jobs=('/api/cron/expire-trials',))
        orchestrator.run_cron_jobs('http://localhost/', jobs=('/api/cron/expire-trials',))
    assert called[0]['url'] == 'http://localhost/api/cron/expire-trials'
    assert len(client.get('/api/cron/runs?limit=1', headers=cron_headers).get_json()['runs']) == 1


def test_recover_stale_jobs_endpoint(client, cron_headers):
    assert client.post('/api/cron/recover-stale-jobs', headers=cron_headers).get_json() == {'recovered': 0}


def test_process_feedback_endpoint(client, cron_headers):
    body = client.post('/api/cron/process-feedback', headers=cron_headers).get_json()
    assert body == {'processed': 0, 'batch_size': 10}


def test_expire_trials_endpoint(client, cron_headers):
    body = client.get('/api/cron/expire-trials', headers=cron_headers).get_json()
    assert body['trials_expired'] == 0
