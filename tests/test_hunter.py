import pytest
import requests

from db import db_connect
from services import hunter, job_queue

CONFIG = {
    'product_name': 'Acme',
    'product_description': 'Feedback boards and public roadmaps',
    'keywords': ['Roadmap', 'roadmap', 'feedback board'],
    'excluded_terms': ['giveaway'],
    'platforms': ['reddit', 'hackernews'],
}

REDDIT_JSON = {'data': {'children': [
    {'data': {
        'id': 'r1',
        'permalink': '/r/saas/comments/r1/',
        'title': 'Acme keeps crashing on export',
        'selftext': 'The app crashes every time I export a board.',
        'author': 'pat',
        'created_utc': 1700000000,
        'subreddit': 'saas',
    }},
    {'data': {
        'id': 'r2',
        'permalink': '/r/saas/comments/r2/',
        'title': 'Really love Acme',
        'selftext': 'Awesome tool, would recommend to any team.',
        'author': 'sam',
        'created_utc': 1700000100,
    }},
    {'data': {
        'id': 'r3',
        'permalink': '/r/saas/comments/r3/',
        'title': 'Acme giveaway thread',
        'selftext': 'Free seats for the first ten replies.',
    }},
    {'data': {'title': 'No id, skipped'}},
]}}

HN_JSON = {'hits': [
    {
        'objectID': 9001,
        'story_title': 'Ask HN: feedback tools',
        'comment_text': 'We are cancelling Acme and switching to Rival next month.',
        'author': 'hnuser',
        'created_at': '2024-01-02T03:04:05Z',
    },
]}


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f'{self.status_code} error')

    def json(self):
        return self.payload


@pytest.fixture
def platforms(monkeypatch):
    calls = []

    def fake_get(url, params=None, headers=None, timeout=None):
        calls.append(url)
        if url == hunter.REDDIT_SEARCH_URL:
            return FakeResponse(REDDIT_JSON)
        return FakeResponse(HN_JSON)

    monkeypatch.setattr(hunter.requests, 'get', fake_get)
    return calls


@pytest.fixture
def configured(client, project):
    resp = client.put(f"/api/projects/{project['id']}/hunter/config", json=CONFIG)
    assert resp.status_code == 200
    return resp.get_json()['config']


@pytest.fixture
def execute(flask_app):
    def _execute(sql, params=()):
        with flask_app.app_context():
            conn = db_connect()
            conn.execute(sql, params)
            conn.commit()
            conn.close()

    return _execute


def _work(client, cron_headers, job_type):
    resp = client.post(f'/api/hunter/worker/{job_type}', headers=cron_headers)
    assert resp.status_code == 200
    return resp.get_json()


def _run_pipeline(client, cron_headers):
    results = []
    for job_type in ('discovery', 'relevance', 'classify'):
        for _ in range(2):
            results.append(_work(client, cron_headers, job_type))
    return results


def test_config_validation(client, project):
    url = f"/api/projects/{project['id']}/hunter/config"
    assert client.get(url).get_json()['config'] is None

    resp = client.put(url, json={'platforms': ['twitter']})
    assert resp.status_code == 400
    assert set(resp.get_json()['fields']) == {'product_name', 'platforms'}


def test_config_cleans_terms(configured):
    assert configured['keywords'] == ['Roadmap', 'feedback board']
    assert configured['platforms'] == ['reddit', 'hackernews']
    assert configured['is_active'] is True


def test_scan_needs_active_config(client, project):
    url = f"/api/projects/{project['id']}/hunter/scans"
    assert client.post(url).status_code == 400

    client.put(f"/api/projects/{project['id']}/hunter/config", json=dict(CONFIG, is_active=False))
    assert client.post(url).status_code == 409


def test_only_one_running_scan(client, project, configured):
    url = f"/api/projects/{project['id']}/hunter/scans"
    resp = client.post(url)
    assert resp.status_code == 201
    scan = resp.get_json()['scan']
    assert scan['status'] == 'running'
    assert scan['platform_status'] == {'reddit': 'queued', 'hackernews': 'queued'}
    assert client.post(url).status_code == 409


def test_workers_require_cron_secret(client):
    assert client.post('/api/hunter/worker/discovery').status_code == 401
    assert client.get('/api/hunter/worker/discovery?secret=test-cron-secret').get_json()['processed'] is False


def test_full_scan_pipeline(client, project, configured, platforms, cron_headers):
    scan = client.post(f"/api/projects/{project['id']}/hunter/scans").get_json()['scan']
    results = _run_pipeline(client, cron_headers)

    assert all(r['processed'] and r['success'] for r in results)
    assert [r['result'] for r in results[:2]] == [{'discovered': 2}, {'discovered': 1}]
    assert results[-1]['scan_status'] == 'complete'
    assert _work(client, cron_headers, 'classify')['processed'] is False
    assert len(platforms) == 2

    finished = client.get(f"/api/projects/{project['id']}/hunter/scans/{scan['id']}").get_json()['scan']
    assert finished['status'] == 'complete'
    assert finished['platform_status'] == {'reddit': 'complete', 'hackernews': 'complete'}
    assert (finished['total_discovered'], finished['total_relevant'], finished['total_classified']) == (3, 3, 3)

    feed = client.get(f"/api/projects/{project['id']}/hunter/feed").get_json()
    assert [item['classification'] for item in feed['items']] == ['churn_risk', 'bug', 'praise']
    assert feed['classification_counts'] == {'churn_risk': 1, 'bug': 1, 'praise': 1}
    assert feed['items'][0]['platform_url'] == 'https://news.ycombinator.com/item?id=9001'
    assert feed['items'][0]['relevance_score'] == hunter.PASSTHROUGH_SCORE

    mentions = client.get(f"/api/projects/{project['id']}/competitors/mentions").get_json()['mentions']
    assert [(m['competitor_name'], m['mention_type']) for m in mentions] == [('Rival', 'switch_to')]


def test_feed_actions(client, project, configured, platforms, cron_headers):
    client.post(f"/api/projects/{project['id']}/hunter/scans")
    _run_pipeline(client, cron_headers)
    url = f"/api/projects/{project['id']}/hunter/feed"
    assert client.get(f'{url}?classification=rant').status_code == 400

    bug = client.get(f'{url}?classification=bug').get_json()['items'][0]
    promoted = client.post(f"/api/hunter/feed/{bug['id']}/promote")
    assert promoted.status_code == 200
    body = promoted.get_json()
    assert body['post']['category'] == 'bug'
    assert body['post']['title'] == 'Acme keeps crashing on export'
    assert body['item']['post_id'] == body['post']['id']
    assert client.post(f"/api/hunter/feed/{bug['id']}/promote").status_code == 409

    assert client.post(f"/api/hunter/feed/{bug['id']}/archive").get_json()['item']['is_archived'] == 1
    assert bug['id'] not in [i['id'] for i in client.get(url).get_json()['items']]
    assert client.post(f"/api/hunter/feed/{bug['id']}/delete").status_code == 400


def test_failed_discovery_is_retried_later(client, project, configured, monkeypatch, cron_headers):
    def offline(url, params=None, headers=None, timeout=None):
        raise requests.ConnectionError('network down')

    monkeypatch.setattr(hunter.requests, 'get', offline)
    client.post(f"/api/projects/{project['id']}/hunter/scans")

    result = _work(client, cron_headers, 'discovery')
    assert result['success'] is False
    assert result['job_status'] == 'pending'
    assert 'network down' in result['error']
    # the other platform is still due, the failed one waits for its retry time
    assert _work(client, cron_headers, 'discovery')['success'] is False
    assert _work(client, cron_headers, 'discovery')['processed'] is False


def test_claim_and_retry_until_failed(client, flask_app, project, execute):
    with flask_app.app_context():
        scan = job_queue.create_scan(project['id'], ['reddit'])
        job = job_queue.claim_job('discovery', 'worker-a')
        assert job['scan_id'] == scan['id']
        assert (job['status'], job['attempts'], job['locked_by']) == ('processing', 1, 'worker-a')
        assert job_queue.claim_job('discovery', 'worker-b') is None

        for attempt in (1, 2):
            assert job_queue.fail_job(job['id'], RuntimeError('boom')) == 'pending'
            assert job_queue.claim_job('discovery', 'worker-a') is None
            execute("UPDATE hunter_jobs SET next_retry_at = '2020-01-01T00:00:00+00:00' WHERE id = ?", (job['id'],))
            job = job_queue.claim_job('discovery', 'worker-a')
            assert job['attempts'] == attempt + 1

        assert job_queue.fail_job(job['id'], RuntimeError('boom')) == 'failed'
        assert job_queue.fail_job(9999, RuntimeError('missing')) is None


def test_recover_stale_jobs(client, flask_app, project, execute, query_one):
    with flask_app.app_context():
        job_queue.create_scan(project['id'], ['reddit'])
        job = job_queue.claim_job('discovery', 'worker-a')
        assert job_queue.recover_stale_jobs(10) == 0
        execute("UPDATE hunter_jobs SET locked_at = '2020-01-01T00:00:00+00:00' WHERE id = ?", (job['id'],))
        assert job_queue.recover_stale_jobs(10) == 1

    row = query_one('SELECT status, locked_by, error FROM hunter_jobs WHERE id = ?', (job['id'],))
    assert (row['status'], row['locked_by'], row['error']) == ('pending', None, 'Recovered after stale lock')


def test_platform_status_never_moves_backwards(client, flask_app, project):
    with flask_app.app_context():
        scan = job_queue.create_scan(project['id'], ['reddit'])
        assert job_queue.set_platform_status(scan['id'], 'reddit', 'classifying') is True
        assert job_queue.set_platform_status(scan['id'], 'reddit', 'discovering') is False
        assert job_queue.get_scan(scan['id'])['platform_status'] == {'reddit': 'classifying'}
        assert job_queue.set_platform_status(scan['id'], 'reddit', 'failed') is True
        with pytest.raises(ValueError):
            job_queue.set_platform_status(scan['id'], 'reddit', 'exploded')
        with pytest.raises(ValueError):
            job_queue.increment_scan_counter(scan['id'], 'total_votes', 1)


def test_final_scan_status():
    assert job_queue.final_scan_status({'reddit': 'complete', 'hackernews': 'complete'}) == 'complete'
    assert job_queue.final_scan_status({'reddit': 'complete', 'hackernews': 'failed'}) == 'partial'
    assert job_queue.final_scan_status({'reddit': 'failed'}) == 'failed'
    assert job_queue.final_scan_status({}) == 'failed'


def test_relevance_scoring_without_ai(flask_app):
    config = {'product_name': 'Acme', 'keywords': ['roadmap'], 'product_description': None}
    with flask_app.app_context():
        assert hunter.score_relevance({'title': 'x', 'content': 'y'}, config)[:2] == (75, 'include')
    assert hunter.score_relevance({'title': 'x', 'content': 'y'}, None)[:2] == (75, 'include')

    assert hunter.keyword_relevance({'title': 'Acme roadmap is great', 'content': ''}, config) == 88
    assert hunter.keyword_relevance({'title': 'Some roadmap tool', 'content': ''}, config) == 38
    assert hunter.relevance_decision(80) == 'include'
    assert hunter.relevance_decision(60) == 'human_review'
    assert hunter.relevance_decision(59) == 'exclude'


def test_keyword_classification():
    assert hunter.keyword_classification('The export is broken again') == 'bug'
    assert hunter.keyword_classification('Please add a dark mode') == 'feature_request'
    assert hunter.keyword_classification('Thinking about switching to Rival') == 'churn_risk'
    assert hunter.keyword_classification('How do I invite my team') == 'question'
    assert hunter.keyword_classification('Shipped a new release') == 'other'


def test_process_pending_feedback(client, flask_app, project, execute, query_one):
    execute(
        '''
        INSERT INTO discovered_feedback (project_id, platform, platform_id, content, discovered_at, created_at)
        VALUES (?, 'reddit', 'imported-1', 'Please add a way to export to CSV', ?, ?)
        ''',
        (project['id'], '2024-01-01T00:00:00+00:00', '2024-01-01T00:00:00+00:00'),
    )
    with flask_app.app_context():
        assert hunter.process_pending_feedback(5) == {'processed': 1, 'batch_size': 5}
        assert hunter.process_pending_feedback(5)['processed'] == 0

    row = query_one("SELECT processing_status, classification, urgency_score FROM discovered_feedback WHERE platform_id = 'imported-1'")
    assert (row['processing_status'], row['classification'], row['urgency_score']) == ('complete', 'feature_request', 2)


def test_due_job_is_claimed_behind_backed_off_jobs(client, flask_app, project, execute):
    with flask_app.app_context():
        scan = job_queue.create_scan(project['id'], ['reddit'])
    for _ in range(job_queue.CLAIM_CANDIDATES + 5):
        execute(
            '''
            INSERT INTO hunter_jobs (scan_id, project_id, job_type, platform, status, next_retry_at, created_at)
            VALUES (?, ?, 'discovery', 'reddit', 'pending', '2999-01-01T00:00:00+00:00', '2020-01-01T00:00:00+00:00')
            ''',
            (scan['id'], project['id']),
        )
    with flask_app.app_context():
        job = job_queue.claim_job('discovery', 'worker-a')
        assert job is not None
        assert job['next_retry_at'] is None
        assert job_queue.claim_job('discovery', 'worker-b') is None


def test_stale_job_on_its_last_attempt_fails(client, flask_app, project, execute, query_one):
    with flask_app.app_context():
        scan = job_queue.create_scan(project['id'], ['reddit'])
        job = job_queue.claim_job('discovery', 'worker-a')
    execute(
        "UPDATE hunter_jobs SET attempts = max_attempts, locked_at = '2020-01-01T00:00:00+00:00' WHERE id = ?",
        (job['id'],),
    )
    with flask_app.app_context():
        assert job_queue.recover_stale_jobs(10) == 1
        assert job_queue.claim_job('discovery', 'worker-b') is None
        finished = job_queue.get_scan(scan['id'])

    row = query_one('SELECT status, locked_by FROM hunter_jobs WHERE id = ?', (job['id'],))
    assert (row['status'], row['locked_by']) == ('failed', None)
    assert finished['platform_status'] == {'reddit': 'failed'}
    assert finished['status'] == 'failed'


def test_unexpected_runner_errors_are_retried(client, flask_app, project, monkeypatch, query_one):
    def broken(job):
        raise KeyError('children')

    monkeypatch.setitem(hunter.JOB_RUNNERS, 'discovery', broken)
    with flask_app.app_context():
        job_queue.create_scan(project['id'], ['reddit'])
        result = hunter.process_next_job('discovery', 'worker-a')

    assert (result['success'], result['job_status']) == (False, 'pending')
    row = query_one('SELECT status, locked_by, error FROM hunter_jobs WHERE id = ?', (result['job_id'],))
    assert (row['status'], row['locked_by']) == ('pending', None)
    assert 'children' in row['error']


def test_fetched_text_is_sanitised(flask_app, monkeypatch):
    reddit = {'data': {'children': [{'data': {
        'id': 'r9', 'title': 'Markup', 'selftext': '<b>Export</b> is <em>slow</em>',
    }}]}}
    hn = {'hits': [{'objectID': 7, 'comment_text': '<p>Export <i>is</i> slow</p>'}]}
    monkeypatch.setattr(
        hunter.requests, 'get',
        lambda url, params=None, headers=None, timeout=None: FakeResponse(reddit if url == hunter.REDDIT_SEARCH_URL else hn),
    )
    with flask_app.app_context():
        assert hunter.fetch_reddit('acme', 5)[0]['content'] == 'Export is slow'
        assert hunter.fetch_hackernews('acme', 5)[0]['content'] == 'Export is slow'
