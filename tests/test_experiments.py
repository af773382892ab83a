import pytest

from services import bayesian
from services.experiments import bucket_for, pick_variant

EXPERIMENT = {
    'name': 'Pricing page headline',
    'hypothesis': 'A benefit-led headline converts better',
    'goal_event': 'signup',
    'variants': [
        {'key': 'control', 'name': 'Current', 'traffic_percentage': 50, 'is_control': True},
        {'key': 'benefit', 'name': 'Benefit led', 'traffic_percentage': 50, 'config': {'headline': 'Ship faster'}},
    ],
}


@pytest.fixture
def experiment(client, project):
    resp = client.post(f"/api/projects/{project['id']}/experiments", json=EXPERIMENT)
    assert resp.status_code == 201
    return resp.get_json()['experiment']


@pytest.fixture
def api_key(client, project):
    resp = client.post(f"/api/projects/{project['id']}/api-keys", json={'name': 'Site'})
    return resp.get_json()['api_key']['key']


def test_traffic_must_sum_to_100(client, project):
    bad = dict(EXPERIMENT, variants=[
        {'key': 'control', 'traffic_percentage': 50, 'is_control': True},
        {'key': 'b', 'traffic_percentage': 30},
    ])
    resp = client.post(f"/api/projects/{project['id']}/experiments", json=bad)
    assert resp.status_code == 400
    assert resp.get_json()['fields']['variants'] == 'Traffic percentages must add up to 100.'


def test_exactly_one_control_required(client, project):
    bad = dict(EXPERIMENT, variants=[
        {'key': 'a', 'traffic_percentage': 50},
        {'key': 'b', 'traffic_percentage': 50},
    ])
    resp = client.post(f"/api/projects/{project['id']}/experiments", json=bad)
    assert resp.get_json()['fields']['variants'] == 'Exactly one variant must be the control.'


def test_new_experiment_is_draft(experiment):
    assert experiment['status'] == 'draft'
    assert [v['variant_key'] for v in experiment['variants']] == ['control', 'benefit']
    assert experiment['variants'][1]['config'] == {'headline': 'Ship faster'}


def test_lifecycle_transitions(client, experiment):
    url = f"/api/experiments/{experiment['id']}"
    assert client.post(f'{url}/stop').status_code == 409
    started = client.post(f'{url}/start').get_json()['experiment']
    assert started['status'] == 'running'
    assert started['started_at']
    assert client.post(f'{url}/start').status_code == 409
    assert client.delete(url).status_code == 409
    assert client.post(f'{url}/stop').get_json()['experiment']['status'] == 'completed'
    assert client.post(f'{url}/pause').status_code == 400
    assert client.delete(url).status_code == 204


def test_assignment_requires_running_experiment(client, experiment, api_key):
    resp = client.post(
        f"/api/v1/experiments/{experiment['id']}/assign",
        json={'visitor_id': 'v-1'},
        headers={'X-API-Key': api_key},
    )
    assert resp.status_code == 409


def test_assignment_is_sticky(client, experiment, api_key):
    client.post(f"/api/experiments/{experiment['id']}/start")
    headers = {'X-API-Key': api_key}
    url = f"/api/v1/experiments/{experiment['id']}/assign"
    first = client.post(url, json={'visitor_id': 'visitor-42'}, headers=headers).get_json()
    for _ in range(3):
        again = client.post(url, json={'visitor_id': 'visitor-42'}, headers=headers).get_json()
        assert again['variant_key'] == first['variant_key']
    assert client.post(url, json={}, headers=headers).status_code == 400


def test_events_feed_results(client, experiment, api_key):
    client.post(f"/api/experiments/{experiment['id']}/start")
    headers = {'X-API-Key': api_key}
    for i in range(20):
        client.post(
            f"/api/v1/experiments/{experiment['id']}/assign",
            json={'visitor_id': f'visitor-{i}'},
            headers=headers,
        )
    resp = client.post(
        f"/api/v1/experiments/{experiment['id']}/events",
        json={'visitor_id': 'visitor-1', 'event_type': 'custom', 'event_name': 'signup'},
        headers=headers,
    )
    assert resp.status_code == 201
    bad = client.post(
        f"/api/v1/experiments/{experiment['id']}/events",
        json={'visitor_id': 'visitor-1', 'event_type': 'purchase'},
        headers=headers,
    )
    assert bad.status_code == 400

    results = client.get(f"/api/experiments/{experiment['id']}/results").get_json()
    assert results['total_visitors'] == 20
    assert sum(v['visitors'] for v in results['variants']) == 20
    assert sum(v['conversions'] for v in results['variants']) == 1
    assert results['winner_variant_id'] in {v['id'] for v in experiment['variants']}


def test_sdk_cannot_reach_other_projects_experiment(client, experiment):
    client.post('/api/projects', json={'name': 'Other', 'slug': 'other-project'})
    projects = client.get('/api/projects').get_json()['projects']
    other = next(p for p in projects if p['slug'] == 'other-project')
    other_key = client.post(f"/api/projects/{other['id']}/api-keys", json={}).get_json()['api_key']['key']
    client.post(f"/api/experiments/{experiment['id']}/start")
    resp = client.post(
        f"/api/v1/experiments/{experiment['id']}/assign",
        json={'visitor_id': 'x'},
        headers={'X-API-Key': other_key},
    )
    assert resp.status_code == 404


def test_bucketing_is_deterministic_and_respects_traffic():
    assert bucket_for(7, 'abc') == bucket_for(7, 'abc')
    variants = [{'id': 1, 'traffic_percentage': 10}, {'id': 2, 'traffic_percentage': 90}]
    assert pick_variant(variants, 5)['id'] == 1
    assert pick_variant(variants, 10)['id'] == 2
    assert pick_variant(variants, 99)['id'] == 2


def test_bayesian_detects_clear_winner():
    analysis = bayesian.analyze_variants([
        {'id': 1, 'visitors': 1000, 'conversions': 50, 'is_control': True},
        {'id': 2, 'visitors': 1000, 'conversions': 100, 'is_control': False},
    ], seed=7)
    challenger = analysis['variants'][1]
    assert challenger['probability_to_beat_control'] > 0.99
    assert analysis['winner_variant_id'] == 2
    assert analysis['is_significant'] is True


def test_bayesian_keeps_control_when_challenger_loses():
    analysis = bayesian.analyze_variants([
        {'id': 1, 'visitors': 1000, 'conversions': 100, 'is_control': True},
        {'id': 2, 'visitors': 1000, 'conversions': 60, 'is_control': False},
    ], seed=7)
    assert analysis['winner_variant_id'] == 1
    assert analysis['variants'][0]['probability_to_beat_control'] == 0.5


def test_bayesian_without_traffic_has_no_winner():
    analysis = bayesian.analyze_variants([
        {'id': 1, 'visitors': 0, 'conversions': 0, 'is_control': True},
        {'id': 2, 'visitors': 0, 'conversions': 0, 'is_control': False},
    ])
    assert analysis['winner_variant_id'] is None
    assert analysis['is_significant'] is False


def test_bayesian_challenger_without_traffic_cannot_win():
    analysis = bayesian.analyze_variants([
        {'id': 1, 'visitors': 200, 'conversions': 2, 'is_control': True},
        {'id': 2, 'visitors': 0, 'conversions': 0, 'is_control': False},
    ], seed=1)
    assert analysis['winner_variant_id'] is None
    assert analysis['is_significant'] is False
    assert analysis['variants'][1]['probability_to_beat_control'] == 0.0


def test_credible_interval_and_sample_size():
    low, high = bayesian.credible_interval(50, 1000)
    assert 0.03 < low < 0.05 < high < 0.07
    assert bayesian.required_sample_size(0.1, 0.1) is None
    assert bayesian.required_sample_size(0.10, 0.12) > bayesian.required_sample_size(0.10, 0.20)
