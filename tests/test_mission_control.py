from datetime import timedelta

import pytest

from db import db_connect, utcnow
from services.mission_control import sentiment_to_score, trend_for


@pytest.fixture
def old_post(flask_app, project):
    """A negative post from ten days ago, in last week's window."""
    created = (utcnow() - timedelta(days=10)).isoformat()
    with flask_app.app_context():
        conn = db_connect()
        c = conn.cursor()
        c.execute(
            '''
            INSERT INTO posts (project_id, title, sentiment_score, created_at, updated_at)
            VALUES (?, 'Old complaint', -0.5, ?, ?)
            ''',
            (project['id'], created, created),
        )
        post_id = c.lastrowid
        conn.commit()
        conn.close()
    return post_id


def _dashboard(client, project, refresh=False):
    url = f"/api/projects/{project['id']}/mission-control"
    resp = client.get(f'{url}?refresh=1' if refresh else url)
    assert resp.status_code == 200
    return resp.get_json()


def test_sentiment_score_and_trend():
    assert sentiment_to_score(0) == 50
    assert sentiment_to_score(1) == 100
    assert sentiment_to_score(-1) == 0
    assert sentiment_to_score(3) == 100
    assert trend_for(0.3, 0.1) == 'up'
    assert trend_for(0.1, 0.3) == 'down'
    assert trend_for(0.12, 0.1) == 'stable'


def test_weekly_metrics(client, project, make_post, old_post):
    planned = make_post('Love the new roadmap')
    client.patch(f"/api/posts/{planned['id']}", json={'status': 'planned'})

    body = _dashboard(client, project)
    assert body['project'] == {'id': project['id'], 'name': 'Acme Board', 'slug': 'acme-board'}
    metrics = body['metrics']
    assert metrics['sentiment'] == {'score': 100, 'previous_score': 25, 'trend': 'up', 'samples': 1}
    assert metrics['feedback'] == {'this_week': 1, 'last_week': 1, 'trend': 'stable'}
    assert metrics['roadmap'] == {'planned': 1, 'in_progress': 0, 'completed_this_week': 0}
    assert metrics['experiments'] == {'running': 0}


def test_briefing_is_composed_without_ai(client, project, make_post, old_post):
    make_post('Love the new roadmap')
    briefing = _dashboard(client, project)['briefing']

    assert briefing['briefing_source'] == 'rules'
    assert briefing['briefing_text'].startswith('Sentiment is 100/100 and up.')
    assert 'Good news: sentiment is improving.' in briefing['briefing_text']
    assert briefing['critical_items'] == []
    assert [item['title'] for item in briefing['success_items']] == ['Sentiment is improving']
    assert [o['title'] for o in briefing['opportunities']] == ['Love the new roadmap', 'Old complaint']
    assert briefing['opportunities'][0]['impact'] == 'low'


def test_briefing_is_cached_per_day(client, project, make_post):
    first = _dashboard(client, project)
    assert first['cached'] is False
    assert first['briefing']['opportunities'] == []

    make_post('Bulk edit posts')
    second = _dashboard(client, project)
    assert second['cached'] is True
    assert second['generated_at'] == first['generated_at']
    assert second['briefing']['opportunities'] == []

    refreshed = _dashboard(client, project, refresh=True)
    assert refreshed['cached'] is False
    assert [o['title'] for o in refreshed['briefing']['opportunities']] == ['Bulk edit posts']
    # rule based briefings do not use the AI quota
    assert client.get(f"/api/projects/{project['id']}/ai-usage").get_json()['used'] == 0


def test_churn_and_competitor_switches_are_critical(client, flask_app, project):
    now = utcnow().isoformat()
    with flask_app.app_context():
        conn = db_connect()
        conn.execute(
            '''
            INSERT INTO discovered_feedback (
                project_id, platform, platform_id, content, discovered_at, processing_status,
                classification, created_at
            )
            VALUES (?, 'reddit', 'churn-1', 'Cancelling next month', ?, 'complete', 'churn_risk', ?)
            ''',
            (project['id'], now, now),
        )
        conn.commit()
        conn.close()
    client.post(
        f"/api/projects/{project['id']}/competitors/analyze",
        json={'text': 'Our whole team is moving to Productboard soon.'},
    )

    briefing = _dashboard(client, project, refresh=True)['briefing']
    assert [item['title'] for item in briefing['critical_items']] == [
        '1 churn signal this week',
        '1 user moving to competitors',
    ]
    assert briefing['critical_items'][1]['description'] == 'Our whole team is moving to Productboard soon.'
    assert briefing['threats'][0]['title'] == 'User moving to Productboard'
    assert 'Needs attention: 1 churn signal this week.' in briefing['briefing_text']


def test_project_analytics(client, project, make_post):
    voted = make_post('Slack integration', category='feature_request')
    make_post('Login fails on Safari', category='bug')
    client.post(f"/api/posts/{voted['id']}/vote")
    client.post(f"/api/posts/{voted['id']}/comments", json={'body': 'Yes please'})

    data = client.get(f"/api/app/analytics/{project['id']}").get_json()
    assert data['totals'] == {'posts': 2, 'votes': 1, 'comments': 1, 'discovered_feedback': 0}
    assert data['posts_by_status'] == {'open': 2}
    assert data['posts_by_category'] == {'feature_request': 1, 'bug': 1}
    assert len(data['daily']) == 30
    assert data['daily'][-1] == {'date': utcnow().date().isoformat(), 'posts': 2, 'votes': 1}
    assert data['top_posts'][0]['id'] == voted['id']


def test_analytics_requires_membership(client, project):
    client.post('/api/auth/logout')
    client.post('/api/auth/register', json={'email': 'stranger@example.com', 'password': 'Stranger123'})
    assert client.get(f"/api/app/analytics/{project['id']}").status_code == 403
    assert client.get(f"/api/projects/{project['id']}/mission-control").status_code == 403
