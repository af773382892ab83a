import pytest

from services import roadmap, themes
from services.priority_scoring import (
    PriorityContext,
    apply_business_rules,
    fallback_score,
    priority_level_for,
    quarter_recommendation_for,
)


def _seed_export_posts(make_post):
    return [
        make_post('Export reports to CSV', 'Finance needs the monthly numbers'),
        make_post('CSV export for invoices', 'Accounting asked for it'),
        make_post('Export dashboard data as CSV', 'So we can chart it elsewhere'),
    ]


def test_priority_level_thresholds():
    assert priority_level_for(9.0, 2) == 'immediate'
    assert priority_level_for(4.0, 9) == 'immediate'
    assert priority_level_for(7.2, 2) == 'current-quarter'
    assert priority_level_for(5.5, 2) == 'next-quarter'
    assert priority_level_for(3.1, 2) == 'backlog'
    assert priority_level_for(1.0, 2) == 'declined'


def test_quarter_recommendation_wraps_year():
    assert quarter_recommendation_for('next-quarter', 'Q4') == 'Q1'
    assert quarter_recommendation_for('current-quarter', 'Q2') == 'Q2'
    assert quarter_recommendation_for('immediate', 'Q3') == 'This Sprint'
    assert quarter_recommendation_for('declined', 'Q1') == 'Not Planned'


def test_paid_bug_is_always_immediate():
    ctx = PriorityContext(post_id=1, title='Checkout button is broken', tier='pro', current_quarter='Q2')
    result = apply_business_rules(ctx, {'scores': {factor: 2 for factor in (
        'revenue_impact', 'user_reach', 'strategic_alignment', 'implementation_effort',
        'competitive_advantage', 'risk_mitigation', 'user_satisfaction',
    )}})
    assert result.is_bug is True
    assert result.priority_level == 'immediate'
    assert result.weighted_score >= 8.6
    assert result.scores['revenue_impact'] == 8
    assert result.quarter_recommendation == 'This Sprint'


def test_business_rules_clamp_and_default_scores():
    ctx = PriorityContext(post_id=1, title='Saved filters', tier='free', current_quarter='Q1')
    result = apply_business_rules(ctx, {
        'scores': {'revenue_impact': 42, 'user_reach': 'lots'},
        'suggested_action': 'teleport',
        'estimated_days': '5',
    })
    assert result.scores['revenue_impact'] == 10.0
    assert result.scores['user_reach'] == 5.0
    assert result.scores['strategic_alignment'] == 5.0
    assert result.suggested_action in ('implement', 'investigate')
    assert result.estimated_days == 5
    assert result.is_bug is False


def test_fallback_score_uses_engagement_and_tier():
    ctx = PriorityContext(post_id=1, title='Slack alerts', vote_count=100, comment_count=50, tier='enterprise')
    result = fallback_score(ctx)
    assert result.source == 'heuristic'
    assert result.weighted_score == round((10 + 8 + 10) / 3, 1)
    assert result.priority_level == 'current-quarter'
    assert result.suggested_action == 'implement'


def test_priority_scoring_endpoint_without_llm(client, make_post):
    post = make_post('App crashes on upload', 'The upload screen crashes every time', category='bug')
    resp = client.post('/api/ai/priority-scoring', json={'post_id': post['id'], 'strategy': 'retention'})
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['priority']['source'] == 'heuristic'
    assert body['priority']['is_bug'] is True
    assert body['ai_usage']['used'] == 1

    detail = client.get(f"/api/posts/{post['id']}").get_json()['post']
    assert detail['priority']['strategy'] == 'retention'
    assert set(detail['priority']['scores']) >= {'revenue_impact', 'user_reach'}


def test_priority_scoring_rejects_unknown_strategy(client, make_post):
    post = make_post('Bulk edit')
    resp = client.post('/api/ai/priority-scoring', json={'post_id': post['id'], 'strategy': 'vibes'})
    assert resp.status_code == 400


def test_batch_priority_scoring(client, project, make_post):
    make_post('Bulk edit')
    make_post('Audit log')
    resp = client.post('/api/ai/priority-scoring/batch', json={'project_id': project['id']})
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['scored'] == 2
    assert body['ai_usage']['used'] == 2


def test_keyword_theme_detection_groups_recurring_words():
    items = [
        {'title': 'Export reports to CSV', 'description': ''},
        {'title': 'CSV export for invoices', 'description': ''},
        {'title': 'Export dashboard data as CSV', 'description': ''},
        {'title': 'Dark mode', 'description': ''},
    ]
    detected = themes.detect_themes_keywords(items)
    assert len(detected) == 1
    assert detected[0]['theme_name'].lower() in ('export csv', 'csv export')
    assert detected[0]['item_indices'] == [0, 1, 2]


def test_similar_theme_names_merge():
    assert themes.are_themes_similar('Dark Mode', 'dark mode support')
    assert not themes.are_themes_similar('Dark Mode', 'CSV Export')


def test_near_duplicate_themes_collapse_before_saving():
    items = [
        {'created_at': '2024-03-01T00:00:00+00:00', 'sentiment_score': -0.4},
        {'created_at': '2024-03-05T00:00:00+00:00', 'sentiment_score': 0.0},
        {'created_at': '2024-03-09T00:00:00+00:00', 'sentiment_score': 0.4},
        {'created_at': '2024-03-10T00:00:00+00:00', 'sentiment_score': None},
    ]
    detected = [
        {'theme_name': 'Dark Mode', 'item_indices': [0, 1], 'confidence': 0.7},
        {'theme_name': 'dark mode support', 'item_indices': [1, 2], 'confidence': 0.9},
        {'theme_name': 'CSV Export', 'item_indices': [3], 'confidence': 0.5},
    ]
    new_themes, updated = themes.merge_and_rank_themes(detected, [], items)

    assert updated == []
    assert [t['theme_name'] for t in new_themes] == ['Dark Mode', 'CSV Export']
    dark = new_themes[0]
    assert dark['item_indices'] == [0, 1, 2]
    assert dark['frequency'] == 3
    assert dark['avg_sentiment'] == 0.0
    assert (dark['first_seen'], dark['last_seen']) == (items[0]['created_at'], items[2]['created_at'])
    assert dark['confidence'] == 0.9

    stored = [{
        'id': 7, 'theme_name': 'Dark mode', 'frequency': 2,
        'first_seen': '2024-02-01T00:00:00+00:00', 'last_seen': '2024-02-02T00:00:00+00:00',
    }]
    new_themes, updated = themes.merge_and_rank_themes(detected[1:2], stored, items)
    assert new_themes == []
    assert [(t['id'], t['theme_name'], t['frequency']) for t in updated] == [(7, 'Dark mode', 2)]
    assert updated[0]['first_seen'] == '2024-02-01T00:00:00+00:00'


def test_theme_growth_marks_new_and_growing_themes():
    current = [{'id': 1, 'frequency': 6}, {'id': 2, 'frequency': 4}, {'id': 3, 'frequency': 3}]
    previous = [{'id': 1, 'frequency': 2}, {'id': 3, 'frequency': 3}]
    emerging = themes.identify_emerging_themes(current, previous)
    by_id = {t['id']: t for t in emerging}
    assert set(by_id) == {1, 2}
    assert by_id[1]['growth_label'] == '+200% increase'
    assert by_id[2]['growth_label'] == 'New theme'


def test_theme_detection_requires_minimum_items(client, project, make_post):
    make_post('Only one post')
    resp = client.post(f"/api/projects/{project['id']}/themes/detect", json={})
    assert resp.status_code == 200
    assert resp.get_json()['themes_found'] == 0


def test_theme_detection_and_roadmap_generation(client, project, make_post):
    _seed_export_posts(make_post)

    detected = client.post(f"/api/projects/{project['id']}/themes/detect", json={'days': 30}).get_json()
    assert detected['source'] == 'keywords'
    assert detected['new_themes'] == 1
    assert detected['clusters'] == 1

    listed = client.get(f"/api/projects/{project['id']}/themes").get_json()['themes']
    assert listed[0]['frequency'] == 3
    theme_id = listed[0]['id']

    detail = client.get(f"/api/projects/{project['id']}/themes/{theme_id}").get_json()['theme']
    assert len(detail['posts']) == 3

    clusters = client.get(f"/api/projects/{project['id']}/themes/clusters").get_json()['clusters']
    assert clusters[0]['themes'][0]['id'] == theme_id

    generated = client.post(f"/api/projects/{project['id']}/roadmap/generate").get_json()
    assert generated['count'] == 1
    suggestion = generated['suggestions'][0]
    assert suggestion['theme_id'] == theme_id
    assert suggestion['estimated_effort'] == 'medium'
    assert suggestion['frequency_score'] == 1.0

    stored = client.get(f"/api/projects/{project['id']}/roadmap/suggestions").get_json()['suggestions']
    assert [s['theme_id'] for s in stored] == [theme_id]

    pdf = client.get(f"/api/projects/{project['id']}/roadmap/export.pdf")
    assert pdf.status_code == 200
    assert pdf.mimetype == 'application/pdf'
    assert pdf.data.startswith(b'%PDF')


def test_roadmap_scoring_helpers():
    assert roadmap.normalize_sentiment(-1) == 1.0
    assert roadmap.normalize_sentiment(0) == 0.5
    assert roadmap.normalize_frequency(0, 0) == 0.0
    assert roadmap.estimate_effort('SSO login') == 'very_high'
    assert roadmap.estimate_effort('Mobile app') == 'high'
    assert roadmap.estimate_effort('Button color') == 'low'
    assert roadmap.estimate_effort('Saved filters') == 'medium'
    assert roadmap.priority_level(80) == 'critical'
    assert roadmap.priority_level(10) == 'low'


def test_roadmap_priority_rewards_pain_and_competitors():
    calm = roadmap.ThemeSignals(1, 'Saved filters', 5, 0.6, None)
    painful = roadmap.ThemeSignals(
        2, 'Saved filters', 5, -0.8, None,
        business_impact_keywords=['churn'], urgency_scores=[5, 5], competitor_count=5,
    )
    calm_score, _ = roadmap.calculate_priority(calm, max_mentions=5)
    pain_score, breakdown = roadmap.calculate_priority(painful, max_mentions=5)
    assert pain_score > calm_score
    assert breakdown['competitive'] == 1.0
    assert breakdown['business_impact'] == pytest.approx(0.7)
