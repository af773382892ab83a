from services.competitive import extract_mentions_patterns, feature_from_phrase, gap_priority

FEEDBACK = (
    'Honestly I wish this had a public roadmap like Canny has. '
    'Half my team switched from Trello already.'
)


def _analyze(client, project, text, **extra):
    return client.post(f"/api/projects/{project['id']}/competitors/analyze", json=dict(extra, text=text))


def test_switch_from_is_positive_for_us():
    mentions = extract_mentions_patterns('We switched from Trello last month and love it.', product_name='Acme')
    assert mentions == [{
        'competitor_name': 'Trello',
        'mention_type': 'switch_from',
        'context': 'We switched from Trello last month and love it.',
        'sentiment_vs_us': 0.6,
        'feature_name': None,
    }]


def test_switch_to_and_comparison_patterns():
    leaving = extract_mentions_patterns('Sadly we are moving to Productboard next quarter.')
    assert [(m['competitor_name'], m['mention_type'], m['sentiment_vs_us']) for m in leaving] == [
        ('Productboard', 'switch_to', -0.8),
    ]

    compared = extract_mentions_patterns('Acme vs Linear: Linear is slow and buggy.', product_name='Acme')
    assert [(m['competitor_name'], m['mention_type']) for m in compared] == [('Linear', 'comparison')]


def test_feature_comparison_extracts_feature():
    mentions = extract_mentions_patterns('I wish Acme had dark mode like Notion has.', product_name='Acme')
    assert len(mentions) == 1
    assert mentions[0]['competitor_name'] == 'Notion'
    assert mentions[0]['feature_name'] == 'dark mode'
    assert mentions[0]['sentiment_vs_us'] == -0.4


def test_known_competitors_are_found_by_name():
    mentions = extract_mentions_patterns('Our team also tried Canny once.', known_competitors=['Canny'])
    assert [(m['competitor_name'], m['mention_type'], m['sentiment_vs_us']) for m in mentions] == [
        ('Canny', 'general', 0.0),
    ]
    assert extract_mentions_patterns('Thinking about switching to this one.') == []


def test_feature_from_phrase():
    assert feature_from_phrase('YourApp needs dark mode') == 'dark mode'
    assert feature_from_phrase('the') is None


def test_gap_priority():
    assert gap_priority(11) == 'critical'
    assert gap_priority(10) == 'high'
    assert gap_priority(5) == 'high'
    assert gap_priority(4) == 'medium'
    assert gap_priority(2) == 'medium'
    assert gap_priority(1) == 'low'


def test_competitor_crud(client, project):
    url = f"/api/projects/{project['id']}/competitors"
    resp = client.post(url, json={'name': 'Canny'})
    assert resp.status_code == 201
    competitor = resp.get_json()['competitor']
    assert competitor['auto_detected'] == 0
    assert client.post(url, json={'name': 'Canny'}).status_code == 409
    assert client.post(url, json={'name': '  '}).status_code == 400

    updated = client.patch(f"/api/competitors/{competitor['id']}", json={'status': 'monitoring'})
    assert updated.get_json()['competitor']['status'] == 'monitoring'
    assert client.patch(f"/api/competitors/{competitor['id']}", json={'status': 'beaten'}).status_code == 400
    assert client.patch(f"/api/competitors/{competitor['id']}", json={}).status_code == 400

    assert client.get(f'{url}?status=monitoring').get_json()['competitors'][0]['name'] == 'Canny'
    assert client.get(f'{url}?status=gone').status_code == 400

    assert client.delete(f"/api/competitors/{competitor['id']}").status_code == 204
    assert client.delete(f"/api/competitors/{competitor['id']}").status_code == 404


def test_analyze_records_mentions_and_gaps(client, project):
    resp = _analyze(client, project, FEEDBACK)
    assert resp.status_code == 201
    assert [m['competitor_name'] for m in resp.get_json()['mentions']] == ['Trello', 'Canny']

    competitors = client.get(f"/api/projects/{project['id']}/competitors").get_json()['competitors']
    by_name = {c['name']: c for c in competitors}
    assert set(by_name) == {'Trello', 'Canny'}
    assert by_name['Trello']['auto_detected'] is True
    assert by_name['Trello']['switch_from_count'] == 1
    assert by_name['Canny']['total_mentions'] == 1

    mentions = client.get(f"/api/projects/{project['id']}/competitors/mentions").get_json()['mentions']
    assert [m['mention_type'] for m in mentions] == ['feature_comparison', 'switch_from']
    only_switches = client.get(f"/api/projects/{project['id']}/competitors/mentions?mention_type=switch_from")
    assert len(only_switches.get_json()['mentions']) == 1

    gaps = client.get(f"/api/projects/{project['id']}/feature-gaps").get_json()['feature_gaps']
    assert len(gaps) == 1
    assert gaps[0]['feature_name'] == 'public roadmap'
    assert gaps[0]['competitors'] == ['Canny']
    assert gaps[0]['priority'] == 'low'

    overview = client.get(f"/api/projects/{project['id']}/competitive/overview").get_json()
    assert overview['summary']['competitors_tracked'] == 2
    assert overview['summary']['mentions_by_type']['switch_from'] == 1
    assert overview['summary']['urgent_feature_gaps'] == 0

    # pattern extraction does not use the AI quota
    assert client.get(f"/api/projects/{project['id']}/ai-usage").get_json()['used'] == 0


def test_dismissed_competitors_are_not_recorded(client, project):
    _analyze(client, project, FEEDBACK)
    competitors = client.get(f"/api/projects/{project['id']}/competitors").get_json()['competitors']
    canny = next(c for c in competitors if c['name'] == 'Canny')
    client.patch(f"/api/competitors/{canny['id']}", json={'status': 'dismissed'})

    _analyze(client, project, 'We need SSO like Canny has.')
    mentions = client.get(f"/api/projects/{project['id']}/competitors/mentions").get_json()['mentions']
    assert len(mentions) == 2
    summary = client.get(f"/api/projects/{project['id']}/competitive/overview").get_json()['summary']
    assert summary['competitors_tracked'] == 1


def test_feature_gap_status(client, project):
    _analyze(client, project, FEEDBACK)
    gap = client.get(f"/api/projects/{project['id']}/feature-gaps").get_json()['feature_gaps'][0]

    resp = client.patch(f"/api/feature-gaps/{gap['id']}", json={'status': 'planned'})
    assert resp.get_json()['feature_gap']['status'] == 'planned'
    assert client.patch(f"/api/feature-gaps/{gap['id']}", json={'status': 'maybe'}).status_code == 400

    planned = client.get(f"/api/projects/{project['id']}/feature-gaps?status=planned").get_json()['feature_gaps']
    assert [g['id'] for g in planned] == [gap['id']]
    assert client.get(f"/api/projects/{project['id']}/feature-gaps?status=later").status_code == 400


def test_analyze_validation(client, project, make_post):
    assert _analyze(client, project, '').status_code == 400
    assert _analyze(client, project, 'x' * 5001).status_code == 400

    post = make_post('Public roadmap')
    linked = _analyze(client, project, 'We switched from Trello.', post_id=post['id'])
    assert linked.status_code == 201
    mention = client.get(f"/api/projects/{project['id']}/competitors/mentions").get_json()['mentions'][0]
    assert mention['post_id'] == post['id']
