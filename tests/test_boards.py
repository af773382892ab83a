from services import llm
from services.sentiment import analyze_sentiment


def test_create_project_validates_slug(client, owner):
    resp = client.post('/api/projects', json={'name': 'Bad', 'slug': 'No Spaces!'})
    assert resp.status_code == 400


def test_project_slug_must_be_unique(client, project):
    resp = client.post('/api/projects', json={'name': 'Again', 'slug': 'acme-board'})
    assert resp.status_code == 409


def test_project_starts_on_free_plan(client, project):
    detail = client.get(f"/api/projects/{project['id']}").get_json()['project']
    assert detail['plan'] == 'free'
    assert detail['role'] == 'owner'

    listing = client.get('/api/projects').get_json()['projects']
    assert [p['slug'] for p in listing] == ['acme-board']


def test_other_users_cannot_see_project(client, project):
    client.post('/api/auth/logout')
    client.post('/api/auth/register', json={'email': 'stranger@example.com', 'password': 'Stranger123'})
    assert client.get(f"/api/projects/{project['id']}").status_code == 403
    assert client.get('/api/projects').get_json()['projects'] == []


def test_member_can_read_but_not_delete(client, project):
    client.post('/api/auth/logout')
    client.post('/api/auth/register', json={'email': 'member@example.com', 'password': 'Member1234'})
    client.post('/api/auth/logout')
    client.post('/api/auth/login', json={'email': 'owner@example.com', 'password': 'Sup3rSecret1'})

    resp = client.post(f"/api/projects/{project['id']}/members", json={'email': 'member@example.com'})
    assert resp.status_code == 201
    dup = client.post(f"/api/projects/{project['id']}/members", json={'email': 'member@example.com'})
    assert dup.status_code == 409

    client.post('/api/auth/logout')
    client.post('/api/auth/login', json={'email': 'member@example.com', 'password': 'Member1234'})
    assert client.get(f"/api/projects/{project['id']}").status_code == 200
    assert client.delete(f"/api/projects/{project['id']}").status_code == 403


def test_create_post_and_flag_similar(client, project, make_post):
    make_post('Dark mode for the dashboard', 'Please add a dark mode theme to the dashboard')
    resp = client.post(f"/api/projects/{project['id']}/posts", json={
        'title': 'Dashboard dark mode',
        'description': 'Add a dark mode theme for the dashboard',
        'category': 'feature_request',
    })
    assert resp.status_code == 201
    body = resp.get_json()
    assert body['post']['status'] == 'open'
    assert body['post']['source'] == 'board'
    assert len(body['similar_posts']) == 1
    assert body['similar_posts'][0]['similarity'] >= 0.5


def test_create_post_validation(client, project):
    resp = client.post(f"/api/projects/{project['id']}/posts", json={'title': 'x', 'category': 'wishlist'})
    assert resp.status_code == 400
    fields = resp.get_json()['fields']
    assert 'title' in fields
    assert 'category' in fields


def test_vote_once_per_user(client, make_post):
    post = make_post('Export to CSV')
    first = client.post(f"/api/posts/{post['id']}/vote")
    assert first.status_code == 201
    assert first.get_json()['vote_count'] == 1

    second = client.post(f"/api/posts/{post['id']}/vote")
    assert second.status_code == 409
    assert second.get_json()['vote_count'] == 1

    removed = client.delete(f"/api/posts/{post['id']}/vote")
    assert removed.get_json() == {'voted': False, 'vote_count': 0}
    assert client.delete(f"/api/posts/{post['id']}/vote").status_code == 404


def test_post_status_update_and_listing_filters(client, project, make_post):
    post = make_post('Slack integration')
    make_post('Better onboarding')

    resp = client.patch(f"/api/posts/{post['id']}", json={'status': 'planned'})
    assert resp.get_json()['post']['status'] == 'planned'
    assert client.patch(f"/api/posts/{post['id']}", json={'status': 'shipped'}).status_code == 400

    planned = client.get(f"/api/projects/{project['id']}/posts?status=planned").get_json()
    assert planned['total'] == 1
    assert planned['posts'][0]['id'] == post['id']
    assert client.get(f"/api/projects/{project['id']}/posts?sort=random").status_code == 400


def test_comments_keep_count_in_sync(client, make_post):
    post = make_post('Keyboard shortcuts')
    resp = client.post(f"/api/posts/{post['id']}/comments", json={'body': 'Would love this'})
    assert resp.status_code == 201
    comment = resp.get_json()['comment']

    detail = client.get(f"/api/posts/{post['id']}").get_json()['post']
    assert detail['comment_count'] == 1
    assert detail['comments'][0]['body'] == 'Would love this'

    assert client.post(f"/api/posts/{post['id']}/comments", json={'body': '   '}).status_code == 400
    assert client.delete(f"/api/comments/{comment['id']}").status_code == 204
    assert client.get(f"/api/posts/{post['id']}").get_json()['post']['comment_count'] == 0


def test_mark_duplicate_declines_post(client, make_post):
    original = make_post('Two factor auth')
    copy = make_post('2FA login support')
    resp = client.post(f"/api/posts/{copy['id']}/duplicate", json={'duplicate_of': original['id']})
    assert resp.status_code == 200
    assert resp.get_json()['post']['status'] == 'declined'
    assert client.post(f"/api/posts/{copy['id']}/duplicate", json={'duplicate_of': copy['id']}).status_code == 400


def test_public_board_lists_and_accepts_posts(client, project, make_post):
    post = make_post('Calendar sync')
    client.patch(f"/api/posts/{post['id']}", json={'status': 'in_progress'})
    client.post('/api/auth/logout')

    board = client.get('/api/public/acme-board').get_json()
    assert board['project']['slug'] == 'acme-board'
    assert board['total_posts'] == 1

    submitted = client.post('/api/public/acme-board/posts', json={
        'title': 'Mobile app please',
        'email': 'Visitor@Example.com',
    })
    assert submitted.status_code == 201
    assert 'author_email' not in submitted.get_json()['post']

    listing = client.get('/api/public/acme-board/posts').get_json()
    assert listing['total'] == 2
    assert all('author_email' not in p for p in listing['posts'])

    roadmap = client.get('/api/public/acme-board/roadmap').get_json()['roadmap']
    assert [p['id'] for p in roadmap['in_progress']] == [post['id']]
    assert roadmap['planned'] == []


def test_public_board_honeypot_rejects_bots(client, project):
    resp = client.post('/api/public/acme-board/posts', json={
        'title': 'Buy cheap stuff',
        'website': 'http://spam.example',
    })
    assert resp.status_code == 400


def test_public_vote_deduplicates_anonymous_visitor(client, make_post):
    post = make_post('Zapier integration')
    client.post('/api/auth/logout')
    url = f"/api/public/acme-board/posts/{post['id']}/vote"
    headers = {'User-Agent': 'pytest-browser'}
    assert client.post(url, headers=headers).status_code == 201
    assert client.post(url, headers=headers).status_code == 409


def test_private_board_is_hidden(client, project):
    client.patch(f"/api/projects/{project['id']}", json={'is_private': True})
    assert client.get('/api/public/acme-board').status_code == 404


def test_sdk_requires_valid_api_key(client, project):
    resp = client.post('/api/v1/feedback', json={'title': 'From SDK'})
    assert resp.status_code == 401
    resp = client.post('/api/v1/feedback', json={'title': 'From SDK'}, headers={'X-API-Key': 'sl_bogus'})
    assert resp.status_code == 401


def test_sdk_feedback_with_api_key(client, project):
    created = client.post(f"/api/projects/{project['id']}/api-keys", json={'name': 'Backend'})
    assert created.status_code == 201
    raw_key = created.get_json()['api_key']['key']
    assert raw_key.startswith('sl_')

    headers = {'X-API-Key': raw_key}
    resp = client.post('/api/v1/feedback', json={
        'title': 'Webhook retries',
        'description': 'Retry failed webhooks automatically',
        'user_email': 'dev@example.com',
    }, headers=headers)
    assert resp.status_code == 201
    assert resp.get_json()['post']['source'] == 'api'

    posts = client.get('/api/v1/posts', headers=headers).get_json()
    assert posts['total'] == 1

    keys = client.get(f"/api/projects/{project['id']}/api-keys").get_json()['api_keys']
    assert keys[0]['usage_count'] == 2
    assert 'key_hash' not in keys[0]

    key_id = created.get_json()['api_key']['id']
    assert client.delete(f"/api/projects/{project['id']}/api-keys/{key_id}").status_code == 204
    assert client.get('/api/v1/posts', headers=headers).status_code == 401


def test_embed_script_renders_for_public_slug(client, project):
    resp = client.get('/embed/acme-board.js?position=top-left&color=%23ff0000')
    assert resp.status_code == 200
    assert resp.mimetype == 'application/javascript'
    script = resp.get_data(as_text=True)
    assert 'signalsloop-acme-board' in script
    assert 'top-left' in script

    assert client.get('/embed/unknown-board.js').status_code == 404


def test_embed_for_private_board_submits_with_key(client, project):
    client.patch(f"/api/projects/{project['id']}", json={'is_private': True})
    raw_key = client.post(f"/api/projects/{project['id']}/api-keys", json={'name': 'Widget'}).get_json()['api_key']['key']
    assert client.get('/embed/acme-board.js').status_code == 404

    script = client.get(f'/embed/{raw_key}.js').get_data(as_text=True)
    assert f'http://localhost/embed/{raw_key}/posts' in script
    assert '/api/public/acme-board/posts' not in script

    client.post('/api/auth/logout')
    resp = client.post(f'/embed/{raw_key}/posts', json={'title': 'Widget on a private board'})
    assert resp.status_code == 201
    assert resp.get_json()['post']['source'] == 'widget'
    assert client.post('/embed/sl_bogus/posts', json={'title': 'Nope'}).status_code == 401
    assert client.post(f'/embed/{raw_key}/posts', json={'title': 'Bot', 'website': 'x'}).status_code == 400


def test_embed_script_is_rate_limited_per_site(client, flask_app, project, monkeypatch):
    monkeypatch.setitem(flask_app.config, 'TESTING', False)
    site = {'Referer': 'https://blog.ratelimited.example/'}
    for _ in range(100):
        assert client.get('/embed/acme-board.js', headers=site).status_code == 200
    assert client.get('/embed/acme-board.js', headers=site).status_code == 429
    other = {'Referer': 'https://docs.ratelimited.example/'}
    assert client.get('/embed/acme-board.js', headers=other).status_code == 200


def test_sentiment_uses_llm_when_configured(monkeypatch):
    prompts = []

    def fake_complete(system_prompt, user_prompt, **kwargs):
        prompts.append(user_prompt)
        return {'score': 1.7, 'label': 'positive'}

    monkeypatch.setattr(llm, 'is_enabled', lambda: True)
    monkeypatch.setattr(llm, 'complete_json', fake_complete)
    assert analyze_sentiment('Shipping this fast is great') == {'score': 1.0, 'label': 'positive', 'source': 'llm'}
    assert prompts == ['Shipping this fast is great']
    assert analyze_sentiment('Shipping this fast is great', use_llm=False)['source'] == 'lexicon'


def test_sentiment_falls_back_to_lexicon(monkeypatch):
    def broken(system_prompt, user_prompt, **kwargs):
        raise llm.LLMError('rate limited')

    monkeypatch.setattr(llm, 'is_enabled', lambda: True)
    monkeypatch.setattr(llm, 'complete_json', broken)
    assert analyze_sentiment('This is broken and slow')['source'] == 'lexicon'


def test_post_sentiment_comes_from_llm(client, project, monkeypatch):
    monkeypatch.setattr(llm, 'is_enabled', lambda: True)
    monkeypatch.setattr(llm, 'complete_json', lambda system_prompt, user_prompt, **kwargs: {'score': -0.6})
    resp = client.post(f"/api/projects/{project['id']}/posts", json={'title': 'Exports keep timing out'})
    assert resp.status_code == 201
    assert resp.get_json()['post']['sentiment_score'] == -0.6
