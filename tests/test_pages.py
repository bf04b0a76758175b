from core.database_models import db, User, parse_uuid

REVIEW = {'beerName': 'Viana Lager', 'breweryName': 'Birrificio Viana', 'rating': 4, 'notes': 'Fresca'}


def test_health(client):
    assert client.get('/health').get_json()['status'] == 'healthy'

    detailed = client.get('/health/detailed').get_json()
    assert detailed['components']['database'] == 'healthy'
    assert detailed['components']['redis'] == 'disabled'


def test_security_headers(client):
    response = client.get('/health')

    assert response.headers['X-Content-Type-Options'] == 'nosniff'
    assert response.headers['X-Frame-Options'] == 'DENY'
    assert "default-src 'self'" in response.headers['Content-Security-Policy']


def test_disclaimer_shown_until_accepted(client):
    assert b'legal drinking age' in client.get('/').data

    response = client.post('/disclaimer')
    assert response.status_code == 302

    assert b'legal drinking age' not in client.get('/').data


def test_disclaimer_not_shown_on_review_pages(client):
    response = client.get('/review/new')

    assert response.status_code == 200
    assert b'legal drinking age' not in response.data


def test_debug_disclaimer_routes(client):
    client.post('/disclaimer')
    assert client.get('/debug/disclaimer-status').get_json()['disclaimer_accepted']

    client.post('/debug/reset-disclaimer')
    assert not client.get('/debug/disclaimer-status').get_json()['disclaimer_accepted']


def test_unknown_page_renders_error(client):
    response = client.get('/no-such-page')
    assert response.status_code == 404
    assert b'Page not found' in response.data


def test_profile_update_and_role_switch(app, client, make_user, make_brewery, login):
    user_id = make_user('brewer', roles=('customer', 'brewery'), brewery_id=make_brewery())
    login('brewer')

    assert client.get('/profile').status_code == 200

    response = client.post('/profile', data={'active_role': 'customer'})
    assert response.headers['Location'].endswith('/')
    with client.session_transaction() as sess:
        assert sess['active_role'] == 'customer'

    client.post('/profile', data={'active_role': 'administrator'})
    with client.session_transaction() as sess:
        assert sess['active_role'] == 'customer'

    client.post('/profile', data={'email': 'brewer@example.com', 'customer_name': 'Luca'})
    with app.app_context():
        user = db.session.get(User, parse_uuid(user_id))
        assert user.email == 'brewer@example.com'
        assert user.customer_name == 'Luca'


def test_profile_requires_login(client):
    response = client.get('/profile')
    assert response.status_code == 302
    assert '/login' in response.headers['Location']


def test_brewery_dashboard(client, make_user, make_brewery, login):
    brewery_id = make_brewery('Birrificio Viana')
    make_user('brewer', roles=('customer', 'brewery'), brewery_id=brewery_id)
    client.post('/review/api/create-multiple', json={'reviews': [REVIEW]})
    login('brewer')

    response = client.get('/brewery/dashboard')
    assert response.status_code == 200
    assert b'Viana Lager' in response.data

    client.post('/brewery/profile', data={'website': 'birrificioviana.it', 'name': 'Hijacked'})
    response = client.get('/brewery/dashboard')
    assert b'https://birrificioviana.it' in response.data
    assert b'Hijacked' not in response.data


def test_customers_cannot_open_administration(client, make_user, login):
    make_user('mario')
    login('mario')

    response = client.get('/administrator')
    assert response.status_code == 302
    assert '/login' in response.headers['Location']


def test_administration_pages_render(client, make_user, make_brewery, login):
    make_brewery('Birrificio Automatico', needs_validation=True)
    client.post('/review/api/create-multiple', json={'reviews': [REVIEW]})
    user_id = make_user('mario')
    make_user('boss', roles=('administrator',))
    login('boss')

    for url in ('/administrator', '/administrator/users', f'/administrator/users/{user_id}',
                '/administrator/breweries', '/administrator/breweries/incomplete',
                '/administrator/breweries/new', '/administrator/reviews', '/administrator/statistics'):
        response = client.get(url)
        assert response.status_code == 200, url

    assert b'Birrificio Automatico' in client.get('/administrator/breweries?needs_validation=1').data


def test_administrator_manages_users(app, client, make_user, login):
    admin_id = make_user('boss', roles=('administrator',))
    login('boss')

    response = client.post('/administrator/users', data={
        'username': 'nuovo', 'password': 'password123', 'role': 'brewery', 'brewery_name': 'Birrificio Nuovo'
    })
    assert response.status_code == 302
    with app.app_context():
        user = User.query.filter_by(username='nuovo').one()
        user_id = str(user.id)
        assert user.brewery.name == 'Birrificio Nuovo'

    client.post(f'/administrator/users/{user_id}/ban', data={'reason': 'spam'})
    with app.app_context():
        assert db.session.get(User, parse_uuid(user_id)).is_banned

    response = client.post(f'/administrator/users/{admin_id}/delete')
    assert response.status_code == 302
    with app.app_context():
        assert db.session.get(User, parse_uuid(admin_id)) is not None

    response = client.post(f'/administrator/users/{user_id}/ban', data={'reason': ''},
                           headers={'X-Requested-With': 'XMLHttpRequest'})
    assert response.status_code == 400


def test_statistics_data(client, make_user, login):
    weizen = dict(REVIEW, beerName='Viana Weizen', rating=2)
    client.post('/review/api/create-multiple', json={'reviews': [REVIEW, weizen]})
    make_user('boss', roles=('administrator',))
    login('boss')

    data = client.get('/administrator/statistics/data?charts=0').get_json()['data']

    assert data['totals']['reviews'] == 2
    assert data['average_rating'] == 3.0
    assert data['rating_distribution'] == {'1': 0, '2': 1, '3': 0, '4': 1, '5': 0}
    assert data['top_beers'][0]['beer'] == 'Viana Lager'
    assert 'charts' not in data

    charts = client.get('/administrator/statistics/data').get_json()['data']['charts']
    assert set(charts) == {'reviews_per_brewery', 'rating_distribution', 'reviews_per_day'}


def test_rate_limit_info(client):
    data = client.get('/api/rate-limit-info').get_json()['data']

    assert data['authenticated'] is False
    assert data['ai_quota']['max_requests'] == 10
