from datetime import timedelta

from core.database_models import db, User, parse_uuid, utcnow
from services import admin_service


def test_register_creates_customer_and_logs_in(app, client):
    response = client.post('/register', data={
        'username': 'birraio', 'password': 'password123', 'email': 'birraio@example.com'
    })

    assert response.status_code == 302
    assert response.headers['Location'].endswith('/')
    with client.session_transaction() as sess:
        assert sess['active_role'] == 'customer'
        user_id = sess['user_id']

    with app.app_context():
        user = User.query.filter_by(username='birraio').one()
        assert str(user.id) == user_id
        assert user.roles == ['customer']
        assert user.email == 'birraio@example.com'
        assert user.default_role == 'customer'


def test_register_rejects_invalid_username(client):
    response = client.post('/register', data={'username': 'a!', 'password': 'password123'})
    assert response.status_code == 400


def test_register_rejects_short_password(client):
    response = client.post('/register', data={'username': 'luigi', 'password': 'short'})
    assert response.status_code == 400


def test_register_rejects_taken_username(client, make_user):
    make_user('mario')
    response = client.post('/register', data={'username': 'Mario', 'password': 'password123'})
    assert response.status_code == 400


def test_login_redirects_to_role_home(client, make_user, make_brewery, login):
    make_user('admin', roles=('administrator',))
    brewery_id = make_brewery('Birrificio Artigianale')
    make_user('brewer', roles=('customer', 'brewery'), brewery_id=brewery_id)
    make_user('mario')

    response = login('admin')
    assert response.headers['Location'].endswith('/administrator')
    client.get('/logout')

    response = login('brewer')
    assert response.headers['Location'].endswith('/brewery/dashboard')
    with client.session_transaction() as sess:
        assert sess['active_role'] == 'brewery'
    client.get('/logout')

    response = login('mario')
    assert response.headers['Location'].endswith('/')


def test_login_with_wrong_password(client, make_user, login):
    make_user('mario')
    response = login('mario', 'not-the-password')

    assert response.status_code == 302
    assert response.headers['Location'].endswith('/login')
    with client.session_transaction() as sess:
        assert 'user_id' not in sess


def test_banned_user_cannot_login(app, client, make_user, login):
    user_id = make_user('mario')
    with app.app_context():
        admin_service.ban_user(user_id, 'spam')

    login('mario')
    with client.session_transaction() as sess:
        assert 'user_id' not in sess


def test_banned_user_session_is_dropped(app, client, make_user, login):
    user_id = make_user('mario')
    login('mario')
    with app.app_context():
        admin_service.ban_user(user_id, 'offensive reviews')

    response = client.get('/profile')
    assert response.status_code == 302
    assert '/login' in response.headers['Location']
    with client.session_transaction() as sess:
        assert 'user_id' not in sess


def test_failed_logins_are_rate_limited(client, make_user, login):
    make_user('mario')
    for _ in range(5):
        response = login('mario', 'wrong-password')
        assert response.status_code == 302

    response = login('mario', 'wrong-password')
    assert response.status_code == 302
    assert response.headers['Location'].endswith('/rate-limit-exceeded')

    response = client.get('/rate-limit-exceeded')
    assert response.status_code == 200


def test_successful_logins_do_not_count_toward_limit(client, make_user, login):
    make_user('mario')
    for _ in range(7):
        response = login('mario')
        assert response.headers['Location'].endswith('/')
        client.get('/logout')


def test_idle_session_expires(client, make_user, login):
    make_user('mario')
    login('mario')
    with client.session_transaction() as sess:
        sess['last_activity'] = (utcnow() - timedelta(hours=9)).isoformat()

    response = client.get('/profile')
    assert response.status_code == 302
    with client.session_transaction() as sess:
        assert 'user_id' not in sess


def test_logout_clears_session(client, make_user, login):
    make_user('mario')
    login('mario')
    response = client.get('/logout')

    assert response.status_code == 302
    with client.session_transaction() as sess:
        assert 'user_id' not in sess


def test_last_login_is_recorded(app, make_user, login):
    user_id = make_user('mario')
    login('mario')
    with app.app_context():
        assert db.session.get(User, parse_uuid(user_id)).last_login is not None
