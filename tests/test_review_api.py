import io
from datetime import timedelta
from unittest.mock import patch

import pytest

from core.database_models import db, Beer, Brewery, Review, User, parse_uuid, utcnow
from core.resilience import AIServiceError
from tests.conftest import JPEG_BYTES, PNG_BYTES

MISSING_BEER_ID = '00000000-0000-0000-0000-000000000000'

ANALYSIS = {
    'success': True,
    'brewery': {'name': 'Birrificio Viana'},
    'bottles': [{'name': 'Viana Lager', 'style': 'Lager', 'abv': 5.0, 'confidence': 0.9}],
}


def _upload(client, data=JPEG_BYTES, filename='bottle.jpg', mimetype='image/jpeg'):
    return client.post('/review/api/first-check-ai',
                       data={'image': (io.BytesIO(data), filename, mimetype)},
                       content_type='multipart/form-data')


def _review(beer='Viana Lager', brewery='Birrificio Viana', rating=4, notes='Fresca e beverina', **extra):
    return dict({'beerName': beer, 'breweryName': brewery, 'rating': rating, 'notes': notes}, **extra)


@pytest.fixture
def viana(app):
    with app.app_context():
        brewery = Brewery(name='Birrificio Viana')
        beer = Beer(name='Viana Lager', brewery=brewery)
        db.session.add_all([brewery, beer])
        db.session.commit()
        return {'brewery_id': str(brewery.id), 'beer_id': str(beer.id)}


# AI analysis

def test_first_check_ai_returns_draft(client, viana):
    with patch('core.gemini_client.analyze_label_image', return_value=ANALYSIS) as analyze:
        response = _upload(client)

    assert response.status_code == 200
    body = response.get_json()
    assert body['success']
    bottle = body['data']['bottles'][0]
    assert bottle['brewery_id'] == viana['brewery_id']
    assert bottle['beer_id'] == viana['beer_id']
    assert analyze.call_args.args[1] == 'image/jpeg'

    session_data = client.get('/review/api/session-data').get_json()
    assert session_data['has_data']
    assert session_data['data']['bottles'][0]['name'] == 'Viana Lager'

    assert client.post('/review/api/clear-session-data').get_json()['cleared']
    assert client.get('/review/api/session-data').get_json() == {'has_data': False}


def test_first_check_ai_rejects_non_images(client):
    response = _upload(client, data=b'just some text', filename='notes.txt', mimetype='text/plain')

    assert response.status_code == 400
    assert response.get_json()['success'] is False


def test_first_check_ai_requires_image(client):
    response = client.post('/review/api/first-check-ai', data={'note': 'no image'},
                           content_type='multipart/form-data')
    assert response.status_code == 400


def test_first_check_ai_quota_for_guests(client):
    with client.session_transaction() as sess:
        sess['ai_request_count'] = 10

    response = _upload(client)

    assert response.status_code == 429
    body = response.get_json()
    assert body['rateLimitExceeded']
    assert body['auth_url'] == '/register'
    assert body['details']['max_requests'] == 10
    assert not body['success']


def test_first_check_ai_service_failure(client):
    error = AIServiceError('quota exhausted upstream', error_type='rate_limit', is_retryable=False)
    with patch('core.gemini_client.analyze_label_image', side_effect=error):
        response = _upload(client)

    assert response.status_code == 429
    assert response.get_json()['errorType'] == 'rate_limit'
    with client.session_transaction() as sess:
        assert sess.get('ai_request_count', 0) == 0


def test_resolve_disambiguation_without_pending_choice(client):
    response = client.post('/review/api/resolve-disambiguation', json={'selectedBreweryId': 'x'})
    assert response.status_code == 400


# Review creation

def test_create_reviews_as_guest(app, client, viana):
    response = client.post('/review/api/create-multiple', json={'reviews': [
        _review(), _review(beer='Viana Weizen', rating=5, detailedRatings={'taste': {'rating': 5}})
    ]})

    assert response.status_code == 201
    body = response.get_json()
    assert body['data']['created'] == 2
    with app.app_context():
        assert Beer.query.filter_by(name='Viana Weizen').one()
        assert Review.query.count() == 2


def test_create_reviews_for_new_brewery(app, client):
    response = client.post('/review/api/create-multiple', json={'reviews': [
        _review(beer='Bionda', brewery='Birrificio Sconosciuto')
    ]})

    assert response.status_code == 201
    with app.app_context():
        brewery = Brewery.query.filter_by(name='Birrificio Sconosciuto').one()
        assert brewery.needs_validation
        assert brewery.created_by == 'review'


def test_duplicate_review_is_conflict(app, client, make_user, login, viana):
    user_id = make_user('mario')
    login('mario')

    first = client.post('/review/api/create-multiple', json={'reviews': [_review(beerId=viana['beer_id'])]})
    assert first.status_code == 201

    second = client.post('/review/api/create-multiple', json={'reviews': [_review(beerId=viana['beer_id'])]})
    assert second.status_code == 409
    assert second.get_json()['errors'][0]['status_code'] == 409

    with app.app_context():
        assert db.session.get(User, parse_uuid(user_id)).reviews_count == 1


def test_partial_failure_keeps_valid_reviews(client, viana):
    response = client.post('/review/api/create-multiple', json={'reviews': [
        _review(), _review(beer='Fantasma', beerId='00000000-0000-0000-0000-000000000000')
    ]})

    assert response.status_code == 201
    body = response.get_json()
    assert body['data']['created'] == 1
    assert body['errors'][0]['index'] == 1


def test_invalid_payload_is_rejected(client):
    response = client.post('/review/api/create-multiple', json={'reviews': [_review(rating=6)]})

    assert response.status_code == 400
    fields = [d['field'] for d in response.get_json()['details']]
    assert any('rating' in field for field in fields)

    assert client.post('/review/api/create-multiple', json={'reviews': []}).status_code == 400


def test_inappropriate_notes_are_rejected(app, client, viana):
    response = client.post('/review/api/create-multiple', json={'reviews': [_review(notes='che merda')]})

    assert response.status_code == 400
    assert response.get_json()['inappropriateContent']
    with app.app_context():
        assert Review.query.count() == 0


def test_async_review_is_processed(client, viana):
    response = client.post('/review/api/async', json={'reviews': [_review(), _review(beer='Viana Ambrata')]})

    assert response.status_code == 202
    body = response.get_json()

    status = client.get(body['status_url'])
    assert status.status_code == 200
    data = status.get_json()['data']
    assert data['processing_status'] == 'completed'
    assert data['ratings'] == 2


def test_review_status_is_private(client, viana, app):
    response = client.post('/review/api/async', json={'reviews': [_review()]})
    status_url = response.get_json()['status_url']

    other = app.test_client()
    assert other.get(status_url).status_code == 403
    assert other.get('/review/api/not-a-uuid/status').status_code == 404


# Statistics and listings

def test_beer_stats(client, viana):
    client.post('/review/api/create-multiple', json={'reviews': [_review(rating=4)]})
    client.post('/review/api/create-multiple', json={'reviews': [_review(rating=2)]})

    response = client.get(f"/review/api/beer/{viana['beer_id']}/stats")

    data = response.get_json()['data']
    assert data['average_rating'] == 3.0
    assert data['total_reviews'] == 2
    assert data['rating_distribution']['4'] == 1


def test_beer_stats_unknown_beer(client):
    assert client.get('/review/api/beer/00000000-0000-0000-0000-000000000000/stats').status_code == 404


def test_my_reviews_requires_login(client, make_user, login, viana):
    anonymous = client.get('/review/api/my-reviews')
    assert anonymous.status_code == 401
    assert anonymous.get_json()['requiresLogin']

    make_user('mario')
    login('mario')
    client.post('/review/api/create-multiple', json={'reviews': [_review()]})

    body = client.get('/review/api/my-reviews?limit=5').get_json()
    assert body['pagination']['total'] == 1
    assert body['reviews'][0]['ratings'][0]['beer_name'] == 'Viana Lager'


def test_only_admins_delete_reviews(app, client, make_user, login, viana):
    response = client.post('/review/api/create-multiple', json={'reviews': [_review()]})
    review_id = response.get_json()['data']['reviews'][0]['id']

    make_user('mario')
    login('mario')
    assert client.delete(f'/review/api/{review_id}').status_code == 403
    client.get('/logout')

    make_user('boss', roles=('administrator',))
    login('boss')
    assert client.delete(f'/review/api/{review_id}').status_code == 200
    with app.app_context():
        assert Review.query.count() == 0


def test_declared_type_is_replaced_by_detected_type(client):
    with patch('core.gemini_client.analyze_label_image', return_value=ANALYSIS) as analyze:
        response = _upload(client, data=PNG_BYTES, filename='bottle.jpg', mimetype='image/jpeg')

    assert response.status_code == 200
    assert analyze.call_args.args[1] == 'image/png'


# Background processing

def test_admin_retry_only_processes_unresolved_bottles(app, client, make_user, login, viana):
    user_id = make_user('mario')
    login('mario')
    response = client.post('/review/api/async', json={'reviews': [
        _review(), _review(beer='Fantasma', beerId=MISSING_BEER_ID)
    ]})
    review_id = response.get_json()['review_id']
    status_url = response.get_json()['status_url']

    data = client.get(status_url).get_json()['data']
    assert data['processing_status'] == 'needs_admin_review'
    assert data['ratings'] == 1
    client.get('/logout')

    make_user('boss', roles=('administrator',))
    login('boss')
    client.post(f'/administrator/reviews/{review_id}/retry')

    data = client.get(status_url).get_json()['data']
    assert data['processing_status'] == 'needs_admin_review'
    assert data['ratings'] == 1
    assert data['processing_attempts'] == 2

    with app.app_context():
        db.session.add(Beer(id=parse_uuid(MISSING_BEER_ID), name='Fantasma',
                            brewery_id=parse_uuid(viana['brewery_id'])))
        db.session.commit()
    client.post(f'/administrator/reviews/{review_id}/retry')

    data = client.get(status_url).get_json()['data']
    assert data['processing_status'] == 'completed'
    assert data['ratings'] == 2
    with app.app_context():
        assert db.session.get(User, parse_uuid(user_id)).reviews_count == 1


# Rate limits

def test_review_limit_answers_json_with_retry_after(app, client, viana):
    app.config['RATELIMIT_REVIEWS'] = '1 per hour'

    assert client.post('/review/api/create-multiple', json={'reviews': [_review()]}).status_code == 201
    response = client.post('/review/api/create-multiple', json={'reviews': [_review()]})

    assert response.status_code == 429
    body = response.get_json()
    assert body['success'] is False
    assert body['retry_after'] == 3600


def test_administrators_skip_review_limit(app, client, make_user, login, viana):
    app.config['RATELIMIT_REVIEWS'] = '1 per hour'
    make_user('boss', roles=('administrator',))
    login('boss')

    for beer in ('Viana Lager', 'Viana Weizen', 'Viana Ambrata'):
        response = client.post('/review/api/create-multiple', json={'reviews': [_review(beer=beer)]})
        assert response.status_code == 201


@pytest.mark.parametrize('setting, limit, retry_after', [
    ('RATELIMIT_AI', '1 per hour', 3600),
    ('RATELIMIT_UPLOAD', '1 per 10 minutes', 600),
])
def test_analysis_limits(app, client, viana, setting, limit, retry_after):
    app.config[setting] = limit

    with patch('core.gemini_client.analyze_label_image', return_value=ANALYSIS):
        assert _upload(client).status_code == 200
        response = _upload(client)

    assert response.status_code == 429
    assert response.get_json()['retry_after'] == retry_after


def test_administrators_skip_analysis_limits(app, client, make_user, login, viana):
    app.config.update(RATELIMIT_AI='1 per hour', RATELIMIT_UPLOAD='1 per 10 minutes')
    make_user('boss', roles=('administrator',))
    login('boss')

    with patch('core.gemini_client.analyze_label_image', return_value=ANALYSIS):
        statuses = [_upload(client).status_code for _ in range(3)]

    assert statuses == [200, 200, 200]


# Session expiry

def _stored_analysis(minutes_ago, **flags):
    return {
        'data': dict({'bottles': [{'name': 'Viana Lager'}], 'temp_data': True}, **flags),
        'timestamp': (utcnow() - timedelta(minutes=minutes_ago)).isoformat(),
        'completed': False,
    }


def test_pending_choice_survives_ten_minutes(client):
    with client.session_transaction() as sess:
        sess['ai_review_data'] = _stored_analysis(5, needs_disambiguation=True)
    assert client.get('/review/api/session-data').get_json()['has_data']

    with client.session_transaction() as sess:
        sess['ai_review_data'] = _stored_analysis(11, needs_disambiguation=True)
    assert client.get('/review/api/session-data').get_json() == {'has_data': False}
    with client.session_transaction() as sess:
        assert 'ai_review_data' not in sess


def test_analysis_lifetime_is_configurable(app, client):
    app.config['AI_TEMP_DATA_TTL'] = timedelta(minutes=1)
    with client.session_transaction() as sess:
        sess['ai_review_data'] = _stored_analysis(2)

    assert client.get('/review/api/session-data').get_json() == {'has_data': False}
