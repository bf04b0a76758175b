import uuid
from unittest.mock import patch

import pytest

from core.database_models import db, Beer, Brewery
from core.errors import ImageRejectedError, ValidationError
from services import ai_service
from services.session_cleanup import SESSION_KEY
from tests.conftest import JPEG_BYTES


def _brewery(name, website=None):
    return Brewery(id=uuid.uuid4(), name=name, website=website)


# Name helpers

def test_levenshtein_distance():
    assert ai_service.levenshtein_distance('kitten', 'sitting') == 3
    assert ai_service.levenshtein_distance('', 'abc') == 3
    assert ai_service.levenshtein_distance('viana', 'viana') == 0


def test_name_similarity_ignores_case_and_punctuation():
    assert ai_service.calculate_name_similarity('Birrificio Viana', 'birrificio viana!') == 1.0
    assert ai_service.calculate_name_similarity('Peroni', None) == 0.0
    assert 0 < ai_service.calculate_name_similarity('Peroni', 'Peroncino') < 1


def test_common_keywords():
    assert ai_service.has_common_keywords('Birra Peroni', 'Peroni Nastro Azzurro')
    assert ai_service.has_common_keywords('Birrificio Artigianale Lombardo', 'Artigianale Lombardo srl')
    assert not ai_service.has_common_keywords('Birrificio del Ducato', 'Baladin')


def test_clean_url_and_address():
    assert ai_service.clean_url('https://www.Viana.it/') == 'viana.it'
    assert ai_service.clean_url(None) == ''
    assert ai_service.normalize_address('Via Roma, 12  - Milano') == 'via roma 12 milano'


# Brewery matching

def test_exact_name_match():
    breweries = [_brewery('Birrificio Viana'), _brewery('Peroni')]
    result = ai_service.find_matching_brewery('birrificio viana', breweries)

    assert result['match']['brewery'] is breweries[0]
    assert result['match']['match_type'] == 'EXACT_NAME'
    assert result['match']['confidence'] == 1.0


def test_website_match():
    breweries = [_brewery('Birrificio Viana', website='viana.it'), _brewery('Peroni')]
    result = ai_service.find_matching_brewery('Viana Brewing Co', breweries, website='https://www.viana.it/')

    assert result['match']['brewery'] is breweries[0]
    assert result['match']['match_type'] == 'WEBSITE_MATCH'


def test_fuzzy_keyword_match():
    breweries = [_brewery('Heineken Italia.')]
    result = ai_service.find_matching_brewery('Heineken Italia', breweries)

    assert result['match']['match_type'] == 'FUZZY_KEYWORD_MATCH'


def test_several_keyword_matches_need_disambiguation():
    breweries = [_brewery('Birra Moretti Rossa'), _brewery('Moretti Birrificio'), _brewery('Baladin')]
    result = ai_service.find_matching_brewery('Birra Moretti', breweries)

    assert result['match'] is None
    assert result['needs_disambiguation']
    assert result['disambiguation_reason'] == 'MULTIPLE_KEYWORD_MATCHES'
    assert {c['name'] for c in result['ambiguities']} == {'Birra Moretti Rossa', 'Moretti Birrificio'}


def test_partial_name_match_needs_confirmation():
    breweries = [_brewery('Del Borgo')]
    result = ai_service.find_matching_brewery('Birrificio Del Borgo Roma', breweries)

    assert result['match'] is None
    assert result['needs_disambiguation']
    assert result['disambiguation_reason'] == 'PARTIAL_NAME_MATCH'
    assert [c['name'] for c in result['ambiguities']] == ['Del Borgo']
    assert result['ambiguities'][0]['confidence'] == 0.4


def test_partial_name_match_offers_best_ratio():
    breweries = [_brewery('Borgo del Ducato'), _brewery('San Leo del Monte')]
    result = ai_service.find_matching_brewery('Del Borgo San Leo', breweries)

    assert result['match'] is None
    assert result['disambiguation_reason'] == 'PARTIAL_NAME_MATCH'
    assert len(result['ambiguities']) == 1
    assert result['ambiguities'][0]['name'] == 'San Leo del Monte'
    assert result['ambiguities'][0]['confidence'] == 0.6


def test_no_match():
    result = ai_service.find_matching_brewery('Sconosciuto', [_brewery('Peroni')])
    assert result == {'match': None, 'ambiguities': [], 'needs_disambiguation': False,
                      'disambiguation_reason': None}


# Analysis validation

def test_validate_analysis_data():
    good = {'brewery': {'name': 'Viana'}, 'bottles': [{'name': 'Viana Lager', 'style': 'Lager', 'abv': 5}]}
    assert ai_service.validate_analysis_data(good) == {'is_valid': True, 'errors': []}

    bad = {'brewery': {}, 'bottles': [{'name': 'V', 'style': 'Lager', 'abv': 140, 'ibu': 'lots'}]}
    result = ai_service.validate_analysis_data(bad)
    assert not result['is_valid']
    assert len(result['errors']) == 4

    assert not ai_service.validate_analysis_data(None)['is_valid']


# Session quota

def test_guest_quota(app_ctx):
    assert ai_service.can_make_request({})['remaining'] == 10

    warning = ai_service.can_make_request({'ai_request_count': 8})
    assert warning['can_make_request']
    assert 'warning' in warning

    exhausted = ai_service.can_make_request({'ai_request_count': 10})
    assert not exhausted['can_make_request']
    assert exhausted['auth_url'] == '/register'


def test_registered_user_quota(app_ctx):
    result = ai_service.can_make_request({'ai_request_count': 10}, user_id='some-user')

    assert result['can_make_request']
    assert result['max_requests'] == 30
    assert 'auth_url' not in result


def test_quota_can_be_disabled(app_ctx):
    app_ctx.config['AI_QUOTA_ENABLED'] = False
    assert ai_service.can_make_request({'ai_request_count': 500})['unlimited']


# Analysis flow

@pytest.fixture
def viana(app_ctx):
    brewery = Brewery(name='Birrificio Viana', website='https://www.birrificioviana.it')
    db.session.add(brewery)
    db.session.add(Beer(name='Viana Lager', brewery=brewery))
    db.session.commit()
    return brewery


def _analysis(brewery_name, *beer_names):
    return {
        'success': True,
        'brewery': {'name': brewery_name},
        'bottles': [{'name': name, 'style': 'Lager', 'abv': 5.0} for name in beer_names],
    }


def test_analysis_links_known_brewery_and_beer(viana):
    session = {}
    with patch('core.gemini_client.analyze_label_image',
               return_value=_analysis('Birrificio Viana', 'Viana Lager', 'Viana Weizen')):
        result = ai_service.process_image_analysis(JPEG_BYTES, 'image/jpeg', session)

    assert result['success']
    assert not result['needs_disambiguation']
    lager, weizen = result['bottles']
    assert lager['brewery_id'] == str(viana.id)
    assert lager['beer_id'] is not None
    assert weizen['brewery_id'] == str(viana.id)
    assert weizen['beer_id'] is None
    assert session['ai_request_count'] == 1
    assert session[SESSION_KEY]['data']['bottles'][0]['name'] == 'Viana Lager'


def test_analysis_keeps_unknown_brewery_from_label(app_ctx):
    session = {}
    with patch('core.gemini_client.analyze_label_image',
               return_value=_analysis('Birrificio Sconosciuto', 'Bionda')):
        result = ai_service.process_image_analysis(JPEG_BYTES, 'image/jpeg', session)

    bottle = result['bottles'][0]
    assert bottle['brewery_id'] is None
    assert bottle['brewery_name'] == 'Birrificio Sconosciuto'
    assert result['breweries'][0]['matched'] is False


def test_analysis_without_beer_stores_nothing(app_ctx):
    session = {}
    with patch('core.gemini_client.analyze_label_image',
               return_value={'success': False, 'bottles': [], 'message': 'No bottles'}):
        result = ai_service.process_image_analysis(JPEG_BYTES, 'image/jpeg', session)

    assert result == {'success': False, 'message': 'No bottles', 'bottles': []}
    assert SESSION_KEY not in session
    assert session['ai_request_count'] == 1


def test_analysis_rejects_non_images(app_ctx):
    with pytest.raises(ImageRejectedError):
        ai_service.process_image_analysis(b'GIF89a' + b'\x00' * 32, 'image/gif', {})


def _ambiguous_session(app_ctx):
    first = Brewery(name='Birra Moretti Rossa')
    second = Brewery(name='Moretti Birrificio')
    db.session.add_all([first, second])
    db.session.commit()

    session = {}
    with patch('core.gemini_client.analyze_label_image',
               return_value=_analysis('Birra Moretti', 'Moretti La Rossa')):
        result = ai_service.process_image_analysis(JPEG_BYTES, 'image/jpeg', session)
    assert result['needs_disambiguation']
    assert result['ambiguous_label'] == 'Birra Moretti'
    return session, first


def test_disambiguation_with_existing_brewery(app_ctx):
    session, brewery = _ambiguous_session(app_ctx)

    result = ai_service.resolve_disambiguation(session, selected_brewery_id=str(brewery.id))

    bottle = result['bottles'][0]
    assert bottle['brewery_id'] == str(brewery.id)
    assert Beer.query.filter_by(brewery_id=brewery.id, name='Moretti La Rossa').one()
    data = session[SESSION_KEY]['data']
    assert not data['needs_disambiguation']
    assert data['disambiguation_resolved']


def test_disambiguation_creating_brewery(app_ctx):
    session, _ = _ambiguous_session(app_ctx)

    result = ai_service.resolve_disambiguation(session, create_new=True,
                                               new_brewery_data={'name': 'Birra Moretti Nuova'})

    created = Brewery.query.filter_by(name='Birra Moretti Nuova').one()
    assert created.needs_validation
    assert created.created_by == 'ai_disambiguation'
    assert result['brewery']['id'] == str(created.id)


def test_disambiguation_input_errors(app_ctx):
    with pytest.raises(ValidationError):
        ai_service.resolve_disambiguation({}, selected_brewery_id='x')

    session, _ = _ambiguous_session(app_ctx)
    with pytest.raises(ValidationError):
        ai_service.resolve_disambiguation(session)
    with pytest.raises(ValidationError):
        ai_service.resolve_disambiguation(session, create_new=True, new_brewery_data={'name': 'X'})
