import pytest

from core.errors import ValidationError
from core.validation import parse_reviews_request, validate_registration
from middleware.uploads import detect_mime_type, is_valid_image_format
from tests.conftest import JPEG_BYTES, PNG_BYTES


def test_reviews_request_accepts_camel_case():
    request = parse_reviews_request({'reviews': [{
        'beerName': '  Viana Lager ', 'breweryName': 'Birrificio Viana', 'rating': 5,
        'notes': None, 'detailedRatings': {'aroma': {'rating': 4, 'notes': 'Floreale'}},
        'aiData': {'abv': 5.0},
    }]})

    entry = request.reviews[0]
    assert entry.beer_name == 'Viana Lager'
    assert entry.notes == ''
    assert entry.detailed_ratings['aroma'].rating == 4
    assert entry.ai_data == {'abv': 5.0}


@pytest.mark.parametrize('payload', [
    None,
    {'reviews': []},
    {'reviews': [{'beerName': 'Viana', 'rating': 0}]},
    {'reviews': [{'beerName': '', 'rating': 3}]},
    {'reviews': [{'beerName': 'Viana', 'rating': 3, 'detailedRatings': {'colour': {'rating': 3}}}]},
    {'reviews': [{'beerName': 'Viana', 'rating': 3}] * 11},
])
def test_reviews_request_rejects_bad_payloads(payload):
    with pytest.raises(ValidationError) as info:
        parse_reviews_request(payload)
    assert info.value.payload['details']


def test_validate_registration():
    cleaned = validate_registration(' mario88 ', 'password123', 'Mario@Example.com')
    assert cleaned['username'] == 'mario88'
    assert cleaned['email'] == 'Mario@example.com'

    with pytest.raises(ValidationError):
        validate_registration('mario_88', 'password123')
    with pytest.raises(ValidationError):
        validate_registration('mario', 'password123', 'not-an-email')


def test_image_magic_bytes():
    assert is_valid_image_format(JPEG_BYTES)
    assert is_valid_image_format(PNG_BYTES)
    assert is_valid_image_format(b'RIFF\x00\x00\x00\x00WEBPVP8 ')
    assert not is_valid_image_format(b'GIF89a' + b'\x00' * 20)
    assert not is_valid_image_format(b'\xff\xd8')

    assert detect_mime_type(PNG_BYTES) == 'image/png'
    assert detect_mime_type(JPEG_BYTES) == 'image/jpeg'
