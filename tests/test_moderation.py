import pytest

from core.errors import InappropriateContentError
from services.moderation import check_text, moderate_reviews, sanitize_text


def test_clean_text_passes():
    result = check_text('Una bionda fresca, ottima con la pizza', strict=True)
    assert result == {'is_clean': True, 'violations': []}


@pytest.mark.parametrize('text', ['che merda', 'M3RDA', 'merdaaaa', 'merda!'])
def test_word_list_catches_variants(text):
    result = check_text(text)

    assert not result['is_clean']
    assert result['violations'][0]['severity'] == 'high'


def test_patterns_only_apply_in_strict_mode():
    text = 'buonissimaaaaaa'
    assert check_text(text)['is_clean']

    result = check_text(text, strict=True)
    assert [v['type'] for v in result['violations']] == ['excessive_repetition']
    assert result['violations'][0]['severity'] == 'medium'


@pytest.mark.parametrize('text, pattern', [
    ('buonaaaa', 'excessive_repetition'),
    ('sprt', 'consonant_clustering'),
    ('BuOnA', 'case_alternation'),
])
def test_strict_pattern_thresholds(text, pattern):
    assert [v['type'] for v in check_text(text, strict=True)['violations']] == [pattern]


def test_strict_patterns_leave_ordinary_words_alone():
    assert check_text('Birra ambrata, schiuma compatta, buona', strict=True)['is_clean']


def test_moderate_reviews_reports_each_review():
    reviews = [
        {'beer_name': 'Viana Lager', 'notes': 'Buona'},
        {'beer_name': 'Viana IPA', 'notes': 'fa schifo, merda'},
        {'beer_name': 'Viana Stout', 'detailed_ratings': {'taste': {'rating': 2, 'notes': 'stronzo'}}},
    ]

    with pytest.raises(InappropriateContentError) as info:
        moderate_reviews(reviews)

    payload = info.value.to_dict()
    assert info.value.status_code == 400
    assert payload['inappropriateContent'] is True
    assert [d['reviewIndex'] for d in payload['details']] == [1, 2]


def test_beer_names_skip_pattern_checks():
    assert moderate_reviews([{'beer_name': 'XXXXX Strong Ale', 'notes': ''}]) == []


def test_sanitize_text_strips_markup():
    cleaned = sanitize_text('<b>Ottima</b> <i>birra</i>')
    assert cleaned == 'Ottima birra'
    assert sanitize_text(None) == ''
