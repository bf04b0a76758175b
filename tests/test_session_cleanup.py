from datetime import timedelta

from core.database_models import utcnow
from services.session_cleanup import (
    SESSION_KEY, IMAGE_SESSION_KEY, cleanup_unresolved_session_data, force_clean_session,
    get_session_data_status, mark_completed, store_analysis
)


def _session_with(data, minutes_ago):
    session = {}
    store_analysis(session, data, now=utcnow() - timedelta(minutes=minutes_ago))
    return session


def test_pending_disambiguation_expires_after_ten_minutes():
    data = {'needs_disambiguation': True, 'temp_data': True}

    assert not cleanup_unresolved_session_data(_session_with(data, 9))

    session = _session_with(data, 11)
    assert cleanup_unresolved_session_data(session)
    assert SESSION_KEY not in session


def test_temporary_data_expires_after_thirty_minutes():
    data = {'needs_disambiguation': False, 'temp_data': True}

    assert not cleanup_unresolved_session_data(_session_with(data, 20))
    assert cleanup_unresolved_session_data(_session_with(data, 31))


def test_resolved_data_is_kept():
    data = {'needs_disambiguation': False, 'temp_data': False, 'processed': True}
    session = _session_with(data, 120)

    assert not cleanup_unresolved_session_data(session)
    assert SESSION_KEY in session


def test_unreadable_timestamp_is_removed():
    session = {SESSION_KEY: {'data': {'temp_data': True}, 'timestamp': 'yesterday'}}

    assert cleanup_unresolved_session_data(session)
    assert SESSION_KEY not in session


def test_empty_session_is_untouched():
    assert not cleanup_unresolved_session_data({})


def test_force_clean_removes_image_data():
    session = _session_with({'temp_data': True}, 1)
    session[IMAGE_SESSION_KEY] = {'hash': 'abc'}

    assert force_clean_session(session)
    assert session == {}
    assert not force_clean_session(session)


def test_status_reports_age_and_cleanup_need():
    session = _session_with({'temp_data': True, 'processed': False}, 45)
    status = get_session_data_status(session)

    assert status['has_data']
    assert status['age_minutes'] == 45
    assert status['should_cleanup']

    mark_completed(session)
    assert get_session_data_status(session)['completed']
    assert get_session_data_status({}) == {'has_data': False}
