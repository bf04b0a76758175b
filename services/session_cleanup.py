# services/session_cleanup.py
"""
Expiry of AI analysis data held in the user session.

The analysis of an uploaded photo is kept under ``ai_review_data`` as
``{'data': {...}, 'timestamp': <ISO>, 'completed': bool}`` until the user
saves the reviews. Pending disambiguations expire after 10 minutes, other
temporary analysis data after 30 minutes. Expired entries are dropped lazily
by a before-request hook.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, MutableMapping, Optional

from core.database_models import utcnow

logger = logging.getLogger(__name__)

SESSION_KEY = 'ai_review_data'
IMAGE_SESSION_KEY = 'ai_image_data'

DISAMBIGUATION_TTL = timedelta(minutes=10)
TEMP_DATA_TTL = timedelta(minutes=30)


def _entry_age(entry: Dict[str, Any], now: datetime) -> Optional[timedelta]:
    try:
        timestamp = datetime.fromisoformat(entry['timestamp'])
    except (KeyError, TypeError, ValueError):
        return None
    return now - timestamp


def store_analysis(session: MutableMapping, data: Dict[str, Any], now: Optional[datetime] = None) -> None:
    session[SESSION_KEY] = {
        'data': data,
        'timestamp': (now or utcnow()).isoformat(),
        'completed': False,
    }


def get_analysis(session: MutableMapping) -> Optional[Dict[str, Any]]:
    entry = session.get(SESSION_KEY)
    if not entry or not entry.get('data'):
        return None
    return entry


def cleanup_unresolved_session_data(session: MutableMapping, now: Optional[datetime] = None,
                                    disambiguation_ttl: timedelta = DISAMBIGUATION_TTL,
                                    temp_data_ttl: timedelta = TEMP_DATA_TTL) -> bool:
    """Drop expired temporary analysis data. Returns True when something was removed."""
    entry = get_analysis(session)
    if entry is None:
        return False

    now = now or utcnow()
    data = entry['data']
    age = _entry_age(entry, now)
    if age is None:
        # Unreadable timestamp: the entry can never expire, so drop it now
        session.pop(SESSION_KEY, None)
        return True

    if data.get('needs_disambiguation') and data.get('temp_data'):
        expired = age > disambiguation_ttl
    elif data.get('temp_data'):
        expired = age > temp_data_ttl
    else:
        expired = False

    if expired:
        logger.info(
            f"Removing expired AI session data (age {int(age.total_seconds() // 60)} min, "
            f"disambiguation={bool(data.get('needs_disambiguation'))}, processed={bool(data.get('processed'))})"
        )
        session.pop(SESSION_KEY, None)
        return True
    return False


def force_clean_session(session: MutableMapping) -> bool:
    """Remove analysis and image data unconditionally"""
    had_data = SESSION_KEY in session
    session.pop(SESSION_KEY, None)
    session.pop(IMAGE_SESSION_KEY, None)
    if had_data:
        logger.debug("AI session data removed on request")
    return had_data


def mark_completed(session: MutableMapping) -> None:
    entry = session.get(SESSION_KEY)
    if entry:
        entry['completed'] = True
        session[SESSION_KEY] = entry


def get_session_data_status(session: MutableMapping, now: Optional[datetime] = None,
                            temp_data_ttl: timedelta = TEMP_DATA_TTL) -> Dict[str, Any]:
    entry = get_analysis(session)
    if entry is None:
        return {'has_data': False}

    data = entry['data']
    age = _entry_age(entry, now or utcnow()) or timedelta(0)
    age_minutes = int(age.total_seconds() // 60)
    temp_data = bool(data.get('temp_data'))
    processed = bool(data.get('processed'))

    return {
        'has_data': True,
        'temp_data': temp_data,
        'processed': processed,
        'needs_disambiguation': bool(data.get('needs_disambiguation')),
        'completed': bool(entry.get('completed')),
        'age_minutes': age_minutes,
        'should_cleanup': temp_data and not processed and age > temp_data_ttl,
    }
