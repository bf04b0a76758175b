# middleware/rate_limits.py
"""
Request rate limiting.

Limits are fixed windows stored in Redis (in memory under tests). General,
login and registration limits count per client IP; AI, upload and review
limits count per user when logged in.
"""

import logging
from typing import Any, Dict

from flask import current_app, g, session
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

from core.database_models import ROLE_ADMINISTRATOR

logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)


def user_or_ip_key() -> str:
    user_id = session.get('user_id')
    return f"user:{user_id}" if user_id else f"ip:{get_remote_address()}"


def is_admin_request() -> bool:
    user = g.get('current_user')
    if user is not None:
        return user.is_administrator
    return session.get('active_role') == ROLE_ADMINISTRATOR


def login_failed(response) -> bool:
    """Only failed attempts count toward the login limit"""
    return bool(g.get('login_failed'))


def _config_limit(name: str):
    return lambda: current_app.config[name]


login_limit = limiter.limit(_config_limit('RATELIMIT_LOGIN'), methods=['POST'], deduct_when=login_failed,
                            error_message='Too many failed login attempts')
register_limit = limiter.limit(_config_limit('RATELIMIT_REGISTER'), methods=['POST'],
                               error_message='Too many registrations from this address')
ai_limit = limiter.limit(_config_limit('RATELIMIT_AI'), key_func=user_or_ip_key, exempt_when=is_admin_request,
                         error_message='Too many AI analyses')
upload_limit = limiter.limit(_config_limit('RATELIMIT_UPLOAD'), key_func=user_or_ip_key,
                             exempt_when=is_admin_request, error_message='Too many uploads')
review_limit = limiter.limit(_config_limit('RATELIMIT_REVIEWS'), key_func=user_or_ip_key,
                             exempt_when=is_admin_request, error_message='Too many reviews')


def retry_after_seconds(error) -> int:
    """Window length of the limit that was exceeded"""
    limit = getattr(error, 'limit', None)
    item = getattr(limit, 'limit', None)
    if item is not None and hasattr(item, 'get_expiry'):
        return int(item.get_expiry())
    return 60


def rate_limit_info() -> Dict[str, Any]:
    """Limits that apply to the current caller"""
    config = current_app.config
    admin = is_admin_request()
    authenticated = 'user_id' in session
    return {
        'enabled': bool(config.get('RATELIMIT_ENABLED', True)),
        'key': user_or_ip_key(),
        'authenticated': authenticated,
        'is_admin': admin,
        'limits': {
            'general': config.get('RATELIMIT_DEFAULT'),
            'login': config.get('RATELIMIT_LOGIN'),
            'register': config.get('RATELIMIT_REGISTER'),
            'ai': 'unlimited' if admin else config.get('RATELIMIT_AI'),
            'upload': 'unlimited' if admin else config.get('RATELIMIT_UPLOAD'),
            'reviews': 'unlimited' if admin else config.get('RATELIMIT_REVIEWS'),
        },
        'ai_session_quota': config.get('AI_QUOTA_USER') if authenticated else config.get('AI_QUOTA_GUEST'),
    }
