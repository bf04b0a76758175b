# middleware/security.py
"""
Security Middleware for Request Processing
"""

from flask import request, session, g, flash, redirect, url_for, current_app
from functools import wraps
import logging
from datetime import datetime
from typing import Optional

from core.database_models import db, User, ROLE_PRIORITY, parse_uuid, utcnow
from core.errors import AuthenticationError, ForbiddenError
from core.security_manager import get_security_manager

logger = logging.getLogger(__name__)

API_PREFIXES = ('/api/', '/review/api/')

# Pages that never show the age disclaimer
DISCLAIMER_EXCLUDED_PREFIXES = (
    '/api/', '/review/', '/administrator/', '/brewery/', '/static/', '/disclaimer', '/debug/', '/health',
)


def security_headers(response):
    """Add security headers to all responses"""
    config = current_app.config
    for header, value in config.get('SECURITY_HEADERS', {}).items():
        response.headers.setdefault(header, value)

    csp = config.get('CSP_POLICY')
    if csp:
        response.headers.setdefault(
            'Content-Security-Policy',
            '; '.join(f'{directive} {value}' for directive, value in csp.items())
        )
    return response


def is_api_request() -> bool:
    """True for XHR/JSON callers, which get JSON errors instead of redirects"""
    if request.path.startswith(API_PREFIXES):
        return True
    if request.headers.get('X-Requested-With') == 'XMLHttpRequest':
        return True
    if request.is_json:
        return True
    best = request.accept_mimetypes.best_match(['application/json', 'text/html'])
    return best == 'application/json' and request.accept_mimetypes[best] > request.accept_mimetypes['text/html']


def current_user() -> Optional[User]:
    """The logged-in user, loaded once per request"""
    if 'current_user' not in g:
        user_id = parse_uuid(session.get('user_id'))
        g.current_user = db.session.get(User, user_id) if user_id else None
    return g.current_user


def resolve_active_role(user: Optional[User], user_session) -> Optional[str]:
    """
    Role the user is acting as: the session value when still held, else the
    default role when held, else the highest-priority role held.
    """
    if user is None:
        return None

    active = user_session.get('active_role')
    if not active or not user.has_role(active):
        if user.default_role and user.has_role(user.default_role):
            active = user.default_role
        else:
            active = next((role for role in ROLE_PRIORITY if user.has_role(role)), None)
        user_session['active_role'] = active
    return active


def load_current_user():
    """Drop sessions of deleted or banned users before the view runs"""
    if 'user_id' not in session:
        return None

    user = current_user()
    if user is None or user.is_banned:
        if user is not None:
            logger.warning(f"Banned user {user.username} removed from session")
        session.clear()
        g.current_user = None
        return None

    g.active_role = resolve_active_role(user, session)
    return None


def enforce_session_timeout():
    """Log out sessions idle for longer than SESSION_IDLE_TIMEOUT"""
    if 'user_id' not in session:
        return None

    now = utcnow()
    last_activity = session.get('last_activity')
    timeout = current_app.config.get('SESSION_IDLE_TIMEOUT')
    if last_activity and timeout:
        try:
            idle = now - datetime.fromisoformat(last_activity)
        except ValueError:
            idle = None
        if idle is not None and idle > timeout:
            logger.info(f"Session of user {session.get('user_id')} expired after {idle}")
            session.clear()
            return None

    session['last_activity'] = now.isoformat()
    return None


def check_disclaimer():
    """Flag page views that must show the age disclaimer overlay"""
    g.show_disclaimer = False
    if request.method != 'GET' or session.get('disclaimer_accepted'):
        return None
    if request.path.startswith(DISCLAIMER_EXCLUDED_PREFIXES) or is_api_request():
        return None
    g.show_disclaimer = True
    return None


def inject_user_context():
    user = current_user()
    return {
        'current_user': user,
        'active_role': g.get('active_role') if user else None,
        'user_roles': list(user.roles or []) if user else [],
        'show_disclaimer': g.get('show_disclaimer', False),
    }


def _login_redirect(message: str):
    flash(message, 'warning')
    return redirect(url_for('auth.login', next=request.path))


def login_required(f):
    """Decorator to require authentication"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if current_user() is None:
            get_security_manager().log_security_event('unauthorized_access_attempt', {
                'endpoint': request.endpoint,
                'method': request.method
            })
            if is_api_request():
                raise AuthenticationError(payload={'requiresLogin': True})
            return _login_redirect('Please log in to continue')

        return f(*args, **kwargs)
    return decorated_function


def role_required(role: str):
    """Decorator factory: the user must be logged in and hold ``role``"""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user = current_user()
            if user is None:
                if is_api_request():
                    raise AuthenticationError(payload={'requiresLogin': True})
                return _login_redirect('Please log in to continue')

            if session.get('active_role') != role and not user.has_role(role):
                get_security_manager().log_security_event('forbidden_access_attempt', {
                    'endpoint': request.endpoint,
                    'required_role': role,
                    'user_id': str(user.id)
                })
                if is_api_request():
                    raise ForbiddenError()
                flash('You do not have permission to access this page', 'danger')
                return redirect(url_for('auth.login'))

            return f(*args, **kwargs)
        return decorated_function
    return decorator


admin_required = role_required('administrator')
brewery_required = role_required('brewery')
customer_required = role_required('customer')
