import logging

from flask import Blueprint, render_template, request, redirect, url_for, session, flash, g
from sqlalchemy import func

from core.database_models import db, User, ROLE_ADMINISTRATOR, ROLE_BREWERY, ROLE_CUSTOMER, utcnow
from core.errors import ValidationError
from core.security_manager import get_security_manager
from core.validation import validate_registration
from middleware.rate_limits import login_limit, register_limit

auth_bp = Blueprint('auth', __name__)
logger = logging.getLogger(__name__)

ROLE_HOME_ENDPOINTS = {
    ROLE_ADMINISTRATOR: 'administrator.dashboard',
    ROLE_BREWERY: 'brewery.dashboard',
    ROLE_CUSTOMER: 'main.index',
}


def role_home_url(role):
    return url_for(ROLE_HOME_ENDPOINTS.get(role, 'main.index'))


def start_user_session(user):
    """Fresh session for ``user``, acting as its main role"""
    session.clear()
    session.permanent = True
    session['user_id'] = str(user.id)
    session['active_role'] = user.main_role
    session['disclaimer_accepted'] = True
    session['last_activity'] = utcnow().isoformat()
    return session['active_role']


def _login_failed(message, username, reason):
    g.login_failed = True
    get_security_manager().log_security_event('login_failed', {
        'reason': reason,
        'username': username
    })
    flash(message, 'danger')
    return redirect(url_for('auth.login'))


@auth_bp.route('/login', methods=['GET', 'POST'])
@login_limit
def login():
    if request.method == 'GET':
        if 'user_id' in session:
            return redirect(role_home_url(session.get('active_role')))
        return render_template('auth/login.html')

    username = request.form.get('username', '').strip()
    password = request.form.get('password', '')
    if not username or not password:
        return _login_failed('Username and password are required', username, 'missing_credentials')

    user = User.query.filter(func.lower(User.username) == username.lower()).first()
    security_manager = get_security_manager()
    if user is None or not security_manager.verify_password(password, user.password_hash, user.password_salt):
        return _login_failed('Invalid username or password', username, 'invalid_credentials')

    if user.is_banned:
        security_manager.log_security_event('banned_login_attempt', {'user_id': str(user.id)})
        flash(f'Your account has been suspended: {user.ban_reason}', 'danger')
        return redirect(url_for('auth.login'))

    role = start_user_session(user)
    user.last_login = utcnow()
    db.session.commit()

    security_manager.log_security_event('login_success', {'user_id': str(user.id), 'role': role})
    flash(f'Welcome back, {user.username}!', 'success')
    return redirect(role_home_url(role))


@auth_bp.route('/register', methods=['GET', 'POST'])
@register_limit
def register():
    if request.method == 'GET':
        return render_template('auth/register.html', form={})

    form = request.form.to_dict()
    try:
        cleaned = validate_registration(form.get('username'), form.get('password'), form.get('email'))
    except ValidationError as e:
        flash(e.message, 'danger')
        return render_template('auth/register.html', form=form), 400

    if User.query.filter(func.lower(User.username) == cleaned['username'].lower()).first():
        flash('Username already taken', 'danger')
        return render_template('auth/register.html', form=form), 400

    password_hash, salt = get_security_manager().hash_password(cleaned['password'])
    user = User(
        username=cleaned['username'],
        email=cleaned['email'],
        password_hash=password_hash,
        password_salt=salt,
        roles=[ROLE_CUSTOMER],
        default_role=ROLE_CUSTOMER,
    )
    db.session.add(user)
    db.session.commit()

    logger.info(f"New customer registered: {user.username}")
    get_security_manager().log_security_event('user_registered', {'user_id': str(user.id)})
    start_user_session(user)
    flash('Registration complete. Welcome!', 'success')
    return redirect(url_for('main.index'))


@auth_bp.route('/logout')
def logout():
    user_id = session.get('user_id')
    session.clear()
    if user_id:
        get_security_manager().log_security_event('logout', {'user_id': user_id})
    flash('You have been logged out successfully.', 'info')
    return redirect(url_for('main.index'))
