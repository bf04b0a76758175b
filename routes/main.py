import logging

from flask import (
    Blueprint, render_template, request, redirect, url_for, session, flash, jsonify, current_app, abort
)
from sqlalchemy import select

from core.database_models import db, Review
from core.errors import AppError
from middleware.rate_limits import limiter
from middleware.security import current_user, is_api_request, login_required
from routes.auth import role_home_url
from services import admin_service, review_service
from services.session_cleanup import get_session_data_status

main_bp = Blueprint('main', __name__)
logger = logging.getLogger(__name__)


@main_bp.route('/')
def index():
    stmt = (
        select(Review)
        .where(Review.is_hidden.is_(False), Review.status != 'pending_validation')
        .order_by(Review.created_at.desc())
        .limit(6)
    )
    recent_reviews = db.session.execute(stmt).scalars().all()
    return render_template('welcome.html', recent_reviews=recent_reviews)


@main_bp.route('/review/new')
def new_review():
    return render_template('review/upload.html')


@main_bp.route('/disclaimer', methods=['POST'])
def accept_disclaimer():
    """Record the age confirmation for this session only"""
    session['disclaimer_accepted'] = True
    if is_api_request():
        return jsonify({'success': True})
    return redirect(request.referrer or url_for('main.index'))


@main_bp.route('/profile', methods=['GET'])
@login_required
def profile():
    user = current_user()
    reviews = review_service.get_user_reviews(user.id, page=request.args.get('page', 1, type=int))
    return render_template(
        'profile.html',
        user=user,
        fiscal_code=admin_service.decrypt_fiscal_code(user),
        reviews=reviews,
    )


@main_bp.route('/profile', methods=['POST'])
@login_required
def update_profile():
    user = current_user()

    new_role = request.form.get('active_role')
    if new_role:
        if not user.has_role(new_role):
            flash('You do not hold that role', 'danger')
            return redirect(url_for('main.profile'))
        session['active_role'] = new_role
        logger.info(f"User {user.username} switched to role {new_role}")
        flash(f'You are now acting as {new_role}', 'success')
        return redirect(role_home_url(new_role))

    try:
        admin_service.update_user(user.id, request.form.to_dict())
    except AppError as e:
        flash(e.message, 'danger')
    else:
        flash('Profile updated', 'success')
    return redirect(url_for('main.profile'))


@main_bp.route('/rate-limit-exceeded')
@limiter.exempt
def rate_limit_exceeded():
    return render_template('rate_limit_exceeded.html')


def _debug_only():
    if current_app.config.get('FLASK_ENV') == 'production':
        abort(404)


@main_bp.route('/debug/disclaimer-status')
def disclaimer_status():
    _debug_only()
    return jsonify({
        'disclaimer_accepted': bool(session.get('disclaimer_accepted')),
        'user_id': session.get('user_id'),
        'active_role': session.get('active_role'),
        'ai_session': get_session_data_status(session, temp_data_ttl=current_app.config['AI_TEMP_DATA_TTL']),
    })


@main_bp.route('/debug/reset-disclaimer', methods=['POST'])
def reset_disclaimer():
    _debug_only()
    session.pop('disclaimer_accepted', None)
    return jsonify({'success': True, 'disclaimer_accepted': False})
