# api/reviews.py
"""
Review API: AI label analysis, disambiguation and review creation
"""

import logging
import uuid

from flask import Blueprint, current_app, request, jsonify, session, url_for

from core.database_models import db, Review, parse_uuid
from core.errors import ForbiddenError, NotFoundError, QuotaExceededError, ValidationError
from core.validation import parse_reviews_request
from middleware.rate_limits import ai_limit, upload_limit, review_limit
from middleware.security import admin_required, current_user, login_required
from middleware.uploads import read_image_upload
from services import ai_service, review_service
from services.session_cleanup import (
    force_clean_session, get_analysis, get_session_data_status, mark_completed
)
from tasks.review_worker import process_review

reviews_api_bp = Blueprint('reviews_api', __name__)
logger = logging.getLogger(__name__)


def _user_id():
    user = current_user()
    return str(user.id) if user else None


def session_reference():
    """Stable id for the browser session, used to attribute guest reviews"""
    if 'session_ref' not in session:
        session['session_ref'] = uuid.uuid4().hex
    return session['session_ref']


@reviews_api_bp.route('/first-check-ai', methods=['POST'])
@ai_limit
@upload_limit
def first_check_ai():
    """Analyse an uploaded bottle photo and keep the draft in the session"""
    user_id = _user_id()
    quota = ai_service.can_make_request(session, user_id)
    if not quota['can_make_request']:
        logger.info(f"AI quota exhausted for {'user ' + user_id if user_id else 'guest'}")
        payload = {
            'rateLimitExceeded': True,
            'details': {
                'request_count': quota['request_count'],
                'max_requests': quota['max_requests'],
                'remaining': 0,
            },
        }
        if quota.get('auth_url'):
            payload['auth_url'] = quota['auth_url']
        raise QuotaExceededError(quota['message'], payload=payload)

    image = read_image_upload('image')
    session_reference()
    result = ai_service.process_image_analysis(image.data, image.mime_type, session, user_id)

    response = {'success': result.pop('success'), 'message': result.pop('message'), 'data': result}
    after = ai_service.can_make_request(session, user_id)
    if after.get('warning'):
        response['warning'] = after['warning']
        if after.get('auth_url'):
            response['auth_url'] = after['auth_url']
    return jsonify(response)


@reviews_api_bp.route('/session-data', methods=['GET'])
def session_data():
    entry = get_analysis(session)
    if entry is None or entry.get('completed'):
        return jsonify({'has_data': False})
    return jsonify({
        'has_data': True,
        'data': entry['data'],
        'timestamp': entry.get('timestamp'),
        'status': get_session_data_status(session, temp_data_ttl=current_app.config['AI_TEMP_DATA_TTL']),
    })


@reviews_api_bp.route('/clear-session-data', methods=['POST'])
def clear_session_data():
    cleared = force_clean_session(session)
    return jsonify({'success': True, 'cleared': cleared})


@reviews_api_bp.route('/resolve-disambiguation', methods=['POST'])
def resolve_disambiguation():
    payload = request.get_json(silent=True) or {}
    result = ai_service.resolve_disambiguation(
        session,
        selected_brewery_id=payload.get('selected_brewery_id') or payload.get('selectedBreweryId'),
        create_new=bool(payload.get('create_new') or payload.get('createNew')),
        new_brewery_data=payload.get('new_brewery_data') or payload.get('newBreweryData'),
    )
    return jsonify(result)


@reviews_api_bp.route('/create-multiple', methods=['POST'])
@review_limit
def create_multiple():
    request_data = parse_reviews_request(request.get_json(silent=True))
    result = review_service.create_multiple_reviews(request_data, _user_id(), session_reference())

    if result['success']:
        mark_completed(session)
        return jsonify(result), 201

    errors = result.get('errors', [])
    status = 409 if errors and all(e['status_code'] == 409 for e in errors) else 400
    return jsonify(result), status


@reviews_api_bp.route('/async', methods=['POST'])
@review_limit
def create_async():
    """Queue a review for background validation"""
    request_data = parse_reviews_request(request.get_json(silent=True))
    review = review_service.create_pending_review(request_data, _user_id(), session_reference())
    mark_completed(session)
    process_review.delay(str(review.id))
    return jsonify({
        'success': True,
        'message': 'Review queued for validation',
        'review_id': str(review.id),
        'status_url': url_for('reviews_api.review_status', review_id=review.id),
    }), 202


@reviews_api_bp.route('/<review_id>/status', methods=['GET'])
def review_status(review_id):
    review_uuid = parse_uuid(review_id)
    review = db.session.get(Review, review_uuid) if review_uuid else None
    if review is None:
        raise NotFoundError('Review not found')

    user = current_user()
    allowed = (
        (user is not None and (user.is_administrator or review.user_id == user.id))
        or (review.session_id and review.session_id == session.get('session_ref'))
    )
    if not allowed:
        raise ForbiddenError('You cannot access this review')
    return jsonify({'success': True, 'data': review_service.get_review_status(review.id)})


@reviews_api_bp.route('/beer/<beer_id>/stats', methods=['GET'])
def beer_stats(beer_id):
    return jsonify({'success': True, 'data': review_service.get_beer_stats(beer_id)})


@reviews_api_bp.route('/my-reviews', methods=['GET'])
@login_required
def my_reviews():
    try:
        page = int(request.args.get('page', 1))
        limit = int(request.args.get('limit', 10))
    except ValueError:
        raise ValidationError('page and limit must be integers')
    sort = request.args.get('sort', '-created_at')
    return jsonify({'success': True, **review_service.get_user_reviews(_user_id(), page, limit, sort)})


@reviews_api_bp.route('/<review_id>', methods=['DELETE'])
@admin_required
def delete_review(review_id):
    review_service.delete_review(review_id)
    return jsonify({'success': True, 'message': 'Review deleted'})
