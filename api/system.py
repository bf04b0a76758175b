# api/system.py
"""
Operational API: rate limits, cache and security audit summaries
"""

from flask import Blueprint, jsonify, request, session

from core.security_manager import get_security_manager
from middleware.rate_limits import rate_limit_info
from middleware.security import admin_required
from services import ai_service
from services.cache import cache_service

system_api_bp = Blueprint('system_api', __name__)


@system_api_bp.route('/rate-limit-info', methods=['GET'])
def get_rate_limit_info():
    info = rate_limit_info()
    info['ai_quota'] = ai_service.can_make_request(session, session.get('user_id'))
    return jsonify({'success': True, 'data': info})


@system_api_bp.route('/cache/stats', methods=['GET'])
@admin_required
def get_cache_stats():
    return jsonify({'success': True, 'data': cache_service.stats()})


@system_api_bp.route('/security/metrics', methods=['GET'])
@admin_required
def get_security_metrics():
    hours = request.args.get('hours', 24, type=int)
    return jsonify({'success': True, 'data': get_security_manager().get_security_metrics(hours)})
