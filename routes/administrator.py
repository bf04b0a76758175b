import logging

from flask import Blueprint, render_template, request, redirect, url_for, session, flash, jsonify

from core.database_models import ALL_ROLES, REVIEW_STATUSES, PROCESSING_STATUSES
from middleware.security import admin_required, current_user
from routes.auth import role_home_url
from services import admin_service, review_service, statistics
from tasks.review_worker import process_review

administrator_bp = Blueprint('administrator', __name__)
logger = logging.getLogger(__name__)


def _flag(value):
    if value in (None, ''):
        return None
    return value.lower() in ('1', 'true', 'yes', 'on')


@administrator_bp.route('')
@admin_required
def dashboard():
    return render_template(
        'administrator/dashboard.html',
        totals=statistics.get_totals(),
        breweries_to_validate=admin_service.list_breweries(needs_validation=True),
        failed_reviews=admin_service.list_reviews(processing_status='needs_admin_review', per_page=10).items,
    )


# Users

@administrator_bp.route('/users', methods=['GET'])
@admin_required
def users():
    return render_template(
        'administrator/users.html',
        users=admin_service.list_users_sorted(request.args.get('q')),
        unlinked_breweries=admin_service.unlinked_breweries(),
        roles=ALL_ROLES,
    )


@administrator_bp.route('/users', methods=['POST'])
@admin_required
def create_user():
    user = admin_service.create_user(request.form.to_dict())
    flash(f'User {user.username} created', 'success')
    return redirect(url_for('administrator.user_detail', user_id=user.id))


@administrator_bp.route('/users/<user_id>', methods=['GET'])
@admin_required
def user_detail(user_id):
    user = admin_service.get_user(user_id)
    return render_template(
        'administrator/user_detail.html',
        user=user,
        fiscal_code=admin_service.decrypt_fiscal_code(user),
        unlinked_breweries=admin_service.unlinked_breweries(),
        roles=ALL_ROLES,
    )


@administrator_bp.route('/users/<user_id>', methods=['POST'])
@admin_required
def update_user(user_id):
    admin_service.update_user(user_id, request.form.to_dict())
    flash('User updated', 'success')
    return redirect(url_for('administrator.user_detail', user_id=user_id))


@administrator_bp.route('/users/<user_id>/delete', methods=['POST'])
@admin_required
def delete_user(user_id):
    admin_service.delete_user(user_id, acting_user_id=session.get('user_id'))
    flash('User deleted', 'success')
    return redirect(url_for('administrator.users'))


@administrator_bp.route('/users/<user_id>/roles/add', methods=['POST'])
@admin_required
def add_role(user_id):
    role = request.form.get('role', '')
    admin_service.add_role(user_id, role, brewery_id=request.form.get('brewery_id'))
    flash(f'Role {role} added', 'success')
    return redirect(url_for('administrator.user_detail', user_id=user_id))


@administrator_bp.route('/users/<user_id>/roles/remove', methods=['POST'])
@admin_required
def remove_role(user_id):
    role = request.form.get('role', '')
    result = admin_service.remove_role(
        user_id, role,
        acting_user_id=session.get('user_id'),
        active_role=session.get('active_role'),
    )
    flash(f'Role {role} removed', 'success')

    new_role = result['new_active_role']
    if new_role:
        # The acting administrator gave up the role they were using
        session['active_role'] = new_role
        return redirect(role_home_url(new_role))
    return redirect(url_for('administrator.user_detail', user_id=user_id))


@administrator_bp.route('/users/<user_id>/ban', methods=['POST'])
@admin_required
def ban_user(user_id):
    user = admin_service.ban_user(user_id, request.form.get('reason'))
    flash(f'User {user.username} banned', 'success')
    return redirect(url_for('administrator.user_detail', user_id=user_id))


@administrator_bp.route('/users/<user_id>/unban', methods=['POST'])
@admin_required
def unban_user(user_id):
    user = admin_service.unban_user(user_id)
    flash(f'User {user.username} unbanned', 'success')
    return redirect(url_for('administrator.user_detail', user_id=user_id))


# Breweries

@administrator_bp.route('/breweries', methods=['GET'])
@admin_required
def breweries():
    return render_template(
        'administrator/breweries.html',
        breweries=admin_service.list_breweries(
            search=request.args.get('q'),
            needs_validation=_flag(request.args.get('needs_validation')),
        ),
        title='Breweries',
    )


@administrator_bp.route('/breweries/incomplete', methods=['GET'])
@admin_required
def incomplete_breweries():
    return render_template(
        'administrator/breweries.html',
        breweries=admin_service.incomplete_breweries(),
        title='Breweries with incomplete profile',
        show_missing=True,
    )


@administrator_bp.route('/breweries/new', methods=['GET'])
@admin_required
def new_brewery():
    return render_template('administrator/brewery_form.html', brewery=None)


@administrator_bp.route('/breweries', methods=['POST'])
@admin_required
def create_brewery():
    brewery = admin_service.create_brewery(request.form.to_dict())
    flash(f'Brewery {brewery.name} created', 'success')
    return redirect(url_for('administrator.breweries'))


@administrator_bp.route('/breweries/<brewery_id>', methods=['GET'])
@admin_required
def edit_brewery(brewery_id):
    brewery = admin_service.get_brewery(brewery_id)
    return render_template(
        'administrator/brewery_form.html',
        brewery=brewery,
        beers=admin_service.brewery_beers_with_stats(brewery),
    )


@administrator_bp.route('/breweries/<brewery_id>', methods=['POST'])
@admin_required
def update_brewery(brewery_id):
    brewery = admin_service.update_brewery(brewery_id, request.form.to_dict())
    flash(f'Brewery {brewery.name} updated', 'success')
    return redirect(url_for('administrator.edit_brewery', brewery_id=brewery_id))


@administrator_bp.route('/breweries/<brewery_id>/delete', methods=['POST'])
@admin_required
def delete_brewery(brewery_id):
    admin_service.delete_brewery(brewery_id)
    flash('Brewery deleted', 'success')
    return redirect(url_for('administrator.breweries'))


@administrator_bp.route('/breweries/<brewery_id>/approve', methods=['POST'])
@admin_required
def approve_brewery(brewery_id):
    brewery = admin_service.approve_brewery(brewery_id)
    flash(f'Brewery {brewery.name} approved', 'success')
    return redirect(request.referrer or url_for('administrator.breweries'))


# Reviews

@administrator_bp.route('/reviews', methods=['GET'])
@admin_required
def reviews():
    pagination = admin_service.list_reviews(
        status=request.args.get('status') or None,
        hidden=_flag(request.args.get('hidden')),
        processing_status=request.args.get('processing_status') or None,
        page=request.args.get('page', 1, type=int),
    )
    return render_template(
        'administrator/reviews.html',
        pagination=pagination,
        statuses=REVIEW_STATUSES,
        processing_statuses=PROCESSING_STATUSES,
        filters=request.args,
    )


@administrator_bp.route('/reviews/<review_id>/visibility', methods=['POST'])
@admin_required
def review_visibility(review_id):
    hidden = bool(_flag(request.form.get('hidden')))
    admin_service.set_review_visibility(review_id, hidden, request.form.get('reason'))
    flash('Review hidden' if hidden else 'Review visible again', 'success')
    return redirect(request.referrer or url_for('administrator.reviews'))


@administrator_bp.route('/reviews/<review_id>/status', methods=['POST'])
@admin_required
def review_status(review_id):
    review = admin_service.set_review_status(review_id, request.form.get('status', ''))
    flash(f'Review status set to {review.status}', 'success')
    return redirect(request.referrer or url_for('administrator.reviews'))


@administrator_bp.route('/reviews/<review_id>/delete', methods=['POST'])
@admin_required
def delete_review(review_id):
    review_service.delete_review(review_id)
    flash('Review deleted', 'success')
    return redirect(url_for('administrator.reviews'))


@administrator_bp.route('/reviews/<review_id>/retry', methods=['POST'])
@admin_required
def retry_review(review_id):
    review = admin_service.reset_review_processing(review_id)
    process_review.delay(str(review.id))
    logger.info(f"Review {review.id} requeued by {current_user().username}")
    flash('Review queued again', 'success')
    return redirect(request.referrer or url_for('administrator.reviews'))


# Statistics

@administrator_bp.route('/statistics', methods=['GET'])
@admin_required
def statistics_page():
    return render_template('administrator/statistics.html', stats=statistics.get_dashboard_statistics())


@administrator_bp.route('/statistics/data', methods=['GET'])
@admin_required
def statistics_data():
    include_charts = _flag(request.args.get('charts')) is not False
    return jsonify({'success': True, 'data': statistics.get_dashboard_statistics(include_charts)})
