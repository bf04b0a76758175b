from flask import Blueprint, render_template, request, redirect, url_for, flash
from sqlalchemy import select

from core.database_models import db, Review, ReviewRating
from core.errors import ForbiddenError
from middleware.security import brewery_required, current_user
from services import admin_service

brewery_bp = Blueprint('brewery', __name__)


def _recent_reviews(brewery, limit=10):
    stmt = (
        select(ReviewRating)
        .join(Review, ReviewRating.review_id == Review.id)
        .where(ReviewRating.brewery_id == brewery.id, Review.is_hidden.is_(False))
        .order_by(Review.created_at.desc())
        .limit(limit)
    )
    return db.session.execute(stmt).scalars().all()


@brewery_bp.route('/dashboard')
@brewery_required
def dashboard():
    brewery = current_user().brewery
    if brewery is None:
        flash('No brewery is linked to your account yet. Contact an administrator.', 'warning')
        return render_template('brewery/dashboard.html', brewery=None, beers=[], recent_ratings=[])

    return render_template(
        'brewery/dashboard.html',
        brewery=brewery,
        beers=admin_service.brewery_beers_with_stats(brewery),
        recent_ratings=_recent_reviews(brewery),
    )


@brewery_bp.route('/profile', methods=['POST'])
@brewery_required
def update_profile():
    brewery = current_user().brewery
    if brewery is None:
        raise ForbiddenError('No brewery is linked to your account')

    admin_service.update_brewery(brewery.id, request.form.to_dict(),
                                 fields=admin_service.BREWERY_PUBLIC_FIELDS)
    flash('Brewery profile updated', 'success')
    return redirect(url_for('brewery.dashboard'))
