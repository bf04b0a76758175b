# services/review_service.py
"""
Review creation and review statistics
"""

import logging
import re
import unicodedata
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select

from core.database_models import db, Beer, Brewery, Review, ReviewRating, User, parse_uuid, utcnow
from core.errors import AppError, ConflictError, NotFoundError, ValidationError
from core.validation import CreateReviewsRequest, ReviewEntry
from services.cache import cache_service
from services.moderation import moderate_reviews, sanitize_text

logger = logging.getLogger(__name__)

PLACEHOLDER_IMAGE = '/static/placeholder-beer.jpg'
USER_REVIEWS_TTL = 600
BEER_STATS_TTL = 1800
SORT_FIELDS = {
    'created_at': Review.created_at,
    'status': Review.status,
}

_NON_WORD = re.compile(r'[^\w\s]')
_WHITESPACE = re.compile(r'\s+')


def _fold(name: str) -> str:
    """Lower case without accents or punctuation"""
    decomposed = unicodedata.normalize('NFKD', name.lower())
    stripped = ''.join(char for char in decomposed if not unicodedata.combining(char))
    return _WHITESPACE.sub(' ', _NON_WORD.sub('', stripped)).strip()


def find_existing_beer(label_name: Optional[str], brewery_id: Any) -> Optional[Beer]:
    """
    Find a catalogue beer of ``brewery_id`` matching a label name.

    Tries exact (case-insensitive), then names differing only by a short
    prefix or suffix, then accent and punctuation insensitive comparison.
    """
    brewery_uuid = parse_uuid(brewery_id)
    name = (label_name or '').strip()
    if brewery_uuid is None or not name:
        return None

    exact = Beer.query.filter(
        Beer.brewery_id == brewery_uuid,
        func.lower(Beer.name) == name.lower()
    ).first()
    if exact:
        return exact

    beers = Beer.query.filter_by(brewery_id=brewery_uuid).all()
    lowered = name.lower()
    for beer in beers:
        candidate = beer.name.lower()
        if candidate.startswith(lowered) and len(candidate) - len(lowered) <= 2:
            return beer
    for beer in beers:
        candidate = beer.name.lower()
        if lowered.startswith(candidate) and len(lowered) - len(candidate) <= 2:
            return beer

    folded = _fold(name)
    for beer in beers:
        candidate = _fold(beer.name)
        if candidate and folded and (candidate == folded or candidate.startswith(folded)):
            return beer
    return None


def _resolve_brewery(entry: ReviewEntry) -> Brewery:
    if entry.brewery_id:
        brewery = db.session.get(Brewery, parse_uuid(entry.brewery_id)) if parse_uuid(entry.brewery_id) else None
        if brewery is None:
            raise NotFoundError(f'Brewery not found for "{entry.beer_name}"')
        return brewery

    name = (entry.brewery_name or '').strip()
    if not name:
        raise ValidationError(f'Brewery is required for "{entry.beer_name}"')

    brewery = Brewery.query.filter(func.lower(Brewery.name) == name.lower()).first()
    if brewery is None:
        brewery = Brewery(
            name=name,
            ai_extracted=bool(entry.ai_data),
            data_source='label' if entry.ai_data else 'manual',
            needs_validation=True,
            validation_reason='Created from a review',
            created_by='review',
        )
        db.session.add(brewery)
        db.session.flush()
        logger.info(f"Created brewery '{name}' from review data")
    return brewery


def find_or_create_beer(entry: ReviewEntry) -> Beer:
    """
    Raises:
        NotFoundError: the referenced beer or brewery does not exist
        ValidationError: no brewery could be determined
    """
    if entry.beer_id:
        beer_uuid = parse_uuid(entry.beer_id)
        beer = db.session.get(Beer, beer_uuid) if beer_uuid else None
        if beer is None:
            raise NotFoundError(f'Beer not found: {entry.beer_name}')
        return beer

    return get_or_create_beer(entry.beer_name, _resolve_brewery(entry), entry.ai_data)


def get_or_create_beer(name: str, brewery: Brewery, ai_data: Optional[Dict[str, Any]] = None) -> Beer:
    """Catalogue beer of ``brewery`` matching ``name``, created from label data when missing"""
    beer = find_existing_beer(name, brewery.id)
    if beer is not None:
        return beer

    ai_data = ai_data or {}
    beer = Beer(
        name=name,
        brewery=brewery,
        alcohol_content=ai_data.get('abv'),
        beer_type=ai_data.get('style'),
        ibu=ai_data.get('ibu'),
        volume=ai_data.get('volume'),
        description=ai_data.get('description'),
        ingredients=ai_data.get('ingredients'),
        ai_extracted=bool(ai_data),
        ai_confidence=ai_data.get('confidence'),
        data_source=ai_data.get('data_source', 'label') if ai_data else 'manual',
        last_ai_update=utcnow() if ai_data else None,
    )
    db.session.add(beer)
    db.session.flush()
    logger.info(f"Created beer '{beer.name}' for brewery '{brewery.name}'")
    return beer


def check_duplicate_review(user_id: Any, beer_id: Any) -> bool:
    user_uuid = parse_uuid(user_id)
    if user_uuid is None:
        return False
    stmt = (
        select(ReviewRating.id)
        .join(Review, ReviewRating.review_id == Review.id)
        .where(Review.user_id == user_uuid, ReviewRating.beer_id == beer_id)
        .limit(1)
    )
    return db.session.execute(stmt).first() is not None


def _clean_detailed_ratings(entry: ReviewEntry) -> Optional[Dict[str, Any]]:
    if not entry.detailed_ratings:
        return None
    return {
        category: {'rating': value.rating, 'notes': sanitize_text(value.notes)}
        for category, value in entry.detailed_ratings.items()
    }


def create_single_review(entry: ReviewEntry, beer: Beer, user_id: Any = None,
                         session_id: Optional[str] = None, image_url: Optional[str] = None) -> Review:
    review = Review(
        user_id=parse_uuid(user_id),
        session_id=session_id,
        image_url=image_url or PLACEHOLDER_IMAGE,
        status='pending',
    )
    review.ratings.append(ReviewRating(
        beer=beer,
        brewery_id=beer.brewery_id,
        bottle_label=sanitize_text(entry.beer_name),
        rating=entry.rating,
        notes=sanitize_text(entry.notes),
        detailed_ratings=_clean_detailed_ratings(entry),
        ai_data=entry.ai_data,
    ))
    db.session.add(review)
    db.session.flush()
    return review


def update_user_stats(user_id: Any, created: int) -> None:
    user = db.session.get(User, parse_uuid(user_id)) if parse_uuid(user_id) else None
    if user is None:
        return
    user.reviews_count = (user.reviews_count or 0) + created
    user.last_activity = utcnow()


def invalidate_review_caches(user_id: Any = None, beer_ids=()) -> None:
    if user_id:
        cache_service.invalidate_pattern(f'user_reviews:{user_id}')
    for beer_id in set(beer_ids):
        cache_service.invalidate_pattern(f'beer_stats:{beer_id}')


def create_multiple_reviews(request_data: CreateReviewsRequest, user_id: Any = None,
                            session_id: Optional[str] = None) -> Dict[str, Any]:
    """
    Create one review per entry. Problems with a single entry (duplicate,
    unknown beer) are reported without failing the others.

    Raises:
        InappropriateContentError: moderation rejected the batch
    """
    entries = request_data.reviews
    moderate_reviews([entry.model_dump() for entry in entries])

    image_url = entries[0].thumbnail or PLACEHOLDER_IMAGE
    created: List[Dict[str, Any]] = []
    errors: List[Dict[str, Any]] = []
    beer_ids = []

    for index, entry in enumerate(entries):
        try:
            beer = find_or_create_beer(entry)
            if user_id and check_duplicate_review(user_id, beer.id):
                raise ConflictError(f'You have already reviewed "{beer.name}"')
            review = create_single_review(entry, beer, user_id, session_id, image_url)
        except AppError as e:
            logger.info(f"Review #{index + 1} skipped: {e.message}")
            errors.append({'index': index, 'beer_name': entry.beer_name, 'error': e.message,
                           'status_code': e.status_code})
            continue
        beer_ids.append(str(beer.id))
        created.append({'id': str(review.id), 'beer_id': str(beer.id), 'beer_name': beer.name,
                        'rating': entry.rating})

    if created and user_id:
        update_user_stats(user_id, len(created))
    db.session.commit()
    invalidate_review_caches(user_id, beer_ids)

    logger.info(f"Created {len(created)} reviews ({len(errors)} errors) for "
                f"{'user ' + str(user_id) if user_id else 'guest session'}")

    result = {
        'success': bool(created),
        'message': f'{len(created)} reviews saved' if created else 'No review could be saved',
        'data': {'created': len(created), 'errors': len(errors), 'reviews': created},
    }
    if errors:
        result['errors'] = errors
    return result


def create_pending_review(request_data: CreateReviewsRequest, user_id: Any = None,
                          session_id: Optional[str] = None) -> Review:
    """Store a review whose bottles are resolved later by a worker"""
    entries = request_data.reviews
    moderate_reviews([entry.model_dump() for entry in entries])

    review = Review(
        user_id=parse_uuid(user_id),
        session_id=session_id,
        image_url=entries[0].thumbnail or PLACEHOLDER_IMAGE,
        status='pending_validation',
        processing_status='pending',
        pending_bottles=[entry.model_dump(mode='json') for entry in entries],
    )
    db.session.add(review)
    db.session.commit()
    logger.info(f"Review {review.id} queued with {len(entries)} bottles")
    return review


def process_pending_review(review_id: Any) -> Dict[str, Any]:
    """
    Resolve the bottles of a queued review into beers and ratings.

    Bottles that cannot be resolved leave the review for an administrator.
    """
    review = db.session.get(Review, parse_uuid(review_id)) if parse_uuid(review_id) else None
    if review is None:
        raise NotFoundError(f'Review {review_id} not found')
    if review.processing_status == 'completed':
        return {'review_id': str(review.id), 'status': review.processing_status, 'created': 0}

    review.processing_status = 'processing'
    review.processing_attempts = (review.processing_attempts or 0) + 1
    db.session.commit()

    # Ratings left by an earlier partial run were already counted for the user
    first_ratings = not review.ratings
    problems = []
    unresolved = []
    beer_ids = []
    for index, bottle in enumerate(review.pending_bottles or []):
        entry = ReviewEntry.model_validate(bottle)
        try:
            beer = find_or_create_beer(entry)
        except AppError as e:
            problems.append(f'bottle {index + 1}: {e.message}')
            unresolved.append(bottle)
            continue
        review.ratings.append(ReviewRating(
            beer=beer,
            brewery_id=beer.brewery_id,
            bottle_label=sanitize_text(entry.beer_name),
            rating=entry.rating,
            notes=sanitize_text(entry.notes),
            detailed_ratings=_clean_detailed_ratings(entry),
            ai_data=entry.ai_data,
        ))
        beer_ids.append(str(beer.id))

    review.processed_at = utcnow()
    if problems:
        review.processing_status = 'needs_admin_review'
        review.processing_error = '; '.join(problems)
        review.pending_bottles = unresolved
    else:
        review.processing_status = 'completed'
        review.processing_error = None
        review.status = 'pending'
        review.pending_bottles = None

    if beer_ids and review.user_id and first_ratings:
        update_user_stats(review.user_id, 1)
    db.session.commit()
    invalidate_review_caches(review.user_id, beer_ids)

    logger.info(f"Review {review.id} processed: {review.processing_status}")
    return {'review_id': str(review.id), 'status': review.processing_status, 'created': len(beer_ids)}


def get_review_status(review_id: Any) -> Dict[str, Any]:
    review = db.session.get(Review, parse_uuid(review_id)) if parse_uuid(review_id) else None
    if review is None:
        raise NotFoundError('Review not found')
    return {
        'id': str(review.id),
        'status': review.status,
        'processing_status': review.processing_status,
        'processing_error': review.processing_error,
        'processing_attempts': review.processing_attempts or 0,
        'processed_at': review.processed_at.isoformat() if review.processed_at else None,
        'ratings': len(review.ratings),
    }


def get_user_reviews(user_id: Any, page: int = 1, limit: int = 10, sort: str = '-created_at') -> Dict[str, Any]:
    page = max(int(page or 1), 1)
    limit = min(max(int(limit or 10), 1), 50)
    cache_key = f'user_reviews:{user_id}:{page}:{limit}:{sort}'
    cached = cache_service.get(cache_key)
    if cached is not None:
        return cached

    column = SORT_FIELDS.get(sort.lstrip('-'), Review.created_at)
    order = column.desc() if sort.startswith('-') else column.asc()
    stmt = select(Review).where(Review.user_id == parse_uuid(user_id)).order_by(order)
    pagination = db.paginate(stmt, page=page, per_page=limit, error_out=False)

    result = {
        'reviews': [review.to_dict() for review in pagination.items],
        'pagination': {
            'page': pagination.page,
            'limit': limit,
            'total': pagination.total,
            'pages': pagination.pages,
            'has_next': pagination.has_next,
            'has_prev': pagination.has_prev,
        },
    }
    cache_service.set(cache_key, result, USER_REVIEWS_TTL)
    return result


def get_beer_stats(beer_id: Any) -> Dict[str, Any]:
    """Average, count and 1..5 distribution over visible reviews"""
    beer_uuid = parse_uuid(beer_id)
    if beer_uuid is None or db.session.get(Beer, beer_uuid) is None:
        raise NotFoundError('Beer not found')

    cache_key = f'beer_stats:{beer_uuid}'
    cached = cache_service.get(cache_key)
    if cached is not None:
        return cached

    stmt = (
        select(ReviewRating.rating)
        .join(Review, ReviewRating.review_id == Review.id)
        .where(ReviewRating.beer_id == beer_uuid, Review.is_hidden.is_(False))
    )
    ratings = [row[0] for row in db.session.execute(stmt)]
    distribution = {str(value): 0 for value in range(1, 6)}
    for rating in ratings:
        distribution[str(rating)] += 1

    stats = {
        'beer_id': str(beer_uuid),
        'average_rating': round(sum(ratings) / len(ratings), 1) if ratings else 0,
        'total_reviews': len(ratings),
        'rating_distribution': distribution,
    }
    cache_service.set(cache_key, stats, BEER_STATS_TTL)
    return stats


def delete_review(review_id: Any) -> None:
    review = db.session.get(Review, parse_uuid(review_id)) if parse_uuid(review_id) else None
    if review is None:
        raise NotFoundError('Review not found')

    beer_ids = [str(rating.beer_id) for rating in review.ratings if rating.beer_id]
    user = review.user
    if user is not None and user.reviews_count:
        user.reviews_count -= 1
    db.session.delete(review)
    db.session.commit()
    invalidate_review_caches(user.id if user else None, beer_ids)
    logger.info(f"Review {review_id} deleted")
