# services/admin_service.py
"""
Administration operations on users, roles, breweries and reviews.

Route handlers stay thin: every rule about who may hold which role, who can
be banned and what happens to linked records lives here.
"""

import logging
from typing import Any, Dict, List, Optional

from email_validator import validate_email, EmailNotValidError
from sqlalchemy import false, func, or_, select

from core.database_models import (
    db, Administrator, Beer, Brewery, Review, ReviewRating, User,
    ROLE_ADMINISTRATOR, ROLE_BREWERY, ROLE_CUSTOMER, ALL_ROLES, DEFAULT_ROLES,
    REVIEW_STATUSES, parse_uuid, utcnow
)
from core.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from core.security_manager import get_security_manager
from core.validation import validate_registration
from services import review_service

logger = logging.getLogger(__name__)

CUSTOMER_FIELDS = (
    'customer_name', 'customer_surname', 'customer_billing_address',
    'customer_shipping_address', 'customer_phone_number',
)
BREWERY_FIELDS = (
    'name', 'description', 'fiscal_code', 'rea_code', 'excise_code', 'fund',
    'legal_address', 'production_address', 'phone_number', 'email', 'website', 'logo',
)
# Fields a brewery owner may edit from the brewery area
BREWERY_PUBLIC_FIELDS = (
    'description', 'legal_address', 'production_address', 'phone_number', 'email', 'website', 'logo',
)
SOCIAL_NETWORKS = ('facebook', 'instagram', 'youtube', 'twitter', 'linkedin')


# Lookups

def get_user(user_id: Any) -> User:
    user_uuid = parse_uuid(user_id)
    user = db.session.get(User, user_uuid) if user_uuid else None
    if user is None:
        raise NotFoundError('User not found')
    return user


def get_brewery(brewery_id: Any) -> Brewery:
    brewery_uuid = parse_uuid(brewery_id)
    brewery = db.session.get(Brewery, brewery_uuid) if brewery_uuid else None
    if brewery is None:
        raise NotFoundError('Brewery not found')
    return brewery


def get_review(review_id: Any) -> Review:
    review_uuid = parse_uuid(review_id)
    review = db.session.get(Review, review_uuid) if review_uuid else None
    if review is None:
        raise NotFoundError('Review not found')
    return review


def _audit(event_type: str, **details) -> None:
    get_security_manager().log_security_event(event_type, details)


# Users

def list_users_sorted(search: Optional[str] = None) -> List[User]:
    """Regular users first, administrators last, each group by username"""
    query = User.query
    if search:
        query = query.filter(User.username.ilike(f'%{search.strip()}%'))
    users = query.all()
    return sorted(users, key=lambda user: (user.is_administrator, user.username.lower()))


def _apply_customer_fields(user: User, data: Dict[str, Any]) -> None:
    for field in CUSTOMER_FIELDS:
        if field in data:
            setattr(user, field, (data.get(field) or '').strip() or None)
    if 'customer_fiscal_code' in data:
        fiscal_code = (data.get('customer_fiscal_code') or '').strip()
        user.customer_fiscal_code = (
            get_security_manager().encrypt_sensitive_data(fiscal_code.upper()) if fiscal_code else None
        )


def decrypt_fiscal_code(user: User) -> Optional[str]:
    if not user.customer_fiscal_code:
        return None
    return get_security_manager().decrypt_sensitive_data(user.customer_fiscal_code)


def create_user(data: Dict[str, Any]) -> User:
    """
    Create a user with one of the three roles.

    A brewery user is linked to an existing unowned brewery, or to a new one
    named by ``brewery_name``.
    """
    cleaned = validate_registration(data.get('username'), data.get('password'), data.get('email'))
    role = data.get('role') or ROLE_CUSTOMER
    if role not in ALL_ROLES:
        raise ValidationError(f'Unknown role: {role}')
    if User.query.filter(func.lower(User.username) == cleaned['username'].lower()).first():
        raise ConflictError('Username already taken')

    password_hash, salt = get_security_manager().hash_password(cleaned['password'])
    user = User(
        username=cleaned['username'],
        email=cleaned['email'],
        password_hash=password_hash,
        password_salt=salt,
    )

    if role == ROLE_ADMINISTRATOR:
        administrator = Administrator(name=data.get('administrator_name') or cleaned['username'])
        db.session.add(administrator)
        user.administrator = administrator
        user.roles = [ROLE_ADMINISTRATOR]
        user.default_role = None
    elif role == ROLE_BREWERY:
        if data.get('brewery_id'):
            brewery = get_brewery(data['brewery_id'])
            if brewery.owner is not None:
                raise ConflictError('The brewery is already linked to another user')
        else:
            name = (data.get('brewery_name') or '').strip()
            if not name:
                raise ValidationError('A brewery or a brewery name is required')
            brewery = Brewery(name=name, created_by='administrator')
            db.session.add(brewery)
        user.brewery = brewery
        user.roles = [ROLE_CUSTOMER, ROLE_BREWERY]
        user.default_role = ROLE_BREWERY
    else:
        user.roles = [ROLE_CUSTOMER]
        user.default_role = ROLE_CUSTOMER
        _apply_customer_fields(user, data)

    db.session.add(user)
    db.session.commit()
    logger.info(f"User {user.username} created with role {role}")
    _audit('user_created', user_id=str(user.id), role=role)
    return user


def update_user(user_id: Any, data: Dict[str, Any]) -> User:
    """An administrator's default role is never changed here"""
    user = get_user(user_id)

    if data.get('email') is not None:
        email = data['email'].strip()
        if email:
            try:
                email = validate_email(email, check_deliverability=False).normalized
            except EmailNotValidError as e:
                raise ValidationError(f'Invalid e-mail address: {e}')
        user.email = email or None

    default_role = data.get('default_role')
    if default_role and not user.is_administrator:
        if default_role not in DEFAULT_ROLES:
            raise ValidationError('Default role must be customer or brewery')
        if not user.has_role(default_role):
            raise ValidationError(f'The user does not hold the {default_role} role')
        user.default_role = default_role

    _apply_customer_fields(user, data)
    db.session.commit()
    logger.info(f"User {user.username} updated")
    return user


def delete_user(user_id: Any, acting_user_id: Any = None) -> None:
    user = get_user(user_id)
    if acting_user_id and str(user.id) == str(acting_user_id):
        raise ForbiddenError('You cannot delete your own account')

    for review in user.reviews:
        review.user_id = None
    if user.administrator is not None:
        db.session.delete(user.administrator)
    username = user.username
    db.session.delete(user)
    db.session.commit()
    logger.info(f"User {username} deleted")
    _audit('user_deleted', user_id=str(user_id), username=username)


def add_role(user_id: Any, role: str, brewery_id: Any = None) -> User:
    """
    Grant ``role``. Administrator cannot be granted this way; brewery needs
    an existing brewery that no other user owns.
    """
    user = get_user(user_id)
    if role not in ALL_ROLES:
        raise ValidationError(f'Unknown role: {role}')
    if role == ROLE_ADMINISTRATOR:
        raise ForbiddenError('The administrator role cannot be assigned')
    if user.has_role(role):
        raise ConflictError(f'The user already has the {role} role')

    if role == ROLE_BREWERY:
        if not brewery_id:
            raise ValidationError('Select a brewery to link to the user')
        brewery = get_brewery(brewery_id)
        if brewery.owner is not None and brewery.owner.id != user.id:
            raise ConflictError('The brewery is already linked to another user')
        user.brewery = brewery

    user.roles = list(user.roles or []) + [role]
    db.session.commit()
    logger.info(f"Role {role} added to {user.username}")
    _audit('role_added', user_id=str(user.id), role=role)
    return user


def remove_role(user_id: Any, role: str, acting_user_id: Any = None,
                active_role: Optional[str] = None) -> Dict[str, Any]:
    """
    Revoke ``role``.

    Returns ``{'user': user, 'new_active_role': role or None}``; the new active
    role is set when the acting session was using the removed role.
    """
    user = get_user(user_id)
    roles = list(user.roles or [])
    if role not in roles:
        raise ValidationError(f'The user does not have the {role} role')
    if len(roles) == 1:
        raise ValidationError('The last role of a user cannot be removed')
    if role == ROLE_CUSTOMER and user.default_role == ROLE_CUSTOMER:
        raise ValidationError('The customer role cannot be removed while it is the default role')

    if role == ROLE_ADMINISTRATOR and user.administrator is not None:
        db.session.delete(user.administrator)
        user.administrator_id = None
    elif role == ROLE_BREWERY:
        user.brewery_id = None

    remaining = [r for r in roles if r != role]
    user.roles = remaining
    if user.default_role == role:
        user.default_role = next((r for r in remaining if r in DEFAULT_ROLES), ROLE_CUSTOMER)

    new_active_role = None
    if acting_user_id and str(user.id) == str(acting_user_id) and active_role == role:
        new_active_role = ROLE_CUSTOMER if ROLE_CUSTOMER in remaining else remaining[0]

    db.session.commit()
    logger.info(f"Role {role} removed from {user.username}")
    _audit('role_removed', user_id=str(user.id), role=role)
    return {'user': user, 'new_active_role': new_active_role}


def ban_user(user_id: Any, reason: Optional[str]) -> User:
    user = get_user(user_id)
    if user.is_administrator:
        raise ForbiddenError('Administrators cannot be banned')
    reason = (reason or '').strip()
    if not reason:
        raise ValidationError('A ban reason is required')

    user.is_banned = True
    user.ban_reason = reason[:255]
    user.banned_at = utcnow()
    db.session.commit()
    logger.warning(f"User {user.username} banned: {reason}")
    _audit('user_banned', user_id=str(user.id), reason=reason)
    return user


def unban_user(user_id: Any) -> User:
    user = get_user(user_id)
    user.is_banned = False
    user.ban_reason = None
    user.banned_at = None
    db.session.commit()
    logger.info(f"User {user.username} unbanned")
    _audit('user_unbanned', user_id=str(user.id))
    return user


# Breweries

def list_breweries(search: Optional[str] = None, needs_validation: Optional[bool] = None) -> List[Brewery]:
    query = Brewery.query
    if search:
        query = query.filter(Brewery.name.ilike(f'%{search.strip()}%'))
    if needs_validation is not None:
        query = query.filter(Brewery.needs_validation.is_(needs_validation))
    return query.order_by(func.lower(Brewery.name)).all()


def unlinked_breweries() -> List[Brewery]:
    linked = select(User.brewery_id).where(User.brewery_id.is_not(None))
    return Brewery.query.filter(Brewery.id.not_in(linked)).order_by(func.lower(Brewery.name)).all()


def incomplete_breweries() -> List[Brewery]:
    return [brewery for brewery in list_breweries() if brewery.missing_fields]


def _apply_brewery_fields(brewery: Brewery, data: Dict[str, Any], fields=BREWERY_FIELDS) -> None:
    for field in fields:
        if field not in data:
            continue
        value = (data.get(field) or '').strip() or None
        if field == 'name' and not value:
            raise ValidationError('Brewery name is required')
        if field == 'email' and value:
            try:
                value = validate_email(value, check_deliverability=False).normalized
            except EmailNotValidError as e:
                raise ValidationError(f'Invalid brewery e-mail: {e}')
        if field in ('website', 'logo') and value and not value.startswith(('http://', 'https://')):
            value = f'https://{value}'
        setattr(brewery, field, value)

    if 'founding_year' in data:
        year = str(data.get('founding_year') or '').strip()
        if year:
            if not year.isdigit() or not 1000 <= int(year) <= utcnow().year:
                raise ValidationError('Founding year is not valid')
            brewery.founding_year = int(year)
        else:
            brewery.founding_year = None

    social = {network: data[f'social_{network}'].strip()
              for network in SOCIAL_NETWORKS if (data.get(f'social_{network}') or '').strip()}
    if social or any(f'social_{network}' in data for network in SOCIAL_NETWORKS):
        brewery.social_media = social


def create_brewery(data: Dict[str, Any]) -> Brewery:
    if not (data.get('name') or '').strip():
        raise ValidationError('Brewery name is required')
    brewery = Brewery(created_by='administrator', data_source='manual')
    _apply_brewery_fields(brewery, data)
    db.session.add(brewery)
    db.session.commit()
    logger.info(f"Brewery {brewery.name} created")
    return brewery


def update_brewery(brewery_id: Any, data: Dict[str, Any], fields=BREWERY_FIELDS) -> Brewery:
    brewery = get_brewery(brewery_id)
    _apply_brewery_fields(brewery, data, fields)
    db.session.commit()
    logger.info(f"Brewery {brewery.name} updated")
    return brewery


def delete_brewery(brewery_id: Any) -> None:
    """Ratings keep their label text; the owner loses the brewery role"""
    brewery = get_brewery(brewery_id)
    beer_ids = [beer.id for beer in brewery.beers]

    ratings = ReviewRating.query.filter(or_(
        ReviewRating.brewery_id == brewery.id,
        ReviewRating.beer_id.in_(beer_ids) if beer_ids else false(),
    )).all()
    for rating in ratings:
        rating.brewery_id = None
        if rating.beer_id in beer_ids:
            rating.beer_id = None

    owner = brewery.owner
    if owner is not None:
        owner.brewery_id = None
        owner.roles = [role for role in owner.roles if role != ROLE_BREWERY] or [ROLE_CUSTOMER]
        if owner.default_role == ROLE_BREWERY:
            owner.default_role = ROLE_CUSTOMER

    name = brewery.name
    db.session.delete(brewery)
    db.session.commit()
    logger.info(f"Brewery {name} deleted with {len(beer_ids)} beers")


def approve_brewery(brewery_id: Any) -> Brewery:
    brewery = get_brewery(brewery_id)
    if not brewery.needs_validation:
        raise ValidationError('The brewery does not need validation')
    brewery.needs_validation = False
    brewery.validation_reason = None
    brewery.validated_at = utcnow()
    db.session.commit()
    logger.info(f"Brewery {brewery.name} approved")
    return brewery


def brewery_beers_with_stats(brewery: Brewery) -> List[Dict[str, Any]]:
    beers = Beer.query.filter_by(brewery_id=brewery.id).order_by(func.lower(Beer.name)).all()
    return [dict(beer.to_dict(), stats=review_service.get_beer_stats(beer.id)) for beer in beers]


# Reviews

def list_reviews(status: Optional[str] = None, hidden: Optional[bool] = None,
                 processing_status: Optional[str] = None, page: int = 1, per_page: int = 20):
    stmt = select(Review).order_by(Review.created_at.desc())
    if status:
        stmt = stmt.where(Review.status == status)
    if hidden is not None:
        stmt = stmt.where(Review.is_hidden.is_(hidden))
    if processing_status:
        stmt = stmt.where(Review.processing_status == processing_status)
    return db.paginate(stmt, page=max(page, 1), per_page=per_page, error_out=False)


def set_review_visibility(review_id: Any, hidden: bool, reason: Optional[str] = None) -> Review:
    review = get_review(review_id)
    review.is_hidden = hidden
    review.moderation_reason = (reason or '').strip()[:255] or None
    review.moderated_at = utcnow()
    db.session.commit()
    review_service.invalidate_review_caches(
        review.user_id, [str(r.beer_id) for r in review.ratings if r.beer_id]
    )
    logger.info(f"Review {review.id} {'hidden' if hidden else 'visible'}")
    return review


def set_review_status(review_id: Any, status: str) -> Review:
    if status not in REVIEW_STATUSES:
        raise ValidationError(f'Unknown review status: {status}')
    review = get_review(review_id)
    review.status = status
    review.moderated_at = utcnow()
    db.session.commit()
    logger.info(f"Review {review.id} set to {status}")
    return review


def reset_review_processing(review_id: Any) -> Review:
    """Put a failed background review back in the queue"""
    review = get_review(review_id)
    if review.processing_status not in ('failed', 'needs_admin_review'):
        raise ValidationError('Only failed reviews can be retried')
    review.processing_status = 'pending'
    review.processing_error = None
    db.session.commit()
    return review
