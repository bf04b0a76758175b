# core/database_models.py
"""
SQLAlchemy models for users, breweries, beers and reviews
"""

import re
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import (
    Column, Integer, String, DateTime, JSON, Text, Boolean, Float, ForeignKey, Uuid, event
)
from sqlalchemy.orm import relationship

db = SQLAlchemy()

ROLE_CUSTOMER = 'customer'
ROLE_BREWERY = 'brewery'
ROLE_ADMINISTRATOR = 'administrator'
ALL_ROLES = (ROLE_CUSTOMER, ROLE_BREWERY, ROLE_ADMINISTRATOR)
DEFAULT_ROLES = (ROLE_CUSTOMER, ROLE_BREWERY)
# Order used when picking the main role of a multi-role user
ROLE_PRIORITY = (ROLE_ADMINISTRATOR, ROLE_BREWERY, ROLE_CUSTOMER)

REVIEW_STATUSES = ('pending', 'validated', 'rejected', 'pending_validation')
PROCESSING_STATUSES = ('pending', 'processing', 'completed', 'needs_admin_review', 'failed')
DATA_SOURCES = ('label', 'web', 'label+web', 'manual')
RATING_CATEGORIES = ('appearance', 'aroma', 'taste', 'mouthfeel', 'overall')

DEFAULT_ADMIN_PERMISSIONS = {
    'manage_users': True,
    'manage_breweries': True,
    'view_reports': True,
}

_PUNCTUATION = re.compile(r'[^\w\s]')
_WHITESPACE = re.compile(r'\s+')


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in every DateTime column"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_uuid(value: Any) -> Optional[uuid.UUID]:
    if isinstance(value, uuid.UUID):
        return value
    if not value:
        return None
    try:
        return uuid.UUID(str(value))
    except (ValueError, AttributeError, TypeError):
        return None


def normalize_beer_name(name: Optional[str]) -> str:
    if not name:
        return ''
    normalized = _PUNCTUATION.sub('', name.lower().strip())
    return _WHITESPACE.sub(' ', normalized).strip()


def extract_search_keywords(normalized_name: str) -> List[str]:
    keywords = []
    for word in normalized_name.split(' '):
        if len(word) > 2 and word not in keywords:
            keywords.append(word)
    return keywords


class Administrator(db.Model):
    __tablename__ = 'administrators'

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(100), nullable=False)
    permissions = Column(JSON, default=lambda: dict(DEFAULT_ADMIN_PERMISSIONS))
    created_at = Column(DateTime, default=utcnow)

    user = relationship('User', back_populates='administrator', uselist=False)


class Brewery(db.Model):
    __tablename__ = 'breweries'

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(200), nullable=False, index=True)
    description = Column(Text)
    fiscal_code = Column(String(50))
    rea_code = Column(String(50))
    excise_code = Column(String(50))
    fund = Column(String(50))
    legal_address = Column(String(255))
    production_address = Column(String(255))
    phone_number = Column(String(50))
    email = Column(String(255))
    website = Column(String(255))
    logo = Column(String(500))
    social_media = Column(JSON, default=dict)
    founding_year = Column(Integer)

    # Provenance of automatically extracted records
    ai_extracted = Column(Boolean, default=False)
    ai_confidence = Column(Float)
    data_source = Column(String(20), default='manual')
    needs_validation = Column(Boolean, default=False)
    validation_reason = Column(String(255))
    validated_at = Column(DateTime)
    created_by = Column(String(50), default='manual')

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    beers = relationship('Beer', back_populates='brewery', cascade='all, delete-orphan')
    owner = relationship('User', back_populates='brewery', uselist=False)

    REQUIRED_PROFILE_FIELDS = ('description', 'legal_address', 'phone_number', 'email', 'website')

    @property
    def missing_fields(self) -> List[str]:
        return [field for field in self.REQUIRED_PROFILE_FIELDS if not getattr(self, field)]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': str(self.id),
            'name': self.name,
            'description': self.description,
            'legal_address': self.legal_address,
            'phone_number': self.phone_number,
            'email': self.email,
            'website': self.website,
            'logo': self.logo,
            'social_media': self.social_media or {},
            'ai_extracted': bool(self.ai_extracted),
            'ai_confidence': self.ai_confidence,
            'needs_validation': bool(self.needs_validation),
        }


class User(db.Model):
    __tablename__ = 'users'

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    username = Column(String(30), unique=True, nullable=False, index=True)
    email = Column(String(255))
    password_hash = Column(String(255), nullable=False)
    password_salt = Column(String(64), nullable=False)
    roles = Column(JSON, nullable=False, default=lambda: [ROLE_CUSTOMER])
    default_role = Column(String(20))  # None for administrators

    # Customer details
    customer_name = Column(String(100))
    customer_surname = Column(String(100))
    customer_fiscal_code = Column(Text)  # Fernet token
    customer_billing_address = Column(String(255))
    customer_shipping_address = Column(String(255))
    customer_phone_number = Column(String(50))

    brewery_id = Column(Uuid, ForeignKey('breweries.id'), unique=True)
    administrator_id = Column(Uuid, ForeignKey('administrators.id'))

    is_banned = Column(Boolean, default=False)
    ban_reason = Column(String(255))
    banned_at = Column(DateTime)

    reviews_count = Column(Integer, default=0)
    last_activity = Column(DateTime)
    last_login = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    brewery = relationship('Brewery', back_populates='owner')
    administrator = relationship('Administrator', back_populates='user')
    reviews = relationship('Review', back_populates='user')

    def has_role(self, role: str) -> bool:
        return role in (self.roles or [])

    @property
    def is_administrator(self) -> bool:
        return self.has_role(ROLE_ADMINISTRATOR)

    @property
    def main_role(self) -> str:
        for role in ROLE_PRIORITY:
            if self.has_role(role):
                return role
        return ROLE_CUSTOMER

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': str(self.id),
            'username': self.username,
            'email': self.email,
            'roles': list(self.roles or []),
            'default_role': self.default_role,
            'brewery_id': str(self.brewery_id) if self.brewery_id else None,
            'is_banned': bool(self.is_banned),
            'reviews_count': self.reviews_count or 0,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class Beer(db.Model):
    __tablename__ = 'beers'

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(200), nullable=False)
    brewery_id = Column(Uuid, ForeignKey('breweries.id'), nullable=False, index=True)
    alcohol_content = Column(Float)
    beer_type = Column(String(100))
    beer_sub_style = Column(String(100))
    ibu = Column(Integer)
    volume = Column(String(50))
    description = Column(Text)
    ingredients = Column(Text)
    tasting_notes = Column(Text)

    ai_extracted = Column(Boolean, default=False)
    ai_confidence = Column(Float)
    data_source = Column(String(20), default='manual')
    last_ai_update = Column(DateTime)

    normalized_name = Column(String(200), index=True)
    search_keywords = Column(JSON, default=list)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    brewery = relationship('Brewery', back_populates='beers')
    ratings = relationship('ReviewRating', back_populates='beer')

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': str(self.id),
            'name': self.name,
            'brewery_id': str(self.brewery_id),
            'brewery_name': self.brewery.name if self.brewery else None,
            'alcohol_content': self.alcohol_content,
            'beer_type': self.beer_type,
            'ibu': self.ibu,
            'volume': self.volume,
            'data_source': self.data_source,
        }


@event.listens_for(Beer, 'before_insert')
@event.listens_for(Beer, 'before_update')
def _refresh_beer_search_fields(mapper, connection, target):
    target.normalized_name = normalize_beer_name(target.name)
    target.search_keywords = extract_search_keywords(target.normalized_name)


class Review(db.Model):
    __tablename__ = 'reviews'

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey('users.id'), index=True)  # null for guests
    session_id = Column(String(100))
    image_url = Column(String(500))
    status = Column(String(20), default='pending')
    is_hidden = Column(Boolean, default=False)
    moderation_reason = Column(String(255))
    moderated_at = Column(DateTime)

    # Background validation
    processing_status = Column(String(30))
    processing_error = Column(Text)
    processing_attempts = Column(Integer, default=0)
    processed_at = Column(DateTime)
    pending_bottles = Column(JSON)

    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship('User', back_populates='reviews')
    ratings = relationship('ReviewRating', back_populates='review', cascade='all, delete-orphan')

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': str(self.id),
            'user': self.user.username if self.user else None,
            'status': self.status,
            'is_hidden': bool(self.is_hidden),
            'processing_status': self.processing_status,
            'image_url': self.image_url,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'ratings': [rating.to_dict() for rating in self.ratings],
        }


class ReviewRating(db.Model):
    __tablename__ = 'review_ratings'

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    review_id = Column(Uuid, ForeignKey('reviews.id'), nullable=False, index=True)
    beer_id = Column(Uuid, ForeignKey('beers.id'), index=True)
    brewery_id = Column(Uuid, ForeignKey('breweries.id'))
    bottle_label = Column(String(200))
    rating = Column(Integer, nullable=False)
    notes = Column(Text, default='')
    detailed_ratings = Column(JSON)
    ai_data = Column(JSON)
    created_at = Column(DateTime, default=utcnow)

    review = relationship('Review', back_populates='ratings')
    beer = relationship('Beer', back_populates='ratings')
    brewery = relationship('Brewery')

    def to_dict(self) -> Dict[str, Any]:
        return {
            'beer_id': str(self.beer_id) if self.beer_id else None,
            'beer_name': self.bottle_label,
            'brewery_id': str(self.brewery_id) if self.brewery_id else None,
            'rating': self.rating,
            'notes': self.notes,
            'detailed_ratings': self.detailed_ratings,
        }
