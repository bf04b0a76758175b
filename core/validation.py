# core/validation.py
"""
Request payload schemas and form validation
"""

import re
from typing import Any, Dict, List, Optional

from email_validator import validate_email, EmailNotValidError
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from core.database_models import RATING_CATEGORIES
from core.errors import ValidationError

USERNAME_PATTERN = re.compile(r'^[A-Za-z0-9]{3,30}$')
MIN_PASSWORD_LENGTH = 8


class DetailedRating(BaseModel):
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    notes: Optional[str] = Field(default=None, max_length=500)


class ReviewEntry(BaseModel):
    """One bottle review as sent by the review form"""
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    beer_name: str = Field(alias='beerName', min_length=1, max_length=200)
    brewery_name: Optional[str] = Field(default=None, alias='breweryName', max_length=200)
    beer_id: Optional[str] = Field(default=None, alias='beerId')
    brewery_id: Optional[str] = Field(default=None, alias='breweryId')
    bottle_index: Optional[int] = Field(default=None, alias='bottleIndex')
    rating: int = Field(ge=1, le=5)
    notes: str = Field(default='', max_length=1000)
    detailed_ratings: Optional[Dict[str, DetailedRating]] = Field(default=None, alias='detailedRatings')
    thumbnail: Optional[str] = None
    ai_data: Optional[Dict[str, Any]] = Field(default=None, alias='aiData')

    @field_validator('notes', mode='before')
    @classmethod
    def _none_notes(cls, value):
        return '' if value is None else value

    @field_validator('detailed_ratings')
    @classmethod
    def _known_categories(cls, value):
        if value:
            unknown = set(value) - set(RATING_CATEGORIES)
            if unknown:
                raise ValueError(f"unknown rating categories: {', '.join(sorted(unknown))}")
        return value


class CreateReviewsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    reviews: List[ReviewEntry] = Field(min_length=1, max_length=10)
    ai_analysis_data: Optional[Dict[str, Any]] = Field(default=None, alias='aiAnalysisData')


def format_validation_errors(error: PydanticValidationError) -> List[Dict[str, str]]:
    return [
        {'field': '.'.join(str(part) for part in item['loc']), 'message': item['msg']}
        for item in error.errors()
    ]


def parse_reviews_request(payload: Optional[Dict[str, Any]]) -> CreateReviewsRequest:
    """
    Raises:
        ValidationError: with the per-field problems in the payload
    """
    try:
        return CreateReviewsRequest.model_validate(payload or {})
    except PydanticValidationError as e:
        raise ValidationError(
            'Invalid review data',
            details=str(e),
            payload={'details': format_validation_errors(e)},
        )


def validate_registration(username: Optional[str], password: Optional[str],
                          email: Optional[str] = None) -> Dict[str, Optional[str]]:
    """Check the sign-up form; returns the cleaned values"""
    username = (username or '').strip()
    if not USERNAME_PATTERN.match(username):
        raise ValidationError('Username must be 3-30 letters or digits')
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters')

    normalized_email = None
    if email and email.strip():
        try:
            normalized_email = validate_email(email.strip(), check_deliverability=False).normalized
        except EmailNotValidError as e:
            raise ValidationError(f'Invalid e-mail address: {e}')

    return {'username': username, 'password': password, 'email': normalized_email}
