# core/errors.py
"""
Application exception hierarchy.

Every error carries an HTTP status and a message that is safe to show to the
user; ``details`` holds the technical description for the logs.
"""

from typing import Any, Dict, Optional


class AppError(Exception):
    """Base exception for application operations"""

    status_code = 500
    default_message = 'An unexpected error occurred'

    def __init__(self, message: Optional[str] = None, details: Optional[str] = None,
                 status_code: Optional[int] = None, payload: Optional[Dict[str, Any]] = None):
        self.message = message or self.default_message
        super().__init__(self.message)
        self.details = details or self.message
        if status_code is not None:
            self.status_code = status_code
        self.payload = payload or {}

    def to_dict(self) -> Dict[str, Any]:
        data = {'success': False, 'error': self.message}
        data.update(self.payload)
        return data


class ValidationError(AppError):
    status_code = 400
    default_message = 'Invalid request data'


class AuthenticationError(AppError):
    status_code = 401
    default_message = 'Authentication required'


class ForbiddenError(AppError):
    status_code = 403
    default_message = 'Insufficient permissions'


class NotFoundError(AppError):
    status_code = 404
    default_message = 'The requested resource was not found'


class ConflictError(AppError):
    status_code = 409
    default_message = 'The resource already exists'


class ImageRejectedError(AppError):
    """Upload refused because of size or format"""
    status_code = 400
    default_message = 'Unsupported image'


class QuotaExceededError(AppError):
    status_code = 429
    default_message = 'AI analysis limit reached for this session'


class InappropriateContentError(AppError):
    status_code = 400
    default_message = 'Inappropriate content detected'
