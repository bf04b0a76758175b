# config/security.py
"""
Security Configuration for the beer review application
"""

import os
import secrets
from datetime import timedelta


class SecurityConfig:
    """Security configuration settings"""

    # Encryption settings
    ENCRYPTION_KEY = os.environ.get('ENCRYPTION_KEY') or secrets.token_urlsafe(32)
    ENCRYPTION_SALT = os.environ.get('ENCRYPTION_SALT', 'beer_review_salt').encode()

    # Session settings
    SECRET_KEY = os.environ.get('SECRET_KEY') or secrets.token_urlsafe(32)
    SESSION_COOKIE_SECURE = True
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'
    PERMANENT_SESSION_LIFETIME = timedelta(hours=8)
    SESSION_IDLE_TIMEOUT = timedelta(hours=8)

    # Rate limiting (Flask-Limiter)
    RATELIMIT_ENABLED = True
    RATELIMIT_STORAGE_URI = 'redis://localhost:6379/3'
    RATELIMIT_STRATEGY = 'fixed-window'
    RATELIMIT_HEADERS_ENABLED = True
    RATELIMIT_DEFAULT = '100 per 15 minutes'
    RATELIMIT_AI = '20 per hour'
    RATELIMIT_UPLOAD = '10 per 10 minutes'
    RATELIMIT_LOGIN = '5 per 15 minutes'
    RATELIMIT_REGISTER = '3 per hour'
    RATELIMIT_REVIEWS = '50 per hour'

    # Per-session AI analysis quota
    AI_QUOTA_GUEST = 10
    AI_QUOTA_USER = 30
    AI_QUOTA_ENABLED = True

    # CSRF protection
    WTF_CSRF_ENABLED = True
    WTF_CSRF_TIME_LIMIT = 3600  # 1 hour

    # Content Security Policy
    CSP_POLICY = {
        'default-src': "'self'",
        'script-src': "'self' 'unsafe-inline' https://cdn.plot.ly",
        'style-src': "'self' 'unsafe-inline'",
        'img-src': "'self' data: blob: https:",
        'connect-src': "'self'",
        'font-src': "'self'",
        'object-src': "'none'",
        'base-uri': "'self'",
        'form-action': "'self'"
    }

    # Security headers
    SECURITY_HEADERS = {
        'X-Content-Type-Options': 'nosniff',
        'X-Frame-Options': 'DENY',
        'X-XSS-Protection': '1; mode=block',
        'Strict-Transport-Security': 'max-age=31536000; includeSubDomains; preload',
        'Referrer-Policy': 'strict-origin-when-cross-origin',
        'Permissions-Policy': 'camera=(self), microphone=(), geolocation=()'
    }

    # Audit settings
    AUDIT_LOG_RETENTION_DAYS = 90

    # Image upload security
    MAX_CONTENT_LENGTH = 12 * 1024 * 1024  # multipart overhead on top of the image limit
    MAX_IMAGE_SIZE = 10 * 1024 * 1024  # 10MB

    # Database security
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_pre_ping': True,
        'pool_recycle': 300,
    }
