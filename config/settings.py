# config/settings.py
"""
Environment configurations selected by create_app
"""

import os
from datetime import timedelta

from config.security import SecurityConfig


class BaseConfig(SecurityConfig):
    """Settings shared by every environment"""

    FLASK_ENV = 'production'
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    LOG_DIR = os.environ.get('LOG_DIR', '/var/log/beer-review')
    VERSION = os.environ.get('APP_VERSION', '1.0.0')

    DATABASE_URL = os.environ.get('DATABASE_URL', 'sqlite:///beer_review.db')
    SLOW_QUERY_THRESHOLD = 1.0
    PASSWORD_HASH_ITERATIONS = 200000
    SLOW_REQUEST_THRESHOLD = 1000

    REDIS_ENABLED = True
    REDIS_REQUIRED = False
    REDIS_HOST = os.environ.get('REDIS_HOST', 'localhost')
    REDIS_PORT = int(os.environ.get('REDIS_PORT', 6379))

    CELERY_BROKER_URL = None
    CELERY_RESULT_BACKEND = None
    CELERY_TASK_ALWAYS_EAGER = False

    CACHE_ENABLED = True
    CACHE_DEFAULT_TTL = 600

    CORS_ORIGINS = ['http://localhost:3000']

    # External services
    GEMINI_API_KEY = os.environ.get('GEMINI_API_KEY')
    GEMINI_MODEL = os.environ.get('GEMINI_MODEL', 'gemini-1.5-flash')
    GOOGLE_SEARCH_API_KEY = os.environ.get('GOOGLE_SEARCH_API_KEY')
    GOOGLE_SEARCH_CX = os.environ.get('GOOGLE_SEARCH_CX')
    WEB_SEARCH_ENABLED = True
    WEB_REQUEST_TIMEOUT = 10

    # Session-held AI analysis lifetime
    AI_DISAMBIGUATION_TTL = timedelta(minutes=10)
    AI_TEMP_DATA_TTL = timedelta(minutes=30)


class DevelopmentConfig(BaseConfig):
    FLASK_ENV = 'development'
    DEBUG = True
    LOG_LEVEL = 'DEBUG'
    SESSION_COOKIE_SECURE = False
    RATELIMIT_ENABLED = False
    AI_QUOTA_ENABLED = False


class TestingConfig(BaseConfig):
    FLASK_ENV = 'testing'
    TESTING = True
    DATABASE_URL = 'sqlite://'
    SQLALCHEMY_ENGINE_OPTIONS = {}
    SESSION_COOKIE_SECURE = False
    WTF_CSRF_ENABLED = False
    REDIS_ENABLED = False
    CACHE_ENABLED = False
    RATELIMIT_STORAGE_URI = 'memory://'
    CELERY_BROKER_URL = 'memory://'
    CELERY_RESULT_BACKEND = 'cache+memory://'
    CELERY_TASK_ALWAYS_EAGER = True
    WEB_SEARCH_ENABLED = False
    ENCRYPTION_KEY = 'testing-encryption-key'
    SECRET_KEY = 'testing-secret-key'
    PASSWORD_HASH_ITERATIONS = 1000


class ProductionConfig(BaseConfig):
    FLASK_ENV = 'production'
    REDIS_REQUIRED = True

    # journald / syslog socket
    SYSLOG_ADDRESS = '/dev/log'
