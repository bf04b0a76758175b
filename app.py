# app.py
"""
Flask application factory for the beer review community

This application factory wires together:
- Class-based configuration with environment overrides
- SQLAlchemy models and Flask-Migrate migrations
- Redis-backed cache, audit trail and rate-limit storage
- Celery workers for background review validation
- CSRF protection, CORS, rate limiting and security headers
- JSON or page error handling depending on the caller
- Health endpoints for monitoring
"""

import os
import logging
import logging.handlers
from datetime import datetime
from typing import Dict
from pathlib import Path

# Flask and extensions
import click
from flask import (
    Flask, request, jsonify, g, session, flash, redirect, render_template, url_for, has_app_context
)
from flask_migrate import Migrate
from flask_cors import CORS
from flask_wtf.csrf import CSRFProtect, CSRFError
from werkzeug.middleware.proxy_fix import ProxyFix
from werkzeug.exceptions import HTTPException

# Database and caching
import redis
from sqlalchemy import event, text
from sqlalchemy.engine import Engine

# Celery and async processing
from celery import Celery
from kombu import Queue

from config import CONFIG_BY_NAME
from core.database_models import db
from core.errors import AppError
from core.resilience import AIServiceError
from core.gemini_client import error_status
from core.security_manager import init_security_manager, get_security_manager
from middleware.rate_limits import limiter, retry_after_seconds
from middleware.security import (
    security_headers, is_api_request, load_current_user, enforce_session_timeout,
    check_disclaimer, inject_user_context
)
from services.cache import init_cache
from services.moderation import hash_word
from services.session_cleanup import cleanup_unresolved_session_data
from tasks.review_worker import celery_app

ENV_OVERRIDES = {
    'SECRET_KEY': str,
    'DATABASE_URL': str,
    'REDIS_HOST': str,
    'REDIS_PORT': int,
    'CELERY_BROKER_URL': str,
    'GEMINI_API_KEY': str,
    'GOOGLE_SEARCH_API_KEY': str,
    'GOOGLE_SEARCH_CX': str,
    'ENCRYPTION_KEY': str,
}


def setup_logging(app: Flask) -> None:
    """
    Configure application logging

    - systemd journal when available, syslog otherwise
    - plain stream output under tests
    - rotating file with full detail in development
    """
    app.logger.handlers.clear()

    journal_formatter = logging.Formatter(
        fmt='%(name)s[%(process)d]: %(levelname)s %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    detailed_formatter = logging.Formatter(
        fmt='%(asctime)s %(name)-20s %(levelname)-8s %(funcName)-15s:%(lineno)-4d %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    log_level = getattr(logging, app.config.get('LOG_LEVEL', 'INFO').upper(), logging.INFO)
    app.logger.setLevel(log_level)

    if app.config.get('TESTING'):
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(detailed_formatter)
        stream_handler.setLevel(log_level)
        app.logger.addHandler(stream_handler)
    else:
        # Systemd journal handler (primary for production)
        try:
            import systemd.journal
            journal_handler = systemd.journal.JournalHandler()
            journal_handler.setFormatter(journal_formatter)
            journal_handler.setLevel(log_level)
            app.logger.addHandler(journal_handler)
            app.logger.info("Systemd journal logging enabled")
        except ImportError:
            syslog_handler = logging.handlers.SysLogHandler(
                address=app.config.get('SYSLOG_ADDRESS', '/dev/log') if os.path.exists('/dev/log')
                else ('localhost', 514)
            )
            syslog_handler.setFormatter(journal_formatter)
            syslog_handler.setLevel(log_level)
            app.logger.addHandler(syslog_handler)
            app.logger.warning("systemd.journal not available, falling back to syslog")

    # File handler for detailed debugging (development only)
    if app.config.get('FLASK_ENV') == 'development':
        log_dir = Path(app.config.get('LOG_DIR', 'logs'))
        log_dir.mkdir(exist_ok=True, parents=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_dir / 'beer-review.log',
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5
        )
        file_handler.setFormatter(detailed_formatter)
        file_handler.setLevel(logging.DEBUG)
        app.logger.addHandler(file_handler)

    # Module loggers share the application handlers
    for package in ('api', 'core', 'middleware', 'routes', 'services', 'tasks'):
        package_logger = logging.getLogger(package)
        package_logger.handlers = list(app.logger.handlers)
        package_logger.setLevel(log_level)
        package_logger.propagate = False

    # Suppress verbose third-party logs in production
    if not app.debug:
        logging.getLogger('werkzeug').setLevel(logging.WARNING)
        logging.getLogger('celery').setLevel(logging.WARNING)
        logging.getLogger('urllib3').setLevel(logging.WARNING)


def create_redis_clients(app: Flask) -> Dict[str, redis.Redis]:
    """
    Create Redis clients for the cache and the security audit trail

    Returns an empty mapping when Redis is disabled or unreachable and not
    required, so every consumer falls back to its no-Redis behaviour.
    """
    if not app.config.get('REDIS_ENABLED', True):
        app.logger.info("Redis disabled by configuration")
        return {}

    redis_config = {
        'host': app.config.get('REDIS_HOST', 'localhost'),
        'port': app.config.get('REDIS_PORT', 6379),
        'decode_responses': True,
        'socket_connect_timeout': 5,
        'socket_timeout': 5,
        'retry_on_timeout': True,
        'health_check_interval': 30
    }

    clients = {
        'cache': redis.Redis(db=1, **redis_config),
        'audit': redis.Redis(db=4, **redis_config)
    }

    for name, client in list(clients.items()):
        try:
            client.ping()
            app.logger.info(f"Redis {name} client connected successfully")
        except redis.ConnectionError as e:
            app.logger.error(f"Redis {name} connection failed: {e}")
            if app.config.get('REDIS_REQUIRED', False):
                raise
            del clients[name]

    return clients


def configure_database(app: Flask) -> None:
    """
    Configure SQLAlchemy with slow query monitoring
    """
    database_url = app.config.get('DATABASE_URL', 'sqlite:///beer_review.db')

    app.config['SQLALCHEMY_DATABASE_URI'] = database_url
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    engine_options = dict(app.config.get('SQLALCHEMY_ENGINE_OPTIONS', {}))
    if database_url.startswith('sqlite'):
        # Pool sizing options are not accepted by the SQLite pools
        engine_options.pop('pool_size', None)
        engine_options.pop('max_overflow', None)
    app.config['SQLALCHEMY_ENGINE_OPTIONS'] = engine_options

    db.init_app(app)

    threshold = app.config.get('SLOW_QUERY_THRESHOLD', 1.0)

    @event.listens_for(Engine, "before_cursor_execute")
    def receive_before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        context._query_start_time = datetime.now()

    @event.listens_for(Engine, "after_cursor_execute")
    def receive_after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        """Log slow queries for performance monitoring"""
        start = getattr(context, '_query_start_time', None)
        if start is None:
            return
        total = (datetime.now() - start).total_seconds()
        if total > threshold:
            app.logger.warning(f"Slow query ({total:.2f}s): {statement[:100]}...")

    app.logger.info(f"Database configured: {database_url.split('@')[-1] if '@' in database_url else database_url}")


def configure_celery(app: Flask) -> Celery:
    """
    Configure Celery with the Redis broker and bind tasks to the app context
    """
    redis_url = f"redis://{app.config.get('REDIS_HOST', 'localhost')}:{app.config.get('REDIS_PORT', 6379)}/2"
    celery_app.conf.update({
        'broker_url': app.config.get('CELERY_BROKER_URL') or redis_url,
        'result_backend': app.config.get('CELERY_RESULT_BACKEND') or redis_url,
        'task_always_eager': app.config.get('CELERY_TASK_ALWAYS_EAGER', False),
        'task_default_queue': 'default',
        'task_queues': (
            Queue('review_validation', routing_key='review_validation'),
            Queue('default', routing_key='default'),
        ),
    })

    class ContextTask(celery_app.Task):
        """Make celery tasks work with Flask app context"""
        def __call__(self, *args, **kwargs):
            if has_app_context():
                return self.run(*args, **kwargs)
            with app.app_context():
                return self.run(*args, **kwargs)

    celery_app.Task = ContextTask

    app.logger.info("Celery configured")
    return celery_app


def configure_security(app: Flask, redis_clients: Dict[str, redis.Redis]) -> tuple:
    """
    Configure security features

    Returns:
        Tuple of (SecurityManager, CSRFProtect)
    """
    security_manager = init_security_manager(app, redis_clients.get('audit'))

    csrf = CSRFProtect()
    csrf.init_app(app)

    limiter.init_app(app)

    CORS(app,
         resources={r"/api/*": {"origins": app.config.get('CORS_ORIGINS', [])},
                    r"/review/api/*": {"origins": app.config.get('CORS_ORIGINS', [])}},
         supports_credentials=True,
         allow_headers=['Content-Type', 'X-CSRFToken', 'X-Requested-With'])

    app.logger.info("Security features configured")
    return security_manager, csrf


def register_blueprints(app: Flask) -> None:
    """
    Register all application blueprints with their URL prefixes
    """
    from api.reviews import reviews_api_bp
    from api.system import system_api_bp
    from routes.administrator import administrator_bp
    from routes.auth import auth_bp
    from routes.brewery import brewery_bp
    from routes.main import main_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(administrator_bp, url_prefix='/administrator')
    app.register_blueprint(brewery_bp, url_prefix='/brewery')
    app.register_blueprint(reviews_api_bp, url_prefix='/review/api')
    app.register_blueprint(system_api_bp, url_prefix='/api')

    app.logger.info("Application blueprints registered")


def _page_redirect(message: str, category: str = 'danger'):
    flash(message, category)
    target = request.referrer
    if not target or target == request.url:
        target = url_for('main.index')
    return redirect(target)


def configure_error_handlers(app: Flask) -> None:
    """
    Error handling: API callers get JSON, page requests get a flash message
    and a redirect, or the error page for 404 and 500
    """
    @app.errorhandler(AppError)
    def handle_app_error(error):
        app.logger.warning(f"{error.__class__.__name__} on {request.method} {request.path}: {error.details}")
        if is_api_request():
            return jsonify(error.to_dict()), error.status_code
        if error.status_code == 404:
            return render_template('errors/error.html', code=404, message=error.message), 404
        return _page_redirect(error.message)

    @app.errorhandler(AIServiceError)
    def handle_ai_error(error):
        status = error_status(error)
        app.logger.error(f"AI service failure ({error.error_type}): {error}")
        message = 'The image analysis service is temporarily unavailable. Please try again later.'
        if is_api_request():
            return jsonify({'success': False, 'error': message, 'errorType': error.error_type}), status
        return _page_redirect(message)

    @app.errorhandler(CSRFError)
    def csrf_error(error):
        app.logger.warning(f"CSRF validation failed from {request.remote_addr}: {error.description}")
        if is_api_request():
            return jsonify({'success': False, 'error': 'Invalid or expired form token'}), 400
        return _page_redirect('Your form has expired. Please try again.')

    @app.errorhandler(400)
    def bad_request(error):
        app.logger.warning(f"Bad request from {request.remote_addr}: {error}")
        if is_api_request():
            return jsonify({'success': False, 'error': 'Invalid request format or parameters'}), 400
        return _page_redirect('Invalid request')

    @app.errorhandler(401)
    def unauthorized(error):
        if is_api_request():
            return jsonify({'success': False, 'error': 'Authentication required', 'requiresLogin': True}), 401
        flash('Please log in to continue', 'warning')
        return redirect(url_for('auth.login'))

    @app.errorhandler(403)
    def forbidden(error):
        app.logger.warning(f"Forbidden access attempt from {request.remote_addr}")
        if is_api_request():
            return jsonify({'success': False, 'error': 'Insufficient permissions'}), 403
        return _page_redirect('You do not have permission to do that')

    @app.errorhandler(404)
    def not_found(error):
        if is_api_request():
            return jsonify({'success': False, 'error': 'The requested resource was not found'}), 404
        return render_template('errors/error.html', code=404, message='Page not found'), 404

    @app.errorhandler(413)
    def too_large(error):
        max_mb = app.config.get('MAX_IMAGE_SIZE', 10 * 1024 * 1024) // (1024 * 1024)
        message = f'The upload is too large. Maximum size: {max_mb}MB'
        if is_api_request():
            return jsonify({'success': False, 'error': message}), 413
        return _page_redirect(message)

    @app.errorhandler(429)
    def rate_limit_exceeded(error):
        retry_after = retry_after_seconds(error)
        app.logger.warning(f"Rate limit exceeded for {request.remote_addr} on {request.path}")
        get_security_manager().log_security_event('rate_limit_exceeded', {
            'endpoint': request.endpoint,
            'limit': str(getattr(error, 'description', ''))
        })
        if is_api_request():
            return jsonify({
                'success': False,
                'error': 'Too many requests. Please try again later.',
                'message': str(getattr(error, 'description', '')),
                'retry_after': retry_after
            }), 429
        flash('Too many requests. Please wait before trying again.', 'warning')
        return redirect(url_for('main.rate_limit_exceeded'))

    @app.errorhandler(500)
    def internal_error(error):
        app.logger.error(f"Internal server error: {error}", exc_info=True)
        if is_api_request():
            return jsonify({'success': False, 'error': 'An unexpected error occurred'}), 500
        return render_template('errors/error.html', code=500, message='An unexpected error occurred'), 500

    @app.errorhandler(Exception)
    def handle_exception(e):
        """Handle unexpected exceptions"""
        if isinstance(e, HTTPException):
            return e

        db.session.rollback()
        app.logger.error(f"Unhandled exception: {e}", exc_info=True)
        if is_api_request():
            return jsonify({'success': False, 'error': 'An unexpected error occurred'}), 500
        return render_template('errors/error.html', code=500, message='An unexpected error occurred'), 500


def configure_health_checks(app: Flask, redis_clients: Dict[str, redis.Redis]) -> None:
    """
    Configure health check endpoints for monitoring and load balancing
    """
    @app.route('/health')
    @limiter.exempt
    def health_check():
        """Basic health check endpoint"""
        return jsonify({
            'status': 'healthy',
            'timestamp': datetime.utcnow().isoformat(),
            'version': app.config.get('VERSION', '1.0.0')
        })

    @app.route('/health/detailed')
    @limiter.exempt
    def detailed_health_check():
        """Detailed health check with component status"""
        health_status = {
            'status': 'healthy',
            'timestamp': datetime.utcnow().isoformat(),
            'components': {}
        }

        try:
            db.session.execute(text('SELECT 1'))
            health_status['components']['database'] = 'healthy'
        except Exception as e:
            db.session.rollback()
            health_status['components']['database'] = f'unhealthy: {str(e)}'
            health_status['status'] = 'unhealthy'

        for name, client in redis_clients.items():
            try:
                client.ping()
                health_status['components'][f'redis_{name}'] = 'healthy'
            except redis.RedisError as e:
                health_status['components'][f'redis_{name}'] = f'unhealthy: {str(e)}'
                health_status['status'] = 'degraded'
        if not redis_clients:
            health_status['components']['redis'] = 'disabled'

        health_status['components']['ai_service'] = (
            'configured' if app.config.get('GEMINI_API_KEY') else 'not configured'
        )

        status_code = 200 if health_status['status'] != 'unhealthy' else 503
        return jsonify(health_status), status_code


def configure_request_middleware(app: Flask) -> None:
    """
    Configure request/response middleware for sessions, security and monitoring
    """
    @app.before_request
    def before_request():
        g.start_time = datetime.utcnow()
        if request.endpoint == 'static':
            return None

        enforce_session_timeout()
        load_current_user()

        if cleanup_unresolved_session_data(
                session,
                disambiguation_ttl=app.config['AI_DISAMBIGUATION_TTL'],
                temp_data_ttl=app.config['AI_TEMP_DATA_TTL']):
            app.logger.debug("Expired AI analysis removed from session")

        check_disclaimer()
        return None

    @app.after_request
    def after_request(response):
        response = security_headers(response)

        if hasattr(g, 'start_time'):
            duration = (datetime.utcnow() - g.start_time).total_seconds() * 1000
            if duration > app.config.get('SLOW_REQUEST_THRESHOLD', 1000):
                app.logger.warning(f"Slow request ({duration:.0f}ms): {request.method} {request.path}")

        return response

    app.context_processor(inject_user_context)


def register_cli(app: Flask) -> None:
    @app.cli.command('moderation-hash')
    @click.argument('word')
    def moderation_hash(word):
        """Print the digest to add a word to the moderation list"""
        click.echo(hash_word(word))


def create_app(config_name: str = None) -> Flask:
    """
    Flask application factory

    Args:
        config_name: Configuration environment ('development', 'testing', 'production')

    Returns:
        Configured Flask application instance
    """
    app = Flask(__name__,
                instance_relative_config=True,
                static_folder='static',
                template_folder='templates')

    config_name = config_name or os.environ.get('FLASK_ENV', 'production')
    app.config.from_object(CONFIG_BY_NAME.get(config_name, CONFIG_BY_NAME['production']))
    app.config['FLASK_ENV'] = config_name

    # Environment variables win over class defaults, but only when set
    for key, cast in ENV_OVERRIDES.items():
        value = os.environ.get(key)
        if value:
            app.config[key] = cast(value)
    if os.environ.get('APP_VERSION'):
        app.config['VERSION'] = os.environ['APP_VERSION']

    if config_name == 'production':
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)

    setup_logging(app)
    app.logger.info(f"Starting beer review application in {config_name} mode")

    redis_clients = create_redis_clients(app)
    app.redis_clients = redis_clients

    configure_database(app)
    Migrate(app, db)

    init_cache(redis_clients.get('cache') if app.config.get('CACHE_ENABLED', True) else None,
               app.config.get('CACHE_DEFAULT_TTL', 600))

    app.celery = configure_celery(app)

    security_manager, csrf = configure_security(app, redis_clients)
    app.security_manager = security_manager
    app.csrf = csrf

    register_blueprints(app)
    configure_error_handlers(app)
    configure_health_checks(app, redis_clients)
    configure_request_middleware(app)
    register_cli(app)

    # Create database tables (in production, use migrations instead)
    if config_name in ('development', 'testing'):
        with app.app_context():
            db.create_all()
            app.logger.info(f"Database tables created ({config_name} mode)")

    app.logger.info("Flask application factory completed successfully")
    return app
