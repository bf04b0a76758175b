# wsgi.py
"""
WSGI entry point

    gunicorn wsgi:application
    celery -A wsgi.celery worker -Q review_validation,default
"""

from app import create_app

application = create_app()
celery = application.celery
