# tasks/review_worker.py
"""
Celery worker for background review validation.

Run with ``celery -A wsgi.celery worker``; ``create_app`` binds the tasks to
the Flask application context.
"""

from typing import Any, Dict

from celery import Celery
from celery.signals import task_prerun, task_postrun, task_failure
from celery.utils.log import get_task_logger

from core.database_models import db, Review, parse_uuid
from core.errors import NotFoundError
from services import review_service

logger = get_task_logger(__name__)

celery_app = Celery('beer_review')
celery_app.conf.update({
    # Serialization
    'task_serializer': 'json',
    'result_serializer': 'json',
    'accept_content': ['json'],

    # Timezone
    'timezone': 'UTC',
    'enable_utc': True,

    # Task Execution
    'task_acks_late': True,
    'task_reject_on_worker_lost': True,
    'worker_prefetch_multiplier': 1,

    # Result settings
    'result_expires': 3600,

    # Routing
    'task_routes': {
        'tasks.review_worker.process_review': {'queue': 'review_validation'},
    },

    # Monitoring
    'worker_send_task_events': True,
    'task_send_sent_event': True,
    'worker_hijack_root_logger': False,
    'worker_log_color': False,
})


def _mark_failed(review_id: str, error: Exception) -> None:
    db.session.rollback()
    review_uuid = parse_uuid(review_id)
    review = db.session.get(Review, review_uuid) if review_uuid else None
    if review is None:
        return
    review.processing_status = 'failed'
    review.processing_error = str(error)[:1000]
    db.session.commit()


@celery_app.task(bind=True, max_retries=3, default_retry_delay=30)
def process_review(self, review_id: str) -> Dict[str, Any]:
    """Resolve the bottles of a queued review into beers and ratings"""
    try:
        return review_service.process_pending_review(review_id)
    except NotFoundError:
        logger.error(f"Review {review_id} disappeared before processing")
        return {'review_id': review_id, 'status': 'missing', 'created': 0}
    except Exception as exc:
        logger.warning(f"Processing review {review_id} failed: {exc}")
        _mark_failed(review_id, exc)
        retry_delay = min(300, 30 * (2 ** self.request.retries))
        raise self.retry(exc=exc, countdown=retry_delay)


# Celery signal handlers for monitoring
@task_prerun.connect
def task_prerun_handler(sender=None, task_id=None, task=None, args=None, kwargs=None, **cwds):
    logger.info(f"Task {task.name} [{task_id}] starting")


@task_postrun.connect
def task_postrun_handler(sender=None, task_id=None, task=None, args=None, kwargs=None,
                         retval=None, state=None, **cwds):
    logger.info(f"Task {task.name} [{task_id}] completed with state: {state}")


@task_failure.connect
def task_failure_handler(sender=None, task_id=None, exception=None, einfo=None, **cwds):
    logger.error(f"Task {sender.name} [{task_id}] failed: {exception}")
