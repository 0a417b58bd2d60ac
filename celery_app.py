"""Celery application for post-commit side effects (order confirmation mail)."""
import os
import logging
from celery import Celery
from celery.signals import task_failure, task_retry

logger = logging.getLogger(__name__)


def make_celery(name="petshop"):
    app = Celery(
        name,
        broker=os.environ.get("CELERY_BROKER_URL", "memory://"),
        backend=os.environ.get("CELERY_RESULT_BACKEND", "cache+memory://"),
        include=["petshop.tasks.notifications"],
    )
    app.conf.update(
        task_always_eager=os.environ.get("CELERY_TASK_ALWAYS_EAGER", "0") == "1",
        task_eager_propagates=True,
        task_store_eager_result=False,
        task_default_queue=name,
        task_routes={"petshop.tasks.notifications.*": {"queue": "notifications"}},
    )
    return app


celery_app = make_celery()


@task_failure.connect
def _log_failure(sender=None, task_id=None, exception=None, **kwargs):
    logger.error({
        "event": "task_failed",
        "task": getattr(sender, "name", task_id),
        "error": str(exception),
    })


@task_retry.connect
def _log_retry(sender=None, request=None, reason=None, **kwargs):
    logger.warning({
        "event": "task_retry",
        "task": getattr(sender, "name", ""),
        "reason": str(reason),
    })
