# workers/base_tasks.py
import redis
from celery import Task
from celery.utils.log import get_task_logger
from sqlalchemy.exc import OperationalError

from securyflex_billing.config.settings import settings
from securyflex_billing.errors import SubscriptionLockedError
from securyflex_billing.utils.idempotency import ensure_idempotent

logger = get_task_logger(__name__)

_flask_app = None
_redis_client = None


def get_flask_app():
    global _flask_app
    if _flask_app is None:
        from securyflex_billing import create_app
        from securyflex_billing.logging_config import configure_logging_for_workers

        _flask_app = create_app()
        configure_logging_for_workers()
    return _flask_app


def get_redis_client():
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.Redis.from_url(settings.REDIS_URL)
    return _redis_client


class BaseTask(Task):
    abstract = True

    autoretry_for = (SubscriptionLockedError, OperationalError)
    retry_kwargs = {"max_retries": 5}
    retry_backoff = True
    retry_backoff_max = 300
    retry_jitter = True

    def __call__(self, *args, **kwargs):
        task_id = self.request.id or "local"
        with get_flask_app().app_context():
            with ensure_idempotent(get_redis_client(), self.name, task_id):
                return super().__call__(*args, **kwargs)

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        logger.error(
            "Task failed",
            extra={
                "task": self.name,
                "task_id": task_id,
                "error": str(exc),
            }
        )
