import asyncio

from celery.utils.log import get_task_logger

from securyflex_billing import get_engine
from securyflex_billing.workers.base_tasks import BaseTask
from securyflex_billing.workers.celery_app import celery_app

logger = get_task_logger(__name__)


@celery_app.task(base=BaseTask, name="billing.process_due_subscriptions")
def process_due_subscriptions():
    result = asyncio.run(get_engine().batch.process_due())
    logger.info(f"Batch billing: {result.succeeded}/{result.processed} captured")
    return result.to_dict()


@celery_app.task(base=BaseTask, name="billing.dispatch_retries")
def dispatch_retries():
    result = asyncio.run(get_engine().dispatch_due_retries())
    return result.to_dict()


@celery_app.task(base=BaseTask, name="billing.run_dunning_sweep")
def run_dunning_sweep():
    result = asyncio.run(get_engine().process_dunning_sweep())
    logger.info(f"Dunning sweep: {result.notified} notified, {result.canceled} canceled")
    return result.to_dict()


@celery_app.task(base=BaseTask, name="billing.expire_trials")
def expire_trials():
    expired = get_engine().lifecycle.expire_trials()
    return {"expired": expired}


@celery_app.task(base=BaseTask, name="billing.send_trial_reminders")
def send_trial_reminders():
    reminded = get_engine().lifecycle.send_trial_reminders()
    return {"reminded": reminded}
