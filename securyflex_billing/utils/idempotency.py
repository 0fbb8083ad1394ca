import hashlib
from contextlib import contextmanager

from securyflex_billing.utils.locks import redis_lock


def payment_idempotency_key(subscription_id: str, period: str, attempt_number: int) -> str:
    """Deterministic key for one logical payment attempt."""
    raw = f"{subscription_id}:{period}:{attempt_number}"
    return "sfx_" + hashlib.sha256(raw.encode("utf-8")).hexdigest()[:48]


@contextmanager
def ensure_idempotent(client, task_name: str, task_id: str):
    key = f"idempotency:{task_name}:{task_id}"
    with redis_lock(client, key):
        yield
