from datetime import datetime
from decimal import Decimal
from enum import Enum


def jsonable(value):
    """Convert domain values (Decimal, datetime, Enum) into JSON-safe ones."""
    if isinstance(value, dict):
        return {str(k): jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [jsonable(v) for v in value]
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value
