from datetime import UTC, datetime
from uuid import uuid4


def truncate(value: str, max_len: int) -> str:
    if len(value) <= max_len:
        return value
    return value[: max_len - 3] + "..."


def new_id() -> str:
    return uuid4().hex[:12]


def utc_now() -> datetime:
    return datetime.now(UTC)
