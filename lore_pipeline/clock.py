"""Injectable clock and id helpers shared by pipeline components."""

from datetime import datetime, timezone
from typing import Callable, Optional, Union
from uuid import uuid4

from lore_pipeline.errors import ContractViolation

Clock = Callable[[], datetime]
IdFactory = Callable[[str], str]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    """Default id factory, e.g. ``delta_3f9a1c2b7e4d``."""
    return f"{prefix}_{uuid4().hex[:12]}"


def fixed_clock(moment: Union[str, datetime]) -> Clock:
    """A clock that always returns the same instant. Used for replayable runs."""
    frozen = to_datetime(moment)
    return lambda: frozen


def to_datetime(
    value: Union[str, datetime, None],
    fallback: Optional[datetime] = None,
) -> datetime:
    """
    Coerce an ISO-8601 string or datetime into an aware UTC datetime.
    Naive values are taken to be UTC.
    """
    if value is None or value == "":
        if fallback is None:
            raise ContractViolation("invalid_timestamp", "no timestamp supplied")
        value = fallback

    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            value = datetime.fromisoformat(text)
        except ValueError:
            raise ContractViolation("invalid_timestamp", f"unparseable timestamp {value!r}")

    if not isinstance(value, datetime):
        raise ContractViolation("invalid_timestamp", f"unsupported timestamp {value!r}")

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
