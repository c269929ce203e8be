"""Shared column types and identifier helpers for the SQLModel tables."""
from datetime import datetime, timezone
from typing import Optional
import uuid

from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator
from ulid import ULID


def new_id() -> uuid.UUID:
    """Return a time-ordered 128-bit identifier (a ULID in UUID form)."""
    return ULID().to_uuid()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Store instants as naive UTC and hand them back timezone-aware.

    Naive values coming in are assumed to already be UTC.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def process_result_value(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Coerce an instant to aware UTC; naive input is treated as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
