from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, List, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic.alias_generators import to_camel

from .breakdown import TimeBreakdown, decompose


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """Interpret naive datetimes as UTC so every comparison is between instants."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _resolve_now(now: Optional[datetime]) -> datetime:
    return utc_now() if now is None else ensure_aware(now)


# PUBLIC_INTERFACE
class CountdownEntity(BaseModel):
    """
    A single countdown timer counting toward an absolute instant.

    Fields:
    - id: UUID assigned at construction, immutable
    - name: display name, trimmed; blank names are rejected
    - target_date: the instant the countdown reaches zero
    - is_active: whether the owning engine keeps the countdown live
    - created_date: construction instant, immutable

    Remaining time, expiry and "in future" are derived on every read against
    the supplied `now`; nothing is cached. Capture `now` once and pass it to
    each call when several reads must agree.

    Serialized with camelCase keys (id, name, targetDate, isActive, createdDate);
    unknown keys are ignored when decoding.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True,
        extra="ignore",
    )

    id: UUID = Field(default_factory=uuid4, frozen=True)
    name: str
    target_date: datetime
    is_active: bool = False
    created_date: datetime = Field(default_factory=utc_now, frozen=True)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        s = v.strip()
        if not s:
            raise ValueError("name cannot be empty")
        return s

    @field_validator("target_date", "created_date")
    @classmethod
    def normalize_instant(cls, v: datetime) -> datetime:
        return ensure_aware(v)

    def remaining_seconds(self, now: Optional[datetime] = None) -> float:
        """Signed seconds until target_date; negative once expired."""
        return (self.target_date - _resolve_now(now)).total_seconds()

    def remaining_time(self, now: Optional[datetime] = None) -> TimeBreakdown:
        return decompose(self.target_date - _resolve_now(now))

    def has_expired(self, now: Optional[datetime] = None) -> bool:
        return self.target_date <= _resolve_now(now)

    def is_in_future(self, now: Optional[datetime] = None) -> bool:
        return self.target_date > _resolve_now(now)


_COUNTDOWN_LIST = TypeAdapter(List[CountdownEntity])


# PUBLIC_INTERFACE
def encode_countdowns(countdowns: Iterable[CountdownEntity]) -> bytes:
    """Serialize countdowns, in order, to a JSON array."""
    return _COUNTDOWN_LIST.dump_json(list(countdowns), by_alias=True)


# PUBLIC_INTERFACE
def decode_countdowns(data: bytes) -> List[CountdownEntity]:
    """
    Parse a JSON array produced by encode_countdowns.

    Raises:
        pydantic.ValidationError (a ValueError) when the payload is not a valid
        countdown list.
    """
    return _COUNTDOWN_LIST.validate_json(data)
