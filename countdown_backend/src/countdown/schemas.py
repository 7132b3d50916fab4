from __future__ import annotations

from datetime import date, datetime, timezone
from typing import List, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .engine import CountdownStats
from .models import CountdownEntity, utc_now

# Shared type for incoming target dates which can be a date, datetime, or ISO8601 string
TargetDateInput = Union[date, datetime, str]


def _parse_target_date(value: Optional[TargetDateInput]) -> Optional[datetime]:
    """
    Internal helper to normalize target_date input into an aware UTC-based datetime.
    - If value is a string, parse via datetime.fromisoformat; a bare date means 00:00.
    - If value is a date (not datetime), convert to datetime at 00:00.
    - Naive datetimes are interpreted as UTC.
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)

    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)

    if isinstance(value, str):
        s = value.strip()
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            return _parse_target_date(datetime.fromisoformat(s))
        except ValueError:
            try:
                return _parse_target_date(date.fromisoformat(s))
            except ValueError as e:
                raise ValueError(
                    "Invalid target_date format. Use ISO8601 date or datetime string "
                    "(e.g., '2030-01-31' or '2030-01-31T13:45:00Z')."
                ) from e

    raise ValueError("Invalid type for target_date; expected date, datetime, or ISO8601 string.")


def _require_future(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value <= utc_now():
        raise ValueError("target_date must be in the future")
    return value


def _clean_name(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    s = value.strip()
    if not (1 <= len(s) <= 200):
        raise ValueError("name length must be between 1 and 200 characters")
    return s


# PUBLIC_INTERFACE
class CountdownCreate(BaseModel):
    """
    Schema for creating (or fully replacing) a countdown.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": "Weekend Trip",
                "target_date": "2030-06-01T09:00:00Z",
            }
        }
    )

    name: str = Field(..., description="Display name of the countdown", min_length=1, max_length=200)
    target_date: datetime = Field(
        ...,
        description="Instant the countdown reaches zero. Accepts ISO8601 date or datetime; must be in the future",
    )

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """
        Strip whitespace and enforce 1..200 length.
        """
        return _clean_name(v)  # type: ignore[return-value]

    @field_validator("target_date", mode="before")
    @classmethod
    def parse_target_date(cls, v: Optional[TargetDateInput]) -> Optional[datetime]:
        return _parse_target_date(v)

    @field_validator("target_date")
    @classmethod
    def validate_future(cls, v: datetime) -> datetime:
        return _require_future(v)  # type: ignore[return-value]


# PUBLIC_INTERFACE
class CountdownUpdate(BaseModel):
    """
    Schema for partially updating a countdown.
    All fields are optional; only provided fields will be updated.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": "Weekend Trip (extended)",
            }
        }
    )

    name: Optional[str] = Field(default=None, description="Display name of the countdown", min_length=1, max_length=200)
    target_date: Optional[datetime] = Field(default=None, description="New target instant; must be in the future")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: Optional[str]) -> Optional[str]:
        return _clean_name(v)

    @field_validator("target_date", mode="before")
    @classmethod
    def parse_target_date(cls, v: Optional[TargetDateInput]) -> Optional[datetime]:
        return _parse_target_date(v)

    @field_validator("target_date")
    @classmethod
    def validate_future(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _require_future(v)


class TimeBreakdownOut(BaseModel):
    days: int
    hours: int
    minutes: int
    seconds: int
    milliseconds: int


# PUBLIC_INTERFACE
class CountdownOut(BaseModel):
    """
    Schema returned by the API for a countdown, with its remaining time
    computed at response time.
    """

    id: UUID = Field(..., description="Unique identifier of the countdown")
    name: str = Field(..., description="Display name")
    target_date: datetime = Field(..., description="Target instant")
    created_date: datetime = Field(..., description="Creation instant")
    is_active: bool = Field(..., description="Whether the countdown is receiving live updates")
    has_expired: bool = Field(..., description="Target instant is at or before now")
    is_in_future: bool = Field(..., description="Target instant is after now")
    remaining_seconds: float = Field(..., description="Signed seconds until the target instant")
    remaining: TimeBreakdownOut = Field(..., description="Remaining time, zero once expired")

    @classmethod
    def from_entity(cls, countdown: CountdownEntity, now: datetime) -> "CountdownOut":
        return cls(
            id=countdown.id,
            name=countdown.name,
            target_date=countdown.target_date,
            created_date=countdown.created_date,
            is_active=countdown.is_active,
            has_expired=countdown.has_expired(now),
            is_in_future=countdown.is_in_future(now),
            remaining_seconds=countdown.remaining_seconds(now),
            remaining=TimeBreakdownOut(**countdown.remaining_time(now).as_dict()),
        )


class CountdownPage(BaseModel):
    """
    Envelope for paginated list responses.
    """

    items: List[CountdownOut] = Field(..., description="Countdowns in insertion order")
    total: int = Field(..., description="Total number of countdowns matching the query")
    limit: int = Field(..., description="Limit applied to the query")
    offset: int = Field(..., description="Offset applied to the query")


class StatisticsOut(BaseModel):
    total: int
    active: int
    expired: int
    future: int

    @classmethod
    def from_stats(cls, stats: CountdownStats) -> "StatisticsOut":
        return cls(total=stats.total, active=stats.active, expired=stats.expired, future=stats.future)


class BulkDelete(BaseModel):
    ids: List[UUID] = Field(..., description="Ids to delete; unknown ids are ignored")


class BulkDeleteResult(BaseModel):
    deleted: int
