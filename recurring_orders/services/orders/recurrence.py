"""Recurrence rules for repeating deliveries.

A recurrence rule is the declarative description of when a recurring order
should be delivered: an explicit calendar of selected and included days,
weekly weekdays, excluded days and an optional end. Rules are immutable and
stored on the order as a JSON document.

Date-bearing fields accept dates, datetimes and ISO 8601 strings. Everything
is compared by calendar day in UTC: aware datetimes are converted to UTC
before the day is taken and naive datetimes are treated as UTC.
"""

from datetime import date, datetime, time, timezone
from typing import Any, Mapping, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_serializer,
    field_validator,
    model_validator,
)

from recurring_orders.services.orders.exceptions import OrderValidationError

DateLike = Union[date, datetime, str]

RECURRENCE_FIELDS = (
    "start_date",
    "end_date",
    "notes",
    "days_of_week",
    "include_dates",
    "exclude_dates",
    "selected_dates",
)


def _parse_iso(value: str) -> Union[date, datetime]:
    text = value.strip()
    if len(text) == 10:
        return date.fromisoformat(text)
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def to_instant(value: DateLike) -> datetime:
    """Normalize a date-like value to an aware UTC datetime.

    Raises:
        ValueError: If the value cannot be interpreted as a point in time
    """
    if isinstance(value, str):
        value = _parse_iso(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    raise ValueError(f"Unsupported date value: {value!r}")


def to_calendar_day(value: DateLike) -> date:
    """Normalize a date-like value to its UTC calendar day."""
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    return to_instant(value).date()


class RecurrenceRule(BaseModel):
    """Immutable delivery recurrence rule.

    Attributes:
        start_date: First instant eligible for delivery
        end_date: Inclusive upper bound for deliveries
        days_of_week: Weekly delivery weekdays, 0 = Sunday ... 6 = Saturday
        include_dates: Additional explicit delivery days
        exclude_dates: Days on which no delivery happens
        selected_dates: Explicit calendar chosen by the customer
        notes: Free-form schedule notes
    """

    model_config = ConfigDict(frozen=True)

    start_date: datetime
    end_date: Optional[datetime] = None
    days_of_week: frozenset[int] = frozenset()
    include_dates: tuple[date, ...] = ()
    exclude_dates: frozenset[date] = frozenset()
    selected_dates: tuple[date, ...] = ()
    notes: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def normalize_instant(cls, v: Any) -> Any:
        if v is None or v == "":
            return None
        return to_instant(v)

    @field_validator("include_dates", "exclude_dates", "selected_dates", mode="before")
    @classmethod
    def normalize_days(cls, v: Any) -> Any:
        if v is None:
            return ()
        if not isinstance(v, (list, tuple, set, frozenset)):
            raise ValueError("Expected a list of dates")
        return tuple(sorted({to_calendar_day(item) for item in v}))

    @field_validator("days_of_week", mode="before")
    @classmethod
    def normalize_weekdays(cls, v: Any) -> Any:
        if v is None:
            return frozenset()
        return v

    @field_validator("days_of_week")
    @classmethod
    def validate_weekdays(cls, v: frozenset[int]) -> frozenset[int]:
        invalid = sorted(day for day in v if day < 0 or day > 6)
        if invalid:
            raise ValueError(
                f"days_of_week values must be between 0 (Sunday) and 6 (Saturday), "
                f"got {invalid}"
            )
        return v

    @model_validator(mode="after")
    def validate_bounds(self) -> "RecurrenceRule":
        if self.end_date is not None and self.start_date >= self.end_date:
            raise ValueError("start_date must be before end_date")
        return self

    @field_serializer("days_of_week")
    def serialize_weekdays(self, v: frozenset[int]) -> list[int]:
        return sorted(v)

    @field_serializer("exclude_dates")
    def serialize_excluded(self, v: frozenset[date]) -> list[date]:
        return sorted(v)

    @property
    def start_day(self) -> date:
        return self.start_date.date()

    @property
    def end_day(self) -> Optional[date]:
        return self.end_date.date() if self.end_date is not None else None

    @property
    def is_dormant(self) -> bool:
        """A rule with no calendar and no weekdays never yields a delivery."""
        return not (self.days_of_week or self.include_dates or self.selected_dates)

    def has_lapsed(self, day: date) -> bool:
        """Check if ``day`` falls after the rule's end."""
        return self.end_day is not None and day > self.end_day

    def to_document(self) -> dict[str, Any]:
        """Serialize the rule for storage on the order."""
        return self.model_dump(mode="json")

    @classmethod
    def from_document(cls, document: Optional[Mapping[str, Any]]) -> Optional["RecurrenceRule"]:
        """Rebuild a stored rule; returns None for orders without one."""
        if not document:
            return None
        return build_recurrence_rule(document)


def _format_errors(error: ValidationError) -> list[dict[str, Any]]:
    return [
        {
            "field": ".".join(str(part) for part in item["loc"]) or "recurrence",
            "message": item["msg"],
        }
        for item in error.errors()
    ]


def build_recurrence_rule(
    data: Mapping[str, Any],
    now: Optional[datetime] = None,
) -> RecurrenceRule:
    """Validate raw recurrence data into a rule.

    Args:
        data: Recurrence fields as received from the caller or storage
        now: Default start instant when the data carries none

    Returns:
        Validated recurrence rule

    Raises:
        OrderValidationError: If any field is malformed, a weekday is out of
            range, or the start is not before the end
    """
    values = {key: data[key] for key in RECURRENCE_FIELDS if key in data}
    if not values.get("start_date"):
        if now is None:
            raise OrderValidationError(
                "Recurrence rule requires a start date",
                errors=[{"field": "start_date", "message": "Field required"}],
            )
        values["start_date"] = now

    try:
        return RecurrenceRule.model_validate(values)
    except ValidationError as e:
        raise OrderValidationError(
            "Invalid recurrence rule",
            errors=_format_errors(e),
        ) from e


def _is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, set, frozenset)):
        return len(value) > 0
    return True


def _as_mapping(recurrence: Any) -> Mapping[str, Any]:
    if recurrence is None:
        return {}
    if isinstance(recurrence, BaseModel):
        return recurrence.model_dump()
    return recurrence


def has_recurrence_signal(is_recurring: Optional[bool], recurrence: Any = None) -> bool:
    """Decide whether an order is recurring.

    True when the explicit flag is set or any recurrence field carries a
    value: a start or end date, notes, or a non-empty day list. This is the
    only predicate used to classify orders, both at checkout and when
    reporting stored orders.
    """
    if is_recurring:
        return True
    fields = _as_mapping(recurrence)
    return any(_is_present(fields.get(key)) for key in RECURRENCE_FIELDS)


def merge_recurrence(
    existing: Optional[RecurrenceRule],
    patch: Any,
    now: datetime,
) -> RecurrenceRule:
    """Overlay the provided fields of a partial rule onto an existing one.

    Fields that are missing or null in ``patch`` keep their existing value.
    The merged rule is validated as a whole, so a patch that moves the start
    past the stored end is rejected.

    Raises:
        OrderValidationError: If the merged rule is invalid
    """
    merged: dict[str, Any] = existing.model_dump() if existing is not None else {}
    merged.update(
        {key: value for key, value in _as_mapping(patch).items() if value is not None}
    )
    return build_recurrence_rule(merged, now)
