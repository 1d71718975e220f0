from __future__ import annotations

import datetime
from typing import List, Union

UTC = datetime.timezone.utc
EPOCH = datetime.datetime(1970, 1, 1, tzinfo=UTC)

DAY_START_MINUTES = 8 * 60
DAY_END_MINUTES = 18 * 60
SLOT_MINUTES = 30
SLOT_COUNT = (DAY_END_MINUTES - DAY_START_MINUTES) // SLOT_MINUTES

TimeLike = Union[str, datetime.time, datetime.datetime]


class SlotOutOfRangeError(ValueError):
    """Raised when a wall-clock time falls outside the 08:00-18:00 grid."""

    def __init__(self, minutes: int) -> None:
        super().__init__(f"{_format_minutes(minutes)} is outside the {slot_label(0)}-{slot_label(SLOT_COUNT)} grid.")
        self.minutes = minutes


def _format_minutes(value: int) -> str:
    hours, minutes = divmod(value, 60)
    return f"{hours:02d}:{minutes:02d}"


def slot_label(index: int) -> str:
    """Return the ``HH:MM`` label of a slot boundary (0 is 08:00, SLOT_COUNT is 18:00)."""
    return _format_minutes(DAY_START_MINUTES + index * SLOT_MINUTES)


TIME_SLOTS: List[str] = [slot_label(index) for index in range(SLOT_COUNT)]
BOUNDARY_LABELS: List[str] = [slot_label(index) for index in range(SLOT_COUNT + 1)]


def ensure_utc(value: datetime.datetime) -> datetime.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def parse_instant(value: Union[str, datetime.datetime]) -> datetime.datetime:
    """Parse an ISO-8601 string (``Z`` suffix allowed) or datetime into an aware UTC datetime."""
    if isinstance(value, datetime.datetime):
        return ensure_utc(value)
    if not isinstance(value, str):
        raise TypeError(f"Expected an ISO timestamp, got {type(value).__name__}.")
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.datetime.fromisoformat(text)
    except ValueError:
        raise ValueError(f"Invalid timestamp '{value}'.") from None
    return ensure_utc(parsed)


def to_iso(value: datetime.datetime) -> str:
    return ensure_utc(value).isoformat().replace("+00:00", "Z")


def _minutes_of_day(value: TimeLike) -> int:
    if isinstance(value, datetime.datetime):
        value = ensure_utc(value).time()
    if isinstance(value, datetime.time):
        return value.hour * 60 + value.minute
    if not isinstance(value, str):
        raise TypeError(f"Expected 'HH:MM', time or datetime, got {type(value).__name__}.")
    parts = value.strip().split(":")
    if len(parts) < 2:
        raise ValueError(f"Invalid wall-clock time '{value}'; expected HH:MM.")
    try:
        hours, minutes = int(parts[0]), int(parts[1])
    except ValueError:
        raise ValueError(f"Invalid wall-clock time '{value}'; expected HH:MM.") from None
    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        raise ValueError(f"Invalid wall-clock time '{value}'; expected HH:MM.")
    return hours * 60 + minutes


def _raw_index(minutes: int) -> int:
    return (minutes - DAY_START_MINUTES) // SLOT_MINUTES


def slot_index(value: TimeLike) -> int:
    """Map a wall-clock time to its half-hour slot index.

    The grid covers 08:00 (index 0) through the 18:00 boundary
    (index ``SLOT_COUNT``). Anything earlier or later raises
    :class:`SlotOutOfRangeError` instead of producing a negative or
    out-of-range index. Datetimes are read on their UTC wall clock.
    """
    minutes = _minutes_of_day(value)
    if minutes < DAY_START_MINUTES or minutes > DAY_END_MINUTES:
        raise SlotOutOfRangeError(minutes)
    return _raw_index(minutes)


def unbounded_slot_index(value: TimeLike) -> int:
    """Slot offset from 08:00 without the window check (negative before 08:00)."""
    return _raw_index(_minutes_of_day(value))


def clamp_slot_index(value: TimeLike) -> int:
    """Lenient variant of :func:`slot_index` that pins out-of-window times to the grid edges."""
    return max(0, min(unbounded_slot_index(value), SLOT_COUNT))


def slot_start(day: datetime.date, slot: Union[int, str]) -> datetime.datetime:
    """Return the UTC instant at which ``slot`` (an index or ``HH:MM`` label) begins on ``day``."""
    if isinstance(slot, int):
        if not 0 <= slot <= SLOT_COUNT:
            raise SlotOutOfRangeError(DAY_START_MINUTES + slot * SLOT_MINUTES)
        minutes = DAY_START_MINUTES + slot * SLOT_MINUTES
    else:
        minutes = _minutes_of_day(slot)
        slot_index(slot)
    if isinstance(day, datetime.datetime):
        day = ensure_utc(day).date()
    hours, mins = divmod(minutes, 60)
    return datetime.datetime.combine(day, datetime.time(hours, mins), tzinfo=UTC)


def snap(instant: datetime.datetime) -> datetime.datetime:
    """Round ``instant`` to the nearest half-hour mark, halves rounding up.

    Quantisation uses a fixed 30-minute divisor measured from the Unix epoch,
    so ``snap(snap(t)) == snap(t)`` for every instant.
    """
    value = ensure_utc(instant)
    step = SLOT_MINUTES * 60 * 1_000_000
    offset = (value - EPOCH) // datetime.timedelta(microseconds=1)
    snapped = ((offset + step // 2) // step) * step
    return EPOCH + datetime.timedelta(microseconds=snapped)


def column_start(day: datetime.date, slot: Union[int, str]) -> datetime.datetime:
    """Snapped start of the droppable column ``slot``.

    Only the ``TIME_SLOTS`` columns qualify: the 18:00 boundary, and any label
    that snaps onto it, raises :class:`SlotOutOfRangeError`.
    """
    start = snap(slot_start(day, slot))
    if not 0 <= unbounded_slot_index(start) < SLOT_COUNT:
        raise SlotOutOfRangeError(start.hour * 60 + start.minute)
    return start
