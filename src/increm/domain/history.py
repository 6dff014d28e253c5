"""
Review history entries and their persisted JSON form.

In memory a history is a list of tagged entries:

- ``Repetition``: a review that counts toward spacing (queue review or
  "execute repetition" from the editor).
- ``Reschedule``: the learner moved the date, either while in the queue
  (counts as a review) or from the editor (does not).
- ``ManualReset``: the due date was edited directly in the host.
- ``LifecycleMarker``: the node was made incremental or dismissed.

On disk the host stores a flat camelCase JSON record per entry. The
``HistoryRecord`` pydantic model validates that form.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from increm.domain.errors import MalformedPersistedData


class EventType(str, Enum):
    REPETITION = "rep"
    RESCHEDULED_IN_QUEUE = "rescheduledInQueue"
    RESCHEDULED_IN_EDITOR = "rescheduledInEditor"
    MANUAL_DATE_RESET = "manualDateReset"
    EXECUTE_REPETITION = "executeRepetition"
    MADE_INCREMENTAL = "madeIncremental"
    DISMISSED = "dismissed"


@dataclass(frozen=True)
class _Entry:
    date: int  # when it happened (epoch-ms)
    scheduled: int  # when it was due (epoch-ms)


@dataclass(frozen=True)
class Repetition(_Entry):
    interval: int | None = None
    review_time_seconds: int | None = None
    was_early: bool | None = None
    days_early_or_late: float | None = None
    priority: int | None = None
    queue_mode: str | None = None
    event_type: EventType = EventType.REPETITION


@dataclass(frozen=True)
class Reschedule(_Entry):
    interval: int | None = None
    review_time_seconds: int | None = None
    was_early: bool | None = None
    days_early_or_late: float | None = None
    priority: int | None = None
    queue_mode: str | None = None
    event_type: EventType = EventType.RESCHEDULED_IN_QUEUE


@dataclass(frozen=True)
class ManualReset(_Entry):
    interval: int | None = None
    event_type: EventType = EventType.MANUAL_DATE_RESET


@dataclass(frozen=True)
class LifecycleMarker(_Entry):
    event_type: EventType = EventType.MADE_INCREMENTAL


HistoryEntry = Repetition | Reschedule | ManualReset | LifecycleMarker


def counts_as_review(entry: HistoryEntry) -> bool:
    """True for entries that confirm the learner actually looked at the item."""
    if isinstance(entry, Repetition):
        return True
    if isinstance(entry, Reschedule):
        return entry.event_type == EventType.RESCHEDULED_IN_QUEUE
    return False


def is_event_marker(entry: HistoryEntry) -> bool:
    """Entries that early-response pruning must never drop."""
    if isinstance(entry, (LifecycleMarker, ManualReset)):
        return True
    return isinstance(entry, Reschedule) and entry.event_type == EventType.RESCHEDULED_IN_EDITOR


# ---------------------------------------------------------------------------
# Persisted form
# ---------------------------------------------------------------------------


class HistoryRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    date: int
    scheduled: int
    interval: int | None = None
    review_time_seconds: int | None = Field(default=None, alias="reviewTimeSeconds")
    was_early: bool | None = Field(default=None, alias="wasEarly")
    days_early_or_late: float | None = Field(default=None, alias="daysEarlyOrLate")
    event_type: EventType | None = Field(default=None, alias="eventType")
    priority: int | None = Field(default=None, ge=0, le=100)
    queue_mode: Literal["srs", "practice-all", "in-order", "editor"] | None = Field(
        default=None, alias="queueMode"
    )


_records_adapter = TypeAdapter(list[HistoryRecord])


def _from_record(rec: HistoryRecord) -> HistoryEntry:
    event = rec.event_type or EventType.REPETITION
    review_fields = dict(
        interval=rec.interval,
        review_time_seconds=rec.review_time_seconds,
        was_early=rec.was_early,
        days_early_or_late=rec.days_early_or_late,
        priority=rec.priority,
        queue_mode=rec.queue_mode,
    )
    if event in (EventType.REPETITION, EventType.EXECUTE_REPETITION):
        return Repetition(rec.date, rec.scheduled, event_type=event, **review_fields)
    if event in (EventType.RESCHEDULED_IN_QUEUE, EventType.RESCHEDULED_IN_EDITOR):
        return Reschedule(rec.date, rec.scheduled, event_type=event, **review_fields)
    if event == EventType.MANUAL_DATE_RESET:
        return ManualReset(rec.date, rec.scheduled, interval=rec.interval)
    return LifecycleMarker(rec.date, rec.scheduled, event_type=event)


def _to_record(entry: HistoryEntry) -> dict[str, Any]:
    out: dict[str, Any] = {"date": entry.date, "scheduled": entry.scheduled}
    if isinstance(entry, (Repetition, Reschedule)):
        optional = {
            "interval": entry.interval,
            "reviewTimeSeconds": entry.review_time_seconds,
            "wasEarly": entry.was_early,
            "daysEarlyOrLate": entry.days_early_or_late,
            "priority": entry.priority,
            "queueMode": entry.queue_mode,
        }
        out.update({k: v for k, v in optional.items() if v is not None})
    elif isinstance(entry, ManualReset) and entry.interval is not None:
        out["interval"] = entry.interval
    # Plain repetitions are stored without a tag
    if entry.event_type != EventType.REPETITION:
        out["eventType"] = entry.event_type.value
    return out


def parse_history(raw: Any, item_id: str = "?") -> list[HistoryEntry]:
    """
    Parse a stored history value.

    Accepts ``None`` (empty), a JSON string, a single-element list wrapping a
    JSON string (the host's rich-text form), or a list of dicts.

    Raises:
        MalformedPersistedData: if the value is not a valid history.
    """
    if raw is None or raw == "":
        return []
    if isinstance(raw, list) and len(raw) == 1 and isinstance(raw[0], str):
        raw = raw[0]
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise MalformedPersistedData(item_id, f"history is not JSON: {e}") from e
    if raw is None:
        return []
    try:
        records = _records_adapter.validate_python(raw)
    except ValidationError as e:
        raise MalformedPersistedData(item_id, f"invalid history: {e}") from e
    return [_from_record(r) for r in records]


def dump_history(entries: list[HistoryEntry]) -> list[dict[str, Any]]:
    """Serialize entries to their camelCase persisted records."""
    return [_to_record(e) for e in entries]


def history_to_json(entries: list[HistoryEntry]) -> str:
    return json.dumps(dump_history(entries))
