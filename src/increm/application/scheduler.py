"""
Interval scheduling for incremental items.

Every function here is pure: it takes an item plus the current time and
returns the new due date and the new history. Persisting the result is the
job of ``increm.application.incremental``.

The algorithm:
1. Cleanse the history of responses that were followed by an early response.
2. Keep only review-counting entries after the last ``made-incremental`` marker.
3. Elapsed days since the last of those (1 if there is none).
4. New interval = round(elapsed * multiplier), never below one day.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime

from increm.application.context import start_of_day_ms
from increm.application.percentile import round_half_up
from increm.domain.constants import DEFAULT_MULTIPLIER, MS_PER_DAY
from increm.domain.history import (
    EventType,
    HistoryEntry,
    LifecycleMarker,
    ManualReset,
    Repetition,
    Reschedule,
    counts_as_review,
    is_event_marker,
)
from increm.domain.models import IncrementalItem

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NextSpacing:
    """Outcome of a scheduling decision."""

    item_id: str
    next_rep_date: int
    interval: int
    history: list[HistoryEntry]


def _same_local_day(a_ms: int, b_ms: int) -> bool:
    return datetime.fromtimestamp(a_ms / 1000).date() == datetime.fromtimestamp(b_ms / 1000).date()


def time_when_queued(history: list[HistoryEntry], index: int) -> int | None:
    """
    Moment the entry at ``index`` would have appeared in the queue.

    Items surface at the start of their due day, so the exact scheduled time
    only applies when there is no previous interaction or the previous
    interaction happened on the scheduled day itself.
    """
    if index >= len(history):
        return None
    scheduled = history[index].scheduled
    if not scheduled:
        return None
    previous = history[index - 1] if index > 0 else None
    if previous is None or _same_local_day(scheduled, previous.date):
        return scheduled
    return start_of_day_ms(scheduled)


def remove_responses_before_early_responses(history: list[HistoryEntry]) -> list[HistoryEntry]:
    """Drop every entry whose successor was logged before it could have been queued."""
    cleansed: list[HistoryEntry] = []
    for i, entry in enumerate(history):
        if is_event_marker(entry):
            cleansed.append(entry)
            continue
        queued_at = time_when_queued(history, i + 1)
        if queued_at is not None and history[i + 1].date < queued_at:
            continue
        cleansed.append(entry)
    return cleansed


def remove_last_interaction(history: list[HistoryEntry]) -> list[HistoryEntry]:
    return history[:-1]


def reps_since_made_incremental(history: list[HistoryEntry]) -> list[HistoryEntry]:
    """Review-counting entries after the last ``made-incremental`` marker."""
    start = 0
    for i in range(len(history) - 1, -1, -1):
        entry = history[i]
        if isinstance(entry, LifecycleMarker) and entry.event_type == EventType.MADE_INCREMENTAL:
            start = i + 1
            break
    return [e for e in history[start:] if counts_as_review(e)]


def compute_interval(elapsed_days: float, multiplier: float = DEFAULT_MULTIPLIER) -> int:
    return max(1, int(round_half_up(elapsed_days * multiplier)))


def days_early_or_late(actual_ms: int, scheduled_ms: int) -> float:
    """Signed days between the actual and scheduled time, one decimal."""
    return round_half_up((actual_ms - scheduled_ms) / MS_PER_DAY, 1)


def get_next_spacing(
    item: IncrementalItem,
    now_ms: int,
    lookback: bool = False,
    queue_mode: str | None = None,
    multiplier: float = DEFAULT_MULTIPLIER,
) -> NextSpacing:
    """
    Schedule the next repetition of ``item`` reviewed at ``now_ms``.

    In lookback mode the last interaction is discarded (it is being redone)
    and the review is treated as scheduled for the start of today.
    """
    raw = list(item.history)
    cleansed = remove_responses_before_early_responses(raw)
    if lookback:
        cleansed = remove_last_interaction(cleansed)

    reps = reps_since_made_incremental(cleansed)
    if reps:
        elapsed_days = (now_ms - reps[-1].date) / MS_PER_DAY
    else:
        elapsed_days = 1.0

    interval = compute_interval(elapsed_days, multiplier)
    next_rep_date = now_ms + interval * MS_PER_DAY

    scheduled = start_of_day_ms(now_ms) if lookback else item.next_rep_date
    offset = days_early_or_late(now_ms, scheduled)

    base = remove_last_interaction(raw) if lookback else raw
    entry = Repetition(
        date=now_ms,
        scheduled=scheduled,
        interval=interval,
        was_early=offset < 0,
        days_early_or_late=offset,
        priority=item.priority,
        queue_mode=queue_mode,
    )
    logger.debug(
        f"Item {item.id}: elapsed {elapsed_days:.2f}d over {len(reps)} reps -> {interval}d"
    )
    return NextSpacing(item.id, next_rep_date, interval, base + [entry])


def apply_review_overrides(
    spacing: NextSpacing,
    review_time_seconds: int | None = None,
    override_next_rep_date: int | None = None,
    override_interval_days: int | None = None,
) -> NextSpacing:
    """Fill in the measured review time and any forced date or interval."""
    history = list(spacing.history)
    if history:
        last = history[-1]
        changes = {}
        if review_time_seconds is not None:
            changes["review_time_seconds"] = review_time_seconds
        if override_interval_days is not None:
            changes["interval"] = override_interval_days
        if changes:
            history[-1] = replace(last, **changes)
    return NextSpacing(
        spacing.item_id,
        override_next_rep_date if override_next_rep_date is not None else spacing.next_rep_date,
        override_interval_days if override_interval_days is not None else spacing.interval,
        history,
    )


def reschedule_to_offset(
    item: IncrementalItem,
    offset_days: int,
    now_ms: int,
    review_time_seconds: int | None = None,
    queue_mode: str | None = None,
) -> NextSpacing:
    """Queue reschedule to the start of today + ``offset_days``. Counts as a review."""
    offset_days = max(offset_days, 0)
    target = start_of_day_ms(now_ms) + offset_days * MS_PER_DAY
    entry = Reschedule(
        date=now_ms,
        scheduled=target,
        interval=offset_days,
        review_time_seconds=review_time_seconds,
        priority=item.priority,
        queue_mode=queue_mode,
        event_type=EventType.RESCHEDULED_IN_QUEUE,
    )
    return NextSpacing(item.id, target, offset_days, list(item.history) + [entry])


def reschedule_in_editor(item: IncrementalItem, new_date_ms: int, now_ms: int) -> NextSpacing:
    """Move the due date from the editor. Not a review."""
    interval = max(0, int(round_half_up((new_date_ms - now_ms) / MS_PER_DAY)))
    entry = Reschedule(
        date=now_ms,
        scheduled=item.next_rep_date,
        interval=interval,
        priority=item.priority,
        queue_mode="editor",
        event_type=EventType.RESCHEDULED_IN_EDITOR,
    )
    return NextSpacing(item.id, new_date_ms, interval, list(item.history) + [entry])


def manual_date_reset(
    item: IncrementalItem, old_date_ms: int, new_date_ms: int, now_ms: int
) -> NextSpacing:
    """Record that the due date was edited directly in the host."""
    interval = max(0, int(round_half_up((new_date_ms - now_ms) / MS_PER_DAY)))
    entry = ManualReset(date=now_ms, scheduled=old_date_ms, interval=interval)
    return NextSpacing(item.id, new_date_ms, interval, list(item.history) + [entry])


def execute_repetition(
    item: IncrementalItem,
    interval_days: int,
    now_ms: int,
    review_time_seconds: int | None = None,
) -> NextSpacing:
    """Repetition performed from the editor with an explicitly chosen interval."""
    offset = days_early_or_late(now_ms, item.next_rep_date)
    entry = Repetition(
        date=now_ms,
        scheduled=item.next_rep_date,
        interval=interval_days,
        review_time_seconds=review_time_seconds,
        was_early=offset < 0,
        days_early_or_late=offset,
        priority=item.priority,
        event_type=EventType.EXECUTE_REPETITION,
    )
    next_rep_date = now_ms + interval_days * MS_PER_DAY
    return NextSpacing(item.id, next_rep_date, interval_days, list(item.history) + [entry])
