import random

from conftest import DAY, NOW

from increm.application import scheduler
from increm.application.context import start_of_day_ms
from increm.domain.history import (
    EventType,
    LifecycleMarker,
    ManualReset,
    Repetition,
    Reschedule,
    counts_as_review,
)
from increm.domain.models import IncrementalItem


def _rep(date: int, scheduled: int | None = None, interval: int | None = None) -> Repetition:
    if scheduled is None:
        scheduled = date
    return Repetition(date=date, scheduled=scheduled, interval=interval)


# --- Interval ---


def test_new_item_first_review_gets_two_days():
    item = IncrementalItem("a", NOW, 10, [])
    spacing = scheduler.get_next_spacing(item, NOW)

    assert spacing.interval == 2
    assert spacing.next_rep_date == NOW + 2 * DAY
    assert len(spacing.history) == 1
    assert spacing.history[0].priority == 10


def test_review_four_days_after_last_rep_doubles_to_eight():
    history = [
        LifecycleMarker(NOW - 6 * DAY, NOW - 6 * DAY, EventType.MADE_INCREMENTAL),
        _rep(NOW - 4 * DAY, interval=4),
    ]
    item = IncrementalItem("a", NOW, 50, history)

    spacing = scheduler.get_next_spacing(item, NOW)

    assert spacing.interval == 8
    assert spacing.next_rep_date == NOW + 8 * DAY
    assert len(spacing.history) == 3
    last = spacing.history[-1]
    assert last.was_early is False
    assert last.days_early_or_late == 0.0


def test_interval_is_twice_elapsed_days():
    for n in range(1, 30):
        item = IncrementalItem("a", NOW, 10, [_rep(NOW - n * DAY)])
        assert scheduler.get_next_spacing(item, NOW).interval == round(n * 2)


def test_configurable_multiplier():
    item = IncrementalItem("a", NOW, 10, [_rep(NOW - 3 * DAY)])
    assert scheduler.get_next_spacing(item, NOW, multiplier=1.5).interval == 5


def test_interval_never_below_one_day():
    item = IncrementalItem("a", NOW, 10, [_rep(NOW - 1000)])
    assert scheduler.get_next_spacing(item, NOW).interval == 1


def test_early_review_is_flagged():
    item = IncrementalItem("a", NOW + 2 * DAY, 10, [_rep(NOW - 2 * DAY)])
    spacing = scheduler.get_next_spacing(item, NOW)

    assert spacing.interval == 4
    assert spacing.history[-1].was_early is True
    assert spacing.history[-1].days_early_or_late == -2.0


def test_reps_before_made_incremental_are_ignored():
    history = [
        _rep(NOW - 20 * DAY),
        LifecycleMarker(NOW - 3 * DAY, NOW - 3 * DAY, EventType.MADE_INCREMENTAL),
    ]
    item = IncrementalItem("a", NOW, 10, history)
    assert scheduler.get_next_spacing(item, NOW).interval == 2


def test_editor_reschedule_does_not_count_as_review():
    history = [
        _rep(NOW - 5 * DAY),
        Reschedule(
            NOW - 1 * DAY, NOW - 1 * DAY, interval=3, event_type=EventType.RESCHEDULED_IN_EDITOR
        ),
    ]
    item = IncrementalItem("a", NOW, 10, history)
    assert scheduler.get_next_spacing(item, NOW).interval == 10


def test_lookback_replaces_last_interaction():
    history = [_rep(NOW - 4 * DAY), _rep(NOW - 1 * DAY)]
    item = IncrementalItem("a", NOW + DAY, 10, history)

    spacing = scheduler.get_next_spacing(item, NOW, lookback=True, queue_mode="srs")

    assert spacing.interval == 8
    assert len(spacing.history) == 2
    assert spacing.history[0] == history[0]
    assert spacing.history[-1].scheduled == start_of_day_ms(NOW)
    assert spacing.history[-1].queue_mode == "srs"


# --- Cleansing ---


def test_response_followed_by_backdated_response_is_dropped():
    backdated = _rep(NOW - 9 * DAY, scheduled=NOW - 5 * DAY)
    history = [_rep(NOW - 10 * DAY), backdated]

    cleansed = scheduler.remove_responses_before_early_responses(history)

    assert cleansed == [backdated]


def test_genuine_on_time_responses_survive():
    history = [_rep(NOW - 10 * DAY), _rep(NOW - 6 * DAY, scheduled=NOW - 6 * DAY)]
    assert scheduler.remove_responses_before_early_responses(history) == history


def test_event_markers_are_never_pruned():
    marker = ManualReset(NOW - 10 * DAY, NOW - 12 * DAY, interval=1)
    history = [marker, _rep(NOW - 11 * DAY, scheduled=NOW - 2 * DAY)]
    assert marker in scheduler.remove_responses_before_early_responses(history)


def test_pruning_never_grows_and_preserves_order():
    rng = random.Random(7)
    for _ in range(200):
        history = []
        for _ in range(rng.randint(0, 8)):
            date = NOW - rng.randint(0, 40) * DAY + rng.randint(0, DAY)
            scheduled = NOW - rng.randint(0, 40) * DAY
            kind = rng.choice(["rep", "marker", "reset"])
            if kind == "rep":
                history.append(_rep(date, scheduled))
            elif kind == "marker":
                history.append(LifecycleMarker(date, scheduled, EventType.MADE_INCREMENTAL))
            else:
                history.append(ManualReset(date, scheduled))

        cleansed = scheduler.remove_responses_before_early_responses(history)

        assert len(cleansed) <= len(history)
        remaining = iter(history)
        assert all(any(kept is e for e in remaining) for kept in cleansed)


def test_time_when_queued_uses_start_of_day_after_earlier_interaction():
    history = [_rep(NOW - 3 * DAY), _rep(NOW, scheduled=NOW)]
    assert scheduler.time_when_queued(history, 1) == start_of_day_ms(NOW)
    assert scheduler.time_when_queued(history, 0) == NOW - 3 * DAY
    assert scheduler.time_when_queued(history, 5) is None


# --- Overrides and other events ---


def test_apply_review_overrides():
    item = IncrementalItem("a", NOW, 10, [])
    spacing = scheduler.get_next_spacing(item, NOW)

    changed = scheduler.apply_review_overrides(
        spacing, review_time_seconds=42, override_interval_days=5
    )

    assert changed.interval == 5
    assert changed.next_rep_date == spacing.next_rep_date
    assert changed.history[-1].review_time_seconds == 42
    assert changed.history[-1].interval == 5

    dated = scheduler.apply_review_overrides(spacing, override_next_rep_date=NOW + 9 * DAY)
    assert dated.next_rep_date == NOW + 9 * DAY
    assert dated.interval == spacing.interval


def test_reschedule_to_offset_counts_as_review():
    item = IncrementalItem("a", NOW, 10, [])
    spacing = scheduler.reschedule_to_offset(item, 3, NOW, review_time_seconds=12)

    assert spacing.next_rep_date == start_of_day_ms(NOW) + 3 * DAY
    entry = spacing.history[-1]
    assert entry.event_type == EventType.RESCHEDULED_IN_QUEUE
    assert entry.review_time_seconds == 12
    assert counts_as_review(entry)


def test_reschedule_in_editor_is_not_a_review():
    item = IncrementalItem("a", NOW, 10, [])
    spacing = scheduler.reschedule_in_editor(item, NOW + 5 * DAY, NOW)

    assert spacing.next_rep_date == NOW + 5 * DAY
    assert spacing.interval == 5
    assert spacing.history[-1].queue_mode == "editor"
    assert not counts_as_review(spacing.history[-1])


def test_manual_date_reset_records_old_date():
    item = IncrementalItem("a", NOW + 7 * DAY, 10, [])
    spacing = scheduler.manual_date_reset(item, NOW + DAY, NOW + 7 * DAY, NOW)

    entry = spacing.history[-1]
    assert isinstance(entry, ManualReset)
    assert entry.scheduled == NOW + DAY
    assert spacing.interval == 7


def test_execute_repetition_uses_chosen_interval():
    item = IncrementalItem("a", NOW - DAY, 10, [])
    spacing = scheduler.execute_repetition(item, 6, NOW, review_time_seconds=30)

    assert spacing.next_rep_date == NOW + 6 * DAY
    entry = spacing.history[-1]
    assert entry.event_type == EventType.EXECUTE_REPETITION
    assert entry.days_early_or_late == 1.0
    assert entry.was_early is False
