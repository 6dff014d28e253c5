import json

import pytest

from increm.domain.errors import MalformedPersistedData
from increm.domain.history import (
    EventType,
    LifecycleMarker,
    ManualReset,
    Repetition,
    Reschedule,
    dump_history,
    history_to_json,
    parse_history,
)


def _mixed_history():
    return [
        LifecycleMarker(1000, 1000, EventType.MADE_INCREMENTAL),
        Repetition(
            2000,
            1500,
            interval=2,
            review_time_seconds=30,
            was_early=False,
            days_early_or_late=0.5,
            priority=20,
            queue_mode="srs",
        ),
        Reschedule(3000, 2500, interval=4, event_type=EventType.RESCHEDULED_IN_EDITOR),
        ManualReset(4000, 3500, interval=1),
        Repetition(5000, 5000, interval=6, event_type=EventType.EXECUTE_REPETITION),
        LifecycleMarker(6000, 6000, EventType.DISMISSED),
    ]


def test_history_round_trip_is_lossless():
    history = _mixed_history()
    assert parse_history(history_to_json(history)) == history


def test_plain_repetition_has_no_event_tag():
    record = dump_history([Repetition(1, 1, interval=2)])[0]
    assert record == {"date": 1, "scheduled": 1, "interval": 2}


def test_records_use_camel_case():
    record = dump_history([Repetition(1, 1, review_time_seconds=5, was_early=True)])[0]
    assert record["reviewTimeSeconds"] == 5
    assert record["wasEarly"] is True


def test_parse_accepts_rich_text_wrapped_json():
    raw = [json.dumps([{"date": 1, "scheduled": 2}])]
    assert parse_history(raw) == [Repetition(1, 2)]


def test_parse_empty_values():
    assert parse_history(None) == []
    assert parse_history("") == []
    assert parse_history("null") == []


def test_unknown_fields_are_ignored():
    raw = [{"date": 1, "scheduled": 2, "somethingNew": True}]
    assert parse_history(raw) == [Repetition(1, 2)]


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        [{"date": "yesterday", "scheduled": 1}],
        [{"scheduled": 1}],
        [{"date": 1, "scheduled": 1, "priority": 500}],
        {"date": 1},
    ],
)
def test_malformed_history_raises(raw):
    with pytest.raises(MalformedPersistedData) as exc:
        parse_history(raw, "node-1")
    assert exc.value.item_id == "node-1"
