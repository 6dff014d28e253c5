from dataclasses import dataclass

from increm.application.percentile import (
    calculate_all_percentiles,
    fine_percentile,
    percentile,
    round_half_up,
)


@dataclass
class P:
    id: str
    priority: int


def test_round_half_up_rounds_halves_up():
    assert round_half_up(2.5) == 3
    assert round_half_up(3.5) == 4
    assert round_half_up(-0.5) == 0
    assert round_half_up(2.25, 1) == 2.3


def test_percentile_basic():
    items = [P("a", 30), P("b", 10), P("c", 20)]
    assert percentile(items, "b") == 33
    assert percentile(items, "c") == 67
    assert percentile(items, "a") == 100


def test_percentile_missing_or_empty():
    assert percentile([], "a") is None
    assert percentile([P("a", 1)], "zzz") is None
    assert fine_percentile([], "a") is None


def test_fine_percentile_one_decimal():
    items = [P("a", 10), P("b", 20), P("c", 30)]
    assert fine_percentile(items, "a") == 33.3
    assert fine_percentile(items, "b") == 66.7
    assert fine_percentile(items, "c") == 100.0


def test_ties_keep_original_order():
    items = [P("first", 5), P("second", 5), P("third", 5), P("fourth", 5)]
    assert percentile(items, "first") == 25
    assert percentile(items, "fourth") == 100


def test_percentile_is_monotonic_in_priority():
    items = [P(f"n{i}", (i * 37) % 101) for i in range(60)]
    ranks = calculate_all_percentiles(items)
    for a in items:
        for b in items:
            if a.priority < b.priority:
                assert ranks[a.id] <= ranks[b.id]


def test_calculate_all_matches_single_lookups():
    items = [P("a", 40), P("b", 0), P("c", 100), P("d", 40)]
    ranks = calculate_all_percentiles(items)
    assert ranks == {i.id: percentile(items, i.id) for i in items}
