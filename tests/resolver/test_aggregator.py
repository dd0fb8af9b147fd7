"""Tests for :mod:`plugscan.resolver.aggregator`."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

from plugscan.resolver.aggregator import ResultAggregator


class First:
    pass


class Second:
    pass


def test_add_collapses_duplicates_by_identity() -> None:
    aggregator: ResultAggregator[type] = ResultAggregator()

    assert aggregator.add(First) is True
    assert aggregator.add(First) is False
    assert aggregator.add(Second) is True

    assert aggregator.snapshot() == frozenset({First, Second})
    assert len(aggregator) == 2
    assert First in aggregator


def test_update_reports_new_items_only() -> None:
    aggregator = ResultAggregator([First])

    assert aggregator.update([First, Second, Second]) == 1
    assert aggregator.snapshot() == frozenset({First, Second})


def test_snapshot_is_detached_from_later_additions() -> None:
    aggregator: ResultAggregator[type] = ResultAggregator()
    aggregator.add(First)

    snapshot = aggregator.snapshot()
    aggregator.add(Second)
    aggregator.clear()

    assert snapshot == frozenset({First})
    assert len(aggregator) == 0


def test_concurrent_adds_keep_one_entry_per_item() -> None:
    aggregator: ResultAggregator[int] = ResultAggregator()
    items = [index % 50 for index in range(5_000)]

    with ThreadPoolExecutor(max_workers=8) as executor:
        added = sum(executor.map(aggregator.add, items))

    assert added == 50
    assert aggregator.snapshot() == frozenset(range(50))
