"""
Tests for the batch dispatch coordinator: full cycles, races, failures and caching
"""
import asyncio

import pytest

from courier_dispatch.committer import AssignmentCommitter
from courier_dispatch.coordinator import BatchDispatchCoordinator
from courier_dispatch.matching import MatchingEngine
from courier_dispatch.models import CycleOutcome, CycleTrigger, DeliveryStatus, DispatchSettings

from conftest import FlakyDataStore, make_driver, make_request


def build(store, counter=None, settings=None, notifier=None):
    committer = AssignmentCommitter(store, counter=counter)
    return BatchDispatchCoordinator(
        store,
        engine=MatchingEngine(settings),
        committer=committer,
        notifier=notifier,
        pacing_seconds=0,
    )


def run(coordinator, trigger=CycleTrigger.MANUAL):
    return asyncio.run(coordinator.run_cycle(trigger))


def test_full_cycle_commits_two_with_approved_urgent_first(store, counter):
    """3 pending (1 urgent+approved, 2 normal), 2 drivers: exactly 2 commits, urgent first"""
    notes = []
    summary = run(build(store, counter, notifier=notes.append))

    assert summary.outcome == CycleOutcome.COMPLETED
    assert summary.committed == 2
    assert summary.attempted == 2
    assert summary.committed_pairs[0].request_id == "req-u1"
    assert store.committed_pairs() == {"req-u1": "drv-a", "req-n1": "drv-b"}
    assert store.deliveries["req-n2"].status == DeliveryStatus.PENDING
    assert counter.count == 2
    assert len(notes) == 1
    assert notes[0].notification == "Auto-dispatch completed: 2 of 2 deliveries assigned"


def test_commits_are_sequential_and_ordered(store):
    run(build(store))

    links = [c for c in store.calls if c[0] == "assign_driver"]
    assert links == [("assign_driver", "drv-a", "req-u1"), ("assign_driver", "drv-b", "req-n1")]


def test_race_on_driver_skips_entry_and_continues():
    """A driver taken between snapshot and commit is skipped; the cycle keeps going"""
    store = FlakyDataStore(
        deliveries=[make_request("req-1"), make_request("req-2"), make_request("req-3")],
        drivers=[make_driver("drv-a"), make_driver("drv-b")],
    )

    def someone_else_takes_drv_a(driver_id):
        if driver_id == "drv-a":
            store.drivers["drv-a"].current_delivery = "req-outside"

    store.before_get_driver = someone_else_takes_drv_a

    summary = run(build(store))

    assert summary.skipped == 1
    assert summary.committed == 1
    assert store.committed_pairs() == {"req-2": "drv-b"}
    assert summary.outcome == CycleOutcome.COMPLETED


def test_stale_driver_is_replaced_from_spare_pool():
    """Drivers not reserved by the plan are used to re-match a request whose driver went stale"""
    store = FlakyDataStore(
        deliveries=[make_request("req-1", priority="urgent", approved=True)],
        drivers=[make_driver("drv-a"), make_driver("drv-spare")],
    )

    def race(driver_id):
        if driver_id == "drv-a":
            store.drivers["drv-a"].current_delivery = "req-outside"

    store.before_get_driver = race

    summary = run(build(store))

    assert summary.skipped == 1
    assert summary.committed == 1
    assert summary.attempted == 2
    assert store.committed_pairs() == {"req-1": "drv-spare"}


def test_stale_request_releases_its_driver():
    """A request that disappeared frees its driver for a later re-match"""
    store = FlakyDataStore(
        deliveries=[make_request("req-1"), make_request("req-2")],
        drivers=[make_driver("drv-a"), make_driver("drv-b")],
    )
    calls = []

    def race(driver_id):
        calls.append(driver_id)
        if driver_id == "drv-b":
            store.drivers["drv-b"].status = "inactive"

    store.before_get_driver = race
    original_get_delivery = store.get_delivery

    async def get_delivery(delivery_id):
        if delivery_id == "req-1":
            store.deliveries["req-1"].status = DeliveryStatus.DECLINED
        return await original_get_delivery(delivery_id)

    store.get_delivery = get_delivery

    summary = run(build(store))

    # req-1 stale -> drv-a spare; req-2 with drv-b stale -> re-matched to drv-a
    assert store.committed_pairs() == {"req-2": "drv-a"}
    assert summary.skipped == 2
    assert summary.committed == 1


def test_no_work_is_reported_not_raised():
    store = FlakyDataStore(deliveries=[make_request("req-1")], drivers=[])

    summary = run(build(store))

    assert summary.outcome == CycleOutcome.NO_WORK
    assert summary.notification == "Auto-dispatch: No pending deliveries or available drivers"


def test_both_reads_failing_without_cache_is_a_missed_cycle(store):
    store.fail_reads.update({"list_pending_deliveries", "list_eligible_drivers"})
    notes = []

    summary = run(build(store, notifier=notes.append))

    assert summary.outcome == CycleOutcome.MISSED
    assert summary.error
    assert notes[0].notification == "Auto-dispatch failed: Couldn't fetch or use any data"


def test_failed_read_falls_back_to_cached_snapshot():
    store = FlakyDataStore(deliveries=[make_request("req-1")], drivers=[])
    coordinator = build(store)

    async def scenario():
        first = await coordinator.run_cycle()
        store.add_driver(make_driver("drv-a"))
        store.fail_reads.add("list_pending_deliveries")
        second = await coordinator.run_cycle()
        return first, second

    first, second = asyncio.run(scenario())

    assert first.outcome == CycleOutcome.NO_WORK
    assert second.outcome == CycleOutcome.COMPLETED
    assert store.committed_pairs() == {"req-1": "drv-a"}


def test_one_failed_read_without_cache_is_not_missed(store):
    store.fail_reads.add("list_eligible_drivers")

    summary = run(build(store))

    assert summary.outcome == CycleOutcome.NO_WORK


def test_first_write_failure_is_aggregated(store):
    store.fail_status_for.add("req-u1")

    summary = run(build(store))

    assert summary.failed == 1
    assert summary.committed == 1
    assert store.deliveries["req-u1"].status == DeliveryStatus.PENDING


def test_partial_commit_is_listed_in_summary(store):
    store.fail_assign_for.add("req-u1")

    summary = run(build(store))

    assert summary.partial_commits == ["req-u1"]
    assert summary.committed == 1
    assert summary.notification == "Auto-dispatch completed: 1 of 2 deliveries assigned (1 need manual reset)"


def test_unexpected_committer_error_does_not_abort_cycle(store):
    coordinator = build(store)
    original = coordinator.committer.commit

    async def flaky_commit(entry):
        if entry.request_id == "req-u1":
            raise RuntimeError("boom")
        return await original(entry)

    coordinator.committer.commit = flaky_commit

    summary = run(coordinator)

    assert summary.failed == 1
    assert summary.committed == 1


def test_pacing_separates_commits(store, monkeypatch):
    delays = []
    real_sleep = asyncio.sleep

    async def fake_sleep(seconds):
        delays.append(seconds)
        await real_sleep(0)

    monkeypatch.setattr("courier_dispatch.coordinator.asyncio.sleep", fake_sleep)
    coordinator = build(store)
    coordinator.pacing_seconds = 0.1

    run(coordinator)

    assert delays == [0.1], "one pause between two commits, none after the last"


@pytest.mark.parametrize("trigger", ["manual", "scheduled"])
def test_trigger_is_recorded(store, trigger):
    assert run(build(store), trigger).trigger == CycleTrigger(trigger)
