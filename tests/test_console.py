"""
Tests for the dispatch console facade wiring everything together
"""
import asyncio

from courier_dispatch.console import DispatchConsole
from courier_dispatch.models import (
    CommitOutcome,
    CycleOutcome,
    DeliveryStatus,
    DispatchMethod,
    SchedulerStatus,
)
from courier_dispatch.reroute import RerouteAdvisor

from conftest import FlakyDataStore, make_driver, make_request


def console_for(store, **kwargs):
    kwargs.setdefault("pacing_seconds", 0)
    kwargs.setdefault("advisor", RerouteAdvisor(pacing_seconds=0))
    return DispatchConsole(store, **kwargs)


def test_run_cycle_records_summary_events_and_notification(store):
    console = console_for(store)

    summary = asyncio.run(console.run_cycle())

    assert summary.outcome == CycleOutcome.COMPLETED
    assert list(console.cycle_summaries) == [summary]
    assert list(console.notifications) == ["Auto-dispatch completed: 2 of 2 deliveries assigned"]
    assert [e.outcome for e in console.assignment_events] == [CommitOutcome.COMMITTED] * 2
    assert console.schedule_state().cumulative_dispatch_count == 2


def test_cycle_listeners_are_called_and_isolated(store):
    console = console_for(store)
    seen = []

    def broken(summary):
        raise RuntimeError("listener bug")

    console.add_cycle_listener(broken)
    console.add_cycle_listener(seen.append)

    asyncio.run(console.run_cycle())

    assert len(seen) == 1


def test_enable_auto_dispatch_runs_immediately_and_arms(store):
    console = console_for(store)

    async def scenario():
        state = console.enable_auto_dispatch()
        await console.scheduler.wait_idle()
        armed = console.schedule_state()
        await console.shutdown()
        return state, armed

    state, armed = asyncio.run(scenario())

    assert state.enabled
    assert armed.status == SchedulerStatus.ARMED
    assert armed.cumulative_dispatch_count == 2
    assert len(console.cycle_summaries) == 1
    assert console.schedule_state().status == SchedulerStatus.DISABLED


def test_disable_auto_dispatch_clears_next_run(store):
    async def scenario():
        console = console_for(store)
        console.enable_auto_dispatch(run_immediately=False)
        return console.disable_auto_dispatch()

    state = asyncio.run(scenario())

    assert not state.enabled
    assert state.next_run_at is None


def test_manual_run_resolves_to_summary(store):
    async def scenario():
        console = console_for(store)
        return await console.trigger_manual_run()

    assert asyncio.run(scenario()).committed == 2


def test_update_settings_switches_method(store):
    console = console_for(store)

    settings = console.update_settings(dispatch_method="balanced", max_distance=5)

    assert settings.dispatch_method == DispatchMethod.BALANCED
    assert console.engine.settings.max_distance == 5


def test_stuck_delivery_can_be_reset_and_redispatched(store):
    store.fail_assign_for.add("req-u1")
    console = console_for(store)

    async def scenario():
        await console.run_cycle()
        stuck = await console.stuck_deliveries()
        reset = await console.reset_delivery("req-u1")
        store.fail_assign_for.clear()
        after_reset = await console.stuck_deliveries()
        retry = await console.run_cycle()
        return stuck, reset, after_reset, retry

    stuck, reset, after_reset, retry = asyncio.run(scenario())

    assert [d.id for d in stuck] == ["req-u1"]
    assert reset is True
    assert after_reset == []
    assert retry.committed == 1
    assert store.deliveries["req-u1"].status == DeliveryStatus.IN_PROGRESS
    assert "need manual reset" in console.notifications[0]


def test_reroute_by_id_only_for_active_deliveries():
    store = FlakyDataStore(
        deliveries=[
            make_request("req-1", status=DeliveryStatus.IN_PROGRESS, assigned_driver="drv-1"),
            make_request("req-2"),
        ],
        drivers=[make_driver("drv-1", current_delivery="req-1")],
    )
    console = console_for(store)

    record = asyncio.run(console.reroute("req-1"))
    missing = asyncio.run(console.reroute("req-2"))

    assert record is not None and record.delivery_id == "req-1"
    assert missing is None
    assert asyncio.run(console.affected_deliveries()) == []


def test_batch_reroute_uses_active_deliveries():
    store = FlakyDataStore(
        deliveries=[
            make_request(f"req-{i}", status=DeliveryStatus.IN_PROGRESS, assigned_driver=f"drv-{i}")
            for i in range(3)
        ],
        drivers=[],
    )
    console = console_for(store)

    records = asyncio.run(console.batch_reroute())

    assert [r.delivery_id for r in records] == ["req-0", "req-2"]
    assert len(console.traffic_incidents()) == 3


def test_reset_refuses_a_delivery_that_is_not_stuck(store):
    console = console_for(store)

    async def scenario():
        await console.run_cycle()
        return await console.reset_delivery("req-u1")

    reset = asyncio.run(scenario())

    assert reset is False
    delivery = store.deliveries["req-u1"]
    assert delivery.status == DeliveryStatus.IN_PROGRESS
    driver_id = delivery.assigned_driver
    assert driver_id is not None
    assert store.drivers[driver_id].current_delivery == "req-u1"


def test_tracking_failure_after_link_is_not_reported_as_stuck(store):
    store.fail_after_link_for.add("req-u1")
    console = console_for(store)

    async def scenario():
        summary = await console.run_cycle()
        return summary, await console.stuck_deliveries()

    summary, stuck = asyncio.run(scenario())

    assert summary.committed == 2
    assert stuck == []
    assert console.notifications[0] == "Auto-dispatch completed: 2 of 2 deliveries assigned"
    assert "manual reset" not in console.notifications[0]
