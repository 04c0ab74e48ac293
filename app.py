"""
Medical Courier Dispatch - Operations Dashboard
===============================================

Dashboard for the automated dispatch engine.

Features:
- Auto-dispatch controls (enable/disable, interval, Run Now)
- Dispatch settings (method, urgency, max distance)
- Pending deliveries, fleet and cycle log tables
- Stuck delivery detection and reset
- Traffic incidents and rerouting
"""

import asyncio
import os
import threading
from typing import Any, Coroutine, List

import pandas as pd
import streamlit as st

from courier_dispatch import config
from courier_dispatch.console import DispatchConsole
from courier_dispatch.datastore import InMemoryDataStore
from courier_dispatch.models import DispatchMethod, Severity
from courier_dispatch.reroute import estimate_delay
from courier_dispatch.rest import RestDataStore
from courier_dispatch.utils import format_clock

# =============================================================================
# PAGE CONFIG
# =============================================================================

st.set_page_config(
    page_title="Courier Dispatch",
    page_icon="🚑",
    layout="wide",
    initial_sidebar_state="expanded"
)

# =============================================================================
# CUSTOM STYLING
# =============================================================================

st.markdown("""
<style>
    .main .block-container {
        padding-top: 2rem;
        padding-bottom: 2rem;
    }

    .kpi-card {
        background: linear-gradient(135deg, #0f766e 0%, #14b8a6 100%);
        border-radius: 16px;
        padding: 1.25rem;
        color: white;
        text-align: center;
        box-shadow: 0 10px 30px rgba(15, 118, 110, 0.25);
    }

    .kpi-card.grey {
        background: linear-gradient(135deg, #475569 0%, #94a3b8 100%);
        box-shadow: 0 10px 30px rgba(71, 85, 105, 0.25);
    }

    .kpi-card.red {
        background: linear-gradient(135deg, #b91c1c 0%, #f87171 100%);
        box-shadow: 0 10px 30px rgba(185, 28, 28, 0.25);
    }

    .kpi-value {
        font-size: 2.2rem;
        font-weight: 800;
        margin: 0.4rem 0;
    }

    .kpi-label {
        font-size: 0.85rem;
        opacity: 0.9;
        text-transform: uppercase;
        letter-spacing: 1px;
    }

    .section-header {
        font-size: 1.4rem;
        font-weight: 700;
        color: #1e293b;
        margin: 2rem 0 1rem 0;
        padding-bottom: 0.5rem;
        border-bottom: 3px solid #14b8a6;
    }

    #MainMenu {visibility: hidden;}
    footer {visibility: hidden;}
</style>
""", unsafe_allow_html=True)

# =============================================================================
# ENGINE HOSTING
# =============================================================================

DELIVERIES_FILE = "data/deliveries.csv"
DRIVERS_FILE = "data/drivers.csv"

SEVERITY_ICONS = {Severity.HIGH: "🔴", Severity.MEDIUM: "🟠", Severity.LOW: "🟡"}


class EngineHost:
    """Runs the dispatch console on a background event loop thread."""

    def __init__(self, console: DispatchConsole):
        self.console = console
        self.loop = asyncio.new_event_loop()
        self.thread = threading.Thread(target=self.loop.run_forever, daemon=True)
        self.thread.start()

    def run(self, coro: Coroutine) -> Any:
        """Run a coroutine on the engine loop and wait for its result."""
        return asyncio.run_coroutine_threadsafe(coro, self.loop).result(timeout=30)

    def call(self, fn, *args, **kwargs) -> Any:
        """Call a sync console method from inside the engine loop."""
        async def _call():
            return fn(*args, **kwargs)
        return self.run(_call())


@st.cache_resource(show_spinner=False)
def get_host(use_rest: bool) -> EngineHost:
    """Build the store and console once per server process."""
    if use_rest:
        store = RestDataStore()
    else:
        store = InMemoryDataStore.load_csv(DELIVERIES_FILE, DRIVERS_FILE)
    return EngineHost(DispatchConsole(store))


# =============================================================================
# SIDEBAR
# =============================================================================

def render_sidebar(host: EngineHost) -> None:
    """Render dispatch controls and settings."""
    console = host.console

    st.sidebar.markdown("## 🎛️ Auto-Dispatch")
    st.sidebar.markdown("---")

    state = console.schedule_state()
    enabled = st.sidebar.toggle("Automated dispatch", value=state.enabled)
    if enabled != state.enabled:
        if enabled:
            host.call(console.enable_auto_dispatch)
            st.sidebar.success("Automated dispatch enabled")
        else:
            host.call(console.disable_auto_dispatch)
            st.sidebar.info("Automated dispatch disabled")

    interval = st.sidebar.slider(
        "Dispatch interval (seconds)",
        min_value=int(config.MIN_DISPATCH_INTERVAL_SECONDS),
        max_value=int(config.MAX_DISPATCH_INTERVAL_SECONDS),
        value=int(state.interval_seconds),
        step=5,
    )
    if interval != int(state.interval_seconds):
        host.call(console.set_dispatch_interval, interval)

    if st.sidebar.button("▶️ Run Now", use_container_width=True):
        summary = host.run(console.run_cycle())
        st.sidebar.info(summary.notification)

    st.sidebar.markdown("---")
    st.sidebar.markdown("### ⚙️ Dispatch Settings")

    settings = console.settings
    methods = [m.value for m in DispatchMethod]
    method = st.sidebar.selectbox(
        "Dispatch method",
        methods,
        index=methods.index(settings.dispatch_method.value),
        help="proximity: nearest courier | balanced: round robin | efficiency: rotation or cost",
    )
    prioritize = st.sidebar.checkbox("Prioritize urgent deliveries", value=settings.prioritize_urgent)
    max_distance = st.sidebar.slider("Max distance (miles)", 1, 20, int(settings.max_distance))

    if (method, prioritize, max_distance) != (
        settings.dispatch_method.value, settings.prioritize_urgent, int(settings.max_distance)
    ):
        console.update_settings(
            dispatch_method=DispatchMethod(method),
            prioritize_urgent=prioritize,
            max_distance=float(max_distance),
        )

    st.sidebar.markdown("---")
    st.sidebar.markdown("### 🚦 Rerouting")
    advisor = console.advisor
    advisor.automatic_rerouting = st.sidebar.checkbox(
        "Automatic rerouting", value=advisor.automatic_rerouting,
        help="Reroute deliveries when delays exceed the threshold",
    )
    advisor.delay_threshold_mins = st.sidebar.number_input(
        "Delay threshold (minutes)", min_value=0, max_value=120,
        value=int(advisor.delay_threshold_mins),
    )


# =============================================================================
# KPI DISPLAY
# =============================================================================

def render_kpi_row(host: EngineHost, stuck_count: int) -> None:
    """Render the scheduler KPI cards."""
    state = host.console.schedule_state()
    last = state.last_cycle_summary

    col1, col2, col3, col4 = st.columns(4)

    with col1:
        css = "kpi-card" if state.enabled else "kpi-card grey"
        st.markdown(f"""
        <div class="{css}">
            <div class="kpi-label">Scheduler</div>
            <div class="kpi-value">{state.status.value.title()}</div>
            <div>every {state.interval_seconds:g}s</div>
        </div>
        """, unsafe_allow_html=True)

    with col2:
        st.markdown(f"""
        <div class="kpi-card">
            <div class="kpi-label">Next Run</div>
            <div class="kpi-value">{state.countdown or "Off"}</div>
            <div>{format_clock(state.next_run_at)}</div>
        </div>
        """, unsafe_allow_html=True)

    with col3:
        st.markdown(f"""
        <div class="kpi-card">
            <div class="kpi-label">Dispatched Since Enable</div>
            <div class="kpi-value">{state.cumulative_dispatch_count}</div>
            <div>{last.notification if last else "No cycle yet"}</div>
        </div>
        """, unsafe_allow_html=True)

    with col4:
        css = "kpi-card red" if stuck_count else "kpi-card grey"
        st.markdown(f"""
        <div class="{css}">
            <div class="kpi-label">Need Manual Reset</div>
            <div class="kpi-value">{stuck_count}</div>
            <div>in progress, no driver</div>
        </div>
        """, unsafe_allow_html=True)


# =============================================================================
# TABLES
# =============================================================================

def deliveries_frame(deliveries: List[Any]) -> pd.DataFrame:
    return pd.DataFrame([{
        "ID": d.id,
        "Status": d.status.value,
        "Priority": d.priority.value,
        "Approved": "✅" if d.is_approved else "",
        "Package": d.package_type,
        "Pickup": d.pickup_location,
        "Delivery": d.delivery_location,
        "Driver": d.assigned_driver or "",
    } for d in deliveries])


def drivers_frame(drivers: List[Any]) -> pd.DataFrame:
    return pd.DataFrame([{
        "ID": d.id,
        "Name": d.name,
        "Status": d.status,
        "Vehicle": d.vehicle_type,
        "Rating": d.rating,
        "Current Delivery": d.current_delivery or "",
    } for d in drivers])


def render_dispatch_tables(host: EngineHost) -> None:
    """Render pending work, fleet and the cycle log."""
    console = host.console

    pending = host.run(console.store.list_pending_deliveries())
    drivers = host.run(console.store.list_eligible_drivers())

    st.markdown('<div class="section-header">📦 Pending Deliveries</div>', unsafe_allow_html=True)
    if pending:
        st.dataframe(deliveries_frame(pending), use_container_width=True, hide_index=True)
    else:
        st.info("No pending deliveries")

    st.markdown('<div class="section-header">🚗 Available Drivers</div>', unsafe_allow_html=True)
    if drivers:
        st.dataframe(drivers_frame(drivers), use_container_width=True, hide_index=True)
    else:
        st.info("No available drivers")

    st.markdown('<div class="section-header">🧾 Dispatch Log</div>', unsafe_allow_html=True)
    summaries = list(console.cycle_summaries)
    if summaries:
        df = pd.DataFrame([s.to_dict() for s in reversed(summaries)])
        st.dataframe(df, use_container_width=True, hide_index=True)
    else:
        st.caption("No dispatch cycles have run yet")

    events = list(console.assignment_events)
    if events:
        with st.expander(f"Assignment events ({len(events)})"):
            st.dataframe(pd.DataFrame([{
                "Time": e.timestamp.strftime("%H:%M:%S"),
                "Delivery": e.request_id,
                "Driver": e.driver_id,
                "Outcome": e.outcome.value,
                "Detail": e.detail,
            } for e in reversed(events)]), use_container_width=True, hide_index=True)


def render_stuck_deliveries(host: EngineHost, stuck: List[Any]) -> None:
    """List partially committed deliveries with a reset button each."""
    if not stuck:
        return
    st.markdown('<div class="section-header">⚠️ Deliveries Needing Reset</div>', unsafe_allow_html=True)
    st.warning("These deliveries were marked in progress but no driver was linked.")
    for delivery in stuck:
        col1, col2 = st.columns([4, 1])
        col1.write(f"**{delivery.id}**: {delivery.pickup_location} → {delivery.delivery_location}")
        if col2.button("Reset to pending", key=f"reset-{delivery.id}"):
            if host.run(host.console.reset_delivery(delivery.id)):
                st.rerun()
            else:
                st.warning(f"{delivery.id} is no longer stuck; nothing was reset")


# =============================================================================
# REROUTING
# =============================================================================

def render_rerouting(host: EngineHost) -> None:
    """Render traffic incidents, affected deliveries and reroute history."""
    console = host.console

    st.markdown('<div class="section-header">🚦 Traffic & Rerouting</div>', unsafe_allow_html=True)

    col1, col2 = st.columns([3, 1])
    with col2:
        if st.button("🔄 Refresh traffic", use_container_width=True):
            console.refresh_incidents()
            st.success("Traffic data updated successfully")
        if st.button("🧭 Batch reroute", use_container_width=True):
            records = host.run(console.batch_reroute())
            if records:
                st.success(f"Successfully rerouted {len(records)} deliveries")
            else:
                st.info("No deliveries require rerouting")

    with col1:
        incidents = console.traffic_incidents()
        if not incidents:
            st.info("No traffic issues to report. All routes are clear.")
        for incident in incidents:
            st.markdown(
                f"{SEVERITY_ICONS.get(incident.severity, '🟠')} **{incident.location}**: "
                f"{incident.type}, {incident.impact} ({incident.affected_deliveries} affected, "
                f"{incident.reported_at})"
            )

    affected = host.run(console.affected_deliveries())
    if not affected:
        st.caption("No deliveries require rerouting at this time")
    for index, delivery in enumerate(affected):
        estimate = estimate_delay(index)
        col1, col2 = st.columns([4, 1])
        col1.write(
            f"**{delivery.id}**: +{estimate.delay_mins} min ({estimate.issue_type}), "
            f"{estimate.alternative_route} saves ~{estimate.saved_mins} min "
            f"(+{estimate.additional_distance_miles} mi)"
        )
        if col2.button("Reroute", key=f"reroute-{delivery.id}"):
            host.run(console.reroute(delivery.id))
            st.rerun()

    history = console.advisor.history
    if history:
        st.dataframe(pd.DataFrame([{
            "Delivery": r.delivery_id,
            "Original ETA": r.original_eta,
            "New ETA": r.new_eta,
            "Reason": r.reason,
            "Rerouted At": r.timestamp,
        } for r in history]), use_container_width=True, hide_index=True)


# =============================================================================
# MAIN
# =============================================================================

def main() -> None:
    st.title("🚑 Medical Courier Dispatch")

    use_rest = bool(config.DATASTORE_URL)
    if not use_rest and not (os.path.exists(DELIVERIES_FILE) and os.path.exists(DRIVERS_FILE)):
        st.error("No data found. Set DATASTORE_URL or add data/deliveries.csv and data/drivers.csv.")
        return

    try:
        host = get_host(use_rest)
    except (OSError, ValueError) as e:
        st.error(f"Failed to load data: {e}")
        return

    render_sidebar(host)

    stuck = host.run(host.console.stuck_deliveries())
    render_kpi_row(host, len(stuck))
    if st.button("↻ Refresh"):
        st.rerun()

    summaries = list(host.console.cycle_summaries)
    seen = st.session_state.get("seen_cycles", 0)
    for summary in summaries[seen:][-3:]:
        st.toast(summary.notification)
    st.session_state["seen_cycles"] = len(summaries)

    render_stuck_deliveries(host, stuck)
    render_dispatch_tables(host)
    render_rerouting(host)

    st.markdown("---")
    st.markdown("""
    <div style="text-align: center; color: #888; padding: 1rem;">
        Medical Courier Dispatch | Operations Console
    </div>
    """, unsafe_allow_html=True)


if __name__ == "__main__":
    main()
