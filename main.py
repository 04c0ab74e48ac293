#!/usr/bin/env python3
# courier-dispatch/main.py
"""
Command-Line Interface for the Medical Courier Dispatch Engine.

Runs dispatch cycles against the bundled CSV data (or a hosted store) without
the dashboard.

Usage:
    python main.py                              # One manual dispatch cycle
    python main.py --method balanced            # Choose the dispatch method
    python main.py --duration 60 --interval 15  # Auto-dispatch for a minute
    python main.py --reroute                    # Also batch reroute afterwards
    python main.py --rest                       # Use DATASTORE_URL instead of CSV
    python main.py --verbose                    # Show debug logging

Exit Codes:
    0: Success
    1: Data loading error
    2: Dispatch error
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from typing import List, Optional

from courier_dispatch import config
from courier_dispatch.console import DispatchConsole
from courier_dispatch.datastore import DataStore, InMemoryDataStore
from courier_dispatch.models import CycleOutcome, CycleSummary, DispatchMethod, DispatchSettings
from courier_dispatch.rest import RestDataStore
from courier_dispatch.scoring import COST_FUNCTIONS, get_cost_function
from courier_dispatch.utils import short_id


DEFAULT_DELIVERIES_FILE = "data/deliveries.csv"
DEFAULT_DRIVERS_FILE = "data/drivers.csv"

AVAILABLE_METHODS = [method.value for method in DispatchMethod]


def print_header() -> None:
    """Print the CLI header."""
    print("\n" + "=" * 60)
    print("  MEDICAL COURIER DISPATCH")
    print("  Automated Assignment & Scheduling")
    print("=" * 60 + "\n")


def print_summary_table(summaries: List[CycleSummary]) -> None:
    """
    Print one row per dispatch cycle.

    Args:
        summaries: Cycle summaries in the order they finished
    """
    columns = ["Started", "Trigger", "Outcome", "Attempted", "Committed", "Skipped", "Failed", "Partial"]

    print("\n" + "=" * 60)
    print("  DISPATCH CYCLES")
    print("=" * 60 + "\n")

    print("|" + "|".join(f" {col:^9} " for col in columns) + "|")
    print("|" + "|".join("-" * 11 for _ in columns) + "|")
    for summary in summaries:
        row = summary.to_dict()
        print("|" + "|".join(f" {str(row[col]):^9} " for col in columns) + "|")

    total = sum(s.committed for s in summaries)
    print(f"\n  Total assignments: {total}")
    print("=" * 60 + "\n")


def load_store_safe(args: argparse.Namespace) -> Optional[DataStore]:
    """
    Build the data store with graceful error handling.

    Returns:
        A DataStore, or None if it could not be created
    """
    if args.rest:
        try:
            store = RestDataStore()
        except ValueError as e:
            print(f"ERROR: {e}")
            return None
        print(f"Using hosted data store at {store.base_url}")
        return store

    for path in (args.deliveries, args.drivers):
        if not os.path.exists(path):
            print(f"ERROR: Data file not found: {path}")
            print("Please ensure the data/ directory contains deliveries.csv and drivers.csv.")
            return None

    try:
        store = InMemoryDataStore.load_csv(args.deliveries, args.drivers, conditional_assign=args.conditional)
    except (OSError, ValueError) as e:
        print(f"ERROR: Failed to load data: {e}")
        return None

    print(f"Loaded {len(store.deliveries)} deliveries and {len(store.drivers)} drivers")
    return store


async def run_dispatch(console: DispatchConsole, args: argparse.Namespace) -> List[CycleSummary]:
    """Run one manual cycle, or auto-dispatch for `args.duration` seconds."""
    console.add_cycle_listener(lambda summary: print(f"  {summary.notification}"))
    console.add_assignment_listener(
        lambda event: print(f"    {event.outcome.value:<9} {short_id(event.request_id, 10)} -> {event.driver_id}")
    )

    try:
        if args.duration > 0:
            console.set_dispatch_interval(args.interval)
            console.enable_auto_dispatch()
            await asyncio.sleep(args.duration)
        else:
            await console.trigger_manual_run()
    finally:
        await console.shutdown()

    if args.reroute:
        records = await console.batch_reroute()
        for record in records:
            print(f"  Rerouted {record.delivery_id}: new ETA {record.new_eta} ({record.reason})")

    stuck = await console.stuck_deliveries()
    if stuck:
        print(f"\n  WARN: {len(stuck)} deliveries need a manual reset to pending:")
        for delivery in stuck:
            print(f"    - {delivery.id}")

    return list(console.cycle_summaries)


def main() -> int:
    """
    Main entry point for the CLI.

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    parser = argparse.ArgumentParser(
        description="Medical Courier Dispatch CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py                               # One manual cycle on the CSV data
  python main.py --method efficiency --cost preference
  python main.py --duration 45 --interval 10   # Auto-dispatch for 45 seconds
        """
    )

    parser.add_argument("--deliveries", default=DEFAULT_DELIVERIES_FILE,
                        help=f"Deliveries CSV (default: {DEFAULT_DELIVERIES_FILE})")
    parser.add_argument("--drivers", default=DEFAULT_DRIVERS_FILE,
                        help=f"Drivers CSV (default: {DEFAULT_DRIVERS_FILE})")
    parser.add_argument("--rest", action="store_true",
                        help="Use the hosted store configured by DATASTORE_URL / DATASTORE_API_KEY")
    parser.add_argument("--conditional", action="store_true",
                        help="Let the in-memory store perform conditional assignments")
    parser.add_argument("--method", "-m", default=DispatchMethod.PROXIMITY.value,
                        help=f"Dispatch method. Options: {', '.join(AVAILABLE_METHODS)}")
    parser.add_argument("--cost", choices=sorted(COST_FUNCTIONS), default=None,
                        help="Cost function for the efficiency method")
    parser.add_argument("--interval", "-i", type=float, default=config.DEFAULT_DISPATCH_INTERVAL_SECONDS,
                        help="Seconds between auto-dispatch cycles")
    parser.add_argument("--duration", type=float, default=0,
                        help="Run auto-dispatch for this many seconds (0 = single manual cycle)")
    parser.add_argument("--pacing", type=float, default=config.COMMIT_PACING_SECONDS,
                        help="Seconds between commits within a cycle")
    parser.add_argument("--reroute", action="store_true",
                        help="Batch reroute affected in-flight deliveries after dispatching")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Show debug logging")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.method not in AVAILABLE_METHODS:
        print(f"ERROR: Unknown dispatch method '{args.method}'")
        print(f"Available methods: {', '.join(AVAILABLE_METHODS)}")
        return 1
    if args.interval <= 0:
        print("ERROR: --interval must be positive")
        return 1

    print_header()

    store = load_store_safe(args)
    if store is None:
        return 1

    console = DispatchConsole(
        store,
        settings=DispatchSettings(dispatch_method=DispatchMethod(args.method)),
        cost_fn=get_cost_function(args.cost) if args.cost else None,
        pacing_seconds=args.pacing,
    )

    print(f"Dispatch method: {args.method}")
    print("-" * 40)

    try:
        summaries = asyncio.run(run_dispatch(console, args))
    except Exception as e:
        print(f"ERROR: Dispatch failed: {e}")
        import traceback
        traceback.print_exc()
        return 2

    if not summaries:
        print("ERROR: No dispatch cycle completed")
        return 2

    print_summary_table(summaries)

    if all(s.outcome == CycleOutcome.MISSED for s in summaries):
        print("ERROR: Every dispatch cycle missed its data")
        return 2

    return 0


if __name__ == "__main__":
    sys.exit(main())
