#!/usr/bin/env python3
"""
Run one sourcing request from a YAML scenario and print the outcome.

The scenario names the repair order, its part requirements and a set of
static vendors with canned quotes.  Each vendor answers through an
in-memory gateway, so the full pipeline (fan-out, scoring, selection, PO
numbering and persistence) runs without any real vendor integration.

Scenario layout:

    shop:                     # optional inline shop config (same keys as --config)
      weights: {price: 0.2, availability: 0.3, lead_time: 0.2, quality: 0.3}
    repair_order_id: RO-1001
    deadline_seconds: 30      # optional
    preferred_vendors: {R1: acme}
    requirements:
      - {requirementId: R1, partDescription: Front bumper cover, quantity: 1}
    vendors:
      - vendor_id: acme
        name: Acme Parts
        delay_seconds: 0.1    # optional simulated latency
        fail: false           # optional: raise instead of answering
        quotes:
          - {quoteId: Q1, requirementId: R1, brandType: oem, unitPrice: "500.00", ...}

Usage:
    python3 scripts/run_sourcing.py --scenario <path> [options]

Examples:
    # Run the bundled example with its inline shop config
    python3 scripts/run_sourcing.py --scenario scripts/scenarios/front_bumper.yaml

    # Override the shop config and keep the PO ledger in a named SQLite file
    python3 scripts/run_sourcing.py --scenario s.yaml --config shop.yaml \\
        --db-url sqlite:///ledger.db

    # Show the quote audit log and selections as well
    python3 scripts/run_sourcing.py --scenario s.yaml --verbose
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import tempfile
from pathlib import Path

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

DB_URL = f"sqlite:///{Path(tempfile.gettempdir()) / 'sourcing_ledger.db'}"


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run one parts sourcing request against static vendor quotes.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--scenario",
        required=True,
        type=Path,
        help="Path to the scenario YAML file.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Shop config YAML; overrides the scenario's inline 'shop' block.",
    )
    parser.add_argument(
        "--db-url",
        default=DB_URL,
        help=f"Database URL for the PO ledger (default: {DB_URL!r}).",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Also print selections and the quote audit log.",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Structured log level written to stderr (default: WARNING).",
    )
    return parser.parse_args()


class ScenarioVendor:
    """Static vendor gateway answering from the scenario's quote list."""

    def __init__(self, vendor_id, vendor_name, quotes, delay_seconds=0.0, fail=False):
        self.vendor_id = vendor_id
        self.vendor_name = vendor_name
        self._quotes = {}
        for quote in quotes:
            self._quotes.setdefault(quote.requirement_id, []).append(quote)
        self._delay = delay_seconds
        self._fail = fail

    async def request_quote(self, requirement):
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._fail:
            raise ConnectionError(f"{self.vendor_name} is unreachable")
        return list(self._quotes.get(requirement.requirement_id, ()))


def _build_vendors(entries):
    from sourcing_kernel.domain.values import VendorQuote

    vendors = []
    for entry in entries:
        vendor_id = str(entry["vendor_id"])
        name = entry.get("name") or vendor_id
        quotes = []
        for raw in entry.get("quotes") or ():
            payload = {"vendorId": vendor_id, "vendorName": name, **raw}
            quotes.append(VendorQuote.from_dict(payload))
        vendors.append(ScenarioVendor(
            vendor_id,
            name,
            quotes,
            delay_seconds=float(entry.get("delay_seconds", 0.0)),
            fail=bool(entry.get("fail", False)),
        ))
    return vendors


def _print_details(orchestrator, request_id: str) -> None:
    print("\nSelections:")
    for requirement_id, selection in sorted(orchestrator.get_selections(request_id).items()):
        winner = selection.winner
        print(
            f"  {requirement_id}: {winner.vendor_id} {winner.quote_id} "
            f"score={winner.overall_score:.2f} landed={winner.landed_cost}"
            + (f" (tie broken by {selection.tie_broken_by})" if selection.tie_broken_by else "")
        )
        for alt in selection.alternatives:
            print(f"      alt {alt.vendor_id} {alt.quote_id} score={alt.overall_score:.2f}")

    print("\nQuote audit log:")
    for entry in orchestrator.quote_audit_log(request_id):
        quote = entry.quote
        if entry.rejection_reason is not None:
            detail = f" ({entry.rejection_reason.value})"
        elif entry.superseded_by:
            detail = f" (superseded by {entry.superseded_by})"
        else:
            detail = ""
        print(
            f"  #{entry.sequence} {quote.requirement_id} {quote.vendor_id} "
            f"{quote.quote_id}: {entry.disposition.value}{detail}"
        )


def main() -> int:
    args = _parse_args()

    scenario_path = args.scenario.resolve()
    if not scenario_path.is_file():
        print(f"ERROR: File not found: {scenario_path}", file=sys.stderr)
        return 1

    # Lazy imports so we fail fast on args first
    from datetime import timedelta

    from sourcing_config import load_shop_config, parse_shop_config
    from sourcing_config.loader import load_yaml_file
    from sourcing_kernel.db.engine import create_tables, get_session_factory, init_engine_from_url
    from sourcing_kernel.domain.clock import SystemClock
    from sourcing_kernel.domain.values import PartRequirement
    from sourcing_kernel.exceptions import SourcingError
    from sourcing_kernel.logging_config import configure_logging
    from sourcing_kernel.services import PurchaseOrderNumberService, SourcingOrchestrator

    configure_logging(level=getattr(logging, args.log_level))

    try:
        scenario = load_yaml_file(scenario_path)
        if args.config is not None:
            config = load_shop_config(args.config)
        else:
            config = parse_shop_config(scenario.get("shop") or {})
        requirements = [PartRequirement.from_dict(r) for r in scenario.get("requirements") or ()]
        vendors = _build_vendors(scenario.get("vendors") or ())
        if not requirements:
            raise ValueError("scenario has no requirements")
    except (SourcingError, ValueError, KeyError) as e:
        print(f"ERROR: Invalid scenario: {e}", file=sys.stderr)
        return 1

    try:
        init_engine_from_url(args.db_url)
        create_tables()
    except Exception as e:
        print(f"ERROR: Database init failed: {e}", file=sys.stderr)
        return 1

    clock = SystemClock()
    numbers = PurchaseOrderNumberService(get_session_factory(), clock)
    orchestrator = SourcingOrchestrator(config, vendors, numbers, clock=clock)

    repair_order_id = str(scenario.get("repair_order_id") or requirements[0].repair_order_id)
    deadline = None
    if scenario.get("deadline_seconds") is not None:
        deadline = clock.now() + timedelta(seconds=float(scenario["deadline_seconds"]))

    try:
        request = orchestrator.open_request(
            repair_order_id,
            requirements,
            deadline=deadline,
            repair_order_number=scenario.get("repair_order_number"),
            preferred_vendors=scenario.get("preferred_vendors"),
        )
        outcome = asyncio.run(orchestrator.run(request.request_id))
    except (SourcingError, ValueError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    print(json.dumps(outcome.to_dict(), indent=2))
    if args.verbose:
        _print_details(orchestrator, request.request_id)
    return 0 if not outcome.errors else 2


if __name__ == "__main__":
    sys.exit(main())
