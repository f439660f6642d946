"""
Tests for QuoteAggregator.

These tests verify:
- Every (requirement, vendor) pair in the plan is asked exactly once
- In-flight vendor calls never exceed max_concurrent_vendor_requests
- Timeouts, errors and refused submissions become VendorFailures
- The request deadline cancels slow vendors and drops their quotes
- Cancelling the aggregation cancels every vendor call
"""

import asyncio
from datetime import timedelta

import pytest

from sourcing_config.schema import AggregationPolicy
from sourcing_kernel.domain.values import SourcingRequest
from sourcing_kernel.services.quote_aggregator import FailureKind, QuoteAggregator
from sourcing_kernel.services.quote_book import QuoteBook, QuoteDisposition
from tests.conftest import FIXED_NOW


def _request(requirements, deadline=None):
    return SourcingRequest(
        request_id="REQ-1",
        repair_order_id="RO-1001",
        repair_order_number="RO-1001",
        requirement_ids=frozenset(r.requirement_id for r in requirements),
        deadline=deadline or FIXED_NOW + timedelta(minutes=5),
        created_at=FIXED_NOW,
    )


def _book(request, requirements, clock):
    return QuoteBook(
        request.request_id,
        {r.requirement_id: r for r in requirements},
        request.deadline,
        clock=clock,
    )


class _CountingGateway:
    """Gateway sharing an in-flight counter with its siblings."""

    def __init__(self, vendor_id, shared, delay=0.02):
        self.vendor_id = vendor_id
        self.vendor_name = vendor_id
        self._shared = shared
        self._delay = delay

    async def request_quote(self, requirement):
        self._shared["in_flight"] += 1
        self._shared["peak"] = max(self._shared["peak"], self._shared["in_flight"])
        try:
            await asyncio.sleep(self._delay)
            return []
        finally:
            self._shared["in_flight"] -= 1


class TestFanOut:

    def test_collects_quotes_from_every_planned_vendor(
        self, requirement_factory, quote_factory, gateway_factory, deterministic_clock,
    ):
        requirements = [requirement_factory("R1"), requirement_factory("R2")]
        gateways = [
            gateway_factory("A", [quote_factory("A", "R1"), quote_factory("A", "R2")]),
            gateway_factory("B", [quote_factory("B", "R1", unit_price="90")]),
        ]
        aggregator = QuoteAggregator(gateways, clock=deterministic_clock)
        request = _request(requirements)
        book = _book(request, requirements, deterministic_clock)
        plan = {"R1": ("A", "B"), "R2": ("A", "B")}

        result = asyncio.run(aggregator.aggregate(request, requirements, plan, book))

        assert [q.vendor_id for q in result.scoring_sets["R1"]] == ["A", "B"]
        assert [q.vendor_id for q in result.scoring_sets["R2"]] == ["A"]
        assert result.unsourced == ()
        assert result.sourced == ("R1", "R2")
        assert sorted(gateways[0].calls) == ["R1", "R2"]
        assert sorted(gateways[1].calls) == ["R1", "R2"]
        assert not result.deadline_reached

    def test_vendor_outside_plan_is_not_called(
        self, requirement_factory, gateway_factory, deterministic_clock,
    ):
        requirements = [requirement_factory("R1")]
        asked, skipped = gateway_factory("A"), gateway_factory("B")
        aggregator = QuoteAggregator([asked, skipped], clock=deterministic_clock)
        request = _request(requirements)

        result = asyncio.run(aggregator.aggregate(
            request, requirements, {"R1": ("A",)},
            _book(request, requirements, deterministic_clock),
        ))

        assert asked.calls == ["R1"]
        assert skipped.calls == []
        assert result.unsourced == ("R1",)

    def test_unknown_vendor_in_plan_is_skipped(
        self, requirement_factory, gateway_factory, deterministic_clock, captured_logs,
    ):
        requirements = [requirement_factory("R1")]
        aggregator = QuoteAggregator([gateway_factory("A")], clock=deterministic_clock)
        request = _request(requirements)

        asyncio.run(aggregator.aggregate(
            request, requirements, {"R1": ("A", "GHOST")},
            _book(request, requirements, deterministic_clock),
        ))

        missing = [r for r in captured_logs() if r["message"] == "vendor_gateway_missing"]
        assert missing[0]["vendor_id"] == "GHOST"

    def test_concurrency_is_bounded(self, requirement_factory, deterministic_clock):
        shared = {"in_flight": 0, "peak": 0}
        gateways = [_CountingGateway(f"V{i}", shared) for i in range(6)]
        requirements = [requirement_factory(f"R{i}") for i in range(3)]
        policy = AggregationPolicy(max_concurrent_vendor_requests=3)
        aggregator = QuoteAggregator(gateways, policy=policy, clock=deterministic_clock)
        request = _request(requirements)
        plan = {r.requirement_id: aggregator.vendor_ids for r in requirements}

        asyncio.run(aggregator.aggregate(
            request, requirements, plan, _book(request, requirements, deterministic_clock),
        ))

        assert shared["peak"] == 3
        assert shared["in_flight"] == 0


class TestVendorFailures:

    def test_timeout_and_error_are_reported(
        self, requirement_factory, quote_factory, gateway_factory, deterministic_clock,
    ):
        requirements = [requirement_factory("R1")]
        gateways = [
            gateway_factory("A", [quote_factory("A")]),
            gateway_factory("SLOW", [quote_factory("SLOW")], delay=1.0),
            gateway_factory("BROKEN", error=ConnectionError("vendor api down")),
        ]
        policy = AggregationPolicy(vendor_timeout_seconds=0.05)
        aggregator = QuoteAggregator(gateways, policy=policy, clock=deterministic_clock)
        request = _request(requirements)

        result = asyncio.run(aggregator.aggregate(
            request, requirements, {"R1": ("A", "BROKEN", "SLOW")},
            _book(request, requirements, deterministic_clock),
        ))

        kinds = {f.vendor_id: f.kind for f in result.failures}
        assert kinds == {"BROKEN": FailureKind.ERROR, "SLOW": FailureKind.TIMEOUT}
        assert [q.vendor_id for q in result.scoring_sets["R1"]] == ["A"]
        broken = next(f for f in result.failures if f.vendor_id == "BROKEN")
        assert broken.message == "vendor api down"
        assert gateways[1].cancelled == 1

    def test_refused_submission_is_reported(
        self, requirement_factory, quote_factory, gateway_factory, deterministic_clock,
    ):
        requirements = [requirement_factory("R1")]
        stray = quote_factory("A", requirement_id="R-OTHER")
        gateway = gateway_factory("A", [stray])
        # Answer R1 with a quote for a requirement outside the request
        gateway._quotes = {"R1": [stray]}
        aggregator = QuoteAggregator([gateway], clock=deterministic_clock)
        request = _request(requirements)

        result = asyncio.run(aggregator.aggregate(
            request, requirements, {"R1": ("A",)},
            _book(request, requirements, deterministic_clock),
        ))

        assert [f.kind for f in result.failures] == [FailureKind.REJECTED_SUBMISSION]
        assert result.unsourced == ("R1",)

    def test_rejected_quote_is_in_audit_not_scoring(
        self, requirement_factory, quote_factory, gateway_factory, deterministic_clock,
    ):
        requirements = [requirement_factory("R1")]
        gateway = gateway_factory("A", [quote_factory("A", unit_price="-5")])
        aggregator = QuoteAggregator([gateway], clock=deterministic_clock)
        request = _request(requirements)
        book = _book(request, requirements, deterministic_clock)

        result = asyncio.run(aggregator.aggregate(request, requirements, {"R1": ("A",)}, book))

        assert result.unsourced == ("R1",)
        assert result.failures == ()
        assert [e.disposition for e in book.audit_log()] == [QuoteDisposition.REJECTED]


class TestDeadline:

    def test_deadline_cancels_slow_vendors(
        self, requirement_factory, quote_factory, gateway_factory, deterministic_clock,
    ):
        requirements = [requirement_factory("R1")]
        fast = gateway_factory("FAST", [quote_factory("FAST")])
        slow = gateway_factory("SLOW", [quote_factory("SLOW", unit_price="1")], delay=2.0)
        policy = AggregationPolicy(vendor_timeout_seconds=10.0)
        aggregator = QuoteAggregator([fast, slow], policy=policy, clock=deterministic_clock)
        request = _request(requirements, deadline=FIXED_NOW + timedelta(seconds=0.2))

        result = asyncio.run(aggregator.aggregate(
            request, requirements, {"R1": ("FAST", "SLOW")},
            _book(request, requirements, deterministic_clock),
        ))

        assert result.deadline_reached
        assert [(f.vendor_id, f.kind) for f in result.failures] == [
            ("SLOW", FailureKind.DEADLINE),
        ]
        assert [q.vendor_id for q in result.scoring_sets["R1"]] == ["FAST"]
        assert slow.cancelled == 1

    def test_past_deadline_asks_no_one_for_long(
        self, requirement_factory, gateway_factory, deterministic_clock,
    ):
        requirements = [requirement_factory("R1")]
        slow = gateway_factory("SLOW", delay=1.0)
        aggregator = QuoteAggregator([slow], clock=deterministic_clock)
        request = _request(requirements, deadline=FIXED_NOW - timedelta(seconds=1))

        result = asyncio.run(aggregator.aggregate(
            request, requirements, {"R1": ("SLOW",)},
            _book(request, requirements, deterministic_clock),
        ))

        assert result.deadline_reached
        assert result.unsourced == ("R1",)


class TestCancellation:

    def test_cancelling_aggregation_cancels_vendor_calls(
        self, requirement_factory, gateway_factory, deterministic_clock,
    ):
        requirements = [requirement_factory("R1"), requirement_factory("R2")]
        gateways = [gateway_factory(v, delay=5.0) for v in ("A", "B")]
        aggregator = QuoteAggregator(gateways, clock=deterministic_clock)
        request = _request(requirements)
        book = _book(request, requirements, deterministic_clock)
        plan = {"R1": ("A", "B"), "R2": ("A", "B")}

        async def scenario():
            task = asyncio.create_task(aggregator.aggregate(request, requirements, plan, book))
            await asyncio.sleep(0.05)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(scenario())

        assert sum(g.cancelled for g in gateways) == 4
        assert all(g.in_flight == 0 for g in gateways)
