"""
QuoteAggregator -- concurrent vendor quote collection for one request.

Responsibility:
    Asks every routed vendor for a quote on every requirement of a sourcing
    request, concurrently, and feeds the answers into the request's
    ``QuoteBook``.

    - One asyncio task per (requirement, vendor) pair.
    - A semaphore bounds how many vendor calls are in flight.
    - Each call is bounded by ``vendor_timeout_seconds``.
    - When the request deadline arrives, tasks still running are cancelled
      and whatever they would have returned is discarded.

Architecture position:
    Kernel > Services.  Called by SourcingOrchestrator.  Vendors are
    reached through the ``VendorGateway`` protocol; wire protocols live
    outside the kernel.

Failure modes:
    A vendor timing out, raising, or being cut off by the deadline never
    fails the aggregation.  Each is reported as a ``VendorFailure``.
    Cancelling the aggregation itself cancels every vendor task and
    re-raises ``asyncio.CancelledError``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Protocol

from sourcing_config.schema import AggregationPolicy
from sourcing_kernel.domain.clock import Clock, SystemClock
from sourcing_kernel.domain.values import PartRequirement, SourcingRequest, VendorQuote
from sourcing_kernel.exceptions import SourcingError
from sourcing_kernel.logging_config import LogContext, get_logger
from sourcing_kernel.services.quote_book import QuoteBook

logger = get_logger("services.quote_aggregator")


class VendorGateway(Protocol):
    """A vendor that already speaks the canonical quote contract."""

    vendor_id: str
    vendor_name: str

    async def request_quote(self, requirement: PartRequirement) -> Sequence[VendorQuote]: ...


class FailureKind:
    TIMEOUT = "timeout"
    ERROR = "error"
    DEADLINE = "deadline"
    REJECTED_SUBMISSION = "rejected_submission"


@dataclass(frozen=True)
class VendorFailure:
    """A vendor call that produced no usable quote."""
    requirement_id: str
    vendor_id: str
    kind: str
    message: str = ""


@dataclass(frozen=True)
class AggregationResult:
    """Competing quote sets after fan-out."""
    request_id: str
    scoring_sets: Mapping[str, tuple[VendorQuote, ...]]
    unsourced: tuple[str, ...]
    failures: tuple[VendorFailure, ...] = ()
    deadline_reached: bool = False

    @property
    def sourced(self) -> tuple[str, ...]:
        return tuple(r for r, quotes in self.scoring_sets.items() if quotes)


class QuoteAggregator:
    """Bounded, deadline-aware fan-out over vendor gateways."""

    def __init__(
        self,
        gateways: Iterable[VendorGateway],
        policy: AggregationPolicy | None = None,
        clock: Clock | None = None,
    ):
        self._gateways: dict[str, VendorGateway] = {g.vendor_id: g for g in gateways}
        self._policy = policy or AggregationPolicy()
        self._clock = clock or SystemClock()

    @property
    def vendor_ids(self) -> tuple[str, ...]:
        return tuple(sorted(self._gateways))

    def gateway(self, vendor_id: str) -> VendorGateway | None:
        return self._gateways.get(vendor_id)

    async def aggregate(
        self,
        request: SourcingRequest,
        requirements: Sequence[PartRequirement],
        vendor_plan: Mapping[str, Sequence[str]],
        quote_book: QuoteBook,
    ) -> AggregationResult:
        """
        Collect quotes for ``requirements`` from the vendors in ``vendor_plan``.

        Args:
            request: The sourcing request (supplies the deadline).
            requirements: Requirements to source.
            vendor_plan: requirement_id -> ordered vendor ids to ask.
            quote_book: Book that receives every returned quote.
        """
        semaphore = asyncio.Semaphore(self._policy.max_concurrent_vendor_requests)
        failures: list[VendorFailure] = []
        tasks: dict[asyncio.Task, tuple[str, str]] = {}

        for requirement in requirements:
            for vendor_id in vendor_plan.get(requirement.requirement_id, ()):
                gateway = self._gateways.get(vendor_id)
                if gateway is None:
                    logger.warning(
                        "vendor_gateway_missing",
                        extra={"vendor_id": vendor_id, "requirement_id": requirement.requirement_id},
                    )
                    continue
                task = asyncio.create_task(
                    self._fetch(semaphore, gateway, requirement, quote_book, failures),
                    name=f"quote:{requirement.requirement_id}:{vendor_id}",
                )
                tasks[task] = (requirement.requirement_id, vendor_id)

        remaining = (request.deadline - self._clock.now()).total_seconds()
        logger.info(
            "aggregation_started",
            extra={
                "request_id": request.request_id,
                "vendor_calls": len(tasks),
                "deadline_seconds": round(max(remaining, 0.0), 3),
            },
        )

        deadline_reached = False
        if tasks:
            try:
                done, pending = await asyncio.wait(tasks, timeout=max(remaining, 0.0))
            except asyncio.CancelledError:
                await self._cancel_all(tasks)
                logger.info("aggregation_cancelled", extra={"request_id": request.request_id})
                raise

            if pending:
                deadline_reached = True
                await self._cancel_all(pending)
                for task in pending:
                    requirement_id, vendor_id = tasks[task]
                    failures.append(VendorFailure(requirement_id, vendor_id, FailureKind.DEADLINE))
                logger.warning(
                    "aggregation_deadline_reached",
                    extra={"request_id": request.request_id, "cancelled_calls": len(pending)},
                )

        at = self._clock.now()
        scoring_sets = {
            r.requirement_id: quote_book.scoring_set(r.requirement_id, at) for r in requirements
        }
        unsourced = tuple(sorted(r for r, quotes in scoring_sets.items() if not quotes))
        result = AggregationResult(
            request_id=request.request_id,
            scoring_sets=scoring_sets,
            unsourced=unsourced,
            failures=tuple(sorted(failures, key=lambda f: (f.requirement_id, f.vendor_id))),
            deadline_reached=deadline_reached,
        )
        logger.info(
            "aggregation_completed",
            extra={
                "request_id": request.request_id,
                "sourced": len(result.sourced),
                "unsourced": list(unsourced),
                "vendor_failures": len(result.failures),
                "deadline_reached": deadline_reached,
            },
        )
        return result

    async def _fetch(
        self,
        semaphore: asyncio.Semaphore,
        gateway: VendorGateway,
        requirement: PartRequirement,
        quote_book: QuoteBook,
        failures: list[VendorFailure],
    ) -> None:
        requirement_id = requirement.requirement_id
        vendor_id = gateway.vendor_id
        async with semaphore:
            with LogContext.bind(vendor_id=vendor_id, requirement_id=requirement_id):
                try:
                    quotes = await asyncio.wait_for(
                        gateway.request_quote(requirement),
                        timeout=self._policy.vendor_timeout_seconds,
                    )
                except asyncio.TimeoutError:
                    logger.warning(
                        "vendor_quote_timeout",
                        extra={"timeout_seconds": self._policy.vendor_timeout_seconds},
                    )
                    failures.append(
                        VendorFailure(requirement_id, vendor_id, FailureKind.TIMEOUT)
                    )
                    return
                except Exception as exc:
                    logger.warning("vendor_quote_failed", exc_info=True)
                    failures.append(
                        VendorFailure(requirement_id, vendor_id, FailureKind.ERROR, str(exc))
                    )
                    return

                for quote in quotes or ():
                    try:
                        quote_book.submit(quote)
                    except SourcingError as exc:
                        logger.warning(
                            "vendor_quote_refused",
                            extra={"quote_id": quote.quote_id, "error_code": exc.code},
                        )
                        failures.append(
                            VendorFailure(
                                requirement_id, vendor_id,
                                FailureKind.REJECTED_SUBMISSION, str(exc),
                            )
                        )

    @staticmethod
    async def _cancel_all(tasks: Iterable[asyncio.Task]) -> None:
        tasks = list(tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
