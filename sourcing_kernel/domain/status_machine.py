"""
Part Status State Machine (``sourcing_kernel.domain.status_machine``).

Responsibility
--------------
Single source of truth for part-lifecycle transitions and for the sourcing
request lifecycle.  Callers check legality here before changing a status;
nothing else in the kernel holds a copy of the table.

Part lifecycle::

    needed -> sourcing -> ordered -> {shipped, backordered} -> received -> installed
    (any non-terminal) -> returned | cancelled

``installed``, ``cancelled`` and ``returned`` are terminal.

Architecture position
---------------------
**Kernel domain layer** -- pure functions over ``Workflow`` tables.

Failure modes
-------------
* ``InvalidTransition`` from ``require_transition`` / ``transition``.  No
  requirement is mutated: ``transition`` returns a new instance and raises
  before building one.
"""

from __future__ import annotations

from sourcing_kernel.domain.values import PartRequirement, PartStatus, RequestState
from sourcing_kernel.domain.workflow import Transition, Workflow
from sourcing_kernel.exceptions import InvalidTransition
from sourcing_kernel.logging_config import get_logger

logger = get_logger("domain.status_machine")

_TERMINAL = (
    PartStatus.INSTALLED.value,
    PartStatus.CANCELLED.value,
    PartStatus.RETURNED.value,
)

_FORWARD = (
    Transition("needed", "sourcing", action="start_sourcing"),
    Transition("needed", "ordered", action="order"),
    Transition("sourcing", "ordered", action="order"),
    Transition("sourcing", "needed", action="release_unsourced"),
    Transition("ordered", "shipped", action="ship"),
    Transition("ordered", "backordered", action="backorder"),
    Transition("shipped", "backordered", action="backorder"),
    Transition("shipped", "received", action="receive"),
    Transition("backordered", "shipped", action="ship"),
    Transition("backordered", "received", action="receive"),
    Transition("received", "installed", action="install"),
)

_EXITS = tuple(
    Transition(status.value, exit_state, action=action)
    for status in PartStatus
    if status.value not in _TERMINAL
    for exit_state, action in (("returned", "return"), ("cancelled", "cancel"))
)

PART_STATUS_WORKFLOW = Workflow(
    name="part_status",
    description="Part lifecycle from needed through installed",
    initial_state=PartStatus.NEEDED.value,
    states=tuple(s.value for s in PartStatus),
    transitions=_FORWARD + _EXITS,
    terminal_states=_TERMINAL,
)

SOURCING_REQUEST_WORKFLOW = Workflow(
    name="sourcing_request",
    description="Sourcing request lifecycle",
    initial_state=RequestState.OPEN.value,
    states=tuple(s.value for s in RequestState),
    transitions=(
        Transition("open", "aggregating", action="aggregate"),
        Transition("aggregating", "selecting", action="select"),
        Transition("selecting", "ordered", action="order"),
        Transition("selecting", "partially_ordered", action="order_partial"),
        Transition("selecting", "failed", action="fail"),
        Transition("open", "cancelled", action="cancel"),
        Transition("aggregating", "cancelled", action="cancel"),
        Transition("selecting", "cancelled", action="cancel"),
    ),
    terminal_states=("ordered", "partially_ordered", "failed", "cancelled"),
)

logger.debug(
    "status_workflows_registered",
    extra={
        "workflows": [PART_STATUS_WORKFLOW.name, SOURCING_REQUEST_WORKFLOW.name],
        "part_transition_count": len(PART_STATUS_WORKFLOW.transitions),
        "request_transition_count": len(SOURCING_REQUEST_WORKFLOW.transitions),
    },
)


def is_legal_transition(from_status: PartStatus, to_status: PartStatus) -> bool:
    """Pure lookup against the part transition table."""
    return PART_STATUS_WORKFLOW.allows(
        PartStatus(from_status).value, PartStatus(to_status).value,
    )


def allowed_next_states(status: PartStatus) -> frozenset[PartStatus]:
    return frozenset(
        PartStatus(s) for s in PART_STATUS_WORKFLOW.next_states(PartStatus(status).value)
    )


def is_terminal(status: PartStatus) -> bool:
    return PART_STATUS_WORKFLOW.is_terminal(PartStatus(status).value)


def require_transition(
    from_status: PartStatus,
    to_status: PartStatus,
    subject_id: str | None = None,
) -> None:
    """Raise ``InvalidTransition`` unless ``from_status -> to_status`` is legal."""
    if not is_legal_transition(from_status, to_status):
        raise InvalidTransition(from_status, to_status, subject_id=subject_id)


def transition(requirement: PartRequirement, to_status: PartStatus) -> PartRequirement:
    """
    Return ``requirement`` moved to ``to_status``.

    Raises:
        InvalidTransition: the move is not in the table; ``requirement`` is
            untouched (it is immutable) and no new instance is produced.
    """
    require_transition(
        requirement.current_status, to_status, subject_id=requirement.requirement_id,
    )
    return requirement.with_status(PartStatus(to_status))


def is_legal_request_transition(from_state: RequestState, to_state: RequestState) -> bool:
    return SOURCING_REQUEST_WORKFLOW.allows(
        RequestState(from_state).value, RequestState(to_state).value,
    )


def require_request_transition(
    from_state: RequestState,
    to_state: RequestState,
    request_id: str | None = None,
) -> None:
    if not is_legal_request_transition(from_state, to_state):
        raise InvalidTransition(from_state, to_state, subject_id=request_id)


def is_request_closed(state: RequestState) -> bool:
    return SOURCING_REQUEST_WORKFLOW.is_terminal(RequestState(state).value)
