"""
Canonical workflow types (``sourcing_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for lifecycle state machines.  The part status machine
and the sourcing request lifecycle are both declared as a ``Workflow`` so
the transition table is data, defined once, and testable in isolation.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* ``terminal_states`` have no outgoing transitions.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class Transition:
    """A valid state transition in a workflow."""
    from_state: str
    to_state: str
    action: str


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for a lifecycle.

    Contract: frozen; ``transitions`` reference only states in ``states``.
    Guarantees: ``initial_state`` is a member of ``states`` and terminal
    states have no outgoing edges (checked at construction).
    """
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()
    _edges: dict[str, frozenset[str]] = field(
        init=False, repr=False, compare=False, hash=False,
    )

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(
                f"Workflow {self.name}: initial state {self.initial_state!r} "
                "is not a declared state"
            )
        edges: dict[str, set[str]] = {state: set() for state in self.states}
        for t in self.transitions:
            if t.from_state not in edges or t.to_state not in edges:
                raise ValueError(
                    f"Workflow {self.name}: transition "
                    f"{t.from_state} -> {t.to_state} references unknown state"
                )
            if t.from_state in self.terminal_states:
                raise ValueError(
                    f"Workflow {self.name}: terminal state {t.from_state!r} "
                    "cannot have outgoing transitions"
                )
            edges[t.from_state].add(t.to_state)
        object.__setattr__(
            self, "_edges", {k: frozenset(v) for k, v in edges.items()},
        )

    def allows(self, from_state: str, to_state: str) -> bool:
        """True when ``from_state -> to_state`` is in the transition table."""
        return to_state in self._edges.get(from_state, frozenset())

    def next_states(self, from_state: str) -> frozenset[str]:
        return self._edges.get(from_state, frozenset())

    def is_terminal(self, state: str) -> bool:
        return state in self.terminal_states
