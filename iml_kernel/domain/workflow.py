"""
Workflow types (``iml_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for the per-cycle stage state machine.  Guard,
Transition and Workflow are defined once here; the cycle engine looks up
transitions in ``CYCLE_STAGE_WORKFLOW`` instead of comparing statuses ad hoc.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/`` or outer layers.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* Stage statuses only move forward: PENDING -> IN_PROGRESS -> DONE.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Guard:
    """A condition that must be satisfied before a transition fires.

    Descriptive only; the cycle engine evaluates it.
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition in a workflow."""
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for a cycle stage.

    ``terminal_states`` are states with no outgoing transitions.
    """
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(
                f"initial_state {self.initial_state!r} not in states of {self.name}"
            )
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(
                    f"Transition {t.action!r} references unknown state in {self.name}"
                )

    def find(self, from_state: str, to_state: str) -> Transition | None:
        """Return the transition from ``from_state`` to ``to_state`` if declared."""
        for t in self.transitions:
            if t.from_state == from_state and t.to_state == to_state:
                return t
        return None

    def rank(self, state: str) -> int:
        """Position of ``state`` in the declared (forward) order."""
        return self.states.index(state)


CYCLE_STAGE_WORKFLOW = Workflow(
    name="cycle_stage",
    description="Status of one fulfillment stage within a production cycle",
    initial_state="PENDING",
    states=("PENDING", "IN_PROGRESS", "DONE"),
    transitions=(
        Transition("PENDING", "IN_PROGRESS", action="start"),
        Transition("IN_PROGRESS", "DONE", action="complete"),
        Transition(
            "PENDING",
            "DONE",
            action="complete",
            guard=Guard(
                name="completed_in_one_step",
                description="Stage finished by a single recorded activity",
            ),
        ),
    ),
    terminal_states=("DONE",),
)
