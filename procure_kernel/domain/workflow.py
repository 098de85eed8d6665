"""
Canonical workflow types (``procure_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for the business-document state machines (purchase
order, goods receipt, invoice, payment) and the structured result every
workflow operation returns.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* At most one transition per (from_state, action): the table is a function.
* Terminal states have no outgoing transitions.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from procure_kernel.exceptions import InvalidTransitionError


@dataclass(frozen=True)
class Guard:
    """A named precondition checked by the owning service before a transition.

    Contract: frozen, descriptive only.
    Non-goals: does not evaluate the condition -- the service does.
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition in a workflow.

    ``requires_reason=True`` means the action must carry a non-empty
    reason/note (reject, cancel, reverse, approve_variance).
    """
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None
    requires_reason: bool = False


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for a document lifecycle.

    Contract: frozen; ``transitions`` reference only states in ``states``.
    ``resolve`` is the single place a (status, action) pair is validated.
    """
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        known = set(self.states)
        if self.initial_state not in known:
            raise ValueError(f"{self.name}: initial state {self.initial_state!r} not in states")
        seen: set[tuple[str, str]] = set()
        for t in self.transitions:
            if t.from_state not in known or t.to_state not in known:
                raise ValueError(f"{self.name}: transition {t} references unknown state")
            key = (t.from_state, t.action)
            if key in seen:
                raise ValueError(f"{self.name}: duplicate transition for {key}")
            seen.add(key)
            if t.from_state in self.terminal_states:
                raise ValueError(f"{self.name}: terminal state {t.from_state!r} has outgoing transition")

    @property
    def table(self) -> dict[str, dict[str, str]]:
        """state -> {action -> next_state}."""
        result: dict[str, dict[str, str]] = {state: {} for state in self.states}
        for t in self.transitions:
            result[t.from_state][t.action] = t.to_state
        return result

    @property
    def actions(self) -> frozenset[str]:
        return frozenset(t.action for t in self.transitions)

    def actions_from(self, state: str) -> tuple[str, ...]:
        return tuple(sorted(t.action for t in self.transitions if t.from_state == state))

    def find(self, current_state: str, action: str) -> Transition | None:
        for t in self.transitions:
            if t.from_state == current_state and t.action == action:
                return t
        return None

    def resolve(self, current_state: str, action: str) -> Transition:
        """Return the transition or raise InvalidTransitionError."""
        transition = self.find(current_state, action)
        if transition is None:
            raise InvalidTransitionError(self.name, current_state, action)
        return transition


@dataclass(frozen=True)
class WorkflowResult:
    """Outcome of one workflow operation.

    Business-rule failures are results, not exceptions: callers branch on
    ``is_success``.  ``code`` is a stable snake_case identifier
    (``invalid_transition``, ``status_conflict``, ``action_denied``,
    ``exceeds_outstanding``, ...).
    """

    success: bool
    entity_id: UUID | None
    action: str
    previous_status: str | None = None
    new_status: str | None = None
    reason: str | None = None
    code: str | None = None
    data: Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_success(self) -> bool:
        return self.success

    @classmethod
    def ok(
        cls,
        entity_id: UUID,
        action: str,
        new_status: str | None,
        previous_status: str | None = None,
        data: Mapping[str, Any] | None = None,
    ) -> WorkflowResult:
        return cls(
            success=True,
            entity_id=entity_id,
            action=action,
            previous_status=previous_status,
            new_status=new_status,
            data=dict(data or {}),
        )

    @classmethod
    def failed(
        cls,
        entity_id: UUID | None,
        action: str,
        reason: str,
        code: str,
        previous_status: str | None = None,
    ) -> WorkflowResult:
        return cls(
            success=False,
            entity_id=entity_id,
            action=action,
            previous_status=previous_status,
            reason=reason,
            code=code,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "action": self.action,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
            "reason": self.reason,
            "code": self.code,
            "data": dict(self.data),
        }
