"""
Approval chain domain types (``approval_kernel.domain.approval_chain``).

Responsibility
--------------
Pure value objects for the course-tab sequential approval chain.  Defines
step definitions (templates owned by a course tab), step states (the
per-enrollment snapshot), the step decision lifecycle, the aggregate
enrollment status, gate results, and the collaborator protocols the
services depend on.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``models/``, ``services/``, or outer layers.

Invariants enforced
-------------------
* Step decisions move exactly once: PENDING -> APPROVED | REJECTED.
  ``STEP_DECISION_TRANSITIONS`` defines the only valid edges.
* A step's kind is a tagged variant: ``HeadApproval`` or
  ``RoleGated(role_id)``.  A step is never both.
* ``StepState`` copies the definition fields it was built from; later
  edits to the course tab never reach it.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Protocol, Union
from uuid import UUID


# =========================================================================
# Step decision lifecycle
# =========================================================================


class StepDecision(str, Enum):
    """Decision state of a single step."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


STEP_DECISION_TRANSITIONS: dict[StepDecision, frozenset[StepDecision]] = {
    StepDecision.PENDING: frozenset({
        StepDecision.APPROVED,
        StepDecision.REJECTED,
    }),
    StepDecision.APPROVED: frozenset(),
    StepDecision.REJECTED: frozenset(),
}


class AggregateStatus(str, Enum):
    """Enrollment-level status derived from the step list."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    REJECTED = "rejected"
    APPROVED = "approved"
    FINAL_APPROVED = "final_approved"


# Terminal statuses freeze the chain: no step may be decided afterwards.
TERMINAL_AGGREGATE_STATUSES: frozenset[AggregateStatus] = frozenset({
    AggregateStatus.REJECTED,
    AggregateStatus.FINAL_APPROVED,
})


# =========================================================================
# Step kind (tagged variant)
# =========================================================================


@dataclass(frozen=True)
class HeadApproval:
    """Step resolvable by any principal holding head-approval authority."""

    @property
    def label(self) -> str:
        return "head"


@dataclass(frozen=True)
class RoleGated:
    """Step resolvable by a principal holding ``role_id``."""

    role_id: str

    @property
    def label(self) -> str:
        return f"role:{self.role_id}"


StepKind = Union[HeadApproval, RoleGated]


def step_kind(role_id: str | None, is_head_approval: bool) -> StepKind:
    """Build the tagged kind from the flat (role, head) column pair.

    Callers validate the pair first; this only refuses the impossible
    combinations.
    """
    if is_head_approval:
        if role_id is not None:
            raise ValueError("Head approval step must not carry a role")
        return HeadApproval()
    if role_id is None:
        raise ValueError("Role-gated step requires a role")
    return RoleGated(role_id)


# =========================================================================
# Definitions and states
# =========================================================================


@dataclass(frozen=True)
class StepDefinition:
    """A step template owned by a course tab.

    ``order`` is positive and unique among the tab's active definitions;
    at most one definition per tab has ``is_final_approval``.
    """

    definition_id: UUID
    course_tab_id: UUID
    order: int
    kind: StepKind
    is_final_approval: bool = False

    @property
    def is_head_approval(self) -> bool:
        return isinstance(self.kind, HeadApproval)

    @property
    def required_role(self) -> str | None:
        return self.kind.role_id if isinstance(self.kind, RoleGated) else None


@dataclass(frozen=True)
class StepState:
    """Runtime state of one step of one enrollment's chain.

    The definition fields (``definition_id``, ``order``, ``kind``,
    ``is_final_approval``) are a snapshot taken at enrollment time.
    """

    step_id: UUID
    enrollment_id: UUID
    definition_id: UUID
    order: int
    kind: StepKind
    is_final_approval: bool = False
    decision: StepDecision = StepDecision.PENDING
    decided_by: UUID | None = None
    decided_at: datetime | None = None
    comment: str | None = None

    @property
    def is_head_approval(self) -> bool:
        return isinstance(self.kind, HeadApproval)

    @property
    def required_role(self) -> str | None:
        return self.kind.role_id if isinstance(self.kind, RoleGated) else None

    @property
    def is_pending(self) -> bool:
        return self.decision == StepDecision.PENDING

    def decided(
        self,
        decision: StepDecision,
        decided_by: UUID,
        decided_at: datetime,
        comment: str | None = None,
    ) -> StepState:
        """Return the state after ``decision``; the snapshot fields carry over."""
        if decision not in STEP_DECISION_TRANSITIONS[self.decision]:
            raise ValueError(
                f"Invalid step transition {self.decision.value} -> {decision.value}"
            )
        return replace(
            self,
            decision=decision,
            decided_by=decided_by,
            decided_at=decided_at,
            comment=comment,
        )


# =========================================================================
# Gate types
# =========================================================================


@dataclass(frozen=True)
class ActingPrincipal:
    """The acting principal's authority, resolved before gating."""

    principal_id: UUID
    roles: frozenset[str] = frozenset()
    has_head_authority: bool = False


class GateDenialReason(str, Enum):
    """Why the gate refused an action."""

    ALREADY_DECIDED = "already_decided"
    OUT_OF_ORDER = "out_of_order"
    UNAUTHORIZED = "unauthorized"
    CHAIN_TERMINAL = "chain_terminal"


@dataclass(frozen=True)
class GateResult:
    """Result of asking the gate whether a step may be decided now.

    Either allowed (``reason`` is None) or denied with a reason that the
    caller can render.
    """

    allowed: bool
    reason: GateDenialReason | None = None
    blocking_order: int | None = None
    detail: str = ""

    @classmethod
    def allow(cls, detail: str = "") -> GateResult:
        return cls(allowed=True, detail=detail)

    @classmethod
    def deny(
        cls,
        reason: GateDenialReason,
        detail: str = "",
        blocking_order: int | None = None,
    ) -> GateResult:
        return cls(
            allowed=False,
            reason=reason,
            blocking_order=blocking_order,
            detail=detail,
        )


# =========================================================================
# Transition result
# =========================================================================


@dataclass(frozen=True)
class DecisionOutcome:
    """Result of a successful ``decide`` call."""

    new_aggregate_status: AggregateStatus
    updated_step: StepState
    previous_aggregate_status: AggregateStatus

    @property
    def reached_final_approval(self) -> bool:
        """True only for the decision that moved the chain to FinalApproved."""
        return (
            self.new_aggregate_status == AggregateStatus.FINAL_APPROVED
            and self.previous_aggregate_status != AggregateStatus.FINAL_APPROVED
        )


# =========================================================================
# Collaborator protocols
# =========================================================================


class RoleResolver(Protocol):
    """Pluggable identity lookups, answered by the auth layer."""

    def has_role(self, principal_id: UUID, role_id: str) -> bool:
        """Check if principal holds a role."""
        ...

    def has_head_approval_authority(self, principal_id: UUID) -> bool:
        """Check if principal may resolve head-approval steps."""
        ...


class ChainStore(Protocol):
    """Durable storage of step definitions and step states.

    Step states are mutated only through ``compare_and_set_step``.
    """

    def load_step_definitions(self, course_tab_id: UUID) -> tuple[StepDefinition, ...]:
        """Active definitions of a course tab, ordered by ``order``."""
        ...

    def chain_exists(self, enrollment_id: UUID) -> bool:
        """Whether a chain has been instantiated for the enrollment."""
        ...

    def create_chain(
        self,
        enrollment_id: UUID,
        course_tab_id: UUID,
        steps: tuple[StepState, ...],
        aggregate_status: AggregateStatus,
    ) -> None:
        """Persist a freshly instantiated chain."""
        ...

    def load_steps(self, enrollment_id: UUID) -> tuple[StepState, ...]:
        """Step states of an enrollment, ordered by ``order``."""
        ...

    def compare_and_set_step(
        self,
        step_id: UUID,
        expected_decision: StepDecision,
        new_state: StepState,
    ) -> bool:
        """Write ``new_state`` only if the stored decision is still ``expected_decision``."""
        ...

    def lock_enrollment(self, enrollment_id: UUID) -> AggregateStatus:
        """Serialize aggregate writers; return the cached aggregate status."""
        ...

    def save_aggregate_status(
        self, enrollment_id: UUID, status: AggregateStatus,
    ) -> None:
        """Persist the recomputed aggregate status."""
        ...
