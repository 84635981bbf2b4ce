"""
approval_engines.approval_gate -- Pure step approval gate.

Responsibility:
    Decide whether an acting principal may approve or reject a specific
    step of an enrollment's chain right now.  Returns a tagged
    ``GateResult`` (allowed, or denied with a reason) so callers can tell
    "waiting on previous step" apart from "not authorized".

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import approval_kernel/domain/ types and sibling engines.
    Role lookups happen before the call; the gate sees a resolved
    ``ActingPrincipal``.

Rules (applied in order):
    1. Chain terminal (Rejected / FinalApproved) -> CHAIN_TERMINAL.
    2. Target not pending                        -> ALREADY_DECIDED.
    3. Head-approval step: allowed iff the principal has head authority.
       Order is not checked.                     -> UNAUTHORIZED otherwise.
    4. Ordinary step: every step with a strictly smaller order must be
       approved (-> OUT_OF_ORDER), then the principal must hold the
       step's role (-> UNAUTHORIZED).

Failure modes:
    - ValueError if ``target_step_id`` is not in ``steps``.  The service
      resolves the step before gating and raises StepNotFoundError.
"""

from __future__ import annotations

from collections.abc import Sequence
from uuid import UUID

from approval_engines.aggregate_status import is_terminal, resolve_aggregate
from approval_engines.tracer import traced_engine
from approval_kernel.domain.approval_chain import (
    ActingPrincipal,
    GateDenialReason,
    GateResult,
    HeadApproval,
    RoleGated,
    StepDecision,
    StepState,
)


@traced_engine(
    "approval_gate", "1.0",
    fingerprint_fields=("steps", "target_step_id", "principal"),
)
def can_act(
    steps: Sequence[StepState],
    target_step_id: UUID,
    principal: ActingPrincipal,
) -> GateResult:
    """Return whether ``principal`` may decide ``target_step_id`` now."""
    target = _find_step(steps, target_step_id)

    aggregate = resolve_aggregate(steps)
    if is_terminal(aggregate):
        return GateResult.deny(
            GateDenialReason.CHAIN_TERMINAL,
            detail=f"Chain is {aggregate.value}",
        )

    if not target.is_pending:
        return GateResult.deny(
            GateDenialReason.ALREADY_DECIDED,
            detail=f"Step already {target.decision.value}",
        )

    kind = target.kind
    if isinstance(kind, HeadApproval):
        if principal.has_head_authority:
            return GateResult.allow("Head approval")
        return GateResult.deny(
            GateDenialReason.UNAUTHORIZED,
            detail="Head approval authority required",
        )

    if isinstance(kind, RoleGated):
        blocking = first_blocking_step(steps, target)
        if blocking is not None:
            return GateResult.deny(
                GateDenialReason.OUT_OF_ORDER,
                detail=f"Waiting on step order {blocking.order}",
                blocking_order=blocking.order,
            )
        if kind.role_id not in principal.roles:
            return GateResult.deny(
                GateDenialReason.UNAUTHORIZED,
                detail=f"Role '{kind.role_id}' required",
            )
        return GateResult.allow(f"Role '{kind.role_id}'")

    raise TypeError(f"Unknown step kind: {kind!r}")


def first_blocking_step(
    steps: Sequence[StepState],
    target: StepState,
) -> StepState | None:
    """Lowest-ordered upstream step that is not yet approved, if any."""
    upstream = sorted(
        (s for s in steps if s.order < target.order),
        key=lambda s: s.order,
    )
    for step in upstream:
        if step.decision != StepDecision.APPROVED:
            return step
    return None


def roles_in_chain(steps: Sequence[StepState]) -> frozenset[str]:
    """All roles any step of the chain requires."""
    return frozenset(s.required_role for s in steps if s.required_role is not None)


def actionable_steps(
    steps: Sequence[StepState],
    principal: ActingPrincipal,
) -> tuple[StepState, ...]:
    """Steps the principal could decide right now, in chain order."""
    return tuple(
        s for s in sorted(steps, key=lambda s: s.order)
        if can_act(steps, s.step_id, principal).allowed
    )


def _find_step(steps: Sequence[StepState], step_id: UUID) -> StepState:
    for step in steps:
        if step.step_id == step_id:
            return step
    raise ValueError(f"Step {step_id} is not part of the chain")
