"""
approval_engines.aggregate_status -- Enrollment aggregate status resolver.

Responsibility:
    Map an ordered list of step states to the enrollment's aggregate
    status.  The stored aggregate column is only a cache of this function;
    every read and every write recomputes it from the step list.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import approval_kernel/domain/ types.

Rules (first match wins):
    1. No steps                          -> APPROVED
    2. Any step rejected                 -> REJECTED
    3. All approved, a final step exists -> FINAL_APPROVED
    4. All approved, no final step       -> APPROVED
    5. Some decided, not all             -> IN_PROGRESS
    6. Nothing decided                   -> PENDING
"""

from __future__ import annotations

from collections.abc import Sequence

from approval_kernel.domain.approval_chain import (
    TERMINAL_AGGREGATE_STATUSES,
    AggregateStatus,
    StepDecision,
    StepState,
)


def resolve_aggregate(steps: Sequence[StepState]) -> AggregateStatus:
    """Derive the aggregate status from ``steps`` alone."""
    if not steps:
        return AggregateStatus.APPROVED

    decisions = [s.decision for s in steps]

    if StepDecision.REJECTED in decisions:
        return AggregateStatus.REJECTED

    if all(d == StepDecision.APPROVED for d in decisions):
        if any(s.is_final_approval for s in steps):
            return AggregateStatus.FINAL_APPROVED
        return AggregateStatus.APPROVED

    if any(d != StepDecision.PENDING for d in decisions):
        return AggregateStatus.IN_PROGRESS

    return AggregateStatus.PENDING


def is_terminal(status: AggregateStatus) -> bool:
    """True when the chain is frozen (Rejected or FinalApproved)."""
    return status in TERMINAL_AGGREGATE_STATUSES
