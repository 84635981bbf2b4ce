"""Pure domain layer -- value objects and collaborator protocols, zero I/O."""

from approval_kernel.domain.approval_chain import (
    STEP_DECISION_TRANSITIONS,
    TERMINAL_AGGREGATE_STATUSES,
    ActingPrincipal,
    AggregateStatus,
    ChainStore,
    DecisionOutcome,
    GateDenialReason,
    GateResult,
    HeadApproval,
    RoleGated,
    RoleResolver,
    StepDecision,
    StepDefinition,
    StepKind,
    StepState,
    step_kind,
)
from approval_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from approval_kernel.domain.role_resolver import StaticRoleResolver, resolve_principal

__all__ = [
    "STEP_DECISION_TRANSITIONS",
    "TERMINAL_AGGREGATE_STATUSES",
    "ActingPrincipal",
    "AggregateStatus",
    "ChainStore",
    "Clock",
    "DecisionOutcome",
    "DeterministicClock",
    "GateDenialReason",
    "GateResult",
    "HeadApproval",
    "RoleGated",
    "RoleResolver",
    "StaticRoleResolver",
    "StepDecision",
    "StepDefinition",
    "StepKind",
    "StepState",
    "SystemClock",
    "resolve_principal",
    "step_kind",
]
