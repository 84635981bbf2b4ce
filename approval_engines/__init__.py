"""
Module: approval_engines
Responsibility:
    Package entrypoint that re-exports the pure approval-chain engines:
    the aggregate status resolver, the approval gate and the chain
    builder.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import approval_kernel/domain/ (and sibling engine modules).
    MUST NOT import approval_kernel services, models or db.

Invariants enforced:
    - Purity: engines never read the clock or the database.  Timestamps
      and role lookups are resolved by the calling service.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Gate and builder invocations are traced via ``@traced_engine``
    (see ``approval_engines.tracer``), emitting APPROVAL_ENGINE_TRACE log
    records with an input fingerprint.
"""

from approval_engines.aggregate_status import is_terminal, resolve_aggregate
from approval_engines.approval_gate import (
    actionable_steps,
    can_act,
    first_blocking_step,
    roles_in_chain,
)
from approval_engines.chain_builder import build_chain, validate_chain_definitions
from approval_engines.tracer import traced_engine

__all__ = [
    "actionable_steps",
    "build_chain",
    "can_act",
    "first_blocking_step",
    "is_terminal",
    "resolve_aggregate",
    "roles_in_chain",
    "traced_engine",
    "validate_chain_definitions",
]
