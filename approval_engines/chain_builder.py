"""
approval_engines.chain_builder -- Chain definition validation and snapshotting.

Responsibility:
    Validate a course tab's step definitions as a chain, and snapshot them
    into the Pending step states of a new enrollment.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import approval_kernel/domain/ types.

Invariants enforced:
    - ``order`` is positive and unique within the chain.
    - At most one step carries ``is_final_approval``.
    - Snapshotted steps preserve definition order and copy every
      definition field, so later edits to the tab never reach them.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable, Sequence
from uuid import UUID, uuid4

from approval_engines.tracer import traced_engine
from approval_kernel.domain.approval_chain import (
    StepDecision,
    StepDefinition,
    StepState,
)


def validate_chain_definitions(definitions: Sequence[StepDefinition]) -> list[str]:
    """Return human-readable violations; an empty list means the chain is valid."""
    violations: list[str] = []

    for d in definitions:
        if d.order < 1:
            violations.append(f"Approval order must be positive (got {d.order})")

    counts = Counter(d.order for d in definitions)
    for order in sorted(o for o, n in counts.items() if n > 1):
        violations.append(f"Duplicate approval order {order}")

    finals = [d for d in definitions if d.is_final_approval]
    if len(finals) > 1:
        violations.append(
            "Only one final approval step is allowed "
            f"(orders {', '.join(str(d.order) for d in sorted(finals, key=lambda d: d.order))})"
        )

    return violations


@traced_engine("chain_builder", "1.0", fingerprint_fields=("enrollment_id", "definitions"))
def build_chain(
    enrollment_id: UUID,
    definitions: Sequence[StepDefinition],
    step_id_factory: Callable[[], UUID] = uuid4,
) -> tuple[StepState, ...]:
    """Snapshot ``definitions`` into Pending step states, ordered by ``order``.

    Raises:
        ValueError: if the definitions do not form a valid chain.
    """
    violations = validate_chain_definitions(definitions)
    if violations:
        raise ValueError("; ".join(violations))

    return tuple(
        StepState(
            step_id=step_id_factory(),
            enrollment_id=enrollment_id,
            definition_id=d.definition_id,
            order=d.order,
            kind=d.kind,
            is_final_approval=d.is_final_approval,
            decision=StepDecision.PENDING,
        )
        for d in sorted(definitions, key=lambda d: d.order)
    )
