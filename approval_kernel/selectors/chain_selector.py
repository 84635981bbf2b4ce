"""
Module: approval_kernel.selectors.chain_selector
Responsibility: Read-only queries over enrollment approval chains: step
    lists, derived status, pending head approvals and the steps a
    principal can act on right now.
Architecture position: Kernel > Selectors.  May import from models/,
    domain/ and the pure approval engines.

Invariants enforced:
    - Status is always derived from the step list; the cached
      aggregate_status column is only used to narrow candidate queries,
      and a mismatch is logged as drift.
    - Read-only: no mutations.

Failure modes:
    - Returns None or an empty result for unknown enrollments (never
      raises on absence of data).
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from approval_engines.aggregate_status import resolve_aggregate
from approval_engines.approval_gate import actionable_steps
from approval_kernel.domain.approval_chain import (
    TERMINAL_AGGREGATE_STATUSES,
    AggregateStatus,
    RoleResolver,
    StepDecision,
    StepState,
)
from approval_kernel.domain.role_resolver import resolve_principal
from approval_kernel.logging_config import get_logger
from approval_kernel.models.chain import EnrollmentChainModel, EnrollmentStepModel
from approval_kernel.selectors.base import BaseSelector

logger = get_logger("selectors.chain")

_TERMINAL_VALUES = tuple(s.value for s in TERMINAL_AGGREGATE_STATUSES)


@dataclass(frozen=True)
class EnrollmentChainDTO:
    """An enrollment's chain with its derived status."""

    enrollment_id: UUID
    course_tab_id: UUID
    aggregate_status: AggregateStatus
    steps: tuple[StepState, ...]

    @property
    def is_terminal(self) -> bool:
        return self.aggregate_status in TERMINAL_AGGREGATE_STATUSES


class ChainSelector(BaseSelector[EnrollmentChainModel]):
    """
    Selector for enrollment approval chains.

    Guarantees:
        - Steps are returned ordered by approval order.
        - Status values are recomputed with ``resolve_aggregate``.
    """

    def __init__(self, session: Session):
        super().__init__(session)

    def _chain(self, enrollment_id: UUID) -> EnrollmentChainModel | None:
        stmt = select(EnrollmentChainModel).where(
            EnrollmentChainModel.enrollment_id == enrollment_id,
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def _derive(self, chain: EnrollmentChainModel, steps: tuple[StepState, ...]) -> AggregateStatus:
        status = resolve_aggregate(steps)
        if chain.aggregate_status != status.value:
            logger.warning(
                "aggregate_status_drift",
                extra={
                    "enrollment_id": str(chain.enrollment_id),
                    "cached_status": chain.aggregate_status,
                    "derived_status": status.value,
                },
            )
        return status

    def get_steps(self, enrollment_id: UUID) -> tuple[StepState, ...]:
        """Step states of an enrollment ordered by approval order."""
        stmt = (
            select(EnrollmentStepModel)
            .where(EnrollmentStepModel.enrollment_id == enrollment_id)
            .order_by(EnrollmentStepModel.approval_order)
            .execution_options(populate_existing=True)
        )
        return tuple(m.to_dto() for m in self.session.execute(stmt).scalars().all())

    def get_status(self, enrollment_id: UUID) -> AggregateStatus | None:
        """Derived aggregate status, or None if the enrollment has no chain."""
        chain = self._chain(enrollment_id)
        if chain is None:
            return None
        return self._derive(chain, self.get_steps(enrollment_id))

    def get_chain(self, enrollment_id: UUID) -> EnrollmentChainDTO | None:
        """The chain with its steps and derived status."""
        chain = self._chain(enrollment_id)
        if chain is None:
            return None
        steps = self.get_steps(enrollment_id)
        return EnrollmentChainDTO(
            enrollment_id=chain.enrollment_id,
            course_tab_id=chain.course_tab_id,
            aggregate_status=self._derive(chain, steps),
            steps=steps,
        )

    def pending_head_approvals(self, course_tab_id: UUID | None = None) -> list[UUID]:
        """
        Enrollments waiting on a head approval.

        An enrollment qualifies when a head-approval step is Pending and
        the chain is not terminal.

        Args:
            course_tab_id: Restrict to one course tab.

        Returns:
            Enrollment ids ordered by chain creation time.
        """
        stmt = (
            select(EnrollmentChainModel)
            .join(
                EnrollmentStepModel,
                EnrollmentStepModel.enrollment_id == EnrollmentChainModel.enrollment_id,
            )
            .where(
                EnrollmentStepModel.is_head_approval == True,  # noqa: E712
                EnrollmentStepModel.decision == StepDecision.PENDING.value,
                EnrollmentChainModel.aggregate_status.not_in(_TERMINAL_VALUES),
            )
            .distinct()
            .order_by(EnrollmentChainModel.created_at, EnrollmentChainModel.enrollment_id)
        )
        if course_tab_id is not None:
            stmt = stmt.where(EnrollmentChainModel.course_tab_id == course_tab_id)

        result = []
        for chain in self.session.execute(stmt).scalars().all():
            steps = self.get_steps(chain.enrollment_id)
            if self._derive(chain, steps) not in TERMINAL_AGGREGATE_STATUSES:
                result.append(chain.enrollment_id)
        return result

    def actionable_steps(
        self,
        principal_id: UUID,
        role_resolver: RoleResolver,
        course_tab_id: UUID | None = None,
    ) -> list[tuple[UUID, StepState]]:
        """
        Steps the principal could approve or reject right now.

        Every open chain is evaluated with the approval gate, so the
        result matches what ``ApprovalChainService.decide`` would allow.

        Returns:
            ``(enrollment_id, step)`` pairs, by chain creation time then
            approval order.
        """
        stmt = (
            select(EnrollmentChainModel)
            .where(EnrollmentChainModel.aggregate_status.not_in(_TERMINAL_VALUES))
            .order_by(EnrollmentChainModel.created_at, EnrollmentChainModel.enrollment_id)
        )
        if course_tab_id is not None:
            stmt = stmt.where(EnrollmentChainModel.course_tab_id == course_tab_id)

        pairs: list[tuple[UUID, StepState]] = []
        for chain in self.session.execute(stmt).scalars().all():
            steps = self.get_steps(chain.enrollment_id)
            if not steps:
                continue
            principal = resolve_principal(role_resolver, principal_id, steps)
            pairs.extend(
                (chain.enrollment_id, step)
                for step in actionable_steps(steps, principal)
            )
        return pairs
