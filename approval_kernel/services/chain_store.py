"""
approval_kernel.services.chain_store -- SQLAlchemy ChainStore.

Responsibility:
    Durable storage of course-tab step definitions, enrollment chains
    and step states behind the ``ChainStore`` protocol.  Converts ORM
    rows to frozen domain DTOs at the boundary.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Invariants enforced:
    - Step decisions are written only by ``compare_and_set_step``: a
      single ``UPDATE ... WHERE step_id = :id AND decision = :expected``.
      Of two racing writers exactly one sees rowcount 1.
    - ``lock_enrollment`` takes a row lock on the chain header
      (``SELECT ... FOR UPDATE`` on PostgreSQL; SQLite transactions are
      already serialized by BEGIN IMMEDIATE), so aggregate recomputes
      never interleave.
    - Reads refresh the identity map (``populate_existing``) so a
      re-read after a compare-and-set sees the persisted row.

Failure modes:
    - EnrollmentChainNotFoundError from ``lock_enrollment`` /
      ``save_aggregate_status`` for an unknown enrollment.
    - IntegrityError if ``create_chain`` races another instantiation of
      the same enrollment.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from approval_kernel.domain.approval_chain import (
    AggregateStatus,
    StepDecision,
    StepDefinition,
    StepState,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.exceptions import EnrollmentChainNotFoundError
from approval_kernel.logging_config import get_logger
from approval_kernel.models.chain import (
    EnrollmentChainModel,
    EnrollmentStepModel,
    StepDefinitionModel,
)
from approval_kernel.services.base import BaseService

logger = get_logger("services.chain_store")


class SqlChainStore(BaseService[EnrollmentStepModel]):
    """ChainStore over the caller's SQLAlchemy session (flush-only)."""

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Definitions
    # ------------------------------------------------------------------

    def load_step_definitions(self, course_tab_id: UUID) -> tuple[StepDefinition, ...]:
        stmt = (
            select(StepDefinitionModel)
            .where(
                StepDefinitionModel.course_tab_id == course_tab_id,
                StepDefinitionModel.is_deleted == False,  # noqa: E712
            )
            .order_by(StepDefinitionModel.approval_order)
        )
        rows = self.session.execute(stmt).scalars().all()
        return tuple(row.to_dto() for row in rows)

    # ------------------------------------------------------------------
    # Chains
    # ------------------------------------------------------------------

    def chain_exists(self, enrollment_id: UUID) -> bool:
        stmt = select(EnrollmentChainModel.id).where(
            EnrollmentChainModel.enrollment_id == enrollment_id,
        )
        return self.session.execute(stmt).first() is not None

    def create_chain(
        self,
        enrollment_id: UUID,
        course_tab_id: UUID,
        steps: tuple[StepState, ...],
        aggregate_status: AggregateStatus,
    ) -> None:
        now = self._clock.now()
        self.session.add(
            EnrollmentChainModel(
                enrollment_id=enrollment_id,
                course_tab_id=course_tab_id,
                aggregate_status=aggregate_status.value,
                created_at=now,
                status_updated_at=now,
            )
        )
        # Header first: step rows reference it.
        self.session.flush()
        self.session.add_all(EnrollmentStepModel.from_dto(s) for s in steps)
        self.session.flush()

    def load_steps(self, enrollment_id: UUID) -> tuple[StepState, ...]:
        stmt = (
            select(EnrollmentStepModel)
            .where(EnrollmentStepModel.enrollment_id == enrollment_id)
            .order_by(EnrollmentStepModel.approval_order)
            .execution_options(populate_existing=True)
        )
        rows = self.session.execute(stmt).scalars().all()
        return tuple(row.to_dto() for row in rows)

    # ------------------------------------------------------------------
    # Step writes
    # ------------------------------------------------------------------

    def compare_and_set_step(
        self,
        step_id: UUID,
        expected_decision: StepDecision,
        new_state: StepState,
    ) -> bool:
        """Write the decision columns of ``new_state`` if still ``expected_decision``.

        Returns:
            True if this call performed the write, False if the stored
            decision had already moved on.
        """
        stmt = (
            update(EnrollmentStepModel)
            .where(
                EnrollmentStepModel.step_id == step_id,
                EnrollmentStepModel.decision == expected_decision.value,
            )
            .values(
                decision=new_state.decision.value,
                decided_by=new_state.decided_by,
                decided_at=new_state.decided_at,
                comment=new_state.comment,
            )
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        swapped = result.rowcount == 1
        logger.debug(
            "step_compare_and_set",
            extra={
                "step_id": str(step_id),
                "expected_decision": expected_decision.value,
                "new_decision": new_state.decision.value,
                "swapped": swapped,
            },
        )
        return swapped

    # ------------------------------------------------------------------
    # Aggregate status
    # ------------------------------------------------------------------

    def lock_enrollment(self, enrollment_id: UUID) -> AggregateStatus:
        chain = self._get_chain(enrollment_id, for_update=True)
        return AggregateStatus(chain.aggregate_status)

    def save_aggregate_status(
        self, enrollment_id: UUID, status: AggregateStatus,
    ) -> None:
        chain = self._get_chain(enrollment_id)
        if chain.aggregate_status != status.value:
            chain.aggregate_status = status.value
            chain.status_updated_at = self._clock.now()
            self.session.flush()

    def _get_chain(
        self, enrollment_id: UUID, for_update: bool = False,
    ) -> EnrollmentChainModel:
        stmt = select(EnrollmentChainModel).where(
            EnrollmentChainModel.enrollment_id == enrollment_id,
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        chain = self.session.execute(stmt).scalar_one_or_none()
        if chain is None:
            raise EnrollmentChainNotFoundError(str(enrollment_id))
        return chain
