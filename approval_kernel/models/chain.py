"""
Module: approval_kernel.models.chain
Responsibility: ORM persistence for course-tab step definitions, enrollment
    chains and their step states.

Architecture position: Kernel > Models.  May import from db/base.py,
    exceptions.py and domain value objects (for to_dto/from_dto only).

Invariants enforced:
    - Approval order is unique among a course tab's active (not deleted)
      definitions: partial unique index.
    - A step is either head-approval or role-gated, never both: CHECK
      constraint on both tables.
    - One chain per enrollment: UNIQUE(enrollment_id).
    - Step snapshot columns never change after insert, and step decisions
      never change through the unit of work: before_update listener.
      Decisions move only through SqlChainStore.compare_and_set_step,
      which issues a guarded UPDATE statement.

Failure modes:
    - IntegrityError on a duplicate active order or a second chain for the
      same enrollment.
    - ImmutabilityViolationError on an in-place step update or delete.

Audit relevance:
    Step states are the per-step audit record of the approval chain:
    who decided, when, and with what comment.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
    inspect,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base, TrackedBase, UUIDString
from approval_kernel.exceptions import ImmutabilityViolationError
from approval_kernel.logging_config import get_logger

if TYPE_CHECKING:
    from approval_kernel.domain.approval_chain import StepDefinition, StepState

logger = get_logger("models.chain")


def _aware(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; every stored time is UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class StepDefinitionModel(TrackedBase):
    """Step template of a course tab's approval chain.

    Contract:
        Soft-deleted definitions (``is_deleted``) are invisible to chain
        instantiation and free their approval order for reuse.

    Guarantees:
        - ``id`` is the definition id copied into every step snapshot.
    """

    __tablename__ = "approval_step_definitions"

    __table_args__ = (
        CheckConstraint("approval_order > 0", name="ck_step_definitions_order_positive"),
        CheckConstraint(
            "(is_head_approval AND role_id IS NULL) OR "
            "(NOT is_head_approval AND role_id IS NOT NULL)",
            name="ck_step_definitions_head_xor_role",
        ),
        Index(
            "ix_step_definitions_active_order",
            "course_tab_id", "approval_order",
            unique=True,
            postgresql_where=text("NOT is_deleted"),
            sqlite_where=text("NOT is_deleted"),
        ),
        Index(
            "ix_step_definitions_single_final",
            "course_tab_id",
            unique=True,
            postgresql_where=text("is_final_approval AND NOT is_deleted"),
            sqlite_where=text("is_final_approval AND NOT is_deleted"),
        ),
    )

    course_tab_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False, index=True)
    approval_order: Mapped[int] = mapped_column(Integer, nullable=False)
    role_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_head_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_final_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return (
            f"<StepDefinition {self.id} tab={self.course_tab_id} "
            f"order={self.approval_order}>"
        )

    def to_dto(self) -> StepDefinition:
        """Convert ORM model to frozen domain DTO."""
        from approval_kernel.domain.approval_chain import StepDefinition as DefinitionDTO
        from approval_kernel.domain.approval_chain import step_kind

        return DefinitionDTO(
            definition_id=self.id,
            course_tab_id=self.course_tab_id,
            order=self.approval_order,
            kind=step_kind(self.role_id, self.is_head_approval),
            is_final_approval=self.is_final_approval,
        )

    @classmethod
    def from_dto(cls, dto: StepDefinition, created_by_id: UUID) -> StepDefinitionModel:
        """Create ORM model from domain DTO."""
        return cls(
            id=dto.definition_id,
            course_tab_id=dto.course_tab_id,
            approval_order=dto.order,
            role_id=dto.required_role,
            is_head_approval=dto.is_head_approval,
            is_final_approval=dto.is_final_approval,
            is_deleted=False,
            created_by_id=created_by_id,
        )


class EnrollmentChainModel(Base):
    """An enrollment's approval chain header.

    ``aggregate_status`` caches the status derived from the step list.
    It is rewritten after every step decision and is never the source
    of truth.
    """

    __tablename__ = "approval_enrollment_chains"

    __table_args__ = (
        CheckConstraint(
            "aggregate_status IN ('pending', 'in_progress', 'rejected', "
            "'approved', 'final_approved')",
            name="ck_enrollment_chains_valid_status",
        ),
        Index("ix_enrollment_chains_status", "aggregate_status"),
    )

    enrollment_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )
    course_tab_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False, index=True)
    aggregate_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )
    status_updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    def __repr__(self) -> str:
        return (
            f"<EnrollmentChain {self.enrollment_id} "
            f"status={self.aggregate_status}>"
        )


class EnrollmentStepModel(Base):
    """One step state of an enrollment's chain.

    Contract:
        Snapshot columns (definition id, order, role, head flag, final
        flag) are copied from the definition at instantiation and never
        change.  Decision columns change exactly once, through the
        store's compare-and-set UPDATE.
    """

    __tablename__ = "approval_enrollment_steps"

    __table_args__ = (
        UniqueConstraint(
            "enrollment_id", "approval_order",
            name="uq_enrollment_steps_order",
        ),
        CheckConstraint(
            "decision IN ('pending', 'approved', 'rejected')",
            name="ck_enrollment_steps_valid_decision",
        ),
        CheckConstraint(
            "(is_head_approval AND role_id IS NULL) OR "
            "(NOT is_head_approval AND role_id IS NOT NULL)",
            name="ck_enrollment_steps_head_xor_role",
        ),
        # Covering index for pending head approvals
        Index(
            "ix_enrollment_steps_head_pending",
            "is_head_approval", "decision", "enrollment_id",
        ),
    )

    step_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )
    enrollment_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_enrollment_chains.enrollment_id"),
        nullable=False,
        index=True,
    )
    definition_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    approval_order: Mapped[int] = mapped_column(Integer, nullable=False)
    role_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_head_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_final_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    decision: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    decided_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<EnrollmentStep {self.step_id} "
            f"enrollment={self.enrollment_id} order={self.approval_order} "
            f"decision={self.decision}>"
        )

    def to_dto(self) -> StepState:
        """Convert ORM model to frozen domain DTO."""
        from approval_kernel.domain.approval_chain import (
            StepDecision,
            StepState as StepStateDTO,
            step_kind,
        )

        return StepStateDTO(
            step_id=self.step_id,
            enrollment_id=self.enrollment_id,
            definition_id=self.definition_id,
            order=self.approval_order,
            kind=step_kind(self.role_id, self.is_head_approval),
            is_final_approval=self.is_final_approval,
            decision=StepDecision(self.decision),
            decided_by=self.decided_by,
            decided_at=_aware(self.decided_at),
            comment=self.comment,
        )

    @classmethod
    def from_dto(cls, dto: StepState) -> EnrollmentStepModel:
        """Create ORM model from domain DTO."""
        return cls(
            step_id=dto.step_id,
            enrollment_id=dto.enrollment_id,
            definition_id=dto.definition_id,
            approval_order=dto.order,
            role_id=dto.required_role,
            is_head_approval=dto.is_head_approval,
            is_final_approval=dto.is_final_approval,
            decision=dto.decision.value,
            decided_by=dto.decided_by,
            decided_at=dto.decided_at,
            comment=dto.comment,
        )


# =============================================================================
# ORM-Level Immutability for Step States
# =============================================================================

STEP_SNAPSHOT_FIELDS = (
    "step_id",
    "enrollment_id",
    "definition_id",
    "approval_order",
    "role_id",
    "is_head_approval",
    "is_final_approval",
)

STEP_DECISION_FIELDS = ("decision", "decided_by", "decided_at", "comment")


@event.listens_for(EnrollmentStepModel, "before_update")
def prevent_step_update(mapper, connection, target):
    """Reject in-place changes to a step state.

    Snapshot fields are immutable.  Decision fields change only through
    the compare-and-set UPDATE, which bypasses the unit of work.
    """
    insp = inspect(target)
    for field in STEP_SNAPSHOT_FIELDS + STEP_DECISION_FIELDS:
        if insp.attrs[field].history.has_changes():
            reason = (
                f"Cannot modify snapshot field '{field}' of a step state"
                if field in STEP_SNAPSHOT_FIELDS
                else f"Step field '{field}' changes only through compare-and-set"
            )
            logger.error(
                "immutability_violation_blocked",
                extra={
                    "entity_type": "EnrollmentStep",
                    "entity_id": str(target.step_id),
                    "operation": "UPDATE",
                    "field": field,
                },
            )
            raise ImmutabilityViolationError(
                entity_type="EnrollmentStep",
                entity_id=str(target.step_id),
                reason=reason,
            )


@event.listens_for(EnrollmentStepModel, "before_delete")
def prevent_step_delete(mapper, connection, target):
    """Prevent deletion of step states."""
    raise ImmutabilityViolationError(
        entity_type="EnrollmentStep",
        entity_id=str(target.step_id),
        reason="Step states are part of the audit trail -- cannot delete",
    )
