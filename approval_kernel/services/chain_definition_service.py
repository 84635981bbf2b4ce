"""
approval_kernel.services.chain_definition_service -- Course-tab chain editing.

Responsibility:
    Add, update, soft-delete and list the step definitions of a course
    tab's approval chain.  Every write validates the tab's resulting
    active chain before flushing.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/ and the
    pure chain builder engine.

Invariants enforced:
    - Approval order is positive and unique among the tab's active
      definitions.
    - At most one active final-approval step per tab.
    - A definition is head-approval XOR role-gated.
    - Edits never touch existing enrollment step states: those hold a
      snapshot, not a reference.

Failure modes:
    - InvalidChainDefinitionError when the resulting chain is invalid.
    - StepDefinitionNotFoundError for an unknown or deleted definition.
"""

from __future__ import annotations

from uuid import UUID, uuid4

from sqlalchemy import select

from approval_engines.chain_builder import validate_chain_definitions
from approval_kernel.domain.approval_chain import StepDefinition, step_kind
from approval_kernel.exceptions import (
    InvalidChainDefinitionError,
    StepDefinitionNotFoundError,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.models.chain import StepDefinitionModel
from approval_kernel.services.base import BaseService

logger = get_logger("services.chain_definition")


def kind_violations(role_id: str | None, is_head_approval: bool) -> list[str]:
    """Head approval and role are mutually exclusive; one is required."""
    if is_head_approval and role_id is not None:
        return ["Head approval must not have a role"]
    if not is_head_approval and not role_id:
        return ["Role must be specified for non-head approvals"]
    return []


class ChainDefinitionService(BaseService[StepDefinitionModel]):
    """
    Service for managing a course tab's approval step definitions.

    All public methods return frozen ``StepDefinition`` DTOs.
    """

    def _get_active(self, definition_id: UUID) -> StepDefinitionModel:
        model = self.session.get(StepDefinitionModel, definition_id)
        if model is None or model.is_deleted:
            raise StepDefinitionNotFoundError(str(definition_id))
        return model

    def _active_models(self, course_tab_id: UUID) -> list[StepDefinitionModel]:
        stmt = (
            select(StepDefinitionModel)
            .where(
                StepDefinitionModel.course_tab_id == course_tab_id,
                StepDefinitionModel.is_deleted == False,  # noqa: E712
            )
            .order_by(StepDefinitionModel.approval_order)
        )
        return list(self.session.execute(stmt).scalars().all())

    def _build_candidate(
        self,
        definition_id: UUID,
        course_tab_id: UUID,
        order: int,
        role_id: str | None,
        is_head_approval: bool,
        is_final_approval: bool,
    ) -> StepDefinition:
        """Validate the tab's chain with the candidate in place of ``definition_id``."""
        violations = kind_violations(role_id, is_head_approval)
        if not violations:
            candidate = StepDefinition(
                definition_id=definition_id,
                course_tab_id=course_tab_id,
                order=order,
                kind=step_kind(role_id, is_head_approval),
                is_final_approval=is_final_approval,
            )
            chain = [
                m.to_dto() for m in self._active_models(course_tab_id)
                if m.id != definition_id
            ]
            chain.append(candidate)
            violations = validate_chain_definitions(chain)

        if violations:
            logger.warning(
                "chain_definition_rejected",
                extra={"order": order, "violations": violations},
            )
            raise InvalidChainDefinitionError(str(course_tab_id), violations)
        return candidate

    def list_steps(self, course_tab_id: UUID) -> list[StepDefinition]:
        """
        List a course tab's active definitions ordered by approval order.

        Args:
            course_tab_id: The course tab owning the chain.

        Returns:
            List of StepDefinition DTOs (empty if the tab has no chain).
        """
        return [m.to_dto() for m in self._active_models(course_tab_id)]

    def get_step(self, definition_id: UUID) -> StepDefinition:
        """
        Get an active definition by id.

        Raises:
            StepDefinitionNotFoundError: If missing or deleted.
        """
        return self._get_active(definition_id).to_dto()

    def add_step(
        self,
        course_tab_id: UUID,
        order: int,
        *,
        actor_id: UUID,
        role_id: str | None = None,
        is_head_approval: bool = False,
        is_final_approval: bool = False,
    ) -> StepDefinition:
        """
        Add a step definition to a course tab's chain.

        Args:
            course_tab_id: The course tab owning the chain.
            order: Positive approval order, unique within the tab.
            actor_id: Principal making the change.
            role_id: Role required to decide the step (role-gated steps).
            is_head_approval: Step is resolvable by head-approval authority.
            is_final_approval: Approving the step finalizes the enrollment.

        Returns:
            The created StepDefinition DTO.

        Raises:
            InvalidChainDefinitionError: If the resulting chain is invalid.
        """
        with LogContext.bind(course_tab_id=course_tab_id, actor_id=actor_id):
            candidate = self._build_candidate(
                uuid4(), course_tab_id, order,
                role_id or None, is_head_approval, is_final_approval,
            )
            model = StepDefinitionModel.from_dto(candidate, created_by_id=actor_id)
            self.session.add(model)
            self.session.flush()

            logger.info(
                "step_definition_added",
                extra={
                    "definition_id": str(model.id),
                    "order": order,
                    "kind": candidate.kind.label,
                    "is_final_approval": is_final_approval,
                },
            )
            return model.to_dto()

    def update_step(
        self,
        definition_id: UUID,
        *,
        order: int,
        actor_id: UUID,
        role_id: str | None = None,
        is_head_approval: bool = False,
        is_final_approval: bool = False,
    ) -> StepDefinition:
        """
        Replace the fields of an active step definition.

        Enrollments already instantiated keep their snapshot.

        Raises:
            StepDefinitionNotFoundError: If missing or deleted.
            InvalidChainDefinitionError: If the resulting chain is invalid.
        """
        model = self._get_active(definition_id)
        with LogContext.bind(course_tab_id=model.course_tab_id, actor_id=actor_id):
            candidate = self._build_candidate(
                model.id, model.course_tab_id, order,
                role_id or None, is_head_approval, is_final_approval,
            )

            previous_order = model.approval_order
            model.approval_order = candidate.order
            model.role_id = candidate.required_role
            model.is_head_approval = candidate.is_head_approval
            model.is_final_approval = candidate.is_final_approval
            model.updated_by_id = actor_id
            self.session.flush()

            logger.info(
                "step_definition_updated",
                extra={
                    "definition_id": str(model.id),
                    "previous_order": previous_order,
                    "order": order,
                    "kind": candidate.kind.label,
                    "is_final_approval": is_final_approval,
                },
            )
            return model.to_dto()

    def remove_step(self, definition_id: UUID, actor_id: UUID) -> None:
        """
        Soft-delete a step definition.

        The order it held becomes free; existing enrollments are untouched.

        Raises:
            StepDefinitionNotFoundError: If missing or already deleted.
        """
        model = self._get_active(definition_id)
        model.is_deleted = True
        model.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "step_definition_removed",
            extra={
                "definition_id": str(definition_id),
                "course_tab_id": str(model.course_tab_id),
                "order": model.approval_order,
                "actor_id": str(actor_id),
            },
        )
