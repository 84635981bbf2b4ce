"""
approval_kernel.services.approval_chain_service -- Enrollment approval chains.

Responsibility:
    Instantiate an enrollment's approval chain from its course tab's
    definitions, and apply a principal's approve/reject decision to one
    step.  Delegates rule evaluation to the pure engines
    (``approval_engines``) and persistence to a ``ChainStore``.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/ and
    approval_engines.

Decision pipeline:
    load steps -> resolve principal roles -> gate -> lock the enrollment
    -> re-read steps and gate again -> compare-and-set the step (guarded
    on Pending) -> re-read steps -> recompute and persist the aggregate
    status.  Everything happens in the caller's transaction (flush-only).

Invariants enforced:
    - A denied decision writes nothing: both gate checks, including the
      one made under the enrollment lock, run before the step write.
    - Each step is decided at most once: a lost compare-and-set raises
      AlreadyDecidedError.
    - The persisted aggregate status is always recomputed from a fresh
      read of the persisted step list under the enrollment lock.

Failure modes:
    - EnrollmentChainExistsError / InvalidChainDefinitionError from
      instantiate_chain.
    - EnrollmentChainNotFoundError, StepNotFoundError and the
      StepDecisionError family from decide.

Audit relevance:
    Step rows record decided_by, decided_at and comment.  Every decision
    and every denial is logged with its enrollment and step.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy.orm import Session

from approval_engines.aggregate_status import resolve_aggregate
from approval_engines.approval_gate import can_act
from approval_engines.chain_builder import build_chain, validate_chain_definitions
from approval_kernel.domain.approval_chain import (
    ActingPrincipal,
    AggregateStatus,
    ChainStore,
    DecisionOutcome,
    RoleResolver,
    StepDecision,
    StepState,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.role_resolver import resolve_principal
from approval_kernel.exceptions import (
    AlreadyDecidedError,
    EnrollmentChainExistsError,
    EnrollmentChainNotFoundError,
    InvalidChainDefinitionError,
    StepDecisionError,
    StepNotFoundError,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.models.chain import EnrollmentStepModel
from approval_kernel.services.base import BaseService
from approval_kernel.services.chain_store import SqlChainStore

logger = get_logger("services.approval_chain")


def normalize_comment(comment: str | None) -> str | None:
    """Strip a decision comment; blank comments are stored as None."""
    if comment is None:
        return None
    comment = comment.strip()
    return comment or None


class ApprovalChainService(BaseService[EnrollmentStepModel]):
    """
    Instantiates enrollment chains and applies step decisions.

    Contract:
        Flush-only.  The caller owns the transaction and must roll back
        when a call raises.
    """

    def __init__(
        self,
        session: Session,
        role_resolver: RoleResolver,
        clock: Clock | None = None,
        store: ChainStore | None = None,
    ) -> None:
        super().__init__(session)
        self._roles = role_resolver
        self._clock = clock or SystemClock()
        self._store = store or SqlChainStore(session, self._clock)

    # ------------------------------------------------------------------
    # Instantiation
    # ------------------------------------------------------------------

    def instantiate_chain(
        self,
        course_tab_id: UUID,
        enrollment_id: UUID,
    ) -> tuple[StepState, ...]:
        """
        Snapshot the course tab's chain into Pending steps for an enrollment.

        Call once, when the enrollment is created.  An empty chain makes
        the enrollment Approved immediately.

        Returns:
            The new step states ordered by approval order.

        Raises:
            EnrollmentChainExistsError: The enrollment already has a chain.
            InvalidChainDefinitionError: Duplicate orders or several
                final steps among the tab's definitions.
        """
        with LogContext.bind(course_tab_id=course_tab_id, enrollment_id=enrollment_id):
            if self._store.chain_exists(enrollment_id):
                raise EnrollmentChainExistsError(str(enrollment_id))

            definitions = self._store.load_step_definitions(course_tab_id)
            violations = validate_chain_definitions(definitions)
            if violations:
                logger.error(
                    "chain_instantiation_failed",
                    extra={"violations": violations},
                )
                raise InvalidChainDefinitionError(str(course_tab_id), violations)

            steps = build_chain(enrollment_id, definitions)
            status = resolve_aggregate(steps)
            self._store.create_chain(enrollment_id, course_tab_id, steps, status)

            logger.info(
                "chain_instantiated",
                extra={
                    "step_count": len(steps),
                    "aggregate_status": status.value,
                },
            )
            return steps

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def _check_gate(
        self,
        steps: tuple[StepState, ...],
        target: StepState,
        principal: ActingPrincipal,
        decision: StepDecision,
        *,
        under_lock: bool,
    ) -> None:
        """Log and raise the typed error when the gate denies ``target``."""
        gate = can_act(steps, target.step_id, principal)
        if gate.allowed:
            return
        logger.info(
            "step_decision_denied",
            extra={
                "reason": gate.reason.value,
                "detail": gate.detail,
                "decision": decision.value,
                "under_lock": under_lock,
            },
        )
        raise StepDecisionError.from_denial(
            gate.reason,
            str(target.enrollment_id),
            str(target.step_id),
            principal_id=str(principal.principal_id),
            blocking_order=gate.blocking_order,
            aggregate_status=resolve_aggregate(steps).value,
            current_decision=target.decision.value,
        )

    def decide(
        self,
        enrollment_id: UUID,
        step_id: UUID,
        principal_id: UUID,
        decision: StepDecision,
        comment: str | None = None,
    ) -> DecisionOutcome:
        """
        Approve or reject one step of an enrollment's chain.

        Args:
            enrollment_id: Enrollment owning the chain.
            step_id: Step to decide.
            principal_id: Acting principal; roles come from the resolver.
            decision: APPROVED or REJECTED.
            comment: Optional free text, stripped; blank becomes None.

        Returns:
            DecisionOutcome with the recomputed aggregate status.

        Raises:
            ValueError: ``decision`` is PENDING.
            EnrollmentChainNotFoundError: No chain for the enrollment.
            StepNotFoundError: Step is not part of the enrollment's chain.
            AlreadyDecidedError: Step already decided, or a concurrent
                decision won the compare-and-set.
            OutOfOrderError: An upstream step is not yet approved.
            UnauthorizedApproverError: Principal lacks the role or head
                authority.
            ChainTerminalError: Enrollment is Rejected or FinalApproved.
        """
        decision = StepDecision(decision)
        if decision == StepDecision.PENDING:
            raise ValueError("A step can only be decided as approved or rejected")
        comment = normalize_comment(comment)

        with LogContext.bind(
            enrollment_id=enrollment_id, step_id=step_id, actor_id=principal_id,
        ):
            if not self._store.chain_exists(enrollment_id):
                raise EnrollmentChainNotFoundError(str(enrollment_id))

            steps = self._store.load_steps(enrollment_id)
            target = next((s for s in steps if s.step_id == step_id), None)
            if target is None:
                raise StepNotFoundError(str(enrollment_id), str(step_id))

            principal = resolve_principal(self._roles, principal_id, steps)
            self._check_gate(steps, target, principal, decision, under_lock=False)

            # Gate again on the steps read under the enrollment lock; no
            # denial may follow the step write.
            previous = self._store.lock_enrollment(enrollment_id)
            steps = self._store.load_steps(enrollment_id)
            target = next(s for s in steps if s.step_id == step_id)
            self._check_gate(steps, target, principal, decision, under_lock=True)

            new_state = target.decided(
                decision, principal_id, self._clock.now(), comment,
            )
            if not self._store.compare_and_set_step(
                step_id, StepDecision.PENDING, new_state,
            ):
                logger.warning(
                    "step_cas_lost",
                    extra={"decision": decision.value},
                )
                raise AlreadyDecidedError(str(enrollment_id), str(step_id))

            fresh = self._store.load_steps(enrollment_id)
            new_status = resolve_aggregate(fresh)
            self._store.save_aggregate_status(enrollment_id, new_status)

            updated = next(s for s in fresh if s.step_id == step_id)
            outcome = DecisionOutcome(
                new_aggregate_status=new_status,
                updated_step=updated,
                previous_aggregate_status=previous,
            )

            logger.info(
                "step_decided",
                extra={
                    "decision": decision.value,
                    "order": updated.order,
                    "kind": updated.kind.label,
                    "previous_status": previous.value,
                    "aggregate_status": new_status.value,
                },
            )
            if outcome.reached_final_approval:
                logger.info("chain_final_approved")
            elif new_status == AggregateStatus.REJECTED and previous != new_status:
                logger.info("chain_rejected")
            return outcome
