"""
Tests for ApprovalChainService.

Tests cover:
- Chain instantiation: snapshotting, empty chains, duplicates, invalid tabs
- The worked example: Reviewer then Manager reaches FinalApproved
- Denials: out of order, unauthorized, already decided, chain terminal
- Head approval bypassing order
- Comment normalization and audit fields
- Stale reads: a lost compare-and-set and a chain closed under our feet
- Structured log events
"""

from uuid import uuid4

import pytest

from approval_kernel.domain.approval_chain import (
    AggregateStatus,
    StepDecision,
    StepState,
)
from approval_kernel.exceptions import (
    AlreadyDecidedError,
    ChainTerminalError,
    EnrollmentChainExistsError,
    EnrollmentChainNotFoundError,
    InvalidChainDefinitionError,
    OutOfOrderError,
    StepNotFoundError,
    UnauthorizedApproverError,
)
from approval_kernel.models.chain import StepDefinitionModel
from approval_kernel.selectors.chain_selector import ChainSelector
from approval_kernel.services.approval_chain_service import (
    ApprovalChainService,
    normalize_comment,
)
from approval_kernel.services.chain_store import SqlChainStore
from tests.conftest import HEAD_ID, MANAGER_ID, OUTSIDER_ID, REVIEWER_ID

APPROVE = StepDecision.APPROVED
REJECT = StepDecision.REJECTED


class StaleReadStore(SqlChainStore):
    """Serves a stale step snapshot to the first ``reads`` ``load_steps`` calls."""

    def __init__(self, session, clock, stale: tuple[StepState, ...], reads: int = 1):
        super().__init__(session, clock)
        self._stale = stale
        self._reads = reads

    def load_steps(self, enrollment_id):
        if self._reads > 0:
            self._reads -= 1
            return self._stale
        return super().load_steps(enrollment_id)


@pytest.fixture
def certification_tab(make_course_tab, session):
    """Reviewer (1), head approval (2), training officer (3, final)."""
    tab = make_course_tab(
        (1, "reviewer", False, False),
        (2, None, True, False),
        (3, "training_officer", False, True),
    )
    session.commit()
    return tab


# =========================================================================
# Instantiation
# =========================================================================


class TestInstantiateChain:
    def test_snapshots_definitions_as_pending_steps(self, chain_service, onboarding_tab, definition_service):
        enrollment_id = uuid4()

        steps = chain_service.instantiate_chain(onboarding_tab, enrollment_id)

        definitions = definition_service.list_steps(onboarding_tab)
        assert [s.order for s in steps] == [1, 2]
        assert [s.definition_id for s in steps] == [d.definition_id for d in definitions]
        assert all(s.decision == StepDecision.PENDING for s in steps)
        assert all(s.enrollment_id == enrollment_id for s in steps)
        assert steps[1].is_final_approval

    def test_new_chain_is_pending(self, enrolled, chain_selector):
        enrollment_id, _, _ = enrolled

        assert chain_selector.get_status(enrollment_id) == AggregateStatus.PENDING

    def test_empty_chain_is_approved_immediately(self, chain_service, chain_selector):
        enrollment_id = uuid4()

        steps = chain_service.instantiate_chain(uuid4(), enrollment_id)

        assert steps == ()
        assert chain_selector.get_status(enrollment_id) == AggregateStatus.APPROVED

    def test_second_instantiation_rejected(self, chain_service, enrolled, onboarding_tab):
        enrollment_id, _, _ = enrolled

        with pytest.raises(EnrollmentChainExistsError):
            chain_service.instantiate_chain(onboarding_tab, enrollment_id)

    def test_invalid_tab_rejected(self, chain_service, session, test_actor_id, captured_logs):
        tab = uuid4()
        # Two final steps slip past the service only through direct inserts.
        for order in (1, 2):
            session.add(
                StepDefinitionModel(
                    course_tab_id=tab,
                    approval_order=order,
                    role_id="reviewer",
                    is_final_approval=True,
                    created_by_id=test_actor_id,
                )
            )
        session.flush()

        with pytest.raises(InvalidChainDefinitionError, match="Only one final approval"):
            chain_service.instantiate_chain(tab, uuid4())
        assert any(r["message"] == "chain_instantiation_failed" for r in captured_logs())

    def test_later_definition_edits_do_not_reach_existing_chains(
        self, enrolled, definition_service, onboarding_tab, chain_selector, test_actor_id,
    ):
        enrollment_id, _, manager_step = enrolled
        manager_def = definition_service.list_steps(onboarding_tab)[1]

        definition_service.update_step(
            manager_def.definition_id, order=5, actor_id=test_actor_id, role_id="director",
        )

        step = chain_selector.get_steps(enrollment_id)[1]
        assert step == manager_step
        assert step.required_role == "manager"


# =========================================================================
# Worked example
# =========================================================================


class TestWorkedExample:
    def test_reviewer_then_manager_reaches_final_approval(self, chain_service, enrolled, chain_selector):
        enrollment_id, reviewer, manager = enrolled

        first = chain_service.decide(enrollment_id, reviewer.step_id, REVIEWER_ID, APPROVE)
        assert first.new_aggregate_status == AggregateStatus.IN_PROGRESS
        assert first.previous_aggregate_status == AggregateStatus.PENDING
        assert not first.reached_final_approval

        second = chain_service.decide(enrollment_id, manager.step_id, MANAGER_ID, APPROVE)
        assert second.new_aggregate_status == AggregateStatus.FINAL_APPROVED
        assert second.reached_final_approval
        assert chain_selector.get_status(enrollment_id) == AggregateStatus.FINAL_APPROVED

    def test_final_approved_chain_is_frozen(self, chain_service, enrolled):
        enrollment_id, reviewer, manager = enrolled
        chain_service.decide(enrollment_id, reviewer.step_id, REVIEWER_ID, APPROVE)
        chain_service.decide(enrollment_id, manager.step_id, MANAGER_ID, APPROVE)

        with pytest.raises(ChainTerminalError) as exc_info:
            chain_service.decide(enrollment_id, reviewer.step_id, REVIEWER_ID, APPROVE)
        assert exc_info.value.aggregate_status == "final_approved"

    def test_decision_records_audit_fields(self, chain_service, enrolled, deterministic_clock):
        enrollment_id, reviewer, _ = enrolled

        outcome = chain_service.decide(
            enrollment_id, reviewer.step_id, REVIEWER_ID, APPROVE, comment="  Verified ID  ",
        )

        step = outcome.updated_step
        assert step.decision == StepDecision.APPROVED
        assert step.decided_by == REVIEWER_ID
        assert step.decided_at == deterministic_clock.now()
        assert step.comment == "Verified ID"

    def test_blank_comment_stored_as_none(self, chain_service, enrolled):
        enrollment_id, reviewer, _ = enrolled

        outcome = chain_service.decide(
            enrollment_id, reviewer.step_id, REVIEWER_ID, APPROVE, comment="   ",
        )

        assert outcome.updated_step.comment is None

    def test_cached_status_follows_decisions(self, chain_service, enrolled, session):
        from approval_kernel.models.chain import EnrollmentChainModel

        enrollment_id, reviewer, _ = enrolled
        chain_service.decide(enrollment_id, reviewer.step_id, REVIEWER_ID, APPROVE)

        chain = session.query(EnrollmentChainModel).filter_by(enrollment_id=enrollment_id).one()
        assert chain.aggregate_status == AggregateStatus.IN_PROGRESS.value


# =========================================================================
# Denials
# =========================================================================


class TestDenials:
    def test_manager_before_reviewer_is_out_of_order(self, chain_service, enrolled, chain_selector):
        enrollment_id, _, manager = enrolled

        with pytest.raises(OutOfOrderError) as exc_info:
            chain_service.decide(enrollment_id, manager.step_id, MANAGER_ID, APPROVE)

        assert exc_info.value.blocking_order == 1
        assert exc_info.value.code == "OUT_OF_ORDER"
        assert chain_selector.get_steps(enrollment_id)[1].is_pending

    def test_principal_without_role_is_unauthorized(self, chain_service, enrolled):
        enrollment_id, reviewer, _ = enrolled

        with pytest.raises(UnauthorizedApproverError) as exc_info:
            chain_service.decide(enrollment_id, reviewer.step_id, OUTSIDER_ID, APPROVE)

        assert exc_info.value.principal_id == str(OUTSIDER_ID)

    def test_manager_cannot_act_as_reviewer(self, chain_service, enrolled):
        enrollment_id, reviewer, _ = enrolled

        with pytest.raises(UnauthorizedApproverError):
            chain_service.decide(enrollment_id, reviewer.step_id, MANAGER_ID, APPROVE)

    def test_deciding_twice_is_already_decided(self, chain_service, enrolled):
        enrollment_id, reviewer, _ = enrolled
        chain_service.decide(enrollment_id, reviewer.step_id, REVIEWER_ID, APPROVE)

        with pytest.raises(AlreadyDecidedError) as exc_info:
            chain_service.decide(enrollment_id, reviewer.step_id, REVIEWER_ID, REJECT)

        assert exc_info.value.current_decision == "approved"

    def test_rejection_freezes_chain(self, chain_service, enrolled, chain_selector):
        enrollment_id, reviewer, manager = enrolled

        outcome = chain_service.decide(
            enrollment_id, reviewer.step_id, REVIEWER_ID, REJECT, comment="Missing documents",
        )
        assert outcome.new_aggregate_status == AggregateStatus.REJECTED

        with pytest.raises(ChainTerminalError):
            chain_service.decide(enrollment_id, manager.step_id, MANAGER_ID, APPROVE)
        assert chain_selector.get_steps(enrollment_id)[1].is_pending

    def test_unknown_enrollment(self, chain_service):
        with pytest.raises(EnrollmentChainNotFoundError):
            chain_service.decide(uuid4(), uuid4(), REVIEWER_ID, APPROVE)

    def test_step_of_another_enrollment(self, chain_service, enrolled, onboarding_tab):
        enrollment_id, _, _ = enrolled
        other_steps = chain_service.instantiate_chain(onboarding_tab, uuid4())

        with pytest.raises(StepNotFoundError):
            chain_service.decide(enrollment_id, other_steps[0].step_id, REVIEWER_ID, APPROVE)

    def test_pending_is_not_a_decision(self, chain_service, enrolled):
        enrollment_id, reviewer, _ = enrolled

        with pytest.raises(ValueError):
            chain_service.decide(enrollment_id, reviewer.step_id, REVIEWER_ID, StepDecision.PENDING)

    def test_denial_is_logged(self, chain_service, enrolled, captured_logs):
        enrollment_id, _, manager = enrolled

        with pytest.raises(OutOfOrderError):
            chain_service.decide(enrollment_id, manager.step_id, MANAGER_ID, APPROVE)

        denied = next(r for r in captured_logs() if r["message"] == "step_decision_denied")
        assert denied["reason"] == "out_of_order"
        assert denied["enrollment_id"] == str(enrollment_id)
        assert denied["step_id"] == str(manager.step_id)


# =========================================================================
# Head approval
# =========================================================================


class TestHeadApproval:
    def test_head_step_bypasses_order(self, chain_service, certification_tab):
        enrollment_id = uuid4()
        _, head, _ = chain_service.instantiate_chain(certification_tab, enrollment_id)

        outcome = chain_service.decide(enrollment_id, head.step_id, HEAD_ID, APPROVE)

        assert outcome.updated_step.decision == StepDecision.APPROVED
        assert outcome.new_aggregate_status == AggregateStatus.IN_PROGRESS

    def test_later_steps_still_wait_on_lower_orders(self, chain_service, certification_tab):
        enrollment_id = uuid4()
        _, head, officer = chain_service.instantiate_chain(certification_tab, enrollment_id)
        chain_service.decide(enrollment_id, head.step_id, HEAD_ID, APPROVE)

        with pytest.raises(OutOfOrderError) as exc_info:
            chain_service.decide(enrollment_id, officer.step_id, HEAD_ID, APPROVE)
        assert exc_info.value.blocking_order == 1

    def test_full_certification_chain(self, chain_service, certification_tab):
        enrollment_id = uuid4()
        reviewer, head, officer = chain_service.instantiate_chain(certification_tab, enrollment_id)

        chain_service.decide(enrollment_id, head.step_id, HEAD_ID, APPROVE)
        chain_service.decide(enrollment_id, reviewer.step_id, REVIEWER_ID, APPROVE)
        outcome = chain_service.decide(enrollment_id, officer.step_id, HEAD_ID, APPROVE)

        assert outcome.reached_final_approval

    def test_head_step_requires_head_authority(self, chain_service, certification_tab):
        enrollment_id = uuid4()
        _, head, _ = chain_service.instantiate_chain(certification_tab, enrollment_id)

        with pytest.raises(UnauthorizedApproverError):
            chain_service.decide(enrollment_id, head.step_id, MANAGER_ID, APPROVE)

    def test_head_rejection_rejects_chain(self, chain_service, certification_tab):
        enrollment_id = uuid4()
        _, head, _ = chain_service.instantiate_chain(certification_tab, enrollment_id)

        outcome = chain_service.decide(enrollment_id, head.step_id, HEAD_ID, REJECT)

        assert outcome.new_aggregate_status == AggregateStatus.REJECTED


# =========================================================================
# Stale reads
# =========================================================================


class TestStaleReads:
    def test_lost_compare_and_set_is_already_decided(
        self, chain_service, enrolled, session, role_resolver, deterministic_clock, captured_logs,
    ):
        enrollment_id, reviewer, manager = enrolled
        stale = (reviewer, manager)
        chain_service.decide(enrollment_id, reviewer.step_id, REVIEWER_ID, APPROVE)

        racer = ApprovalChainService(
            session, role_resolver, clock=deterministic_clock,
            store=StaleReadStore(session, deterministic_clock, stale, reads=2),
        )
        with pytest.raises(AlreadyDecidedError):
            racer.decide(enrollment_id, reviewer.step_id, REVIEWER_ID, REJECT)

        assert any(r["message"] == "step_cas_lost" for r in captured_logs())

    def test_decided_step_caught_by_gate_under_lock(
        self, chain_service, enrolled, session, role_resolver, deterministic_clock, captured_logs,
    ):
        enrollment_id, reviewer, manager = enrolled
        stale = (reviewer, manager)
        chain_service.decide(enrollment_id, reviewer.step_id, REVIEWER_ID, APPROVE)

        racer = ApprovalChainService(
            session, role_resolver, clock=deterministic_clock,
            store=StaleReadStore(session, deterministic_clock, stale),
        )
        with pytest.raises(AlreadyDecidedError):
            racer.decide(enrollment_id, reviewer.step_id, REVIEWER_ID, REJECT)

        denied = [r for r in captured_logs() if r["message"] == "step_decision_denied"]
        assert [(r["reason"], r["under_lock"]) for r in denied] == [("already_decided", True)]
        steps = SqlChainStore(session, deterministic_clock).load_steps(enrollment_id)
        assert steps[0].decision == APPROVE
        assert steps[0].decided_by == REVIEWER_ID

    def test_chain_closed_after_gate_check(
        self, chain_service, certification_tab, session, role_resolver, deterministic_clock,
    ):
        enrollment_id = uuid4()
        stale = chain_service.instantiate_chain(certification_tab, enrollment_id)
        reviewer, head, _ = stale
        chain_service.decide(enrollment_id, reviewer.step_id, REVIEWER_ID, REJECT)

        racer = ApprovalChainService(
            session, role_resolver, clock=deterministic_clock,
            store=StaleReadStore(session, deterministic_clock, stale),
        )
        with pytest.raises(ChainTerminalError) as exc_info:
            racer.decide(enrollment_id, head.step_id, HEAD_ID, APPROVE)
        assert exc_info.value.aggregate_status == "rejected"

        # A caller that swallows the error and commits persists nothing.
        session.commit()
        steps = SqlChainStore(session, deterministic_clock).load_steps(enrollment_id)
        assert [(s.order, s.decision) for s in steps] == [
            (1, StepDecision.REJECTED),
            (2, StepDecision.PENDING),
            (3, StepDecision.PENDING),
        ]
        assert steps[1].decided_by is None
        assert ChainSelector(session).get_status(enrollment_id) == AggregateStatus.REJECTED


# =========================================================================
# Logging
# =========================================================================


class TestLogging:
    def test_decisions_logged_with_context(self, chain_service, enrolled, captured_logs):
        enrollment_id, reviewer, manager = enrolled
        chain_service.decide(enrollment_id, reviewer.step_id, REVIEWER_ID, APPROVE)
        chain_service.decide(enrollment_id, manager.step_id, MANAGER_ID, APPROVE)

        logs = captured_logs()
        decided = [r for r in logs if r["message"] == "step_decided"]
        assert [r["order"] for r in decided] == [1, 2]
        assert decided[1]["aggregate_status"] == "final_approved"
        assert decided[1]["actor_id"] == str(MANAGER_ID)
        assert decided[1]["kind"] == "role:manager"
        final = [r for r in logs if r["message"] == "chain_final_approved"]
        assert len(final) == 1
        assert final[0]["enrollment_id"] == str(enrollment_id)

    def test_rejection_logged(self, chain_service, enrolled, captured_logs):
        enrollment_id, reviewer, _ = enrolled

        chain_service.decide(enrollment_id, reviewer.step_id, REVIEWER_ID, REJECT)

        assert any(r["message"] == "chain_rejected" for r in captured_logs())

    def test_instantiation_logged(self, chain_service, onboarding_tab, captured_logs):
        enrollment_id = uuid4()

        chain_service.instantiate_chain(onboarding_tab, enrollment_id)

        record = next(r for r in captured_logs() if r["message"] == "chain_instantiated")
        assert record["step_count"] == 2
        assert record["course_tab_id"] == str(onboarding_tab)


class TestNormalizeComment:
    @pytest.mark.parametrize(
        "raw,expected",
        [(None, None), ("", None), ("  \n ", None), (" ok ", "ok"), ("a  b", "a  b")],
    )
    def test_normalize(self, raw, expected):
        assert normalize_comment(raw) == expected
