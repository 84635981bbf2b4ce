"""
Shared fixtures for the approval chain tests.

Every test that touches the database gets an empty schema of its own: a
throwaway SQLite file under ``tmp_path`` unless ``DATABASE_URL`` points
at another database (for example a disposable PostgreSQL instance), in
which case the tables are dropped and recreated per test.

The worked example used throughout is a two-step onboarding tab: a
reviewer approves first, then a manager gives final approval.  A head of
training may short-circuit any chain.
"""

import json
import logging
import os
import threading
from io import StringIO
from typing import Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy.orm import Session

from approval_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from approval_kernel.domain.clock import DeterministicClock
from approval_kernel.domain.role_resolver import StaticRoleResolver
from approval_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from approval_kernel.selectors.chain_selector import ChainSelector
from approval_kernel.services.approval_chain_service import ApprovalChainService
from approval_kernel.services.chain_definition_service import ChainDefinitionService

TEST_ACTOR_ID = uuid4()

REVIEWER_ID = UUID("11111111-1111-4111-8111-111111111111")
MANAGER_ID = UUID("22222222-2222-4222-8222-222222222222")
HEAD_ID = UUID("33333333-3333-4333-8333-333333333333")
OUTSIDER_ID = UUID("44444444-4444-4444-8444-444444444444")


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "slow_locks: threads that block on database locks",
    )


# -----------------------------------------------------------------------------
# Logging
# -----------------------------------------------------------------------------


@pytest.fixture(autouse=True, scope="session")
def _suite_logging():
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _empty_log_context():
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Records emitted under ``approval_kernel`` during the test.

    Call the fixture value to get the JSON lines parsed so far::

        assert "step_decided" in [r["message"] for r in captured_logs()]
    """
    buffer = StringIO()
    handler = logging.StreamHandler(buffer)
    handler.setFormatter(StructuredFormatter())
    kernel_logger = logging.getLogger("approval_kernel")
    kernel_logger.addHandler(handler)

    def parsed() -> list[dict]:
        return [json.loads(line) for line in buffer.getvalue().splitlines() if line]

    try:
        yield parsed
    finally:
        kernel_logger.removeHandler(handler)


# -----------------------------------------------------------------------------
# Database
# -----------------------------------------------------------------------------


def get_database_url(tmp_path) -> str:
    return os.environ.get("DATABASE_URL") or f"sqlite:///{tmp_path / 'approval_test.db'}"


@pytest.fixture
def db_engine(tmp_path):
    engine = init_engine_from_url(
        get_database_url(tmp_path), pool_size=10, max_overflow=10, pool_timeout=30,
    )
    drop_tables()
    create_tables()
    yield engine
    reset_engine()


@pytest.fixture
def session(db_engine) -> Generator[Session, None, None]:
    """
    The test's main session.

    Tests commit for real when other sessions need to see their writes;
    anything left uncommitted is rolled back on teardown.
    """
    sess = get_session()
    yield sess
    sess.rollback()
    sess.close()


class _SessionTracker:
    """Hands out sessions to worker threads and cleans all of them up."""

    def __init__(self, factory):
        self._factory = factory
        self._lock = threading.Lock()
        self._sessions: list[Session] = []
        self._closed = False

    def __call__(self) -> Session:
        with self._lock:
            if self._closed:
                raise RuntimeError("session_factory closed (fixture teardown)")
            sess = self._factory()
            self._sessions.append(sess)
            return sess

    def close_all(self) -> None:
        with self._lock:
            self._closed = True
        for sess in self._sessions:
            sess.rollback()
            sess.close()


@pytest.fixture
def session_factory(db_engine):
    """Callable returning a new session; one per thread in the race tests."""
    tracker = _SessionTracker(get_session_factory())
    yield tracker
    tracker.close_all()


# -----------------------------------------------------------------------------
# Principals, clock and services
# -----------------------------------------------------------------------------


@pytest.fixture
def test_actor_id() -> UUID:
    return TEST_ACTOR_ID


@pytest.fixture
def deterministic_clock():
    return DeterministicClock()


@pytest.fixture
def role_resolver() -> StaticRoleResolver:
    """Reviewer, manager and head of training; OUTSIDER_ID holds nothing."""
    return StaticRoleResolver(
        roles_by_principal={
            REVIEWER_ID: ["reviewer"],
            MANAGER_ID: ["manager"],
            HEAD_ID: ["training_officer"],
        },
        head_approvers=[HEAD_ID],
    )


@pytest.fixture
def definition_service(session: Session) -> ChainDefinitionService:
    return ChainDefinitionService(session)


@pytest.fixture
def chain_service(session: Session, role_resolver, deterministic_clock) -> ApprovalChainService:
    return ApprovalChainService(session, role_resolver, clock=deterministic_clock)


@pytest.fixture
def chain_selector(session: Session) -> ChainSelector:
    return ChainSelector(session)


# -----------------------------------------------------------------------------
# Course tabs and enrollments
# -----------------------------------------------------------------------------


@pytest.fixture
def make_course_tab(definition_service, test_actor_id):
    """
    Define a course tab's chain and return its id.

    Each step is ``(order, role, is_head_approval, is_final_approval)``;
    pass ``None`` as the role for a head approval step.
    """

    def define(*steps: tuple[int, str | None, bool, bool]) -> UUID:
        course_tab_id = uuid4()
        for order, role, head, final in steps:
            definition_service.add_step(
                course_tab_id,
                order,
                actor_id=test_actor_id,
                role_id=role,
                is_head_approval=head,
                is_final_approval=final,
            )
        return course_tab_id

    return define


@pytest.fixture
def onboarding_tab(make_course_tab, session) -> UUID:
    course_tab_id = make_course_tab(
        (1, "reviewer", False, False),
        (2, "manager", False, True),
    )
    session.commit()
    return course_tab_id


@pytest.fixture
def enrolled(chain_service, onboarding_tab, session):
    """Committed onboarding enrollment: ``(enrollment_id, reviewer_step, manager_step)``."""
    enrollment_id = uuid4()
    reviewer_step, manager_step = chain_service.instantiate_chain(onboarding_tab, enrollment_id)
    session.commit()
    return enrollment_id, reviewer_step, manager_step
