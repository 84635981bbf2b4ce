"""
ApprovalConfig schema.

Frozen dataclasses describing the approval deployment: database and
logging settings, the course-tab chains to seed, and the static
principals used for local runs.  YAML is parsed into these types by the
loader; nothing downstream reads YAML directly.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

# ---------------------------------------------------------------------------
# Infrastructure
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseSettings:
    """Database connection settings."""

    url: str = "sqlite:///approval.db"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10


@dataclass(frozen=True)
class LoggingSettings:
    """Log level for the approval_kernel logger hierarchy."""

    level: str = "INFO"


# ---------------------------------------------------------------------------
# Chains (declarative data, seeded through ChainDefinitionService)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StepDefinitionDef:
    """One step of a course tab's chain."""

    order: int
    role: str | None = None
    head_approval: bool = False
    final_approval: bool = False


@dataclass(frozen=True)
class CourseTabChainDef:
    """The approval chain of one course tab."""

    course_tab_id: UUID
    name: str
    steps: tuple[StepDefinitionDef, ...] = ()


@dataclass(frozen=True)
class PrincipalDef:
    """A principal's roles for the static role resolver."""

    principal_id: UUID
    roles: tuple[str, ...] = ()
    head_approver: bool = False
    name: str = ""


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ApprovalConfig:
    """Root configuration object returned by ``get_active_config()``."""

    config_id: str
    version: int
    database: DatabaseSettings = DatabaseSettings()
    logging: LoggingSettings = LoggingSettings()
    chains: tuple[CourseTabChainDef, ...] = ()
    principals: tuple[PrincipalDef, ...] = ()
    checksum: str = ""
