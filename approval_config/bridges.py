"""
Config -> Kernel Bridges.

Functions that turn an ``ApprovalConfig`` into kernel inputs.  They live
in approval_config (the producer) because the kernel must NEVER import
approval_config.

Usage:
    from approval_config.bridges import build_role_resolver, seed_chain_definitions

    config = get_active_config()
    roles = build_role_resolver(config)
    seed_chain_definitions(config, ChainDefinitionService(session), actor_id)
"""

from __future__ import annotations

from uuid import UUID

from approval_config.schema import ApprovalConfig
from approval_kernel.domain.approval_chain import StepDefinition
from approval_kernel.domain.role_resolver import StaticRoleResolver
from approval_kernel.logging_config import get_logger
from approval_kernel.services.chain_definition_service import ChainDefinitionService

logger = get_logger("config.bridges")


def build_role_resolver(config: ApprovalConfig) -> StaticRoleResolver:
    """Build a StaticRoleResolver from the configured principals."""
    return StaticRoleResolver(
        roles_by_principal={p.principal_id: p.roles for p in config.principals},
        head_approvers=[p.principal_id for p in config.principals if p.head_approver],
    )


def seed_chain_definitions(
    config: ApprovalConfig,
    service: ChainDefinitionService,
    actor_id: UUID,
) -> list[StepDefinition]:
    """Write the configured chains through ``service``.

    A course tab that already has active definitions is left alone, so
    seeding twice is harmless.

    Returns:
        The definitions created by this call.

    Raises:
        InvalidChainDefinitionError: If a configured chain is invalid.
            Definitions flushed before the failure stay in the caller's
            transaction; the caller rolls back.
    """
    created: list[StepDefinition] = []
    for chain in config.chains:
        if service.list_steps(chain.course_tab_id):
            logger.info(
                "chain_seed_skipped",
                extra={
                    "course_tab_id": str(chain.course_tab_id),
                    "chain_name": chain.name,
                },
            )
            continue
        for step in sorted(chain.steps, key=lambda s: s.order):
            created.append(
                service.add_step(
                    chain.course_tab_id,
                    step.order,
                    actor_id=actor_id,
                    role_id=step.role,
                    is_head_approval=step.head_approval,
                    is_final_approval=step.final_approval,
                )
            )
        logger.info(
            "chain_seeded",
            extra={
                "course_tab_id": str(chain.course_tab_id),
                "chain_name": chain.name,
                "step_count": len(chain.steps),
                "config_id": config.config_id,
            },
        )
    return created
