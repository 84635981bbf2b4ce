"""
Role resolution -- ``StaticRoleResolver`` and ``resolve_principal``.

``StaticRoleResolver`` is an in-memory ``RoleResolver`` backing local
runs, the seed script and tests.  Production deployments plug in a
resolver that asks the identity/permission service instead.

``resolve_principal`` turns a resolver's answers into the
``ActingPrincipal`` the pure approval gate consumes.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from uuid import UUID

from approval_kernel.domain.approval_chain import ActingPrincipal, RoleResolver, StepState


class StaticRoleResolver:
    """Role lookups answered from fixed mappings."""

    def __init__(
        self,
        roles_by_principal: Mapping[UUID, Iterable[str]] | None = None,
        head_approvers: Iterable[UUID] = (),
    ) -> None:
        self._roles: dict[UUID, frozenset[str]] = {
            principal_id: frozenset(roles)
            for principal_id, roles in (roles_by_principal or {}).items()
        }
        self._head_approvers = frozenset(head_approvers)

    def has_role(self, principal_id: UUID, role_id: str) -> bool:
        return role_id in self._roles.get(principal_id, frozenset())

    def has_head_approval_authority(self, principal_id: UUID) -> bool:
        return principal_id in self._head_approvers

    def grant(self, principal_id: UUID, *role_ids: str) -> None:
        self._roles[principal_id] = self._roles.get(principal_id, frozenset()) | set(role_ids)

    def grant_head_authority(self, principal_id: UUID) -> None:
        self._head_approvers = self._head_approvers | {principal_id}


def resolve_principal(
    role_resolver: RoleResolver,
    principal_id: UUID,
    steps: Iterable[StepState],
) -> ActingPrincipal:
    """Resolve the principal's authority over ``steps`` before gating.

    Only the roles the chain actually requires are looked up.
    """
    required = {s.required_role for s in steps if s.required_role is not None}
    return ActingPrincipal(
        principal_id=principal_id,
        roles=frozenset(
            role for role in sorted(required)
            if role_resolver.has_role(principal_id, role)
        ),
        has_head_authority=role_resolver.has_head_approval_authority(principal_id),
    )
