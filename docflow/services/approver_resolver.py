"""
Approver resolution.

The approver pool of a step is the union of everyone holding one of its
roles and its directly assigned principals, resolved at task-creation time
(never cached). The result is de-duplicated and sorted so task creation
order is deterministic.

RoleMembership implementations:
    DirectoryRoleMembership  reads the role_assignments mirror table
    StaticRoleMembership     fixed mapping, for embedding and tests
"""

from __future__ import annotations

import logging
from typing import Iterable, Mapping, Protocol

from sqlalchemy import select

from docflow.core.exceptions import NoApproversAvailableError
from docflow.core.roles import Role
from docflow.models import db
from docflow.models.directory import RoleAssignment

logger = logging.getLogger(__name__)


class RoleMembership(Protocol):
    def resolve(self, role: Role) -> set[str]:
        ...


class DirectoryRoleMembership:
    """Active principals per role from the role_assignments table."""

    def resolve(self, role: Role) -> set[str]:
        rows = db.session.execute(
            select(RoleAssignment.principal_id).where(
                RoleAssignment.role == Role.parse(role).value,
                RoleAssignment.is_active.is_(True),
            )
        ).scalars()
        return set(rows)

    def assign(self, role: Role | str, principal: str) -> RoleAssignment:
        """Grant (or re-activate) ``role`` for ``principal`` and commit."""
        role = Role.parse(role)
        row = db.session.execute(
            select(RoleAssignment).where(
                RoleAssignment.principal_id == principal,
                RoleAssignment.role == role.value,
            )
        ).scalar_one_or_none()
        if row is None:
            row = RoleAssignment(principal_id=principal, role=role.value, is_active=True)
            db.session.add(row)
        else:
            row.is_active = True
        db.session.commit()
        logger.info("Role %s assigned to %s", role.value, principal)
        return row

    def revoke(self, role: Role | str, principal: str) -> bool:
        """Deactivate the assignment; returns False if there was none."""
        role = Role.parse(role)
        row = db.session.execute(
            select(RoleAssignment).where(
                RoleAssignment.principal_id == principal,
                RoleAssignment.role == role.value,
                RoleAssignment.is_active.is_(True),
            )
        ).scalar_one_or_none()
        if row is None:
            return False
        row.is_active = False
        db.session.commit()
        logger.info("Role %s revoked from %s", role.value, principal)
        return True


class StaticRoleMembership:
    """In-memory membership: {Role.MANAGER: {"alice", "bob"}}."""

    def __init__(self, members: Mapping[Role | str, Iterable[str]] | None = None) -> None:
        self._members: dict[Role, set[str]] = {}
        for role, principals in (members or {}).items():
            self._members[Role.parse(role)] = set(principals)

    def resolve(self, role: Role) -> set[str]:
        return set(self._members.get(Role.parse(role), set()))

    def assign(self, role: Role | str, principal: str) -> None:
        self._members.setdefault(Role.parse(role), set()).add(principal)

    def revoke(self, role: Role | str, principal: str) -> None:
        self._members.get(Role.parse(role), set()).discard(principal)


class ApproverResolver:
    def __init__(self, membership: RoleMembership) -> None:
        self.membership = membership

    def resolve(self, step) -> list[str]:
        """Return the sorted approver pool for ``step`` (a StepSpec).

        Raises:
            NoApproversAvailableError: the pool is empty and the step is required.
        Returns an empty list for an optional step with nobody to ask.
        """
        principals: set[str] = set(step.approvers)
        for role in step.roles:
            principals |= self.membership.resolve(role)
        principals.discard("")

        if not principals:
            if step.is_required:
                raise NoApproversAvailableError(step.order, step.name)
            logger.info("Optional step %s '%s' has no approvers", step.order, step.name)
            return []
        return sorted(principals)

    def has_role(self, principal: str, role: Role) -> bool:
        return principal in self.membership.resolve(role)
