"""Actor role lookup."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payroll_lifecycle.errors import UnauthorizedError
from payroll_lifecycle.models import ActorRoleAssignment
from payroll_lifecycle.workflow.types import Role


class SqlIdentityProvider:
    """Resolves actor ids to roles from the actor_role table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def actor_role(self, actor_id: str) -> Role:
        async with self.session_factory() as session:
            assignment = await session.get(ActorRoleAssignment, actor_id)
        if assignment is None:
            raise UnauthorizedError(f"Unknown actor {actor_id}")
        return Role(assignment.role)

    async def assign_role(
        self, actor_id: str, role: Role, display_name: str | None = None
    ) -> None:
        """Grant a role to an actor, replacing any previous one."""
        async with self.session_factory() as session:
            async with session.begin():
                assignment = await session.get(ActorRoleAssignment, actor_id)
                if assignment is None:
                    session.add(
                        ActorRoleAssignment(
                            actor_id=actor_id, role=role.value, display_name=display_name
                        )
                    )
                else:
                    assignment.role = role.value
                    if display_name is not None:
                        assignment.display_name = display_name
