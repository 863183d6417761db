"""
User and project registration handlers.

Stand-in for the identity and submission subsystems: they own these records,
the ledger core only reads them and mutates their balances.
"""

import logging
import math
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from bluecarbon.core.errors import DuplicateRequest, NotFound, ValidationFailed
from bluecarbon.handlers.audit import AuditLog
from bluecarbon.models.audit import AuditActionType, AuditEvent
from bluecarbon.models.project import Project, ProjectCreate, ProjectStatus
from bluecarbon.models.user import User, UserCreate, UserRole

logger = logging.getLogger(__name__)


async def create_user(
    session: AsyncSession,
    user_data: UserCreate,
    audit_log: Optional[AuditLog] = None
) -> User:
    """Register a user. Raises DuplicateRequest if the id is taken."""
    values = user_data.model_dump(exclude_none=True)
    user = User(**values)
    session.add(user)
    try:
        await session.commit()
    except IntegrityError as e:
        await session.rollback()
        raise DuplicateRequest(f"User {user_data.id} already exists") from e
    await session.refresh(user)

    logger.info("Registered %s user %s", user.role.value, user.id)
    if audit_log is not None:
        audit_log.record(AuditEvent(
            user_id=user.id,
            action_type=AuditActionType.SIGNUP,
            entity_type="user",
            entity_id=user.id,
            metadata={"name": user.name, "role": user.role.value}
        ))
    return user


async def get_user(session: AsyncSession, user_id: str) -> User:
    user = await session.get(User, user_id)
    if not user:
        raise NotFound(f"User {user_id} not found")
    return user


async def create_project(
    session: AsyncSession,
    project_data: ProjectCreate,
    audit_log: Optional[AuditLog] = None
) -> Project:
    """
    Register a submitted project in the pending state.

    Raises:
        NotFound: owner does not exist
        ValidationFailed: owner is not a contributor, or lifetime_co2 is not finite
        DuplicateRequest: project id already taken
    """
    owner = await session.get(User, project_data.user_id)
    if not owner:
        raise NotFound(f"User {project_data.user_id} not found")
    if owner.role != UserRole.CONTRIBUTOR:
        raise ValidationFailed("Only contributors can submit projects")
    if not math.isfinite(project_data.lifetime_co2):
        raise ValidationFailed("lifetime_co2 must be a finite amount")

    project = Project(**project_data.model_dump(exclude_none=True), status=ProjectStatus.PENDING)
    session.add(project)
    try:
        await session.commit()
    except IntegrityError as e:
        await session.rollback()
        raise DuplicateRequest(f"Project {project_data.id} already exists") from e
    await session.refresh(project)

    logger.info("Project %s submitted by %s", project.id, owner.id)
    if audit_log is not None:
        audit_log.record(AuditEvent(
            user_id=owner.id,
            action_type=AuditActionType.PROJECT_SUBMITTED,
            entity_type="project",
            entity_id=project.id,
            metadata={"name": project.name, "lifetimeCo2": project.lifetime_co2}
        ))
    return project


async def get_project(session: AsyncSession, project_id: str) -> Project:
    project = await session.get(Project, project_id)
    if not project:
        raise NotFound(f"Project {project_id} not found")
    return project


async def get_projects(
    session: AsyncSession,
    status: Optional[ProjectStatus] = None,
    user_id: Optional[str] = None
) -> List[Project]:
    """Projects, newest submission first, optionally filtered."""
    statement = select(Project)

    if status:
        statement = statement.where(Project.status == status)
    if user_id:
        statement = statement.where(Project.user_id == user_id)

    result = await session.execute(statement.order_by(Project.submitted_at.desc()))
    return list(result.scalars().all())
