"""
SQL-backed lookups the engine and dispatcher consult.
Every call queries fresh: recipients reflect who is active right now.
"""
import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .collaborators import (
    HANDLER_ROLES,
    STAFF_ROLES,
    SUPERVISOR_ROLES,
    ConditionInfo,
    Recipient,
    StudentInfo,
)
from ..models.condition import MedicalCondition
from ..models.student import Student
from ..models.user import User

logger = logging.getLogger("infirmary.directory")


def _recipient(user: User) -> Recipient:
    return Recipient(id=user.id, full_name=user.full_name or user.username, role=user.role)


class SqlStaffDirectory:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def _users_with_roles(self, roles) -> list[Recipient]:
        async with self._session_maker() as session:
            result = await session.execute(
                select(User).where(User.role.in_(sorted(roles)), User.is_active.is_(True))
            )
            return [_recipient(u) for u in result.scalars().all()]

    async def active_staff(self) -> list[Recipient]:
        return await self._users_with_roles(STAFF_ROLES)

    async def supervisors(self) -> list[Recipient]:
        return await self._users_with_roles(SUPERVISOR_ROLES)

    async def guardians_of(self, student_id: UUID) -> list[Recipient]:
        async with self._session_maker() as session:
            result = await session.execute(
                select(User)
                .join(Student, Student.guardian_id == User.id)
                .where(Student.id == student_id, User.is_active.is_(True))
            )
            guardians = [_recipient(u) for u in result.scalars().all()]
        if not guardians:
            logger.warning(f"Student {student_id} has no active guardian on record")
        return guardians

    async def get_staff(self, staff_id: UUID) -> Optional[Recipient]:
        async with self._session_maker() as session:
            result = await session.execute(
                select(User).where(
                    User.id == staff_id,
                    User.role.in_(sorted(HANDLER_ROLES)),
                    User.is_active.is_(True),
                )
            )
            user = result.scalar_one_or_none()
        return _recipient(user) if user else None

    async def describe_student(self, student_id: UUID) -> Optional[StudentInfo]:
        async with self._session_maker() as session:
            student = await session.get(Student, student_id)
        if student is None:
            return None
        return StudentInfo(id=student.id, full_name=student.full_name, student_code=student.student_code)


class SqlConditionRegistry:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def get_condition(self, condition_id: UUID) -> Optional[ConditionInfo]:
        async with self._session_maker() as session:
            result = await session.execute(
                select(MedicalCondition).where(
                    MedicalCondition.id == condition_id,
                    MedicalCondition.is_deleted.is_(False),
                )
            )
            condition = result.scalar_one_or_none()
        if condition is None:
            return None
        return ConditionInfo(
            id=condition.id,
            condition_type=condition.condition_type,
            student_id=condition.student_id,
            name=condition.name,
        )
