"""
Visibility resolution: which users and patients a principal may read.

Rules are keyed on the closed ``UserRole`` enum. A role that is not handled
explicitly falls through to the narrowest scope (itself for users, nothing for
patients), so a newly introduced role starts with no access.

| role                   | users                          | patients                               |
|------------------------|--------------------------------|----------------------------------------|
| admin                  | everyone                       | everyone                               |
| senior_doctor          | self + assigned consulting     | assigned to self or to their team      |
| consulting_doctor      | self                           | assigned to self                       |
| front_desk_coordinator | self                           | everyone                               |
| jr_doctor              | self                           | none                                   |

Resolution never mutates state and is recomputed on every request.
"""

from typing import List, Optional
import uuid

from sqlalchemy import select, or_, true, false
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement

from medlens.core.principal import Principal
from medlens.domain.auth.models import User, UserRole
from medlens.domain.patients.models import Patient, PatientStatus


def _team_ids(principal: Principal) -> List[uuid.UUID]:
    return [principal.user_id, *principal.consulting_doctor_ids]


def user_scope(principal: Principal) -> ColumnElement:
    """SQL filter selecting the users visible to ``principal``"""
    role = principal.role
    if role == UserRole.ADMIN:
        return true()
    if role == UserRole.SENIOR_DOCTOR:
        return or_(User.id == principal.user_id, User.id.in_(list(principal.consulting_doctor_ids)))
    return User.id == principal.user_id


def patient_scope(principal: Principal) -> ColumnElement:
    """SQL filter selecting the patients visible to ``principal``"""
    role = principal.role
    if role in (UserRole.ADMIN, UserRole.FRONT_DESK_COORDINATOR):
        return true()
    if role == UserRole.SENIOR_DOCTOR:
        return Patient.assigned_doctor_id.in_(_team_ids(principal))
    if role == UserRole.CONSULTING_DOCTOR:
        return Patient.assigned_doctor_id == principal.user_id
    return false()


def can_view_user(principal: Principal, user: User) -> bool:
    role = principal.role
    if role == UserRole.ADMIN:
        return True
    if principal.is_self(user.id):
        return True
    if role == UserRole.SENIOR_DOCTOR:
        return user.id in principal.consulting_doctor_ids
    return False


def can_view_patient(principal: Principal, patient: Patient) -> bool:
    role = principal.role
    if role in (UserRole.ADMIN, UserRole.FRONT_DESK_COORDINATOR):
        return True
    if patient.assigned_doctor_id is None:
        return False
    if role == UserRole.SENIOR_DOCTOR:
        return patient.assigned_doctor_id in _team_ids(principal)
    if role == UserRole.CONSULTING_DOCTOR:
        return patient.assigned_doctor_id == principal.user_id
    return False


class VisibilityResolver:
    """Computes visibility sets against the database"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def visible_users(
        self,
        principal: Principal,
        include_inactive: bool = False,
        role: Optional[UserRole] = None,
        search: Optional[str] = None
    ) -> List[User]:
        """Users the principal may read. Inactive users are left out unless asked for."""
        query = select(User).where(user_scope(principal))

        if not include_inactive:
            query = query.where(User.is_active.is_(True))

        if role:
            query = query.where(User.role == role)

        if search:
            pattern = f"%{search}%"
            query = query.where(
                or_(
                    User.email.ilike(pattern),
                    User.first_name.ilike(pattern),
                    User.last_name.ilike(pattern)
                )
            )

        result = await self.db.execute(query.order_by(User.created_at, User.email))
        return list(result.scalars().all())

    async def visible_patients(
        self,
        principal: Principal,
        status: Optional[PatientStatus] = None,
        assigned_doctor_id: Optional[uuid.UUID] = None,
        search: Optional[str] = None
    ) -> List[Patient]:
        """Patients the principal may read, newest first"""
        query = select(Patient).where(patient_scope(principal))

        if status:
            query = query.where(Patient.status == status)

        if assigned_doctor_id:
            query = query.where(Patient.assigned_doctor_id == assigned_doctor_id)

        if search:
            pattern = f"%{search}%"
            query = query.where(
                or_(
                    Patient.first_name.ilike(pattern),
                    Patient.last_name.ilike(pattern),
                    Patient.patient_id.ilike(pattern)
                )
            )

        result = await self.db.execute(query.order_by(Patient.created_at.desc()))
        return list(result.scalars().all())
