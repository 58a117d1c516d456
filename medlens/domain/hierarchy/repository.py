from typing import Optional, List, Set
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from medlens.domain.auth.models import User, UserRole
from medlens.domain.patients.models import Patient
import uuid


class HierarchyStore:
    """Holds the assignment graph.

    Two kinds of edge exist, each stored as a single foreign key so that its
    inverse view is always a query over the same column:

    * senior <-> consulting doctor: ``User.assigned_senior_doctor_id``
    * doctor <-> patient: ``Patient.assigned_doctor_id``

    This class is the only writer of those columns. It flushes but never
    commits; AssignmentService wraps every mutation in one transaction.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def lock_user(self, user_id: uuid.UUID) -> Optional[User]:
        """Load a user row for update, refreshing any copy already in the session"""
        result = await self.db.execute(
            select(User)
            .where(User.id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def lock_patient(self, patient_id: uuid.UUID) -> Optional[Patient]:
        result = await self.db.execute(
            select(Patient)
            .where(Patient.id == patient_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    # Reads

    async def consulting_doctor_ids(self, senior_id: uuid.UUID) -> Set[uuid.UUID]:
        result = await self.db.execute(
            select(User.id).where(
                User.assigned_senior_doctor_id == senior_id,
                User.role == UserRole.CONSULTING_DOCTOR
            )
        )
        return set(result.scalars().all())

    async def consulting_doctors(self, senior_id: uuid.UUID) -> List[User]:
        result = await self.db.execute(
            select(User)
            .where(
                User.assigned_senior_doctor_id == senior_id,
                User.role == UserRole.CONSULTING_DOCTOR
            )
            .order_by(User.last_name, User.first_name)
        )
        return list(result.scalars().all())

    async def senior_doctor_of(self, consulting: User) -> Optional[User]:
        if consulting.assigned_senior_doctor_id is None:
            return None
        result = await self.db.execute(
            select(User).where(User.id == consulting.assigned_senior_doctor_id)
        )
        return result.scalar_one_or_none()

    # Writes

    async def set_senior_doctor(self, consulting: User, senior_id: Optional[uuid.UUID]) -> Optional[uuid.UUID]:
        """Point a consulting doctor at a senior (or none). Returns the previous senior id.

        Moving a consulting doctor removes it from the old senior's set in the
        same write, since that set is derived from this column.
        """
        previous = consulting.assigned_senior_doctor_id
        consulting.assigned_senior_doctor_id = senior_id
        await self.db.flush()
        return previous

    async def release_consulting_doctors(self, senior_id: uuid.UUID) -> List[uuid.UUID]:
        """Detach every consulting doctor from a senior. Returns the released ids."""
        result = await self.db.execute(
            select(User)
            .where(User.assigned_senior_doctor_id == senior_id)
            .with_for_update()
        )
        released = []
        for consulting in result.scalars().all():
            consulting.assigned_senior_doctor_id = None
            released.append(consulting.id)
        await self.db.flush()
        return released

    async def set_patient_doctor(self, patient: Patient, doctor_id: Optional[uuid.UUID]) -> Optional[uuid.UUID]:
        """Point a patient at a doctor (or none). Returns the previous doctor id."""
        previous = patient.assigned_doctor_id
        patient.assigned_doctor_id = doctor_id
        await self.db.flush()
        return previous

    async def unassign_patients_of(self, doctor_id: uuid.UUID) -> List[uuid.UUID]:
        """Clear the doctor from every patient assigned to them. Returns patient ids."""
        result = await self.db.execute(
            select(Patient)
            .where(Patient.assigned_doctor_id == doctor_id)
            .with_for_update()
        )
        cleared = []
        for patient in result.scalars().all():
            patient.assigned_doctor_id = None
            cleared.append(patient.id)
        await self.db.flush()
        return cleared
