from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
import logging
import uuid

from medlens.core.exceptions import NotFoundError, RoleMismatchError, ConflictError
from medlens.core.permissions import Action, ensure_allowed
from medlens.core.principal import Principal
from medlens.domain.auth.models import User, UserRole, DOCTOR_ROLES
from medlens.domain.hierarchy.repository import HierarchyStore
from medlens.domain.patients.models import Patient
from medlens.infrastructure.database import unit_of_work

logger = logging.getLogger(__name__)


class AssignmentService:
    """The single entry point for changing hierarchy edges.

    Every check runs before the first write, and each public mutation commits
    once, so a failure leaves both ends of an edge as they were. Returned
    records are refreshed after commit and reflect the committed state.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.store = HierarchyStore(db)

    # Lookups shared with the registry services

    async def require_user_with_role(self, user_id: uuid.UUID, role: UserRole, label: str) -> User:
        user = await self.store.lock_user(user_id)
        if not user:
            raise NotFoundError(message=f"{label} not found")
        if user.role != role:
            raise RoleMismatchError(
                message=f"{label} must have role {role.value}",
                details={"user_id": str(user_id), "role": user.role.value}
            )
        return user

    async def require_assignable_doctor(self, doctor_id: uuid.UUID) -> User:
        """A doctor a patient may be assigned to: senior or consulting, and active"""
        doctor = await self.store.lock_user(doctor_id)
        if not doctor:
            raise NotFoundError(message="Doctor not found")
        if doctor.role not in DOCTOR_ROLES:
            raise RoleMismatchError(
                message="Patients can only be assigned to senior or consulting doctors",
                details={"user_id": str(doctor_id), "role": doctor.role.value}
            )
        if not doctor.is_active:
            raise ConflictError(message="Doctor is not active")
        return doctor

    async def _require_patient(self, patient_id: uuid.UUID) -> Patient:
        patient = await self.store.lock_patient(patient_id)
        if not patient:
            raise NotFoundError(message="Patient not found")
        return patient

    # Senior <-> consulting doctor

    async def link_consulting_doctor(self, senior: User, consulting: User) -> None:
        """Move ``consulting`` under ``senior``. Caller owns the transaction."""
        previous = await self.store.set_senior_doctor(consulting, senior.id)
        if previous is None:
            logger.info("Consulting doctor %s assigned to senior doctor %s", consulting.id, senior.id)
        elif previous != senior.id:
            logger.info(
                "Consulting doctor %s moved from senior doctor %s to %s",
                consulting.id, previous, senior.id
            )

    async def assign_consulting_doctor(
        self,
        principal: Principal,
        senior_id: uuid.UUID,
        consulting_id: uuid.UUID
    ) -> User:
        """Assign a consulting doctor to a senior doctor, replacing any previous senior"""
        ensure_allowed(principal, Action.ASSIGN_CONSULTING_DOCTOR)

        senior = await self.require_user_with_role(senior_id, UserRole.SENIOR_DOCTOR, "Senior doctor")
        consulting = await self.require_user_with_role(consulting_id, UserRole.CONSULTING_DOCTOR, "Consulting doctor")

        async with unit_of_work(self.db):
            await self.link_consulting_doctor(senior, consulting)

        await self.db.refresh(consulting)
        return consulting

    async def unassign_consulting_doctor(self, principal: Principal, consulting_id: uuid.UUID) -> User:
        """Remove a consulting doctor from their senior. No-op if unassigned."""
        ensure_allowed(principal, Action.ASSIGN_CONSULTING_DOCTOR)

        consulting = await self.require_user_with_role(consulting_id, UserRole.CONSULTING_DOCTOR, "Consulting doctor")
        if consulting.assigned_senior_doctor_id is None:
            return consulting

        async with unit_of_work(self.db):
            previous = await self.store.set_senior_doctor(consulting, None)
        logger.info("Consulting doctor %s removed from senior doctor %s", consulting_id, previous)

        await self.db.refresh(consulting)
        return consulting

    # Doctor <-> patient

    async def link_patient_doctor(self, patient: Patient, doctor: User) -> None:
        """Point ``patient`` at ``doctor``, dropping any previous doctor. Caller owns the transaction."""
        previous = await self.store.set_patient_doctor(patient, doctor.id)
        if previous is not None and previous != doctor.id:
            logger.info(
                "Patient %s reassigned from doctor %s to %s; previous assignment dropped",
                patient.patient_id, previous, doctor.id
            )
        elif previous is None:
            logger.info("Patient %s assigned to doctor %s", patient.patient_id, doctor.id)

    async def assign_doctor_to_patient(
        self,
        principal: Principal,
        patient_id: uuid.UUID,
        doctor_id: uuid.UUID
    ) -> Patient:
        """Assign a doctor to a patient, overwriting the current assignment"""
        ensure_allowed(principal, Action.ASSIGN_PATIENT_DOCTOR)

        patient = await self._require_patient(patient_id)
        doctor = await self.require_assignable_doctor(doctor_id)
        if patient.is_closed:
            raise ConflictError(message="Case is closed; assignment cannot change")

        if patient.assigned_doctor_id != doctor.id:
            async with unit_of_work(self.db):
                await self.link_patient_doctor(patient, doctor)

        await self.db.refresh(patient)
        return patient

    async def unassign_doctor_from_patient(self, principal: Principal, patient_id: uuid.UUID) -> Patient:
        """Clear a patient's doctor. No-op if none is assigned."""
        ensure_allowed(principal, Action.UNASSIGN_PATIENT_DOCTOR)

        patient = await self._require_patient(patient_id)
        if patient.assigned_doctor_id is None:
            return patient
        if patient.is_closed:
            raise ConflictError(message="Case is closed; assignment cannot change")

        async with unit_of_work(self.db):
            previous = await self.store.set_patient_doctor(patient, None)
        logger.info("Doctor %s unassigned from patient %s", previous, patient.patient_id)

        await self.db.refresh(patient)
        return patient

    # Role changes and deletion

    async def detach_for_role_change(self, user: User, new_role: Optional[UserRole]) -> None:
        """Drop the edges ``user`` can no longer hold once it has ``new_role``.

        Passing ``None`` drops every edge. Caller owns the transaction.
        """
        if user.role == UserRole.CONSULTING_DOCTOR and new_role != UserRole.CONSULTING_DOCTOR:
            previous = await self.store.set_senior_doctor(user, None)
            if previous is not None:
                logger.info("Consulting doctor %s detached from senior doctor %s", user.id, previous)

        if user.role == UserRole.SENIOR_DOCTOR and new_role != UserRole.SENIOR_DOCTOR:
            released = await self.store.release_consulting_doctors(user.id)
            if released:
                logger.info("Senior doctor %s released %d consulting doctors", user.id, len(released))

        if new_role not in DOCTOR_ROLES:
            cleared = await self.store.unassign_patients_of(user.id)
            if cleared:
                logger.info("Unassigned %d patients from former doctor %s", len(cleared), user.id)

    async def detach_user(self, user: User) -> None:
        """Remove every edge touching ``user``. Caller owns the transaction."""
        await self.detach_for_role_change(user, None)
