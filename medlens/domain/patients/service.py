from typing import Optional, List
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import datetime
import logging
import secrets
import time
import uuid

from medlens.core.exceptions import AuthorizationError, ConflictError, NotFoundError
from medlens.core.permissions import Action, ensure_allowed
from medlens.core.principal import Principal
from medlens.core.visibility import VisibilityResolver, can_view_patient
from medlens.domain.hierarchy.repository import HierarchyStore
from medlens.domain.hierarchy.service import AssignmentService
from medlens.domain.patients.models import Patient, PatientFile, PatientStatus
from medlens.domain.patients.repository import PatientRepository, PatientFileRepository
from medlens.infrastructure.database import unit_of_work
from medlens.api.v1.patients.schemas import PatientCreate, PatientUpdate, PatientFileCreate

logger = logging.getLogger(__name__)


class PatientService:
    """Service layer for patient management operations"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.patient_repo = PatientRepository(db)
        self.hierarchy = HierarchyStore(db)
        self.assignments = AssignmentService(db)
        self.visibility = VisibilityResolver(db)

    def _generate_patient_id(self) -> str:
        """Format: PAT + epoch milliseconds + 5 random characters"""
        return f"PAT{int(time.time() * 1000)}{secrets.token_hex(3)[:5]}".upper()

    async def create_patient(self, principal: Principal, patient_data: PatientCreate) -> Patient:
        """Create a patient, optionally assigning a doctor in the same transaction"""
        ensure_allowed(principal, Action.CREATE_PATIENT)

        doctor = None
        if patient_data.assigned_doctor_id:
            doctor = await self.assignments.require_assignable_doctor(patient_data.assigned_doctor_id)

        patient_id = self._generate_patient_id()
        while await self.patient_repo.get_by_patient_id(patient_id):
            patient_id = self._generate_patient_id()

        patient_dict = patient_data.model_dump(exclude={"assigned_doctor_id"})
        patient_dict.update({
            "patient_id": patient_id,
            "created_by": principal.user_id,
        })

        async with unit_of_work(self.db):
            patient = await self.patient_repo.create(patient_dict)
            if doctor:
                await self.assignments.link_patient_doctor(patient, doctor)

        logger.info("Patient %s created by %s", patient.patient_id, principal.user_id)
        await self.db.refresh(patient)
        return patient

    async def get_patient(self, principal: Principal, patient_id: uuid.UUID) -> Patient:
        """Get a patient the principal can see"""
        patient = await self.patient_repo.get_by_id(patient_id)
        if not patient:
            raise NotFoundError(message="Patient not found")

        if not can_view_patient(principal, patient):
            logger.warning(
                "User %s denied read of patient %s: patient_not_visible",
                principal.user_id, patient_id
            )
            raise AuthorizationError(message="Insufficient permissions", reason="patient_not_visible")

        return patient

    async def list_patients(
        self,
        principal: Principal,
        status: Optional[PatientStatus] = None,
        assigned_doctor_id: Optional[uuid.UUID] = None,
        search: Optional[str] = None
    ) -> List[Patient]:
        return await self.visibility.visible_patients(
            principal,
            status=status,
            assigned_doctor_id=assigned_doctor_id,
            search=search
        )

    async def update_patient(self, principal: Principal, patient_id: uuid.UUID, patient_data: PatientUpdate) -> Patient:
        """Update patient profile fields"""
        patient = await self.hierarchy.lock_patient(patient_id)
        if not patient:
            raise NotFoundError(message="Patient not found")

        ensure_allowed(principal, Action.UPDATE_PATIENT, patient)

        if patient.is_closed:
            raise ConflictError(message="Case is closed; patient record cannot be edited")

        async with unit_of_work(self.db):
            await self.patient_repo.update(patient, patient_data.model_dump(exclude_unset=True))

        await self.db.refresh(patient)
        return patient

    async def close_case(self, principal: Principal, patient_id: uuid.UUID) -> Patient:
        """Close a patient's case. Closing an already closed case succeeds unchanged."""
        patient = await self.hierarchy.lock_patient(patient_id)
        if not patient:
            raise NotFoundError(message="Patient not found")

        ensure_allowed(principal, Action.CLOSE_PATIENT_CASE, patient)

        if patient.is_closed:
            return patient

        async with unit_of_work(self.db):
            await self.patient_repo.update(patient, {
                "status": PatientStatus.CASE_CLOSED,
                "is_active": False,
                "closed_at": datetime.utcnow(),
                "closed_by": principal.user_id,
            })

        logger.info("Case closed for patient %s by %s", patient.patient_id, principal.user_id)
        await self.db.refresh(patient)
        return patient

    async def delete_patient(self, principal: Principal, patient_id: uuid.UUID) -> None:
        """Delete a patient with its file records and doctor link (admin only)"""
        ensure_allowed(principal, Action.DELETE_PATIENT)

        patient = await self.hierarchy.lock_patient(patient_id)
        if not patient:
            raise NotFoundError(message="Patient not found")

        async with unit_of_work(self.db):
            previous = await self.hierarchy.set_patient_doctor(patient, None)
            if previous:
                logger.info("Patient %s released from doctor %s before deletion", patient.patient_id, previous)
            await PatientFileRepository(self.db).delete_for_patient(patient.id)
            await self.patient_repo.delete(patient)

        logger.info("Patient %s deleted by %s", patient.patient_id, principal.user_id)


class PatientFileService:
    """File records attached to a patient. The stored bytes are managed elsewhere."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.file_repo = PatientFileRepository(db)
        self.patient_repo = PatientRepository(db)

    async def _get_patient(self, patient_id: uuid.UUID) -> Patient:
        patient = await self.patient_repo.get_by_id(patient_id)
        if not patient:
            raise NotFoundError(message="Patient not found")
        return patient

    async def add_file(self, principal: Principal, patient_id: uuid.UUID, file_data: PatientFileCreate) -> PatientFile:
        patient = await self._get_patient(patient_id)
        ensure_allowed(principal, Action.UPLOAD_PATIENT_FILE, patient)

        if await self.file_repo.get_by_storage_key(file_data.storage_key):
            raise ConflictError(message="A file with this storage key is already recorded")

        file_dict = file_data.model_dump()
        file_dict.update({"patient_id": patient.id, "uploaded_by": principal.user_id})

        async with unit_of_work(self.db):
            record = await self.file_repo.create(file_dict)

        logger.info("File %s recorded for patient %s by %s", record.id, patient.patient_id, principal.user_id)
        await self.db.refresh(record)
        return record

    async def list_files(self, principal: Principal, patient_id: uuid.UUID) -> List[PatientFile]:
        patient = await PatientService(self.db).get_patient(principal, patient_id)
        return await self.file_repo.list_for_patient(patient.id)

    async def delete_file(self, principal: Principal, patient_id: uuid.UUID, file_id: uuid.UUID) -> None:
        """Delete a file record; only its uploader or an admin may"""
        patient = await self._get_patient(patient_id)

        record = await self.file_repo.get_by_id(file_id)
        if not record or record.patient_id != patient.id:
            raise NotFoundError(message="File not found")

        ensure_allowed(principal, Action.DELETE_PATIENT_FILE, record)

        async with unit_of_work(self.db):
            await self.file_repo.delete(record)

        logger.info("File %s of patient %s deleted by %s", file_id, patient.patient_id, principal.user_id)
