from typing import Optional, List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import delete, select
from medlens.domain.patients.models import Patient, PatientFile
import uuid


class PatientRepository:
    """Repository for patient data access operations"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, patient_data: dict) -> Patient:
        """Create a new patient"""
        patient = Patient(**patient_data)
        self.db.add(patient)
        await self.db.flush()
        return patient

    async def get_by_id(self, patient_id: uuid.UUID) -> Optional[Patient]:
        """Get patient by ID"""
        result = await self.db.execute(select(Patient).where(Patient.id == patient_id))
        return result.scalar_one_or_none()

    async def get_by_patient_id(self, patient_id: str) -> Optional[Patient]:
        """Get patient by the human-facing patient identifier"""
        result = await self.db.execute(select(Patient).where(Patient.patient_id == patient_id))
        return result.scalar_one_or_none()

    async def update(self, patient: Patient, update_data: dict) -> Patient:
        """Apply plain column updates to a loaded patient"""
        for field, value in update_data.items():
            setattr(patient, field, value)
        await self.db.flush()
        return patient

    async def delete(self, patient: Patient) -> None:
        await self.db.delete(patient)
        await self.db.flush()


class PatientFileRepository:
    """Repository for patient file records"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, file_data: dict) -> PatientFile:
        record = PatientFile(**file_data)
        self.db.add(record)
        await self.db.flush()
        return record

    async def get_by_id(self, file_id: uuid.UUID) -> Optional[PatientFile]:
        result = await self.db.execute(select(PatientFile).where(PatientFile.id == file_id))
        return result.scalar_one_or_none()

    async def get_by_storage_key(self, storage_key: str) -> Optional[PatientFile]:
        result = await self.db.execute(select(PatientFile).where(PatientFile.storage_key == storage_key))
        return result.scalar_one_or_none()

    async def list_for_patient(self, patient_id: uuid.UUID) -> List[PatientFile]:
        result = await self.db.execute(
            select(PatientFile)
            .where(PatientFile.patient_id == patient_id)
            .order_by(PatientFile.created_at.desc())
        )
        return list(result.scalars().all())

    async def delete(self, record: PatientFile) -> None:
        await self.db.delete(record)
        await self.db.flush()

    async def delete_for_patient(self, patient_id: uuid.UUID) -> int:
        """Delete every file record of a patient. Returns the number removed."""
        result = await self.db.execute(delete(PatientFile).where(PatientFile.patient_id == patient_id))
        await self.db.flush()
        return result.rowcount
