from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
import uuid

from medlens.api.deps import get_current_principal
from medlens.core.principal import Principal
from medlens.domain.hierarchy.service import AssignmentService
from medlens.domain.patients.models import PatientStatus
from medlens.domain.patients.service import PatientService, PatientFileService
from medlens.api.v1.patients.schemas import (
    AssignPatientDoctorRequest,
    PatientCreate,
    PatientFileCreate,
    PatientFileListResponse,
    PatientFileResponse,
    PatientListResponse,
    PatientResponse,
    PatientUpdate,
)
from medlens.infrastructure.database import get_db

router = APIRouter(prefix="/auth/patients", tags=["Patients"])


@router.post("", response_model=PatientResponse, status_code=status.HTTP_201_CREATED)
async def create_patient(
    patient_data: PatientCreate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db)
):
    """Create a new patient"""
    return await PatientService(db).create_patient(principal, patient_data)


@router.get("", response_model=PatientListResponse, status_code=status.HTTP_200_OK)
async def get_patients(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
    status_filter: Optional[PatientStatus] = Query(None, alias="status"),
    assigned_doctor_id: Optional[uuid.UUID] = None,
    search: Optional[str] = None
):
    """Patients visible to the caller"""
    patients = await PatientService(db).list_patients(
        principal,
        status=status_filter,
        assigned_doctor_id=assigned_doctor_id,
        search=search
    )
    return PatientListResponse(
        patients=[PatientResponse.model_validate(patient) for patient in patients],
        count=len(patients)
    )


@router.get("/{patient_id}", response_model=PatientResponse, status_code=status.HTTP_200_OK)
async def get_patient(
    patient_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db)
):
    """Get patient by ID"""
    return await PatientService(db).get_patient(principal, patient_id)


@router.put("/{patient_id}", response_model=PatientResponse, status_code=status.HTTP_200_OK)
async def update_patient(
    patient_id: uuid.UUID,
    patient_data: PatientUpdate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db)
):
    """Update patient information"""
    return await PatientService(db).update_patient(principal, patient_id, patient_data)


@router.put("/{patient_id}/assign-doctor", response_model=PatientResponse, status_code=status.HTTP_200_OK)
async def assign_doctor(
    patient_id: uuid.UUID,
    assignment: AssignPatientDoctorRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db)
):
    """Assign a doctor to the patient, replacing any current one"""
    return await AssignmentService(db).assign_doctor_to_patient(principal, patient_id, assignment.doctor_id)


@router.put("/{patient_id}/unassign-doctor", response_model=PatientResponse, status_code=status.HTTP_200_OK)
async def unassign_doctor(
    patient_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db)
):
    """Clear the patient's assigned doctor"""
    return await AssignmentService(db).unassign_doctor_from_patient(principal, patient_id)


@router.put("/{patient_id}/close-case", response_model=PatientResponse, status_code=status.HTTP_200_OK)
async def close_case(
    patient_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db)
):
    """Close the patient's case"""
    return await PatientService(db).close_case(principal, patient_id)


@router.post("/{patient_id}/files", response_model=PatientFileResponse, status_code=status.HTTP_201_CREATED)
async def add_patient_file(
    patient_id: uuid.UUID,
    file_data: PatientFileCreate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db)
):
    """Record a file uploaded for the patient"""
    return await PatientFileService(db).add_file(principal, patient_id, file_data)


@router.get("/{patient_id}/files", response_model=PatientFileListResponse, status_code=status.HTTP_200_OK)
async def get_patient_files(
    patient_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db)
):
    files = await PatientFileService(db).list_files(principal, patient_id)
    return PatientFileListResponse(
        files=[PatientFileResponse.model_validate(record) for record in files],
        count=len(files)
    )


@router.delete("/{patient_id}/files/{file_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_patient_file(
    patient_id: uuid.UUID,
    file_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db)
):
    """Delete a file record (uploader or admin)"""
    await PatientFileService(db).delete_file(principal, patient_id, file_id)


@router.delete("/{patient_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_patient(
    patient_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db)
):
    """Delete a patient (admin only)"""
    await PatientService(db).delete_patient(principal, patient_id)
