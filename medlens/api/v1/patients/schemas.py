from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from typing import Optional, List
from datetime import datetime, date
import uuid
from medlens.api.v1.auth.schemas import RequestModel, check_phone
from medlens.domain.patients.models import Gender, PatientStatus


class PatientCreate(RequestModel):
    """Schema for creating a new patient"""
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    date_of_birth: Optional[date] = None
    gender: Optional[Gender] = None
    phone: Optional[str] = Field(None, max_length=20)
    email: Optional[EmailStr] = None
    notes: Optional[str] = None
    assigned_doctor_id: Optional[uuid.UUID] = None

    @field_validator('phone')
    @classmethod
    def validate_phone(cls, v):
        return check_phone(v)


class PatientUpdate(RequestModel):
    """Profile fields only; the assigned doctor changes through the assignment endpoints"""
    first_name: Optional[str] = Field(None, min_length=1, max_length=50)
    last_name: Optional[str] = Field(None, min_length=1, max_length=50)
    date_of_birth: Optional[date] = None
    gender: Optional[Gender] = None
    phone: Optional[str] = Field(None, max_length=20)
    email: Optional[EmailStr] = None
    notes: Optional[str] = None

    @field_validator('phone')
    @classmethod
    def validate_phone(cls, v):
        return check_phone(v)

    @field_validator('first_name', 'last_name', mode='before')
    @classmethod
    def reject_null_names(cls, v):
        if v is None:
            raise ValueError('Name cannot be null')
        return v


class AssignPatientDoctorRequest(RequestModel):
    doctor_id: uuid.UUID


class PatientResponse(BaseModel):
    """Schema for patient response data"""
    id: uuid.UUID
    patient_id: str
    first_name: str
    last_name: str
    date_of_birth: Optional[date] = None
    gender: Optional[Gender] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    notes: Optional[str] = None
    assigned_doctor_id: Optional[uuid.UUID] = None
    status: PatientStatus
    is_active: bool
    closed_at: Optional[datetime] = None
    closed_by: Optional[uuid.UUID] = None
    created_by: Optional[uuid.UUID] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PatientListResponse(BaseModel):
    patients: List[PatientResponse]
    count: int


class PatientFileCreate(RequestModel):
    """Metadata for a file already stored in object storage"""
    file_name: str = Field(..., min_length=1, max_length=255)
    storage_key: str = Field(..., min_length=1, max_length=512)
    content_type: Optional[str] = Field(None, max_length=100)
    size_bytes: Optional[int] = Field(None, ge=0)


class PatientFileResponse(BaseModel):
    id: uuid.UUID
    patient_id: uuid.UUID
    uploaded_by: Optional[uuid.UUID] = None
    file_name: str
    storage_key: str
    content_type: Optional[str] = None
    size_bytes: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PatientFileListResponse(BaseModel):
    files: List[PatientFileResponse]
    count: int
