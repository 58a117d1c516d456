from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel
from typing import Optional, List
from datetime import datetime
import uuid
from medlens.domain.auth.models import UserRole


class RequestModel(BaseModel):
    """Request bodies accept both snake_case and camelCase keys"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def check_phone(v: Optional[str]) -> Optional[str]:
    if v and not v.replace('+', '').replace('-', '').replace(' ', '').isdigit():
        raise ValueError('Phone number must contain only digits, +, -, and spaces')
    return v


class ProfileUpdate(RequestModel):
    """Fields any user may change on their own record"""
    first_name: Optional[str] = Field(None, min_length=1, max_length=50)
    last_name: Optional[str] = Field(None, min_length=1, max_length=50)
    phone: Optional[str] = Field(None, max_length=20)
    specialization: Optional[str] = Field(None, max_length=100)
    license_number: Optional[str] = Field(None, max_length=50)
    hospital: Optional[str] = Field(None, max_length=100)
    department: Optional[str] = Field(None, max_length=100)

    @field_validator('phone')
    @classmethod
    def validate_phone(cls, v):
        return check_phone(v)

    @model_validator(mode='after')
    def reject_null_names(self):
        for name in ('first_name', 'last_name'):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f'{name} cannot be null')
        return self


class UserUpdate(ProfileUpdate):
    """Schema for editing another user; role and is_active are admin only"""
    role: Optional[UserRole] = None
    is_active: Optional[bool] = None

    @model_validator(mode='after')
    def reject_null_flags(self):
        for name in ('role', 'is_active'):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f'{name} cannot be null')
        return self


class UserCreate(RequestModel):
    """Schema for registering a new user"""
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    role: UserRole
    phone: Optional[str] = Field(None, max_length=20)
    specialization: Optional[str] = Field(None, max_length=100)
    license_number: Optional[str] = Field(None, max_length=50)
    hospital: Optional[str] = Field(None, max_length=100)
    department: Optional[str] = Field(None, max_length=100)
    assigned_senior_doctor_id: Optional[uuid.UUID] = None

    @field_validator('email')
    @classmethod
    def normalize_email(cls, v):
        return v.strip().lower()

    @field_validator('phone')
    @classmethod
    def validate_phone(cls, v):
        return check_phone(v)


class LoginRequest(BaseModel):
    """Schema for login request"""
    email: EmailStr
    password: str = Field(..., min_length=1)


class AssignConsultingDoctorRequest(RequestModel):
    consulting_doctor_id: uuid.UUID
    senior_doctor_id: uuid.UUID


class UnassignConsultingDoctorRequest(RequestModel):
    consulting_doctor_id: uuid.UUID


class UserSummary(BaseModel):
    """Compact user view used inside hierarchy payloads"""
    id: uuid.UUID
    email: str
    first_name: str
    last_name: str
    role: UserRole
    specialization: Optional[str] = None
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class UserResponse(BaseModel):
    """Schema for user response data"""
    id: uuid.UUID
    email: str
    first_name: str
    last_name: str
    role: UserRole
    phone: Optional[str] = None
    specialization: Optional[str] = None
    license_number: Optional[str] = None
    hospital: Optional[str] = None
    department: Optional[str] = None
    is_active: bool
    assigned_senior_doctor_id: Optional[uuid.UUID] = None
    created_at: datetime
    updated_at: datetime
    last_login_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class LoginResponse(BaseModel):
    token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse


class HierarchyResponse(BaseModel):
    senior_doctor: Optional[UserSummary] = None
    consulting_doctors: List[UserSummary] = []


class MeResponse(BaseModel):
    user: UserResponse
    hierarchy: HierarchyResponse


class UserListResponse(BaseModel):
    """Visibility-filtered user list"""
    users: List[UserResponse]
    count: int


class DoctorListResponse(BaseModel):
    doctors: List[UserSummary]
    count: int


class SuccessResponse(BaseModel):
    """Schema for success responses"""
    success: bool = True
    message: str
