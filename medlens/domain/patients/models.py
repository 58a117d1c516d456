from datetime import datetime
from sqlalchemy import Column, String, Date, Boolean, DateTime, ForeignKey, Text, Integer, Enum, Uuid
from medlens.infrastructure.database import Base
import uuid
import enum


class Gender(str, enum.Enum):
    """Gender enumeration"""
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"


class PatientStatus(str, enum.Enum):
    """Case status. CASE_CLOSED is terminal."""
    ACTIVE = "active"
    CASE_CLOSED = "case_closed"


class Patient(Base):
    """Patient record. Only the assignment pointer matters to access control."""
    __tablename__ = "patients"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    patient_id = Column(String(50), unique=True, nullable=False, index=True)

    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    date_of_birth = Column(Date)
    gender = Column(Enum(Gender, name="patient_gender"))
    phone = Column(String(20))
    email = Column(String(255))
    notes = Column(Text)

    # Doctor <-> patient edge, written only by HierarchyStore
    assigned_doctor_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    status = Column(Enum(PatientStatus, name="patient_status"), nullable=False, default=PatientStatus.ACTIVE, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    closed_at = Column(DateTime)
    closed_by = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"))

    created_by = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"))
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    @property
    def is_closed(self) -> bool:
        return self.status == PatientStatus.CASE_CLOSED


class PatientFile(Base):
    """Metadata for a document uploaded against a patient.

    The bytes live in object storage; only the record and its uploader are kept here.
    """
    __tablename__ = "patient_files"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    patient_id = Column(Uuid, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False, index=True)
    uploaded_by = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), index=True)

    file_name = Column(String(255), nullable=False)
    storage_key = Column(String(512), unique=True, nullable=False)
    content_type = Column(String(100))
    size_bytes = Column(Integer)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
