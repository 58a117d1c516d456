from datetime import datetime
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Enum, Uuid
from medlens.infrastructure.database import Base
import uuid
import enum


class UserRole(str, enum.Enum):
    """Clinical staff roles. A user holds exactly one."""
    ADMIN = "admin"
    SENIOR_DOCTOR = "senior_doctor"
    CONSULTING_DOCTOR = "consulting_doctor"
    FRONT_DESK_COORDINATOR = "front_desk_coordinator"
    JR_DOCTOR = "jr_doctor"


DOCTOR_ROLES = frozenset({UserRole.SENIOR_DOCTOR, UserRole.CONSULTING_DOCTOR})


class User(Base):
    """User model for authentication and authorization"""
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)

    # Profile information
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    phone = Column(String(20))
    specialization = Column(String(100))
    license_number = Column(String(50), unique=True)
    hospital = Column(String(100))
    department = Column(String(100))

    role = Column(Enum(UserRole, name="user_role"), nullable=False, default=UserRole.CONSULTING_DOCTOR, index=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)

    # Senior <-> consulting edge. The senior's consulting set is the inverse
    # query over this column, so both views always agree. Written only by
    # HierarchyStore.
    assigned_senior_doctor_id = Column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    last_login_at = Column(DateTime)

    def set_password(self, password: str):
        """Set password hash"""
        from medlens.core.security import get_password_hash
        self.password_hash = get_password_hash(password)

    def verify_password(self, password: str) -> bool:
        """Verify password"""
        from medlens.core.security import verify_password
        return verify_password(password, self.password_hash)

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role.value if self.role else None})>"
