from typing import Optional, List
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from medlens.domain.auth.models import User, UserRole, DOCTOR_ROLES
import uuid


class UserRepository:
    """Repository for user data access operations.

    Methods flush but never commit; the calling service owns the transaction.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, user_data: dict) -> User:
        """Create a new user"""
        password = user_data.pop("password", None)
        user = User(**user_data)
        if password is not None:
            user.set_password(password)

        self.db.add(user)
        await self.db.flush()
        return user

    async def get_by_id(self, user_id: uuid.UUID) -> Optional[User]:
        """Get user by ID"""
        result = await self.db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def get_by_email(self, email: str) -> Optional[User]:
        """Get user by email (case-insensitive)"""
        result = await self.db.execute(
            select(User).where(User.email == email.strip().lower())
        )
        return result.scalar_one_or_none()

    async def get_by_license_number(self, license_number: str) -> Optional[User]:
        result = await self.db.execute(
            select(User).where(User.license_number == license_number)
        )
        return result.scalar_one_or_none()

    async def list_doctors(
        self,
        role: Optional[UserRole] = None,
        is_active: Optional[bool] = True
    ) -> List[User]:
        """Senior and consulting doctors, optionally narrowed to one role"""
        roles = [role] if role else list(DOCTOR_ROLES)
        query = select(User).where(User.role.in_(roles))

        if is_active is not None:
            query = query.where(User.is_active.is_(is_active))

        result = await self.db.execute(query.order_by(User.last_name, User.first_name))
        return list(result.scalars().all())

    async def update(self, user: User, update_data: dict) -> User:
        """Apply plain column updates to a loaded user"""
        for field, value in update_data.items():
            setattr(user, field, value)
        await self.db.flush()
        return user

    async def update_last_login(self, user: User) -> None:
        """Update user's last login timestamp"""
        user.last_login_at = datetime.utcnow()
        await self.db.flush()

    async def delete(self, user: User) -> None:
        """Delete user account"""
        await self.db.delete(user)
        await self.db.flush()
