from typing import Optional, List, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import datetime
import logging
import uuid

from medlens.core.config import settings
from medlens.core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    InvalidCredentialsError,
    NotFoundError,
    RoleMismatchError,
)
from medlens.core.permissions import Action, ensure_allowed
from medlens.core.principal import Principal
from medlens.core.security import create_access_token, pwd_context, verify_token
from medlens.core.visibility import VisibilityResolver, can_view_user
from medlens.domain.auth.models import User, UserRole
from medlens.domain.auth.repository import UserRepository
from medlens.domain.hierarchy.repository import HierarchyStore
from medlens.domain.hierarchy.service import AssignmentService
from medlens.infrastructure.database import unit_of_work
from medlens.api.v1.auth.schemas import (
    LoginRequest,
    ProfileUpdate,
    UserCreate,
    UserUpdate,
)

logger = logging.getLogger(__name__)


class AuthenticationService:
    """Credential verification and token resolution"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.user_repo = UserRepository(db)
        self.hierarchy = HierarchyStore(db)

    async def authenticate_user(self, login_data: LoginRequest) -> Dict[str, Any]:
        """Verify an email/password pair and issue an access token.

        Unknown email, inactive account and wrong password all raise the same
        InvalidCredentialsError.
        """
        user = await self.user_repo.get_by_email(login_data.email)

        if not user:
            # Keep the response time close to the known-email path
            pwd_context.dummy_verify()
            logger.info("Failed login for unknown email")
            raise InvalidCredentialsError()

        if not user.verify_password(login_data.password) or not user.is_active:
            logger.info("Failed login for user %s", user.id)
            raise InvalidCredentialsError()

        async with unit_of_work(self.db):
            await self.user_repo.update_last_login(user)

        access_token = create_access_token(str(user.id), {
            "email": user.email,
            "role": user.role.value,
        })
        logger.info("User %s logged in as %s", user.id, user.role.value)

        return {
            "token": access_token,
            "token_type": "bearer",
            "expires_in": settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
            "user": user,
        }

    async def resolve_principal(self, token: Optional[str]) -> Principal:
        """Turn a raw bearer token into a Principal, re-reading the user every time"""
        if not token:
            raise AuthenticationError(message="Not authenticated")

        payload = verify_token(token, "access")
        if not payload:
            raise AuthenticationError(message="Invalid or expired token")

        try:
            user_id = uuid.UUID(payload["sub"])
        except (KeyError, TypeError, ValueError):
            raise AuthenticationError(message="Invalid or expired token")

        user = await self.user_repo.get_by_id(user_id)
        if not user or not user.is_active:
            raise AuthenticationError(message="User not found or inactive")

        if payload.get("role") != user.role.value:
            logger.info("Rejected token for user %s: role changed since issue", user.id)
            raise AuthenticationError(message="Token no longer matches account; log in again")

        consulting_ids = frozenset()
        if user.role == UserRole.SENIOR_DOCTOR:
            consulting_ids = frozenset(await self.hierarchy.consulting_doctor_ids(user.id))

        return Principal(
            user=user,
            issued_at=datetime.utcfromtimestamp(payload["iat"]),
            expires_at=datetime.utcfromtimestamp(payload["exp"]),
            consulting_doctor_ids=consulting_ids,
        )


class UserService:
    """Service layer for user management operations"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.user_repo = UserRepository(db)
        self.hierarchy = HierarchyStore(db)
        self.assignments = AssignmentService(db)
        self.visibility = VisibilityResolver(db)

    async def _ensure_unique_license(self, license_number: Optional[str], user_id: Optional[uuid.UUID] = None):
        if not license_number:
            return
        existing = await self.user_repo.get_by_license_number(license_number)
        if existing and existing.id != user_id:
            raise ConflictError(message="License number already registered")

    async def register_user(self, principal: Principal, user_data: UserCreate) -> User:
        """Create a user account (admin only), optionally under a senior doctor"""
        ensure_allowed(principal, Action.REGISTER_USER)

        if await self.user_repo.get_by_email(user_data.email):
            raise ConflictError(message="Email already registered")
        await self._ensure_unique_license(user_data.license_number)

        senior = None
        if user_data.assigned_senior_doctor_id:
            if user_data.role != UserRole.CONSULTING_DOCTOR:
                raise RoleMismatchError(message="Only consulting doctors can be assigned to a senior doctor")
            senior = await self.assignments.require_user_with_role(
                user_data.assigned_senior_doctor_id, UserRole.SENIOR_DOCTOR, "Senior doctor"
            )

        user_dict = user_data.model_dump(exclude={"assigned_senior_doctor_id"})

        async with unit_of_work(self.db):
            user = await self.user_repo.create(user_dict)
            if senior:
                await self.assignments.link_consulting_doctor(senior, user)

        logger.info("User %s registered as %s by %s", user.id, user.role.value, principal.user_id)
        await self.db.refresh(user)
        return user

    async def get_user(self, principal: Principal, user_id: uuid.UUID) -> User:
        """Get a single user the principal is allowed to see"""
        user = await self.user_repo.get_by_id(user_id)
        if not user:
            raise NotFoundError(message="User not found")

        if not can_view_user(principal, user):
            logger.warning("User %s denied read of user %s: user_not_visible", principal.user_id, user_id)
            raise AuthorizationError(message="Insufficient permissions", reason="user_not_visible")

        return user

    async def list_users(
        self,
        principal: Principal,
        include_inactive: bool = False,
        role: Optional[UserRole] = None,
        search: Optional[str] = None
    ) -> List[User]:
        """Users in the principal's visibility set"""
        return await self.visibility.visible_users(
            principal,
            include_inactive=include_inactive,
            role=role,
            search=search
        )

    async def update_user(self, principal: Principal, user_id: uuid.UUID, user_data: UserUpdate) -> User:
        """Edit a user; role and active flag changes are admin only"""
        user = await self.hierarchy.lock_user(user_id)
        if not user:
            raise NotFoundError(message="User not found")

        ensure_allowed(principal, Action.EDIT_USER, user)

        update_dict = user_data.model_dump(exclude_unset=True)
        if "role" in update_dict or "is_active" in update_dict:
            ensure_allowed(principal, Action.EDIT_USER_ROLE_OR_STATUS, user)

        await self._ensure_unique_license(update_dict.get("license_number"), user.id)

        new_role = update_dict.get("role")
        async with unit_of_work(self.db):
            if new_role is not None and new_role != user.role:
                await self.assignments.detach_for_role_change(user, new_role)
                logger.info("User %s role changed from %s to %s", user.id, user.role.value, new_role.value)
            await self.user_repo.update(user, update_dict)

        await self.db.refresh(user)
        return user

    async def update_profile(self, principal: Principal, profile_data: ProfileUpdate) -> User:
        """Edit the caller's own profile fields"""
        user = principal.user
        ensure_allowed(principal, Action.EDIT_USER, user)

        update_dict = profile_data.model_dump(exclude_unset=True)
        await self._ensure_unique_license(update_dict.get("license_number"), user.id)

        async with unit_of_work(self.db):
            await self.user_repo.update(user, update_dict)

        await self.db.refresh(user)
        return user

    async def delete_user(self, principal: Principal, user_id: uuid.UUID) -> None:
        """Delete a user after detaching every hierarchy edge"""
        ensure_allowed(principal, Action.DELETE_USER)

        if principal.is_self(user_id):
            raise ConflictError(message="You cannot delete your own account")

        user = await self.hierarchy.lock_user(user_id)
        if not user:
            raise NotFoundError(message="User not found")

        async with unit_of_work(self.db):
            await self.assignments.detach_user(user)
            await self.user_repo.delete(user)

        logger.info("User %s deleted by %s", user_id, principal.user_id)

    async def list_assignable_doctors(self, principal: Principal, role: Optional[UserRole] = None) -> List[User]:
        """Active doctors that patients can be assigned to"""
        ensure_allowed(principal, Action.LIST_ASSIGNABLE_DOCTORS)
        if role is not None and role not in (UserRole.SENIOR_DOCTOR, UserRole.CONSULTING_DOCTOR):
            raise RoleMismatchError(message="Role filter must be a doctor role")
        return await self.user_repo.list_doctors(role=role, is_active=True)

    async def get_hierarchy(self, principal: Principal) -> Dict[str, Any]:
        """The caller's place in the doctor hierarchy"""
        user = principal.user
        hierarchy: Dict[str, Any] = {"senior_doctor": None, "consulting_doctors": []}

        if user.role == UserRole.CONSULTING_DOCTOR:
            hierarchy["senior_doctor"] = await self.hierarchy.senior_doctor_of(user)
        elif user.role == UserRole.SENIOR_DOCTOR:
            hierarchy["consulting_doctors"] = await self.hierarchy.consulting_doctors(user.id)

        return hierarchy
