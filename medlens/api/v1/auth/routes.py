from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
import uuid

from medlens.api.deps import get_current_principal
from medlens.core.principal import Principal
from medlens.domain.auth.models import UserRole
from medlens.domain.auth.service import AuthenticationService, UserService
from medlens.domain.hierarchy.service import AssignmentService
from medlens.api.v1.auth.schemas import (
    AssignConsultingDoctorRequest,
    DoctorListResponse,
    LoginRequest,
    LoginResponse,
    MeResponse,
    ProfileUpdate,
    SuccessResponse,
    UnassignConsultingDoctorRequest,
    UserCreate,
    UserListResponse,
    UserResponse,
    UserUpdate,
)
from medlens.infrastructure.database import get_db

router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.post("/login", response_model=LoginResponse, status_code=status.HTTP_200_OK)
async def login(
    login_data: LoginRequest,
    db: AsyncSession = Depends(get_db)
):
    """Authenticate user and return an access token"""
    auth_service = AuthenticationService(db)
    return await auth_service.authenticate_user(login_data)


@router.post("/logout", response_model=SuccessResponse, status_code=status.HTTP_200_OK)
async def logout(principal: Principal = Depends(get_current_principal)):
    """Acknowledge logout; the client discards its token"""
    return SuccessResponse(message="Logged out successfully")


@router.get("/me", response_model=MeResponse, status_code=status.HTTP_200_OK)
async def get_current_user(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db)
):
    """Get current user profile and hierarchy"""
    hierarchy = await UserService(db).get_hierarchy(principal)
    return {"user": principal.user, "hierarchy": hierarchy}


@router.put("/me", response_model=UserResponse, status_code=status.HTTP_200_OK)
async def update_current_user(
    profile_data: ProfileUpdate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db)
):
    """Update current user profile (role and active flag excluded)"""
    return await UserService(db).update_profile(principal, profile_data)


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register(
    user_data: UserCreate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db)
):
    """Register a new user (admin only)"""
    return await UserService(db).register_user(principal, user_data)


@router.get("/users", response_model=UserListResponse, status_code=status.HTTP_200_OK)
async def get_users(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
    role: Optional[UserRole] = None,
    include_inactive: bool = Query(False, alias="includeInactive"),
    search: Optional[str] = None
):
    """Users visible to the caller"""
    users = await UserService(db).list_users(
        principal,
        include_inactive=include_inactive,
        role=role,
        search=search
    )
    return UserListResponse(
        users=[UserResponse.model_validate(user) for user in users],
        count=len(users)
    )


@router.get("/users/{user_id}", response_model=UserResponse, status_code=status.HTTP_200_OK)
async def get_user(
    user_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db)
):
    """Get a user the caller can see"""
    return await UserService(db).get_user(principal, user_id)


@router.put("/users/{user_id}", response_model=UserResponse, status_code=status.HTTP_200_OK)
async def update_user(
    user_id: uuid.UUID,
    user_data: UserUpdate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db)
):
    """Update a user"""
    return await UserService(db).update_user(principal, user_id, user_data)


@router.delete("/users/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(
    user_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db)
):
    """Delete user (admin only)"""
    await UserService(db).delete_user(principal, user_id)


@router.get("/doctors", response_model=DoctorListResponse, status_code=status.HTTP_200_OK)
async def get_assignable_doctors(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
    role: Optional[UserRole] = None
):
    """Active doctors available for patient assignment"""
    doctors = await UserService(db).list_assignable_doctors(principal, role=role)
    return {"doctors": doctors, "count": len(doctors)}


@router.post("/assign-doctor", response_model=UserResponse, status_code=status.HTTP_200_OK)
async def assign_consulting_doctor(
    assignment: AssignConsultingDoctorRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db)
):
    """Assign a consulting doctor to a senior doctor (admin only)"""
    return await AssignmentService(db).assign_consulting_doctor(
        principal,
        senior_id=assignment.senior_doctor_id,
        consulting_id=assignment.consulting_doctor_id
    )


@router.post("/unassign-doctor", response_model=UserResponse, status_code=status.HTTP_200_OK)
async def unassign_consulting_doctor(
    assignment: UnassignConsultingDoctorRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db)
):
    """Remove a consulting doctor from their senior doctor (admin only)"""
    return await AssignmentService(db).unassign_consulting_doctor(principal, assignment.consulting_doctor_id)
