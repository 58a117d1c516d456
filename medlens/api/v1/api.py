from fastapi import APIRouter
from medlens.api.v1.auth import routes as auth
from medlens.api.v1.patients import routes as patients

api_router = APIRouter()
api_router.include_router(auth.router)
api_router.include_router(patients.router)
