from typing import Optional
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession
from medlens.core.config import settings
from medlens.core.principal import Principal
from medlens.domain.auth.service import AuthenticationService
from medlens.infrastructure.database import get_db

# auto_error is off so a missing header reaches the validator and comes back
# as our own 401 body instead of FastAPI's default
reusable_oauth2 = OAuth2PasswordBearer(
    tokenUrl=f"{settings.API_PREFIX}/auth/login",
    auto_error=False
)


async def get_current_principal(
    db: AsyncSession = Depends(get_db),
    token: Optional[str] = Depends(reusable_oauth2)
) -> Principal:
    return await AuthenticationService(db).resolve_principal(token)
