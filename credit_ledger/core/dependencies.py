from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.core.exceptions import ForbiddenError
from credit_ledger.core.security import Identity, decode_access_token
from credit_ledger.db.session import async_session_factory

security_scheme = HTTPBearer()


async def get_db() -> AsyncSession:  # type: ignore[misc]
    async with async_session_factory() as session:
        yield session


async def get_current_identity(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security_scheme)],
) -> Identity:
    identity = decode_access_token(credentials.credentials)
    if identity is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return identity


async def get_current_admin(
    identity: Annotated[Identity, Depends(get_current_identity)],
) -> Identity:
    if not identity.is_admin:
        raise ForbiddenError("Admin access required")
    return identity


DbSession = Annotated[AsyncSession, Depends(get_db)]
CurrentIdentity = Annotated[Identity, Depends(get_current_identity)]
CurrentAdmin = Annotated[Identity, Depends(get_current_admin)]
