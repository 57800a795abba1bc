import hmac
from typing import AsyncIterator, Optional
from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from vault.database import get_db
from vault.models import Profile, ProfileRole
from vault.core.security import decode_token
from vault.config import settings
from vault.services import ledger
from vault.services.chain_client import PolygonChainClient

bearer = HTTPBearer()

async def get_current_profile(
    credentials: HTTPAuthorizationCredentials = Depends(bearer),
    db: AsyncSession = Depends(get_db),
) -> Profile:
    profile_id = decode_token(credentials.credentials)
    if not profile_id:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    # Signup happens in the auth service; first authenticated call provisions the row
    return await ledger.get_or_create_profile(db, profile_id)

async def require_admin(profile: Profile = Depends(get_current_profile)) -> Profile:
    if profile.role != ProfileRole.admin:
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Admin only")
    return profile

async def require_cron_secret(authorization: Optional[str] = Header(default=None)) -> None:
    secret = settings.CRON_SECRET
    if not secret or not authorization:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Unauthorized")
    if not hmac.compare_digest(authorization.encode(), f"Bearer {secret}".encode()):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Unauthorized")

async def get_chain_client() -> AsyncIterator[PolygonChainClient]:
    client = PolygonChainClient()
    try:
        yield client
    finally:
        await client.close()
