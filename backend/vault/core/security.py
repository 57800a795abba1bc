from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import JWTError, jwt
from vault.config import settings

# Tokens are issued by the auth service; this side only verifies them.
ACCESS_TOKEN_EXPIRE_MINUTES = 1440


def create_access_token(profile_id: str, expires_minutes: int = ACCESS_TOKEN_EXPIRE_MINUTES) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    return jwt.encode({"sub": profile_id, "exp": expire}, settings.SECRET_KEY, settings.ALGORITHM)

def decode_token(token: str) -> Optional[str]:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        return str(payload["sub"])
    except (JWTError, KeyError):
        return None
