from datetime import datetime, timedelta, timezone

from jose import jwt

from slotkeeper.core.config import settings

# Tokens are minted by the identity service; this service only verifies them.
ALGO = "HS256"


def create_access_token(subject: str, role: str, tenant_id: str, expires_minutes: int | None = None) -> str:
    if expires_minutes is None:
        expires_minutes = settings.ACCESS_TOKEN_EXPIRE_MINUTES
    exp = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    payload = {"sub": subject, "role": role, "tenant_id": tenant_id, "type": "access", "exp": exp}
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=ALGO)


def decode_token(token: str) -> dict:
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGO])
