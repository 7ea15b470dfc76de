from dataclasses import dataclass

from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError
from sqlalchemy.orm import Session

from slotkeeper.core.errors import ReservationError
from slotkeeper.core.security import decode_token
from slotkeeper.db.locking import lock_wait_errors

bearer = HTTPBearer(auto_error=False)

OPERATOR_ROLES = ("operator", "admin")


@dataclass
class Actor:
    id: str
    role: str
    tenant_id: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def get_current_actor(creds: HTTPAuthorizationCredentials | None = Depends(bearer)) -> Actor:
    if not creds:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = decode_token(creds.credentials)
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")
    sub, tenant_id = payload.get("sub"), payload.get("tenant_id")
    if not sub or not tenant_id:
        raise HTTPException(status_code=401, detail="Token is missing sub or tenant_id")
    return Actor(id=str(sub), role=str(payload.get("role") or "customer"), tenant_id=str(tenant_id))


def require_roles(*roles: str):
    def _guard(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role not in roles:
            raise HTTPException(status_code=403, detail="Forbidden")
        return actor
    return _guard


def ensure_tenant(actor: Actor, tenant_id: str) -> None:
    # Admins operate across tenants; everyone else is confined to the token's tenant.
    if not actor.is_admin and actor.tenant_id != tenant_id:
        raise HTTPException(status_code=404, detail="Not found")


def get_owned(db: Session, model, obj_id: str, actor: Actor, missing: type[ReservationError]):
    """Fetch a tenant-scoped row or raise `missing`; rows of other tenants look absent."""
    with lock_wait_errors():
        obj = db.get(model, obj_id)
    if not obj or (not actor.is_admin and obj.tenant_id != actor.tenant_id):
        raise missing(f"{model.__name__} {obj_id} not found")
    return obj
