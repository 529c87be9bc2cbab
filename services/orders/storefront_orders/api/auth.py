from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, Request

from shared.core import set_request_context
from storefront_orders.core_settings import Settings, get_settings

BEARER_PREFIX = "Bearer "
SHOP_ROLES = frozenset({"OWNER", "MANAGER", "STAFF"})


@dataclass(frozen=True)
class TenantAccess:
    tenant_id: int
    user_id: str
    role: str


def create_access_token(
    subject: str,
    tenant_id: int,
    role: str = "OWNER",
    settings: Optional[Settings] = None,
    expires_minutes: int = 60,
) -> str:
    settings = settings or get_settings()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": subject,
        "tenant_id": tenant_id,
        "role": role,
        "iat": now,
        "exp": now + timedelta(minutes=expires_minutes),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALG)


def decode_access_token(token: str, settings: Optional[Settings] = None) -> Optional[dict]:
    settings = settings or get_settings()
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
    except jwt.PyJWTError:
        return None


def app_settings(request: Request) -> Settings:
    return request.app.state.settings


async def require_tenant(request: Request, settings: Settings = Depends(app_settings)) -> TenantAccess:
    """Resolve the caller to a tenant and role, or reject the request.

    Runs on the event loop so the tenant id set here stays in the request's
    logging context for the handler.
    """
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith(BEARER_PREFIX):
        raise HTTPException(status_code=401, detail="Missing token")
    claims = decode_access_token(auth_header[len(BEARER_PREFIX):], settings)
    if not claims or "tenant_id" not in claims or "sub" not in claims:
        raise HTTPException(status_code=401, detail="Invalid token")
    role = claims.get("role")
    if role not in SHOP_ROLES:
        raise HTTPException(status_code=403, detail="Shop access denied")
    try:
        tenant_id = int(claims["tenant_id"])
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token")
    set_request_context(tenant_id=tenant_id)
    return TenantAccess(tenant_id=tenant_id, user_id=str(claims["sub"]), role=role)
