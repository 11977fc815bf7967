import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from agenda.auth import jwt_handler
from agenda.auth.context import TenantContext

security = HTTPBearer()


def get_tenant_context(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> TenantContext:
    token = credentials.credentials
    try:
        payload = jwt_handler.decode_access_token(token)
    except jwt.PyJWTError as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc

    user_id = payload.get("sub")
    tenant_id = payload.get("tenant_id")
    role = payload.get("role")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token subject")
    if not tenant_id or not role:
        raise HTTPException(status_code=401, detail="Token is missing tenant claims")

    return TenantContext(user_id=str(user_id), tenant_id=str(tenant_id), role=str(role).lower())
