from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import jwt
from smartshop.core.security import decode_token

security = HTTPBearer(auto_error=False)

def get_current_identity(creds: HTTPAuthorizationCredentials = Depends(security)) -> dict:
    if not creds:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = decode_token(creds.credentials)
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail="Invalid token")
    if payload.get("type") != "access":
        raise HTTPException(status_code=401, detail="Invalid access token")
    return payload

def require_admin(identity: dict = Depends(get_current_identity)):
    if identity.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Admin only")
    return identity

def is_admin(identity: dict) -> bool:
    return identity.get("role") == "admin"

def current_user_id(identity: dict = Depends(get_current_identity)) -> int:
    try:
        return int(identity["sub"])
    except (KeyError, TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token subject")
