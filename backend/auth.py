"""
API Authentication for FastAPI endpoints
"""

from fastapi import Header, Security, HTTPException, status
from fastapi.security import APIKeyHeader, APIKeyQuery
from typing import Optional
import hashlib
import hmac
from config import settings

# API Key header name
API_KEY_HEADER = "X-API-Key"
API_KEY_QUERY = "api_key"

# Acting principal header name
USER_ID_HEADER = "X-User-Id"

# Initialize API key security
api_key_header = APIKeyHeader(name=API_KEY_HEADER, auto_error=False)
api_key_query = APIKeyQuery(name=API_KEY_QUERY, auto_error=False)


def api_key_required() -> bool:
    """True when an API key is configured"""
    return bool(settings.API_KEY)


def check_api_key(api_key: str) -> bool:
    """
    Verify API key against configured key

    Supports:
    - Single API key from settings
    - Multiple API keys (comma-separated)
    - Hashed keys ("hash:<sha256 hex>") for secure comparison
    """
    configured_key = settings.API_KEY

    if not configured_key:
        # No API key configured - allow all requests (development mode)
        return True

    if not api_key:
        return False

    valid_keys = [key.strip() for key in configured_key.split(",")]

    for valid_key in valid_keys:
        if valid_key.startswith("hash:"):
            provided_hash = hashlib.sha256(api_key.encode()).hexdigest()
            if hmac.compare_digest(valid_key[5:], provided_hash):
                return True
        elif hmac.compare_digest(valid_key, api_key):
            return True

    return False


async def verify_api_key(
    api_key_header: Optional[str] = Security(api_key_header),
    api_key_query: Optional[str] = Security(api_key_query)
) -> str:
    """
    Verify API key from either header or query parameter

    Usage:
        @app.get("/protected")
        async def protected_route(api_key: str = Depends(verify_api_key)):
            return {"message": "Authenticated"}
    """
    if not api_key_required():
        return ""

    api_key = api_key_header or api_key_query

    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API key missing. Provide X-API-Key header or ?api_key=YOUR_KEY",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    if not check_api_key(api_key):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    return api_key


async def get_current_user(
    x_user_id: Optional[str] = Header(None, alias=USER_ID_HEADER)
) -> str:
    """
    Resolve the acting principal.

    Session handling lives in front of this service; it forwards the
    authenticated user's id in X-User-Id. Every repository call takes the
    returned id explicitly.

    Usage:
        @router.get("/api/projects")
        async def list_projects(principal: str = Depends(get_current_user)):
            ...
    """
    principal = (x_user_id or "").strip()
    if not principal:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing {USER_ID_HEADER} header",
        )
    return principal
