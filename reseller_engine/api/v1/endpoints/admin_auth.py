import secrets

from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader

from reseller_engine.core.config import settings

admin_api_key_header = APIKeyHeader(name="X-Admin-API-Key", auto_error=False)


def require_admin(api_key: str = Security(admin_api_key_header)) -> str:
    """Engine endpoints are operator-only and guarded by a shared API key."""
    expected = settings.ADMIN_API_KEY
    if not expected or not api_key or not secrets.compare_digest(api_key, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing admin API key",
        )
    return api_key
