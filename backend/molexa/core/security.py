"""Admin credential check for analytics commands (archive)."""

import secrets
from typing import Optional

from fastapi import HTTPException, Request, Security, status
from fastapi.security import APIKeyHeader

# ─── Admin-token header scheme ───

admin_token_header = APIKeyHeader(name="X-Admin-Token", auto_error=False)


def verify_admin_token(supplied: Optional[str], expected: str) -> bool:
    """Constant-time comparison. An unset expected token rejects everything."""
    if not expected or not supplied:
        return False
    return secrets.compare_digest(supplied.encode(), expected.encode())


def require_admin(
    request: Request,
    token: Optional[str] = Security(admin_token_header),
) -> None:
    """Dependency: reject before any analytics read/write happens."""
    expected = request.app.state.settings.admin_token
    if not verify_admin_token(token, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Admin token required",
        )
