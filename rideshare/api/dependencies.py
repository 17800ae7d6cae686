"""FastAPI dependency injection helpers."""

from typing import Optional

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from rideshare.services.engine import RideShareEngine

bearer = HTTPBearer(auto_error=False)


def get_engine(request: Request) -> RideShareEngine:
    """The engine built by ``create_app``."""
    return request.app.state.engine


async def get_account_id(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
) -> str:
    """Resolve the bearer token to an account id; 401 if that fails."""
    if credentials is None:
        raise HTTPException(
            status_code=401,
            detail="Missing bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    account_id = await request.app.state.identity.account_for_token(
        credentials.credentials
    )
    if not account_id:
        raise HTTPException(
            status_code=401,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return account_id


async def require_admin(
    request: Request, account_id: str = Depends(get_account_id)
) -> str:
    """Like ``get_account_id`` but 403 unless the account is a configured admin."""
    if account_id not in request.app.state.config.admin_accounts:
        raise HTTPException(status_code=403, detail="Admin access required")
    return account_id
