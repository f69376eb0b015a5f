import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status
from uuid import UUID

from app.api.deps import get_current_caller, get_token_store, oauth2_scheme
from app.core.config import settings
from app.core.logger import logger
from app.core.redis import RedisClient
from app.schemas.auth import TokenRequest, TokenResponse
from app.services.auth_service import AuthService

router = APIRouter()

log = logger.getChild("auth")

@router.post("/token", response_model=TokenResponse)
async def issue_token(
    request: TokenRequest,
    x_api_key: Optional[str] = Header(None),
    tokens: RedisClient = Depends(get_token_store),
):
    if not x_api_key or not secrets.compare_digest(x_api_key, settings.IDENTITY_API_KEY):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")

    token = await AuthService(tokens).issue_token(request.caller_id, request.role)
    log.info(f"Issued {request.role} token for {request.caller_id}")
    return TokenResponse(access_token=token)

@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    token: str = Depends(oauth2_scheme),
    caller_id: UUID = Depends(get_current_caller),
    tokens: RedisClient = Depends(get_token_store),
):
    await AuthService(tokens).revoke_token(token)
    log.info(f"Revoked token for {caller_id}")
