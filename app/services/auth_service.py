import json
from datetime import timedelta
from typing import Literal
from uuid import UUID

from app.core.config import settings
from app.core.redis import RedisClient
from app.core.security import create_access_token

class AuthService:
    """
    Issues and revokes the bearer tokens callers present to the API.

    The identity provider calls this after it has authenticated a patient or
    practitioner; the token is only honoured while it is registered in Redis.
    """

    def __init__(self, tokens: RedisClient):
        self.tokens = tokens

    async def issue_token(self, caller_id: UUID, role: Literal["patient", "practitioner"]) -> str:
        access_token_expires = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
        access_token = create_access_token(
            data={"sub": str(caller_id), "role": role}, expires_delta=access_token_expires
        )

        token_data = {
            "caller_id": str(caller_id),
            "role": role,
        }
        await self.tokens.set_token(
            access_token,
            json.dumps(token_data),
            settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60
        )
        return access_token

    async def revoke_token(self, token: str) -> None:
        await self.tokens.delete_token(token)
