from pydantic import BaseModel
from typing import Literal
from uuid import UUID

class TokenRequest(BaseModel):
    caller_id: UUID
    role: Literal["patient", "practitioner"]

class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
