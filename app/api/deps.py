from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from uuid import UUID
from jwt.exceptions import PyJWTError
from sqlalchemy.ext.asyncio import AsyncSession

from app.clients.directory_client import DirectoryClient, HttpDirectoryClient
from app.clients.payment_client import HttpPaymentProcessor, PaymentProcessor
from app.clients.room_provisioner import LocalRoomProvisioner, RoomProvisioner
from app.core.config import settings
from app.core.redis import RedisClient, redis_client
from app.core.security import decode_access_token
from app.core.utils import Clock, utcnow
from app.db.session import get_session
from app.services.consultation_service import ConsultationService

oauth2_scheme = OAuth2PasswordBearer(tokenUrl=settings.AUTH_TOKEN_URL)

directory_client = HttpDirectoryClient()
payment_processor = HttpPaymentProcessor()
room_provisioner = LocalRoomProvisioner()

def get_token_store() -> RedisClient:
    return redis_client

def get_clock() -> Clock:
    return utcnow

def get_directory() -> DirectoryClient:
    return directory_client

def get_payments() -> PaymentProcessor:
    return payment_processor

def get_rooms() -> RoomProvisioner:
    return room_provisioner

async def get_current_caller(
    token: str = Depends(oauth2_scheme),
    tokens: RedisClient = Depends(get_token_store),
) -> UUID:
    """Directory id of the authenticated patient or practitioner."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = decode_access_token(token)
        caller_id = UUID(str(payload.get("sub")))
    except (PyJWTError, ValueError):
        raise credentials_exception

    # Logged-out tokens are deleted from the store
    if await tokens.get_token(token) is None:
        raise credentials_exception
    return caller_id

async def get_consultation_service(
    session: AsyncSession = Depends(get_session),
    directory: DirectoryClient = Depends(get_directory),
    payments: PaymentProcessor = Depends(get_payments),
    rooms: RoomProvisioner = Depends(get_rooms),
    clock: Clock = Depends(get_clock),
) -> ConsultationService:
    return ConsultationService(session, directory, payments, rooms, clock)
