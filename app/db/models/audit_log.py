from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime
from uuid import UUID, uuid4
from sqlalchemy import JSON, Column

from app.core.utils import utcnow
from app.db.types import UTCDateTime

class ConsultationEvent(SQLModel, table=True):
    """Append-only history of every accepted state write."""
    __tablename__ = "consultation_events"
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    consultation_id: UUID = Field(foreign_key="instant_consultations.id", index=True)
    actor_id: Optional[UUID] = None  # None for the deadline enforcer
    action: str
    from_status: Optional[str] = None
    to_status: str
    version: int
    payload: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
