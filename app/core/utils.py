from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def room_id_for(consultation_id) -> str:
    return f"instant-{str(consultation_id)[:8]}"
