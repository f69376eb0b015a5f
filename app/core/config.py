from pydantic_settings import BaseSettings
from typing import Optional

class Settings(BaseSettings):
    PROJECT_NAME: str = "InstantConsult"
    API_V1_STR: str = "/api/v1"
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "password"
    POSTGRES_DB: str = "instant_consult"
    DATABASE_URL: Optional[str] = None
    REDIS_URL: str = "redis://localhost:6379/0"

    SECRET_KEY: str = "change-me"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24
    AUTH_TOKEN_URL: str = "/api/v1/auth/token"
    # Shared with the identity provider, which requests tokens after it has
    # authenticated a patient or practitioner
    IDENTITY_API_KEY: str = "change-me"

    # Practitioner has this long to accept before the request expires
    ACCEPTANCE_TIMEOUT_SECONDS: int = 60
    SWEEP_ENABLED: bool = True
    SWEEP_INTERVAL_SECONDS: float = 5.0
    SWEEP_BATCH_SIZE: int = 100
    PAYMENT_CAPTURE_ATTEMPTS: int = 3

    DIRECTORY_BASE_URL: str = "http://localhost:8001"
    PAYMENT_BASE_URL: str = "http://localhost:8002"
    PAYMENT_CURRENCY: str = "NPR"
    COLLABORATOR_TIMEOUT_SECONDS: float = 10.0
    ROOM_URL_TEMPLATE: str = "/dashboard/consultations/{consultation_id}/call"

    class Config:
        case_sensitive = True
        env_file = ".env"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        if not self.DATABASE_URL:
            self.DATABASE_URL = f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_SERVER}/{self.POSTGRES_DB}"

settings = Settings()
