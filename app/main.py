import asyncio
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import settings
from app.core.logger import logger
from app.core.redis import redis_client
from app.db.session import init_db
from app.middleware.log_middleware import LogMiddleware
from app.workers.expiry_sweeper import run_expiry_sweeper

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"{settings.PROJECT_NAME} starting up...")
    await init_db()

    sweeper = None
    if settings.SWEEP_ENABLED:
        sweeper = asyncio.create_task(run_expiry_sweeper())

    yield

    logger.info("Shutting down...")
    if sweeper is not None:
        sweeper.cancel()
        with suppress(asyncio.CancelledError):
            await sweeper
    await redis_client.close()

app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(LogMiddleware)

@app.get("/")
async def root():
    return {"message": f"Welcome to {settings.PROJECT_NAME} API"}

from app.api.api import api_router
app.include_router(api_router, prefix=settings.API_V1_STR)
