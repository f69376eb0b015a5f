from fastapi import APIRouter
from app.api.v1 import auth, instant_consultations

api_router = APIRouter()

api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(
    instant_consultations.router,
    prefix="/instant-consultations",
    tags=["instant-consultations"],
)
