from fastapi import APIRouter

from .routers import moderation

api_router = APIRouter()

# Include all API routes
api_router.include_router(moderation.router)
