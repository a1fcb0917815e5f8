"""Central API router that aggregates all route modules."""

from fastapi import APIRouter

from resetchat.api.chat import router as chat_router
from resetchat.api.health import router as health_router
from resetchat.api.sessions import router as sessions_router

api_router = APIRouter()

api_router.include_router(health_router, prefix="/health", tags=["health"])
api_router.include_router(sessions_router, prefix="/sessions", tags=["sessions"])
api_router.include_router(chat_router, prefix="/sessions", tags=["chat"])
