"""API routes."""

from fastapi import APIRouter

from factiony.routes import admin, games, users
from factiony.schemas import ErrorResponse

# Documented error envelopes shared by every router
ERROR_RESPONSES = {
    404: {"model": ErrorResponse, "description": "User, list or edge not found"},
    409: {"model": ErrorResponse, "description": "Rejected by a store constraint or policy"},
    503: {"model": ErrorResponse, "description": "Backing store unavailable"},
}

api_router = APIRouter()

# User-facing social endpoints
api_router.include_router(users.router, prefix="/v1/users", tags=["users"], responses=ERROR_RESPONSES)

# Game endpoints (comments)
api_router.include_router(games.router, prefix="/v1/games", tags=["games"], responses=ERROR_RESPONSES)

# Admin endpoints (statistics, maintenance)
api_router.include_router(admin.router, prefix="/v1/admin", tags=["admin"], responses=ERROR_RESPONSES)
