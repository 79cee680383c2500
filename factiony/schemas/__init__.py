"""Pydantic schemas for API request/response validation."""

from factiony.schemas.admin import (
    DocumentStatsOut,
    HealthResponse,
    MaintenanceRequest,
    MaintenanceResponse,
    RelationalStatsOut,
    StatsResponse,
)
from factiony.schemas.common import ErrorDetail, ErrorResponse
from factiony.schemas.games import CommentOut
from factiony.schemas.users import (
    ActivityOut,
    AddToListRequest,
    AddToListResponse,
    ErasureResponse,
    ErasureSideOut,
    FollowResponse,
    LikeOut,
    LikeToggleResponse,
    ProfileResponse,
    UserListOut,
    UsernameAvailabilityResponse,
    UserOut,
)

__all__ = [
    "ErrorDetail",
    "ErrorResponse",
    "ActivityOut",
    "AddToListRequest",
    "AddToListResponse",
    "CommentOut",
    "DocumentStatsOut",
    "ErasureResponse",
    "ErasureSideOut",
    "FollowResponse",
    "HealthResponse",
    "LikeOut",
    "LikeToggleResponse",
    "MaintenanceRequest",
    "MaintenanceResponse",
    "ProfileResponse",
    "RelationalStatsOut",
    "StatsResponse",
    "UserListOut",
    "UserOut",
    "UsernameAvailabilityResponse",
]
