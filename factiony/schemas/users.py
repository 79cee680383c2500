"""Schemas for the user endpoints (/v1/users)."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class UserOut(BaseModel):
    """Public view of a user record."""

    id: str
    username: str | None = None
    avatar_url: str | None = Field(alias="avatarUrl", default=None)
    banner_url: str | None = Field(alias="bannerUrl", default=None)
    bio: str | None = None
    location: str | None = None
    website: str | None = None
    is_premium: bool = Field(alias="isPremium", default=False)
    is_private: bool = Field(alias="isPrivate", default=False)
    is_verified: bool = Field(alias="isVerified", default=False)
    created_at: datetime | None = Field(alias="createdAt", default=None)

    model_config = {"populate_by_name": True, "from_attributes": True}


class ProfileResponse(BaseModel):
    """User profile with both sides of the follow graph."""

    user: UserOut
    followers: list[UserOut] = Field(default_factory=list)
    following: list[UserOut] = Field(default_factory=list)
    follower_count: int = Field(alias="followerCount", ge=0)
    following_count: int = Field(alias="followingCount", ge=0)

    model_config = {"populate_by_name": True}


class LikeToggleResponse(BaseModel):
    game_id: str = Field(alias="gameId")
    liked: bool

    model_config = {"populate_by_name": True}


class LikeOut(BaseModel):
    id: str
    game_id: str = Field(alias="gameId")
    created_at: datetime = Field(alias="createdAt")

    model_config = {"populate_by_name": True, "from_attributes": True}


class FollowResponse(BaseModel):
    follower_id: str = Field(alias="followerId")
    followed_id: str = Field(alias="followedId")
    following: bool

    model_config = {"populate_by_name": True}


class AddToListRequest(BaseModel):
    """Request body for adding a game to a named list."""

    game_id: str = Field(alias="gameId", min_length=1)

    model_config = {"populate_by_name": True}


class AddToListResponse(BaseModel):
    list_id: str = Field(alias="listId")
    list_name: str = Field(alias="listName")
    game_id: str = Field(alias="gameId")

    model_config = {"populate_by_name": True}


class UserListOut(BaseModel):
    id: str
    name: str
    description: str | None = None
    games: list[str] = Field(default_factory=list)
    is_public: bool = Field(alias="isPublic", default=False)
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    model_config = {"populate_by_name": True, "from_attributes": True}


class ErasureSideOut(BaseModel):
    ok: bool
    status: str


class ErasureResponse(BaseModel):
    """Outcome of a full erasure, reported per store."""

    user_id: str = Field(alias="userId")
    ok: bool
    status: str
    document: ErasureSideOut
    relational: ErasureSideOut

    model_config = {"populate_by_name": True}


class UsernameAvailabilityResponse(BaseModel):
    username: str
    available: bool


class ActivityOut(BaseModel):
    id: str
    kind: str = Field(alias="actionType")
    resource_id: str | None = Field(alias="resourceId", default=None)
    metadata: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime

    model_config = {"populate_by_name": True, "from_attributes": True}
