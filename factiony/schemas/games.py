"""Schemas for the game endpoints (/v1/games)."""

from datetime import datetime

from pydantic import BaseModel, Field


class CommentOut(BaseModel):
    """A review or comment left on a game."""

    id: str
    user_id: str = Field(alias="userId")
    game_id: str = Field(alias="gameId")
    content: str
    rating: float | None = None
    is_spoiler: bool = Field(alias="isSpoiler", default=False)
    likes: int = 0
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    model_config = {"populate_by_name": True, "from_attributes": True}
