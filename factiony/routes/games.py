"""Game endpoints: comments and reviews left on a game."""

from fastapi import APIRouter, Depends, Query

from factiony.routes.deps import get_coordinator, unwrap
from factiony.schemas import CommentOut
from factiony.services.coordinator import Coordinator

router = APIRouter()


@router.get("/{game_id}/comments", response_model=list[CommentOut])
async def get_game_comments(
    game_id: str,
    limit: int = Query(default=20, ge=1, le=200, description="Maximum number of comments, newest first"),
    coordinator: Coordinator = Depends(get_coordinator),
) -> list[CommentOut]:
    comments = unwrap(await coordinator.get_game_comments(game_id, limit))
    return [CommentOut.model_validate(comment) for comment in comments]
