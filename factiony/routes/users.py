"""User endpoints: search, profile, likes, follows, lists, activity and erasure.

Routers are thin: every operation goes through the Coordinator.
"""

from fastapi import APIRouter, Depends, Query

from factiony.routes.deps import ApiError, get_coordinator, unwrap
from factiony.schemas import (
    ActivityOut,
    AddToListRequest,
    AddToListResponse,
    CommentOut,
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
from factiony.services.coordinator import Coordinator

router = APIRouter()


@router.get("", response_model=list[UserOut])
async def search_users(
    q: str = Query(min_length=1, description="Substring of a username or email"),
    limit: int = Query(default=20, ge=1, le=100),
    coordinator: Coordinator = Depends(get_coordinator),
) -> list[UserOut]:
    """Public accounts only."""
    users = unwrap(await coordinator.search_users(q, limit))
    return [UserOut.model_validate(user) for user in users]


@router.get("/usernames/{username}/available", response_model=UsernameAvailabilityResponse)
async def username_available(
    username: str, coordinator: Coordinator = Depends(get_coordinator)
) -> UsernameAvailabilityResponse:
    available = unwrap(await coordinator.check_username_availability(username))
    return UsernameAvailabilityResponse(username=username, available=available)


@router.get("/{user_id}", response_model=ProfileResponse)
async def get_profile(user_id: str, coordinator: Coordinator = Depends(get_coordinator)) -> ProfileResponse:
    profile = unwrap(await coordinator.load_user_profile(user_id))
    return ProfileResponse(
        user=UserOut.model_validate(profile.user),
        followers=[UserOut.model_validate(user) for user in profile.followers],
        following=[UserOut.model_validate(user) for user in profile.following],
        follower_count=len(profile.followers),
        following_count=len(profile.following),
    )


@router.post("/{user_id}/likes/{game_id}", response_model=LikeToggleResponse)
async def toggle_like(
    user_id: str,
    game_id: str,
    coordinator: Coordinator = Depends(get_coordinator),
) -> LikeToggleResponse:
    """Like the game, or unlike it if already liked."""
    liked = unwrap(await coordinator.toggle_like(user_id, game_id))
    return LikeToggleResponse(game_id=game_id, liked=liked)


@router.get("/{user_id}/likes", response_model=list[LikeOut])
async def get_likes(
    user_id: str,
    limit: int = Query(default=50, ge=1, le=500, description="Maximum number of likes, newest first"),
    coordinator: Coordinator = Depends(get_coordinator),
) -> list[LikeOut]:
    likes = unwrap(await coordinator.get_user_likes(user_id, limit))
    return [LikeOut.model_validate(like) for like in likes]


@router.put("/{user_id}/follows/{target_id}", response_model=FollowResponse)
async def follow(
    user_id: str,
    target_id: str,
    coordinator: Coordinator = Depends(get_coordinator),
) -> FollowResponse:
    unwrap(await coordinator.follow(user_id, target_id))
    return FollowResponse(follower_id=user_id, followed_id=target_id, following=True)


@router.delete("/{user_id}/follows/{target_id}", response_model=FollowResponse)
async def unfollow(
    user_id: str,
    target_id: str,
    coordinator: Coordinator = Depends(get_coordinator),
) -> FollowResponse:
    unwrap(await coordinator.unfollow(user_id, target_id))
    return FollowResponse(follower_id=user_id, followed_id=target_id, following=False)


@router.post("/{user_id}/lists/{list_name}/games", response_model=AddToListResponse)
async def add_game_to_list(
    user_id: str,
    list_name: str,
    request: AddToListRequest,
    coordinator: Coordinator = Depends(get_coordinator),
) -> AddToListResponse:
    """Add a game to the named list, creating the list on first use."""
    list_id = unwrap(await coordinator.add_game_to_user_list(user_id, request.game_id, list_name))
    return AddToListResponse(list_id=list_id, list_name=list_name, game_id=request.game_id)


@router.get("/{user_id}/lists", response_model=list[UserListOut])
async def get_lists(user_id: str, coordinator: Coordinator = Depends(get_coordinator)) -> list[UserListOut]:
    lists = unwrap(await coordinator.get_user_lists(user_id))
    return [UserListOut.model_validate(user_list) for user_list in lists]


@router.get("/{user_id}/lists/{list_id}", response_model=UserListOut)
async def get_list(
    user_id: str, list_id: str, coordinator: Coordinator = Depends(get_coordinator)
) -> UserListOut:
    return UserListOut.model_validate(unwrap(await coordinator.get_user_list(user_id, list_id)))


@router.get("/{user_id}/comments", response_model=list[CommentOut])
async def get_comments(
    user_id: str,
    limit: int = Query(default=50, ge=1, le=500),
    coordinator: Coordinator = Depends(get_coordinator),
) -> list[CommentOut]:
    comments = unwrap(await coordinator.get_user_comments(user_id, limit))
    return [CommentOut.model_validate(comment) for comment in comments]


@router.get("/{user_id}/activity", response_model=list[ActivityOut])
async def get_activity(
    user_id: str,
    limit: int = Query(default=50, ge=1, le=500, description="Maximum number of entries, newest first"),
    coordinator: Coordinator = Depends(get_coordinator),
) -> list[ActivityOut]:
    entries = unwrap(await coordinator.get_user_activity(user_id, limit))
    return [ActivityOut.model_validate(entry) for entry in entries]


@router.delete("/{user_id}", response_model=ErasureResponse)
async def delete_user(user_id: str, coordinator: Coordinator = Depends(get_coordinator)) -> ErasureResponse:
    """Erase every record of the user (right to erasure).

    A partial failure answers 503 with per-store status; retrying is safe.
    """
    result = await coordinator.delete_all_user_data(user_id)
    response = ErasureResponse(
        user_id=user_id,
        ok=result.ok,
        status=result.status,
        document=ErasureSideOut(ok=result.document.ok, status=result.document.status),
        relational=ErasureSideOut(ok=result.relational.ok, status=result.relational.status),
    )
    if not result.ok:
        raise ApiError(503, "ERASURE_INCOMPLETE", result.status, response.model_dump(by_alias=True))
    return response
