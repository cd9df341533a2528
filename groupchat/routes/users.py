from fastapi import APIRouter, Depends, Request

from groupchat.core.logging_config import get_logger
from groupchat.dependencies import ensure_caller, get_group_service, get_profile_service
from groupchat.schemas.group import (
    GroupListEntryResponse,
    GroupListResponse,
    GroupSummaryListResponse,
    GroupSummaryResponse,
)
from groupchat.schemas.user import (
    HiddenWordCreate,
    HiddenWordsResponse,
    ProfileResponse,
    ProfileUpdate,
)
from groupchat.services.group_service import GroupService
from groupchat.services.profile_service import ProfileService

router = APIRouter()
logger = get_logger(__name__)


@router.get("/users/{user_id}/groups", response_model=GroupListResponse)
async def list_user_groups(
    request: Request,
    user_id: str,
    group_service: GroupService = Depends(get_group_service)
):
    """The user's group index, in the order groups were joined."""
    ensure_caller(request, user_id)

    entries = await group_service.list_user_groups(user_id)
    return GroupListResponse(
        groups=[GroupListEntryResponse.model_validate(entry) for entry in entries],
        total=len(entries),
    )


@router.get("/users/{user_id}/groups/summary", response_model=GroupSummaryListResponse)
async def list_user_group_summaries(
    request: Request,
    user_id: str,
    group_service: GroupService = Depends(get_group_service),
    profiles: ProfileService = Depends(get_profile_service)
):
    """
    Group list with image, member count and a last-message preview.

    The preview is rendered for this user. Entries that point at a deleted group
    are dropped and cleaned up.
    """
    ensure_caller(request, user_id)

    hidden_words = await profiles.get_hidden_words(user_id)
    summaries = await group_service.list_user_group_summaries(user_id, hidden_words)
    return GroupSummaryListResponse(
        groups=[GroupSummaryResponse.model_validate(summary) for summary in summaries],
        total=len(summaries),
    )


@router.post("/users/{user_id}/groups/repair", response_model=GroupListResponse)
async def repair_user_groups(
    user_id: str,
    group_service: GroupService = Depends(get_group_service)
):
    """Recompute the user's group index from the groups that list them."""
    logger.info("api_repair_user_index", user_id=user_id)

    entries = await group_service.repair_user_index(user_id)
    return GroupListResponse(
        groups=[GroupListEntryResponse.model_validate(entry) for entry in entries],
        total=len(entries),
    )


@router.get("/users/{user_id}/profile", response_model=ProfileResponse)
async def get_profile(
    user_id: str,
    profiles: ProfileService = Depends(get_profile_service)
):
    profile = await profiles.get_profile(user_id)
    return ProfileResponse.model_validate(profile)


@router.put("/users/{user_id}/profile", response_model=ProfileResponse)
async def update_profile(
    request: Request,
    user_id: str,
    profile_data: ProfileUpdate,
    profiles: ProfileService = Depends(get_profile_service)
):
    ensure_caller(request, user_id)

    profile = await profiles.upsert_profile(
        user_id,
        profile_data.display_name,
        profile_data.profile_image_url,
    )
    return ProfileResponse.model_validate(profile)


@router.get("/users/{user_id}/hidden-words", response_model=HiddenWordsResponse)
async def get_hidden_words(
    request: Request,
    user_id: str,
    profiles: ProfileService = Depends(get_profile_service)
):
    ensure_caller(request, user_id)

    words = await profiles.get_hidden_words(user_id)
    return HiddenWordsResponse(user_id=user_id, hidden_words=words)


@router.post("/users/{user_id}/hidden-words", response_model=HiddenWordsResponse)
async def add_hidden_word(
    request: Request,
    user_id: str,
    word_data: HiddenWordCreate,
    profiles: ProfileService = Depends(get_profile_service)
):
    """Add a word to hide from other members' messages. Stored trimmed and lower-cased."""
    ensure_caller(request, user_id)

    words = await profiles.add_hidden_word(user_id, word_data.word)
    return HiddenWordsResponse(user_id=user_id, hidden_words=words)


@router.delete("/users/{user_id}/hidden-words/{word}", response_model=HiddenWordsResponse)
async def remove_hidden_word(
    request: Request,
    user_id: str,
    word: str,
    profiles: ProfileService = Depends(get_profile_service)
):
    ensure_caller(request, user_id)

    words = await profiles.remove_hidden_word(user_id, word)
    return HiddenWordsResponse(user_id=user_id, hidden_words=words)
