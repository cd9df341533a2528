from fastapi import APIRouter, Depends, Query, Request, status

from groupchat.config import settings
from groupchat.core.logging_config import get_logger
from groupchat.core.rate_limit import limiter
from groupchat.dependencies import (
    ensure_caller,
    get_group_service,
    get_profile_service,
)
from groupchat.middleware.access_log import USER_ID_HEADER
from groupchat.schemas.group import (
    GroupCreate,
    GroupCreated,
    GroupMembershipResponse,
    GroupResponse,
    IndexRepairResponse,
    MemberListResponse,
    MemberResponse,
    MembersAdd,
    RequesterBody,
)
from groupchat.services.group_service import GroupService
from groupchat.services.profile_service import ProfileService

router = APIRouter()
logger = get_logger(__name__)


@router.post(
    "/groups",
    response_model=GroupCreated,
    status_code=status.HTTP_201_CREATED
)
@limiter.limit(settings.RATE_LIMIT_CREATE_GROUP)
async def create_group(
    request: Request,
    group_data: GroupCreate,
    group_service: GroupService = Depends(get_group_service)
):
    """
    Create a group. The creator is always a member.

    Index entries are written for every member after the group document; a
    failed entry is logged and left for repair, the group is still created.
    """
    logger.info(
        "api_create_group",
        creator_id=group_data.creator_id,
        invitee_count=len(group_data.member_ids)
    )

    group = await group_service.create_group(
        name=group_data.name,
        creator_id=group_data.creator_id,
        member_ids=group_data.member_ids,
        image_ref=group_data.image_ref,
        caller_id=request.headers.get(USER_ID_HEADER),
    )
    return GroupCreated(group_id=group.id)


@router.get("/groups/{group_id}", response_model=GroupResponse)
async def get_group(
    request: Request,
    group_id: str,
    viewer_id: str = Query(..., min_length=1, description="Member viewing the group"),
    group_service: GroupService = Depends(get_group_service),
    profiles: ProfileService = Depends(get_profile_service)
):
    """Current group snapshot with messages rendered for the viewer. Members only."""
    ensure_caller(request, viewer_id)

    group = await group_service.get_group_for_member(group_id, viewer_id)
    hidden_words = await profiles.get_hidden_words(viewer_id)
    return GroupResponse.for_viewer(group, viewer_id, hidden_words)


@router.get("/groups/{group_id}/members", response_model=MemberListResponse)
async def list_members(
    request: Request,
    group_id: str,
    viewer_id: str = Query(..., min_length=1),
    group_service: GroupService = Depends(get_group_service)
):
    ensure_caller(request, viewer_id)

    members = await group_service.list_members(group_id, viewer_id)
    return MemberListResponse(
        group_id=group_id,
        members=[MemberResponse.model_validate(member) for member in members],
        total=len(members),
    )


@router.post("/groups/{group_id}/members", response_model=GroupMembershipResponse)
async def add_members(
    request: Request,
    group_id: str,
    members_data: MembersAdd,
    group_service: GroupService = Depends(get_group_service)
):
    """Add members (creator only). Existing members are skipped."""
    ensure_caller(request, members_data.requester_id)

    logger.info(
        "api_add_members",
        group_id=group_id,
        requester_id=members_data.requester_id,
        candidate_count=len(members_data.new_member_ids)
    )

    group = await group_service.add_members(
        group_id=group_id,
        requester_id=members_data.requester_id,
        new_member_ids=members_data.new_member_ids,
    )
    return GroupMembershipResponse(group_id=group.id, members=group.members)


@router.delete("/groups/{group_id}/members/{user_id}", response_model=GroupMembershipResponse)
async def remove_member(
    request: Request,
    group_id: str,
    user_id: str,
    requester: RequesterBody,
    group_service: GroupService = Depends(get_group_service)
):
    """
    Remove a member.

    - The creator may remove any other member
    - Any member may remove themselves (the creator may not)
    """
    ensure_caller(request, requester.requester_id)

    logger.info(
        "api_remove_member",
        group_id=group_id,
        requester_id=requester.requester_id,
        target_user_id=user_id
    )

    group = await group_service.remove_member(group_id, requester.requester_id, user_id)
    return _membership_response(group_id, group)


@router.post("/groups/{group_id}/leave", response_model=GroupMembershipResponse)
async def leave_group(
    request: Request,
    group_id: str,
    requester: RequesterBody,
    group_service: GroupService = Depends(get_group_service)
):
    ensure_caller(request, requester.requester_id)

    logger.info("api_leave_group", group_id=group_id, requester_id=requester.requester_id)

    group = await group_service.leave_group(group_id, requester.requester_id)
    return _membership_response(group_id, group)


@router.delete("/groups/{group_id}", status_code=status.HTTP_200_OK)
async def delete_group(
    request: Request,
    group_id: str,
    requester: RequesterBody,
    group_service: GroupService = Depends(get_group_service)
):
    """Delete a group (creator only). Live streams receive a final "deleted" event."""
    ensure_caller(request, requester.requester_id)

    logger.info("api_delete_group", group_id=group_id, requester_id=requester.requester_id)

    await group_service.delete_group(group_id, requester.requester_id)
    return {"group_id": group_id, "deleted": True}


@router.post("/groups/{group_id}/index/repair", response_model=IndexRepairResponse)
async def repair_group_index(
    group_id: str,
    group_service: GroupService = Depends(get_group_service)
):
    """Re-run the per-member index writes for a group. Idempotent."""
    failed = await group_service.repair_group_index(group_id)
    return IndexRepairResponse(group_id=group_id, failed_user_ids=failed)


def _membership_response(group_id: str, group) -> GroupMembershipResponse:
    if group is None:
        return GroupMembershipResponse(group_id=group_id, members=[], group_deleted=True)
    return GroupMembershipResponse(group_id=group.id, members=group.members)
