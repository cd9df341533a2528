from pydantic import BaseModel, Field, field_validator, ConfigDict
from datetime import datetime
from typing import List, Optional

from groupchat.config import settings
from groupchat.schemas.message import MessageView, strip_markup
from groupchat.services.messaging_service import render_group


class GroupCreate(BaseModel):
    """Schema for creating a new group."""
    name: str = Field(..., min_length=1, max_length=settings.GROUP_NAME_MAX_LENGTH)
    creator_id: str = Field(..., min_length=1)
    member_ids: List[str] = Field(..., min_length=1)
    image_ref: Optional[str] = None

    @field_validator('name')
    @classmethod
    def sanitize_name(cls, v: str) -> str:
        return strip_markup(v)


class GroupCreated(BaseModel):
    group_id: str


class MembersAdd(BaseModel):
    """Schema for adding members. Users already in the group are skipped."""
    requester_id: str = Field(..., min_length=1)
    new_member_ids: List[str] = Field(..., min_length=1)


class RequesterBody(BaseModel):
    """Acting user for remove/leave/delete operations."""
    requester_id: str = Field(..., min_length=1)


class GroupResponse(BaseModel):
    """
    Full group snapshot as seen by one viewer.

    Every message carries ``display``: the body with the viewer's hidden words
    masked, unless the viewer sent it.
    """
    id: str
    name: str
    image: Optional[str] = None
    created_by: str
    members: List[str]
    messages: List[MessageView]
    created_at: datetime

    @classmethod
    def for_viewer(cls, group, viewer_id: str, hidden_words) -> "GroupResponse":
        return cls(
            id=group.id,
            name=group.name,
            image=group.image,
            created_by=group.created_by,
            members=list(group.members),
            messages=[
                MessageView.from_model(message, display)
                for message, display in render_group(group, viewer_id, hidden_words)
            ],
            created_at=group.created_at,
        )


class GroupMembershipResponse(BaseModel):
    """Result of a member removal or leave. ``group_deleted`` when nobody was left."""
    group_id: str
    members: List[str]
    group_deleted: bool = False


class MemberResponse(BaseModel):
    user_id: str
    display_name: Optional[str] = None
    profile_image_url: Optional[str] = None
    is_creator: bool = False

    model_config = ConfigDict(from_attributes=True)


class MemberListResponse(BaseModel):
    group_id: str
    members: List[MemberResponse]
    total: int


class GroupListEntryResponse(BaseModel):
    group_id: str
    group_name: str
    group_owner: str
    timestamp: datetime

    model_config = ConfigDict(from_attributes=True)


class GroupListResponse(BaseModel):
    """Schema for a user's group index."""
    groups: List[GroupListEntryResponse]
    total: int


class GroupSummaryResponse(BaseModel):
    group_id: str
    group_name: str
    group_owner: str
    image: Optional[str] = None
    member_count: int
    last_message: str
    last_activity: datetime

    model_config = ConfigDict(from_attributes=True)


class GroupSummaryListResponse(BaseModel):
    groups: List[GroupSummaryResponse]
    total: int


class IndexRepairResponse(BaseModel):
    group_id: str
    failed_user_ids: List[str]
