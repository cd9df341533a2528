from beanie import Document
from pydantic import BaseModel, Field
from datetime import datetime
from typing import List, Optional

from groupchat.models.group import utcnow


class GroupListEntry(BaseModel):
    """Denormalized pointer from a user record to a group they belong to."""
    group_id: str
    group_name: str
    group_owner: str
    timestamp: datetime = Field(default_factory=utcnow)


class UserProfile(BaseModel):
    """
    Per-user record: profile snapshot from the identity provider, the user's
    hidden words and their group index.
    """
    id: str
    display_name: Optional[str] = None
    profile_image_url: Optional[str] = None
    hidden_words: List[str] = Field(default_factory=list)
    group_list: List[GroupListEntry] = Field(default_factory=list)

    def group_ids(self) -> List[str]:
        return [entry.group_id for entry in self.group_list]


class UserDocument(Document):
    """MongoDB document for users."""
    id: str
    display_name: Optional[str] = None
    profile_image_url: Optional[str] = None
    hidden_words: List[str] = Field(default_factory=list)
    group_list: List[GroupListEntry] = Field(default_factory=list)

    class Settings:
        name = "users"
        indexes = [
            "group_list.group_id",
        ]

    def to_profile(self) -> UserProfile:
        return UserProfile(
            id=self.id,
            display_name=self.display_name,
            profile_image_url=self.profile_image_url,
            hidden_words=list(self.hidden_words),
            group_list=list(self.group_list),
        )
