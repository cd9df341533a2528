from beanie import Document
from pydantic import BaseModel, Field
from datetime import datetime, timezone
from typing import List, Optional
import uuid
from groupchat.config import settings


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def new_group_id() -> str:
    return str(uuid.uuid4())


def new_message_id() -> str:
    return uuid.uuid4().hex


class Message(BaseModel):
    """
    One entry of a group's message log.

    ``sender_name`` is a snapshot of the sender's display name at send time and
    is never updated afterwards.
    """
    id: str = Field(default_factory=new_message_id)
    sender_id: str
    sender_name: str
    message: str
    timestamp: datetime = Field(default_factory=utcnow)


class Group(BaseModel):
    """
    Store-independent group snapshot.

    ``members`` keeps insertion order but behaves as a set. ``messages`` is the
    log in append order; clients display it as delivered without re-sorting.
    """
    id: str
    name: str
    image: Optional[str] = None
    created_by: str
    members: List[str] = Field(default_factory=list)
    messages: List[Message] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)

    def is_member(self, user_id: str) -> bool:
        return user_id in self.members

    def find_message(self, message_id: str) -> Optional[Message]:
        for message in self.messages:
            if message.id == message_id:
                return message
        return None

    def find_matching_message(self, body: str, sender_id: str) -> Optional[Message]:
        """First message in log order with this exact body and sender."""
        for message in self.messages:
            if message.message == body and message.sender_id == sender_id:
                return message
        return None

    @property
    def last_message(self) -> Optional[Message]:
        return self.messages[-1] if self.messages else None


class GroupDocument(Document):
    """MongoDB document for groups. The message log is embedded."""
    id: str = Field(default_factory=new_group_id)
    name: str = Field(..., max_length=settings.GROUP_NAME_MAX_LENGTH)
    image: Optional[str] = None
    created_by: str
    members: List[str] = Field(default_factory=list)
    messages: List[Message] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "groups"
        indexes = [
            # Reverse scan: "which groups is this user in" (index repair)
            "members",
            "created_by",
        ]

    @classmethod
    def from_group(cls, group: Group) -> "GroupDocument":
        return cls(
            id=group.id,
            name=group.name,
            image=group.image,
            created_by=group.created_by,
            members=list(group.members),
            messages=list(group.messages),
            created_at=group.created_at,
        )

    def to_group(self) -> Group:
        return Group(
            id=self.id,
            name=self.name,
            image=self.image,
            created_by=self.created_by,
            members=list(self.members),
            messages=list(self.messages),
            created_at=self.created_at,
        )
