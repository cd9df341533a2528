from pydantic import BaseModel, Field, field_validator, ConfigDict
from datetime import datetime
from typing import Optional
import html
import bleach

from groupchat.config import settings


def strip_markup(value: str) -> str:
    """
    Remove HTML/JS tags, keeping the text as plain text.

    bleach entity-escapes ``&``, ``<`` and ``>`` in what it keeps; the stored
    value is plain text, so those are unescaped again.
    """
    return html.unescape(bleach.clean(value, tags=[], strip=True)).strip()


class MessageCreate(BaseModel):
    """Schema for sending a message."""
    sender_id: str = Field(..., min_length=1)
    sender_name: Optional[str] = Field(None, max_length=100)
    body: str = Field(..., max_length=settings.MESSAGE_MAX_LENGTH)

    @field_validator('body')
    @classmethod
    def sanitize_body(cls, v: str) -> str:
        """A body that is blank after stripping is rejected by the service, not here."""
        return strip_markup(v)

    @field_validator('sender_name')
    @classmethod
    def sanitize_sender_name(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return strip_markup(v)


class MessageMatchDelete(BaseModel):
    """Delete the first message with this exact body and sender."""
    requester_id: str = Field(..., min_length=1)
    body: str
    sender_id: str = Field(..., min_length=1)

    @field_validator('body')
    @classmethod
    def normalize_body(cls, v: str) -> str:
        # Same normalization as on send, so the client's own body matches
        return strip_markup(v)


class MessageDelete(BaseModel):
    requester_id: str = Field(..., min_length=1)


class MessageView(BaseModel):
    """A stored message plus its display text for one viewer."""
    id: str
    sender_id: str
    sender_name: str
    message: str
    display: str
    timestamp: datetime

    model_config = ConfigDict(from_attributes=True)

    @classmethod
    def from_model(cls, message, display: Optional[str] = None) -> "MessageView":
        return cls(
            id=message.id,
            sender_id=message.sender_id,
            sender_name=message.sender_name,
            message=message.message,
            display=message.message if display is None else display,
            timestamp=message.timestamp,
        )


class MessageResponse(BaseModel):
    id: str
    group_id: str
    sender_id: str
    sender_name: str
    message: str
    timestamp: datetime

    @classmethod
    def from_model(cls, group_id: str, message) -> "MessageResponse":
        return cls(
            id=message.id,
            group_id=group_id,
            sender_id=message.sender_id,
            sender_name=message.sender_name,
            message=message.message,
            timestamp=message.timestamp,
        )
