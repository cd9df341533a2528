from pydantic import BaseModel, Field, ConfigDict
from typing import List, Optional


class ProfileUpdate(BaseModel):
    """Profile snapshot supplied by the identity and media services."""
    display_name: Optional[str] = Field(None, max_length=100)
    profile_image_url: Optional[str] = None


class ProfileResponse(BaseModel):
    id: str
    display_name: Optional[str] = None
    profile_image_url: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class HiddenWordCreate(BaseModel):
    # Length is checked after trimming, in the service.
    word: str


class HiddenWordsResponse(BaseModel):
    user_id: str
    hidden_words: List[str]
