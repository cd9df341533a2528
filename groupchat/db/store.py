"""
Backing store contract for groups and per-user records.

Every single-document mutation must be atomic in the backend: appending a
message, pulling a message by id, adding or removing members, and adding or
removing one index entry. Cross-document sequences (group write followed by
N index writes) are NOT atomic; the services treat the group document as the
source of truth and repair the indexes.

Backends raise ``TransientStoreError`` for connectivity problems and timeouts.
"""

from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

from groupchat.models.group import Group, Message
from groupchat.models.user import GroupListEntry, UserProfile


class GroupStore(ABC):

    # ------------------------------------------------------------------ groups

    @abstractmethod
    async def insert_group(self, group: Group) -> None:
        """Write a new group document. ``group.id`` is allocated by the caller."""

    @abstractmethod
    async def get_group(self, group_id: str) -> Optional[Group]:
        ...

    @abstractmethod
    async def delete_group(self, group_id: str) -> bool:
        """True if a document was deleted."""

    @abstractmethod
    async def add_members(self, group_id: str, user_ids: Iterable[str]) -> bool:
        """Set-union ``user_ids`` into members. False if the group does not exist."""

    @abstractmethod
    async def remove_member(self, group_id: str, user_id: str) -> bool:
        """False if the group does not exist."""

    @abstractmethod
    async def append_message(self, group_id: str, message: Message) -> bool:
        """Atomically append to the message log. False if the group does not exist."""

    @abstractmethod
    async def remove_message(self, group_id: str, message_id: str) -> bool:
        """Atomically remove the message with this id. False if nothing was removed."""

    @abstractmethod
    async def find_groups_for_member(self, user_id: str) -> List[Group]:
        ...

    @abstractmethod
    async def list_group_ids(self) -> List[str]:
        ...

    # ------------------------------------------------------------------- users

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[UserProfile]:
        ...

    @abstractmethod
    async def list_user_ids(self) -> List[str]:
        ...

    @abstractmethod
    async def upsert_profile(
        self,
        user_id: str,
        display_name: Optional[str],
        profile_image_url: Optional[str],
    ) -> UserProfile:
        ...

    @abstractmethod
    async def add_group_entry(self, user_id: str, entry: GroupListEntry) -> None:
        """Idempotent: no-op if the user already has an entry for ``entry.group_id``."""

    @abstractmethod
    async def remove_group_entry(self, user_id: str, group_id: str) -> None:
        ...

    @abstractmethod
    async def replace_group_entries(self, user_id: str, entries: List[GroupListEntry]) -> None:
        ...

    @abstractmethod
    async def add_hidden_word(self, user_id: str, word: str) -> List[str]:
        """Set-add; returns the resulting list."""

    @abstractmethod
    async def remove_hidden_word(self, user_id: str, word: str) -> List[str]:
        ...

    # -------------------------------------------------------------- lifecycle

    @abstractmethod
    async def ping(self) -> bool:
        ...

    async def close(self) -> None:
        return None
