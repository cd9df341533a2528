"""
In-process store for local development and tests.

No method awaits while mutating, so each call runs to completion on the event
loop and is atomic with respect to other coroutines. Reads hand out deep copies
so callers can never mutate stored state.
"""

from typing import Dict, Iterable, List, Optional

from groupchat.db.store import GroupStore
from groupchat.models.group import Group, Message
from groupchat.models.user import GroupListEntry, UserProfile


class MemoryGroupStore(GroupStore):

    def __init__(self):
        self._groups: Dict[str, Group] = {}
        self._users: Dict[str, UserProfile] = {}

    def _user(self, user_id: str) -> UserProfile:
        if user_id not in self._users:
            self._users[user_id] = UserProfile(id=user_id)
        return self._users[user_id]

    # ------------------------------------------------------------------ groups

    async def insert_group(self, group: Group) -> None:
        if group.id in self._groups:
            raise ValueError(f"group {group.id} already exists")
        self._groups[group.id] = group.model_copy(deep=True)

    async def get_group(self, group_id: str) -> Optional[Group]:
        group = self._groups.get(group_id)
        return group.model_copy(deep=True) if group else None

    async def delete_group(self, group_id: str) -> bool:
        return self._groups.pop(group_id, None) is not None

    async def add_members(self, group_id: str, user_ids: Iterable[str]) -> bool:
        group = self._groups.get(group_id)
        if group is None:
            return False
        for user_id in user_ids:
            if user_id not in group.members:
                group.members.append(user_id)
        return True

    async def remove_member(self, group_id: str, user_id: str) -> bool:
        group = self._groups.get(group_id)
        if group is None:
            return False
        group.members = [m for m in group.members if m != user_id]
        return True

    async def append_message(self, group_id: str, message: Message) -> bool:
        group = self._groups.get(group_id)
        if group is None:
            return False
        group.messages.append(message.model_copy(deep=True))
        return True

    async def remove_message(self, group_id: str, message_id: str) -> bool:
        group = self._groups.get(group_id)
        if group is None:
            return False
        remaining = [m for m in group.messages if m.id != message_id]
        if len(remaining) == len(group.messages):
            return False
        group.messages = remaining
        return True

    async def find_groups_for_member(self, user_id: str) -> List[Group]:
        return [
            group.model_copy(deep=True)
            for group in self._groups.values()
            if user_id in group.members
        ]

    async def list_group_ids(self) -> List[str]:
        return list(self._groups)

    # ------------------------------------------------------------------- users

    async def get_user(self, user_id: str) -> Optional[UserProfile]:
        user = self._users.get(user_id)
        return user.model_copy(deep=True) if user else None

    async def list_user_ids(self) -> List[str]:
        return list(self._users)

    async def upsert_profile(
        self,
        user_id: str,
        display_name: Optional[str],
        profile_image_url: Optional[str],
    ) -> UserProfile:
        user = self._user(user_id)
        user.display_name = display_name
        user.profile_image_url = profile_image_url
        return user.model_copy(deep=True)

    async def add_group_entry(self, user_id: str, entry: GroupListEntry) -> None:
        user = self._user(user_id)
        if entry.group_id not in user.group_ids():
            user.group_list.append(entry.model_copy())

    async def remove_group_entry(self, user_id: str, group_id: str) -> None:
        user = self._users.get(user_id)
        if user is not None:
            user.group_list = [e for e in user.group_list if e.group_id != group_id]

    async def replace_group_entries(self, user_id: str, entries: List[GroupListEntry]) -> None:
        self._user(user_id).group_list = [entry.model_copy() for entry in entries]

    async def add_hidden_word(self, user_id: str, word: str) -> List[str]:
        user = self._user(user_id)
        if word not in user.hidden_words:
            user.hidden_words.append(word)
        return list(user.hidden_words)

    async def remove_hidden_word(self, user_id: str, word: str) -> List[str]:
        user = self._user(user_id)
        user.hidden_words = [w for w in user.hidden_words if w != word]
        return list(user.hidden_words)

    async def ping(self) -> bool:
        return True
