"""
MongoDB store backed by Beanie documents.

Reads and inserts go through Beanie; mutations of array fields use single
``update_one`` calls with ``$push`` / ``$pull`` / ``$addToSet`` so concurrent
writers never overwrite each other's changes. Requires ``init_db()`` first.
"""

import asyncio
import time
from typing import Any, Awaitable, Iterable, List, Optional

from pymongo.errors import PyMongoError

from groupchat.config import settings
from groupchat.core import metrics
from groupchat.core.exceptions import TransientStoreError
from groupchat.core.logging_config import get_logger
from groupchat.db.store import GroupStore
from groupchat.models.group import Group, GroupDocument, Message
from groupchat.models.user import GroupListEntry, UserDocument, UserProfile

logger = get_logger(__name__)


def _empty_user() -> dict:
    return {
        "display_name": None,
        "profile_image_url": None,
        "hidden_words": [],
        "group_list": [],
    }


class MongoGroupStore(GroupStore):

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout if timeout is not None else settings.STORE_TIMEOUT_SECONDS

    @property
    def _groups(self):
        return GroupDocument.get_motor_collection()

    @property
    def _users(self):
        return UserDocument.get_motor_collection()

    async def _run(self, operation: str, collection: str, awaitable: Awaitable[Any]) -> Any:
        """Await a driver call with the store timeout; map failures to TransientStoreError."""
        start_time = time.perf_counter()
        status = "error"
        try:
            result = await asyncio.wait_for(awaitable, timeout=self.timeout)
            status = "success"
            return result
        except asyncio.TimeoutError as e:
            logger.warning(
                "store_operation_timeout",
                operation=operation,
                collection=collection,
                timeout_seconds=self.timeout,
            )
            raise TransientStoreError(f"Store timed out during {operation}") from e
        except PyMongoError as e:
            logger.warning(
                "store_operation_failed",
                operation=operation,
                collection=collection,
                error_type=type(e).__name__,
                error=str(e),
            )
            raise TransientStoreError(f"Store unavailable during {operation}") from e
        finally:
            metrics.store_operations_total.labels(
                operation=operation,
                collection=collection,
                status=status
            ).inc()
            metrics.store_operation_duration_seconds.labels(
                operation=operation,
                collection=collection
            ).observe(time.perf_counter() - start_time)

    # ------------------------------------------------------------------ groups

    async def insert_group(self, group: Group) -> None:
        await self._run("insert", "groups", GroupDocument.from_group(group).insert())

    async def get_group(self, group_id: str) -> Optional[Group]:
        document = await self._run("get", "groups", GroupDocument.get(group_id))
        return document.to_group() if document else None

    async def delete_group(self, group_id: str) -> bool:
        result = await self._run("delete", "groups", self._groups.delete_one({"_id": group_id}))
        return result.deleted_count == 1

    async def add_members(self, group_id: str, user_ids: Iterable[str]) -> bool:
        result = await self._run(
            "add_members",
            "groups",
            self._groups.update_one(
                {"_id": group_id},
                {"$addToSet": {"members": {"$each": list(user_ids)}}},
            ),
        )
        return result.matched_count == 1

    async def remove_member(self, group_id: str, user_id: str) -> bool:
        result = await self._run(
            "remove_member",
            "groups",
            self._groups.update_one({"_id": group_id}, {"$pull": {"members": user_id}}),
        )
        return result.matched_count == 1

    async def append_message(self, group_id: str, message: Message) -> bool:
        result = await self._run(
            "append_message",
            "groups",
            self._groups.update_one(
                {"_id": group_id},
                {"$push": {"messages": message.model_dump()}},
            ),
        )
        return result.matched_count == 1

    async def remove_message(self, group_id: str, message_id: str) -> bool:
        result = await self._run(
            "remove_message",
            "groups",
            self._groups.update_one(
                {"_id": group_id, "messages.id": message_id},
                {"$pull": {"messages": {"id": message_id}}},
            ),
        )
        return result.modified_count == 1

    async def find_groups_for_member(self, user_id: str) -> List[Group]:
        documents = await self._run(
            "find_by_member",
            "groups",
            GroupDocument.find({"members": user_id}).to_list(),
        )
        return [document.to_group() for document in documents]

    async def list_group_ids(self) -> List[str]:
        return await self._run("list_ids", "groups", self._groups.distinct("_id"))

    # ------------------------------------------------------------------- users

    async def _ensure_user(self, user_id: str) -> None:
        await self._run(
            "ensure",
            "users",
            self._users.update_one(
                {"_id": user_id},
                {"$setOnInsert": _empty_user()},
                upsert=True,
            ),
        )

    async def get_user(self, user_id: str) -> Optional[UserProfile]:
        document = await self._run("get", "users", UserDocument.get(user_id))
        return document.to_profile() if document else None

    async def list_user_ids(self) -> List[str]:
        return await self._run("list_ids", "users", self._users.distinct("_id"))

    async def upsert_profile(
        self,
        user_id: str,
        display_name: Optional[str],
        profile_image_url: Optional[str],
    ) -> UserProfile:
        await self._run(
            "upsert_profile",
            "users",
            self._users.update_one(
                {"_id": user_id},
                {
                    "$set": {
                        "display_name": display_name,
                        "profile_image_url": profile_image_url,
                    },
                    "$setOnInsert": {"hidden_words": [], "group_list": []},
                },
                upsert=True,
            ),
        )
        return await self.get_user(user_id)

    async def add_group_entry(self, user_id: str, entry: GroupListEntry) -> None:
        await self._ensure_user(user_id)
        # The $ne guard keeps the push idempotent under retries and repair runs.
        await self._run(
            "add_group_entry",
            "users",
            self._users.update_one(
                {"_id": user_id, "group_list.group_id": {"$ne": entry.group_id}},
                {"$push": {"group_list": entry.model_dump()}},
            ),
        )

    async def remove_group_entry(self, user_id: str, group_id: str) -> None:
        await self._run(
            "remove_group_entry",
            "users",
            self._users.update_one(
                {"_id": user_id},
                {"$pull": {"group_list": {"group_id": group_id}}},
            ),
        )

    async def replace_group_entries(self, user_id: str, entries: List[GroupListEntry]) -> None:
        await self._ensure_user(user_id)
        await self._run(
            "replace_group_entries",
            "users",
            self._users.update_one(
                {"_id": user_id},
                {"$set": {"group_list": [entry.model_dump() for entry in entries]}},
            ),
        )

    async def add_hidden_word(self, user_id: str, word: str) -> List[str]:
        await self._ensure_user(user_id)
        await self._run(
            "add_hidden_word",
            "users",
            self._users.update_one({"_id": user_id}, {"$addToSet": {"hidden_words": word}}),
        )
        user = await self.get_user(user_id)
        return user.hidden_words if user else []

    async def remove_hidden_word(self, user_id: str, word: str) -> List[str]:
        await self._run(
            "remove_hidden_word",
            "users",
            self._users.update_one({"_id": user_id}, {"$pull": {"hidden_words": word}}),
        )
        user = await self.get_user(user_id)
        return user.hidden_words if user else []

    # -------------------------------------------------------------- lifecycle

    async def ping(self) -> bool:
        await self._run("ping", "admin", self._groups.database.command("ping"))
        return True
