"""
GroupService - group lifecycle and the per-user group index.

Consistency model:
- The group document is the source of truth. It is always written first.
- Each member's GroupListEntry is a separate, idempotent write. A failure
  there is retried, then logged as a PartialFailure; the group mutation that
  already succeeded is never rolled back.
- Deleting a group removes every member's entry BEFORE the document, so a crash
  mid-way leaves a group without index entries rather than dangling entries.
- ``repair_user_index`` and ``repair_group_index`` reconcile the index from the
  group documents.

Privileges:
- Only the creator adds members, removes other members, or deletes the group.
- Any member may leave. The creator may not leave (the group would have nobody
  able to manage it); they delete it instead.
- A group whose member set becomes empty is deleted.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Iterable, List, Optional

from groupchat.config import settings
from groupchat.core import metrics
from groupchat.core.exceptions import (
    AuthError,
    NotFoundError,
    PartialFailure,
    TransientStoreError,
    ValidationError,
)
from groupchat.core.logging_config import get_logger
from groupchat.db.store import GroupStore
from groupchat.models.group import Group, new_group_id, utcnow
from groupchat.models.user import GroupListEntry, UserProfile
from groupchat.services.group_feed import GroupFeed, feed as default_feed
from groupchat.services.messaging_service import render_message

logger = get_logger(__name__)

NO_MESSAGES_PREVIEW = "No messages yet"


@dataclass
class GroupSummary:
    """A user's group-list entry enriched from the group document."""
    group_id: str
    group_name: str
    group_owner: str
    image: Optional[str]
    member_count: int
    last_message: str
    last_activity: datetime


@dataclass
class MemberInfo:
    user_id: str
    display_name: Optional[str]
    profile_image_url: Optional[str]
    is_creator: bool


def _dedupe(user_ids: Iterable[str]) -> List[str]:
    seen = set()
    result = []
    for user_id in user_ids:
        if user_id and user_id not in seen:
            seen.add(user_id)
            result.append(user_id)
    return result


class GroupService:

    def __init__(self, store: GroupStore, feed: GroupFeed = default_feed):
        self.store = store
        self.feed = feed

    # ------------------------------------------------------------------ reads

    async def get_group(self, group_id: str) -> Group:
        group = await self.store.get_group(group_id)
        if group is None:
            raise NotFoundError("Group not found")
        return group

    async def get_group_for_member(self, group_id: str, user_id: str) -> Group:
        group = await self.get_group(group_id)
        if not group.is_member(user_id):
            raise AuthError("Only group members can view this group")
        return group

    async def list_members(self, group_id: str, viewer_id: str) -> List[MemberInfo]:
        group = await self.get_group_for_member(group_id, viewer_id)
        profiles = await asyncio.gather(*[self.store.get_user(m) for m in group.members])
        return [
            MemberInfo(
                user_id=member_id,
                display_name=profile.display_name if profile else None,
                profile_image_url=profile.profile_image_url if profile else None,
                is_creator=member_id == group.created_by,
            )
            for member_id, profile in zip(group.members, profiles)
        ]

    async def list_user_groups(self, user_id: str) -> List[GroupListEntry]:
        profile = await self.store.get_user(user_id)
        return profile.group_list if profile else []

    async def list_user_group_summaries(
        self,
        user_id: str,
        hidden_words: Optional[Iterable[str]] = None,
    ) -> List[GroupSummary]:
        """
        The user's group list with image, member count and last-message preview.

        Entries whose group is gone, or that no longer lists the user, are
        dropped from the result and removed from the index.
        """
        entries = await self.list_user_groups(user_id)
        groups = await asyncio.gather(*[self.store.get_group(e.group_id) for e in entries])
        words = list(hidden_words or [])

        summaries = []
        for entry, group in zip(entries, groups):
            if group is None or not group.is_member(user_id):
                await self._drop_dangling_entry(user_id, entry.group_id)
                continue

            last = group.last_message
            summaries.append(GroupSummary(
                group_id=group.id,
                group_name=group.name,
                group_owner=group.created_by,
                image=group.image,
                member_count=len(group.members),
                last_message=render_message(last, user_id, words) if last else NO_MESSAGES_PREVIEW,
                last_activity=last.timestamp if last else group.created_at,
            ))
        return summaries

    async def _drop_dangling_entry(self, user_id: str, group_id: str) -> None:
        logger.warning("group_index_dangling_entry", user_id=user_id, group_id=group_id)
        try:
            await self.store.remove_group_entry(user_id, group_id)
        except TransientStoreError as e:
            logger.warning(
                "group_index_cleanup_deferred",
                user_id=user_id,
                group_id=group_id,
                error=str(e.detail),
            )

    # -------------------------------------------------------------- mutations

    async def create_group(
        self,
        name: str,
        creator_id: str,
        member_ids: Iterable[str],
        image_ref: Optional[str] = None,
        caller_id: Optional[str] = None,
    ) -> Group:
        """
        Create a group and index it for every member.

        Raises:
            AuthError: caller_id is given and differs from creator_id
            ValidationError: empty name, or no invitee besides the creator
        """
        if caller_id is not None and caller_id != creator_id:
            raise AuthError("Caller is not the stated group creator")

        name = (name or "").strip()
        if not name:
            raise ValidationError("Group name is required")
        if len(name) > settings.GROUP_NAME_MAX_LENGTH:
            raise ValidationError(
                f"Group name must be at most {settings.GROUP_NAME_MAX_LENGTH} characters"
            )

        invitees = [m for m in _dedupe(member_ids or []) if m != creator_id]
        if not invitees:
            raise ValidationError("At least one member besides the creator is required")

        # Allocated before the document exists so index entries can reference it.
        group_id = new_group_id()
        image = image_ref or await self._creator_image(creator_id)
        now = utcnow()

        group = Group(
            id=group_id,
            name=name,
            image=image,
            created_by=creator_id,
            members=[creator_id, *invitees],
            messages=[],
            created_at=now,
        )
        await self.store.insert_group(group)

        metrics.groups_created_total.inc()
        logger.info(
            "group_created",
            group_id=group_id,
            creator_id=creator_id,
            member_count=len(group.members),
        )

        entry = GroupListEntry(group_id=group_id, group_name=name, group_owner=creator_id, timestamp=now)
        await self._index_members("create", group_id, group.members, entry)
        return group

    async def add_members(self, group_id: str, requester_id: str, new_member_ids: Iterable[str]) -> Group:
        """Creator only. Users who are already members are skipped silently."""
        group = await self.get_group(group_id)
        if requester_id != group.created_by:
            raise AuthError("Only the group creator can add members")

        candidates = _dedupe(new_member_ids or [])
        if not candidates:
            raise ValidationError("At least one member id is required")

        to_add = [user_id for user_id in candidates if not group.is_member(user_id)]
        if not to_add:
            logger.info("group_members_already_present", group_id=group_id, requester_id=requester_id)
            return group

        if not await self.store.add_members(group_id, to_add):
            raise NotFoundError("Group not found")

        metrics.group_members_added_total.inc(len(to_add))
        logger.info("group_members_added", group_id=group_id, added=to_add)

        await self.feed.publish_latest(group_id, self.store)

        entry = GroupListEntry(
            group_id=group_id,
            group_name=group.name,
            group_owner=group.created_by,
            timestamp=utcnow(),
        )
        await self._index_members("add_members", group_id, to_add, entry)

        return await self.store.get_group(group_id) or group

    async def remove_member(self, group_id: str, requester_id: str, target_user_id: str) -> Optional[Group]:
        """
        Remove ``target_user_id`` from the group.

        Allowed when the creator removes another member, or when a non-creator
        member removes themselves. Returns the updated group, or None if the
        group was deleted because no members were left.
        """
        group = await self.get_group(group_id)

        if requester_id == target_user_id:
            if target_user_id == group.created_by:
                raise AuthError("The group creator cannot leave the group; delete it instead")
            pattern = "self_leave"
        elif requester_id == group.created_by:
            pattern = "creator_removal"
        else:
            raise AuthError("Only the group creator can remove other members")

        if not group.is_member(target_user_id):
            raise NotFoundError("User is not a member of this group")

        if not await self.store.remove_member(group_id, target_user_id):
            raise NotFoundError("Group not found")

        metrics.group_members_removed_total.labels(pattern=pattern).inc()
        logger.info(
            "group_member_removed",
            group_id=group_id,
            requester_id=requester_id,
            target_user_id=target_user_id,
            pattern=pattern,
        )

        await self._unindex_members("remove_member", group_id, [target_user_id])

        updated = await self.store.get_group(group_id)
        if updated is not None and not updated.members:
            await self._delete(updated, reason="empty")
            return None

        await self.feed.publish_latest(group_id, self.store)
        return updated

    async def leave_group(self, group_id: str, requester_id: str) -> Optional[Group]:
        return await self.remove_member(group_id, requester_id, requester_id)

    async def delete_group(self, group_id: str, requester_id: str) -> None:
        group = await self.get_group(group_id)
        if requester_id != group.created_by:
            raise AuthError("Only the group creator can delete the group")
        await self._delete(group, reason="creator")

    async def _delete(self, group: Group, reason: str) -> None:
        # Index cleanup first: a crash here leaves a live group, not dangling entries.
        await self._unindex_members("delete", group.id, group.members)
        await self.store.delete_group(group.id)

        metrics.groups_deleted_total.labels(reason=reason).inc()
        logger.info("group_deleted", group_id=group.id, reason=reason, member_count=len(group.members))

        self.feed.publish_deleted(group.id)

    # ----------------------------------------------------------------- repair

    async def repair_user_index(self, user_id: str) -> List[GroupListEntry]:
        """Rebuild a user's group list from the groups that actually list them."""
        groups = await self.store.find_groups_for_member(user_id)
        profile = await self.store.get_user(user_id)
        existing = profile.group_list if profile else []

        by_id = {group.id: group for group in groups}
        entries = []
        for entry in existing:
            group = by_id.pop(entry.group_id, None)
            if group is not None:
                entries.append(GroupListEntry(
                    group_id=group.id,
                    group_name=group.name,
                    group_owner=group.created_by,
                    timestamp=entry.timestamp,
                ))
        for group in sorted(by_id.values(), key=lambda g: g.created_at):
            entries.append(GroupListEntry(
                group_id=group.id,
                group_name=group.name,
                group_owner=group.created_by,
                timestamp=group.created_at,
            ))

        await self.store.replace_group_entries(user_id, entries)
        logger.info(
            "user_index_repaired",
            user_id=user_id,
            entries=len(entries),
            added=len(by_id),
            removed=len(existing) - (len(entries) - len(by_id)),
        )
        return entries

    async def repair_group_index(self, group_id: str) -> List[str]:
        """Re-run the idempotent index write for every member. Returns ids that still failed."""
        group = await self.get_group(group_id)
        entry = GroupListEntry(
            group_id=group.id,
            group_name=group.name,
            group_owner=group.created_by,
            timestamp=group.created_at,
        )
        try:
            await self._fan_out(
                "repair",
                group.id,
                group.members,
                lambda user_id: self.store.add_group_entry(user_id, entry),
            )
        except PartialFailure as e:
            self._log_partial_failure(e)
            return e.failed_user_ids

        logger.info("group_index_repaired", group_id=group_id, member_count=len(group.members))
        return []

    # ---------------------------------------------------------------- fan-out

    async def _index_members(
        self,
        operation: str,
        group_id: str,
        user_ids: Iterable[str],
        entry: GroupListEntry,
    ) -> None:
        try:
            await self._fan_out(
                operation,
                group_id,
                user_ids,
                lambda user_id: self.store.add_group_entry(user_id, entry),
            )
        except PartialFailure as e:
            self._log_partial_failure(e)

    async def _unindex_members(self, operation: str, group_id: str, user_ids: Iterable[str]) -> None:
        try:
            await self._fan_out(
                operation,
                group_id,
                user_ids,
                lambda user_id: self.store.remove_group_entry(user_id, group_id),
            )
        except PartialFailure as e:
            self._log_partial_failure(e)

    async def _fan_out(
        self,
        operation: str,
        group_id: str,
        user_ids: Iterable[str],
        write: Callable[[str], Awaitable[None]],
    ) -> None:
        """
        Run ``write(user_id)`` for every user concurrently, with retries.

        Raises:
            PartialFailure: some writes still failed with TransientStoreError
        """
        user_ids = list(user_ids)
        results = await asyncio.gather(
            *[self._write_with_retry(operation, user_id, write) for user_id in user_ids],
            return_exceptions=True,
        )

        failed = []
        for user_id, result in zip(user_ids, results):
            if isinstance(result, TransientStoreError):
                failed.append(user_id)
            elif isinstance(result, BaseException):
                raise result

        if failed:
            raise PartialFailure(operation, group_id, failed)

    async def _write_with_retry(
        self,
        operation: str,
        user_id: str,
        write: Callable[[str], Awaitable[None]],
    ) -> None:
        attempts = max(1, settings.INDEX_WRITE_ATTEMPTS)
        for attempt in range(1, attempts + 1):
            try:
                await write(user_id)
                metrics.index_writes_total.labels(operation=operation, status="success").inc()
                return
            except TransientStoreError as e:
                if attempt == attempts:
                    metrics.index_writes_total.labels(operation=operation, status="failed").inc()
                    raise
                metrics.index_writes_total.labels(operation=operation, status="retry").inc()
                logger.debug(
                    "index_write_retry",
                    operation=operation,
                    user_id=user_id,
                    attempt=attempt,
                    error=str(e.detail),
                )
                await asyncio.sleep(settings.INDEX_WRITE_BACKOFF_SECONDS * attempt)

    def _log_partial_failure(self, error: PartialFailure) -> None:
        metrics.index_partial_failures_total.labels(operation=error.operation).inc()
        logger.warning(
            "group_index_partial_failure",
            operation=error.operation,
            group_id=error.group_id,
            failed_user_ids=error.failed_user_ids,
            error=str(error),
        )

    async def _creator_image(self, creator_id: str) -> Optional[str]:
        profile: Optional[UserProfile] = await self.store.get_user(creator_id)
        return profile.profile_image_url if profile else None
