"""
MessagingService - send, delete and live subscription for group message logs.

- Messages are appended with an atomic store push; concurrent sends from
  different members are all kept.
- Every message gets a server-generated id. Deletion removes by id with an
  atomic pull, so a delete never races a concurrent send or delete.
- Only the sender may delete a message, group creator included.
- Rendering for a viewer masks the viewer's hidden words in other people's
  messages; the stored body is never changed.
"""

import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Iterable, List, Optional, Sequence, Tuple

from groupchat.core import metrics
from groupchat.core.exceptions import AuthError, NotFoundError, ValidationError
from groupchat.core.logging_config import get_logger
from groupchat.db.store import GroupStore
from groupchat.models.group import Group, Message, utcnow
from groupchat.services.group_feed import GroupFeed, Subscription, feed as default_feed
from groupchat.services.profile_service import ProfileService
from groupchat.services.word_filter import censor

logger = get_logger(__name__)

MessageHook = Callable[[Group, Message], Awaitable[None]]


def render_message(message: Message, viewer_id: str, hidden_words: Optional[Iterable[str]]) -> str:
    """Display text of ``message`` for ``viewer_id``. Own messages are never censored."""
    if message.sender_id == viewer_id:
        return message.message
    return censor(message.message, hidden_words)


def render_group(
    group: Group,
    viewer_id: str,
    hidden_words: Optional[Iterable[str]],
) -> List[Tuple[Message, str]]:
    words = list(hidden_words or [])
    return [(message, render_message(message, viewer_id, words)) for message in group.messages]


async def emit_message_sent(group: Group, message: Message) -> None:
    """Default hook: structured event consumed by the push-notification pipeline."""
    recipients = [member for member in group.members if member != message.sender_id]
    logger.info(
        "message_sent_event",
        group_id=group.id,
        group_name=group.name,
        message_id=message.id,
        sender_id=message.sender_id,
        recipient_ids=recipients,
    )


class MessagingService:

    def __init__(
        self,
        store: GroupStore,
        feed: GroupFeed = default_feed,
        profiles: Optional[ProfileService] = None,
        hooks: Sequence[MessageHook] = (emit_message_sent,),
    ):
        self.store = store
        self.feed = feed
        self.profiles = profiles or ProfileService(store)
        self.hooks = list(hooks)

    async def _get_group(self, group_id: str) -> Group:
        group = await self.store.get_group(group_id)
        if group is None:
            raise NotFoundError("Group not found")
        return group

    async def send_message(
        self,
        group_id: str,
        sender_id: str,
        sender_name: Optional[str],
        body: str,
    ) -> Message:
        """
        Append a message to the group's log and fan it out.

        Raises:
            ValidationError: body is empty after trimming whitespace
            NotFoundError: group does not exist
            AuthError: sender is not a current member
        """
        start_time = time.perf_counter()

        try:
            if not body or not body.strip():
                raise ValidationError("Message body is required")

            group = await self._get_group(group_id)
            if not group.is_member(sender_id):
                logger.warning("message_send_not_member", group_id=group_id, sender_id=sender_id)
                raise AuthError("Only group members can send messages")

            if not sender_name or not sender_name.strip():
                sender_name = await self.profiles.get_display_name(sender_id)

            message = Message(
                sender_id=sender_id,
                sender_name=sender_name.strip(),
                message=body,
                timestamp=utcnow(),
            )
            if not await self.store.append_message(group_id, message):
                raise NotFoundError("Group not found")

            metrics.messages_sent_total.labels(group_id=group_id).inc()
            logger.info(
                "message_sent",
                group_id=group_id,
                message_id=message.id,
                sender_id=sender_id,
            )

            await self.feed.publish_latest(group_id, self.store)
            await self._run_hooks(group, message)
            return message

        except Exception as e:
            metrics.message_operation_errors_total.labels(
                operation="send",
                error_type=type(e).__name__
            ).inc()
            raise

        finally:
            metrics.message_operation_duration_seconds.labels(operation="send").observe(
                time.perf_counter() - start_time
            )

    async def delete_message(self, group_id: str, requester_id: str, message_id: str) -> Message:
        """Delete one message by id. Sender only."""
        group = await self._get_group(group_id)
        message = group.find_message(message_id)
        if message is None:
            raise NotFoundError("Message not found")
        return await self._remove(group, requester_id, message)

    async def delete_matching_message(
        self,
        group_id: str,
        requester_id: str,
        body: str,
        sender_id: str,
    ) -> Message:
        """
        Delete the first message whose body and sender match exactly.

        With duplicate messages from the same sender, the earliest one goes.
        """
        group = await self._get_group(group_id)
        if requester_id != sender_id:
            raise AuthError("You can only delete your own messages")

        message = group.find_matching_message(body, sender_id)
        if message is None:
            raise NotFoundError("Message not found")
        return await self._remove(group, requester_id, message)

    async def _remove(self, group: Group, requester_id: str, message: Message) -> Message:
        start_time = time.perf_counter()

        try:
            if message.sender_id != requester_id:
                logger.warning(
                    "message_delete_not_sender",
                    group_id=group.id,
                    message_id=message.id,
                    requester_id=requester_id,
                )
                raise AuthError("You can only delete your own messages")

            if not await self.store.remove_message(group.id, message.id):
                # Removed concurrently, or the group is gone.
                raise NotFoundError("Message not found")

            metrics.messages_deleted_total.labels(group_id=group.id).inc()
            logger.info(
                "message_deleted",
                group_id=group.id,
                message_id=message.id,
                requester_id=requester_id,
            )

            await self.feed.publish_latest(group.id, self.store)
            return message

        except Exception as e:
            metrics.message_operation_errors_total.labels(
                operation="delete",
                error_type=type(e).__name__
            ).inc()
            raise

        finally:
            metrics.message_operation_duration_seconds.labels(operation="delete").observe(
                time.perf_counter() - start_time
            )

    @asynccontextmanager
    async def subscribe(self, group_id: str, subscriber_id: str) -> AsyncIterator[Subscription]:
        """
        Live stream of whole-group snapshots, starting with the current one.

        Usage:
            async with messaging.subscribe(group_id, user_id) as subscription:
                async for event in subscription:
                    ...

        Leaving the block releases the subscription.
        """
        group = await self._get_group(group_id)
        if not group.is_member(subscriber_id):
            raise AuthError("Only group members can subscribe")

        async with self.feed.subscribe(group_id, subscriber_id) as subscription:
            await self.feed.prime(subscription, self.store)
            yield subscription

    async def _run_hooks(self, group: Group, message: Message) -> None:
        for hook in self.hooks:
            try:
                await hook(group, message)
            except Exception as e:
                logger.error(
                    "message_hook_failed",
                    hook=getattr(hook, "__name__", repr(hook)),
                    group_id=group.id,
                    message_id=message.id,
                    error=str(e),
                    exc_info=True,
                )
