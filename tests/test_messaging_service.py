"""
Tests for MessagingService.

Tests cover:
- Append semantics (concurrent sends, identical bodies)
- Sender-only delete, by id and by structural match
- Live subscriptions: initial snapshot, latest-wins delivery, release
- Per-viewer rendering
- Message-sent hooks
"""

import asyncio

import pytest
from prometheus_client import REGISTRY

from groupchat.core.exceptions import AuthError, NotFoundError, ValidationError
from groupchat.models.group import Message
from groupchat.services.group_feed import DELETED, SNAPSHOT
from groupchat.services.messaging_service import MessagingService, render_message


class TestSendMessage:

    @pytest.mark.asyncio
    async def test_send_appends(self, store, messaging_service, road_trip):
        message = await messaging_service.send_message(road_trip.id, "u2", "Bo", "hello")

        group = await store.get_group(road_trip.id)
        assert [m.id for m in group.messages] == [message.id]
        assert group.messages[0].message == "hello"
        assert group.messages[0].sender_id == "u2"
        assert group.messages[0].sender_name == "Bo"

    @pytest.mark.asyncio
    async def test_identical_bodies_from_different_senders_both_kept(self, store, messaging_service, road_trip):
        """u2 and u3 both send "hey all": two entries, then u2 deletes only their own."""
        await messaging_service.send_message(road_trip.id, "u2", "Bo", "hey all")
        await messaging_service.send_message(road_trip.id, "u3", "Cy", "hey all")

        group = await store.get_group(road_trip.id)
        assert [(m.sender_id, m.message) for m in group.messages] == [("u2", "hey all"), ("u3", "hey all")]

        await messaging_service.delete_matching_message(road_trip.id, "u2", "hey all", "u2")

        group = await store.get_group(road_trip.id)
        assert [(m.sender_id, m.message) for m in group.messages] == [("u3", "hey all")]

    @pytest.mark.asyncio
    async def test_concurrent_sends_all_kept(self, store, messaging_service, road_trip):
        await asyncio.gather(*[
            messaging_service.send_message(road_trip.id, sender, None, f"msg {i}")
            for i, sender in enumerate(["u1", "u2", "u3"] * 5)
        ])

        group = await store.get_group(road_trip.id)
        assert len(group.messages) == 15
        assert len({m.id for m in group.messages}) == 15

    @pytest.mark.asyncio
    async def test_blank_body_rejected_without_change(self, store, messaging_service, road_trip):
        with pytest.raises(ValidationError):
            await messaging_service.send_message(road_trip.id, "u2", "Bo", "   ")

        assert (await store.get_group(road_trip.id)).messages == []

    @pytest.mark.asyncio
    async def test_non_member_rejected(self, store, messaging_service, road_trip):
        with pytest.raises(AuthError):
            await messaging_service.send_message(road_trip.id, "u9", "Eve", "let me in")

        assert (await store.get_group(road_trip.id)).messages == []

    @pytest.mark.asyncio
    async def test_missing_group(self, messaging_service):
        with pytest.raises(NotFoundError):
            await messaging_service.send_message("no-such-group", "u1", "Ana", "hi")

    @pytest.mark.asyncio
    async def test_sender_name_from_profile(self, store, messaging_service, road_trip):
        await store.upsert_profile("u2", "Bo", None)

        message = await messaging_service.send_message(road_trip.id, "u2", None, "hi")
        assert message.sender_name == "Bo"

    @pytest.mark.asyncio
    async def test_sender_name_default(self, messaging_service, road_trip):
        message = await messaging_service.send_message(road_trip.id, "u3", "  ", "hi")
        assert message.sender_name == "Unknown User"

    @pytest.mark.asyncio
    async def test_sender_name_is_a_snapshot(self, store, messaging_service, road_trip):
        await store.upsert_profile("u2", "Bo", None)
        await messaging_service.send_message(road_trip.id, "u2", None, "before rename")
        await store.upsert_profile("u2", "Robert", None)

        group = await store.get_group(road_trip.id)
        assert group.messages[0].sender_name == "Bo"

    @pytest.mark.asyncio
    async def test_hooks_receive_message(self, store, group_feed, road_trip):
        seen = []

        async def record(group, message):
            seen.append((group.id, message.message))

        service = MessagingService(store, group_feed, hooks=(record,))
        await service.send_message(road_trip.id, "u1", "Ana", "ping")

        assert seen == [(road_trip.id, "ping")]

    @pytest.mark.asyncio
    async def test_failing_hook_does_not_fail_send(self, store, group_feed, road_trip):
        async def broken(group, message):
            raise RuntimeError("push service down")

        service = MessagingService(store, group_feed, hooks=(broken,))
        message = await service.send_message(road_trip.id, "u1", "Ana", "still sent")

        assert (await store.get_group(road_trip.id)).messages[0].id == message.id


class TestDeleteMessage:

    @pytest.mark.asyncio
    async def test_sender_deletes_by_id(self, store, messaging_service, road_trip):
        first = await messaging_service.send_message(road_trip.id, "u2", "Bo", "one")
        second = await messaging_service.send_message(road_trip.id, "u3", "Cy", "two")

        deleted = await messaging_service.delete_message(road_trip.id, "u2", first.id)

        assert deleted.id == first.id
        group = await store.get_group(road_trip.id)
        assert [m.id for m in group.messages] == [second.id]

    @pytest.mark.asyncio
    async def test_other_member_cannot_delete(self, store, messaging_service, road_trip):
        message = await messaging_service.send_message(road_trip.id, "u2", "Bo", "mine")

        with pytest.raises(AuthError):
            await messaging_service.delete_message(road_trip.id, "u3", message.id)

        assert len((await store.get_group(road_trip.id)).messages) == 1

    @pytest.mark.asyncio
    async def test_creator_cannot_delete_others(self, messaging_service, road_trip):
        message = await messaging_service.send_message(road_trip.id, "u2", "Bo", "mine")

        with pytest.raises(AuthError):
            await messaging_service.delete_message(road_trip.id, "u1", message.id)

    @pytest.mark.asyncio
    async def test_unknown_message(self, messaging_service, road_trip):
        with pytest.raises(NotFoundError):
            await messaging_service.delete_message(road_trip.id, "u2", "nope")

    @pytest.mark.asyncio
    async def test_structural_match_removes_first_duplicate(self, store, messaging_service, road_trip):
        first = await messaging_service.send_message(road_trip.id, "u2", "Bo", "same")
        second = await messaging_service.send_message(road_trip.id, "u2", "Bo", "same")

        await messaging_service.delete_matching_message(road_trip.id, "u2", "same", "u2")

        group = await store.get_group(road_trip.id)
        assert [m.id for m in group.messages] == [second.id]
        assert first.id != second.id

    @pytest.mark.asyncio
    async def test_structural_match_other_sender_rejected(self, messaging_service, road_trip):
        await messaging_service.send_message(road_trip.id, "u2", "Bo", "mine")

        with pytest.raises(AuthError):
            await messaging_service.delete_matching_message(road_trip.id, "u3", "mine", "u2")

    @pytest.mark.asyncio
    async def test_structural_match_not_found(self, messaging_service, road_trip):
        await messaging_service.send_message(road_trip.id, "u2", "Bo", "mine")

        with pytest.raises(NotFoundError):
            await messaging_service.delete_matching_message(road_trip.id, "u2", "not mine", "u2")

    @pytest.mark.asyncio
    async def test_concurrent_deletes_remove_once(self, store, messaging_service, road_trip):
        message = await messaging_service.send_message(road_trip.id, "u2", "Bo", "once")
        keep = await messaging_service.send_message(road_trip.id, "u2", "Bo", "keep")

        results = await asyncio.gather(
            messaging_service.delete_message(road_trip.id, "u2", message.id),
            messaging_service.delete_message(road_trip.id, "u2", message.id),
            return_exceptions=True,
        )

        assert sum(isinstance(r, Message) for r in results) == 1
        assert sum(isinstance(r, NotFoundError) for r in results) == 1
        assert [m.id for m in (await store.get_group(road_trip.id)).messages] == [keep.id]


class TestSubscribe:

    @pytest.mark.asyncio
    async def test_initial_snapshot(self, messaging_service, road_trip):
        async with messaging_service.subscribe(road_trip.id, "u2") as subscription:
            event = await subscription.__anext__()

        assert event.type == SNAPSHOT
        assert event.group.id == road_trip.id

    @pytest.mark.asyncio
    async def test_send_is_delivered(self, messaging_service, road_trip):
        async with messaging_service.subscribe(road_trip.id, "u3") as subscription:
            await subscription.__anext__()

            await messaging_service.send_message(road_trip.id, "u2", "Bo", "hello")
            event = await asyncio.wait_for(subscription.__anext__(), timeout=1)

        assert [(m.sender_id, m.message) for m in event.group.messages] == [("u2", "hello")]

    @pytest.mark.asyncio
    async def test_slow_consumer_gets_latest_state(self, messaging_service, road_trip):
        async with messaging_service.subscribe(road_trip.id, "u3") as subscription:
            for i in range(5):
                await messaging_service.send_message(road_trip.id, "u2", "Bo", f"msg {i}")

            event = await asyncio.wait_for(subscription.__anext__(), timeout=1)

        assert [m.message for m in event.group.messages] == [f"msg {i}" for i in range(5)]

    @pytest.mark.asyncio
    async def test_delete_group_ends_stream(self, group_service, messaging_service, road_trip):
        async with messaging_service.subscribe(road_trip.id, "u2") as subscription:
            await subscription.__anext__()
            await group_service.delete_group(road_trip.id, "u1")

            events = [event async for event in subscription]

        assert [event.type for event in events] == [DELETED]

    @pytest.mark.asyncio
    async def test_non_member_rejected(self, group_feed, messaging_service, road_trip):
        with pytest.raises(AuthError):
            async with messaging_service.subscribe(road_trip.id, "u9"):
                pass

        assert group_feed.subscriber_count(road_trip.id) == 0

    @pytest.mark.asyncio
    async def test_missing_group(self, messaging_service):
        with pytest.raises(NotFoundError):
            async with messaging_service.subscribe("no-such-group", "u1"):
                pass

    @pytest.mark.asyncio
    async def test_released_on_exit(self, group_feed, messaging_service, road_trip):
        async with messaging_service.subscribe(road_trip.id, "u2"):
            assert group_feed.subscriber_count(road_trip.id) == 1

        assert group_feed.subscriber_count(road_trip.id) == 0

    @pytest.mark.asyncio
    async def test_released_on_error(self, group_feed, messaging_service, road_trip):
        with pytest.raises(RuntimeError):
            async with messaging_service.subscribe(road_trip.id, "u2"):
                raise RuntimeError("client went away")

        assert group_feed.subscriber_count(road_trip.id) == 0

    @pytest.mark.asyncio
    async def test_active_gauge_dropped_with_last_subscriber(self, messaging_service, road_trip):
        def active():
            return REGISTRY.get_sample_value(
                "groupchat_feed_subscriptions_active", {"group_id": road_trip.id}
            )

        async with messaging_service.subscribe(road_trip.id, "u2"):
            async with messaging_service.subscribe(road_trip.id, "u3"):
                assert active() == 2
            assert active() == 1

        assert active() is None

    @pytest.mark.asyncio
    async def test_shutdown_closes_streams(self, group_feed, messaging_service, road_trip):
        async with messaging_service.subscribe(road_trip.id, "u2") as subscription:
            await subscription.__anext__()
            group_feed.shutdown_all()

            events = [event async for event in subscription]

        assert [event.type for event in events] == ["closed"]


class TestRenderMessage:

    def _message(self, sender_id, body):
        return Message(sender_id=sender_id, sender_name="x", message=body)

    def test_own_message_never_censored(self):
        message = self._message("u1", "darn it")
        assert render_message(message, "u1", ["darn", "it"]) == "darn it"

    def test_others_message_censored(self):
        message = self._message("u2", "darn it")
        assert render_message(message, "u1", ["darn"]) == "**** it"

    def test_no_hidden_words(self):
        message = self._message("u2", "darn it")
        assert render_message(message, "u1", []) == "darn it"
