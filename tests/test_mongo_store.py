"""
Integration tests for MongoGroupStore.

Requires a running MongoDB. Skipped unless MONGODB_TEST_URL is set, e.g.:

    MONGODB_TEST_URL=mongodb://localhost:27017 pytest tests/test_mongo_store.py
"""

import asyncio
import os
import uuid

import pytest

from groupchat.core.exceptions import TransientStoreError
from groupchat.db.mongo_store import MongoGroupStore
from groupchat.db.mongodb import close_db, init_db
from groupchat.models.group import Group, Message, new_group_id
from groupchat.models.user import GroupListEntry
from groupchat.services.group_feed import GroupFeed
from groupchat.services.group_service import GroupService
from groupchat.services.messaging_service import MessagingService

MONGODB_TEST_URL = os.getenv("MONGODB_TEST_URL")

pytestmark = pytest.mark.skipif(not MONGODB_TEST_URL, reason="MONGODB_TEST_URL not set")


@pytest.fixture
async def mongo_store():
    """MongoGroupStore on a throwaway database, dropped afterwards."""
    database_name = f"test_groupchat_{uuid.uuid4().hex[:8]}"
    client = await init_db(MONGODB_TEST_URL, database_name)

    yield MongoGroupStore(timeout=10)

    await client.drop_database(database_name)
    await close_db(client)


def make_group(*members: str) -> Group:
    return Group(id=new_group_id(), name="Road Trip", created_by=members[0], members=list(members))


class TestMongoGroupStore:

    @pytest.mark.asyncio
    async def test_group_round_trip(self, mongo_store):
        group = make_group("u1", "u2")
        await mongo_store.insert_group(group)

        loaded = await mongo_store.get_group(group.id)

        assert loaded.id == group.id
        assert loaded.members == ["u1", "u2"]
        assert loaded.created_at.tzinfo is not None
        assert await mongo_store.get_group("missing") is None

    @pytest.mark.asyncio
    async def test_concurrent_appends_are_all_kept(self, mongo_store):
        group = make_group("u1", "u2")
        await mongo_store.insert_group(group)

        await asyncio.gather(*[
            mongo_store.append_message(group.id, Message(sender_id="u2", sender_name="Bo", message=f"m{i}"))
            for i in range(20)
        ])

        loaded = await mongo_store.get_group(group.id)
        assert sorted(m.message for m in loaded.messages) == sorted(f"m{i}" for i in range(20))

    @pytest.mark.asyncio
    async def test_remove_message_by_id(self, mongo_store):
        group = make_group("u1", "u2")
        await mongo_store.insert_group(group)
        first = Message(sender_id="u2", sender_name="Bo", message="same")
        second = Message(sender_id="u2", sender_name="Bo", message="same")
        await mongo_store.append_message(group.id, first)
        await mongo_store.append_message(group.id, second)

        assert await mongo_store.remove_message(group.id, first.id) is True
        assert await mongo_store.remove_message(group.id, first.id) is False

        loaded = await mongo_store.get_group(group.id)
        assert [m.id for m in loaded.messages] == [second.id]

    @pytest.mark.asyncio
    async def test_member_set_operations(self, mongo_store):
        group = make_group("u1", "u2")
        await mongo_store.insert_group(group)

        assert await mongo_store.add_members(group.id, ["u2", "u3"]) is True
        assert await mongo_store.remove_member(group.id, "u1") is True
        assert await mongo_store.add_members("missing", ["u9"]) is False

        loaded = await mongo_store.get_group(group.id)
        assert loaded.members == ["u2", "u3"]

        [found] = await mongo_store.find_groups_for_member("u3")
        assert found.id == group.id

    @pytest.mark.asyncio
    async def test_group_entry_is_idempotent(self, mongo_store):
        entry = GroupListEntry(group_id="g1", group_name="Road Trip", group_owner="u1")

        await mongo_store.add_group_entry("u2", entry)
        await mongo_store.add_group_entry("u2", entry)

        assert (await mongo_store.get_user("u2")).group_ids() == ["g1"]

        await mongo_store.remove_group_entry("u2", "g1")
        assert (await mongo_store.get_user("u2")).group_ids() == []

    @pytest.mark.asyncio
    async def test_hidden_words_are_a_set(self, mongo_store):
        await mongo_store.add_hidden_word("u1", "darn")
        words = await mongo_store.add_hidden_word("u1", "darn")
        assert words == ["darn"]

        assert await mongo_store.remove_hidden_word("u1", "darn") == []

    @pytest.mark.asyncio
    async def test_profile_upsert_keeps_index(self, mongo_store):
        await mongo_store.add_group_entry(
            "u1", GroupListEntry(group_id="g1", group_name="Road Trip", group_owner="u1")
        )

        profile = await mongo_store.upsert_profile("u1", "Ana", "https://img.example/u1.png")

        assert profile.display_name == "Ana"
        assert profile.group_ids() == ["g1"]

    @pytest.mark.asyncio
    async def test_timeout_maps_to_transient_error(self, mongo_store):
        async def never():
            await asyncio.sleep(10)

        store = MongoGroupStore(timeout=0.01)
        with pytest.raises(TransientStoreError):
            await store._run("get", "groups", never())

    @pytest.mark.asyncio
    async def test_services_end_to_end(self, mongo_store):
        feed = GroupFeed()
        groups = GroupService(mongo_store, feed)
        messaging = MessagingService(mongo_store, feed, hooks=())

        group = await groups.create_group("Road Trip", "u1", ["u2", "u3"])
        await messaging.send_message(group.id, "u2", "Bo", "hey all")
        await groups.remove_member(group.id, "u1", "u2")

        assert (await mongo_store.get_user("u2")).group_ids() == []
        assert (await mongo_store.get_user("u3")).group_ids() == [group.id]

        await groups.delete_group(group.id, "u1")
        assert await mongo_store.get_group(group.id) is None
        assert (await mongo_store.get_user("u3")).group_ids() == []
