#!/usr/bin/env python3
"""
Ensure the MongoDB indexes the group chat service relies on.

Creates (idempotent):
1. groups.members            - reverse scan "groups this user is in" (index repair)
2. groups.created_by         - groups owned by a user
3. users.group_list.group_id - per-user group index lookups

Usage:
    python scripts/create_indexes.py
    python scripts/create_indexes.py --mongodb-url mongodb://localhost:27017 --database groupchat_db
"""

import argparse
import asyncio

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING

from groupchat.config import settings

REQUIRED_INDEXES = {
    "groups": [
        ("members", "members_1"),
        ("created_by", "created_by_1"),
    ],
    "users": [
        ("group_list.group_id", "group_list.group_id_1"),
    ],
}


async def create_indexes(mongodb_url: str, database_name: str) -> None:
    print("\n" + "=" * 80)
    print("ENSURE MONGODB INDEXES")
    print("=" * 80 + "\n")

    print(f"Connecting to MongoDB: {mongodb_url} (database: {database_name})")
    client = AsyncIOMotorClient(mongodb_url)
    try:
        await client.admin.command("ping")
        db = client[database_name]

        for collection_name, indexes in REQUIRED_INDEXES.items():
            collection = db[collection_name]
            existing = await collection.list_indexes().to_list(length=None)
            existing_names = {idx.get("name") for idx in existing}

            for field, name in indexes:
                if name in existing_names:
                    print(f"   {collection_name}.{name}: already exists")
                    continue
                result = await collection.create_index([(field, ASCENDING)], name=name)
                print(f"   {collection_name}.{name}: created ({result})")

        print("\nDone.")
    finally:
        client.close()


def main():
    parser = argparse.ArgumentParser(description="Ensure MongoDB indexes for the group chat service")
    parser.add_argument("--mongodb-url", default=settings.MONGODB_URL)
    parser.add_argument("--database", default=settings.DATABASE_NAME)
    args = parser.parse_args()

    asyncio.run(create_indexes(args.mongodb_url, args.database))


if __name__ == "__main__":
    main()
