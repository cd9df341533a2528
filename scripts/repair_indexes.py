#!/usr/bin/env python3
"""
Reconcile every user's group index with the group documents.

Group documents are authoritative. Two passes:
1. For every group, re-run the idempotent index write for each member
   (fixes members missing an entry after a partial failure)
2. For every user, rebuild the group list from the groups that list them
   (drops entries that point at deleted groups or groups they left)

Usage:
    python scripts/repair_indexes.py --dry-run  # Report inconsistencies
    python scripts/repair_indexes.py --execute  # Repair them
"""

import argparse
import asyncio
from typing import Dict, List, Set

from groupchat.core.logging_config import PerformanceLogger, get_logger, setup_logging
from groupchat.db.mongo_store import MongoGroupStore
from groupchat.db.mongodb import close_db, init_db
from groupchat.db.store import GroupStore
from groupchat.services.group_service import GroupService

logger = get_logger("groupchat.scripts.repair_indexes")


async def find_inconsistencies(store: GroupStore) -> Dict[str, List[str]]:
    """Map of ``user_id -> problems`` without changing anything."""
    problems: Dict[str, List[str]] = {}
    memberships: Dict[str, Set[str]] = {}

    for group_id in await store.list_group_ids():
        group = await store.get_group(group_id)
        if group is None:
            continue
        for member_id in group.members:
            memberships.setdefault(member_id, set()).add(group.id)

    user_ids = set(await store.list_user_ids()) | set(memberships)
    for user_id in sorted(user_ids):
        profile = await store.get_user(user_id)
        indexed = set(profile.group_ids()) if profile else set()
        actual = memberships.get(user_id, set())

        for group_id in sorted(actual - indexed):
            problems.setdefault(user_id, []).append(f"missing entry for group {group_id}")
        for group_id in sorted(indexed - actual):
            problems.setdefault(user_id, []).append(f"dangling entry for group {group_id}")

    return problems


async def repair(store: GroupStore) -> List[str]:
    """Run both passes. Returns user ids whose index writes still failed."""
    service = GroupService(store)
    still_failing: Set[str] = set()

    for group_id in await store.list_group_ids():
        with PerformanceLogger("group_index_repair", logger, group_id=group_id):
            still_failing.update(await service.repair_group_index(group_id))

    for user_id in await store.list_user_ids():
        with PerformanceLogger("user_index_repair", logger, user_id=user_id):
            await service.repair_user_index(user_id)

    return sorted(still_failing)


async def run(execute: bool) -> int:
    client = await init_db()
    store = MongoGroupStore()
    try:
        problems = await find_inconsistencies(store)
        print(f"Users with inconsistent group indexes: {len(problems)}")
        for user_id, user_problems in problems.items():
            for problem in user_problems:
                print(f"   {user_id}: {problem}")

        if not execute:
            print("\nDry run - no changes made. Re-run with --execute to repair.")
            return 0

        failed = await repair(store)
        remaining = await find_inconsistencies(store)
        print(f"\nRepair finished. Remaining inconsistencies: {len(remaining)}")
        if failed:
            print(f"Index writes still failing for: {', '.join(failed)}")
            return 1
        return 0
    finally:
        await close_db(client)


def main():
    parser = argparse.ArgumentParser(description="Repair per-user group indexes")
    mode = parser.add_mutually_exclusive_group(required=True)
    mode.add_argument("--dry-run", action="store_true", help="Report inconsistencies only")
    mode.add_argument("--execute", action="store_true", help="Repair inconsistencies")
    args = parser.parse_args()

    setup_logging()
    raise SystemExit(asyncio.run(run(execute=args.execute)))


if __name__ == "__main__":
    main()
