"""
Seed script to grant default permission bundles.

Grants global permission bundles to the given users, writes the grant
snapshot and records one audit entry per user.

Usage:
    uv run python -m scripts.seed_grants admin-1:administrator sales-7:sales
"""
import asyncio
import sys
from typing import Dict, List, Tuple

from app.core import config
from app.core.database.engine import get_db, init_db
from app.features.permissions.dependencies import create_audit_log
from app.features.permissions.grants import PermissionKind
from app.features.permissions.lifecycle import GrantChange, GrantLifecycle
from app.features.permissions.snapshot import restore_snapshot, save_snapshot
from app.features.permissions.store import GrantStore
from app.utils import get_logger


log = get_logger(__name__)

SEED_ACTOR = "system:seed"


DEFAULT_BUNDLES: Dict[str, Dict] = {
    "administrator": {
        "description": "Every permission on every resource",
        "permissions": list(PermissionKind),
    },
    "sales": {
        "description": "Customer contact details and assignment",
        "permissions": [
            PermissionKind.VIEW_CUSTOMER,
            PermissionKind.VIEW_CUSTOMER_NAME,
            PermissionKind.VIEW_CUSTOMER_PHONE,
            PermissionKind.VIEW_CUSTOMER_MOBILE,
            PermissionKind.ASSIGN_CUSTOMER,
        ],
    },
    "customer_viewer": {
        "description": "Read-only customer details without contact numbers",
        "permissions": [
            PermissionKind.VIEW_CUSTOMER,
            PermissionKind.VIEW_CUSTOMER_NAME,
        ],
    },
    "teacher": {
        "description": "Class details and student rosters",
        "permissions": [
            PermissionKind.EDIT_CLASS,
            PermissionKind.VIEW_CLASS_STUDENT_NAME,
            PermissionKind.VIEW_CLASS_STUDENT_PHONE,
            PermissionKind.EDIT_CLASS_STUDENT,
        ],
    },
}


def parse_assignments(args: List[str]) -> List[Tuple[str, str]]:
    """Parse `user_id:bundle` arguments."""
    assignments = []
    for arg in args:
        user_id, sep, bundle = arg.rpartition(":")
        if not sep or not user_id:
            raise ValueError(f"Expected user_id:bundle, got {arg!r}")
        if bundle not in DEFAULT_BUNDLES:
            raise ValueError(f"Unknown bundle {bundle!r}, choose from {sorted(DEFAULT_BUNDLES)}")
        assignments.append((user_id, bundle))
    return assignments


def seed_grants(lifecycle: GrantLifecycle, assignments: List[Tuple[str, str]]) -> List[GrantChange]:
    """
    Grant each user its bundle globally.

    Already held permissions are left untouched.
    """
    changes = []
    for user_id, bundle in assignments:
        change = lifecycle.grant_global(user_id, DEFAULT_BUNDLES[bundle]["permissions"], SEED_ACTOR)
        log.info(f"Seeded '{bundle}' for {user_id}: {len(change.added)} added, {len(change.unchanged)} already held")
        changes.append(change)
    return changes


async def main(args: List[str]):
    """Main function to seed grants."""
    assignments = parse_assignments(args)
    if not assignments:
        log.info("Nothing to seed. Bundles available:")
        for name, bundle in DEFAULT_BUNDLES.items():
            log.info(f"  - {name}: {bundle['description']}")
        return

    if not config.GRANT_SNAPSHOT_PATH:
        log.error("GRANT_SNAPSHOT_PATH must be set to seed grants")
        raise SystemExit(1)

    log.info("Initializing database tables...")
    await init_db()

    store = GrantStore()
    restore_snapshot(store, config.GRANT_SNAPSHOT_PATH)
    changes = seed_grants(GrantLifecycle(store), assignments)
    save_snapshot(store, config.GRANT_SNAPSHOT_PATH)

    async for db in get_db():
        try:
            for change in changes:
                await create_audit_log(
                    db=db,
                    actor_id=SEED_ACTOR,
                    action="grant",
                    user_id=change.user_id,
                    scope_kind="global",
                    permission_kinds=[k.value for k in change.added + change.unchanged],
                    details={"added": [k.value for k in change.added]},
                )
        except Exception as e:
            log.error(f"Error recording seed audit entries: {e}", exc_info=True)
            await db.rollback()
            raise

        break  # Only use first session

    log.info("Grant seeding completed successfully!")


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1:]))
