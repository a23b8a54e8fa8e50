"""
Per-vehicle and per-driver serialization of the trip write path.

On PostgreSQL a transaction-scoped advisory lock is taken for each entity
key, so the lock is held until the surrounding transaction commits or rolls
back. Other dialects (SQLite in tests, single-process deployments) fall back
to in-process ``asyncio.Lock`` objects held for the duration of the block.

Keys are always acquired in sorted order so two writers touching the same
vehicle and driver cannot deadlock.
"""

import asyncio
import hashlib
import logging
import weakref
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Dict, Iterable, List, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger("fleet_backend.integrity.locking")

_local_locks: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, Dict[str, asyncio.Lock]]" = (
    weakref.WeakKeyDictionary()
)


def vehicle_key(organization_id: int, vehicle_id: int) -> str:
    return f"vehicle:{organization_id}:{vehicle_id}"


def driver_key(organization_id: int, driver_id: int) -> str:
    return f"driver:{organization_id}:{driver_id}"


def lock_keys(
    organization_id: int,
    vehicle_ids: Iterable[Optional[int]] = (),
    driver_ids: Iterable[Optional[int]] = (),
) -> List[str]:
    keys = {vehicle_key(organization_id, v) for v in vehicle_ids if v is not None}
    keys |= {driver_key(organization_id, d) for d in driver_ids if d is not None}
    return sorted(keys)


def advisory_lock_id(key: str) -> int:
    """Stable signed 64-bit id for ``pg_advisory_xact_lock``."""
    digest = hashlib.blake2b(key.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


def _local_lock(key: str) -> asyncio.Lock:
    loop = asyncio.get_running_loop()
    locks = _local_locks.setdefault(loop, {})
    lock = locks.get(key)
    if lock is None:
        lock = locks[key] = asyncio.Lock()
    return lock


def _is_postgres(db: AsyncSession) -> bool:
    return db.get_bind().dialect.name == "postgresql"


@asynccontextmanager
async def entity_locks(db: AsyncSession, keys: Iterable[str]):
    """
    Hold the serialization point of every key for the enclosed block.

    Usage:
        async with entity_locks(db, lock_keys(org_id, [vehicle_id], [driver_id])):
            ... validate, write, commit ...
    """
    ordered = sorted(set(keys))
    if _is_postgres(db):
        for key in ordered:
            await db.execute(text("SELECT pg_advisory_xact_lock(:lock_id)"), {"lock_id": advisory_lock_id(key)})
        logger.debug("Advisory locks acquired", extra={"keys": ordered})
        yield
        return

    async with AsyncExitStack() as stack:
        for key in ordered:
            await stack.enter_async_context(_local_lock(key))
        logger.debug("Local locks acquired", extra={"keys": ordered})
        yield
