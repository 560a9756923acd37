"""
database.py — async SQLite persistence via aiosqlite.

Tables:
  kv_store — key → JSON text blobs

The scan collection is one JSON array of ScannedItem dicts stored under a
single key ("scanned_items", or "scanned_items:<owner>" per chat user).
Every mutation reads the whole array, changes it, and writes it back; the
module lock serialises those read-modify-write cycles.

The DB file is created automatically on first run.
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

import aiosqlite

from analyzers.base import ScannedItem

logger = logging.getLogger(__name__)

# Store the DB in a dedicated data/ directory so Docker volume mounts work
# correctly (mount ./data:/app/data) and the file survives container restarts.
_DATA_DIR = Path(os.getenv("DATA_DIR", "data"))
_DATA_DIR.mkdir(parents=True, exist_ok=True)

DB_PATH = str(_DATA_DIR / "ecoscan.db")
_lock = asyncio.Lock()          # serialise read-modify-write cycles

STORAGE_KEY = "scanned_items"

Owner = Union[int, str, None]


# ── Schema ────────────────────────────────────────────────────────────────────

_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv_store (
    key        TEXT PRIMARY KEY,
    value      TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


async def init_db() -> None:
    """Create tables if they don't exist. Safe to call multiple times."""
    async with _lock:
        async with aiosqlite.connect(DB_PATH) as db:
            await db.executescript(_SCHEMA)
            await db.commit()
    logger.info("Database initialised at %s", DB_PATH)


def storage_key(owner: Owner = None) -> str:
    return STORAGE_KEY if owner is None else f"{STORAGE_KEY}:{owner}"


# ── Raw key/value access ──────────────────────────────────────────────────────

async def get_value(key: str) -> Optional[str]:
    async with aiosqlite.connect(DB_PATH) as db:
        async with db.execute("SELECT value FROM kv_store WHERE key = ?", (key,)) as cursor:
            row = await cursor.fetchone()
            return row[0] if row else None


async def set_value(key: str, value: str) -> None:
    now = datetime.now(timezone.utc).isoformat()
    async with aiosqlite.connect(DB_PATH) as db:
        await db.execute(
            """INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)
               ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at""",
            (key, value, now),
        )
        await db.commit()


async def delete_value(key: str) -> None:
    async with aiosqlite.connect(DB_PATH) as db:
        await db.execute("DELETE FROM kv_store WHERE key = ?", (key,))
        await db.commit()


# ── Scanned item collection ───────────────────────────────────────────────────

async def _load_items(key: str) -> list[ScannedItem]:
    raw = await get_value(key)
    if not raw:
        return []
    try:
        data = json.loads(raw)
        if not isinstance(data, list):
            raise ValueError("collection payload is not a JSON array")
        return [ScannedItem.from_dict(d) for d in data]
    except (ValueError, TypeError, AttributeError) as exc:
        logger.error("Failed to read collection %s: %s", key, exc)
        return []


async def _store_items(key: str, items: list[ScannedItem]) -> None:
    await set_value(key, json.dumps([i.to_dict() for i in items], ensure_ascii=False))


async def save_scanned_item(item: ScannedItem, owner: Owner = None) -> None:
    """Insert item at the front of the collection (newest first)."""
    key = storage_key(owner)
    async with _lock:
        items = await _load_items(key)
        await _store_items(key, [item, *items])
    logger.info("Saved scan %s (%s) to %s", item.id, item.object_name, key)


async def get_scanned_items(owner: Owner = None) -> list[ScannedItem]:
    """Return the collection, newest first. Unreadable data yields an empty list."""
    return await _load_items(storage_key(owner))


async def get_scanned_item(item_id: str, owner: Owner = None) -> Optional[ScannedItem]:
    for item in await get_scanned_items(owner):
        if item.id == item_id:
            return item
    return None


async def delete_scanned_item(item_id: str, owner: Owner = None) -> bool:
    """Remove one item by id, keeping the others in order. Returns True if removed."""
    key = storage_key(owner)
    async with _lock:
        items = await _load_items(key)
        kept = [i for i in items if i.id != item_id]
        if len(kept) == len(items):
            return False
        await _store_items(key, kept)
    logger.info("Deleted scan %s from %s", item_id, key)
    return True


async def clear_scanned_items(owner: Owner = None) -> None:
    key = storage_key(owner)
    async with _lock:
        await delete_value(key)
    logger.info("Cleared collection %s", key)
