"""Owner-scoped webhook definitions with SQLite backend."""

from __future__ import annotations

import json
from pathlib import Path

import aiosqlite

from sparkcloud.utils.logging import get_logger
from sparkcloud.webhooks.models import Webhook

log = get_logger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS webhooks (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    device_id TEXT,
    event TEXT NOT NULL,
    definition TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS webhooks_owner ON webhooks (owner_id);
"""


class WebhookStore:
    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def start(self) -> None:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(str(self._db_path))
        await self._db.executescript(_SCHEMA)
        await self._db.commit()

    async def stop(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    async def create(self, webhook: Webhook) -> Webhook:
        assert self._db is not None
        await self._db.execute(
            "INSERT INTO webhooks (id, owner_id, device_id, event, definition, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (
                webhook.id,
                webhook.owner_id,
                webhook.device_id,
                webhook.event,
                json.dumps(webhook.to_dict()),
                webhook.created_at.isoformat(),
            ),
        )
        await self._db.commit()
        log.info("webhook_created", webhook_id=webhook.id, owner_id=webhook.owner_id)
        return webhook

    async def get_by_id(self, webhook_id: str, owner_id: str | None = None) -> Webhook | None:
        assert self._db is not None
        query = "SELECT definition FROM webhooks WHERE id = ?"
        params: tuple[str, ...] = (webhook_id,)
        if owner_id is not None:
            query += " AND owner_id = ?"
            params += (owner_id,)
        cursor = await self._db.execute(query, params)
        row = await cursor.fetchone()
        if row is None:
            return None
        return Webhook.from_dict(json.loads(row[0]))

    async def get_all(self, owner_id: str | None = None) -> list[Webhook]:
        assert self._db is not None
        if owner_id is None:
            cursor = await self._db.execute(
                "SELECT definition FROM webhooks ORDER BY created_at"
            )
        else:
            cursor = await self._db.execute(
                "SELECT definition FROM webhooks WHERE owner_id = ? ORDER BY created_at",
                (owner_id,),
            )
        rows = await cursor.fetchall()
        return [Webhook.from_dict(json.loads(row[0])) for row in rows]

    async def delete_by_id(self, webhook_id: str, owner_id: str | None = None) -> bool:
        """Delete a webhook. Returns True if one was deleted."""
        assert self._db is not None
        query = "DELETE FROM webhooks WHERE id = ?"
        params: tuple[str, ...] = (webhook_id,)
        if owner_id is not None:
            query += " AND owner_id = ?"
            params += (owner_id,)
        cursor = await self._db.execute(query, params)
        await self._db.commit()
        return cursor.rowcount > 0

    async def count(self, owner_id: str, device_id: str | None = None) -> int:
        assert self._db is not None
        if device_id is None:
            cursor = await self._db.execute(
                "SELECT COUNT(*) FROM webhooks WHERE owner_id = ?",
                (owner_id,),
            )
        else:
            cursor = await self._db.execute(
                "SELECT COUNT(*) FROM webhooks WHERE owner_id = ? AND device_id = ?",
                (owner_id, device_id),
            )
        row = await cursor.fetchone()
        return row[0] if row else 0
