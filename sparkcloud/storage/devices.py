"""Device attributes (ownership, names) with SQLite backend."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite

from sparkcloud.devices.models import DeviceAttributes, attributes_to_row

_SCHEMA = """
CREATE TABLE IF NOT EXISTS devices (
    device_id TEXT PRIMARY KEY,
    name TEXT NOT NULL DEFAULT '',
    owner_id TEXT,
    registrar TEXT,
    product_id INTEGER NOT NULL DEFAULT 0,
    last_ip TEXT NOT NULL DEFAULT '',
    last_heard TEXT,
    created_at TEXT NOT NULL
);
"""

_COLUMNS = "device_id, name, owner_id, registrar, product_id, last_ip, last_heard, created_at"


def _row_to_attributes(row: Any) -> DeviceAttributes:
    return DeviceAttributes(
        device_id=row[0],
        name=row[1],
        owner_id=row[2],
        registrar=row[3],
        product_id=row[4],
        last_ip=row[5],
        last_heard=datetime.fromisoformat(row[6]) if row[6] else None,
        created_at=datetime.fromisoformat(row[7]),
    )


class DeviceAttributeStore:
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

    async def get_by_id(
        self, device_id: str, owner_id: str | None = None
    ) -> DeviceAttributes | None:
        """Fetch a device; with ``owner_id`` only if that user owns it."""
        assert self._db is not None
        query = f"SELECT {_COLUMNS} FROM devices WHERE device_id = ?"
        params: tuple[str, ...] = (device_id,)
        if owner_id is not None:
            query += " AND owner_id = ?"
            params += (owner_id,)
        cursor = await self._db.execute(query, params)
        row = await cursor.fetchone()
        return _row_to_attributes(row) if row else None

    async def get_all(self, owner_id: str | None = None) -> list[DeviceAttributes]:
        assert self._db is not None
        if owner_id is None:
            cursor = await self._db.execute(f"SELECT {_COLUMNS} FROM devices ORDER BY device_id")
        else:
            cursor = await self._db.execute(
                f"SELECT {_COLUMNS} FROM devices WHERE owner_id = ? ORDER BY device_id",
                (owner_id,),
            )
        rows = await cursor.fetchall()
        return [_row_to_attributes(row) for row in rows]

    async def update(self, attributes: DeviceAttributes) -> DeviceAttributes:
        """Upsert device attributes."""
        assert self._db is not None
        row = attributes_to_row(attributes)
        await self._db.execute(
            f"INSERT INTO devices ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(device_id) DO UPDATE SET "
            "name = excluded.name, "
            "owner_id = excluded.owner_id, "
            "registrar = excluded.registrar, "
            "product_id = excluded.product_id, "
            "last_ip = excluded.last_ip, "
            "last_heard = excluded.last_heard",
            (
                row["device_id"],
                row["name"],
                row["owner_id"],
                row["registrar"],
                row["product_id"],
                row["last_ip"],
                row["last_heard"],
                row["created_at"],
            ),
        )
        await self._db.commit()
        return attributes

    async def delete_by_id(self, device_id: str) -> bool:
        assert self._db is not None
        cursor = await self._db.execute(
            "DELETE FROM devices WHERE device_id = ?",
            (device_id,),
        )
        await self._db.commit()
        return cursor.rowcount > 0

    async def does_user_have_access(self, device_id: str, user_id: str) -> bool:
        return await self.get_by_id(device_id, user_id) is not None
