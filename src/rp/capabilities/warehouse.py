"""
Warehouse query capability.

The warehouse is treated as untrusted and slow: only single read-only
statements are accepted, every call is capped by a row limit, and the
gatherer bounds how many probes run concurrently.

SqliteWarehouse keeps one aiosqlite connection per client, opened lazily.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Protocol, Sequence, runtime_checkable

import aiosqlite

from rp.exceptions import WarehouseError
from rp.logging import get_logger
from rp.types import CapabilityStatus

logger = get_logger(__name__)

_READ_ONLY_RE = re.compile(r"^\s*(select|with)\b", re.IGNORECASE)
_FENCE_RE = re.compile(r"^```(?:sql)?\s*|```\s*$", re.IGNORECASE)


def clean_sql(sql: str) -> str:
    """Strip markdown fences, whitespace, and a trailing semicolon."""
    cleaned = _FENCE_RE.sub("", sql.strip()).strip()
    return cleaned[:-1].rstrip() if cleaned.endswith(";") else cleaned


def ensure_read_only(sql: str) -> str:
    """Validate that `sql` is one SELECT/WITH statement.

    Raises:
        WarehouseError: If the statement is empty, not read-only, or stacked.
    """
    cleaned = clean_sql(sql)
    if not cleaned:
        raise WarehouseError("Empty SQL statement", context={"reason": "empty"})
    if ";" in cleaned:
        raise WarehouseError("Multiple SQL statements are not allowed", context={"reason": "stacked"})
    if not _READ_ONLY_RE.match(cleaned):
        raise WarehouseError(
            "Only SELECT statements are allowed",
            context={"reason": "not_read_only", "sql": cleaned[:80]},
        )
    return cleaned


@runtime_checkable
class WarehouseClient(Protocol):
    """Protocol for the analytical warehouse."""

    @property
    def status(self) -> CapabilityStatus:
        ...

    @property
    def message(self) -> str | None:
        ...

    async def connect(self) -> CapabilityStatus:
        """Ensure the connection is open and report the resulting status."""
        ...

    async def execute(
        self,
        sql: str,
        params: Sequence[Any] = (),
        row_limit: int = 25,
    ) -> list[dict[str, Any]]:
        """Execute a read-only query.

        Raises:
            WarehouseError: If the query is rejected or fails.
        """
        ...

    async def close(self) -> None:
        ...


class DisabledWarehouse:
    """Warehouse used when no backend is configured."""

    def __init__(self, message: str = "Warehouse is not configured.") -> None:
        self._message = message

    @property
    def status(self) -> CapabilityStatus:
        return CapabilityStatus.DISABLED

    @property
    def message(self) -> str | None:
        return self._message

    async def connect(self) -> CapabilityStatus:
        return CapabilityStatus.DISABLED

    async def execute(
        self,
        sql: str,
        params: Sequence[Any] = (),
        row_limit: int = 25,
    ) -> list[dict[str, Any]]:
        raise WarehouseError(self._message, context={"capability": "warehouse", "reason": "not_configured"})

    async def close(self) -> None:
        return None


class SqliteWarehouse:
    """Warehouse backed by a local SQLite database, opened read-only."""

    def __init__(self, db_path: Path) -> None:
        """Initialize the warehouse.

        Args:
            db_path: Path to the SQLite database file.
        """
        self.db_path = db_path
        self._db: aiosqlite.Connection | None = None
        self._status = CapabilityStatus.DISABLED
        self._message: str | None = None

    @property
    def status(self) -> CapabilityStatus:
        return self._status

    @property
    def message(self) -> str | None:
        return self._message

    async def connect(self) -> CapabilityStatus:
        """Open the database in read-only mode."""
        if self._db is not None:
            return self._status
        if not self.db_path.is_file():
            self._status = CapabilityStatus.ERROR
            self._message = f"Warehouse database not found: {self.db_path}"
            logger.warning("Warehouse unavailable", path=str(self.db_path))
            return self._status
        try:
            self._db = await aiosqlite.connect(f"file:{self.db_path}?mode=ro", uri=True)
            self._db.row_factory = aiosqlite.Row
        except aiosqlite.Error as e:
            self._status = CapabilityStatus.ERROR
            self._message = str(e)
            return self._status
        self._status = CapabilityStatus.CONNECTED
        self._message = None
        logger.debug("Warehouse connected", path=str(self.db_path))
        return self._status

    async def execute(
        self,
        sql: str,
        params: Sequence[Any] = (),
        row_limit: int = 25,
    ) -> list[dict[str, Any]]:
        """Execute a read-only query and return at most `row_limit` rows."""
        statement = ensure_read_only(sql)
        if self._db is None:
            await self.connect()
        if self._db is None:
            raise WarehouseError(
                self._message or "Warehouse is not connected",
                context={"capability": "warehouse", "reason": "not_connected"},
            )
        try:
            async with self._db.execute(statement, tuple(params)) as cursor:
                rows = await cursor.fetchmany(row_limit)
        except aiosqlite.Error as e:
            raise WarehouseError(
                f"Warehouse query failed: {e}",
                context={"capability": "warehouse", "reason": "query_failed"},
            ) from e
        return [dict(row) for row in rows]

    async def close(self) -> None:
        """Close the database connection."""
        if self._db:
            await self._db.close()
            self._db = None
