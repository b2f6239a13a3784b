"""SQLite-backed JSON document store keyed by slash-separated paths.

Paths mirror the layout the UI expects (``users/{uid}``,
``users/{uid}/chats/{chatId}`` ...). A collection is never stored on its own;
listing a collection returns the documents whose path is exactly one segment
below it.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Sequence

logger = logging.getLogger(__name__)


class StoreUnavailableError(Exception):
    """Raised when the backing store cannot be read or written."""


def connect(db_path: Path) -> sqlite3.Connection:
    if db_path.parent and not db_path.parent.exists():
        db_path.parent.mkdir(parents=True, exist_ok=True)
    connection = sqlite3.connect(db_path, timeout=5.0)
    connection.row_factory = sqlite3.Row
    return connection


class DocumentStore:
    """Get/set/delete/list operations over JSON documents."""

    _SCHEMA_STATEMENTS: Sequence[str] = (
        """
        CREATE TABLE IF NOT EXISTS documents (
            path TEXT PRIMARY KEY,
            parent TEXT NOT NULL,
            data TEXT NOT NULL,
            updated_at TIMESTAMP NOT NULL
        );
        """,
        "CREATE INDEX IF NOT EXISTS idx_documents_parent ON documents(parent, updated_at);",
    )

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path)
        self._initialise_store()

    def _initialise_store(self) -> None:
        connection = connect(self._db_path)
        try:
            for statement in self._SCHEMA_STATEMENTS:
                connection.execute(statement)
            connection.commit()
        finally:
            connection.close()

    @staticmethod
    def _parent(path: str) -> str:
        return path.rsplit('/', 1)[0] if '/' in path else ''

    async def get(self, path: str) -> dict[str, Any] | None:
        return await self._run(self._get, path)

    async def set(self, path: str, data: dict[str, Any], *, merge: bool = False) -> dict[str, Any]:
        return await self._run(self._set, path, data, merge)

    async def delete(self, path: str) -> None:
        await self._run(self._delete, path)

    async def list(self, collection: str) -> list[tuple[str, dict[str, Any]]]:
        """Return ``(document_id, data)`` pairs, most recently updated first."""
        return await self._run(self._list, collection.rstrip('/'))

    async def delete_tree(self, path: str) -> int:
        """Delete a document and everything nested beneath it."""
        return await self._run(self._delete_tree, path.rstrip('/'))

    async def _run(self, func, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except sqlite3.Error as exc:
            logger.warning('Document store operation %s failed: %s', func.__name__, exc)
            raise StoreUnavailableError(str(exc)) from exc

    def _get(self, path: str) -> dict[str, Any] | None:
        connection = connect(self._db_path)
        try:
            row = connection.execute('SELECT data FROM documents WHERE path = ?', (path,)).fetchone()
            return json.loads(row['data']) if row else None
        finally:
            connection.close()

    def _set(self, path: str, data: dict[str, Any], merge: bool) -> dict[str, Any]:
        connection = connect(self._db_path)
        try:
            connection.execute('BEGIN IMMEDIATE')
            payload = dict(data)
            if merge:
                row = connection.execute('SELECT data FROM documents WHERE path = ?', (path,)).fetchone()
                if row:
                    payload = {**json.loads(row['data']), **data}
            connection.execute(
                """
                INSERT INTO documents (path, parent, data, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(path) DO UPDATE SET
                    data = excluded.data,
                    updated_at = excluded.updated_at
                """,
                (
                    path,
                    self._parent(path),
                    json.dumps(payload, ensure_ascii=False, default=str),
                    datetime.now(timezone.utc).isoformat(timespec='microseconds'),
                ),
            )
            connection.commit()
            return payload
        except Exception:
            connection.rollback()
            raise
        finally:
            connection.close()

    def _delete(self, path: str) -> None:
        connection = connect(self._db_path)
        try:
            connection.execute('DELETE FROM documents WHERE path = ?', (path,))
            connection.commit()
        finally:
            connection.close()

    def _list(self, collection: str) -> list[tuple[str, dict[str, Any]]]:
        connection = connect(self._db_path)
        try:
            cursor = connection.execute(
                'SELECT path, data FROM documents WHERE parent = ? ORDER BY updated_at DESC',
                (collection,),
            )
            return [(row['path'].rsplit('/', 1)[-1], json.loads(row['data'])) for row in cursor.fetchall()]
        finally:
            connection.close()

    def _delete_tree(self, path: str) -> int:
        connection = connect(self._db_path)
        try:
            cursor = connection.execute(
                'DELETE FROM documents WHERE path = ? OR substr(path, 1, ?) = ?',
                (path, len(path) + 1, path + '/'),
            )
            connection.commit()
            return cursor.rowcount
        finally:
            connection.close()
