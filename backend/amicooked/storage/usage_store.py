"""Per-user rolling-window usage counters."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Sequence

from ..models.usage import UsageRecord
from .documents import StoreUnavailableError, connect

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class UsageStore:
    """Counters keyed by (user_id, usage_type), each with its own window start.

    ``increment`` is a single upsert statement so concurrent requests for the
    same key serialise inside SQLite instead of racing a read-modify-write.
    """

    _SCHEMA_STATEMENTS: Sequence[str] = (
        """
        CREATE TABLE IF NOT EXISTS usage_counters (
            user_id TEXT NOT NULL,
            usage_type TEXT NOT NULL,
            count INTEGER NOT NULL DEFAULT 0,
            window_start REAL NOT NULL,
            PRIMARY KEY (user_id, usage_type)
        );
        """,
    )

    def __init__(self, db_path: str | Path, period_days: int = 30, clock: Clock | None = None) -> None:
        self._db_path = Path(db_path)
        self._period = timedelta(days=max(1, period_days))
        self._clock = clock or utc_now
        self._initialise_store()

    @property
    def period_days(self) -> int:
        return self._period.days

    def _initialise_store(self) -> None:
        connection = connect(self._db_path)
        try:
            for statement in self._SCHEMA_STATEMENTS:
                connection.execute(statement)
            connection.commit()
        finally:
            connection.close()

    async def get_usage(self, user_id: str, usage_type: str) -> UsageRecord:
        now = self._clock()
        count, window_start = await self._run(self._read_or_reset, user_id, usage_type, now)
        return UsageRecord(
            user_id=user_id,
            usage_type=usage_type,
            current=count,
            window_start=datetime.fromtimestamp(window_start, tz=timezone.utc),
        )

    async def increment(self, user_id: str, usage_type: str) -> None:
        await self._run(self._increment, user_id, usage_type, self._clock())

    async def delete_user(self, user_id: str) -> None:
        await self._run(self._delete_user, user_id)

    async def _run(self, func, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except sqlite3.Error as exc:
            logger.warning('Usage store operation %s failed: %s', func.__name__, exc)
            raise StoreUnavailableError(str(exc)) from exc

    def _read_or_reset(self, user_id: str, usage_type: str, now: datetime) -> tuple[int, float]:
        now_ts = now.timestamp()
        expiry_ts = (now - self._period).timestamp()
        connection = connect(self._db_path)
        try:
            connection.execute('BEGIN IMMEDIATE')
            row = connection.execute(
                'SELECT count, window_start FROM usage_counters WHERE user_id = ? AND usage_type = ?',
                (user_id, usage_type),
            ).fetchone()
            if row is None:
                connection.execute(
                    'INSERT INTO usage_counters (user_id, usage_type, count, window_start) VALUES (?, ?, 0, ?)',
                    (user_id, usage_type, now_ts),
                )
                result = (0, now_ts)
            elif row['window_start'] <= expiry_ts:
                connection.execute(
                    'UPDATE usage_counters SET count = 0, window_start = ? WHERE user_id = ? AND usage_type = ?',
                    (now_ts, user_id, usage_type),
                )
                result = (0, now_ts)
            else:
                result = (int(row['count']), float(row['window_start']))
            connection.commit()
            return result
        except Exception:
            connection.rollback()
            raise
        finally:
            connection.close()

    def _increment(self, user_id: str, usage_type: str, now: datetime) -> None:
        now_ts = now.timestamp()
        expiry_ts = (now - self._period).timestamp()
        connection = connect(self._db_path)
        try:
            # SET expressions see the pre-update row, so both CASEs test the old window.
            connection.execute(
                """
                INSERT INTO usage_counters (user_id, usage_type, count, window_start)
                VALUES (?, ?, 1, ?)
                ON CONFLICT(user_id, usage_type) DO UPDATE SET
                    count = CASE WHEN usage_counters.window_start <= ? THEN 1
                                 ELSE usage_counters.count + 1 END,
                    window_start = CASE WHEN usage_counters.window_start <= ? THEN excluded.window_start
                                        ELSE usage_counters.window_start END
                """,
                (user_id, usage_type, now_ts, expiry_ts, expiry_ts),
            )
            connection.commit()
        finally:
            connection.close()

    def _delete_user(self, user_id: str) -> None:
        connection = connect(self._db_path)
        try:
            connection.execute('DELETE FROM usage_counters WHERE user_id = ?', (user_id,))
            connection.commit()
        finally:
            connection.close()
