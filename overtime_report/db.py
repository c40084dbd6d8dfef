from __future__ import annotations

import sqlite3
from pathlib import Path

from .models import DayOverride, OverrideConfig, OverrideMode


class Database:
    """Thin SQLite access layer for per-user capacity overrides and small bot metadata."""

    def __init__(self, db_path: str | Path) -> None:
        self._conn = sqlite3.connect(str(db_path))
        self._conn.row_factory = sqlite3.Row
        self._closed = False

    def close(self) -> None:
        if self._closed:
            return
        self._conn.close()
        self._closed = True

    def initialize(self) -> None:
        # user_overrides: one row per user with the mode and user-level capacity/multiplier.
        # dated_overrides: per-day (YYYY-MM-DD) or weekly (YYYY-Www) values keyed by scope.
        # meta: small key/value store for bot markers.
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS user_overrides (
              user_id TEXT PRIMARY KEY,
              mode TEXT NOT NULL DEFAULT 'global',
              capacity REAL,
              multiplier REAL
            );

            CREATE TABLE IF NOT EXISTS dated_overrides (
              user_id TEXT NOT NULL,
              scope TEXT NOT NULL,
              key TEXT NOT NULL,
              capacity REAL,
              multiplier REAL,
              PRIMARY KEY (user_id, scope, key)
            );

            CREATE TABLE IF NOT EXISTS meta (
              key TEXT PRIMARY KEY,
              value TEXT NOT NULL
            );
            """
        )
        self._conn.commit()

    def set_user_override(
        self,
        user_id: str,
        mode: OverrideMode,
        capacity: float | None = None,
        multiplier: float | None = None,
    ) -> None:
        self._conn.execute(
            """
            INSERT INTO user_overrides (user_id, mode, capacity, multiplier)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(user_id)
            DO UPDATE SET mode=excluded.mode,
                          capacity=COALESCE(excluded.capacity, user_overrides.capacity),
                          multiplier=COALESCE(excluded.multiplier, user_overrides.multiplier)
            """,
            (user_id, mode.value, capacity, multiplier),
        )
        self._conn.commit()

    def set_dated_override(
        self,
        user_id: str,
        mode: OverrideMode,
        key: str,
        capacity: float | None = None,
        multiplier: float | None = None,
    ) -> None:
        if mode == OverrideMode.GLOBAL:
            raise ValueError("Dated overrides need the perDay or weekly mode")

        # Switching the user's mode keeps their user-level values intact.
        self._conn.execute(
            """
            INSERT INTO user_overrides (user_id, mode) VALUES (?, ?)
            ON CONFLICT(user_id) DO UPDATE SET mode=excluded.mode
            """,
            (user_id, mode.value),
        )
        self._conn.execute(
            """
            INSERT INTO dated_overrides (user_id, scope, key, capacity, multiplier)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(user_id, scope, key)
            DO UPDATE SET capacity=excluded.capacity, multiplier=excluded.multiplier
            """,
            (user_id, mode.value, key, capacity, multiplier),
        )
        self._conn.commit()

    def delete_override(self, user_id: str) -> bool:
        cursor = self._conn.execute("DELETE FROM user_overrides WHERE user_id = ?", (user_id,))
        self._conn.execute("DELETE FROM dated_overrides WHERE user_id = ?", (user_id,))
        self._conn.commit()
        return cursor.rowcount > 0

    def load_overrides(self) -> dict[str, OverrideConfig]:
        dated: dict[tuple[str, str], dict[str, DayOverride]] = {}
        for row in self._conn.execute(
            "SELECT user_id, scope, key, capacity, multiplier FROM dated_overrides ORDER BY user_id, key"
        ).fetchall():
            dated.setdefault((row["user_id"], row["scope"]), {})[row["key"]] = DayOverride(
                capacity=row["capacity"], multiplier=row["multiplier"]
            )

        overrides: dict[str, OverrideConfig] = {}
        for row in self._conn.execute(
            "SELECT user_id, mode, capacity, multiplier FROM user_overrides ORDER BY user_id"
        ).fetchall():
            user_id = row["user_id"]
            overrides[user_id] = OverrideConfig(
                mode=OverrideMode(row["mode"]),
                capacity=row["capacity"],
                multiplier=row["multiplier"],
                per_day_overrides=dated.get((user_id, OverrideMode.PER_DAY.value), {}),
                weekly_overrides=dated.get((user_id, OverrideMode.WEEKLY.value), {}),
            )
        return overrides

    def get_meta(self, key: str) -> str | None:
        row = self._conn.execute("SELECT value FROM meta WHERE key = ?", (key,)).fetchone()
        if row is None:
            return None
        return str(row["value"])

    def set_meta(self, key: str, value: str) -> None:
        self._conn.execute(
            """
            INSERT INTO meta (key, value)
            VALUES (?, ?)
            ON CONFLICT(key)
            DO UPDATE SET value=excluded.value
            """,
            (key, value),
        )
        self._conn.commit()
