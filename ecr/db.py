from __future__ import annotations

import os
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from .settings import settings


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _resolve_db_path() -> str:
    """Return a file path usable by sqlite.

    When the configured path is a directory (a volume mounted where a file
    was expected), the DB file is placed inside it.
    """

    p = os.path.abspath(settings.db_path)

    if os.path.isdir(p):
        p = os.path.join(p, "ecr.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    return p


def connect() -> sqlite3.Connection:
    conn = sqlite3.connect(_resolve_db_path(), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def init_db() -> None:
    """Create tables if they do not exist."""
    with connect() as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              level TEXT NOT NULL,
              namespace TEXT,
              pod TEXT,
              message TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS actions (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              namespace TEXT NOT NULL,
              pod TEXT NOT NULL,
              action TEXT NOT NULL, -- delete|inject-kill
              outcome TEXT NOT NULL, -- done|gone|skipped|retry|failed
              detail TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
            CREATE INDEX IF NOT EXISTS idx_actions_pod ON actions(namespace, pod);
            """
        )


def log_event(level: str, message: str, namespace: str | None = None, pod: str | None = None) -> None:
    with connect() as conn:
        conn.execute(
            "INSERT INTO events (ts, level, namespace, pod, message) VALUES (?, ?, ?, ?, ?)",
            (utc_now(), level.upper(), namespace, pod, message),
        )


@dataclass(frozen=True)
class ActionRow:
    id: int
    ts: str
    namespace: str
    pod: str
    action: str
    outcome: str
    detail: str | None


def record_action(namespace: str, pod: str, action: str, outcome: str, detail: str | None = None) -> None:
    with connect() as conn:
        conn.execute(
            "INSERT INTO actions (ts, namespace, pod, action, outcome, detail) VALUES (?, ?, ?, ?, ?, ?)",
            (utc_now(), namespace, pod, action, outcome, detail),
        )


def actions_for(namespace: str, pod: str) -> list[ActionRow]:
    with connect() as conn:
        rows = conn.execute(
            "SELECT * FROM actions WHERE namespace=? AND pod=? ORDER BY id", (namespace, pod)
        ).fetchall()
        return [ActionRow(**dict(r)) for r in rows]


def latest_events(limit: int = 100) -> list[dict[str, Any]]:
    with connect() as conn:
        rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]


def latest_actions(limit: int = 100) -> list[dict[str, Any]]:
    with connect() as conn:
        rows = conn.execute("SELECT * FROM actions ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]
