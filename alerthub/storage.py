# -*- coding: utf-8 -*-
"""
alerthub/storage.py
SQLite (aiosqlite) history of dispatched notifications:
- init / create table
- record a dispatched alert (idempotent upsert)
- purge rows past retention
- query recent alerts
Only a sink for operators; pipeline state never reads from it.
"""

from __future__ import annotations

import hashlib
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import aiosqlite

from alerthub.models import AlertEvent
from alerthub.utils import now_ms

logger = logging.getLogger(__name__)

SCHEMA_ALERTS = """
CREATE TABLE IF NOT EXISTS alerts (
    id              TEXT PRIMARY KEY,
    type            TEXT NOT NULL,
    team            TEXT NOT NULL,
    game_id         TEXT,
    sport           TEXT,
    title           TEXT NOT NULL,
    body            TEXT NOT NULL,
    priority        TEXT NOT NULL,
    data            TEXT,
    ts_utc          INTEGER NOT NULL,
    pushed          INTEGER DEFAULT 0,
    error           TEXT,
    expires_at_utc  INTEGER
);
"""

SCHEMA_IDX = """
CREATE INDEX IF NOT EXISTS idx_alerts_ts   ON alerts(ts_utc DESC);
CREATE INDEX IF NOT EXISTS idx_alerts_team ON alerts(team);
"""


async def init_db(db_path: Union[str, Path]) -> aiosqlite.Connection:
    """Open (and create if needed) the history database. ':memory:' is allowed."""
    path = str(db_path)
    if path != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    db = await aiosqlite.connect(path)
    if path != ":memory:":
        await db.execute("PRAGMA journal_mode=WAL;")
        await db.execute("PRAGMA synchronous=NORMAL;")
    await db.execute(SCHEMA_ALERTS)
    for stmt in filter(None, (s.strip() for s in SCHEMA_IDX.split(";"))):
        await db.execute(stmt + ";")
    await db.commit()
    return db


def alert_id(ev: AlertEvent) -> str:
    base = f"{ev.dispatch_key}|{ev.type}|{ev.timestamp}|{ev.title}"
    return hashlib.sha1(base.encode("utf-8")).hexdigest()


async def insert_alert(
    db: aiosqlite.Connection,
    ev: AlertEvent,
    *,
    pushed: bool,
    error: Optional[str] = None,
    retention_hours: float = 48,
) -> str:
    """Upsert one dispatched alert; pushed never goes back from 1 to 0."""
    id_ = alert_id(ev)
    expires_at = ev.timestamp + int(retention_hours * 3600 * 1000)
    sql = """
    INSERT INTO alerts(
        id, type, team, game_id, sport, title, body, priority, data,
        ts_utc, pushed, error, expires_at_utc
    ) VALUES(?,?,?,?,?,?,?,?,?,?,?,?,?)
    ON CONFLICT(id) DO UPDATE SET
        pushed         = MAX(alerts.pushed, excluded.pushed),
        error          = excluded.error,
        expires_at_utc = excluded.expires_at_utc
    """
    await db.execute(sql, (
        id_, ev.type, ev.team, ev.game_id, ev.sport, ev.title, ev.body, ev.priority,
        json.dumps(ev.data, ensure_ascii=False, default=str),
        ev.timestamp, 1 if pushed else 0, error, expires_at,
    ))
    await db.commit()
    return id_


async def delete_expired(db: aiosqlite.Connection, now: int) -> int:
    cur = await db.execute("DELETE FROM alerts WHERE expires_at_utc > 0 AND expires_at_utc < ?;", (now,))
    await db.commit()
    if cur.rowcount:
        logger.info("[storage] purged %d expired alerts", cur.rowcount)
    return cur.rowcount


async def get_recent_alerts(
    db: aiosqlite.Connection,
    *,
    since_ms: Optional[int] = None,
    team: Optional[str] = None,
    limit: int = 200,
) -> List[Dict[str, Any]]:
    """Newest first; defaults to the last 48 hours."""
    if since_ms is None:
        since_ms = now_ms() - 48 * 3600 * 1000

    sql = """
    SELECT id, type, team, game_id, sport, title, body, priority, data, ts_utc, pushed, error
      FROM alerts
     WHERE ts_utc >= ?
    """
    params: List[Any] = [int(since_ms)]
    if team:
        sql += " AND team = ?"
        params.append(team)
    sql += " ORDER BY ts_utc DESC LIMIT ?;"
    params.append(int(limit))

    cols = ("id", "type", "team", "game_id", "sport", "title", "body",
            "priority", "data", "ts_utc", "pushed", "error")
    out: List[Dict[str, Any]] = []
    async with db.execute(sql, params) as cur:
        async for row in cur:
            rec = dict(zip(cols, row))
            rec["data"] = json.loads(rec["data"]) if rec["data"] else {}
            out.append(rec)
    return out
