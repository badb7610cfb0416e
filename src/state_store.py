import json
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, List, Optional


def _get_db_path() -> str:
    """Read the db path on every call so tests can monkeypatch the env."""
    return os.getenv("RECON_STATE_DB", "recon_state.db")


@contextmanager
def _conn():
    con = sqlite3.connect(_get_db_path())
    con.execute("PRAGMA journal_mode=WAL;")
    try:
        yield con
        con.commit()
    finally:
        con.close()


def init_db():
    with _conn() as con:
        con.execute(
            """
            CREATE TABLE IF NOT EXISTS audit_log (
              ts TEXT,
              level TEXT,
              run_id TEXT,
              action TEXT,
              target_ids TEXT,
              result TEXT,
              error TEXT
            );
            """
        )
        con.execute(
            """
            CREATE TABLE IF NOT EXISTS runs (
              run_id TEXT PRIMARY KEY,
              started_at TEXT,
              finished_at TEXT,
              dry_run INTEGER,
              summary_json TEXT
            );
            """
        )


def write_audit(level: str, run_id: str, action: str, target_ids: list, result: str, error: Optional[str] = None):
    with _conn() as con:
        con.execute(
            "INSERT INTO audit_log(ts, level, run_id, action, target_ids, result, error) VALUES (?,?,?,?,?,?,?)",
            (datetime.utcnow().isoformat(), level, run_id, action, json.dumps(target_ids), result, error),
        )


def get_audit(run_id: str, level: Optional[str] = None) -> List[Dict]:
    query = "SELECT ts, level, action, target_ids, result, error FROM audit_log WHERE run_id=?"
    params = [run_id]
    if level:
        query += " AND level=?"
        params.append(level)
    with _conn() as con:
        rows = con.execute(query, params).fetchall()
    return [
        {"ts": ts, "level": lv, "action": action, "target_ids": json.loads(ids or "[]"), "result": result, "error": error}
        for ts, lv, action, ids, result, error in rows
    ]


def record_run(run_id: str, started_at: str, dry_run: bool, summary: Dict):
    with _conn() as con:
        con.execute(
            "INSERT OR REPLACE INTO runs(run_id, started_at, finished_at, dry_run, summary_json) VALUES (?,?,?,?,?)",
            (run_id, started_at, datetime.utcnow().isoformat(), int(dry_run), json.dumps(summary, ensure_ascii=False)),
        )


def get_run(run_id: str) -> Optional[Dict]:
    with _conn() as con:
        row = con.execute(
            "SELECT started_at, finished_at, dry_run, summary_json FROM runs WHERE run_id=?", (run_id,)
        ).fetchone()
    if not row:
        return None
    started_at, finished_at, dry_run, summary_json = row
    return {
        "started_at": started_at,
        "finished_at": finished_at,
        "dry_run": bool(dry_run),
        "summary": json.loads(summary_json or "{}"),
    }
