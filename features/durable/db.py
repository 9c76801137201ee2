"""
Postgres backing store for runs and their step records.

Tables:
  snapshot_runs  — one row per run
  step_records   — one row per completed (or failed) step, FK to snapshot_runs

Step records are insert-only: a second insert for the same (run_id, name)
is ignored, so a replayed step can never overwrite its first result.
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from typing import Any

import psycopg2
import psycopg2.extras

import config

log = logging.getLogger(__name__)

# ── Connection ────────────────────────────────────────────────────────

_pool: list[Any] = []


def _get_conn():
    """Get a Postgres connection (simple single-connection reuse)."""
    if _pool:
        conn = _pool[0]
        if not conn.closed:
            return conn
        _pool.clear()

    conn = psycopg2.connect(config.DATABASE_URL)
    conn.autocommit = True
    _pool.append(conn)
    return conn


@contextmanager
def get_cursor():
    """Yield a dict cursor."""
    conn = _get_conn()
    cur = conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
    try:
        yield cur
    finally:
        cur.close()


# ── Schema ────────────────────────────────────────────────────────────

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS snapshot_runs (
    run_id            TEXT PRIMARY KEY,
    params            JSONB NOT NULL DEFAULT '[]'::jsonb,
    status            TEXT NOT NULL DEFAULT 'running',
    started_at        TIMESTAMPTZ NOT NULL,
    completed_at      TIMESTAMPTZ,
    output            JSONB,
    error             TEXT,
    cancel_requested  BOOLEAN NOT NULL DEFAULT false,
    created_at        TIMESTAMPTZ DEFAULT now()
);

CREATE TABLE IF NOT EXISTS step_records (
    seq             BIGSERIAL,
    run_id          TEXT NOT NULL REFERENCES snapshot_runs(run_id) ON DELETE CASCADE,
    name            TEXT NOT NULL,
    result          JSONB,
    error           TEXT,
    completed_at    TIMESTAMPTZ NOT NULL,
    PRIMARY KEY (run_id, name)
);

CREATE INDEX IF NOT EXISTS idx_step_records_seq ON step_records(run_id, seq);
CREATE INDEX IF NOT EXISTS idx_snapshot_runs_status ON snapshot_runs(status);
"""


def init_db():
    """Create tables if they don't exist."""
    try:
        with get_cursor() as cur:
            cur.execute(SCHEMA_SQL)
        log.info("Database schema initialized")
    except Exception as e:
        log.error("Failed to initialize database: %s", e)
        raise


# ── Runs ──────────────────────────────────────────────────────────────

def insert_run(run: dict) -> None:
    with get_cursor() as cur:
        cur.execute("""
            INSERT INTO snapshot_runs (run_id, params, status, started_at)
            VALUES (%(run_id)s, %(params)s, %(status)s, %(started_at)s)
        """, {
            "run_id": run["run_id"],
            "params": json.dumps(run.get("params", [])),
            "status": run.get("status", "running"),
            "started_at": run["started_at"],
        })


def update_run(run: dict) -> None:
    """Persist status, output and error. Terminal rows are left untouched."""
    with get_cursor() as cur:
        cur.execute("""
            UPDATE snapshot_runs SET
                status = %(status)s,
                completed_at = %(completed_at)s,
                output = %(output)s,
                error = %(error)s
            WHERE run_id = %(run_id)s AND status = 'running'
        """, {
            "run_id": run["run_id"],
            "status": run["status"],
            "completed_at": run.get("completed_at"),
            "output": json.dumps(run["output"]) if run.get("output") is not None else None,
            "error": run.get("error"),
        })


def get_run(run_id: str) -> dict | None:
    with get_cursor() as cur:
        cur.execute("SELECT * FROM snapshot_runs WHERE run_id = %s", (run_id,))
        row = cur.fetchone()
        return dict(row) if row else None


def list_runs(limit: int = 50, status: str | None = None) -> list[dict]:
    """List runs, newest first."""
    with get_cursor() as cur:
        if status:
            cur.execute(
                "SELECT * FROM snapshot_runs WHERE status = %s ORDER BY created_at DESC LIMIT %s",
                (status, limit),
            )
        else:
            cur.execute(
                "SELECT * FROM snapshot_runs ORDER BY created_at DESC LIMIT %s",
                (limit,),
            )
        return [dict(row) for row in cur.fetchall()]


def request_cancel(run_id: str) -> bool:
    """Set the cancellation flag on a running run. False if no such running run."""
    with get_cursor() as cur:
        cur.execute(
            "UPDATE snapshot_runs SET cancel_requested = true WHERE run_id = %s AND status = 'running'",
            (run_id,),
        )
        return cur.rowcount > 0


def is_cancel_requested(run_id: str) -> bool:
    with get_cursor() as cur:
        cur.execute("SELECT cancel_requested FROM snapshot_runs WHERE run_id = %s", (run_id,))
        row = cur.fetchone()
        return bool(row and row["cancel_requested"])


# ── Step records ──────────────────────────────────────────────────────

def insert_step(run_id: str, step: dict) -> None:
    """Append a step record. Existing records for the same name win."""
    with get_cursor() as cur:
        cur.execute("""
            INSERT INTO step_records (run_id, name, result, error, completed_at)
            VALUES (%(run_id)s, %(name)s, %(result)s, %(error)s, %(completed_at)s)
            ON CONFLICT (run_id, name) DO NOTHING
        """, {
            "run_id": run_id,
            "name": step["name"],
            "result": json.dumps(step.get("result")),
            "error": step.get("error"),
            "completed_at": step["completed_at"],
        })


def get_steps_for_run(run_id: str) -> list[dict]:
    """Fetch the step log for a run in append order."""
    with get_cursor() as cur:
        cur.execute(
            "SELECT name, result, error, completed_at FROM step_records WHERE run_id = %s ORDER BY seq ASC",
            (run_id,),
        )
        return [dict(row) for row in cur.fetchall()]
