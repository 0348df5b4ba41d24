from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Iterator

from tradebook.time_machine import utc_now

DEFAULT_MIGRATIONS_DIR = Path(__file__).with_name("schema_migrations")

_FILE_PRAGMAS = ("PRAGMA journal_mode=WAL;",)
_COMMON_PRAGMAS = ("PRAGMA synchronous=NORMAL;", "PRAGMA busy_timeout=5000;", "PRAGMA foreign_keys=ON;")


def connect_db(path: str | Path) -> sqlite3.Connection:
    """Open the ledger database; ``":memory:"`` gives a throwaway store without WAL."""

    in_memory = str(path) == ":memory:"
    if not in_memory:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    for pragma in (() if in_memory else _FILE_PRAGMAS) + _COMMON_PRAGMAS:
        conn.execute(pragma)
    return conn


def _pending(conn: sqlite3.Connection, migrations_dir: Path) -> Iterator[Path]:
    done = {row[0] for row in conn.execute("SELECT name FROM schema_migrations")}
    for script in sorted(migrations_dir.glob("*.sql")):
        if script.name not in done:
            yield script


def run_migrations(conn: sqlite3.Connection, migrations_dir: Path | None = None) -> list[str]:
    """Apply pending ``*.sql`` files in name order; returns the names applied."""

    conn.execute("CREATE TABLE IF NOT EXISTS schema_migrations(name TEXT PRIMARY KEY, applied_at TEXT NOT NULL)")
    conn.commit()
    applied: list[str] = []
    for script in list(_pending(conn, migrations_dir or DEFAULT_MIGRATIONS_DIR)):
        conn.executescript(script.read_text(encoding="utf-8"))
        conn.execute("INSERT INTO schema_migrations(name, applied_at) VALUES (?, ?)", (script.name, utc_now().isoformat()))
        applied.append(script.name)
    conn.commit()
    return applied


__all__ = ["DEFAULT_MIGRATIONS_DIR", "connect_db", "run_migrations"]
