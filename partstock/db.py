from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path


def connect(db_path: Path, timeout: float = 30.0) -> sqlite3.Connection:
    # transactions are opened explicitly (transaction() / savepoints)
    conn = sqlite3.connect(str(db_path), timeout=timeout, check_same_thread=False, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute(f"PRAGMA busy_timeout={int(timeout * 1000)};")
    conn.execute("PRAGMA foreign_keys=ON;")
    return conn


def init_db(conn: sqlite3.Connection) -> None:
    # deferred import keeps partstock.inv free of a db dependency
    from partstock.inv import init_db as inv_init_db

    inv_init_db(conn)


@contextmanager
def transaction(conn: sqlite3.Connection):
    """Run the block as one write transaction, taking the writer lock up front."""
    conn.execute("BEGIN IMMEDIATE;")
    try:
        yield conn
    except BaseException:
        conn.execute("ROLLBACK;")
        raise
    else:
        conn.execute("COMMIT;")
