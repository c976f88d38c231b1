"""SQLite persistent store for tasks and the sync queue.

The store exposes three primitives (``get``, ``all``, ``run``) plus an
explicit ``transaction()`` used wherever several writes must land together,
such as a task write and its queue entry.
"""

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, List, Optional, Sequence, Union


logger = logging.getLogger(__name__)

Params = Sequence[Any]


SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS tasks (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        completed INTEGER NOT NULL DEFAULT 0,
        is_deleted INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        sync_status TEXT NOT NULL DEFAULT 'pending',
        server_id TEXT,
        last_synced_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sync_queue (
        seq INTEGER PRIMARY KEY AUTOINCREMENT,
        id TEXT NOT NULL UNIQUE,
        task_id TEXT NOT NULL,
        operation TEXT NOT NULL,
        data TEXT NOT NULL,
        retry_count INTEGER NOT NULL DEFAULT 0,
        error_message TEXT,
        status TEXT NOT NULL DEFAULT 'pending',
        created_at TEXT NOT NULL,
        FOREIGN KEY (task_id) REFERENCES tasks (id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_tasks_sync_status ON tasks(sync_status)",
    "CREATE INDEX IF NOT EXISTS idx_queue_status ON sync_queue(status, seq)",
    "CREATE INDEX IF NOT EXISTS idx_queue_task_id ON sync_queue(task_id)",
)


class Transaction:
    """Read/write primitives bound to one open transaction."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def get(self, query: str, params: Params = ()) -> Optional[sqlite3.Row]:
        return self.conn.execute(query, tuple(params)).fetchone()

    def all(self, query: str, params: Params = ()) -> List[sqlite3.Row]:
        return self.conn.execute(query, tuple(params)).fetchall()

    def run(self, query: str, params: Params = ()) -> int:
        """Execute a mutation and return the number of affected rows."""
        return self.conn.execute(query, tuple(params)).rowcount


class Database:
    """Manages connections to the task database."""

    def __init__(self, db_path: Union[str, Path], timeout: float = 10.0):
        """Initialize the database.

        Args:
            db_path: Path of the SQLite file
            timeout: Seconds to wait for a competing writer
        """
        self.db_path = Path(db_path)
        self.timeout = timeout
        self._initialize_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=self.timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _initialize_db(self):
        """Create tables and indexes if they do not exist yet."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self.transaction() as tx:
            for statement in SCHEMA:
                tx.run(statement)
        logger.debug(f"Initialized task database at {self.db_path}")

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        """Open a write transaction; commits on success, rolls back on error.

        ``BEGIN IMMEDIATE`` takes the write lock up front so that a
        read-modify-write inside the block cannot interleave with another
        writer.
        """
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield Transaction(conn)
            conn.execute("COMMIT")
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def get(self, query: str, params: Params = ()) -> Optional[sqlite3.Row]:
        with self.transaction() as tx:
            return tx.get(query, params)

    def all(self, query: str, params: Params = ()) -> List[sqlite3.Row]:
        with self.transaction() as tx:
            return tx.all(query, params)

    def run(self, query: str, params: Params = ()) -> int:
        with self.transaction() as tx:
            return tx.run(query, params)
