import sqlite3
import json
import logging
import threading
import time
from contextlib import contextmanager
from .config import DB_PATH

logger = logging.getLogger(__name__)

SCHEMA = """
    CREATE TABLE IF NOT EXISTS kv_store (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        updated_at REAL NOT NULL
    );
"""


class ConnectionPool:
    """
    One SQLite connection per thread.

    Cache operations run in worker threads via asyncio.to_thread and a
    sqlite3 connection must stay on the thread that uses it, so connections
    are keyed by thread id. Connections left behind by finished threads are
    closed whenever a new one is opened.
    """

    def __init__(self, db_path):
        self._db_path = db_path
        self._lock = threading.Lock()
        self._connections: dict[int, sqlite3.Connection] = {}
        self._depth: dict[int, int] = {}

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA busy_timeout = 5000")
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        return conn

    def _drop_finished_threads(self) -> None:
        live = {t.ident for t in threading.enumerate()}
        for thread_id in set(self._connections) - live:
            self._close_one(thread_id, self._connections.pop(thread_id))
            self._depth.pop(thread_id, None)

    @staticmethod
    def _close_one(thread_id: int, conn: sqlite3.Connection) -> None:
        try:
            conn.close()
        except sqlite3.Error as e:
            logger.warning(f"Error closing connection for thread {thread_id}: {e}")

    def connection(self) -> sqlite3.Connection:
        thread_id = threading.get_ident()
        with self._lock:
            conn = self._connections.get(thread_id)
            if conn is None:
                self._drop_finished_threads()
                conn = self._open()
                self._connections[thread_id] = conn
                self._depth[thread_id] = 0
                logger.debug(f"Opened {self._db_path} for thread {thread_id}")
            return conn

    def enter(self) -> bool:
        """Mark a get_db() entry; True when it is the outermost one."""
        thread_id = threading.get_ident()
        with self._lock:
            depth = self._depth.get(thread_id, 0)
            self._depth[thread_id] = depth + 1
        return depth == 0

    def leave(self) -> None:
        thread_id = threading.get_ident()
        with self._lock:
            self._depth[thread_id] = max(0, self._depth.get(thread_id, 1) - 1)

    def close_all(self) -> None:
        with self._lock:
            for thread_id, conn in self._connections.items():
                self._close_one(thread_id, conn)
            self._connections.clear()
            self._depth.clear()


_pool: ConnectionPool | None = None
_pool_lock = threading.Lock()


def _get_pool() -> ConnectionPool:
    global _pool
    if _pool is None:
        with _pool_lock:
            if _pool is None:
                DB_PATH.parent.mkdir(exist_ok=True, parents=True)
                _pool = ConnectionPool(DB_PATH)
    return _pool


@contextmanager
def get_db(read_only: bool = False):
    """
    Yield this thread's connection.

    Only the outermost context commits (or rolls back on error); nested
    contexts join the enclosing transaction.
    """
    pool = _get_pool()
    conn = pool.connection()
    outermost = pool.enter()
    try:
        yield conn
        if outermost and not read_only:
            conn.commit()
    except Exception:
        if outermost:
            conn.rollback()
        raise
    finally:
        pool.leave()


def close_pool():
    global _pool
    if _pool is not None:
        _pool.close_all()
        _pool = None


def init_db() -> None:
    with get_db() as conn:
        conn.executescript(SCHEMA)


def kv_get(key: str) -> dict | None:
    """Stored JSON object for key; None when missing or not a readable object."""
    with get_db(read_only=True) as conn:
        row = conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
    if row is None:
        return None

    try:
        value = json.loads(row['value'])
    except (json.JSONDecodeError, TypeError) as e:
        logger.warning(f"Unreadable value stored under '{key}': {e}")
        return None
    return value if isinstance(value, dict) else None


def kv_set(key: str, value: dict) -> None:
    with get_db() as conn:
        conn.execute(
            "INSERT OR REPLACE INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)",
            (key, json.dumps(value), time.time()),
        )


def kv_delete(key: str) -> None:
    with get_db() as conn:
        conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))


def kv_keys(prefix: str = "") -> list[str]:
    """All keys starting with prefix, sorted. '%' and '_' in prefix are literal."""
    pattern = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_") + "%"
    with get_db(read_only=True) as conn:
        rows = conn.execute(
            "SELECT key FROM kv_store WHERE key LIKE ? ESCAPE '\\' ORDER BY key", (pattern,)
        ).fetchall()
    return [row['key'] for row in rows]
