"""
SQLite foundation: connections, schema and the unit of work used by
batch corrections and undo.
"""

import sqlite3
from contextlib import contextmanager
from typing import Generator, Optional
from .config import get_db_path, ensure_db_directory


@contextmanager
def get_db() -> Generator[sqlite3.Connection, None, None]:
    """Get a SQLite database connection."""
    ensure_db_directory()
    conn = sqlite3.connect(get_db_path())
    try:
        yield conn
    finally:
        conn.close()


class UnitOfWork:
    """One write transaction against the chapter, rule and history tables.

    Opened with BEGIN IMMEDIATE so a second writer waits instead of
    interleaving. Leaving the block without commit() rolls everything back.

        with UnitOfWork() as uow:
            cursor = uow.cursor()
            ...
            uow.commit()
    """

    def __init__(self, db_path: Optional[str] = None, timeout: float = 30.0):
        self.db_path = db_path
        self.timeout = timeout
        self.conn: Optional[sqlite3.Connection] = None
        self._finished = False

    def __enter__(self) -> "UnitOfWork":
        ensure_db_directory()
        # isolation_level=None: transaction boundaries are managed here, not by sqlite3
        self.conn = sqlite3.connect(self.db_path or get_db_path(), timeout=self.timeout, isolation_level=None)
        self.conn.execute("BEGIN IMMEDIATE")
        return self

    def cursor(self) -> sqlite3.Cursor:
        if self.conn is None or self._finished:
            raise sqlite3.ProgrammingError("Unit of work is not active")
        return self.conn.cursor()

    def commit(self) -> None:
        if self._finished:
            return
        self.conn.execute("COMMIT")
        self._finished = True

    def rollback(self) -> None:
        if self._finished:
            return
        self.conn.execute("ROLLBACK")
        self._finished = True

    def __exit__(self, exc_type, exc, tb) -> bool:
        try:
            if not self._finished:
                self.rollback()
        finally:
            self.conn.close()
            self.conn = None
        return False


def init_db():
    """Initialize the database with required tables."""
    with get_db() as conn:
        cursor = conn.cursor()

        # Correction rules; columns used depend on kind (replace|wrap|regex)
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS corrections (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                workspace_id TEXT NOT NULL,
                kind TEXT,             -- NULL on legacy rows, read as replace
                created_at TIMESTAMP,
                from_text TEXT,        -- replace
                to_text TEXT,          -- replace
                target TEXT,           -- wrap
                open_mark TEXT,        -- wrap
                close_mark TEXT,       -- wrap
                pattern TEXT,          -- regex
                replacement TEXT       -- regex, legacy replace
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS chapters (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                workspace_id TEXT NOT NULL,
                chapter_order INTEGER NOT NULL,
                title TEXT NOT NULL,
                content_original TEXT DEFAULT '',
                title_translated TEXT,
                content_translated TEXT,
                status TEXT DEFAULT 'draft',
                updated_at TIMESTAMP
            )
        ''')

        # Single-slot undo: the unique index allows one row per workspace
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                workspace_id TEXT NOT NULL,
                action_type TEXT NOT NULL,
                summary TEXT,
                timestamp TIMESTAMP,
                affected_count INTEGER NOT NULL,
                snapshot TEXT NOT NULL   -- JSON list of {chapter_id, before}
            )
        ''')

        cursor.execute('CREATE INDEX IF NOT EXISTS idx_corrections_workspace ON corrections(workspace_id, id)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_chapters_workspace_order ON chapters(workspace_id, chapter_order)')
        cursor.execute('CREATE UNIQUE INDEX IF NOT EXISTS idx_history_workspace ON history(workspace_id)')

        conn.commit()


def health_check():
    """Check database health."""
    try:
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT name FROM sqlite_master WHERE type='table';")
            tables = cursor.fetchall()

            table_names = [table[0] for table in tables]
            required_tables = ['corrections', 'chapters', 'history']

            return all(table in table_names for table in required_tables)
    except Exception:
        return False
