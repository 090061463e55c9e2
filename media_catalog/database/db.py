"""
Database connection management.
"""
import sqlite3
import logging
import threading
from pathlib import Path
from typing import Optional, Union

from ..exceptions import StoreError
from .schema import init_schema


def open_connection(db_path: Union[str, Path]) -> sqlite3.Connection:
    """
    Opens a connection usable from the worker threads.
    isolation_level=None leaves transaction scoping to CatalogOperations.
    """
    conn = sqlite3.connect(str(db_path), check_same_thread=False, isolation_level=None)
    conn.row_factory = sqlite3.Row
    return conn


class DBManager:
    def __init__(self, db_path: Union[str, Path]):
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        # One connection is shared by all worker threads;
        # every statement and transaction runs under this lock.
        self._lock = threading.RLock()

    def connect(self) -> sqlite3.Connection:
        """
        Connects to the SQLite database and configures performance pragmas.
        """
        if self._conn:
            return self._conn

        logging.info(f"Connecting to database: {self.db_path}")
        try:
            self._conn = open_connection(self.db_path)

            # Performance Tuning (Safe for single-writer, multi-reader)
            self._conn.execute("PRAGMA journal_mode=WAL;")
            self._conn.execute("PRAGMA synchronous=NORMAL;")
            self._conn.execute("PRAGMA temp_store=MEMORY;")
            self._conn.execute("PRAGMA foreign_keys=ON;")

            # Ensure schema exists
            init_schema(self._conn)
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open catalog database {self.db_path}: {e}") from e

        return self._conn

    def close(self):
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self.connect()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @property
    def lock(self) -> threading.RLock:
        """Returns the lock guarding the shared connection."""
        return self._lock
