"""
Database connection management.

Provides the SQLite connection backing the key-value usage store.
"""

import sqlite3
from pathlib import Path


def get_connection(db_path: str = "price_guard.db") -> sqlite3.Connection:
    """Create and return a SQLite database connection.

    The parent directory is created if it does not exist yet.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection
    """
    path = Path(db_path)
    if str(path) != ":memory:":
        path.parent.mkdir(parents=True, exist_ok=True)
    return sqlite3.connect(str(path))
