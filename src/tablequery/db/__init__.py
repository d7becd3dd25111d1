"""
tablequery - Database layer.

- SQLTransport: the protocol the engine executes SQL through
- SQLiteTransport: sqlite3 implementation
"""

from tablequery.db.adapter import SQLTransport
from tablequery.db.sqlite import SQLiteTransport

__all__ = ["SQLTransport", "SQLiteTransport"]
