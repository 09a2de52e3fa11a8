"""Async database operations for the vitals monitor.

This package provides async database operations using aiosqlite for
non-blocking database access throughout the application.

See connection.py for how the ingest service and the web server differ in
the connections they use.
"""

from vitals.lib.db.connection import close_db as close_db
from vitals.lib.db.connection import create_schema as create_schema
from vitals.lib.db.connection import get_db as get_db
from vitals.lib.db.connection import init_db as init_db
from vitals.lib.db.store import SqliteStore as SqliteStore
from vitals.lib.db.types import SQLParams as SQLParams
