"""Storage layer: asyncpg pool and schema bootstrap."""

from src.storage.database import Database, close_database, get_database
from src.storage.schema import create_tables

__all__ = ["Database", "close_database", "create_tables", "get_database"]
