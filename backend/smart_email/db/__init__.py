"""Database package."""
from .database import create_db_engine, engine, init_db

__all__ = [
    "create_db_engine",
    "engine",
    "init_db",
]
