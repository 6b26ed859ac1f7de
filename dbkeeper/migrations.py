"""
Database schema setup for dbkeeper.

Creates the cycle history tables without requiring Alembic.
"""

import logging
from sqlalchemy import inspect
from sqlalchemy.exc import OperationalError
from dbkeeper import db

logger = logging.getLogger(__name__)


def init_database_schema(app):
    """
    Create any missing tables.

    Safe to call from multiple Gunicorn workers: a worker losing the race to
    create a table logs it and carries on.
    """
    with app.app_context():
        inspector = inspect(db.engine)
        existing_tables = set(inspector.get_table_names())
        missing_tables = [
            table for name, table in db.metadata.tables.items()
            if name not in existing_tables
        ]

        if not missing_tables:
            logger.debug("Database schema up to date")
            return

        logger.info(f"Creating tables: {', '.join(t.name for t in missing_tables)}")
        try:
            db.metadata.create_all(db.engine, tables=missing_tables)
        except OperationalError as e:
            # Another worker created them first
            logger.warning(f"Table creation raced with another worker: {e}")
