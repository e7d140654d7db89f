"""
Database initialization script.

Creates all tables defined in the SQLAlchemy models.
Run this script to initialize a fresh database or add new tables.

Usage:
    python -m scripts.init_db

Environment variables:
    DATABASE_URL: PostgreSQL connection string
"""

import os
import sys
import logging
from pathlib import Path

# Add backend directory to path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from sqlalchemy import inspect, text
from sqlalchemy.exc import SQLAlchemyError

from src.db_base import Base
from src.database.session import get_engine

# Import all models to register them with Base.metadata
import src.models  # noqa: F401

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def init_database() -> None:
    """
    Initialize database tables.

    Creates all tables defined in SQLAlchemy models if they don't exist.
    Existing tables are not modified.
    """
    logger.info("Connecting to database...")
    engine = get_engine()
    engine.echo = os.getenv("SQL_ECHO", "false").lower() == "true"

    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
        logger.info("Database connection successful")
    except SQLAlchemyError as e:
        logger.error(f"Failed to connect to database: {e}")
        raise

    table_names = sorted(Base.metadata.tables.keys())
    logger.info(f"Tables to create/verify: {', '.join(table_names)}")

    try:
        Base.metadata.create_all(bind=engine)
        logger.info("All tables created/verified successfully")
    except SQLAlchemyError as e:
        logger.error(f"Failed to create tables: {e}")
        raise

    existing = set(inspect(engine).get_table_names())
    for table_name in table_names:
        status = "EXISTS" if table_name in existing else "MISSING"
        logger.info(f"  {table_name}: {status}")


def main():
    """Main entry point."""
    try:
        init_database()
    except (SQLAlchemyError, ValueError) as e:
        logger.error(f"Database initialization failed: {e}")
        sys.exit(1)
    logger.info("Database initialization complete")


if __name__ == "__main__":
    main()
