"""
Database Manager for Trackora Device Registry
==============================================
Handles database connection, initialization, and session management.

Features:
- SQLite by default, any SQLAlchemy URL via TRACKORA_DATABASE_URL
- Automatic table creation
- Default configuration seeding
"""

import os
import logging
from pathlib import Path
from datetime import datetime
from typing import Optional, Generator
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from .models import Base, SystemConfig, DeviceRecord, Profile, DEFAULT_CONFIG

# Configure logging
logger = logging.getLogger(__name__)

# Database file path (same directory as this module)
DATABASE_DIR = Path(__file__).parent
DATABASE_PATH = DATABASE_DIR / "registry.db"
DATABASE_URL_ENV = "TRACKORA_DATABASE_URL"


class DatabaseManager:
    """
    Manages database connections and provides session context.

    Usage:
        db = DatabaseManager()
        with db.get_session() as session:
            devices = session.query(DeviceRecord).filter_by(account_id="acc-1").all()
    """

    def __init__(
        self,
        db_path: Optional[Path] = None,
        database_url: Optional[str] = None,
        echo: bool = False
    ):
        """
        Initialize database manager.

        Args:
            db_path: Path to SQLite database file. Defaults to registry.db
            database_url: Full SQLAlchemy URL; takes precedence over db_path
            echo: If True, log all SQL statements (useful for debugging)
        """
        self.db_path = db_path or DATABASE_PATH
        self.database_url = database_url or os.environ.get(DATABASE_URL_ENV) or f"sqlite:///{self.db_path}"
        self.echo = echo
        self.engine = None
        self.SessionLocal = None
        self._initialized = False

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    def initialize(self) -> bool:
        """
        Initialize database connection and create tables.

        Returns:
            True if initialization successful, False otherwise
        """
        try:
            if self.is_sqlite:
                if self.database_url != "sqlite://":
                    self.db_path.parent.mkdir(parents=True, exist_ok=True)

                # check_same_thread=False needed for FastAPI's threadpool
                self.engine = create_engine(
                    self.database_url,
                    echo=self.echo,
                    connect_args={"check_same_thread": False},
                    poolclass=StaticPool
                )

                @event.listens_for(self.engine, "connect")
                def set_sqlite_pragma(dbapi_connection, connection_record):
                    cursor = dbapi_connection.cursor()
                    cursor.execute("PRAGMA foreign_keys=ON")
                    cursor.execute("PRAGMA journal_mode=WAL")
                    cursor.close()
            else:
                self.engine = create_engine(self.database_url, echo=self.echo, pool_pre_ping=True)

            self.SessionLocal = sessionmaker(
                autocommit=False,
                autoflush=False,
                bind=self.engine
            )

            Base.metadata.create_all(bind=self.engine)
            logger.info(f"Database initialized at: {self.database_url}")

            # Mark initialized before seeding, get_session() re-enters otherwise
            self._initialized = True
            self._seed_default_config()
            return True

        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            self._initialized = False
            return False

    def _seed_default_config(self):
        """Insert default configuration values if not present."""
        with self.get_session() as session:
            for key, (value, description) in DEFAULT_CONFIG.items():
                existing = session.query(SystemConfig).filter_by(key=key).first()
                if not existing:
                    session.add(SystemConfig(key=key, value=value, description=description))
                    logger.debug(f"Added default config: {key}={value}")
            session.commit()
            logger.info("Default configuration seeded")

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """
        Get a database session with automatic cleanup.

        Yields:
            SQLAlchemy Session object
        """
        if not self._initialized:
            if not self.initialize():
                raise RuntimeError(f"Database unavailable: {self.database_url}")

        session = self.SessionLocal()
        try:
            yield session
        except Exception as e:
            session.rollback()
            logger.error(f"Database session error: {e}")
            raise
        finally:
            session.close()

    def get_config(self, key: str, default: str = None) -> Optional[str]:
        """Get a configuration value by key."""
        with self.get_session() as session:
            config = session.query(SystemConfig).filter_by(key=key).first()
            return config.value if config else default

    def get_config_bool(self, key: str, default: bool = False) -> bool:
        """Get config value as boolean."""
        value = self.get_config(key)
        if value is None:
            return default
        return value.lower() in ('true', '1', 'yes', 'on')

    def set_config(self, key: str, value: str, description: str = None):
        """Set a configuration value."""
        with self.get_session() as session:
            config = session.query(SystemConfig).filter_by(key=key).first()
            if config:
                config.value = value
                config.updated_at = datetime.utcnow()
                if description:
                    config.description = description
            else:
                session.add(SystemConfig(key=key, value=value, description=description))
            session.commit()
            logger.info(f"Config updated: {key}={value}")

    def get_stats(self) -> dict:
        """
        Get database statistics.

        Returns:
            Dictionary with counts and status info
        """
        with self.get_session() as session:
            return {
                "database_url": self.database_url,
                "total_devices": session.query(DeviceRecord).count(),
                "active_devices": session.query(DeviceRecord).filter_by(is_active=True).count(),
                "admin_devices": session.query(DeviceRecord).filter_by(is_admin_device=True, is_active=True).count(),
                "total_profiles": session.query(Profile).count(),
                "initialized": self._initialized
            }

    def close(self):
        """Close database connection."""
        if self.engine:
            self.engine.dispose()
            logger.info("Database connection closed")


# Global singleton instance
_db_manager: Optional[DatabaseManager] = None


def get_db_manager() -> DatabaseManager:
    """
    Get the global database manager instance.
    Creates and initializes if not already done.
    """
    global _db_manager

    if _db_manager is None:
        _db_manager = DatabaseManager()
        _db_manager.initialize()

    return _db_manager


def reset_db_manager():
    """Reset the global database manager (for testing)."""
    global _db_manager
    if _db_manager:
        _db_manager.close()
    _db_manager = None
