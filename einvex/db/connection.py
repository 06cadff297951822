import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional, Type
from urllib.parse import quote_plus

from sqlalchemy import create_engine, event, text, MetaData
from sqlalchemy.orm import sessionmaker, Session, declarative_base
from sqlalchemy.pool import QueuePool, StaticPool

from einvex.config.einvex_config import EinvexConfig
from einvex.exceptions import ConfigurationError

# Configure logging
logger = logging.getLogger(__name__)

# Global variables
metadata = MetaData()
Base = declarative_base(metadata=metadata)


def get_base() -> Type:
    """
    Get the base class for declarative models

    Returns:
        Base class for declarative models
    """
    return Base


class Database:
    """
    Database connection manager for EInvEx

    Handles both SQLite and PostgreSQL connections with proper configuration
    and connection pooling. Every import runs inside one ``transaction()``
    so that a failure at any step leaves no rows behind.
    """

    def __init__(self, config: Optional[EinvexConfig] = None):
        """
        Initialize database connection

        Args:
            config: EinvexConfig instance. If None, the global configuration is used.
        """
        self.config = config or EinvexConfig()
        self.engine = None
        self.Session = None
        self._initialize()

    def _initialize(self) -> None:
        """Create the engine and session factory from the database section"""
        db_config = self.config.get_database_config() or {}
        db_type = db_config.get('type', 'sqlite')
        isolation_level = db_config.get('isolation_level')
        echo = bool(db_config.get('echo', False))

        engine_kwargs = {'echo': echo}
        if isolation_level:
            engine_kwargs['isolation_level'] = isolation_level

        if db_type == 'sqlite':
            db_path = str(db_config.get('path', 'einvex.db'))
            if db_path == ':memory:':
                # One shared connection so every session sees the same database
                self.engine = create_engine(
                    'sqlite://',
                    poolclass=StaticPool,
                    connect_args={'check_same_thread': False},
                    **engine_kwargs
                )
            else:
                path = Path(db_path)
                path.parent.mkdir(parents=True, exist_ok=True)
                self.engine = create_engine(
                    f'sqlite:///{path}',
                    poolclass=QueuePool,
                    pool_size=5,
                    max_overflow=10,
                    pool_timeout=30,
                    pool_recycle=1800,
                    connect_args={
                        'timeout': 30,
                        'check_same_thread': False
                    },
                    **engine_kwargs
                )

            # Enable foreign key support
            @event.listens_for(self.engine, "connect")
            def set_sqlite_pragma(dbapi_connection, connection_record):
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()

        elif db_type in ['postgresql', 'postgres']:
            postgres_config = db_config.get('postgres', db_config.get('postgresql', {})) or {}
            host = postgres_config.get('host', 'localhost')
            port = postgres_config.get('port', 5432)
            database = postgres_config.get('database', 'einvex')
            user = quote_plus(str(postgres_config.get('user', 'postgres')))
            password = quote_plus(str(postgres_config.get('password', '') or ''))
            sslmode = postgres_config.get('sslmode', 'prefer')

            connection_url = f'postgresql://{user}:{password}@{host}:{port}/{database}?sslmode={sslmode}'
            self.engine = create_engine(
                connection_url,
                poolclass=QueuePool,
                pool_size=5,
                max_overflow=10,
                pool_timeout=30,
                pool_recycle=1800,
                **engine_kwargs
            )
        else:
            raise ConfigurationError(f"Unsupported database type: {db_type}")

        self.Session = sessionmaker(
            bind=self.engine,
            expire_on_commit=False,
            autocommit=False,
            autoflush=False
        )
        logger.debug(f"Database engine created for {db_type}")

    def session(self) -> Session:
        """
        Get a database session

        Returns:
            SQLAlchemy session
        """
        return self.Session()

    @contextmanager
    def transaction(self) -> Generator[Session, None, None]:
        """
        Get a database session with transaction management

        Commits when the block exits normally and rolls back on any exception.

        Yields:
            SQLAlchemy session
        """
        session = self.Session()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error(f"Database transaction error: {str(e)}")
            raise
        finally:
            session.close()

    def test_connection(self) -> bool:
        """Run a trivial query against the engine"""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error(f"Database connection test failed: {str(e)}")
            return False

    def create_tables(self) -> None:
        """Create all tables defined in the metadata"""
        # Models register themselves on Base when imported
        from einvex.db import models  # noqa: F401
        try:
            Base.metadata.create_all(self.engine)
            logger.info("Database tables created successfully")
        except Exception as e:
            logger.error(f"Failed to create database tables: {str(e)}")
            raise

    def dispose(self) -> None:
        """Close all database connections"""
        if self.engine:
            self.engine.dispose()
            self.engine = None
