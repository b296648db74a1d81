"""
Database connection management with connection pooling.

Used by the SQL document store. Engines are built explicitly at startup
rather than on import so the service can run on the Firestore or in-memory
store without a database.
"""
import logging
import time
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import QueuePool

logger = logging.getLogger(__name__)

Base = declarative_base()


def create_db_engine(
    database_url: str,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_timeout: int = 30,
    pool_recycle: int = 3600,
    echo: bool = False,
) -> Engine:
    """Create an engine; pooled for server databases, default pool for SQLite."""
    if database_url.startswith("sqlite"):
        engine = create_engine(database_url, echo=echo)
    else:
        engine = create_engine(
            database_url,
            poolclass=QueuePool,
            pool_size=pool_size,  # Number of connections to maintain
            max_overflow=max_overflow,  # Additional connections beyond pool_size
            pool_timeout=pool_timeout,  # Seconds to wait for connection
            pool_recycle=pool_recycle,  # Recycle connections after this many seconds
            pool_pre_ping=True,  # Verify connections before using
            echo=echo,
        )

    @event.listens_for(engine, "checkout")
    def receive_checkout(dbapi_conn, connection_record, connection_proxy):
        logger.debug("Connection checked out from pool")

    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine,
        expire_on_commit=False,  # Prevent lazy loading issues
    )


@contextmanager
def session_scope(session_factory: sessionmaker, max_retries: int = 3, retry_delay: float = 0.1) -> Iterator[Session]:
    """
    Transactional session: commit on success, rollback on error.

    Connection health is verified first, retrying with exponential backoff.
    """
    db = None
    for attempt in range(max_retries):
        try:
            db = session_factory()
            db.execute(text("SELECT 1"))
            break
        except Exception as e:
            if db:
                db.close()
                db = None
            if attempt == max_retries - 1:
                logger.error(f"Failed to establish database connection after {max_retries} attempts: {e}")
                raise
            logger.warning(f"Database connection attempt {attempt + 1} failed, retrying...")
            time.sleep(retry_delay * (2 ** attempt))

    try:
        yield db
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Database transaction error: {e}")
        raise
    finally:
        db.close()


def check_db_connection(engine: Engine) -> bool:
    """True when a trivial query succeeds."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database connection check failed: {e}")
        return False
