from typing import Generator

from sqlalchemy import text
from sqlmodel import Session, SQLModel, create_engine

from src.config.config import config
from src.config.logger_config import log

# Global engine instance
engine = None


def init_sqlmodel(database_url: str = None) -> None:
    """
    Initialize the SQLModel engine using configuration from `config`
    and create any missing tables.
    Must be called before any database operations.
    """
    global engine
    if engine is not None:
        log.warning("Database engine already initialized. Skipping re-initialization.")
        return

    url = database_url or config.DATABASE_URL
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
    else:
        connect_args = {"sslmode": "disable"}

    try:
        engine = create_engine(
            url,
            echo=False,
            pool_pre_ping=True,
            pool_recycle=300,
            connect_args=connect_args,
        )
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))

        # Importing the models registers their tables on SQLModel.metadata
        import src.domain.models  # noqa: F401

        SQLModel.metadata.create_all(engine)
        log.info("SQLModel engine initialized and schema verified")
    except Exception as e:
        engine = None
        log.critical(
            "Failed to initialize SQLModel engine", error=str(e), exc_info=True
        )
        raise RuntimeError("Failed to initialize database engine") from e


def dispose_sqlmodel() -> None:
    """Release pooled connections on shutdown."""
    global engine
    if engine is None:
        return
    engine.dispose()
    engine = None
    log.info("SQLModel engine disposed")


def check_connection() -> bool:
    """Return True when the database answers a trivial query."""
    if engine is None:
        return False
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        log.error("Database health check failed", error=str(e))
        return False


def get_session() -> Generator[Session, None, None]:
    """
    Dependency that provides a database session.
    Ensures proper cleanup after use.

    Yields:
        Session: An active SQLModel session.

    Raises:
        RuntimeError: If engine is not initialized.
    """
    if engine is None:
        log.critical("Database session requested, but engine is not initialized")
        raise RuntimeError(
            "Database engine not initialized. Call init_sqlmodel() first."
        )

    session = Session(engine)
    try:
        yield session
    except Exception as e:
        log.error("Database session error, rolling back", error=str(e))
        session.rollback()
        raise
    finally:
        session.close()
