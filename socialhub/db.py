import logging
import os

from sqlalchemy import event, text
from sqlmodel import SQLModel, create_engine

from . import models  # noqa: F401  registers tables on SQLModel.metadata

logger = logging.getLogger(__name__)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA foreign_keys=ON")
    finally:
        cursor.close()


def init_db(database_url: str = "sqlite:////data/socialhub.db"):
    """Create and return SQLAlchemy engine. Creates all tables on startup."""
    is_sqlite = database_url.startswith("sqlite")
    try:
        if database_url.startswith("sqlite:///") and ":memory:" not in database_url:
            file_path = database_url[len("sqlite:///"):]
            dirpath = os.path.dirname(file_path)
            if dirpath and not os.path.exists(dirpath):
                os.makedirs(dirpath, exist_ok=True)
    except Exception:
        logger.debug("Unable to prepare directory for %s", database_url)

    connect_args = {"check_same_thread": False} if is_sqlite else {}
    engine = create_engine(database_url, echo=False, connect_args=connect_args)

    if is_sqlite:
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        try:
            with engine.connect() as conn:
                conn.execute(text("PRAGMA journal_mode=WAL"))
                conn.execute(text("PRAGMA synchronous=NORMAL"))
        except Exception as e:
            logger.debug("Unable to set SQLite pragmas: %s", e)

    SQLModel.metadata.create_all(engine)
    logger.info("Database ready (%s)", engine.url.get_backend_name())
    return engine
