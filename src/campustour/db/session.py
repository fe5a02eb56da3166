from functools import lru_cache
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from campustour.config import DATABASE_URL


def make_engine(database_url: str) -> Engine:
    connect_args: dict = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False  # required for SQLite multi-threaded use

    engine = create_engine(database_url, connect_args=connect_args)

    @event.listens_for(engine, "connect")
    def _configure_sqlite(dbapi_conn, connection_record):
        """Enable WAL mode so the web app can read while a scan is writing."""
        if database_url.startswith("sqlite"):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA busy_timeout=30000")  # Wait up to 30s for write locks
            cursor.close()

    return engine


@lru_cache
def get_session_factory(database_url: str = DATABASE_URL) -> sessionmaker:
    if not database_url:
        raise EnvironmentError("DATABASE_URL is not set. Add it to your .env file or environment.")
    return sessionmaker(bind=make_engine(database_url), autocommit=False, autoflush=False)

