# app/models/database.py
from pathlib import Path

from sqlalchemy import StaticPool, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # SQLite ignores FOREIGN KEY clauses (and ON DELETE CASCADE) unless asked per connection
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(database_url: str) -> Engine:
    engine_args = {"pool_pre_ping": True}
    if database_url.startswith("sqlite"):
        # sessions are used from the threadpool, not only the creating thread
        engine_args["connect_args"] = {"check_same_thread": False}

        # sqlite:///relative/path.db or sqlite:////absolute/path.db; sqlite:// is in-memory
        db_path = database_url.split("///", 1)[1] if "///" in database_url else ":memory:"
        if db_path.startswith(":memory:"):
            # one shared connection, or every thread would see its own empty database
            engine_args["poolclass"] = StaticPool
        else:
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(database_url, **engine_args)
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine
