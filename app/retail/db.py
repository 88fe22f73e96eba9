from __future__ import annotations

from contextlib import contextmanager
from collections.abc import Generator

from flask import Flask
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker


def create_db_engine(db_url: str) -> Engine:
    is_postgres = db_url.startswith("postgres")
    engine_kwargs: dict[str, object] = {
        "future": True,
        "pool_pre_ping": True,
    }
    if is_postgres:
        engine_kwargs.update(
            {
                "pool_recycle": 1800,
                "pool_size": 5,
                "max_overflow": 10,
                "pool_timeout": 30,
            }
        )
    return create_engine(db_url, **engine_kwargs)


def make_sessionmaker(engine: Engine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        class_=Session,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )


def init_db(app: Flask) -> sessionmaker:
    """
    Create the engine + sessionmaker once per app and park them in app.extensions.
    Only the SQL-backed stores need this; memory/azure backends never call it.
    """
    existing = app.extensions.get("sqlalchemy_sessionmaker")
    if existing is not None:
        return existing
    engine = create_db_engine(app.config["DATABASE_URL"])
    if app.config.get("ENV") != "production":
        @event.listens_for(engine, "checkout")
        def _receive_checkout(dbapi_connection, connection_record, connection_proxy):  # type: ignore[no-redef]
            app.logger.debug("DB connection checkout from pool")
    sm = make_sessionmaker(engine)
    app.extensions["sqlalchemy_engine"] = engine
    app.extensions["sqlalchemy_sessionmaker"] = sm
    return sm


@contextmanager
def session_scope(sm: sessionmaker) -> Generator[Session, None, None]:
    """
    Yields a session and commits/rolls back. One scope per store operation.
    """
    s: Session = sm()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
