from collections.abc import Generator
from time import perf_counter

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import settings
from app.infrastructure.observability.metrics import observe_db_query


def _before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    conn.info.setdefault("query_started_at_stack", []).append(perf_counter())


def _after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    stack = conn.info.get("query_started_at_stack", [])
    if not stack:
        return
    started_at = stack.pop(-1)
    observe_db_query(perf_counter() - started_at, operation="sync_sql")


def instrument_engine(target: Engine) -> Engine:
    event.listen(target, "before_cursor_execute", _before_cursor_execute)
    event.listen(target, "after_cursor_execute", _after_cursor_execute)
    return target


def build_session_factory(target: Engine) -> sessionmaker[Session]:
    return sessionmaker(autocommit=False, autoflush=False, bind=target)


engine = instrument_engine(create_engine(settings.sqlalchemy_database_uri, pool_pre_ping=True))
SessionLocal = build_session_factory(engine)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
