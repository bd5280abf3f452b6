"""
Database connection and setup
SQLAlchemy engine over settings.database_url (SQLite by default)
"""
from typing import Any, Dict, List, Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from minefolio.models import Base
from config.settings import settings

DATABASE_URL = settings.database_url


def create_session_factory(database_url: str, **engine_kwargs) -> sessionmaker:
    """
    Build an engine + session factory for a database URL.

    SQLite needs check_same_thread=False because request handlers and
    background refreshes share the engine across threads.
    """
    if database_url.startswith("sqlite"):
        connect_args = engine_kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        engine_kwargs["connect_args"] = connect_args

    engine = create_engine(database_url, echo=False, **engine_kwargs)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


# Session factory
SessionLocal = create_session_factory(DATABASE_URL)
engine = SessionLocal.kw["bind"]


def init_db(session_factory: sessionmaker = SessionLocal):
    """
    Initialize database - create all tables
    Safe to call multiple times (won't recreate existing tables)
    """
    Base.metadata.create_all(bind=session_factory.kw["bind"])


def get_db():
    """
    Get database session - use in FastAPI dependencies
    Yields a session and closes it when done
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _dialect_insert(session: Session):
    dialect = session.get_bind().dialect.name
    if dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
        return insert
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
        return insert
    return None


def upsert(
    session: Session,
    model,
    values: Dict[str, Any],
    index_elements: List[str],
    update_columns: Optional[List[str]] = None,
) -> None:
    """
    Insert a row or update the existing row with the same unique key.

    On SQLite and PostgreSQL this is one INSERT ... ON CONFLICT DO UPDATE
    statement, so concurrent writers resolve last-write-wins.
    """
    if update_columns is None:
        update_columns = [c for c in values if c not in index_elements]

    insert = _dialect_insert(session)
    if insert is None:
        key = {c: values[c] for c in index_elements}
        row = session.query(model).filter_by(**key).first()
        if row is None:
            session.add(model(**values))
        else:
            for column in update_columns:
                setattr(row, column, values[column])
        return

    stmt = insert(model).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=index_elements,
        set_={c: stmt.excluded[c] for c in update_columns},
    )
    session.execute(stmt)


def insert_ignore(
    session: Session,
    model,
    rows: List[Dict[str, Any]],
    index_elements: List[str],
) -> None:
    """Insert rows, skipping any whose unique key already exists."""
    if not rows:
        return

    insert = _dialect_insert(session)
    if insert is None:
        for values in rows:
            key = {c: values[c] for c in index_elements}
            if session.query(model).filter_by(**key).first() is None:
                session.add(model(**values))
        return

    stmt = insert(model).values(rows).on_conflict_do_nothing(index_elements=index_elements)
    session.execute(stmt)
