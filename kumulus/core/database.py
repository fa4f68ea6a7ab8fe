"""SQLAlchemy persistence for conversation turns.

Turns live in one table partitioned by session id (partition key) and ordered
by a per-session sequence key (row key). Rows are immutable: the only write
paths are append-one-turn and delete-whole-session.
"""

import os
import threading
import time
from datetime import datetime, timezone

import structlog
from sqlalchemy import BigInteger, Column, DateTime, String, Text, create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from kumulus.api.schemas import TurnRecord

logger = structlog.get_logger(__name__)

Base = declarative_base()


class HistoryUnavailable(Exception):
    """The transcript store could not be read."""
    pass


class PersistenceError(Exception):
    """A write or delete against the transcript store did not complete."""
    pass


class ChatTurn(Base):
    """Persistent turn row."""
    __tablename__ = "chat_turns"

    session_id = Column(String, primary_key=True)  # partition key
    sequence_key = Column(BigInteger, primary_key=True, autoincrement=False)  # row key
    user_message = Column(Text, nullable=False)
    ai_message = Column(Text, nullable=False)
    chat_title = Column(String, nullable=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))


_engine = None
_SessionLocal = None

_sequence_lock = threading.Lock()
_last_sequence_key = 0


def init_db(database_url: str | None = None) -> None:
    """Create engine + tables. Call once at startup.

    Args:
        database_url: SQLAlchemy connection string. Defaults to DATABASE_URL env var.
    """
    global _engine, _SessionLocal

    url = database_url or os.environ.get("DATABASE_URL", "sqlite:///data/kumulus.sqlite")
    if url.startswith("sqlite") and ":memory:" in url:
        # One shared connection, otherwise each worker thread gets its own empty database
        _engine = create_engine(
            url,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        if url.startswith("sqlite:///"):
            db_dir = os.path.dirname(url[len("sqlite:///"):])
            if db_dir:
                os.makedirs(db_dir, exist_ok=True)
        _engine = create_engine(url, echo=False)
    _SessionLocal = sessionmaker(bind=_engine)

    Base.metadata.create_all(_engine)
    logger.info("db.initialized", url=url.split("///")[0] + "///***")


def get_engine():
    """Return the engine created by init_db()."""
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _engine


def get_session() -> Session:
    """Get a new database session."""
    if _SessionLocal is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _SessionLocal()


def next_sequence_key() -> int:
    """Return a 100ns tick count that is strictly greater than any key handed out before."""
    global _last_sequence_key
    with _sequence_lock:
        key = max(time.time_ns() // 100, _last_sequence_key + 1)
        _last_sequence_key = key
        return key


def append_turn(
    session_id: str,
    user_message: str,
    assistant_message: str,
    title: str | None = None,
) -> TurnRecord:
    """Persist one turn under its session.

    Args:
        session_id: Partition the turn belongs to.
        user_message: Prompt text sent by the user.
        assistant_message: Answer returned by the completion provider.
        title: Session title computed on the first turn, or the placeholder.

    Returns:
        The stored TurnRecord, including its sequence key and timestamp.

    Raises:
        PersistenceError: If the row could not be written.
    """
    try:
        with get_session() as session:
            row = ChatTurn(
                session_id=session_id,
                sequence_key=next_sequence_key(),
                user_message=user_message,
                ai_message=assistant_message,
                chat_title=title,
                timestamp=datetime.now(timezone.utc),
            )
            session.add(row)
            session.commit()
            record = _row_to_record(row)
    except SQLAlchemyError as e:
        logger.error("db.append_failed", session_id=session_id, error=str(e))
        raise PersistenceError(f"Could not save turn for session {session_id}: {e}") from e

    logger.debug("db.turn_saved", session_id=session_id, sequence_key=record.sequence_key)
    return record


def load_history(session_id: str) -> list[TurnRecord]:
    """Fetch every turn of a session.

    Args:
        session_id: Partition to scan.

    Returns:
        List of TurnRecord ordered by sequence key (oldest first). Empty for an
        unknown session.

    Raises:
        HistoryUnavailable: If the store could not be read.
    """
    try:
        with get_session() as session:
            rows = (
                session.query(ChatTurn)
                .filter(ChatTurn.session_id == session_id)
                .order_by(ChatTurn.sequence_key.asc())
                .all()
            )
            return [_row_to_record(r) for r in rows]
    except SQLAlchemyError as e:
        raise HistoryUnavailable(f"Could not read history for session {session_id}: {e}") from e


def list_all_turns() -> list[TurnRecord]:
    """Fetch every stored turn, grouped by session and ordered by sequence key.

    Raises:
        HistoryUnavailable: If the store could not be read.
    """
    try:
        with get_session() as session:
            rows = (
                session.query(ChatTurn)
                .order_by(ChatTurn.session_id.asc(), ChatTurn.sequence_key.asc())
                .all()
            )
            return [_row_to_record(r) for r in rows]
    except SQLAlchemyError as e:
        raise HistoryUnavailable(f"Could not list turns: {e}") from e


def delete_session(session_id: str) -> int:
    """Remove every turn of a session, one row at a time.

    No transaction spans the whole partition: a failure part-way leaves the
    remaining turns in place.

    Args:
        session_id: Partition to clear.

    Returns:
        Number of rows removed.

    Raises:
        PersistenceError: If a row could not be read or deleted.
    """
    count = 0
    try:
        with get_session() as session:
            rows = (
                session.query(ChatTurn)
                .filter(ChatTurn.session_id == session_id)
                .order_by(ChatTurn.sequence_key.asc())
                .all()
            )
            for row in rows:
                session.delete(row)
                session.commit()
                count += 1
    except SQLAlchemyError as e:
        logger.error("db.delete_failed", session_id=session_id, removed=count, error=str(e))
        raise PersistenceError(f"Deleted {count} turns of session {session_id} before failing: {e}") from e

    logger.info("db.session_deleted", session_id=session_id, removed=count)
    return count


def _row_to_record(row: ChatTurn) -> TurnRecord:
    """Convert a SQLAlchemy row to a Pydantic TurnRecord."""
    created_at = row.timestamp
    # SQLite drops the offset; timestamps are always written in UTC
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return TurnRecord(
        session_id=row.session_id,
        sequence_key=row.sequence_key,
        user_message=row.user_message,
        assistant_message=row.ai_message,
        title=row.chat_title,
        created_at=created_at,
    )
