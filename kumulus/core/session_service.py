"""Read and delete paths over stored sessions.

A session has no row of its own; everything here is derived from its turns.
"""

from itertools import groupby

import structlog

from kumulus.agent.prompts import PLACEHOLDER_TITLE
from kumulus.api.schemas import SessionMessage, SessionSummary, TurnRecord
from kumulus.core import database

logger = structlog.get_logger(__name__)


class ValidationError(ValueError):
    """A required request parameter is missing or blank."""
    pass


def _require_session_id(session_id: str | None) -> str:
    if not session_id or not session_id.strip():
        raise ValidationError("sessionId is required.")
    return session_id


def _representative_title(turns: list[TurnRecord]) -> str:
    """First real title in sequence order, else the placeholder."""
    for turn in turns:
        if turn.title and turn.title.strip() and turn.title != PLACEHOLDER_TITLE:
            return turn.title
    return PLACEHOLDER_TITLE


def list_sessions() -> list[SessionSummary]:
    """Summarize every session, most recently active first.

    Raises:
        HistoryUnavailable: If the store could not be read.
    """
    turns = sorted(database.list_all_turns(), key=lambda t: (t.session_id, t.sequence_key))

    summaries = []
    for session_id, group in groupby(turns, key=lambda t: t.session_id):
        group_turns = list(group)
        summaries.append(SessionSummary(
            id=session_id,
            title=_representative_title(group_turns),
            last_update=max(t.created_at for t in group_turns),
        ))

    summaries.sort(key=lambda s: s.last_update, reverse=True)
    logger.debug("sessions.listed", count=len(summaries))
    return summaries


def get_session_messages(session_id: str | None) -> list[SessionMessage]:
    """Full transcript of one session, oldest first.

    Raises:
        ValidationError: If session_id is missing.
        HistoryUnavailable: If the store could not be read.
    """
    session_id = _require_session_id(session_id)
    return [
        SessionMessage(
            user_message=turn.user_message,
            ai_message=turn.assistant_message,
            timestamp=turn.created_at,
        )
        for turn in database.load_history(session_id)
    ]


def delete_session(session_id: str | None) -> int:
    """Delete every turn of a session and return how many were removed.

    Raises:
        ValidationError: If session_id is missing.
        PersistenceError: If the store failed part-way.
    """
    session_id = _require_session_id(session_id)
    return database.delete_session(session_id)
