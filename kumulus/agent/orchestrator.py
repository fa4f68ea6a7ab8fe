"""Turn orchestration.

resolve session -> load history -> build messages -> [title] -> complete ->
persist -> respond. History loading, title generation and persistence are the
only steps allowed to fail without failing the turn; each runs through
attempt() and its fallback is decided here, not inside the callee.
"""

import uuid
from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar

import structlog

from kumulus.agent.prompts import PLACEHOLDER_TITLE, TITLE_PROMPT
from kumulus.api.schemas import AskRequest
from kumulus.core.database import append_turn, load_history
from kumulus.core.llm_adapter import LLMAdapter
from kumulus.core.message_builder import (
    ProviderMessage,
    build_messages,
    count_history_pairs,
    normalize_prompt,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass
class StepResult(Generic[T]):
    """Outcome of a step whose failure the orchestrator may tolerate."""
    value: T | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def attempt(fn: Callable[..., T], *args: Any, **kwargs: Any) -> StepResult[T]:
    """Run fn and capture its exception instead of raising it."""
    try:
        return StepResult(value=fn(*args, **kwargs))
    except Exception as e:
        return StepResult(error=e)


@dataclass
class TurnResult:
    """What the API layer needs to answer a turn.

    Attributes:
        answer: Assistant text.
        session_id: Resolved session id (echoed or generated).
        title: Title stored with the turn.
        persisted: False when the answer could not be saved.
    """
    answer: str
    session_id: str
    title: str
    persisted: bool = True


def resolve_session_id(session_id: str | None) -> str:
    """Keep a caller-supplied id verbatim, otherwise mint a new one."""
    if session_id and session_id.strip():
        return session_id
    return str(uuid.uuid4())


def generate_title(llm: LLMAdapter, prompt: str) -> str:
    """Ask the provider for a short session title.

    Raises:
        ProviderError: Propagated from the completion client.
    """
    messages = [
        ProviderMessage("system", TITLE_PROMPT),
        ProviderMessage("user", prompt),
    ]
    title = llm.complete(messages, max_tokens=llm.title_max_tokens)
    return title.strip().strip("\"'“”").strip()


def handle_turn(request: AskRequest, llm: LLMAdapter) -> TurnResult:
    """Run one conversational turn end to end.

    Args:
        request: Incoming turn (prompt, session id and image are all optional).
        llm: Completion client.

    Returns:
        TurnResult with the answer and the session id.

    Raises:
        DecodeError: If the image payload cannot be decoded.
        ProviderError: If the primary completion call fails. Nothing is persisted.
    """
    session_id = resolve_session_id(request.session_id)
    prompt = normalize_prompt(request.prompt)

    history = attempt(load_history, session_id)
    if not history.ok:
        logger.warning("turn.history_unavailable", session_id=session_id, error=str(history.error))
    turns = history.value if history.ok else []

    messages = build_messages(turns, prompt, request.image_base64)

    title = PLACEHOLDER_TITLE
    if count_history_pairs(messages) == 0:
        generated = attempt(generate_title, llm, prompt)
        if generated.ok and generated.value:
            title = generated.value
        else:
            logger.warning("turn.title_failed", session_id=session_id,
                           error=str(generated.error) if generated.error else "empty title")

    answer = llm.complete(messages)

    saved = attempt(append_turn, session_id, prompt, answer, title)
    if not saved.ok:
        logger.error("turn.persist_failed", session_id=session_id, error=str(saved.error))

    logger.info("turn.completed", session_id=session_id, history_turns=len(turns),
                has_image=bool(request.image_base64), persisted=saved.ok)

    return TurnResult(answer=answer, session_id=session_id, title=title, persisted=saved.ok)
