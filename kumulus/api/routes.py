"""FastAPI endpoints for the Kumulus API.

POST /AskAI - run one conversational turn
GET /GetHistory - list sessions, most recent first
GET /GetSessionMessages - full transcript of one session
DELETE /DeleteHistory - delete every turn of one session
GET /health - component health check
"""

import os
import time

import structlog
from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from kumulus.agent.orchestrator import handle_turn
from kumulus.api.schemas import AskRequest, AskResponse, SessionMessage, SessionSummary
from kumulus.core.database import HistoryUnavailable, PersistenceError
from kumulus.core.llm_adapter import ProviderError
from kumulus.core.message_builder import DecodeError
from kumulus.core.session_service import (
    ValidationError,
    delete_session,
    get_session_messages,
    list_sessions,
)

logger = structlog.get_logger(__name__)

router = APIRouter()


def expose_error_details() -> bool:
    """Whether 5xx bodies may carry the underlying exception text."""
    return os.environ.get("EXPOSE_ERROR_DETAILS", "false").strip().lower() in {"1", "true", "yes", "on"}


def _error_text(summary: str, exc: Exception) -> str:
    if expose_error_details():
        return f"{summary} {exc}"
    return summary


@router.post("/AskAI", response_model=AskResponse)
def ask_ai(request: AskRequest, req: Request):
    """Run a turn: resolve session -> history -> messages -> completion -> persist -> respond."""
    start = time.monotonic()
    logger.info("turn.request", session_id=request.session_id,
                prompt_len=len(request.prompt or ""), has_image=bool(request.image_base64))

    llm = getattr(req.app.state, "llm_adapter", None)
    if llm is None:
        return JSONResponse(
            status_code=503,
            content={"answer": "Completion provider not configured. Set AZURE_OPENAI_ENDPOINT and AZURE_OPENAI_KEY."},
        )

    try:
        result = handle_turn(request, llm)
    except DecodeError as e:
        logger.warning("turn.image_rejected", error=str(e))
        return JSONResponse(status_code=400, content={"answer": str(e)})
    except ProviderError as e:
        logger.error("turn.provider_failed", status=e.status_code, error=str(e))
        return JSONResponse(
            status_code=500,
            content={"answer": _error_text("The completion provider failed to answer.", e)},
        )
    except Exception as e:
        logger.exception("turn.failed", error=str(e))
        return JSONResponse(
            status_code=500,
            content={"answer": _error_text("The request could not be processed.", e)},
        )

    latency_ms = int((time.monotonic() - start) * 1000)
    logger.info("turn.response", session_id=result.session_id, latency_ms=latency_ms,
                persisted=result.persisted)

    return AskResponse(answer=result.answer, session_id=result.session_id)


@router.get("/GetHistory", response_model=list[SessionSummary])
def get_history():
    """List every session with its title and last activity."""
    try:
        return list_sessions()
    except HistoryUnavailable as e:
        logger.error("history.list_failed", error=str(e))
        raise HTTPException(status_code=500, detail=_error_text("Could not read session history.", e))


@router.get("/GetSessionMessages", response_model=list[SessionMessage])
def session_messages(session_id: str | None = Query(default=None, alias="sessionId")):
    """Fetch the full transcript of one session."""
    try:
        messages = get_session_messages(session_id)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except HistoryUnavailable as e:
        logger.error("history.read_failed", session_id=session_id, error=str(e))
        raise HTTPException(status_code=500, detail=_error_text("Could not read session messages.", e))

    logger.info("history.session_read", session_id=session_id, turns=len(messages))
    return messages


@router.delete("/DeleteHistory", response_class=PlainTextResponse)
def delete_history(session_id: str | None = Query(default=None, alias="sessionId")):
    """Delete every turn of a session."""
    try:
        count = delete_session(session_id)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PersistenceError as e:
        logger.error("history.delete_failed", session_id=session_id, error=str(e))
        raise HTTPException(status_code=500, detail=_error_text("Could not delete session.", e))

    return PlainTextResponse(f"{count} messages removed")


@router.get("/health")
def health(req: Request):
    """Check health of all backend components."""
    components = {}

    # LLMAdapter refuses to build without endpoint and key, so presence is the check
    components["llm"] = "ok" if getattr(req.app.state, "llm_adapter", None) is not None else "error"

    try:
        from kumulus.core.database import get_session
        with get_session() as session:
            session.connection()
        components["database"] = "ok"
    except Exception:
        components["database"] = "error"

    errors = [k for k, v in components.items() if v == "error"]
    if not errors:
        status = "healthy"
    elif len(errors) == len(components):
        status = "unhealthy"
    else:
        status = "degraded"

    return {"status": status, "components": components}


@router.get("/")
@router.head("/")
def root_health():
    """Basic root health check for deployment platforms."""
    return {"status": "ok", "service": "kumulus-api"}
