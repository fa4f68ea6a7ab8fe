"""FastAPI application entry point.

Startup sequence: init DB -> init completion client.
"""

from contextlib import asynccontextmanager

import structlog
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse

from kumulus.api.routes import router
from kumulus.core.database import init_db
from kumulus.core.llm_adapter import LLMAdapter

load_dotenv()

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("startup.begin")

    init_db()
    logger.info("startup.db_initialized")

    # The API still serves history endpoints when the provider is not configured
    try:
        llm_adapter = LLMAdapter()
        app.state.llm_adapter = llm_adapter
        logger.info("startup.llm_initialized", model=llm_adapter.deployment_name)
    except Exception as e:
        app.state.llm_adapter = None
        logger.error("startup.llm_failed", error=str(e),
                     hint="Set AZURE_OPENAI_ENDPOINT and AZURE_OPENAI_KEY in .env")

    logger.info("startup.complete")
    yield
    logger.info("shutdown.complete")


app = FastAPI(
    title="Kumulus API",
    description="Conversational completion gateway",
    version="0.1.0",
    lifespan=lifespan,
)

# Browser frontend calls the API anonymously
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _validation_errors(exc: RequestValidationError) -> list[dict]:
    """Reduce validation errors to location + message."""
    return [{"loc": list(err.get("loc", ())), "msg": err.get("msg", "")} for err in exc.errors()]


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed or missing JSON bodies are client errors, not 422s."""
    logger.warning("request.invalid", path=request.url.path, errors=len(exc.errors()))
    return JSONResponse(
        status_code=400,
        content={"answer": "Invalid request body.", "errors": _validation_errors(exc)},
    )


app.include_router(router)
