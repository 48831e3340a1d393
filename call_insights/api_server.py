"""
FastAPI API Server.

REST API answering natural-language analytics questions about call
center records.

Start with:
    uvicorn call_insights.api_server:app --reload --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from dotenv import load_dotenv
load_dotenv(".env.local")

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from call_insights.api.middleware import RateLimitMiddleware, RequestIdMiddleware
from call_insights.api.queries import router as queries_router
from call_insights.config import get_settings
from call_insights.errors import CallInsightsError, InvalidQueryError
from call_insights.logging_config import get_logger, setup_logging
from call_insights.services.completion import CompletionClient
from call_insights.services.query_cache import QueryCache

setup_logging()
logger = get_logger(__name__)
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle hooks."""
    logger.info("api_server_starting", environment=settings.environment.value)
    app.state.query_cache = QueryCache(
        ttl_seconds=settings.query_cache_ttl_seconds,
        max_entries=settings.query_cache_max_entries,
    )
    async with httpx.AsyncClient(timeout=settings.completion_timeout_seconds) as http:
        app.state.completion_client = CompletionClient(http, settings=settings)
        yield
    logger.info("api_server_stopping")


app = FastAPI(
    title="Call Insights API",
    description="Natural-language analytics over call center records",
    version="0.1.0",
    lifespan=lifespan,
)

# Middleware (the last one added runs outermost)
app.add_middleware(RateLimitMiddleware)
app.add_middleware(RequestIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(queries_router)


@app.exception_handler(CallInsightsError)
async def call_insights_error_handler(request: Request, exc: CallInsightsError) -> JSONResponse:
    """Render pipeline errors as ``{error, kind, suggestions}``."""
    body = exc.to_dict()
    if settings.is_development and exc.__cause__ is not None:
        body["details"] = repr(exc.__cause__)
    log = logger.error if exc.status_code >= 500 else logger.warning
    log("request_failed", path=request.url.path, kind=exc.kind, status=exc.status_code, error=exc.message)
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render malformed request bodies as invalid input."""
    problems = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error["loc"] if part != "body") or "body"
        problems.append(f"{field}: {error['msg']}")
    invalid = InvalidQueryError("Invalid request body: " + "; ".join(problems))
    logger.warning("request_invalid", path=request.url.path, problems=problems)
    return JSONResponse(status_code=invalid.status_code, content=invalid.to_dict())


@app.get("/health", tags=["System"])
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok", "service": "call-insights"}


@app.get("/", tags=["System"])
async def root() -> dict[str, str]:
    """API root."""
    return {
        "service": "Call Insights",
        "version": "0.1.0",
        "docs": "/docs",
    }
