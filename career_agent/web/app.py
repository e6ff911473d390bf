"""FastAPI app entrypoint for the career agent chat API."""

from __future__ import annotations

import logging
from collections import defaultdict, deque
from contextlib import asynccontextmanager
from pathlib import Path
from time import monotonic, perf_counter
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.staticfiles import StaticFiles

from .. import __version__
from ..agents.registry import PersonaRegistry, build_default_registry
from ..chat.service import ChatService
from ..config import AppConfig, load_config
from ..errors import APIError, ErrorKind
from ..persistence import ChatRepository, LocalBlobStorage, create_repository
from ..persistence.blob_storage import BlobStorage
from ..providers import create_provider
from ..providers.base import ChatProvider
from ..runtime.runner import AgentRunner
from ..tools import build_default_tools
from .api.v1.router import api_v1_router
from .auth import IdentityProvider
from .errors import api_error_handler, error_response, unhandled_error_handler, validation_error_handler

logger = logging.getLogger("career_agent.web.api")


class InMemoryRateLimiter:
    """Simple fixed-window limiter keyed by user id."""

    def __init__(self, max_requests_per_minute: int) -> None:
        self._max_requests = max_requests_per_minute
        self._events: dict[str, deque[float]] = defaultdict(deque)

    def allow(self, key: str) -> bool:
        now = monotonic()
        window_start = now - 60
        queue = self._events[key]
        while queue and queue[0] < window_start:
            queue.popleft()
        if len(queue) >= self._max_requests:
            return False
        queue.append(now)
        return True


def create_app(
    config: Optional[AppConfig] = None,
    repository: Optional[ChatRepository] = None,
    provider: Optional[ChatProvider] = None,
    blob_storage: Optional[BlobStorage] = None,
    registry: Optional[PersonaRegistry] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Collaborators that are not passed in are built from ``config``.
    """
    config = config or load_config()
    registry = registry or build_default_registry()
    repository = repository or create_repository(config.storage)
    provider = provider or create_provider(config.provider)
    blob_root = Path(config.storage.blob_root).resolve()
    blob_storage = blob_storage or LocalBlobStorage(blob_root, base_url=config.storage.blob_base_url)

    tools = build_default_tools(blob_storage, provider=provider, blob_base_url=config.storage.blob_base_url)
    runner = AgentRunner(
        registry,
        provider,
        tools,
        max_steps=config.turn.max_steps,
        max_tokens=config.provider.max_tokens,
        use_persona_models=config.provider.use_persona_models,
    )
    chat_service = ChatService.from_config(config, repository, registry, runner)
    identity = IdentityProvider(mode=config.auth.mode, tokens=config.auth.tokens)
    max_requests_per_minute = config.server.rate_limit_rpm
    rate_limiter = InMemoryRateLimiter(max_requests_per_minute=max_requests_per_minute)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        await repository.start()
        await chat_service.start()
        try:
            yield
        finally:
            await chat_service.stop()
            await repository.stop()

    app = FastAPI(title="Career Agent API", version=__version__, lifespan=lifespan)
    app.state.config = config
    app.state.registry = registry
    app.state.chat_service = chat_service
    app.state.identity = identity
    app.include_router(api_v1_router)
    if config.storage.blob_base_url.startswith("/"):
        app.mount(
            config.storage.blob_base_url,
            StaticFiles(directory=blob_root, check_dir=False),
            name="blobs",
        )

    @app.middleware("http")
    async def auth_middleware(request: Request, call_next):
        if not request.url.path.startswith("/api/v1"):
            return await call_next(request)

        session = identity.auth(request)
        if session is None:
            return error_response(401, "UNAUTHORIZED", "Authentication required", kind=ErrorKind.UNAUTHORIZED)

        if not rate_limiter.allow(session.user_id):
            return error_response(
                429,
                "RATE_LIMITED",
                "Request rate limit exceeded",
                {"limit_per_minute": max_requests_per_minute},
                kind=ErrorKind.RATE_LIMITED,
            )

        request.state.auth = session
        return await call_next(request)

    @app.middleware("http")
    async def request_logging_middleware(request: Request, call_next):
        start = perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            duration_ms = (perf_counter() - start) * 1000
            path_params = request.scope.get("path_params", {})
            auth = getattr(request.state, "auth", None)
            logger.info(
                "api_request method=%s path=%s status=%s duration_ms=%.2f user_id=%s chat_id=%s turn_id=%s provider=%s model=%s",
                request.method,
                request.url.path,
                status_code,
                duration_ms,
                auth.user_id if auth else "-",
                path_params.get("chat_id", "-"),
                path_params.get("turn_id", "-"),
                config.provider.name,
                config.provider.model,
            )

    @app.get("/healthz", tags=["system"])
    async def healthz() -> dict:
        return {"status": "ok", "version": __version__, "personas": len(registry)}

    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
    return app


def main() -> None:
    """Run development API server."""
    import argparse

    import uvicorn
    from dotenv import load_dotenv

    # Load environment variables from .env file
    load_dotenv()

    parser = argparse.ArgumentParser(description="Career Agent - multi-persona career counseling chat API")
    parser.add_argument("--config", "-c", default="config/config.yaml", help="Path to configuration file")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    uvicorn.run(create_app(load_config(args.config)), host=args.host, port=args.port)
