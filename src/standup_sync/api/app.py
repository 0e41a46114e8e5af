"""FastAPI application factory."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from standup_sync.api.auth import router as auth_router
from standup_sync.api.sessions import router as sessions_router
from standup_sync.app_logging import configure_logging
from standup_sync.containers import AppContainer
from standup_sync.errors import ErrorCode, StandupError

STATUS_CODES: dict[ErrorCode, int] = {
    ErrorCode.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorCode.INVALID_TRANSITION: status.HTTP_409_CONFLICT,
    ErrorCode.INVALID_CODE: status.HTTP_400_BAD_REQUEST,
    ErrorCode.EXPIRED_CODE: status.HTTP_400_BAD_REQUEST,
    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.EXPIRED: status.HTTP_410_GONE,
    ErrorCode.UNAUTHENTICATED: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.PASSWORD_REQUIRED: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.INVALID_PASSWORD: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorCode.SESSION_FULL: status.HTTP_403_FORBIDDEN,
    ErrorCode.RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorCode.TRANSIENT_UPSTREAM: status.HTTP_502_BAD_GATEWAY,
    ErrorCode.CONFLICT: status.HTTP_409_CONFLICT,
}


def create_app(container: AppContainer) -> FastAPI:
    """Create a FastAPI app configured with dependencies."""
    configure_logging(container.settings.log_level)
    logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await app.state.container.close_resources()

    app = FastAPI(title="standup-sync", lifespan=lifespan)
    app.state.container = container

    app.include_router(auth_router)
    app.include_router(sessions_router)

    @app.exception_handler(StandupError)
    async def standup_error(request: Request, exc: StandupError) -> JSONResponse:
        if exc.code == ErrorCode.TRANSIENT_UPSTREAM:
            logger.warning("Upstream failure on %s", request.url.path)
        return JSONResponse(
            status_code=STATUS_CODES[exc.code],
            content={"error": exc.message, "code": exc.code.value},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "error": "The request is invalid.",
                "code": ErrorCode.VALIDATION.value,
                "details": jsonable_encoder(exc.errors()),
            },
        )

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s", request.url.path, exc_info=exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Something went wrong. Please try again.",
                "code": "INTERNAL_ERROR",
            },
        )

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Simple health check endpoint."""
        return {"status": "ok"}

    return app
