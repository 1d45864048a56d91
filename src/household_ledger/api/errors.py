from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from household_ledger.errors import (
    AuthorizationError,
    ConfigurationError,
    InvalidInputError,
    NotFoundError,
    ProviderError,
    RejectedError,
)
from household_ledger.logger import get_logger

logger = get_logger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(NotFoundError)
    async def not_found(_: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(AuthorizationError)
    async def forbidden(_: Request, exc: AuthorizationError) -> JSONResponse:
        return JSONResponse(status_code=403, content={"detail": str(exc)})

    @app.exception_handler(ConfigurationError)
    async def not_configured(_: Request, exc: ConfigurationError) -> JSONResponse:
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    @app.exception_handler(InvalidInputError)
    async def invalid_input(_: Request, exc: InvalidInputError) -> JSONResponse:
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    @app.exception_handler(RejectedError)
    async def rejected(_: Request, exc: RejectedError) -> JSONResponse:
        return JSONResponse(
            status_code=409,
            content={"detail": {"reason": exc.reason.value, "message": exc.message}},
        )

    @app.exception_handler(ProviderError)
    async def provider_failed(_: Request, exc: ProviderError) -> JSONResponse:
        logger.error("[API] Provider call failed: %s", exc)
        return JSONResponse(status_code=502, content={"detail": str(exc), "code": exc.code})
