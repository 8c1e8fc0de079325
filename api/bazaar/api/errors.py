import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from bazaar.core.errors import AuthorizationError, InvalidStateError, NotFoundError, StoreError, ValidationError

logger = logging.getLogger(__name__)


def setup_error_handlers(app: FastAPI) -> None:
    """Map marketplace exceptions raised by services onto HTTP responses."""

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
        logger.info("validation failed path=%s field=%s", request.url.path, exc.field)
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"field": exc.field, "message": exc.message},
        )

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": "not found"})

    @app.exception_handler(InvalidStateError)
    async def invalid_state_handler(request: Request, exc: InvalidStateError) -> JSONResponse:
        logger.info("invalid state path=%s current_state=%s", request.url.path, exc.current_state)
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={"detail": str(exc), "current_state": exc.current_state},
        )

    @app.exception_handler(AuthorizationError)
    async def authorization_handler(request: Request, exc: AuthorizationError) -> JSONResponse:
        logger.info("permission denied path=%s reason=%s", request.url.path, exc.__cause__ or exc)
        return JSONResponse(status_code=status.HTTP_403_FORBIDDEN, content={"detail": "permission denied"})

    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
        logger.error("store unavailable path=%s error=%s", request.url.path, exc, exc_info=exc)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "please try again"},
        )
