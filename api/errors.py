"""Map engine errors to HTTP responses"""
import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from domain.enums import ErrorKind
from domain.exceptions import DomainException

logger = logging.getLogger(__name__)

STATUS_BY_KIND = {
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.INFRASTRUCTURE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def status_code_for(exc: DomainException) -> int:
    if exc.kind == ErrorKind.INFRASTRUCTURE and isinstance(exc, TimeoutError):
        return status.HTTP_504_GATEWAY_TIMEOUT
    return STATUS_BY_KIND.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)


def error_body(exc: DomainException) -> dict:
    return {
        "detail": {
            "message": exc.message,
            "code": exc.code,
            "kind": exc.kind.value,
            "details": exc.details,
        }
    }


async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error(
            "Infrastructure failure while handling request",
            extra={"path": request.url.path, "code": exc.code},
        )
    return JSONResponse(status_code=status_code, content=error_body(exc))


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DomainException, domain_exception_handler)
