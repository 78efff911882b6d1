import logging

from litestar import Request, Response
from litestar.exceptions import HTTPException
from litestar.status_codes import (
    HTTP_400_BAD_REQUEST,
    HTTP_401_UNAUTHORIZED,
    HTTP_404_NOT_FOUND,
    HTTP_500_INTERNAL_SERVER_ERROR,
    HTTP_502_BAD_GATEWAY,
)

from filecrab.errors import FilecrabError, InvalidRequest, NotFound, StorageError, Unauthorized
from filecrab.lib import observability

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: list[tuple[type[FilecrabError], int]] = [
    (NotFound, HTTP_404_NOT_FOUND),
    (Unauthorized, HTTP_401_UNAUTHORIZED),
    (InvalidRequest, HTTP_400_BAD_REQUEST),
    (StorageError, HTTP_502_BAD_GATEWAY),
]


def _error_response(status_code: int, detail: str) -> Response:
    return Response(
        content={"status_code": status_code, "detail": detail},
        status_code=status_code,
        media_type="application/json",
    )


def http_exception_handler(request: Request, exc: HTTPException) -> Response:
    """Render Litestar HTTP exceptions (validation, 413, 405, ...) as JSON."""
    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return _error_response(exc.status_code, detail)


def filecrab_error_handler(request: Request, exc: FilecrabError) -> Response:
    """Map domain errors to their HTTP status."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            break
    else:
        return internal_server_error_handler(request, exc)

    if status_code == HTTP_502_BAD_GATEWAY:
        logger.warning("Storage failure on %s %s", request.method, request.url.path, exc_info=exc)
        return _error_response(status_code, "Storage backend unavailable")
    if status_code == HTTP_404_NOT_FOUND:
        return _error_response(status_code, "Not Found")
    return _error_response(status_code, str(exc) or error_type.__name__)


def internal_server_error_handler(request: Request, exc: Exception) -> Response:
    """Report unexpected exceptions and answer with a generic 500."""
    method = request.method
    path = request.url.path
    if not observability.exception(
        "Unhandled exception on {method} {path}", method=method, path=path
    ):
        logger.exception("Unhandled exception on %s %s", method, path)

    return _error_response(HTTP_500_INTERNAL_SERVER_ERROR, "Internal Server Error")


EXCEPTION_HANDLERS = {
    FilecrabError: filecrab_error_handler,
    HTTPException: http_exception_handler,
    Exception: internal_server_error_handler,
}
