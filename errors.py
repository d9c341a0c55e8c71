"""
Error taxonomy and the FastAPI handlers that turn it into JSON responses.

Business components raise ``ClinicError`` subclasses; the handlers below
are the only place where they become HTTP status codes and bodies.
"""

import logging
import traceback
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from utils import DEBUG

logger = logging.getLogger(__name__)


class ClinicError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    message = "Error en el servidor"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.message
        super().__init__(self.message)


class ValidationError(ClinicError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Datos inválidos"


class DuplicateUser(ClinicError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "El usuario ya existe"


class DuplicateKey(ClinicError):
    status_code = status.HTTP_400_BAD_REQUEST

    FIELD_LABELS = {"email": "correo electrónico", "document_id": "documento"}

    def __init__(self, field: str):
        self.field = field
        label = self.FIELD_LABELS.get(field, field)
        super().__init__(f"Ya existe un usuario con ese {label}")


class SlotConflict(ClinicError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "El doctor ya tiene una cita programada en ese horario"


class InvalidCredentials(ClinicError):
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Credenciales inválidas"


class MissingToken(ClinicError):
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "No hay token de autenticación"


class InvalidToken(ClinicError):
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Token inválido"


class ExpiredToken(ClinicError):
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Token expirado"


class AccessDenied(ClinicError):
    status_code = status.HTTP_403_FORBIDDEN
    message = "No tiene permisos para realizar esta acción"


class NotFound(ClinicError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, entity: str, message: Optional[str] = None):
        self.entity = entity
        super().__init__(message or f"{entity.capitalize()} no encontrado")


class ServerError(ClinicError):
    pass


async def clinic_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Render a ``ClinicError`` as ``{message}`` with its own status."""
    if not isinstance(exc, ClinicError):
        return await unhandled_exception_handler(request, exc)
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message})


async def http_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    http_exc = exc if isinstance(exc, StarletteHTTPException) else StarletteHTTPException(status_code=500)
    message = http_exc.detail
    if http_exc.status_code == status.HTTP_404_NOT_FOUND and message == "Not Found":
        message = "La ruta solicitada no existe"
    return JSONResponse(
        status_code=http_exc.status_code,
        content={"message": message},
        headers=getattr(http_exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle request validation errors with one entry per offending field."""
    if not isinstance(exc, RequestValidationError):
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"message": str(exc)})

    errors = []
    for error in exc.errors():
        # drop the "body"/"query" prefix so fields read like the payload keys
        loc = [str(part) for part in error["loc"] if part not in ("body", "query", "path")]
        errors.append(
            {
                "field": ".".join(loc),
                "message": error["msg"],
                "type": error["type"],
            }
        )

    logger.warning(f"Validation error on {request.method} {request.url.path}: {errors}")

    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"errors": errors})


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Handle anything the routes did not translate themselves.

    Logs the full traceback; the response carries it only in development.
    """
    logger.error(
        f"Unhandled exception on {request.method} {request.url.path}: {exc!s}",
        exc_info=exc,
    )
    content = {"message": ServerError.message}
    if DEBUG:
        content["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=content)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ClinicError, clinic_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    logger.info("Exception handlers registered")
