"""
Gestionnaires d'exceptions de l'application
Toutes les erreurs sont renvoyées au format {success: false, error, error_code}
"""
from fastapi import Request
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging

from constants import ERROR_MESSAGES
from error_handlers import (
    ErrorResponse, ErrorLogger, PermissionErrorHandler, PersistenceError,
    ValidationErrorHandler, WorkflowError
)

logger = logging.getLogger(__name__)


async def workflow_exception_handler(request: Request, exc: WorkflowError):
    """
    Erreurs métier : transition invalide, permission, validation, ressource absente
    """
    error_response = exc.to_error_response()
    ErrorLogger.log_error(error_response, request=request)
    return error_response.to_json_response()


async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Gestionnaire d'exceptions pour les erreurs de validation de requête FastAPI
    """
    logger.warning("Request validation error on %s: %s", request.url.path, exc.errors())
    return ValidationErrorHandler.handle_validation_error(exc.errors()).to_json_response()


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 401:
        error_response = PermissionErrorHandler.unauthorized(str(exc.detail))
    else:
        error_response = ErrorResponse(
            message=str(exc.detail),
            error_code="HTTP_ERROR",
            status_code=exc.status_code
        )
    response = error_response.to_json_response()
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def database_exception_handler(request: Request, exc: SQLAlchemyError):
    """
    Échec de la base de données : la session est annulée à la fermeture par
    get_db, le client ne reçoit qu'un message générique
    """
    logger.error("Database error on %s", request.url.path, exc_info=exc)
    return PersistenceError(ERROR_MESSAGES["persistence"]).to_error_response().to_json_response()


async def general_exception_handler(request: Request, exc: Exception):
    """
    Gestionnaire d'exceptions général pour toutes les autres erreurs
    """
    logger.error("Unhandled error on %s", request.url.path, exc_info=exc)
    return ErrorResponse(
        message="Erreur interne du serveur",
        error_code="SERVER_ERROR",
        status_code=500
    ).to_json_response()
