"""
Gestionnaires d'erreurs centralisés pour l'application Seido
Standardisation de la gestion et du format des erreurs
"""
from typing import Dict, Any, Optional
from fastapi import Request, status
from fastapi.responses import JSONResponse
from audit_logger import AuditLogger
import logging

logger = logging.getLogger(__name__)


class ErrorResponse:
    """Structure standardisée pour les réponses d'erreur"""

    def __init__(
        self,
        message: str,
        error_code: str = None,
        details: Dict[str, Any] = None,
        status_code: int = 400
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        """Convertit en dictionnaire au format ActionResult"""
        response = {
            "success": False,
            "error": self.message
        }

        if self.error_code:
            response["error_code"] = self.error_code

        if self.details:
            response["details"] = self.details

        return response

    def to_json_response(self) -> JSONResponse:
        """Retourne une JSONResponse FastAPI"""
        return JSONResponse(
            status_code=self.status_code,
            content=self.to_dict()
        )


# ==================== ERREURS DU WORKFLOW ====================

class WorkflowError(Exception):
    """Erreur métier levée par les services d'intervention"""

    error_code = "WORKFLOW_ERROR"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_error_response(self) -> ErrorResponse:
        return ErrorResponse(
            message=self.message,
            error_code=self.error_code,
            details=self.details,
            status_code=self.status_code
        )


class InvalidTransition(WorkflowError):
    """Action non autorisée depuis le statut courant"""

    error_code = "INVALID_TRANSITION"
    status_code = status.HTTP_409_CONFLICT


class PermissionDenied(WorkflowError):
    """Le rôle de l'utilisateur ne permet pas l'action"""

    error_code = "PERMISSION_DENIED"
    status_code = status.HTTP_403_FORBIDDEN


class ValidationError(WorkflowError):
    """Champ requis manquant ou invalide"""

    error_code = "VALIDATION_ERROR"
    status_code = 422


class NotFound(WorkflowError):
    """Ressource absente ou hors de l'équipe de l'utilisateur"""

    error_code = "RESOURCE_NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND


class PersistenceError(WorkflowError):
    """Échec opaque de la base de données"""

    error_code = "PERSISTENCE_ERROR"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class ValidationErrorHandler:
    """Gestionnaire pour les erreurs de validation Pydantic"""

    @staticmethod
    def handle_validation_error(errors: list) -> ErrorResponse:
        """
        Formate les erreurs de validation (liste issue de .errors())
        """
        validation_errors = []

        for error_detail in errors:
            field_path = " -> ".join(str(loc) for loc in error_detail["loc"] if loc != "body")
            validation_errors.append({
                "field": field_path,
                "message": error_detail["msg"],
                "type": error_detail["type"],
            })

        first = validation_errors[0] if validation_errors else None
        message = "Erreurs de validation des données"
        if first:
            message = f"Erreur de validation: {first['field']}: {first['message']}"

        return ErrorResponse(
            message=message,
            error_code="VALIDATION_ERROR",
            details={
                "validation_errors": validation_errors,
                "error_count": len(validation_errors)
            },
            status_code=422
        )


class PermissionErrorHandler:
    """Gestionnaire pour les erreurs de permissions"""

    @staticmethod
    def unauthorized(message: str = "Authentification requise") -> ErrorResponse:
        """
        Erreur d'authentification standardisée
        """
        return ErrorResponse(
            message=message,
            error_code="UNAUTHORIZED",
            status_code=status.HTTP_401_UNAUTHORIZED
        )


class BusinessLogicErrorHandler:
    """Fabrique des erreurs de logique métier du workflow"""

    @staticmethod
    def invalid_transition(current_status: str, action: str, allowed_actions: list = None) -> InvalidTransition:
        return InvalidTransition(
            f"Action '{action}' impossible depuis le statut '{current_status}'",
            details={
                "current_status": current_status,
                "action": action,
                "allowed_actions": allowed_actions or [],
            }
        )

    @staticmethod
    def role_not_allowed(role: str, action: str, allowed_roles: list = None) -> PermissionDenied:
        return PermissionDenied(
            f"Le rôle '{role}' ne peut pas effectuer l'action '{action}'",
            details={
                "role": role,
                "action": action,
                "allowed_roles": allowed_roles or [],
            }
        )

    @staticmethod
    def missing_field(field: str, message: str = None) -> ValidationError:
        return ValidationError(
            message or f"Le champ '{field}' est requis",
            details={"field": field}
        )


class ErrorLogger:
    """Utilitaire pour logger les erreurs avec audit"""

    @staticmethod
    def log_error(
        error_response: ErrorResponse,
        db_session=None,
        request: Request = None,
        user_id: int = None,
        additional_context: Dict[str, Any] = None
    ):
        """
        Log une erreur avec le système d'audit
        """
        logger.warning(
            "Erreur %s: %s", error_response.error_code or "UNKNOWN", error_response.message
        )
        if not db_session or not request:
            return

        description = f"Erreur {error_response.error_code or 'UNKNOWN'}: {error_response.message}"

        error_details = {
            "error_code": error_response.error_code,
            "message": error_response.message,
            "status_code": error_response.status_code,
            "details": error_response.details
        }

        if additional_context:
            error_details.update(additional_context)

        AuditLogger.log_error(
            db=db_session,
            description=description,
            error_details=error_details,
            request=request,
            status_code=error_response.status_code,
            user_id=user_id
        )


