from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from fastapi import Request
import models
from enums import ActionType, EntityType
import json
import logging
from typing import Optional, Dict, Any
from datetime import datetime, date, time

logger = logging.getLogger(__name__)


class AuditLogger:
    """Service de logging pour auditer toutes les actions dans l'application"""

    @staticmethod
    def log_action(
        db: Session,
        action: ActionType,
        entity_type: EntityType,
        description: str,
        user_id: Optional[int] = None,
        entity_id: Optional[int] = None,
        details: Optional[Dict[Any, Any]] = None,
        request: Optional[Request] = None,
        status_code: Optional[int] = None
    ):
        """
        Log une action dans la base de données

        Args:
            db: Session de base de données
            action: Type d'action (CREATE, TRANSITION, etc.)
            entity_type: Type d'entité concernée (INTERVENTION, TIME_SLOT, etc.)
            description: Description de l'action
            user_id: ID de l'utilisateur qui effectue l'action
            entity_id: ID de l'entité concernée
            details: Détails supplémentaires (avant/après, erreurs, etc.)
            request: Objet Request FastAPI pour récupérer IP, user-agent, etc.
            status_code: Code de statut HTTP
        """
        ip_address = None
        user_agent = None
        endpoint = None
        method = None

        if request:
            ip_address = request.client.host if request.client else None
            user_agent = request.headers.get("user-agent")
            endpoint = str(request.url.path)
            method = request.method

        details_json = None
        if details:
            try:
                details_json = json.dumps(details, default=str, ensure_ascii=False)
            except (TypeError, ValueError) as e:
                details_json = f"Erreur de sérialisation: {str(e)}"

        audit_log = models.AuditLog(
            user_id=user_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            description=description,
            details=details_json,
            ip_address=ip_address,
            user_agent=user_agent,
            endpoint=endpoint,
            method=method,
            status_code=status_code
        )

        logger.info("[AUDIT] %s %s#%s: %s", action.value, entity_type.value, entity_id, description)

        db.add(audit_log)
        try:
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Erreur lors de l'enregistrement du log d'audit")

    @staticmethod
    def log_transition(
        db: Session,
        intervention_id: int,
        user_id: Optional[int],
        from_status: str,
        to_status: str,
        action: str,
        details: Dict = None,
        request: Request = None
    ):
        """Log spécialisé pour les changements de statut d'une intervention"""
        payload = {"from": from_status, "to": to_status, "action": action}
        if details:
            payload.update(details)

        AuditLogger.log_action(
            db=db,
            action=ActionType.TRANSITION,
            entity_type=EntityType.INTERVENTION,
            description=f"Intervention {intervention_id}: {from_status} -> {to_status} ({action})",
            user_id=user_id,
            entity_id=intervention_id,
            details=payload,
            request=request,
            status_code=200
        )

    @staticmethod
    def log_crud_action(db: Session, action: ActionType, entity_type: EntityType,
                        entity_id: int, user_id: int, description: str,
                        before_data: Dict = None, after_data: Dict = None, request: Request = None):
        """Log spécialisé pour les actions CRUD"""
        details = {}
        if before_data:
            details["before"] = before_data
        if after_data:
            details["after"] = after_data

        AuditLogger.log_action(
            db=db,
            action=action,
            entity_type=entity_type,
            description=description,
            user_id=user_id,
            entity_id=entity_id,
            details=details,
            request=request,
            status_code=200
        )

    @staticmethod
    def log_error(db: Session, description: str, user_id: int = None,
                  error_details: Any = None, request: Request = None, status_code: int = 500,
                  entity_type: EntityType = EntityType.INTERVENTION):
        """Log spécialisé pour les erreurs"""
        details = {"error": error_details} if error_details else None

        AuditLogger.log_action(
            db=db,
            action=ActionType.ERROR,
            entity_type=entity_type,
            description=description,
            user_id=user_id,
            details=details,
            request=request,
            status_code=status_code
        )

    @staticmethod
    def log_access_denied(db: Session, description: str, user_id: int = None,
                          entity_type: EntityType = EntityType.INTERVENTION,
                          entity_id: int = None, request: Request = None):
        """Log spécialisé pour les tentatives d'accès refusées"""
        AuditLogger.log_action(
            db=db,
            action=ActionType.ACCESS_DENIED,
            entity_type=entity_type,
            entity_id=entity_id,
            description=description,
            user_id=user_id,
            request=request,
            status_code=403
        )


def get_model_data(obj) -> Dict:
    """
    Convertit un objet SQLAlchemy en dictionnaire pour le logging
    """
    if obj is None:
        return {}

    data = {}
    for column in obj.__table__.columns:
        value = getattr(obj, column.name)
        if isinstance(value, (datetime, date, time)):
            value = value.isoformat()
        elif hasattr(value, "value"):
            value = value.value
        data[column.name] = value
    return data
