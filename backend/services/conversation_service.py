"""
Service des conversations d'intervention
Fil de groupe partagé, fils privés par prestataire et par locataire,
messages filtrés selon le rôle et le participant
"""
from sqlalchemy.orm import Session
from typing import List, Optional
import logging

from models import ConversationThread, ConversationMessage, Intervention, UserAuth
from enums import ThreadType, ActionType, EntityType, UserRole
from constants import THREAD_TITLES
from audit_logger import AuditLogger
from error_handlers import PermissionDenied, ValidationError
from services.query_service import QueryService
from services.user_notification_service import UserNotificationService
from services.visibility import can_access_thread, private_thread_type

logger = logging.getLogger(__name__)


class ConversationService:

    @staticmethod
    def _ensure_thread(
        db: Session,
        intervention: Intervention,
        thread_type: ThreadType,
        created_by: Optional[int],
        participant_id: Optional[int] = None
    ) -> ConversationThread:
        for thread in intervention.threads:
            if ThreadType(thread.thread_type) == thread_type and thread.participant_id == participant_id:
                return thread

        thread = ConversationThread(
            intervention_id=intervention.id,
            thread_type=thread_type,
            participant_id=participant_id,
            title=THREAD_TITLES[thread_type.value],
            created_by=created_by,
            team_id=intervention.team_id
        )
        intervention.threads.append(thread)
        db.flush()
        logger.debug(
            "Fil %s créé pour l'intervention %s (participant %s)",
            thread_type.value, intervention.id, participant_id
        )
        return thread

    @staticmethod
    def ensure_participant_thread(
        db: Session,
        intervention: Intervention,
        user_id: int,
        role: UserRole,
        created_by: Optional[int] = None
    ) -> Optional[ConversationThread]:
        """Fil privé d'un prestataire ou d'un locataire avec les gestionnaires"""
        thread_type = private_thread_type(role)
        if thread_type is None:
            return None
        return ConversationService._ensure_thread(db, intervention, thread_type, created_by, user_id)

    @staticmethod
    def ensure_threads(db: Session, intervention: Intervention, created_by: Optional[int] = None) -> List[ConversationThread]:
        """
        Crée le fil de groupe et un fil privé par prestataire ou locataire assigné.
        Ne commit pas : la création suit la transaction de l'intervention.
        """
        threads = [ConversationService._ensure_thread(db, intervention, ThreadType.group, created_by)]
        for assignment in list(intervention.assignments):
            thread = ConversationService.ensure_participant_thread(
                db, intervention, assignment.user_id, assignment.role, created_by
            )
            if thread is not None:
                threads.append(thread)
        return threads

    @staticmethod
    def list_threads(db: Session, intervention_id: int, user: UserAuth) -> List[ConversationThread]:
        intervention = QueryService.get_accessible_intervention(db, intervention_id, user)
        return sorted(
            (t for t in intervention.threads
             if can_access_thread(user.id, user.role, t.thread_type, t.participant_id)),
            key=lambda t: t.id
        )

    @staticmethod
    def _get_visible_thread(db: Session, thread_id: int, user: UserAuth, request=None) -> ConversationThread:
        thread = QueryService.get_thread(db, thread_id, user)
        # L'utilisateur doit aussi avoir accès à l'intervention
        QueryService.get_accessible_intervention(db, thread.intervention_id, user)

        if not can_access_thread(user.id, user.role, thread.thread_type, thread.participant_id):
            AuditLogger.log_access_denied(
                db=db,
                description=f"Accès refusé au fil {thread.thread_type.value} pour le rôle {user.role.value}",
                user_id=user.id,
                entity_type=EntityType.THREAD,
                entity_id=thread.id,
                request=request
            )
            raise PermissionDenied(
                "Vous n'avez pas accès à cette conversation",
                details={"thread_id": thread.id, "thread_type": thread.thread_type.value}
            )
        return thread

    @staticmethod
    def list_messages(db: Session, thread_id: int, user: UserAuth, request=None) -> List[ConversationMessage]:
        thread = ConversationService._get_visible_thread(db, thread_id, user, request)
        return list(thread.messages)

    @staticmethod
    def post_message(db: Session, thread_id: int, user: UserAuth, content: str, request=None) -> ConversationMessage:
        thread = ConversationService._get_visible_thread(db, thread_id, user, request)

        if content is None or not content.strip():
            raise ValidationError("Le message ne peut pas être vide", details={"field": "content"})

        message = ConversationMessage(thread_id=thread.id, user_id=user.id, content=content.strip())
        db.add(message)
        db.commit()
        db.refresh(message)

        AuditLogger.log_action(
            db=db,
            action=ActionType.CREATE,
            entity_type=EntityType.MESSAGE,
            description=f"Message publié dans le fil {thread.thread_type.value}",
            user_id=user.id,
            entity_id=message.id,
            details={"thread_id": thread.id, "intervention_id": thread.intervention_id},
            request=request
        )

        recipients = {
            a.user_id for a in thread.intervention.assignments
            if a.user_id != user.id
            and can_access_thread(a.user_id, a.role, thread.thread_type, thread.participant_id)
        }
        UserNotificationService.create_bulk_notification(
            db,
            recipients,
            title=f"Nouveau message : {thread.title}",
            message=content.strip()[:200],
            intervention_id=thread.intervention_id
        )
        return message
