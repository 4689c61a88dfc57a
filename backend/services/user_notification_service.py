"""
Service de notifications utilisateur
Notifications in-app envoyées aux participants d'une intervention
"""
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import desc, func
from typing import Dict, Any, Iterable, List, Optional
import logging

from models import Notification, Intervention
from enums import InterventionStatus

logger = logging.getLogger(__name__)

STATUS_LABELS = {
    InterventionStatus.demande: "Nouvelle demande",
    InterventionStatus.rejetee: "Demande rejetée",
    InterventionStatus.approuvee: "Demande approuvée",
    InterventionStatus.demande_de_devis: "Devis demandé",
    InterventionStatus.planification: "Planification en cours",
    InterventionStatus.planifiee: "Intervention planifiée",
    InterventionStatus.en_cours: "Travaux en cours",
    InterventionStatus.cloturee_par_prestataire: "Travaux terminés par le prestataire",
    InterventionStatus.cloturee_par_locataire: "Travaux validés par le locataire",
    InterventionStatus.cloturee_par_gestionnaire: "Intervention clôturée",
    InterventionStatus.annulee: "Intervention annulée",
}


class UserNotificationService:
    """
    Service de gestion des notifications utilisateur.

    L'envoi est best-effort : une erreur est journalisée puis ignorée,
    l'action métier déjà enregistrée n'est jamais remise en cause.
    """

    @staticmethod
    def create_bulk_notification(
        db: Session,
        user_ids: Iterable[int],
        title: str,
        message: str,
        intervention_id: Optional[int] = None
    ) -> int:
        """
        Crée une notification pour plusieurs utilisateurs
        Retourne le nombre de notifications créées (0 en cas d'échec)
        """
        notifications = [
            Notification(
                user_id=user_id,
                intervention_id=intervention_id,
                title=title,
                message=message
            )
            for user_id in sorted(set(user_ids))
        ]
        if not notifications:
            return 0

        try:
            db.add_all(notifications)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Échec de l'envoi des notifications pour l'intervention %s", intervention_id)
            return 0

        return len(notifications)

    @staticmethod
    def notify_participants(
        db: Session,
        intervention: Intervention,
        title: str,
        message: str,
        exclude_user_id: Optional[int] = None
    ) -> int:
        """Notifie tous les utilisateurs assignés, sauf l'auteur de l'action"""
        user_ids = {
            assignment.user_id
            for assignment in intervention.assignments
            if assignment.user_id != exclude_user_id
        }
        return UserNotificationService.create_bulk_notification(
            db, user_ids, title, message, intervention_id=intervention.id
        )

    @staticmethod
    def notify_status_change(
        db: Session,
        intervention: Intervention,
        to_status: InterventionStatus,
        actor_id: Optional[int] = None
    ) -> int:
        label = STATUS_LABELS.get(InterventionStatus(to_status), InterventionStatus(to_status).value)
        return UserNotificationService.notify_participants(
            db,
            intervention,
            title=f"{intervention.reference}: {label}",
            message=f"L'intervention « {intervention.title} » est passée au statut : {label}",
            exclude_user_id=actor_id
        )

    @staticmethod
    def get_user_notifications(
        db: Session,
        user_id: int,
        unread_only: bool = False,
        limit: int = 50,
        offset: int = 0
    ) -> Dict[str, Any]:
        """
        Récupère les notifications d'un utilisateur
        """
        query = db.query(Notification).filter(Notification.user_id == user_id)

        if unread_only:
            query = query.filter(Notification.is_read == False)

        total_count = query.count()

        notifications = query.order_by(
            desc(Notification.created_at), desc(Notification.id)
        ).offset(offset).limit(limit).all()

        unread_count = db.query(func.count(Notification.id)).filter(
            Notification.user_id == user_id,
            Notification.is_read == False
        ).scalar()

        return {
            "notifications": [
                {
                    "id": notif.id,
                    "intervention_id": notif.intervention_id,
                    "title": notif.title,
                    "message": notif.message,
                    "is_read": notif.is_read,
                    "created_at": notif.created_at,
                }
                for notif in notifications
            ],
            "total_count": total_count,
            "unread_count": unread_count,
            "has_more": (offset + limit) < total_count
        }

    @staticmethod
    def mark_as_read(
        db: Session,
        user_id: int,
        notification_ids: List[int] = None,
        mark_all: bool = False
    ) -> int:
        """
        Marque des notifications comme lues
        Retourne le nombre de notifications mises à jour
        """
        query = db.query(Notification).filter(
            Notification.user_id == user_id,
            Notification.is_read == False
        )

        if not mark_all:
            if not notification_ids:
                return 0
            query = query.filter(Notification.id.in_(notification_ids))

        count = query.update({Notification.is_read: True}, synchronize_session=False)
        db.commit()
        return count
