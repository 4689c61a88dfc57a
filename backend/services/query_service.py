"""
Service pour les requêtes sur les interventions
Centralisation des lectures avec le cloisonnement par équipe
"""
from typing import List, Optional, Dict, Any
from sqlalchemy.orm import Session, selectinload
from sqlalchemy import func

from models import (
    UserAuth, Building, Lot, Intervention, InterventionAssignment,
    InterventionTimeSlot, ConversationThread, Quote
)
from enums import UserRole
from constants import ERROR_MESSAGES, DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from error_handlers import NotFound
from services.intervention_workflow import is_manager


class QueryService:
    """
    Toutes les lectures passent par l'équipe de l'utilisateur : un identifiant
    d'une autre équipe se comporte comme un identifiant inexistant.
    """

    @staticmethod
    def get_intervention(db: Session, intervention_id: int, user: UserAuth) -> Intervention:
        intervention = db.query(Intervention).options(
            selectinload(Intervention.assignments),
            selectinload(Intervention.time_slots).selectinload(InterventionTimeSlot.responses),
        ).filter(
            Intervention.id == intervention_id,
            Intervention.team_id == user.team_id
        ).first()

        if intervention is None:
            raise NotFound(
                ERROR_MESSAGES["intervention_not_found"],
                details={"intervention_id": intervention_id}
            )
        return intervention

    @staticmethod
    def get_accessible_intervention(db: Session, intervention_id: int, user: UserAuth) -> Intervention:
        """
        Intervention visible par l'utilisateur : toute l'équipe pour un
        gestionnaire, les interventions où il est assigné pour les autres rôles.
        """
        intervention = QueryService.get_intervention(db, intervention_id, user)
        if is_manager(user.role):
            return intervention

        if not any(a.user_id == user.id for a in intervention.assignments):
            raise NotFound(
                ERROR_MESSAGES["intervention_not_found"],
                details={"intervention_id": intervention_id}
            )
        return intervention

    @staticmethod
    def get_assignment(
        intervention: Intervention,
        user_id: int,
        role: Optional[UserRole] = None
    ) -> Optional[InterventionAssignment]:
        for assignment in intervention.assignments:
            if assignment.user_id != user_id:
                continue
            if role is None or UserRole(assignment.role) == UserRole(role):
                return assignment
        return None

    @staticmethod
    def get_time_slot(db: Session, slot_id: int, user: UserAuth) -> InterventionTimeSlot:
        slot = db.query(InterventionTimeSlot).join(
            Intervention, InterventionTimeSlot.intervention_id == Intervention.id
        ).filter(
            InterventionTimeSlot.id == slot_id,
            Intervention.team_id == user.team_id
        ).first()

        if slot is None:
            raise NotFound(ERROR_MESSAGES["slot_not_found"], details={"slot_id": slot_id})
        return slot

    @staticmethod
    def get_thread(db: Session, thread_id: int, user: UserAuth) -> ConversationThread:
        thread = db.query(ConversationThread).filter(
            ConversationThread.id == thread_id,
            ConversationThread.team_id == user.team_id
        ).first()

        if thread is None:
            raise NotFound(ERROR_MESSAGES["thread_not_found"], details={"thread_id": thread_id})
        return thread

    @staticmethod
    def get_quote(db: Session, quote_id: int, user: UserAuth) -> Quote:
        quote = db.query(Quote).filter(
            Quote.id == quote_id,
            Quote.team_id == user.team_id
        ).first()

        if quote is None:
            raise NotFound(ERROR_MESSAGES["quote_not_found"], details={"quote_id": quote_id})
        return quote

    @staticmethod
    def get_team_user(db: Session, user_id: int, team_id: int) -> UserAuth:
        user = db.query(UserAuth).filter(
            UserAuth.id == user_id,
            UserAuth.team_id == team_id
        ).first()

        if user is None:
            raise NotFound(ERROR_MESSAGES["user_not_found"], details={"user_id": user_id})
        return user

    @staticmethod
    def check_location(db: Session, team_id: int, lot_id: Optional[int], building_id: Optional[int]):
        """Vérifie que le lot ou l'immeuble appartient à l'équipe"""
        if lot_id is not None:
            lot = db.query(Lot).filter(Lot.id == lot_id, Lot.team_id == team_id).first()
            if lot is None:
                raise NotFound("Lot introuvable", details={"lot_id": lot_id})
            return lot

        building = db.query(Building).filter(
            Building.id == building_id,
            Building.team_id == team_id
        ).first()
        if building is None:
            raise NotFound("Immeuble introuvable", details={"building_id": building_id})
        return building

    @staticmethod
    def list_interventions(
        db: Session,
        user: UserAuth,
        filters: Optional[Dict[str, Any]] = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
        assigned_only: bool = False
    ) -> List[Intervention]:
        """
        Liste les interventions de l'équipe avec filtres optionnels.

        Un gestionnaire voit toute l'équipe, sauf si assigned_only est
        demandé ; les autres rôles ne voient que leurs assignations.
        """
        query = db.query(Intervention).filter(Intervention.team_id == user.team_id)

        if assigned_only or not is_manager(user.role):
            query = query.join(
                InterventionAssignment,
                InterventionAssignment.intervention_id == Intervention.id
            ).filter(InterventionAssignment.user_id == user.id)

        for field, value in (filters or {}).items():
            if value is not None:
                query = query.filter(getattr(Intervention, field) == value)

        limit = max(1, min(limit, MAX_PAGE_SIZE))
        return query.distinct().order_by(
            Intervention.created_at.desc(), Intervention.id.desc()
        ).offset(offset).limit(limit).all()

    @staticmethod
    def count_by(db: Session, team_id: int, column) -> Dict[str, int]:
        """Compte les interventions de l'équipe groupées par une colonne enum"""
        rows = db.query(column, func.count(Intervention.id)).filter(
            Intervention.team_id == team_id
        ).group_by(column).all()

        return {
            (value.value if hasattr(value, "value") else str(value)): count
            for value, count in rows
        }
