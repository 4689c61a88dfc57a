"""
Service des interventions
Création, déclencheurs du workflow, négociation des créneaux, assignations et devis.

Chaque opération publique correspond à une action utilisateur : une requête,
une transaction. Le statut n'est modifié qu'au travers de next_status.
"""
from sqlalchemy.orm import Session
from typing import Any, Dict, Iterable, List, Optional
from datetime import datetime
from decimal import Decimal
import logging
import secrets

from models import (
    UserAuth, Intervention, InterventionAssignment, InterventionTimeSlot,
    TimeSlotResponse, Quote
)
from enums import (
    UserRole, InterventionStatus, InterventionAction, SchedulingType,
    AssignmentMode, ConfirmationStatus, TimeSlotStatus, SlotResponse,
    QuoteStatus, ParticipantGroup, ActionType, EntityType
)
from constants import (
    ERROR_MESSAGES, MAX_PROVIDER_INSTRUCTIONS_LENGTH, MAX_SLOTS_PER_PROPOSAL,
    MIN_TENANT_SATISFACTION, MAX_TENANT_SATISFACTION, DEFAULT_PAGE_SIZE
)
from audit_logger import AuditLogger, get_model_data
from error_handlers import (
    BusinessLogicErrorHandler, NotFound, PermissionDenied, ValidationError
)
from services.conversation_service import ConversationService
from services.intervention_workflow import (
    next_status, check_slot_action, allowed_actions, is_manager, is_terminal
)
from services.query_service import QueryService
from services.slot_negotiation import (
    required_responders, slot_status, resolve_slot_negotiation
)
from services.user_notification_service import UserNotificationService
from services.visibility import (
    visible_assignments, visible_participant_groups, visible_thread_types,
    participant_group, is_isolated_provider
)

logger = logging.getLogger(__name__)

A = InterventionAction

# Champs modifiables par un locataire tant que la demande n'est pas traitée
TENANT_EDITABLE_FIELDS = {"title", "description", "type", "urgency", "specific_location", "tenant_comment"}
REQUIRED_INTERVENTION_FIELDS = {"title", "description", "type", "urgency"}


def _text(payload: Dict[str, Any], key: str) -> Optional[str]:
    value = payload.get(key)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _assignment_role(role: UserRole) -> UserRole:
    """Rôle porté par une assignation : un admin agit comme gestionnaire"""
    role = UserRole(role)
    return UserRole.gestionnaire if role == UserRole.admin else role


class InterventionService:

    # ==================== OUTILS INTERNES ====================

    @staticmethod
    def _require_manager(db: Session, user: UserAuth, description: str, entity_id: int = None, request=None):
        if is_manager(user.role):
            return
        AuditLogger.log_access_denied(
            db=db,
            description=description,
            user_id=user.id,
            entity_id=entity_id,
            request=request
        )
        raise PermissionDenied(
            "Action réservée aux gestionnaires",
            details={"role": UserRole(user.role).value}
        )

    @staticmethod
    def _require_assignment(intervention: Intervention, user: UserAuth, role: UserRole):
        if QueryService.get_assignment(intervention, user.id, role) is None:
            raise PermissionDenied(
                "Vous n'êtes pas assigné à cette intervention",
                details={"intervention_id": intervention.id, "role": role.value}
            )

    @staticmethod
    def _require_active(intervention: Intervention, action: str):
        if is_terminal(intervention.status):
            raise BusinessLogicErrorHandler.invalid_transition(
                InterventionStatus(intervention.status).value, action
            )

    @staticmethod
    def _generate_reference(db: Session) -> str:
        while True:
            reference = f"INT-{datetime.utcnow():%y%m}-{secrets.token_hex(3).upper()}"
            exists = db.query(Intervention.id).filter(Intervention.reference == reference).first()
            if not exists:
                return reference

    @staticmethod
    def _add_assignment(
        db: Session,
        intervention: Intervention,
        user_id: int,
        role: UserRole,
        assigned_by: Optional[int],
        requires_confirmation: bool = False,
        provider_instructions: Optional[str] = None,
        is_primary: bool = False
    ) -> InterventionAssignment:
        existing = QueryService.get_assignment(intervention, user_id, role)
        if existing is not None:
            if provider_instructions is not None:
                existing.provider_instructions = provider_instructions
            return existing

        assignment = InterventionAssignment(
            intervention_id=intervention.id,
            user_id=user_id,
            role=role,
            is_primary=is_primary,
            requires_confirmation=requires_confirmation,
            confirmation_status=ConfirmationStatus.pending if requires_confirmation else None,
            provider_instructions=provider_instructions,
            assigned_by=assigned_by
        )
        intervention.assignments.append(assignment)
        db.flush()

        ConversationService.ensure_participant_thread(db, intervention, user_id, role, assigned_by)
        return assignment

    @staticmethod
    def _provider_assignments(intervention: Intervention) -> List[InterventionAssignment]:
        return [a for a in intervention.assignments if UserRole(a.role) == UserRole.prestataire]

    @staticmethod
    def _team_managers(db: Session, team_id: int) -> List[int]:
        rows = db.query(UserAuth.id).filter(
            UserAuth.team_id == team_id,
            UserAuth.role.in_([UserRole.gestionnaire, UserRole.admin]),
            UserAuth.is_active == True
        ).all()
        return [row.id for row in rows]

    # ==================== CRUD ====================

    @staticmethod
    def create_intervention(db: Session, data, user: UserAuth, request=None) -> Intervention:
        """
        Crée une demande d'intervention (locataire ou gestionnaire).
        Le créateur est assigné avec son rôle et les fils de discussion par défaut sont créés.
        """
        if UserRole(user.role) == UserRole.prestataire:
            AuditLogger.log_access_denied(
                db=db,
                description="Un prestataire ne peut pas créer d'intervention",
                user_id=user.id,
                request=request
            )
            raise PermissionDenied("Un prestataire ne peut pas créer d'intervention")

        if data.lot_id is None and data.building_id is None:
            raise ValidationError(ERROR_MESSAGES["location_required"], details={"field": "lot_id"})

        location = QueryService.check_location(db, user.team_id, data.lot_id, data.building_id)
        building_id = data.building_id
        if data.lot_id is not None and building_id is None:
            building_id = location.building_id

        intervention = Intervention(
            reference=InterventionService._generate_reference(db),
            title=data.title,
            description=data.description,
            type=data.type,
            urgency=data.urgency,
            status=InterventionStatus.demande,
            scheduling_type=data.scheduling_type,
            assignment_mode=AssignmentMode.single,
            lot_id=data.lot_id,
            building_id=building_id,
            specific_location=data.specific_location,
            tenant_comment=data.tenant_comment,
            team_id=user.team_id,
            created_by=user.id
        )
        db.add(intervention)
        db.flush()

        InterventionService._add_assignment(
            db, intervention, user.id, _assignment_role(user.role),
            assigned_by=user.id, is_primary=True
        )
        ConversationService.ensure_threads(db, intervention, user.id)

        db.commit()
        db.refresh(intervention)

        AuditLogger.log_crud_action(
            db=db,
            action=ActionType.CREATE,
            entity_type=EntityType.INTERVENTION,
            entity_id=intervention.id,
            user_id=user.id,
            description=f"Création de l'intervention {intervention.reference}",
            after_data=get_model_data(intervention),
            request=request
        )

        managers = [m for m in InterventionService._team_managers(db, user.team_id) if m != user.id]
        UserNotificationService.create_bulk_notification(
            db,
            managers,
            title=f"{intervention.reference}: Nouvelle demande",
            message=f"Nouvelle demande d'intervention : {intervention.title}",
            intervention_id=intervention.id
        )
        return intervention

    @staticmethod
    def update_intervention(db: Session, intervention_id: int, data, user: UserAuth, request=None) -> Intervention:
        intervention = QueryService.get_accessible_intervention(db, intervention_id, user)
        InterventionService._require_active(intervention, "update")

        changes = data.model_dump(exclude_unset=True)
        role = UserRole(user.role)

        cleared = sorted(f for f in REQUIRED_INTERVENTION_FIELDS if f in changes and changes[f] is None)
        if cleared:
            raise ValidationError(
                "Ces champs ne peuvent pas être effacés",
                details={"fields": cleared}
            )

        if role == UserRole.prestataire:
            raise PermissionDenied("Un prestataire ne peut pas modifier l'intervention")

        if role == UserRole.locataire:
            if InterventionStatus(intervention.status) != InterventionStatus.demande:
                raise PermissionDenied(
                    "La demande ne peut plus être modifiée",
                    details={"status": InterventionStatus(intervention.status).value}
                )
            forbidden = sorted(set(changes) - TENANT_EDITABLE_FIELDS)
            if forbidden:
                raise PermissionDenied(
                    "Champs réservés aux gestionnaires",
                    details={"fields": forbidden}
                )

        before = get_model_data(intervention)
        for field, value in changes.items():
            setattr(intervention, field, value)

        db.commit()
        db.refresh(intervention)

        AuditLogger.log_crud_action(
            db=db,
            action=ActionType.UPDATE,
            entity_type=EntityType.INTERVENTION,
            entity_id=intervention.id,
            user_id=user.id,
            description=f"Modification de l'intervention {intervention.reference}",
            before_data=before,
            after_data=get_model_data(intervention),
            request=request
        )
        return intervention

    @staticmethod
    def get_intervention(db: Session, intervention_id: int, user: UserAuth) -> Intervention:
        return QueryService.get_accessible_intervention(db, intervention_id, user)

    @staticmethod
    def list_interventions(
        db: Session,
        user: UserAuth,
        filters: Optional[Dict[str, Any]] = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0
    ) -> List[Intervention]:
        return QueryService.list_interventions(db, user, filters, limit, offset)

    @staticmethod
    def get_my_interventions(db: Session, user: UserAuth, status: Optional[InterventionStatus] = None) -> List[Intervention]:
        """Interventions où l'utilisateur est assigné, quel que soit son rôle"""
        return QueryService.list_interventions(
            db, user, {"status": status}, assigned_only=True
        )

    # ==================== DÉCLENCHEURS DU WORKFLOW ====================

    @staticmethod
    def transition(
        db: Session,
        intervention_id: int,
        action: InterventionAction,
        user: UserAuth,
        payload: Optional[Dict[str, Any]] = None,
        request=None
    ) -> Intervention:
        """
        Applique un déclencheur du workflow.

        Ordre des contrôles : existence, légalité (statut, action), rôle,
        puis gardes métier. Un échec laisse le statut inchangé.
        """
        payload = payload or {}
        action = InterventionAction(action)
        intervention = QueryService.get_accessible_intervention(db, intervention_id, user)
        from_status = InterventionStatus(intervention.status)

        try:
            to_status = next_status(from_status, action, user.role)
        except PermissionDenied:
            AuditLogger.log_access_denied(
                db=db,
                description=f"Action {action.value} refusée pour le rôle {UserRole(user.role).value}",
                user_id=user.id,
                entity_id=intervention.id,
                request=request
            )
            raise

        InterventionService._check_guards(intervention, action, user, payload)
        InterventionService._stamp(db, intervention, action, payload)
        intervention.status = to_status
        db.commit()
        db.refresh(intervention)

        AuditLogger.log_transition(
            db=db,
            intervention_id=intervention.id,
            user_id=user.id,
            from_status=from_status.value,
            to_status=to_status.value,
            action=action.value,
            details={k: v for k, v in payload.items() if v is not None},
            request=request
        )
        UserNotificationService.notify_status_change(db, intervention, to_status, actor_id=user.id)

        if action == A.finalize and InterventionService._needs_fan_out(intervention):
            InterventionService._fan_out(db, intervention, user, request)
            db.refresh(intervention)

        return intervention

    @staticmethod
    def _check_guards(intervention: Intervention, action: InterventionAction, user: UserAuth, payload: Dict[str, Any]):
        role = UserRole(user.role)

        if role == UserRole.prestataire:
            InterventionService._require_assignment(intervention, user, UserRole.prestataire)
        if role == UserRole.locataire:
            InterventionService._require_assignment(intervention, user, UserRole.locataire)

        if action == A.complete_work and not _text(payload, "report"):
            raise BusinessLogicErrorHandler.missing_field("report", "Un rapport d'intervention est requis")

        if action in (A.reject, A.cancel, A.contest_completion) and not _text(payload, "reason"):
            raise BusinessLogicErrorHandler.missing_field("reason", "Une raison est requise")

        if action == A.validate_completion:
            satisfaction = payload.get("satisfaction")
            if satisfaction is not None and not MIN_TENANT_SATISFACTION <= int(satisfaction) <= MAX_TENANT_SATISFACTION:
                raise ValidationError(
                    f"La satisfaction doit être comprise entre {MIN_TENANT_SATISFACTION} et {MAX_TENANT_SATISFACTION}",
                    details={"field": "satisfaction"}
                )

        if action == A.finalize:
            final_cost = payload.get("final_cost")
            if final_cost is not None and Decimal(str(final_cost)) < 0:
                raise ValidationError("Le coût final ne peut pas être négatif", details={"field": "final_cost"})

    @staticmethod
    def _stamp(db: Session, intervention: Intervention, action: InterventionAction, payload: Dict[str, Any]):
        """Renseigne les champs annexes propres à chaque déclencheur"""
        now = datetime.utcnow()

        if action == A.approve:
            if _text(payload, "comment"):
                intervention.manager_comment = _text(payload, "comment")
        elif action == A.reject:
            intervention.manager_comment = _text(payload, "reason")
        elif action == A.confirm_schedule:
            InterventionService._enter_planned(db, intervention, payload.get("scheduled_date"))
        elif action == A.start_work:
            intervention.started_at = now
        elif action == A.complete_work:
            intervention.provider_comment = _text(payload, "report")
            intervention.completed_date = now
        elif action == A.validate_completion:
            intervention.tenant_satisfaction = payload.get("satisfaction")
            if _text(payload, "comment"):
                intervention.tenant_comment = _text(payload, "comment")
            intervention.validated_at = now
        elif action == A.contest_completion:
            intervention.tenant_comment = _text(payload, "reason")
        elif action == A.finalize:
            if payload.get("final_cost") is not None:
                intervention.final_cost = payload.get("final_cost")
            if _text(payload, "comment"):
                intervention.manager_comment = _text(payload, "comment")
            intervention.finalized_at = now
        elif action == A.cancel:
            intervention.cancellation_reason = _text(payload, "reason")

    # ==================== PLANIFICATION ====================

    @staticmethod
    def _required_by_slot(intervention: Intervention) -> Dict[int, set]:
        return {
            slot.id: required_responders(intervention.assignments, slot.proposed_by)
            for slot in intervention.time_slots
        }

    @staticmethod
    def _select(intervention: Intervention, slot: InterventionTimeSlot):
        for other in intervention.time_slots:
            other.is_selected = other.id == slot.id
        slot.status = TimeSlotStatus.accepted
        intervention.selected_slot_id = slot.id
        intervention.scheduled_date = slot.starts_at

    @staticmethod
    def _enter_planned(db: Session, intervention: Intervention, scheduled_date: Optional[datetime] = None):
        """
        Contrôle l'invariant de planification avant le passage en planifiee.

        fixed : une date unique est requise.
        slots : un créneau entièrement accepté ou retenu par un gestionnaire est requis.
        """
        if SchedulingType(intervention.scheduling_type) == SchedulingType.fixed:
            scheduled_date = scheduled_date or intervention.scheduled_date
            if scheduled_date is None:
                raise BusinessLogicErrorHandler.missing_field(
                    "scheduled_date", "Une date d'intervention est requise"
                )
            intervention.scheduled_date = scheduled_date
            intervention.selected_slot_id = None
            return

        confirmed = resolve_slot_negotiation(
            intervention.time_slots,
            {slot.id: list(slot.responses) for slot in intervention.time_slots},
            InterventionService._required_by_slot(intervention)
        )
        if confirmed is not None:
            slot = next(s for s in intervention.time_slots if s.id == confirmed.slot_id)
            InterventionService._select(intervention, slot)
            return

        selected = next(
            (s for s in intervention.time_slots
             if s.is_selected and s.id == intervention.selected_slot_id
             and TimeSlotStatus(s.status) != TimeSlotStatus.cancelled),
            None
        )
        if selected is None:
            raise ValidationError(
                "Aucun créneau n'a été accepté par tous les participants",
                details={"field": "time_slots"}
            )
        intervention.scheduled_date = selected.starts_at

    @staticmethod
    def _auto_advance(db: Session, intervention: Intervention, user: UserAuth, request=None) -> bool:
        """
        Passe l'intervention en planifiee si un créneau est entièrement accepté.
        Transition système : aucun contrôle de rôle.
        """
        if SchedulingType(intervention.scheduling_type) != SchedulingType.slots:
            return False
        if InterventionStatus(intervention.status) != InterventionStatus.planification:
            return False

        confirmed = resolve_slot_negotiation(
            intervention.time_slots,
            {slot.id: list(slot.responses) for slot in intervention.time_slots},
            InterventionService._required_by_slot(intervention)
        )
        if confirmed is None:
            return False

        from_status = InterventionStatus(intervention.status)
        to_status = next_status(from_status, A.confirm_schedule)
        slot = next(s for s in intervention.time_slots if s.id == confirmed.slot_id)
        InterventionService._select(intervention, slot)
        intervention.status = to_status
        db.commit()

        AuditLogger.log_transition(
            db=db,
            intervention_id=intervention.id,
            user_id=user.id,
            from_status=from_status.value,
            to_status=to_status.value,
            action=A.confirm_schedule.value,
            details={"auto": True, "slot_id": confirmed.slot_id, "scheduled_date": confirmed.scheduled_date},
            request=request
        )
        UserNotificationService.notify_status_change(db, intervention, to_status)
        logger.info("Intervention %s planifiée automatiquement (créneau %s)", intervention.id, confirmed.slot_id)
        return True

    @staticmethod
    def propose_slots(db: Session, intervention_id: int, slots: Iterable, user: UserAuth, request=None) -> List[InterventionTimeSlot]:
        """
        Un prestataire assigné propose des créneaux pendant la planification
        """
        intervention = QueryService.get_accessible_intervention(db, intervention_id, user)
        check_slot_action(intervention.status, A.propose_slots, user.role)
        InterventionService._require_assignment(intervention, user, UserRole.prestataire)

        slots = list(slots)
        if not slots:
            raise ValidationError("Au moins un créneau est requis", details={"field": "slots"})
        if len(slots) > MAX_SLOTS_PER_PROPOSAL:
            raise ValidationError(
                f"{MAX_SLOTS_PER_PROPOSAL} créneaux maximum par proposition",
                details={"field": "slots"}
            )

        created = []
        for index, data in enumerate(slots):
            if data.end_time <= data.start_time:
                raise ValidationError(
                    "L'heure de fin doit être postérieure à l'heure de début",
                    details={"field": f"slots.{index}.end_time"}
                )
            slot = InterventionTimeSlot(
                intervention_id=intervention.id,
                slot_date=data.slot_date,
                start_time=data.start_time,
                end_time=data.end_time,
                notes=getattr(data, "notes", None),
                proposed_by=user.id,
                status=TimeSlotStatus.proposed
            )
            intervention.time_slots.append(slot)
            created.append(slot)

        if SchedulingType(intervention.scheduling_type) == SchedulingType.fixed:
            intervention.scheduling_type = SchedulingType.slots

        db.commit()
        for slot in created:
            db.refresh(slot)

        AuditLogger.log_action(
            db=db,
            action=ActionType.CREATE,
            entity_type=EntityType.TIME_SLOT,
            description=f"{len(created)} créneau(x) proposé(s) pour l'intervention {intervention.id}",
            user_id=user.id,
            entity_id=intervention.id,
            details={"slot_ids": [s.id for s in created]},
            request=request
        )
        UserNotificationService.notify_participants(
            db,
            intervention,
            title=f"{intervention.reference}: Nouveaux créneaux",
            message=f"{len(created)} créneau(x) proposé(s) pour « {intervention.title} »",
            exclude_user_id=user.id
        )
        return created

    @staticmethod
    def _slot_context(db: Session, slot_id: int, user: UserAuth):
        slot = QueryService.get_time_slot(db, slot_id, user)
        intervention = QueryService.get_accessible_intervention(db, slot.intervention_id, user)
        return slot, intervention

    @staticmethod
    def _recompute_slot(intervention: Intervention, slot: InterventionTimeSlot):
        required = required_responders(intervention.assignments, slot.proposed_by)
        slot.status = slot_status(slot.status, slot.responses, required)

    @staticmethod
    def respond_to_slot(
        db: Session,
        slot_id: int,
        user: UserAuth,
        response: SlotResponse,
        notes: Optional[str] = None,
        request=None
    ) -> Dict[str, Any]:
        """
        Enregistre (ou remplace) la réponse de l'utilisateur sur un créneau,
        recalcule le statut du créneau puis tente la planification automatique.
        """
        response = SlotResponse(response)
        slot, intervention = InterventionService._slot_context(db, slot_id, user)
        action = A.accept_slot if response == SlotResponse.accepted else A.reject_slot

        if slot.proposed_by == user.id:
            raise ValidationError("Vous ne pouvez pas répondre à votre propre créneau", details={"slot_id": slot.id})

        # Une assignation à confirmer ouvre la réponse quel que soit le rôle
        required = required_responders(intervention.assignments, slot.proposed_by)
        check_slot_action(intervention.status, action, None if user.id in required else user.role)
        if user.id not in required:
            raise PermissionDenied(
                "Votre réponse n'est pas attendue sur ce créneau",
                details={"slot_id": slot.id}
            )

        current = TimeSlotStatus(slot.status)
        if current == TimeSlotStatus.cancelled or (
            current == TimeSlotStatus.rejected and response == SlotResponse.accepted
        ):
            raise BusinessLogicErrorHandler.invalid_transition(current.value, action.value)

        notes = notes.strip() if notes else None
        if response == SlotResponse.rejected and not notes:
            raise BusinessLogicErrorHandler.missing_field("notes", "Une raison est requise pour refuser un créneau")

        existing = next((r for r in slot.responses if r.user_id == user.id), None)
        if existing is not None:
            existing.response = response
            existing.notes = notes
            existing.user_role = _assignment_role(user.role)
        else:
            slot.responses.append(TimeSlotResponse(
                time_slot_id=slot.id,
                user_id=user.id,
                user_role=_assignment_role(user.role),
                response=response,
                notes=notes
            ))

        InterventionService._recompute_slot(intervention, slot)
        db.commit()

        AuditLogger.log_action(
            db=db,
            action=ActionType.UPDATE,
            entity_type=EntityType.TIME_SLOT,
            description=f"Réponse {response.value} sur le créneau {slot.id}",
            user_id=user.id,
            entity_id=slot.id,
            details={"intervention_id": intervention.id, "slot_status": TimeSlotStatus(slot.status).value},
            request=request
        )

        auto_confirmed = InterventionService._auto_advance(db, intervention, user, request)
        db.refresh(slot)
        db.refresh(intervention)
        return {
            "slot": slot,
            "intervention_status": intervention.status,
            "auto_confirmed": auto_confirmed,
            "scheduled_date": intervention.scheduled_date,
        }

    @staticmethod
    def withdraw_response(db: Session, slot_id: int, user: UserAuth, request=None) -> InterventionTimeSlot:
        slot, intervention = InterventionService._slot_context(db, slot_id, user)
        if InterventionStatus(intervention.status) != InterventionStatus.planification:
            raise BusinessLogicErrorHandler.invalid_transition(
                InterventionStatus(intervention.status).value, "withdraw_response"
            )

        existing = next((r for r in slot.responses if r.user_id == user.id), None)
        if existing is None:
            raise NotFound("Aucune réponse à retirer", details={"slot_id": slot.id})

        slot.responses.remove(existing)
        InterventionService._recompute_slot(intervention, slot)
        db.commit()

        AuditLogger.log_action(
            db=db,
            action=ActionType.DELETE,
            entity_type=EntityType.TIME_SLOT,
            description=f"Réponse retirée sur le créneau {slot.id}",
            user_id=user.id,
            entity_id=slot.id,
            request=request
        )
        InterventionService._auto_advance(db, intervention, user, request)
        db.refresh(slot)
        return slot

    @staticmethod
    def cancel_slot(db: Session, slot_id: int, user: UserAuth, request=None) -> InterventionTimeSlot:
        """Retire un créneau : réservé à son auteur ou à un gestionnaire"""
        slot, intervention = InterventionService._slot_context(db, slot_id, user)

        if slot.proposed_by != user.id and not is_manager(user.role):
            raise PermissionDenied(
                "Seul l'auteur du créneau ou un gestionnaire peut l'annuler",
                details={"slot_id": slot.id}
            )
        if slot.is_selected:
            raise ValidationError("Le créneau retenu ne peut pas être annulé", details={"slot_id": slot.id})
        if InterventionStatus(intervention.status) != InterventionStatus.planification:
            raise BusinessLogicErrorHandler.invalid_transition(
                InterventionStatus(intervention.status).value, "cancel_slot"
            )

        slot.status = TimeSlotStatus.cancelled
        db.commit()
        db.refresh(slot)

        AuditLogger.log_action(
            db=db,
            action=ActionType.UPDATE,
            entity_type=EntityType.TIME_SLOT,
            description=f"Créneau {slot.id} annulé",
            user_id=user.id,
            entity_id=slot.id,
            details={"intervention_id": intervention.id},
            request=request
        )
        return slot

    @staticmethod
    def select_slot(db: Session, slot_id: int, user: UserAuth, request=None) -> Intervention:
        """Un gestionnaire retient directement un créneau, sans attendre les réponses"""
        slot, intervention = InterventionService._slot_context(db, slot_id, user)
        from_status = InterventionStatus(intervention.status)
        to_status = next_status(from_status, A.confirm_schedule, user.role)
        InterventionService._require_manager(
            db, user, f"Sélection du créneau {slot.id} refusée", intervention.id, request
        )

        if TimeSlotStatus(slot.status) in (TimeSlotStatus.cancelled, TimeSlotStatus.rejected):
            raise ValidationError(
                "Ce créneau ne peut plus être retenu",
                details={"slot_id": slot.id, "slot_status": TimeSlotStatus(slot.status).value}
            )

        intervention.scheduling_type = SchedulingType.slots
        InterventionService._select(intervention, slot)
        intervention.status = to_status
        db.commit()
        db.refresh(intervention)

        AuditLogger.log_transition(
            db=db,
            intervention_id=intervention.id,
            user_id=user.id,
            from_status=from_status.value,
            to_status=to_status.value,
            action=A.confirm_schedule.value,
            details={"slot_id": slot.id, "selected_by_manager": True},
            request=request
        )
        UserNotificationService.notify_status_change(db, intervention, to_status, actor_id=user.id)
        return intervention

    @staticmethod
    def schedule_fixed(db: Session, intervention_id: int, scheduled_date: datetime, user: UserAuth, request=None) -> Intervention:
        """Planification à date fixe par un gestionnaire"""
        intervention = QueryService.get_accessible_intervention(db, intervention_id, user)
        from_status = InterventionStatus(intervention.status)
        to_status = next_status(from_status, A.confirm_schedule, user.role)
        InterventionService._require_manager(
            db, user, "Planification à date fixe refusée", intervention.id, request
        )

        intervention.scheduling_type = SchedulingType.fixed
        InterventionService._enter_planned(db, intervention, scheduled_date)
        intervention.status = to_status
        db.commit()
        db.refresh(intervention)

        AuditLogger.log_transition(
            db=db,
            intervention_id=intervention.id,
            user_id=user.id,
            from_status=from_status.value,
            to_status=to_status.value,
            action=A.confirm_schedule.value,
            details={"scheduled_date": scheduled_date, "scheduling_type": SchedulingType.fixed.value},
            request=request
        )
        UserNotificationService.notify_status_change(db, intervention, to_status, actor_id=user.id)
        return intervention

    # ==================== ASSIGNATIONS ====================

    @staticmethod
    def assign_user(
        db: Session,
        intervention_id: int,
        user_id: int,
        role: UserRole,
        user: UserAuth,
        requires_confirmation: bool = False,
        provider_instructions: Optional[str] = None,
        request=None
    ) -> InterventionAssignment:
        intervention = QueryService.get_intervention(db, intervention_id, user)
        InterventionService._require_manager(
            db, user, f"Assignation refusée sur l'intervention {intervention_id}", intervention_id, request
        )
        InterventionService._require_active(intervention, "assign_user")

        role = _assignment_role(role)
        target = QueryService.get_team_user(db, user_id, user.team_id)
        if _assignment_role(target.role) != role:
            raise ValidationError(
                f"L'utilisateur n'a pas le rôle {role.value}",
                details={"user_id": target.id, "role": UserRole(target.role).value}
            )
        if provider_instructions and len(provider_instructions) > MAX_PROVIDER_INSTRUCTIONS_LENGTH:
            raise ValidationError(
                f"Les instructions sont limitées à {MAX_PROVIDER_INSTRUCTIONS_LENGTH} caractères",
                details={"field": "provider_instructions"}
            )

        assignment = InterventionService._add_assignment(
            db, intervention, target.id, role, assigned_by=user.id,
            requires_confirmation=requires_confirmation,
            provider_instructions=provider_instructions if role == UserRole.prestataire else None
        )

        providers = InterventionService._provider_assignments(intervention)
        if len(providers) > 1 and AssignmentMode(intervention.assignment_mode) == AssignmentMode.single:
            intervention.assignment_mode = AssignmentMode.group

        db.commit()
        db.refresh(assignment)

        AuditLogger.log_crud_action(
            db=db,
            action=ActionType.CREATE,
            entity_type=EntityType.ASSIGNMENT,
            entity_id=assignment.id,
            user_id=user.id,
            description=f"Assignation de l'utilisateur {target.id} ({role.value}) à l'intervention {intervention.id}",
            after_data=get_model_data(assignment),
            request=request
        )
        UserNotificationService.create_bulk_notification(
            db,
            [target.id],
            title=f"{intervention.reference}: Nouvelle assignation",
            message=f"Vous avez été assigné à l'intervention « {intervention.title} »",
            intervention_id=intervention.id
        )
        return assignment

    @staticmethod
    def unassign_user(db: Session, intervention_id: int, user_id: int, role: UserRole, user: UserAuth, request=None):
        intervention = QueryService.get_intervention(db, intervention_id, user)
        InterventionService._require_manager(
            db, user, f"Désassignation refusée sur l'intervention {intervention_id}", intervention_id, request
        )
        InterventionService._require_active(intervention, "unassign_user")

        assignment = QueryService.get_assignment(intervention, user_id, _assignment_role(role))
        if assignment is None:
            raise NotFound("Assignation introuvable", details={"user_id": user_id, "role": UserRole(role).value})

        before = get_model_data(assignment)
        intervention.assignments.remove(assignment)

        if len(InterventionService._provider_assignments(intervention)) <= 1:
            intervention.assignment_mode = AssignmentMode.single

        db.commit()

        AuditLogger.log_crud_action(
            db=db,
            action=ActionType.DELETE,
            entity_type=EntityType.ASSIGNMENT,
            entity_id=before.get("id"),
            user_id=user.id,
            description=f"Désassignation de l'utilisateur {user_id} de l'intervention {intervention.id}",
            before_data=before,
            request=request
        )

    @staticmethod
    def assign_multiple_providers(
        db: Session,
        intervention_id: int,
        provider_ids: List[int],
        mode: AssignmentMode,
        user: UserAuth,
        provider_instructions: Optional[Dict[int, str]] = None,
        request=None
    ) -> List[InterventionAssignment]:
        """
        Assigne un ou plusieurs prestataires.
        Un seul prestataire impose le mode single, plusieurs imposent group ou separate.
        """
        intervention = QueryService.get_intervention(db, intervention_id, user)
        InterventionService._require_manager(
            db, user, f"Assignation multiple refusée sur l'intervention {intervention_id}", intervention_id, request
        )
        InterventionService._require_active(intervention, "assign_multiple_providers")

        mode = AssignmentMode(mode)
        provider_ids = list(dict.fromkeys(provider_ids))
        provider_instructions = provider_instructions or {}

        if not provider_ids:
            raise ValidationError("Au moins un prestataire est requis", details={"field": "provider_ids"})
        if len(provider_ids) == 1 and mode != AssignmentMode.single:
            raise ValidationError("Un seul prestataire impose le mode single", details={"field": "mode"})
        if len(provider_ids) > 1 and mode == AssignmentMode.single:
            raise ValidationError("Plusieurs prestataires imposent le mode group ou separate", details={"field": "mode"})

        for provider_id, text in provider_instructions.items():
            if text and len(text) > MAX_PROVIDER_INSTRUCTIONS_LENGTH:
                raise ValidationError(
                    f"Les instructions sont limitées à {MAX_PROVIDER_INSTRUCTIONS_LENGTH} caractères",
                    details={"field": "provider_instructions", "provider_id": provider_id}
                )

        providers = [QueryService.get_team_user(db, provider_id, user.team_id) for provider_id in provider_ids]
        for provider in providers:
            if UserRole(provider.role) != UserRole.prestataire:
                raise ValidationError(
                    "L'utilisateur n'est pas un prestataire",
                    details={"user_id": provider.id}
                )

        assignments = [
            InterventionService._add_assignment(
                db, intervention, provider.id, UserRole.prestataire, assigned_by=user.id,
                provider_instructions=provider_instructions.get(provider.id)
            )
            for provider in providers
        ]
        intervention.assignment_mode = mode
        db.commit()

        AuditLogger.log_action(
            db=db,
            action=ActionType.UPDATE,
            entity_type=EntityType.INTERVENTION,
            description=f"{len(assignments)} prestataire(s) assigné(s) en mode {mode.value}",
            user_id=user.id,
            entity_id=intervention.id,
            details={"provider_ids": provider_ids, "mode": mode.value},
            request=request
        )
        UserNotificationService.create_bulk_notification(
            db,
            provider_ids,
            title=f"{intervention.reference}: Nouvelle assignation",
            message=f"Vous avez été assigné à l'intervention « {intervention.title} »",
            intervention_id=intervention.id
        )
        return InterventionService._provider_assignments(intervention)

    @staticmethod
    def update_provider_instructions(
        db: Session,
        intervention_id: int,
        provider_id: int,
        instructions: str,
        user: UserAuth,
        request=None
    ) -> InterventionAssignment:
        intervention = QueryService.get_intervention(db, intervention_id, user)
        InterventionService._require_manager(
            db, user, f"Modification des instructions refusée sur l'intervention {intervention_id}",
            intervention_id, request
        )

        if instructions is not None and len(instructions) > MAX_PROVIDER_INSTRUCTIONS_LENGTH:
            raise ValidationError(
                f"Les instructions sont limitées à {MAX_PROVIDER_INSTRUCTIONS_LENGTH} caractères",
                details={"field": "instructions"}
            )

        assignment = QueryService.get_assignment(intervention, provider_id, UserRole.prestataire)
        if assignment is None:
            raise NotFound("Prestataire non assigné à cette intervention", details={"provider_id": provider_id})

        before = get_model_data(assignment)
        assignment.provider_instructions = instructions
        db.commit()
        db.refresh(assignment)

        AuditLogger.log_crud_action(
            db=db,
            action=ActionType.UPDATE,
            entity_type=EntityType.ASSIGNMENT,
            entity_id=assignment.id,
            user_id=user.id,
            description=f"Instructions du prestataire {provider_id} mises à jour",
            before_data=before,
            after_data=get_model_data(assignment),
            request=request
        )
        return assignment

    @staticmethod
    def get_intervention_view(db: Session, intervention_id: int, viewer: UserAuth) -> Dict[str, Any]:
        """
        Vue d'une intervention pour un lecteur donné.

        Les participants sont filtrés par groupe visible. En mode separate, un
        prestataire ne voit que sa propre assignation, ses créneaux et ses devis.
        """
        intervention = QueryService.get_accessible_intervention(db, intervention_id, viewer)
        role = UserRole(viewer.role)

        assignments = visible_assignments(intervention.assignments, viewer.id, role)
        time_slots = sorted(intervention.time_slots, key=lambda s: (s.slot_date, s.start_time, s.id))
        quotes = list(intervention.quotes)

        if is_isolated_provider(role, intervention.assignment_mode):
            assignments = [
                a for a in assignments
                if UserRole(a.role) != UserRole.prestataire or a.user_id == viewer.id
            ]
            time_slots = [s for s in time_slots if s.proposed_by == viewer.id]
            quotes = [q for q in quotes if q.provider_id == viewer.id]
        elif role == UserRole.locataire:
            quotes = []

        groups = set(visible_participant_groups(role)) | {participant_group(role)}
        participants = {group: [] for group in ParticipantGroup if group in groups}
        for assignment in assignments:
            participants[participant_group(assignment.role)].append(assignment)

        return {
            "intervention": intervention,
            "participants": participants,
            "time_slots": time_slots,
            "quotes": quotes,
            "visible_thread_types": sorted(visible_thread_types(role), key=lambda t: t.value),
            "allowed_actions": allowed_actions(intervention.status, role),
        }

    # ==================== DÉMULTIPLICATION (MODE SEPARATE) ====================

    @staticmethod
    def _needs_fan_out(intervention: Intervention) -> bool:
        return (
            AssignmentMode(intervention.assignment_mode) == AssignmentMode.separate
            and len(InterventionService._provider_assignments(intervention)) >= 2
        )

    @staticmethod
    def _fan_out(db: Session, parent: Intervention, user: UserAuth, request=None) -> List[Intervention]:
        if parent.children:
            return list(parent.children)

        shared = [a for a in parent.assignments if UserRole(a.role) != UserRole.prestataire]
        children = []
        for index, provider in enumerate(InterventionService._provider_assignments(parent), start=1):
            child = Intervention(
                reference=f"{parent.reference}-{index}",
                title=parent.title,
                description=parent.description,
                type=parent.type,
                urgency=parent.urgency,
                status=parent.status,
                scheduling_type=parent.scheduling_type,
                scheduled_date=parent.scheduled_date,
                assignment_mode=AssignmentMode.single,
                provider_guidelines=provider.provider_instructions,
                lot_id=parent.lot_id,
                building_id=parent.building_id,
                specific_location=parent.specific_location,
                team_id=parent.team_id,
                created_by=user.id,
                parent_intervention_id=parent.id
            )
            db.add(child)
            db.flush()

            for assignment in shared:
                InterventionService._add_assignment(
                    db, child, assignment.user_id, UserRole(assignment.role),
                    assigned_by=user.id, is_primary=assignment.is_primary,
                    requires_confirmation=assignment.requires_confirmation
                )
            InterventionService._add_assignment(
                db, child, provider.user_id, UserRole.prestataire, assigned_by=user.id,
                provider_instructions=provider.provider_instructions, is_primary=True
            )
            ConversationService.ensure_threads(db, child, user.id)
            children.append(child)

        db.commit()

        AuditLogger.log_action(
            db=db,
            action=ActionType.CREATE,
            entity_type=EntityType.INTERVENTION,
            description=f"{len(children)} intervention(s) enfant(s) créée(s) depuis {parent.reference}",
            user_id=user.id,
            entity_id=parent.id,
            details={"child_ids": [c.id for c in children]},
            request=request
        )
        return children

    @staticmethod
    def create_child_interventions(db: Session, parent_id: int, user: UserAuth, request=None) -> List[Intervention]:
        """Crée une intervention par prestataire pour une intervention en mode separate"""
        parent = QueryService.get_intervention(db, parent_id, user)
        InterventionService._require_manager(
            db, user, f"Création des interventions enfants refusée pour {parent_id}", parent_id, request
        )
        if not InterventionService._needs_fan_out(parent):
            raise ValidationError(
                "Le mode separate avec au moins deux prestataires est requis",
                details={"assignment_mode": AssignmentMode(parent.assignment_mode).value}
            )
        return InterventionService._fan_out(db, parent, user, request)

    # ==================== DEVIS ====================

    @staticmethod
    def request_quote(
        db: Session,
        intervention_id: int,
        provider_id: int,
        user: UserAuth,
        description: Optional[str] = None,
        request=None
    ) -> Quote:
        """Demande un devis à un prestataire : l'intervention passe en demande_de_devis"""
        intervention = QueryService.get_intervention(db, intervention_id, user)
        from_status = InterventionStatus(intervention.status)
        to_status = next_status(from_status, A.request_quote, user.role)

        provider = QueryService.get_team_user(db, provider_id, user.team_id)
        if UserRole(provider.role) != UserRole.prestataire:
            raise ValidationError("L'utilisateur n'est pas un prestataire", details={"provider_id": provider_id})

        InterventionService._add_assignment(db, intervention, provider.id, UserRole.prestataire, assigned_by=user.id)
        quote = Quote(
            intervention_id=intervention.id,
            provider_id=provider.id,
            requested_by=user.id,
            status=QuoteStatus.demande,
            description=description,
            team_id=intervention.team_id
        )
        intervention.quotes.append(quote)
        intervention.requires_quote = True
        intervention.status = to_status
        db.commit()
        db.refresh(quote)

        AuditLogger.log_transition(
            db=db,
            intervention_id=intervention.id,
            user_id=user.id,
            from_status=from_status.value,
            to_status=to_status.value,
            action=A.request_quote.value,
            details={"quote_id": quote.id, "provider_id": provider.id},
            request=request
        )
        UserNotificationService.notify_status_change(db, intervention, to_status, actor_id=user.id)
        return quote

    @staticmethod
    def _change_quote_status(
        db: Session,
        quote: Quote,
        from_statuses: Iterable[QuoteStatus],
        to_status: QuoteStatus,
        action: str,
        user: UserAuth,
        request=None
    ) -> Quote:
        current = QuoteStatus(quote.status)
        if current not in from_statuses:
            raise BusinessLogicErrorHandler.invalid_transition(current.value, action)

        quote.status = to_status
        db.commit()
        db.refresh(quote)

        AuditLogger.log_action(
            db=db,
            action=ActionType.UPDATE,
            entity_type=EntityType.QUOTE,
            description=f"Devis {quote.id}: {current.value} -> {to_status.value} ({action})",
            user_id=user.id,
            entity_id=quote.id,
            details={"intervention_id": quote.intervention_id},
            request=request
        )
        return quote

    @staticmethod
    def submit_quote(
        db: Session,
        quote_id: int,
        amount: Decimal,
        user: UserAuth,
        description: Optional[str] = None,
        request=None
    ) -> Quote:
        quote = QueryService.get_quote(db, quote_id, user)
        if quote.provider_id != user.id:
            raise PermissionDenied("Ce devis ne vous est pas adressé", details={"quote_id": quote.id})
        if amount is None or Decimal(str(amount)) < 0:
            raise ValidationError("Un montant positif est requis", details={"field": "amount"})

        quote.amount = amount
        if description:
            quote.description = description
        quote = InterventionService._change_quote_status(
            db, quote, {QuoteStatus.demande}, QuoteStatus.soumis, "submit_quote", user, request
        )
        UserNotificationService.create_bulk_notification(
            db,
            InterventionService._team_managers(db, quote.team_id),
            title="Devis reçu",
            message=f"Un devis de {quote.amount} € a été soumis",
            intervention_id=quote.intervention_id
        )
        return quote

    @staticmethod
    def accept_quote(db: Session, quote_id: int, user: UserAuth, request=None) -> Quote:
        """Accepte un devis soumis ; les autres devis en attente sont refusés"""
        quote = QueryService.get_quote(db, quote_id, user)
        InterventionService._require_manager(db, user, f"Acceptation du devis {quote_id} refusée", quote.intervention_id, request)

        current = QuoteStatus(quote.status)
        if current != QuoteStatus.soumis:
            raise BusinessLogicErrorHandler.invalid_transition(current.value, "accept_quote")

        for other in quote.intervention.quotes:
            if other.id != quote.id and QuoteStatus(other.status) in (QuoteStatus.demande, QuoteStatus.soumis):
                other.status = QuoteStatus.refuse
        quote.intervention.estimated_cost = quote.amount

        return InterventionService._change_quote_status(
            db, quote, {QuoteStatus.soumis}, QuoteStatus.accepte, "accept_quote", user, request
        )

    @staticmethod
    def reject_quote(db: Session, quote_id: int, user: UserAuth, request=None) -> Quote:
        quote = QueryService.get_quote(db, quote_id, user)
        InterventionService._require_manager(db, user, f"Refus du devis {quote_id} refusé", quote.intervention_id, request)
        return InterventionService._change_quote_status(
            db, quote, {QuoteStatus.soumis}, QuoteStatus.refuse, "reject_quote", user, request
        )

    @staticmethod
    def cancel_quote(db: Session, quote_id: int, user: UserAuth, request=None) -> Quote:
        quote = QueryService.get_quote(db, quote_id, user)
        InterventionService._require_manager(db, user, f"Annulation du devis {quote_id} refusée", quote.intervention_id, request)
        return InterventionService._change_quote_status(
            db, quote, {QuoteStatus.demande, QuoteStatus.soumis}, QuoteStatus.annule, "cancel_quote", user, request
        )

    # ==================== TABLEAU DE BORD ====================

    @staticmethod
    def dashboard_stats(db: Session, user: UserAuth) -> Dict[str, Any]:
        InterventionService._require_manager(db, user, "Accès au tableau de bord refusé")
        team_id = user.team_id
        now = datetime.utcnow()
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

        base = db.query(Intervention).filter(Intervention.team_id == team_id)

        return {
            "total": base.count(),
            "by_status": QueryService.count_by(db, team_id, Intervention.status),
            "by_urgency": QueryService.count_by(db, team_id, Intervention.urgency),
            "by_type": QueryService.count_by(db, team_id, Intervention.type),
            "pending_quotes": db.query(Quote).filter(
                Quote.team_id == team_id,
                Quote.status.in_([QuoteStatus.demande, QuoteStatus.soumis])
            ).count(),
            "upcoming": base.filter(
                Intervention.status == InterventionStatus.planifiee,
                Intervention.scheduled_date > now
            ).count(),
            "completed_this_month": base.filter(
                Intervention.status == InterventionStatus.cloturee_par_gestionnaire,
                Intervention.finalized_at >= month_start
            ).count(),
        }
