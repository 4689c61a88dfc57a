"""
Routes API pour les interventions
Chaque déclencheur retourne {success, data} ; les erreurs sont mises en forme
par les gestionnaires d'exceptions de l'application.
"""
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session
from typing import List, Optional

from database import get_db
from auth import get_current_user
from models import UserAuth
from enums import (
    InterventionAction, InterventionStatus, InterventionUrgency, InterventionType, UserRole
)
from constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from services.intervention_service import InterventionService
import schemas

router = APIRouter(prefix="/api/interventions", tags=["interventions"])


def _result(schema, obj) -> dict:
    if isinstance(obj, list):
        return {"success": True, "data": [schema.model_validate(item) for item in obj]}
    return {"success": True, "data": schema.model_validate(obj)}


def _transition(db, intervention_id, action, current_user, request, payload=None) -> dict:
    intervention = InterventionService.transition(
        db, intervention_id, action, current_user,
        payload.model_dump() if payload is not None else None,
        request
    )
    return _result(schemas.InterventionOut, intervention)


# ==================== LECTURE ====================

@router.get("/", response_model=schemas.ActionResult[List[schemas.InterventionOut]])
async def list_interventions(
    status: Optional[InterventionStatus] = None,
    urgency: Optional[InterventionUrgency] = None,
    type: Optional[InterventionType] = None,
    building_id: Optional[int] = None,
    lot_id: Optional[int] = None,
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    current_user: UserAuth = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Liste les interventions visibles par l'utilisateur"""
    filters = schemas.InterventionFilters(
        status=status, urgency=urgency, type=type, building_id=building_id, lot_id=lot_id
    )
    interventions = InterventionService.list_interventions(
        db, current_user, filters.model_dump(), limit, offset
    )
    return _result(schemas.InterventionOut, interventions)


@router.get("/mine", response_model=schemas.ActionResult[List[schemas.InterventionOut]])
async def get_my_interventions(
    status: Optional[InterventionStatus] = None,
    current_user: UserAuth = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Interventions auxquelles l'utilisateur est assigné"""
    return _result(schemas.InterventionOut, InterventionService.get_my_interventions(db, current_user, status))


@router.get("/dashboard", response_model=schemas.ActionResult[schemas.DashboardStats])
async def get_dashboard_stats(
    current_user: UserAuth = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return {"success": True, "data": InterventionService.dashboard_stats(db, current_user)}


# ==================== CRÉNEAUX ====================

@router.post("/time-slots/{slot_id}/respond", response_model=schemas.ActionResult[schemas.SlotResponseResult])
async def respond_to_slot(
    slot_id: int,
    payload: schemas.SlotResponsePayload,
    request: Request,
    current_user: UserAuth = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Accepte ou refuse un créneau ; peut planifier automatiquement l'intervention"""
    result = InterventionService.respond_to_slot(
        db, slot_id, current_user, payload.response, payload.notes, request
    )
    return {
        "success": True,
        "data": schemas.SlotResponseResult(
            slot=schemas.TimeSlotOut.model_validate(result["slot"]),
            intervention_status=result["intervention_status"],
            auto_confirmed=result["auto_confirmed"],
            scheduled_date=result["scheduled_date"],
        )
    }


@router.delete("/time-slots/{slot_id}/response", response_model=schemas.ActionResult[schemas.TimeSlotOut])
async def withdraw_slot_response(
    slot_id: int,
    request: Request,
    current_user: UserAuth = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    slot = InterventionService.withdraw_response(db, slot_id, current_user, request)
    return _result(schemas.TimeSlotOut, slot)


@router.post("/time-slots/{slot_id}/cancel", response_model=schemas.ActionResult[schemas.TimeSlotOut])
async def cancel_slot(
    slot_id: int,
    request: Request,
    current_user: UserAuth = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    slot = InterventionService.cancel_slot(db, slot_id, current_user, request)
    return _result(schemas.TimeSlotOut, slot)


@router.post("/time-slots/{slot_id}/select", response_model=schemas.ActionResult[schemas.InterventionOut])
async def select_slot(
    slot_id: int,
    request: Request,
    current_user: UserAuth = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Un gestionnaire retient un créneau"""
    intervention = InterventionService.select_slot(db, slot_id, current_user, request)
    return _result(schemas.InterventionOut, intervention)


# ==================== DEVIS ====================

@router.post("/quotes/{quote_id}/submit", response_model=schemas.ActionResult[schemas.QuoteOut])
async def submit_quote(
    quote_id: int,
    payload: schemas.QuoteSubmitPayload,
    request: Request,
    current_user: UserAuth = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    quote = InterventionService.submit_quote(
        db, quote_id, payload.amount, current_user, payload.description, request
    )
    return _result(schemas.QuoteOut, quote)


@router.post("/quotes/{quote_id}/accept", response_model=schemas.ActionResult[schemas.QuoteOut])
async def accept_quote(
    quote_id: int,
    request: Request,
    current_user: UserAuth = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return _result(schemas.QuoteOut, InterventionService.accept_quote(db, quote_id, current_user, request))


@router.post("/quotes/{quote_id}/reject", response_model=schemas.ActionResult[schemas.QuoteOut])
async def reject_quote(
    quote_id: int,
    request: Request,
    current_user: UserAuth = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return _result(schemas.QuoteOut, InterventionService.reject_quote(db, quote_id, current_user, request))


@router.post("/quotes/{quote_id}/cancel", response_model=schemas.ActionResult[schemas.QuoteOut])
async def cancel_quote(
    quote_id: int,
    request: Request,
    current_user: UserAuth = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return _result(schemas.QuoteOut, InterventionService.cancel_quote(db, quote_id, current_user, request))


# ==================== CRUD ====================

@router.post("/", response_model=schemas.ActionResult[schemas.InterventionOut])
async def create_intervention(
    data: schemas.InterventionCreate,
    request: Request,
    current_user: UserAuth = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Crée une demande d'intervention"""
    intervention = InterventionService.create_intervention(db, data, current_user, request)
    return _result(schemas.InterventionOut, intervention)


@router.get("/{intervention_id}", response_model=schemas.ActionResult[schemas.InterventionOut])
async def get_intervention(
    intervention_id: int,
    current_user: UserAuth = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return _result(schemas.InterventionOut, InterventionService.get_intervention(db, intervention_id, current_user))


@router.get("/{intervention_id}/view", response_model=schemas.ActionResult[schemas.InterventionView])
async def get_intervention_view(
    intervention_id: int,
    current_user: UserAuth = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Vue filtrée selon le rôle : participants, créneaux, devis et fils visibles"""
    view = InterventionService.get_intervention_view(db, intervention_id, current_user)
    data = schemas.InterventionView(
        intervention=schemas.InterventionOut.model_validate(view["intervention"]),
        participants={
            group: [schemas.AssignmentOut.model_validate(a) for a in assignments]
            for group, assignments in view["participants"].items()
        },
        time_slots=[schemas.TimeSlotOut.model_validate(s) for s in view["time_slots"]],
        quotes=[schemas.QuoteOut.model_validate(q) for q in view["quotes"]],
        visible_thread_types=view["visible_thread_types"],
        allowed_actions=view["allowed_actions"],
    )
    return {"success": True, "data": data}


@router.put("/{intervention_id}", response_model=schemas.ActionResult[schemas.InterventionOut])
async def update_intervention(
    intervention_id: int,
    data: schemas.InterventionUpdate,
    request: Request,
    current_user: UserAuth = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    intervention = InterventionService.update_intervention(db, intervention_id, data, current_user, request)
    return _result(schemas.InterventionOut, intervention)


# ==================== DÉCLENCHEURS ====================

@router.post("/{intervention_id}/approve", response_model=schemas.ActionResult[schemas.InterventionOut])
async def approve_intervention(
    intervention_id: int,
    request: Request,
    payload: Optional[schemas.ApprovePayload] = None,
    current_user: UserAuth = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return _transition(db, intervention_id, InterventionAction.approve, current_user, request, payload)


@router.post("/{intervention_id}/reject", response_model=schemas.ActionResult[schemas.InterventionOut])
async def reject_intervention(
    intervention_id: int,
    request: Request,
    payload: Optional[schemas.ReasonPayload] = None,
    current_user: UserAuth = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return _transition(db, intervention_id, InterventionAction.reject, current_user, request, payload)


@router.post("/{intervention_id}/request-quote", response_model=schemas.ActionResult[schemas.QuoteOut])
async def request_quote(
    intervention_id: int,
    payload: schemas.RequestQuotePayload,
    request: Request,
    current_user: UserAuth = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    quote = InterventionService.request_quote(
        db, intervention_id, payload.provider_id, current_user, payload.description, request
    )
    return _result(schemas.QuoteOut, quote)


@router.post("/{intervention_id}/start-planning", response_model=schemas.ActionResult[schemas.InterventionOut])
async def start_planning(
    intervention_id: int,
    request: Request,
    current_user: UserAuth = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return _transition(db, intervention_id, InterventionAction.start_planning, current_user, request)


@router.post("/{intervention_id}/confirm-schedule", response_model=schemas.ActionResult[schemas.InterventionOut])
async def confirm_schedule(
    intervention_id: int,
    request: Request,
    payload: Optional[schemas.ConfirmSchedulePayload] = None,
    current_user: UserAuth = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return _transition(db, intervention_id, InterventionAction.confirm_schedule, current_user, request, payload)


@router.post("/{intervention_id}/schedule-fixed", response_model=schemas.ActionResult[schemas.InterventionOut])
async def schedule_fixed(
    intervention_id: int,
    payload: schemas.ScheduleFixedPayload,
    request: Request,
    current_user: UserAuth = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    intervention = InterventionService.schedule_fixed(
        db, intervention_id, payload.scheduled_date, current_user, request
    )
    return _result(schemas.InterventionOut, intervention)


@router.post("/{intervention_id}/start-work", response_model=schemas.ActionResult[schemas.InterventionOut])
async def start_work(
    intervention_id: int,
    request: Request,
    current_user: UserAuth = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return _transition(db, intervention_id, InterventionAction.start_work, current_user, request)


@router.post("/{intervention_id}/complete-work", response_model=schemas.ActionResult[schemas.InterventionOut])
async def complete_work(
    intervention_id: int,
    request: Request,
    payload: Optional[schemas.CompleteWorkPayload] = None,
    current_user: UserAuth = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return _transition(db, intervention_id, InterventionAction.complete_work, current_user, request, payload)


@router.post("/{intervention_id}/validate-completion", response_model=schemas.ActionResult[schemas.InterventionOut])
async def validate_completion(
    intervention_id: int,
    request: Request,
    payload: Optional[schemas.ValidateCompletionPayload] = None,
    current_user: UserAuth = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return _transition(db, intervention_id, InterventionAction.validate_completion, current_user, request, payload)


@router.post("/{intervention_id}/contest-completion", response_model=schemas.ActionResult[schemas.InterventionOut])
async def contest_completion(
    intervention_id: int,
    request: Request,
    payload: Optional[schemas.ReasonPayload] = None,
    current_user: UserAuth = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return _transition(db, intervention_id, InterventionAction.contest_completion, current_user, request, payload)


@router.post("/{intervention_id}/finalize", response_model=schemas.ActionResult[schemas.InterventionOut])
async def finalize_intervention(
    intervention_id: int,
    request: Request,
    payload: Optional[schemas.FinalizePayload] = None,
    current_user: UserAuth = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return _transition(db, intervention_id, InterventionAction.finalize, current_user, request, payload)


@router.post("/{intervention_id}/cancel", response_model=schemas.ActionResult[schemas.InterventionOut])
async def cancel_intervention(
    intervention_id: int,
    request: Request,
    payload: Optional[schemas.ReasonPayload] = None,
    current_user: UserAuth = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return _transition(db, intervention_id, InterventionAction.cancel, current_user, request, payload)


@router.post("/{intervention_id}/time-slots", response_model=schemas.ActionResult[List[schemas.TimeSlotOut]])
async def propose_slots(
    intervention_id: int,
    payload: schemas.ProposeSlotsPayload,
    request: Request,
    current_user: UserAuth = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Un prestataire propose des créneaux"""
    slots = InterventionService.propose_slots(db, intervention_id, payload.slots, current_user, request)
    return _result(schemas.TimeSlotOut, slots)


# ==================== ASSIGNATIONS ====================

@router.post("/{intervention_id}/assignments", response_model=schemas.ActionResult[schemas.AssignmentOut])
async def assign_user(
    intervention_id: int,
    payload: schemas.AssignUserPayload,
    request: Request,
    current_user: UserAuth = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    assignment = InterventionService.assign_user(
        db, intervention_id, payload.user_id, payload.role, current_user,
        requires_confirmation=payload.requires_confirmation,
        provider_instructions=payload.provider_instructions,
        request=request
    )
    return _result(schemas.AssignmentOut, assignment)


@router.delete("/{intervention_id}/assignments/{user_id}", response_model=schemas.ActionResult[None])
async def unassign_user(
    intervention_id: int,
    user_id: int,
    role: UserRole,
    request: Request,
    current_user: UserAuth = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    InterventionService.unassign_user(db, intervention_id, user_id, role, current_user, request)
    return {"success": True, "data": None}


@router.post("/{intervention_id}/providers", response_model=schemas.ActionResult[List[schemas.AssignmentOut]])
async def assign_multiple_providers(
    intervention_id: int,
    payload: schemas.AssignProvidersPayload,
    request: Request,
    current_user: UserAuth = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    assignments = InterventionService.assign_multiple_providers(
        db, intervention_id, payload.provider_ids, payload.mode, current_user,
        payload.provider_instructions, request
    )
    return _result(schemas.AssignmentOut, assignments)


@router.put(
    "/{intervention_id}/providers/{provider_id}/instructions",
    response_model=schemas.ActionResult[schemas.AssignmentOut]
)
async def update_provider_instructions(
    intervention_id: int,
    provider_id: int,
    payload: schemas.ProviderInstructionsPayload,
    request: Request,
    current_user: UserAuth = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    assignment = InterventionService.update_provider_instructions(
        db, intervention_id, provider_id, payload.instructions, current_user, request
    )
    return _result(schemas.AssignmentOut, assignment)


@router.post("/{intervention_id}/children", response_model=schemas.ActionResult[schemas.ChildInterventionsResult])
async def create_child_interventions(
    intervention_id: int,
    request: Request,
    current_user: UserAuth = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Démultiplie une intervention separate en une intervention par prestataire"""
    children = InterventionService.create_child_interventions(db, intervention_id, current_user, request)
    return {
        "success": True,
        "data": schemas.ChildInterventionsResult(
            parent_id=intervention_id,
            child_interventions=[schemas.InterventionOut.model_validate(c) for c in children],
            child_count=len(children),
        )
    }
