from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from typing import Generic, List, Optional, Dict, TypeVar
from datetime import datetime, date, time
from decimal import Decimal

# Import centralisé des enums
from enums import (
    UserRole, InterventionStatus, InterventionUrgency, InterventionType,
    SchedulingType, AssignmentMode, ConfirmationStatus, TimeSlotStatus,
    SlotResponse, QuoteStatus, ThreadType, ParticipantGroup, InterventionAction
)
from constants import (
    MAX_PROVIDER_INSTRUCTIONS_LENGTH, MAX_SLOTS_PER_PROPOSAL, MAX_MESSAGE_LENGTH,
    MIN_TENANT_SATISFACTION, MAX_TENANT_SATISFACTION
)

T = TypeVar("T")


class ActionResult(BaseModel, Generic[T]):
    """Format de réponse commun à toutes les actions : {success, data | error}"""
    success: bool = True
    data: Optional[T] = None
    error: Optional[str] = None


# ==================== UTILISATEURS ====================

class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: EmailStr
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: UserRole
    team_id: int


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


# ==================== INTERVENTIONS ====================

class InterventionCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255, description="Titre")
    description: str = Field(..., min_length=1, description="Description du problème")
    type: InterventionType = Field(InterventionType.autre, description="Catégorie")
    urgency: InterventionUrgency = Field(InterventionUrgency.normale, description="Urgence")
    lot_id: Optional[int] = None
    building_id: Optional[int] = None
    specific_location: Optional[str] = Field(None, max_length=255)
    tenant_comment: Optional[str] = None
    scheduling_type: SchedulingType = SchedulingType.slots

    @field_validator('title', 'description')
    @classmethod
    def validate_not_blank(cls, v):
        if not v.strip():
            raise ValueError('Ce champ ne peut pas être vide')
        return v.strip()

    @model_validator(mode='after')
    def validate_location(self):
        if self.lot_id is None and self.building_id is None:
            raise ValueError('Un lot ou un immeuble est requis')
        return self


class InterventionUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    type: Optional[InterventionType] = None
    urgency: Optional[InterventionUrgency] = None
    specific_location: Optional[str] = Field(None, max_length=255)
    tenant_comment: Optional[str] = None
    manager_comment: Optional[str] = None
    estimated_cost: Optional[Decimal] = Field(None, ge=0)
    provider_guidelines: Optional[str] = Field(None, max_length=MAX_PROVIDER_INSTRUCTIONS_LENGTH)

    @field_validator('title', 'description', 'type', 'urgency')
    @classmethod
    def validate_not_null(cls, v):
        # null effacerait une colonne obligatoire
        if v is None:
            raise ValueError('Ce champ ne peut pas être effacé')
        return v

    @field_validator('description')
    @classmethod
    def validate_not_blank(cls, v):
        if not v.strip():
            raise ValueError('Ce champ ne peut pas être vide')
        return v.strip()


class InterventionFilters(BaseModel):
    status: Optional[InterventionStatus] = None
    urgency: Optional[InterventionUrgency] = None
    type: Optional[InterventionType] = None
    building_id: Optional[int] = None
    lot_id: Optional[int] = None


class InterventionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    reference: Optional[str] = None
    title: str
    description: str
    type: InterventionType
    urgency: InterventionUrgency
    status: InterventionStatus
    scheduling_type: SchedulingType
    scheduled_date: Optional[datetime] = None
    selected_slot_id: Optional[int] = None
    assignment_mode: AssignmentMode
    lot_id: Optional[int] = None
    building_id: Optional[int] = None
    team_id: int
    created_by: Optional[int] = None
    parent_intervention_id: Optional[int] = None
    specific_location: Optional[str] = None
    tenant_comment: Optional[str] = None
    manager_comment: Optional[str] = None
    provider_comment: Optional[str] = None
    cancellation_reason: Optional[str] = None
    requires_quote: bool = False
    estimated_cost: Optional[Decimal] = None
    final_cost: Optional[Decimal] = None
    tenant_satisfaction: Optional[int] = None
    started_at: Optional[datetime] = None
    completed_date: Optional[datetime] = None
    validated_at: Optional[datetime] = None
    finalized_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ==================== DÉCLENCHEURS DU WORKFLOW ====================

class ApprovePayload(BaseModel):
    comment: Optional[str] = None


class ReasonPayload(BaseModel):
    """Rejet, annulation ou contestation : une raison est demandée"""
    reason: Optional[str] = None


class RequestQuotePayload(BaseModel):
    provider_id: int
    description: Optional[str] = None


class CompleteWorkPayload(BaseModel):
    report: Optional[str] = None


class ValidateCompletionPayload(BaseModel):
    satisfaction: Optional[int] = Field(None, ge=MIN_TENANT_SATISFACTION, le=MAX_TENANT_SATISFACTION)
    comment: Optional[str] = None


class FinalizePayload(BaseModel):
    final_cost: Optional[Decimal] = Field(None, ge=0)
    comment: Optional[str] = None


class ConfirmSchedulePayload(BaseModel):
    scheduled_date: Optional[datetime] = None


class ScheduleFixedPayload(BaseModel):
    scheduled_date: datetime


# ==================== CRÉNEAUX ====================

class TimeSlotIn(BaseModel):
    slot_date: date
    start_time: time
    end_time: time
    notes: Optional[str] = None

    @model_validator(mode='after')
    def validate_range(self):
        if self.end_time <= self.start_time:
            raise ValueError("L'heure de fin doit être postérieure à l'heure de début")
        return self


class ProposeSlotsPayload(BaseModel):
    slots: List[TimeSlotIn] = Field(..., min_length=1, max_length=MAX_SLOTS_PER_PROPOSAL)


class SlotResponsePayload(BaseModel):
    response: SlotResponse
    notes: Optional[str] = None


class TimeSlotResponseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    time_slot_id: int
    user_id: int
    user_role: UserRole
    response: SlotResponse
    notes: Optional[str] = None


class TimeSlotOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    intervention_id: int
    slot_date: date
    start_time: time
    end_time: time
    proposed_by: int
    status: TimeSlotStatus
    is_selected: bool = False
    notes: Optional[str] = None
    responses: List[TimeSlotResponseOut] = []


class SlotResponseResult(BaseModel):
    """Résultat d'une réponse : le créneau et l'éventuelle confirmation automatique"""
    slot: TimeSlotOut
    intervention_status: InterventionStatus
    auto_confirmed: bool = False
    scheduled_date: Optional[datetime] = None


# ==================== ASSIGNATIONS ====================

class AssignUserPayload(BaseModel):
    user_id: int
    role: UserRole
    requires_confirmation: bool = False
    provider_instructions: Optional[str] = Field(None, max_length=MAX_PROVIDER_INSTRUCTIONS_LENGTH)


class AssignProvidersPayload(BaseModel):
    provider_ids: List[int] = Field(..., min_length=1)
    mode: AssignmentMode
    provider_instructions: Optional[Dict[int, str]] = None


class ProviderInstructionsPayload(BaseModel):
    instructions: str = Field(..., max_length=MAX_PROVIDER_INSTRUCTIONS_LENGTH)


class AssignmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    intervention_id: int
    user_id: int
    role: UserRole
    is_primary: bool = False
    requires_confirmation: bool = False
    confirmation_status: Optional[ConfirmationStatus] = None
    provider_instructions: Optional[str] = None


# ==================== DEVIS ====================

class QuoteSubmitPayload(BaseModel):
    amount: Decimal = Field(..., ge=0)
    description: Optional[str] = None


class QuoteOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    intervention_id: int
    provider_id: int
    status: QuoteStatus
    amount: Optional[Decimal] = None
    description: Optional[str] = None
    created_at: Optional[datetime] = None


# ==================== CONVERSATIONS ====================

class MessageCreate(BaseModel):
    content: str = Field(..., max_length=MAX_MESSAGE_LENGTH)


class MessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    thread_id: int
    user_id: int
    content: str
    created_at: Optional[datetime] = None


class ThreadOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    intervention_id: int
    thread_type: ThreadType
    participant_id: Optional[int] = None
    title: Optional[str] = None
    created_at: Optional[datetime] = None


# ==================== VUES ====================

class InterventionView(BaseModel):
    """Vue d'une intervention filtrée selon le rôle du lecteur"""
    intervention: InterventionOut
    participants: Dict[ParticipantGroup, List[AssignmentOut]]
    time_slots: List[TimeSlotOut]
    quotes: List[QuoteOut]
    visible_thread_types: List[ThreadType]
    allowed_actions: List[InterventionAction]


class NotificationsReadPayload(BaseModel):
    notification_ids: List[int] = []
    mark_all: bool = False


class ChildInterventionsResult(BaseModel):
    parent_id: int
    child_interventions: List[InterventionOut]
    child_count: int


class DashboardStats(BaseModel):
    total: int
    by_status: Dict[str, int]
    by_urgency: Dict[str, int]
    by_type: Dict[str, int]
    pending_quotes: int
    upcoming: int
    completed_this_month: int
