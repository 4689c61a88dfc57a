from sqlalchemy import (
    Column, Integer, String, Boolean, ForeignKey, Enum, DateTime, Date, Time,
    Text, Numeric, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship
from database import Base
import datetime

# Import centralisé des enums
from enums import (
    UserRole, InterventionStatus, InterventionUrgency, InterventionType,
    SchedulingType, AssignmentMode, ConfirmationStatus, TimeSlotStatus,
    SlotResponse, QuoteStatus, ThreadType, ActionType, EntityType
)


class Team(Base):
    __tablename__ = "teams"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=datetime.datetime.utcnow)

    members = relationship("UserAuth", back_populates="team")
    buildings = relationship("Building", back_populates="team")


class UserAuth(Base):
    __tablename__ = "user_auth"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True)
    hashed_password = Column(String(255), nullable=True)
    first_name = Column(String(100))
    last_name = Column(String(100))
    phone = Column(String(50), nullable=True)
    role = Column(Enum(UserRole), nullable=False, default=UserRole.locataire)
    team_id = Column(Integer, ForeignKey("teams.id"), nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.datetime.utcnow)

    team = relationship("Team", back_populates="members")
    assignments = relationship("InterventionAssignment", back_populates="user", foreign_keys="InterventionAssignment.user_id")


class Building(Base):
    __tablename__ = "buildings"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255))
    street_number = Column(String(20))
    street_name = Column(String(255))
    postal_code = Column(String(20))
    city = Column(String(100))
    country = Column(String(100), default="France")
    team_id = Column(Integer, ForeignKey("teams.id"), nullable=False)

    team = relationship("Team", back_populates="buildings")
    lots = relationship("Lot", back_populates="building")


class Lot(Base):
    __tablename__ = "lots"

    id = Column(Integer, primary_key=True, index=True)
    reference = Column(String(100))
    floor = Column(Integer, nullable=True)
    building_id = Column(Integer, ForeignKey("buildings.id"), nullable=True)
    team_id = Column(Integer, ForeignKey("teams.id"), nullable=False)

    building = relationship("Building", back_populates="lots")


class Intervention(Base):
    __tablename__ = "interventions"

    id = Column(Integer, primary_key=True, index=True)
    reference = Column(String(50), unique=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    type = Column(Enum(InterventionType), default=InterventionType.autre)
    urgency = Column(Enum(InterventionUrgency), default=InterventionUrgency.normale)
    status = Column(Enum(InterventionStatus), nullable=False, default=InterventionStatus.demande)
    specific_location = Column(String(255), nullable=True)

    # Planification
    scheduling_type = Column(Enum(SchedulingType), default=SchedulingType.slots)
    scheduled_date = Column(DateTime, nullable=True)
    selected_slot_id = Column(Integer, nullable=True)

    # Assignation
    assignment_mode = Column(Enum(AssignmentMode), default=AssignmentMode.single)
    provider_guidelines = Column(Text, nullable=True)

    # Localisation et équipe
    lot_id = Column(Integer, ForeignKey("lots.id"), nullable=True)
    building_id = Column(Integer, ForeignKey("buildings.id"), nullable=True)
    team_id = Column(Integer, ForeignKey("teams.id"), nullable=False)
    created_by = Column(Integer, ForeignKey("user_auth.id"), nullable=True)
    parent_intervention_id = Column(Integer, ForeignKey("interventions.id"), nullable=True)

    # Commentaires par rôle
    tenant_comment = Column(Text, nullable=True)
    manager_comment = Column(Text, nullable=True)
    provider_comment = Column(Text, nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    # Devis et coûts
    requires_quote = Column(Boolean, default=False)
    estimated_cost = Column(Numeric(10, 2), nullable=True)
    final_cost = Column(Numeric(10, 2), nullable=True)
    tenant_satisfaction = Column(Integer, nullable=True)

    # Dates du cycle de vie
    started_at = Column(DateTime, nullable=True)
    completed_date = Column(DateTime, nullable=True)
    validated_at = Column(DateTime, nullable=True)
    finalized_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.datetime.utcnow, onupdate=datetime.datetime.utcnow)

    lot = relationship("Lot")
    building = relationship("Building")
    assignments = relationship("InterventionAssignment", back_populates="intervention", cascade="all, delete-orphan")
    time_slots = relationship(
        "InterventionTimeSlot",
        back_populates="intervention",
        cascade="all, delete-orphan",
        foreign_keys="InterventionTimeSlot.intervention_id",
    )
    quotes = relationship("Quote", back_populates="intervention", cascade="all, delete-orphan")
    threads = relationship("ConversationThread", back_populates="intervention", cascade="all, delete-orphan")
    parent = relationship("Intervention", remote_side=[id], backref="children")

    __table_args__ = (
        Index('idx_intervention_team_status', 'team_id', 'status'),
    )


class InterventionAssignment(Base):
    __tablename__ = "intervention_assignments"

    id = Column(Integer, primary_key=True, index=True)
    intervention_id = Column(Integer, ForeignKey("interventions.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("user_auth.id"), nullable=False)
    role = Column(Enum(UserRole), nullable=False)
    is_primary = Column(Boolean, default=False)
    requires_confirmation = Column(Boolean, default=False)
    confirmation_status = Column(Enum(ConfirmationStatus), nullable=True)
    provider_instructions = Column(Text, nullable=True)
    assigned_by = Column(Integer, ForeignKey("user_auth.id"), nullable=True)
    assigned_at = Column(DateTime, default=datetime.datetime.utcnow)

    intervention = relationship("Intervention", back_populates="assignments")
    user = relationship("UserAuth", back_populates="assignments", foreign_keys=[user_id])

    __table_args__ = (
        UniqueConstraint('intervention_id', 'user_id', 'role', name='uq_assignment_user_role'),
    )


class InterventionTimeSlot(Base):
    __tablename__ = "intervention_time_slots"

    id = Column(Integer, primary_key=True, index=True)
    intervention_id = Column(Integer, ForeignKey("interventions.id"), nullable=False)
    slot_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    proposed_by = Column(Integer, ForeignKey("user_auth.id"), nullable=False)
    status = Column(Enum(TimeSlotStatus), nullable=False, default=TimeSlotStatus.proposed)
    is_selected = Column(Boolean, default=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.datetime.utcnow)

    intervention = relationship("Intervention", back_populates="time_slots", foreign_keys=[intervention_id])
    responses = relationship("TimeSlotResponse", back_populates="time_slot", cascade="all, delete-orphan")

    @property
    def starts_at(self) -> datetime.datetime:
        return datetime.datetime.combine(self.slot_date, self.start_time)


class TimeSlotResponse(Base):
    __tablename__ = "time_slot_responses"

    id = Column(Integer, primary_key=True, index=True)
    time_slot_id = Column(Integer, ForeignKey("intervention_time_slots.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("user_auth.id"), nullable=False)
    user_role = Column(Enum(UserRole), nullable=False)
    response = Column(Enum(SlotResponse), nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.datetime.utcnow, onupdate=datetime.datetime.utcnow)

    time_slot = relationship("InterventionTimeSlot", back_populates="responses")

    __table_args__ = (
        UniqueConstraint('time_slot_id', 'user_id', name='uq_slot_response_user'),
    )


class Quote(Base):
    __tablename__ = "intervention_quotes"

    id = Column(Integer, primary_key=True, index=True)
    intervention_id = Column(Integer, ForeignKey("interventions.id"), nullable=False)
    provider_id = Column(Integer, ForeignKey("user_auth.id"), nullable=False)
    requested_by = Column(Integer, ForeignKey("user_auth.id"), nullable=True)
    status = Column(Enum(QuoteStatus), nullable=False, default=QuoteStatus.demande)
    amount = Column(Numeric(10, 2), nullable=True)
    description = Column(Text, nullable=True)
    team_id = Column(Integer, ForeignKey("teams.id"), nullable=False)
    created_at = Column(DateTime, default=datetime.datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.datetime.utcnow, onupdate=datetime.datetime.utcnow)

    intervention = relationship("Intervention", back_populates="quotes")


class ConversationThread(Base):
    __tablename__ = "conversation_threads"

    id = Column(Integer, primary_key=True, index=True)
    intervention_id = Column(Integer, ForeignKey("interventions.id"), nullable=False)
    thread_type = Column(Enum(ThreadType), nullable=False)
    # Destinataire d'un fil privé (prestataire ou locataire), NULL pour le fil de groupe
    participant_id = Column(Integer, ForeignKey("user_auth.id"), nullable=True)
    title = Column(String(255))
    created_by = Column(Integer, ForeignKey("user_auth.id"), nullable=True)
    team_id = Column(Integer, ForeignKey("teams.id"), nullable=False)
    created_at = Column(DateTime, default=datetime.datetime.utcnow)

    intervention = relationship("Intervention", back_populates="threads")
    messages = relationship(
        "ConversationMessage",
        back_populates="thread",
        cascade="all, delete-orphan",
        order_by="ConversationMessage.id",
    )

    __table_args__ = (
        UniqueConstraint('intervention_id', 'thread_type', 'participant_id', name='uq_thread_participant'),
    )


class ConversationMessage(Base):
    __tablename__ = "conversation_messages"

    id = Column(Integer, primary_key=True, index=True)
    thread_id = Column(Integer, ForeignKey("conversation_threads.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("user_auth.id"), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.datetime.utcnow)

    thread = relationship("ConversationThread", back_populates="messages")
    author = relationship("UserAuth")


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("user_auth.id"), nullable=False)
    intervention_id = Column(Integer, ForeignKey("interventions.id"), nullable=True)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    is_read = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.datetime.utcnow)

    __table_args__ = (
        Index('idx_notification_user_read', 'user_id', 'is_read'),
    )


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("user_auth.id"), nullable=True)
    action = Column(Enum(ActionType), nullable=False)
    entity_type = Column(Enum(EntityType), nullable=False)
    entity_id = Column(Integer, nullable=True)
    description = Column(Text, nullable=False)
    details = Column(Text, nullable=True)  # JSON
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(Text, nullable=True)
    endpoint = Column(String(255), nullable=True)
    method = Column(String(10), nullable=True)
    status_code = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.datetime.utcnow)

    __table_args__ = (
        Index('idx_audit_entity', 'entity_type', 'entity_id'),
    )
