from datetime import date, datetime, time, timedelta
from decimal import Decimal

import pydantic
import pytest

import models
import schemas
from enums import (
    ActionType, AssignmentMode, InterventionAction, InterventionStatus,
    QuoteStatus, SchedulingType, SlotResponse, ThreadType, TimeSlotStatus, UserRole
)
from error_handlers import InvalidTransition, NotFound, PermissionDenied, ValidationError
from services.intervention_service import InterventionService

A = InterventionAction
S = InterventionStatus


def _status(db, intervention_id):
    db.expire_all()
    return db.get(models.Intervention, intervention_id).status


class TestCreateIntervention:

    def test_new_request_defaults(self, db_session, make_intervention, tenant, manager, lot):
        intervention = make_intervention(tenant)

        assert intervention.status == S.demande
        assert intervention.reference.startswith("INT-")
        assert intervention.building_id == lot.building_id
        assert intervention.team_id == tenant.team_id
        assert [(a.user_id, a.role) for a in intervention.assignments] == [(tenant.id, UserRole.locataire)]
        assert {t.thread_type for t in intervention.threads} == {ThreadType.group, ThreadType.tenant_to_managers}

        notified = db_session.query(models.Notification).filter_by(user_id=manager.id).all()
        assert len(notified) == 1

    def test_references_are_unique(self, make_intervention, tenant):
        first = make_intervention(tenant)
        second = make_intervention(tenant)
        assert first.reference != second.reference

    def test_provider_cannot_create(self, make_intervention, provider):
        with pytest.raises(PermissionDenied):
            make_intervention(provider)

    def test_location_of_another_team_is_not_found(self, db_session, make_intervention, outsider, lot):
        with pytest.raises(NotFound):
            make_intervention(outsider, lot_id=lot.id)

    def test_admin_is_assigned_as_manager(self, make_intervention, admin):
        intervention = make_intervention(admin)
        assert intervention.assignments[0].role == UserRole.gestionnaire


class TestTransitions:

    def test_approve_twice_scenario(self, db_session, make_intervention, tenant, manager):
        intervention = make_intervention(tenant)
        assert intervention.type.value == "plomberie"
        assert intervention.urgency.value == "haute"

        approved = InterventionService.transition(
            db_session, intervention.id, A.approve, manager, {"comment": "OK pour moi"}
        )
        assert approved.status == S.approuvee
        assert approved.manager_comment == "OK pour moi"

        with pytest.raises(InvalidTransition):
            InterventionService.transition(db_session, intervention.id, A.approve, manager)
        assert _status(db_session, intervention.id) == S.approuvee

    def test_wrong_role_leaves_status_unchanged(self, db_session, make_intervention, tenant):
        intervention = make_intervention(tenant)

        with pytest.raises(PermissionDenied):
            InterventionService.transition(db_session, intervention.id, A.approve, tenant)

        assert _status(db_session, intervention.id) == S.demande
        denied = db_session.query(models.AuditLog).filter_by(action=ActionType.ACCESS_DENIED).count()
        assert denied == 1

    def test_transition_is_audited(self, db_session, make_intervention, tenant, manager):
        intervention = make_intervention(tenant)
        InterventionService.transition(db_session, intervention.id, A.approve, manager)

        log = db_session.query(models.AuditLog).filter_by(action=ActionType.TRANSITION).one()
        assert log.entity_id == intervention.id
        assert "demande -> approuvee" in log.description

    def test_participants_are_notified(self, db_session, make_intervention, tenant, manager):
        intervention = make_intervention(tenant)
        InterventionService.transition(db_session, intervention.id, A.approve, manager)

        notifications = db_session.query(models.Notification).filter_by(user_id=tenant.id).all()
        assert len(notifications) == 1
        assert "Demande approuvée" in notifications[0].title

    def test_reject_requires_reason(self, db_session, make_intervention, tenant, manager):
        intervention = make_intervention(tenant)

        with pytest.raises(ValidationError):
            InterventionService.transition(db_session, intervention.id, A.reject, manager, {"reason": "  "})
        assert _status(db_session, intervention.id) == S.demande

        rejected = InterventionService.transition(
            db_session, intervention.id, A.reject, manager, {"reason": "Hors contrat"}
        )
        assert rejected.status == S.rejetee
        assert rejected.manager_comment == "Hors contrat"

    def test_other_team_sees_not_found(self, db_session, make_intervention, tenant, outsider):
        intervention = make_intervention(tenant)
        with pytest.raises(NotFound):
            InterventionService.transition(db_session, intervention.id, A.approve, outsider)

    def test_unassigned_provider_sees_not_found(self, db_session, make_intervention, tenant, provider):
        intervention = make_intervention(tenant)
        with pytest.raises(NotFound):
            InterventionService.get_intervention(db_session, intervention.id, provider)

    def test_cancel(self, db_session, planning_intervention, manager):
        with pytest.raises(ValidationError):
            InterventionService.transition(db_session, planning_intervention.id, A.cancel, manager)

        cancelled = InterventionService.transition(
            db_session, planning_intervention.id, A.cancel, manager, {"reason": "Doublon"}
        )
        assert cancelled.status == S.annulee
        assert cancelled.cancellation_reason == "Doublon"

    def test_cancel_not_allowed_on_new_request(self, db_session, make_intervention, tenant, manager):
        intervention = make_intervention(tenant)
        with pytest.raises(InvalidTransition):
            InterventionService.transition(db_session, intervention.id, A.cancel, manager, {"reason": "x"})

    def test_full_lifecycle(self, db_session, planning_intervention, manager, tenant, provider):
        intervention_id = planning_intervention.id
        InterventionService.schedule_fixed(db_session, intervention_id, datetime(2026, 5, 4, 10, 0), manager)

        started = InterventionService.transition(db_session, intervention_id, A.start_work, provider)
        assert started.status == S.en_cours
        assert started.started_at is not None

        with pytest.raises(ValidationError):
            InterventionService.transition(db_session, intervention_id, A.complete_work, provider, {"report": ""})

        InterventionService.transition(
            db_session, intervention_id, A.complete_work, provider, {"report": "Joint remplacé"}
        )
        contested = InterventionService.transition(
            db_session, intervention_id, A.contest_completion, tenant, {"reason": "Ça fuit encore"}
        )
        assert contested.status == S.en_cours
        assert contested.tenant_comment == "Ça fuit encore"

        done = InterventionService.transition(
            db_session, intervention_id, A.complete_work, provider, {"report": "Siphon changé"}
        )
        assert done.status == S.cloturee_par_prestataire
        assert done.provider_comment == "Siphon changé"
        assert done.completed_date is not None

        validated = InterventionService.transition(
            db_session, intervention_id, A.validate_completion, tenant, {"satisfaction": 5}
        )
        assert validated.status == S.cloturee_par_locataire
        assert validated.tenant_satisfaction == 5
        assert validated.validated_at is not None

        closed = InterventionService.transition(
            db_session, intervention_id, A.finalize, manager, {"final_cost": Decimal("180.50")}
        )
        assert closed.status == S.cloturee_par_gestionnaire
        assert closed.final_cost == Decimal("180.50")
        assert closed.finalized_at is not None
        assert closed.children == []

    def test_unassigned_provider_cannot_start_work(self, db_session, planning_intervention, manager, provider_b):
        InterventionService.schedule_fixed(db_session, planning_intervention.id, datetime(2026, 5, 4, 10, 0), manager)
        with pytest.raises(NotFound):
            InterventionService.transition(db_session, planning_intervention.id, A.start_work, provider_b)

    def test_satisfaction_out_of_range(self, db_session, planning_intervention, manager, tenant, provider):
        intervention_id = planning_intervention.id
        InterventionService.schedule_fixed(db_session, intervention_id, datetime(2026, 5, 4, 10, 0), manager)
        InterventionService.transition(db_session, intervention_id, A.start_work, provider)
        InterventionService.transition(db_session, intervention_id, A.complete_work, provider, {"report": "Fait"})

        with pytest.raises(ValidationError):
            InterventionService.transition(db_session, intervention_id, A.validate_completion, tenant, {"satisfaction": 9})
        assert _status(db_session, intervention_id) == S.cloturee_par_prestataire


class TestUpdateIntervention:

    def test_tenant_can_edit_new_request(self, db_session, make_intervention, tenant):
        intervention = make_intervention(tenant)
        updated = InterventionService.update_intervention(
            db_session, intervention.id, schemas.InterventionUpdate(title="Fuite importante"), tenant
        )
        assert updated.title == "Fuite importante"

    def test_tenant_cannot_edit_manager_fields(self, db_session, make_intervention, tenant):
        intervention = make_intervention(tenant)
        with pytest.raises(PermissionDenied):
            InterventionService.update_intervention(
                db_session, intervention.id, schemas.InterventionUpdate(manager_comment="x"), tenant
            )

    def test_tenant_cannot_edit_after_approval(self, db_session, make_intervention, tenant, manager):
        intervention = make_intervention(tenant)
        InterventionService.transition(db_session, intervention.id, A.approve, manager)
        with pytest.raises(PermissionDenied):
            InterventionService.update_intervention(
                db_session, intervention.id, schemas.InterventionUpdate(title="Autre"), tenant
            )

    def test_manager_cannot_edit_closed_intervention(self, db_session, make_intervention, tenant, manager):
        intervention = make_intervention(tenant)
        InterventionService.transition(db_session, intervention.id, A.reject, manager, {"reason": "Non"})
        with pytest.raises(InvalidTransition):
            InterventionService.update_intervention(
                db_session, intervention.id, schemas.InterventionUpdate(title="Autre"), manager
            )

    def test_required_fields_cannot_be_cleared(self, db_session, make_intervention, manager):
        intervention = make_intervention(manager)

        with pytest.raises(pydantic.ValidationError):
            schemas.InterventionUpdate(title=None, description=None)

        data = schemas.InterventionUpdate.model_construct(_fields_set={"title", "description"}, title=None, description=None)
        with pytest.raises(ValidationError) as exc:
            InterventionService.update_intervention(db_session, intervention.id, data, manager)
        assert exc.value.details == {"fields": ["description", "title"]}

        db_session.refresh(intervention)
        assert intervention.title == "Fuite sous l'évier"

    def test_omitted_fields_are_kept(self, db_session, make_intervention, manager):
        intervention = make_intervention(manager)
        updated = InterventionService.update_intervention(
            db_session, intervention.id, schemas.InterventionUpdate(manager_comment="Voir syndic"), manager
        )
        assert updated.manager_comment == "Voir syndic"
        assert updated.description == "L'eau coule sous l'évier de la cuisine"


class TestSlotNegotiation:

    def test_only_fully_accepted_slot_is_scheduled(self, db_session, planning_intervention, tenant, provider, slot_input):
        slots = InterventionService.propose_slots(
            db_session, planning_intervention.id, [slot_input(2), slot_input(3), slot_input(4)], provider
        )
        day2, day3, day4 = slots

        result = InterventionService.respond_to_slot(
            db_session, day2.id, tenant, SlotResponse.rejected, "Je travaille"
        )
        assert result["auto_confirmed"] is False
        assert result["slot"].status == TimeSlotStatus.rejected

        result = InterventionService.respond_to_slot(db_session, day3.id, tenant, SlotResponse.accepted)

        assert result["auto_confirmed"] is True
        assert result["intervention_status"] == S.planifiee
        expected = datetime.combine(date.today() + timedelta(days=3), time(9, 0))
        assert result["scheduled_date"] == expected

        db_session.refresh(planning_intervention)
        assert planning_intervention.selected_slot_id == day3.id
        db_session.refresh(day3)
        db_session.refresh(day4)
        assert day3.is_selected and not day4.is_selected
        assert day4.status == TimeSlotStatus.proposed

    def test_propose_switches_fixed_to_slots(self, db_session, make_intervention, tenant, manager, provider, slot_input):
        intervention = make_intervention(tenant, scheduling_type=SchedulingType.fixed)
        InterventionService.transition(db_session, intervention.id, A.approve, manager)
        InterventionService.assign_user(db_session, intervention.id, provider.id, UserRole.prestataire, manager)
        InterventionService.transition(db_session, intervention.id, A.start_planning, manager)

        InterventionService.propose_slots(db_session, intervention.id, [slot_input(1)], provider)

        db_session.refresh(intervention)
        assert intervention.scheduling_type == SchedulingType.slots

    def test_propose_outside_planning_is_invalid(self, db_session, make_intervention, tenant, manager, slot_input, provider):
        intervention = make_intervention(tenant)
        InterventionService.assign_user(db_session, intervention.id, provider.id, UserRole.prestataire, manager)
        with pytest.raises(InvalidTransition):
            InterventionService.propose_slots(db_session, intervention.id, [slot_input(1)], provider)

    def test_tenant_cannot_propose(self, db_session, planning_intervention, tenant, slot_input):
        with pytest.raises(PermissionDenied):
            InterventionService.propose_slots(db_session, planning_intervention.id, [slot_input(1)], tenant)

    def test_rejection_requires_reason(self, db_session, planning_intervention, tenant, provider, slot_input):
        slot, = InterventionService.propose_slots(db_session, planning_intervention.id, [slot_input(1)], provider)
        with pytest.raises(ValidationError):
            InterventionService.respond_to_slot(db_session, slot.id, tenant, SlotResponse.rejected)

    def test_rejected_slot_cannot_be_accepted(self, db_session, planning_intervention, tenant, provider, slot_input):
        slot, = InterventionService.propose_slots(db_session, planning_intervention.id, [slot_input(1)], provider)
        InterventionService.respond_to_slot(db_session, slot.id, tenant, SlotResponse.rejected, "Absent")

        with pytest.raises(InvalidTransition):
            InterventionService.respond_to_slot(db_session, slot.id, tenant, SlotResponse.accepted)

    def test_proposer_cannot_answer_own_slot(self, db_session, planning_intervention, provider, slot_input):
        slot, = InterventionService.propose_slots(db_session, planning_intervention.id, [slot_input(1)], provider)
        with pytest.raises(ValidationError):
            InterventionService.respond_to_slot(db_session, slot.id, provider, SlotResponse.accepted)

    def test_flagged_assignment_must_also_accept(self, db_session, planning_intervention, manager, admin, tenant, provider, slot_input):
        InterventionService.assign_user(
            db_session, planning_intervention.id, admin.id, UserRole.gestionnaire, manager,
            requires_confirmation=True
        )
        slot, = InterventionService.propose_slots(db_session, planning_intervention.id, [slot_input(2)], provider)

        first = InterventionService.respond_to_slot(db_session, slot.id, tenant, SlotResponse.accepted)
        assert first["auto_confirmed"] is False
        assert first["intervention_status"] == S.planification

        second = InterventionService.respond_to_slot(db_session, slot.id, admin, SlotResponse.accepted)
        assert second["auto_confirmed"] is True
        assert second["intervention_status"] == S.planifiee

    def test_second_answer_replaces_first(self, db_session, planning_intervention, manager, admin, tenant, provider, slot_input):
        InterventionService.assign_user(
            db_session, planning_intervention.id, admin.id, UserRole.gestionnaire, manager,
            requires_confirmation=True
        )
        slot, = InterventionService.propose_slots(db_session, planning_intervention.id, [slot_input(2)], provider)

        InterventionService.respond_to_slot(db_session, slot.id, tenant, SlotResponse.accepted)
        InterventionService.respond_to_slot(db_session, slot.id, tenant, SlotResponse.rejected, "Finalement non")

        responses = db_session.query(models.TimeSlotResponse).filter_by(time_slot_id=slot.id).all()
        assert len(responses) == 1
        assert responses[0].response == SlotResponse.rejected

    def test_withdraw_response_reopens_slot(self, db_session, planning_intervention, tenant, provider, slot_input):
        slot, = InterventionService.propose_slots(db_session, planning_intervention.id, [slot_input(1)], provider)
        InterventionService.respond_to_slot(db_session, slot.id, tenant, SlotResponse.rejected, "Absent")

        reopened = InterventionService.withdraw_response(db_session, slot.id, tenant)

        assert reopened.status == TimeSlotStatus.proposed
        assert reopened.responses == []

    def test_withdraw_without_response(self, db_session, planning_intervention, tenant, provider, slot_input):
        slot, = InterventionService.propose_slots(db_session, planning_intervention.id, [slot_input(1)], provider)
        with pytest.raises(NotFound):
            InterventionService.withdraw_response(db_session, slot.id, tenant)

    def test_cancel_slot(self, db_session, planning_intervention, tenant, provider, slot_input):
        slot, = InterventionService.propose_slots(db_session, planning_intervention.id, [slot_input(1)], provider)

        with pytest.raises(PermissionDenied):
            InterventionService.cancel_slot(db_session, slot.id, tenant)

        cancelled = InterventionService.cancel_slot(db_session, slot.id, provider)
        assert cancelled.status == TimeSlotStatus.cancelled

        with pytest.raises(InvalidTransition):
            InterventionService.respond_to_slot(db_session, slot.id, tenant, SlotResponse.accepted)

    def test_answer_from_non_required_user_is_refused(self, db_session, planning_intervention, team, provider, slot_input):
        # Locataire rattaché comme simple observateur, sans confirmation attendue
        observer = models.UserAuth(
            email="observateur@seido.fr", first_name="Observateur", last_name="Test",
            role=UserRole.locataire, team_id=team.id
        )
        db_session.add(observer)
        db_session.flush()
        db_session.add(models.InterventionAssignment(
            intervention_id=planning_intervention.id, user_id=observer.id, role=UserRole.gestionnaire
        ))
        db_session.commit()
        slot, = InterventionService.propose_slots(db_session, planning_intervention.id, [slot_input(1)], provider)

        with pytest.raises(PermissionDenied):
            InterventionService.respond_to_slot(db_session, slot.id, observer, SlotResponse.accepted)

        assert db_session.query(models.TimeSlotResponse).filter_by(time_slot_id=slot.id).count() == 0

    def test_selected_slot_cannot_be_cancelled(self, db_session, planning_intervention, manager, provider, slot_input):
        slot, = InterventionService.propose_slots(db_session, planning_intervention.id, [slot_input(1)], provider)
        InterventionService.select_slot(db_session, slot.id, manager)

        with pytest.raises(ValidationError):
            InterventionService.cancel_slot(db_session, slot.id, manager)

    def test_manager_selects_slot(self, db_session, planning_intervention, manager, provider, slot_input):
        slot, = InterventionService.propose_slots(db_session, planning_intervention.id, [slot_input(5, start_hour=14)], provider)

        intervention = InterventionService.select_slot(db_session, slot.id, manager)

        assert intervention.status == S.planifiee
        assert intervention.selected_slot_id == slot.id
        assert intervention.scheduled_date == datetime.combine(date.today() + timedelta(days=5), time(14, 0))

    def test_only_managers_select_slots(self, db_session, planning_intervention, tenant, provider, slot_input):
        slot, = InterventionService.propose_slots(db_session, planning_intervention.id, [slot_input(1)], provider)
        for user in (tenant, provider):
            with pytest.raises(PermissionDenied):
                InterventionService.select_slot(db_session, slot.id, user)
        assert _status(db_session, planning_intervention.id) == S.planification

    def test_confirm_schedule_requires_accepted_slot(self, db_session, planning_intervention, manager, provider, slot_input):
        InterventionService.propose_slots(db_session, planning_intervention.id, [slot_input(1)], provider)

        with pytest.raises(ValidationError):
            InterventionService.transition(db_session, planning_intervention.id, A.confirm_schedule, provider)
        assert _status(db_session, planning_intervention.id) == S.planification

    def test_fixed_schedule_requires_date(self, db_session, make_intervention, tenant, manager):
        intervention = make_intervention(tenant, scheduling_type=SchedulingType.fixed)
        InterventionService.transition(db_session, intervention.id, A.approve, manager)
        InterventionService.transition(db_session, intervention.id, A.start_planning, manager)

        with pytest.raises(ValidationError):
            InterventionService.transition(db_session, intervention.id, A.confirm_schedule, manager)

        planned = InterventionService.transition(
            db_session, intervention.id, A.confirm_schedule, manager,
            {"scheduled_date": datetime(2026, 6, 1, 8, 30)}
        )
        assert planned.status == S.planifiee
        assert planned.scheduled_date == datetime(2026, 6, 1, 8, 30)

    def test_schedule_fixed(self, db_session, planning_intervention, manager):
        planned = InterventionService.schedule_fixed(
            db_session, planning_intervention.id, datetime(2026, 6, 2, 9, 0), manager
        )
        assert planned.status == S.planifiee
        assert planned.scheduling_type == SchedulingType.fixed
        assert planned.scheduled_date == datetime(2026, 6, 2, 9, 0)


class TestAssignments:

    def test_assign_requires_matching_role(self, db_session, make_intervention, tenant, manager):
        intervention = make_intervention(tenant)
        with pytest.raises(ValidationError):
            InterventionService.assign_user(db_session, intervention.id, tenant.id, UserRole.prestataire, manager)

    def test_only_managers_assign(self, db_session, make_intervention, tenant, provider):
        intervention = make_intervention(tenant)
        with pytest.raises(PermissionDenied):
            InterventionService.assign_user(db_session, intervention.id, provider.id, UserRole.prestataire, tenant)

    def test_first_provider_creates_provider_thread(self, db_session, make_intervention, tenant, manager, provider):
        intervention = make_intervention(tenant)
        InterventionService.assign_user(db_session, intervention.id, provider.id, UserRole.prestataire, manager)

        db_session.refresh(intervention)
        assert ThreadType.provider_to_managers in {t.thread_type for t in intervention.threads}

    def test_unassign(self, db_session, make_intervention, tenant, manager, provider):
        intervention = make_intervention(tenant)
        InterventionService.assign_user(db_session, intervention.id, provider.id, UserRole.prestataire, manager)
        InterventionService.unassign_user(db_session, intervention.id, provider.id, UserRole.prestataire, manager)

        db_session.refresh(intervention)
        assert all(a.user_id != provider.id for a in intervention.assignments)

        with pytest.raises(NotFound):
            InterventionService.unassign_user(db_session, intervention.id, provider.id, UserRole.prestataire, manager)

    @pytest.mark.parametrize("count,mode", [
        (1, AssignmentMode.group),
        (1, AssignmentMode.separate),
        (2, AssignmentMode.single),
    ])
    def test_mode_must_match_provider_count(self, db_session, make_intervention, tenant, manager, provider, provider_b, count, mode):
        intervention = make_intervention(tenant)
        ids = [provider.id, provider_b.id][:count]
        with pytest.raises(ValidationError):
            InterventionService.assign_multiple_providers(db_session, intervention.id, ids, mode, manager)

    def test_multiple_providers_must_be_providers(self, db_session, make_intervention, tenant, manager, provider):
        intervention = make_intervention(tenant)
        with pytest.raises(ValidationError):
            InterventionService.assign_multiple_providers(
                db_session, intervention.id, [provider.id, tenant.id], AssignmentMode.group, manager
            )

    def test_provider_instructions_limit(self, db_session, make_intervention, tenant, manager, provider):
        intervention = make_intervention(tenant)
        InterventionService.assign_user(db_session, intervention.id, provider.id, UserRole.prestataire, manager)

        with pytest.raises(ValidationError):
            InterventionService.update_provider_instructions(
                db_session, intervention.id, provider.id, "x" * 5001, manager
            )
        with pytest.raises(PermissionDenied):
            InterventionService.update_provider_instructions(
                db_session, intervention.id, provider.id, "Passer par la cave", tenant
            )

        assignment = InterventionService.update_provider_instructions(
            db_session, intervention.id, provider.id, "x" * 5000, manager
        )
        assert len(assignment.provider_instructions) == 5000


class TestInterventionView:

    def test_separate_provider_never_sees_other_instructions(self, db_session, separate_intervention, provider, provider_b):
        view = InterventionService.get_intervention_view(db_session, separate_intervention.id, provider)

        assignments = [a for group in view["participants"].values() for a in group]
        assert provider_b.id not in {a.user_id for a in assignments}
        instructions = {a.provider_instructions for a in assignments}
        assert "Code portail 4521" not in instructions
        assert "Couper l'eau au compteur" in instructions

    def test_separate_provider_sees_only_own_slots_and_quotes(
        self, db_session, separate_intervention, manager, provider, provider_b, slot_input
    ):
        InterventionService.transition(db_session, separate_intervention.id, A.approve, manager)
        InterventionService.transition(db_session, separate_intervention.id, A.start_planning, manager)
        InterventionService.propose_slots(db_session, separate_intervention.id, [slot_input(1)], provider)
        InterventionService.propose_slots(db_session, separate_intervention.id, [slot_input(2)], provider_b)

        view = InterventionService.get_intervention_view(db_session, separate_intervention.id, provider_b)

        assert [s.proposed_by for s in view["time_slots"]] == [provider_b.id]

        manager_view = InterventionService.get_intervention_view(db_session, separate_intervention.id, manager)
        assert len(manager_view["time_slots"]) == 2

    def test_tenant_view_hides_providers(self, db_session, separate_intervention, tenant):
        view = InterventionService.get_intervention_view(db_session, separate_intervention.id, tenant)

        roles = {a.role for group in view["participants"].values() for a in group}
        assert UserRole.prestataire not in roles
        assert view["quotes"] == []
        assert set(view["visible_thread_types"]) == {ThreadType.group, ThreadType.tenant_to_managers}

    def test_manager_view_lists_allowed_actions(self, db_session, separate_intervention, manager):
        view = InterventionService.get_intervention_view(db_session, separate_intervention.id, manager)
        assert view["allowed_actions"] == [A.approve, A.reject]
        assert len(view["participants"]) == 3


class TestChildInterventions:

    def test_create_children(self, db_session, separate_intervention, manager, tenant, provider, provider_b):
        children = InterventionService.create_child_interventions(db_session, separate_intervention.id, manager)

        assert len(children) == 2
        by_provider = {}
        for child in children:
            providers = [a for a in child.assignments if a.role == UserRole.prestataire]
            assert len(providers) == 1
            by_provider[providers[0].user_id] = child
            assert child.parent_intervention_id == separate_intervention.id
            assert child.status == separate_intervention.status
            assert child.lot_id == separate_intervention.lot_id
            assert tenant.id in {a.user_id for a in child.assignments}

        assert by_provider[provider.id].provider_guidelines == "Couper l'eau au compteur"
        assert by_provider[provider_b.id].provider_guidelines == "Code portail 4521"

        again = InterventionService.create_child_interventions(db_session, separate_intervention.id, manager)
        assert {c.id for c in again} == {c.id for c in children}

    def test_children_require_separate_mode(self, db_session, planning_intervention, manager):
        with pytest.raises(ValidationError):
            InterventionService.create_child_interventions(db_session, planning_intervention.id, manager)

    def test_finalize_fans_out(self, db_session, separate_intervention, manager):
        separate_intervention.status = S.cloturee_par_locataire
        db_session.commit()

        closed = InterventionService.transition(db_session, separate_intervention.id, A.finalize, manager)

        assert closed.status == S.cloturee_par_gestionnaire
        assert len(closed.children) == 2


class TestQuotes:

    def test_quote_flow(self, db_session, make_intervention, tenant, manager, provider, provider_b):
        intervention = make_intervention(tenant)
        InterventionService.transition(db_session, intervention.id, A.approve, manager)

        quote = InterventionService.request_quote(db_session, intervention.id, provider.id, manager, "Remplacement ballon")

        assert quote.status == QuoteStatus.demande
        db_session.refresh(intervention)
        assert intervention.status == S.demande_de_devis
        assert intervention.requires_quote is True
        assert provider.id in {a.user_id for a in intervention.assignments}

        with pytest.raises(PermissionDenied):
            InterventionService.submit_quote(db_session, quote.id, Decimal("450"), provider_b)

        submitted = InterventionService.submit_quote(db_session, quote.id, Decimal("450"), provider)
        assert submitted.status == QuoteStatus.soumis

        with pytest.raises(PermissionDenied):
            InterventionService.accept_quote(db_session, quote.id, provider)

        accepted = InterventionService.accept_quote(db_session, quote.id, manager)
        assert accepted.status == QuoteStatus.accepte
        db_session.refresh(intervention)
        assert intervention.estimated_cost == Decimal("450")

        planning = InterventionService.transition(db_session, intervention.id, A.start_planning, manager)
        assert planning.status == S.planification

    def test_request_quote_requires_provider(self, db_session, make_intervention, tenant, manager):
        intervention = make_intervention(tenant)
        InterventionService.transition(db_session, intervention.id, A.approve, manager)
        with pytest.raises(ValidationError):
            InterventionService.request_quote(db_session, intervention.id, tenant.id, manager)

    def test_cancel_and_reject_quote(self, db_session, make_intervention, tenant, manager, provider):
        intervention = make_intervention(tenant)
        InterventionService.transition(db_session, intervention.id, A.approve, manager)
        quote = InterventionService.request_quote(db_session, intervention.id, provider.id, manager)

        with pytest.raises(InvalidTransition):
            InterventionService.reject_quote(db_session, quote.id, manager)

        cancelled = InterventionService.cancel_quote(db_session, quote.id, manager)
        assert cancelled.status == QuoteStatus.annule


class TestListingAndStats:

    def test_provider_lists_only_assigned(self, db_session, make_intervention, tenant, manager, provider):
        first = make_intervention(tenant)
        make_intervention(tenant)
        InterventionService.assign_user(db_session, first.id, provider.id, UserRole.prestataire, manager)

        assert [i.id for i in InterventionService.list_interventions(db_session, provider)] == [first.id]
        assert len(InterventionService.list_interventions(db_session, manager)) == 2

    def test_filters(self, db_session, make_intervention, tenant, manager):
        first = make_intervention(tenant)
        make_intervention(tenant)
        InterventionService.transition(db_session, first.id, A.approve, manager)

        approved = InterventionService.list_interventions(db_session, manager, {"status": S.approuvee})
        assert [i.id for i in approved] == [first.id]

    def test_my_interventions(self, db_session, make_intervention, tenant, manager):
        make_intervention(tenant)
        mine = make_intervention(manager)

        assert [i.id for i in InterventionService.get_my_interventions(db_session, manager)] == [mine.id]

    def test_other_team_lists_nothing(self, db_session, make_intervention, tenant, outsider):
        make_intervention(tenant)
        assert InterventionService.list_interventions(db_session, outsider) == []

    def test_dashboard_stats(self, db_session, make_intervention, tenant, manager, provider):
        first = make_intervention(tenant)
        make_intervention(tenant, urgency="urgente")
        InterventionService.transition(db_session, first.id, A.approve, manager)
        InterventionService.request_quote(db_session, first.id, provider.id, manager)

        stats = InterventionService.dashboard_stats(db_session, manager)

        assert stats["total"] == 2
        assert stats["by_status"] == {"demande": 1, "demande_de_devis": 1}
        assert stats["by_urgency"] == {"haute": 1, "urgente": 1}
        assert stats["pending_quotes"] == 1
        assert stats["upcoming"] == 0

        with pytest.raises(PermissionDenied):
            InterventionService.dashboard_stats(db_session, tenant)
