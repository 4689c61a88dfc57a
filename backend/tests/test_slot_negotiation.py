from datetime import date, datetime, time
from types import SimpleNamespace

from enums import SlotResponse, TimeSlotStatus, UserRole
from services.slot_negotiation import (
    is_fully_accepted, required_responders, resolve_slot_negotiation, slot_status
)


def _slot(slot_id, day, hour=9, status=TimeSlotStatus.proposed):
    return SimpleNamespace(
        id=slot_id,
        slot_date=date(2026, 3, day),
        start_time=time(hour, 0),
        end_time=time(hour + 2, 0),
        status=status,
    )


def _answer(user_id, response):
    return SimpleNamespace(user_id=user_id, response=response)


def _assignment(user_id, role, requires_confirmation=False):
    return SimpleNamespace(user_id=user_id, role=role, requires_confirmation=requires_confirmation)


ACCEPT = SlotResponse.accepted
REJECT = SlotResponse.rejected


class TestRequiredResponders:

    def test_tenants_and_flagged_assignments(self):
        assignments = [
            _assignment(1, UserRole.gestionnaire),
            _assignment(2, UserRole.locataire),
            _assignment(3, UserRole.prestataire),
            _assignment(4, UserRole.gestionnaire, requires_confirmation=True),
        ]
        assert required_responders(assignments, proposed_by=3) == {2, 4}

    def test_proposer_excluded(self):
        assignments = [_assignment(2, UserRole.locataire)]
        assert required_responders(assignments, proposed_by=2) == set()


class TestSlotStatus:

    def test_rejection_by_required_responder(self):
        responses = [_answer(2, ACCEPT), _answer(4, REJECT)]
        assert slot_status(TimeSlotStatus.proposed, responses, {2, 4}) == TimeSlotStatus.rejected

    def test_partial_acceptance_stays_proposed(self):
        assert slot_status(TimeSlotStatus.proposed, [_answer(2, ACCEPT)], {2, 4}) == TimeSlotStatus.proposed

    def test_full_acceptance(self):
        responses = [_answer(2, ACCEPT), _answer(4, ACCEPT)]
        assert slot_status(TimeSlotStatus.proposed, responses, {2, 4}) == TimeSlotStatus.accepted

    def test_rejection_by_optional_responder_ignored(self):
        responses = [_answer(2, ACCEPT), _answer(9, REJECT)]
        assert slot_status(TimeSlotStatus.proposed, responses, {2}) == TimeSlotStatus.accepted

    def test_cancelled_slot_stays_cancelled(self):
        assert slot_status(TimeSlotStatus.cancelled, [_answer(2, ACCEPT)], {2}) == TimeSlotStatus.cancelled

    def test_withdrawn_rejection_reopens_slot(self):
        assert slot_status(TimeSlotStatus.rejected, [], {2}) == TimeSlotStatus.proposed

    def test_no_required_responder_never_fully_accepted(self):
        assert not is_fully_accepted([_answer(2, ACCEPT)], set())


class TestResolveSlotNegotiation:

    def test_single_fully_accepted_slot(self):
        slots = [_slot(1, 2), _slot(2, 3), _slot(3, 4)]
        responses = {2: [_answer(10, ACCEPT)], 3: [_answer(10, REJECT)]}
        required = {1: {10}, 2: {10}, 3: {10}}

        confirmed = resolve_slot_negotiation(slots, responses, required)

        assert confirmed.slot_id == 2
        assert confirmed.scheduled_date == datetime(2026, 3, 3, 9, 0)

    def test_nothing_confirmed(self):
        slots = [_slot(1, 2)]
        assert resolve_slot_negotiation(slots, {1: [_answer(10, REJECT)]}, {1: {10}}) is None

    def test_earliest_slot_wins(self):
        slots = [_slot(1, 5), _slot(2, 4, hour=14), _slot(3, 4, hour=8)]
        responses = {i: [_answer(10, ACCEPT)] for i in (1, 2, 3)}
        required = {i: {10} for i in (1, 2, 3)}

        assert resolve_slot_negotiation(slots, responses, required).slot_id == 3

    def test_lowest_id_breaks_exact_tie(self):
        slots = [_slot(7, 4), _slot(5, 4)]
        responses = {i: [_answer(10, ACCEPT)] for i in (5, 7)}
        required = {i: {10} for i in (5, 7)}

        assert resolve_slot_negotiation(slots, responses, required).slot_id == 5

    def test_cancelled_slots_skipped(self):
        slots = [_slot(1, 2, status=TimeSlotStatus.cancelled), _slot(2, 3)]
        responses = {i: [_answer(10, ACCEPT)] for i in (1, 2)}
        required = {i: {10} for i in (1, 2)}

        assert resolve_slot_negotiation(slots, responses, required).slot_id == 2

    def test_slot_without_required_responders_is_not_confirmed(self):
        slots = [_slot(1, 2)]
        assert resolve_slot_negotiation(slots, {1: [_answer(10, ACCEPT)]}, {}) is None
