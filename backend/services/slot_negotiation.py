"""
Résolution de la négociation des créneaux

Règles pures, indépendantes de la persistance :
- qui doit répondre à un créneau
- le statut d'un créneau au vu des réponses reçues
- le créneau confirmé d'une intervention, s'il existe
"""
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Dict, Iterable, List, Optional, Set

from enums import SlotResponse, TimeSlotStatus, UserRole


@dataclass(frozen=True)
class ConfirmedSlot:
    slot_id: int
    slot_date: date
    start_time: time
    end_time: time

    @property
    def scheduled_date(self) -> datetime:
        return datetime.combine(self.slot_date, self.start_time)


def required_responders(assignments: Iterable, proposed_by: int) -> Set[int]:
    """
    Utilisateurs dont l'accord est requis pour un créneau :
    les locataires assignés et toute assignation marquée requires_confirmation,
    hors auteur de la proposition.
    """
    required = set()
    for assignment in assignments:
        role = UserRole(assignment.role)
        if role == UserRole.locataire or assignment.requires_confirmation:
            required.add(assignment.user_id)
    required.discard(proposed_by)
    return required


def _answers_by_user(responses: Iterable) -> Dict[int, SlotResponse]:
    return {response.user_id: SlotResponse(response.response) for response in responses}


def slot_status(current: TimeSlotStatus, responses: Iterable, required: Set[int]) -> TimeSlotStatus:
    """
    Statut d'un créneau après une réponse.

    Un refus d'un répondant requis rejette le créneau ; l'accord de tous le
    rend accepté. Un créneau annulé le reste.
    """
    current = TimeSlotStatus(current)
    if current == TimeSlotStatus.cancelled:
        return current

    answers = _answers_by_user(responses)
    if any(answers.get(user_id) == SlotResponse.rejected for user_id in required):
        return TimeSlotStatus.rejected
    if is_fully_accepted(responses, required):
        return TimeSlotStatus.accepted
    return TimeSlotStatus.proposed


def is_fully_accepted(responses: Iterable, required: Set[int]) -> bool:
    if not required:
        return False
    answers = _answers_by_user(responses)
    return all(answers.get(user_id) == SlotResponse.accepted for user_id in required)


def resolve_slot_negotiation(
    slots: Iterable,
    responses_by_slot: Dict[int, List],
    required_by_slot: Dict[int, Set[int]],
) -> Optional[ConfirmedSlot]:
    """
    Retourne le créneau confirmé ou None.

    Un créneau est confirmé quand tous ses répondants requis l'ont accepté.
    Si plusieurs le sont, le plus tôt (date puis heure de début) l'emporte,
    puis le plus petit identifiant.
    """
    candidates = []
    for slot in slots:
        if TimeSlotStatus(slot.status) in (TimeSlotStatus.cancelled, TimeSlotStatus.rejected):
            continue
        responses = responses_by_slot.get(slot.id, [])
        if is_fully_accepted(responses, required_by_slot.get(slot.id, set())):
            candidates.append(slot)

    if not candidates:
        return None

    winner = min(candidates, key=lambda s: (s.slot_date, s.start_time, s.id))
    return ConfirmedSlot(
        slot_id=winner.id,
        slot_date=winner.slot_date,
        start_time=winner.start_time,
        end_time=winner.end_time,
    )
