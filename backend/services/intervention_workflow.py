"""
Table de transitions du cycle de vie des interventions

Fonctions pures (statut, action, rôle) -> statut suivant.
Aucune lecture ni écriture en base : le service d'intervention persiste
le résultat, la base reste la seule copie de référence du statut.
"""
from typing import Dict, FrozenSet, List, Optional, Tuple

from enums import InterventionAction, InterventionStatus, UserRole
from error_handlers import BusinessLogicErrorHandler


S = InterventionStatus
A = InterventionAction

MANAGERS = frozenset({UserRole.gestionnaire, UserRole.admin})
PROVIDERS = frozenset({UserRole.prestataire})
TENANTS = frozenset({UserRole.locataire})

TERMINAL_STATUSES: FrozenSet[InterventionStatus] = frozenset({
    S.cloturee_par_gestionnaire,
    S.rejetee,
    S.annulee,
})

CANCELLABLE_STATUSES: FrozenSet[InterventionStatus] = frozenset({
    S.approuvee,
    S.demande_de_devis,
    S.planification,
    S.planifiee,
    S.en_cours,
})

TRANSITIONS: Dict[Tuple[InterventionStatus, InterventionAction], InterventionStatus] = {
    (S.demande, A.approve): S.approuvee,
    (S.demande, A.reject): S.rejetee,
    (S.approuvee, A.request_quote): S.demande_de_devis,
    (S.approuvee, A.start_planning): S.planification,
    (S.demande_de_devis, A.start_planning): S.planification,
    (S.planification, A.confirm_schedule): S.planifiee,
    (S.planifiee, A.start_work): S.en_cours,
    (S.en_cours, A.complete_work): S.cloturee_par_prestataire,
    (S.cloturee_par_prestataire, A.validate_completion): S.cloturee_par_locataire,
    # Le locataire peut contester la fin des travaux
    (S.cloturee_par_prestataire, A.contest_completion): S.en_cours,
    (S.cloturee_par_locataire, A.finalize): S.cloturee_par_gestionnaire,
}
TRANSITIONS.update({(status, A.cancel): S.annulee for status in CANCELLABLE_STATUSES})

# Actions sur les créneaux : légales pendant la planification, sans changement de statut
SLOT_ACTIONS: Dict[InterventionAction, FrozenSet[InterventionStatus]] = {
    A.propose_slots: frozenset({S.planification}),
    A.accept_slot: frozenset({S.planification}),
    A.reject_slot: frozenset({S.planification}),
}

ACTION_ROLES: Dict[InterventionAction, FrozenSet[UserRole]] = {
    A.approve: MANAGERS,
    A.reject: MANAGERS,
    A.request_quote: MANAGERS,
    A.start_planning: MANAGERS,
    A.confirm_schedule: MANAGERS | PROVIDERS,
    A.start_work: PROVIDERS,
    A.complete_work: PROVIDERS,
    A.validate_completion: TENANTS,
    A.contest_completion: TENANTS,
    A.finalize: MANAGERS,
    A.cancel: MANAGERS,
    A.propose_slots: PROVIDERS,
    A.accept_slot: TENANTS,
    A.reject_slot: TENANTS,
}


def is_terminal(status: InterventionStatus) -> bool:
    return InterventionStatus(status) in TERMINAL_STATUSES


def is_manager(role: UserRole) -> bool:
    return UserRole(role) in MANAGERS


def _check_role(action: InterventionAction, role: Optional[UserRole]) -> None:
    # role=None : transition déclenchée par le système (auto-confirmation d'un créneau)
    if role is None:
        return
    allowed = ACTION_ROLES[action]
    if UserRole(role) not in allowed:
        raise BusinessLogicErrorHandler.role_not_allowed(
            UserRole(role).value, action.value, sorted(r.value for r in allowed)
        )


def next_status(
    current: InterventionStatus,
    action: InterventionAction,
    role: Optional[UserRole] = None,
) -> InterventionStatus:
    """
    Retourne le statut atteint par `action` depuis `current`.

    Lève InvalidTransition si la paire (statut, action) n'est pas listée,
    puis PermissionDenied si le rôle n'est pas autorisé pour l'action.
    """
    current = InterventionStatus(current)
    action = InterventionAction(action)

    target = TRANSITIONS.get((current, action))
    if target is None:
        raise BusinessLogicErrorHandler.invalid_transition(
            current.value, action.value, [a.value for a in allowed_actions(current)]
        )

    _check_role(action, role)
    return target


def check_slot_action(
    current: InterventionStatus,
    action: InterventionAction,
    role: Optional[UserRole],
) -> None:
    """Valide une action de créneau : même ordre de contrôle que next_status"""
    current = InterventionStatus(current)
    action = InterventionAction(action)

    if action not in SLOT_ACTIONS or current not in SLOT_ACTIONS[action]:
        raise BusinessLogicErrorHandler.invalid_transition(
            current.value, action.value, [a.value for a in allowed_actions(current)]
        )

    _check_role(action, role)


def allowed_actions(
    current: InterventionStatus,
    role: Optional[UserRole] = None,
) -> List[InterventionAction]:
    """Actions disponibles depuis un statut, filtrées par rôle si fourni"""
    current = InterventionStatus(current)
    actions = [action for (status, action) in TRANSITIONS if status == current]
    actions += [action for action, statuses in SLOT_ACTIONS.items() if current in statuses]

    if role is not None:
        actions = [action for action in actions if UserRole(role) in ACTION_ROLES[action]]

    return sorted(set(actions), key=lambda a: list(InterventionAction).index(a))
