"""
Règles de visibilité des participants et des conversations selon le rôle
"""
from typing import FrozenSet, List

from enums import AssignmentMode, ParticipantGroup, ThreadType, UserRole


P = ParticipantGroup
T = ThreadType

PARTICIPANT_GROUPS_BY_ROLE = {
    UserRole.gestionnaire: frozenset({P.manager, P.provider, P.tenant}),
    UserRole.admin: frozenset({P.manager, P.provider, P.tenant}),
    # Un prestataire ne voit jamais les autres prestataires
    UserRole.prestataire: frozenset({P.manager, P.tenant}),
    # Un locataire ne voit que les gestionnaires
    UserRole.locataire: frozenset({P.manager}),
}

THREAD_TYPES_BY_ROLE = {
    UserRole.gestionnaire: frozenset({T.group, T.provider_to_managers, T.tenant_to_managers}),
    UserRole.admin: frozenset({T.group, T.provider_to_managers, T.tenant_to_managers}),
    UserRole.prestataire: frozenset({T.group, T.provider_to_managers}),
    UserRole.locataire: frozenset({T.group, T.tenant_to_managers}),
}

GROUP_BY_ROLE = {
    UserRole.gestionnaire: P.manager,
    UserRole.admin: P.manager,
    UserRole.prestataire: P.provider,
    UserRole.locataire: P.tenant,
}


def visible_participant_groups(role: UserRole) -> FrozenSet[ParticipantGroup]:
    return PARTICIPANT_GROUPS_BY_ROLE[UserRole(role)]


def visible_thread_types(role: UserRole) -> FrozenSet[ThreadType]:
    return THREAD_TYPES_BY_ROLE[UserRole(role)]


def can_view_thread(role: UserRole, thread_type: ThreadType) -> bool:
    return ThreadType(thread_type) in visible_thread_types(role)


# Rôles dont chaque membre dispose de son propre fil avec les gestionnaires
PRIVATE_THREAD_TYPE_BY_ROLE = {
    UserRole.prestataire: T.provider_to_managers,
    UserRole.locataire: T.tenant_to_managers,
}


def private_thread_type(role: UserRole):
    return PRIVATE_THREAD_TYPE_BY_ROLE.get(UserRole(role))


def can_access_thread(user_id: int, role: UserRole, thread_type: ThreadType, participant_id) -> bool:
    """
    Le type de fil doit être visible pour le rôle ; un fil privé n'est
    ouvert qu'à son participant et aux gestionnaires.
    """
    if not can_view_thread(role, thread_type):
        return False
    if participant_id is None or UserRole(role) in (UserRole.gestionnaire, UserRole.admin):
        return True
    return participant_id == user_id


def participant_group(role: UserRole) -> ParticipantGroup:
    return GROUP_BY_ROLE[UserRole(role)]


def visible_assignments(assignments, viewer_id: int, viewer_role: UserRole) -> List:
    """
    Filtre les assignations visibles par un utilisateur.

    Les groupes invisibles pour le rôle sont retirés, sauf la propre
    assignation du lecteur. Un prestataire ne voit que sa propre fiche
    prestataire.
    """
    groups = visible_participant_groups(viewer_role)
    visible = []
    for assignment in assignments:
        if assignment.user_id == viewer_id:
            visible.append(assignment)
            continue
        if participant_group(assignment.role) in groups:
            visible.append(assignment)
    return visible


def is_isolated_provider(viewer_role: UserRole, mode: AssignmentMode) -> bool:
    """Vrai si les données du prestataire doivent être restreintes à sa propre assignation"""
    return UserRole(viewer_role) == UserRole.prestataire and AssignmentMode(mode) == AssignmentMode.separate
