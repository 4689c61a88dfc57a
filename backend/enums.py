"""
Enums partagés pour l'application Seido
Centralisation de toutes les énumérations du cycle de vie des interventions
"""
import enum


class UserRole(str, enum.Enum):
    """Rôles des utilisateurs d'une équipe"""
    gestionnaire = "gestionnaire"
    prestataire = "prestataire"
    locataire = "locataire"
    admin = "admin"


class InterventionStatus(str, enum.Enum):
    """Statuts d'une intervention"""
    demande = "demande"
    rejetee = "rejetee"
    approuvee = "approuvee"
    demande_de_devis = "demande_de_devis"
    planification = "planification"
    planifiee = "planifiee"
    en_cours = "en_cours"
    cloturee_par_prestataire = "cloturee_par_prestataire"
    cloturee_par_locataire = "cloturee_par_locataire"
    cloturee_par_gestionnaire = "cloturee_par_gestionnaire"
    annulee = "annulee"


class InterventionAction(str, enum.Enum):
    """Déclencheurs du workflow d'une intervention"""
    approve = "approve"
    reject = "reject"
    request_quote = "request_quote"
    start_planning = "start_planning"
    confirm_schedule = "confirm_schedule"
    start_work = "start_work"
    complete_work = "complete_work"
    validate_completion = "validate_completion"
    contest_completion = "contest_completion"
    finalize = "finalize"
    cancel = "cancel"
    # Actions sur les créneaux (pas de changement de statut direct)
    propose_slots = "propose_slots"
    accept_slot = "accept_slot"
    reject_slot = "reject_slot"


class InterventionUrgency(str, enum.Enum):
    """Niveaux d'urgence"""
    basse = "basse"
    normale = "normale"
    haute = "haute"
    urgente = "urgente"


class InterventionType(str, enum.Enum):
    """Catégories d'intervention"""
    plomberie = "plomberie"
    electricite = "electricite"
    chauffage = "chauffage"
    serrurerie = "serrurerie"
    peinture = "peinture"
    menage = "menage"
    jardinage = "jardinage"
    climatisation = "climatisation"
    vitrerie = "vitrerie"
    toiture = "toiture"
    autre = "autre"


class SchedulingType(str, enum.Enum):
    """Mode de planification"""
    fixed = "fixed"    # Date unique fixée par le gestionnaire
    slots = "slots"    # Créneaux proposés puis acceptés


class AssignmentMode(str, enum.Enum):
    """Mode d'assignation des prestataires"""
    single = "single"
    group = "group"          # Vue partagée des créneaux et instructions
    separate = "separate"    # Données isolées par prestataire


class ConfirmationStatus(str, enum.Enum):
    """Statut de confirmation d'une assignation"""
    pending = "pending"
    confirmed = "confirmed"
    rejected = "rejected"


class TimeSlotStatus(str, enum.Enum):
    """Statuts d'un créneau proposé"""
    proposed = "proposed"
    accepted = "accepted"
    rejected = "rejected"
    cancelled = "cancelled"


class SlotResponse(str, enum.Enum):
    """Réponse d'un participant à un créneau"""
    accepted = "accepted"
    rejected = "rejected"


class QuoteStatus(str, enum.Enum):
    """Statuts de devis"""
    demande = "demande"
    soumis = "soumis"
    accepte = "accepte"
    refuse = "refuse"
    annule = "annule"


class ThreadType(str, enum.Enum):
    """Types de fils de conversation d'une intervention"""
    group = "group"
    provider_to_managers = "provider_to_managers"
    tenant_to_managers = "tenant_to_managers"


class ParticipantGroup(str, enum.Enum):
    """Groupes de participants affichés sur une intervention"""
    manager = "manager"
    provider = "provider"
    tenant = "tenant"


class ActionType(str, enum.Enum):
    """Types d'actions pour l'audit logging"""
    CREATE = "CREATE"
    READ = "READ"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    TRANSITION = "TRANSITION"
    LOGIN = "LOGIN"
    ACCESS_DENIED = "ACCESS_DENIED"
    ERROR = "ERROR"


class EntityType(str, enum.Enum):
    """Types d'entités dans l'application"""
    USER = "USER"
    TEAM = "TEAM"
    BUILDING = "BUILDING"
    LOT = "LOT"
    INTERVENTION = "INTERVENTION"
    ASSIGNMENT = "ASSIGNMENT"
    TIME_SLOT = "TIME_SLOT"
    QUOTE = "QUOTE"
    THREAD = "THREAD"
    MESSAGE = "MESSAGE"
