"""
Constantes centralisées pour l'application Seido
Standardisation des valeurs et conventions utilisées dans l'application
"""
import os

# ==================== CONFIGURATION GÉNÉRALE ====================

APP_NAME = "Seido"
APP_VERSION = "1.0.0"
APP_DESCRIPTION = "Gestion des interventions pour la gestion locative"

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]

# ==================== CONFIGURATION DE SÉCURITÉ ====================

DEFAULT_ACCESS_TOKEN_EXPIRE_MINUTES = 60
JWT_ALGORITHM = "HS256"

# ==================== LIMITES MÉTIER ====================

MAX_PROVIDER_INSTRUCTIONS_LENGTH = 5000
MAX_SLOTS_PER_PROPOSAL = 10
MAX_MESSAGE_LENGTH = 10000
MIN_TENANT_SATISFACTION = 1
MAX_TENANT_SATISFACTION = 5

# Pagination
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200

# ==================== CONVERSATIONS ====================

THREAD_TITLES = {
    "group": "Discussion générale",
    "tenant_to_managers": "Communication avec les gestionnaires",
    "provider_to_managers": "Échanges prestataire / gestionnaires",
}

# ==================== MESSAGES D'ERREUR ====================

ERROR_MESSAGES = {
    "intervention_not_found": "Intervention introuvable",
    "slot_not_found": "Créneau introuvable",
    "thread_not_found": "Conversation introuvable",
    "quote_not_found": "Devis introuvable",
    "user_not_found": "Utilisateur introuvable",
    "location_required": "Un lot ou un immeuble est requis",
    "persistence": "Une erreur est survenue lors de l'enregistrement, veuillez réessayer",
}
