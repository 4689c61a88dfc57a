"""
Contrôleur pour l'authentification
Connexion par email / mot de passe et profil de l'utilisateur connecté
"""
from fastapi import APIRouter, Depends, Request
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session
from typing import Dict, Any

from database import get_db
from auth import verify_password, create_user_token, get_current_user, get_user_by_email
from models import UserAuth
from enums import ActionType, EntityType
from audit_logger import AuditLogger
from error_handlers import PermissionErrorHandler
import schemas

router = APIRouter(prefix="/auth", tags=["Authentification"])


@router.post("/login")
async def login(
    request: Request,
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    Connexion utilisateur
    """
    user = get_user_by_email(db, form_data.username)

    if not user or not user.is_active or not verify_password(form_data.password, user.hashed_password):
        error_response = PermissionErrorHandler.unauthorized(
            "Email ou mot de passe incorrect"
        )

        AuditLogger.log_error(
            db=db,
            description=f"Tentative de connexion échouée pour: {form_data.username}",
            error_details="Identifiants incorrects",
            request=request,
            status_code=401,
            entity_type=EntityType.USER
        )

        return error_response.to_json_response()

    access_token = create_user_token(user)

    AuditLogger.log_crud_action(
        db=db,
        action=ActionType.LOGIN,
        entity_type=EntityType.USER,
        entity_id=user.id,
        user_id=user.id,
        description=f"Connexion réussie: {user.email}",
        request=request
    )

    return {
        "access_token": access_token,
        "token_type": "bearer",
        "user": schemas.UserOut.model_validate(user)
    }


@router.get("/me", response_model=schemas.UserOut)
async def get_current_user_info(
    current_user: UserAuth = Depends(get_current_user)
):
    """
    Récupère les informations de l'utilisateur connecté
    """
    return current_user
