"""
Routes API pour les conversations d'intervention
"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from typing import List

from database import get_db
from auth import get_current_user
from models import UserAuth
from services.conversation_service import ConversationService
import schemas

router = APIRouter(prefix="/api/conversations", tags=["conversations"])


@router.get(
    "/interventions/{intervention_id}/threads",
    response_model=schemas.ActionResult[List[schemas.ThreadOut]]
)
async def list_threads(
    intervention_id: int,
    current_user: UserAuth = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Fils de discussion visibles pour le rôle de l'utilisateur"""
    threads = ConversationService.list_threads(db, intervention_id, current_user)
    return {"success": True, "data": [schemas.ThreadOut.model_validate(t) for t in threads]}


@router.get("/threads/{thread_id}/messages", response_model=schemas.ActionResult[List[schemas.MessageOut]])
async def list_messages(
    thread_id: int,
    request: Request,
    current_user: UserAuth = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    messages = ConversationService.list_messages(db, thread_id, current_user, request)
    return {"success": True, "data": [schemas.MessageOut.model_validate(m) for m in messages]}


@router.post("/threads/{thread_id}/messages", response_model=schemas.ActionResult[schemas.MessageOut])
async def post_message(
    thread_id: int,
    payload: schemas.MessageCreate,
    request: Request,
    current_user: UserAuth = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    message = ConversationService.post_message(db, thread_id, current_user, payload.content, request)
    return {"success": True, "data": schemas.MessageOut.model_validate(message)}
