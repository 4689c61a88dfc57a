"""
Routes pour les notifications in-app de l'utilisateur connecté
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from database import get_db
from auth import get_current_user
from models import UserAuth
from constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from services.user_notification_service import UserNotificationService
import schemas


notifications_router = APIRouter(prefix="/api/notifications", tags=["Notifications"])


@notifications_router.get("/")
def get_notifications(
    unread_only: bool = False,
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    current_user: UserAuth = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Récupère les notifications de l'utilisateur
    """
    data = UserNotificationService.get_user_notifications(
        db, current_user.id, unread_only=unread_only, limit=limit, offset=offset
    )
    return {"success": True, "data": data}


@notifications_router.post("/read")
def mark_notifications_as_read(
    payload: schemas.NotificationsReadPayload,
    current_user: UserAuth = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    count = UserNotificationService.mark_as_read(
        db, current_user.id, payload.notification_ids, payload.mark_all
    )
    return {"success": True, "data": {"updated_count": count}}
