from __future__ import annotations

from typing import List, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect, status
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from cafe_api.api.dependencies.session import require_actor
from cafe_api.db.session import get_session
from cafe_api.models.notification import Notification
from cafe_api.models.user import User
from cafe_api.services.notifications import NotificationInbox, get_connection_registry
from cafe_api.services.orders.state_machine import Actor

router = APIRouter(prefix="/notifications", tags=["Notifications"])


class NotificationResponse(BaseModel):
    id: str
    type: str
    title: str
    message: str
    read: bool
    link: Optional[str]
    created_at: str


class NotificationListResponse(BaseModel):
    notifications: List[NotificationResponse]
    unread_count: int


class NotificationBatchRequest(BaseModel):
    action: Literal["mark_read", "delete"]
    notification_ids: List[UUID] = Field(..., min_length=1, max_length=500)


class NotificationBatchResponse(BaseModel):
    action: str
    affected: int


def _serialize(notification: Notification) -> NotificationResponse:
    return NotificationResponse(
        id=str(notification.id),
        type=notification.type.value,
        title=notification.title,
        message=notification.message,
        read=bool(notification.read),
        link=notification.link,
        created_at=notification.created_at.isoformat(),
    )


@router.get("/", response_model=NotificationListResponse)
async def list_notifications(
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    actor: Actor = Depends(require_actor),
    db: AsyncSession = Depends(get_session),
) -> NotificationListResponse:
    inbox = NotificationInbox(db)
    notifications = await inbox.list_for_user(actor.user_id, unread_only=unread_only, limit=limit)
    return NotificationListResponse(
        notifications=[_serialize(item) for item in notifications],
        unread_count=await inbox.unread_count(actor.user_id),
    )


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_notification_read(
    notification_id: UUID,
    actor: Actor = Depends(require_actor),
    db: AsyncSession = Depends(get_session),
) -> NotificationResponse:
    notification = await NotificationInbox(db).mark_read(actor.user_id, notification_id)
    if notification is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
    return _serialize(notification)


@router.post("/batch", response_model=NotificationBatchResponse)
async def batch_notifications(
    payload: NotificationBatchRequest,
    actor: Actor = Depends(require_actor),
    db: AsyncSession = Depends(get_session),
) -> NotificationBatchResponse:
    """Mark as read or delete several of the caller's notifications; foreign ids are ignored."""

    affected = await NotificationInbox(db).apply_batch(actor.user_id, payload.action, payload.notification_ids)
    return NotificationBatchResponse(action=payload.action, affected=affected)


@router.delete("/", response_model=NotificationBatchResponse)
async def delete_all_notifications(
    actor: Actor = Depends(require_actor),
    db: AsyncSession = Depends(get_session),
) -> NotificationBatchResponse:
    affected = await NotificationInbox(db).delete_all(actor.user_id)
    return NotificationBatchResponse(action="delete", affected=affected)


@router.websocket("/ws")
async def notification_stream(
    websocket: WebSocket,
    user: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_session),
) -> None:
    """Live notification feed; the connection lives in the registry until it closes."""

    session_user = websocket.headers.get("x-session-user") or user
    try:
        user_id = UUID(session_user or "")
    except ValueError:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    if await db.get(User, user_id) is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    unread = await NotificationInbox(db).unread_count(user_id)
    await db.close()

    registry = get_connection_registry()
    await websocket.accept()
    await registry.register(user_id, websocket)
    try:
        await websocket.send_json({"event": "connected", "data": {"unreadCount": unread}})
        while True:
            message = await websocket.receive_text()
            if message == "ping":
                await websocket.send_json({"event": "pong"})
    except WebSocketDisconnect:
        logger.debug("Notification stream closed", user_id=str(user_id))
    finally:
        await registry.deregister(user_id, websocket)
