"""
Chat API for booking conversations.
Provides REST access to the moderation pipeline and the real-time WebSocket endpoint.
"""

import logging
from typing import List, Optional
from uuid import UUID
from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from pydantic import ValidationError as PydanticValidationError

from auth import AuthError, Principal, decode_token, get_current_user, require_staff, require_supervisor
from chat import (
    ChatStatistics, FlagRequest, MarkRead, Message, MessageCreate,
    SystemMessageCreate, WebSocketMessage
)
from realtime import manager
from service import ServiceResult, TrustSafetyService
from ..dependencies import get_service, unwrap

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(
    prefix="/chat",
    tags=["Chat"]
)

async def _send_error(websocket: WebSocket, message: str, code: Optional[str] = None):
    await websocket.send_json({
        "type": "error",
        "data": {
            "code": code or "invalid_request",
            "message": message
        }
    })

async def _send_failure(websocket: WebSocket, result: ServiceResult, **extra):
    await websocket.send_json({
        "type": "error",
        "data": {**result.error.model_dump(), **extra}
    })

def _booking_id(data: dict) -> UUID:
    return UUID(str(data["booking_id"]))

async def handle_client_message(
    websocket: WebSocket,
    principal: Principal,
    message: WebSocketMessage,
    service: TrustSafetyService
):
    """Dispatch one client frame."""
    data = message.data
    try:
        booking_id = _booking_id(data)
    except (KeyError, ValueError):
        await _send_error(websocket, "booking_id is required")
        return

    if message.type == "join_booking":
        result = await service.check_room_access(principal, booking_id)
        if not result.success:
            await _send_failure(websocket, result)
        elif not result.data:
            await _send_error(websocket, f"Cannot join booking {booking_id}", "forbidden")
        else:
            manager.join_booking(principal.user_id, booking_id)
            await websocket.send_json({
                "type": "joined_booking",
                "data": {"booking_id": str(booking_id)}
            })

    elif message.type == "leave_booking":
        manager.leave_booking(principal.user_id, booking_id)

    elif message.type == "send_message":
        temp_id = data.get("temp_id")
        result = await service.submit_message(
            booking_id, principal.user_id, data.get("content"), data.get("media_url")
        )
        if not result.success:
            await _send_failure(websocket, result, temp_id=temp_id)
            return
        await websocket.send_json({
            "type": "message_sent",
            "data": {
                "temp_id": temp_id,
                "message": result.data.model_dump(mode="json")
            }
        })

    elif message.type == "mark_read":
        try:
            message_ids = (
                [UUID(str(message_id)) for message_id in data["message_ids"]]
                if data.get("message_ids") is not None else None
            )
        except (TypeError, ValueError):
            await _send_error(websocket, "message_ids must be a list of ids")
            return
        result = await service.mark_read(booking_id, principal.user_id, message_ids)
        if not result.success:
            await _send_failure(websocket, result)

    elif message.type == "typing":
        if principal.user_id not in manager.get_room_members(booking_id):
            await _send_error(websocket, f"Join booking {booking_id} first", "forbidden")
            return
        await manager.publish_to_booking(booking_id, None, {
            "type": "user_typing",
            "data": {
                "booking_id": str(booking_id),
                "user_id": str(principal.user_id),
                "is_typing": bool(data.get("is_typing", True))
            }
        })

    else:
        await _send_error(websocket, f"Unknown message type: {message.type}")

@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, service: TrustSafetyService = Depends(get_service)):
    """WebSocket endpoint for real-time booking chat."""
    # Accept the connection first
    await websocket.accept()

    principal = None
    try:
        # Wait for authentication message
        auth_message = await websocket.receive_json()
        if not isinstance(auth_message, dict) or "token" not in auth_message:
            await websocket.close(code=4001, reason="Authentication required")
            return

        # Verify the token
        try:
            principal = decode_token(auth_message["token"])
        except AuthError as e:
            logger.debug(f"WebSocket authentication failed: {e}")
            await websocket.close(code=4001, reason="Invalid token")
            return

        # Connect to manager
        await manager.connect(websocket, principal.user_id)

        while True:
            # Receive and validate message
            data = await websocket.receive_json()
            try:
                message = WebSocketMessage(**data)
            except (PydanticValidationError, TypeError) as e:
                await _send_error(websocket, f"Invalid message format: {e}")
                continue
            await handle_client_message(websocket, principal, message, service)

    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"WebSocket error for {principal.user_id if principal else 'anonymous'}: {e}")
        await websocket.close(code=1011, reason="Internal error")
    finally:
        if principal:
            manager.disconnect(principal.user_id, websocket)

@router.post("/{booking_id}/messages", response_model=Message)
async def send_message(
    booking_id: UUID,
    request: MessageCreate,
    current_user: Principal = Depends(get_current_user),
    service: TrustSafetyService = Depends(get_service)
):
    """Send a message into a booking conversation."""
    return unwrap(await service.submit_message(
        booking_id, current_user.user_id, request.content, request.media_url
    ))

@router.get("/{booking_id}/messages", response_model=List[Message])
async def get_messages(
    booking_id: UUID,
    limit: int = Query(50, ge=1, le=200),
    before_seq: Optional[int] = None,
    current_user: Principal = Depends(get_current_user),
    service: TrustSafetyService = Depends(get_service)
):
    """Get a booking's conversation history."""
    return unwrap(await service.get_messages(booking_id, current_user, limit, before_seq))

@router.post("/{booking_id}/read")
async def mark_read(
    booking_id: UUID,
    request: MarkRead,
    current_user: Principal = Depends(get_current_user),
    service: TrustSafetyService = Depends(get_service)
):
    """Mark the other participant's messages as read."""
    updated = unwrap(await service.mark_read(booking_id, current_user.user_id, request.message_ids))
    return {"message_ids": updated}

@router.post("/{booking_id}/system-message", response_model=Message)
async def send_system_message(
    booking_id: UUID,
    request: SystemMessageCreate,
    current_user: Principal = Depends(require_staff),
    service: TrustSafetyService = Depends(get_service)
):
    """Post a system message into a booking conversation."""
    return unwrap(await service.send_system_message(booking_id, current_user, request.content))

@router.put("/messages/{message_id}/flag", response_model=Message)
async def flag_message(
    message_id: UUID,
    request: FlagRequest,
    current_user: Principal = Depends(require_staff),
    service: TrustSafetyService = Depends(get_service)
):
    """Flag a message for review."""
    return unwrap(await service.flag_message(message_id, current_user, request.reason))

@router.get("/statistics", response_model=ChatStatistics)
async def get_statistics(
    window: str = "24h",
    current_user: Principal = Depends(require_supervisor),
    service: TrustSafetyService = Depends(get_service)
):
    """Message and flag counts over a trailing window."""
    return unwrap(await service.get_chat_statistics(window))

# Export the router
__all__ = ['router', 'handle_client_message']
