from fastapi import APIRouter, HTTPException, Request
from typing import List
import logging

from omnichan.exceptions import DeliveryFailed, NotFound, StorageError
from omnichan.schemas import MessageResponse, ReplyCreate, SenderActionCreate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/conversations", tags=["Conversations"])


@router.get("/{conversation_id}/messages", response_model=List[MessageResponse])
async def get_conversation_messages(conversation_id: int, request: Request):
    """Get all messages in a conversation, oldest first"""
    sync = request.app.state.message_sync
    try:
        return await sync.list_messages(conversation_id)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except StorageError as e:
        logger.error(f"Failed to load messages for conversation {conversation_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to get messages")


@router.post("/{conversation_id}/messages", response_model=MessageResponse, status_code=201)
async def send_reply(conversation_id: int, body: ReplyCreate, request: Request):
    """Send an agent reply to the customer"""
    sync = request.app.state.message_sync
    try:
        return await sync.send_reply(conversation_id, body.sender_id, body.text)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except DeliveryFailed as e:
        raise HTTPException(status_code=502, detail=f"Failed to send message: {e}")
    except StorageError as e:
        logger.error(f"Reply to conversation {conversation_id} sent but not stored: {e}")
        raise HTTPException(status_code=500, detail="Failed to store message")


@router.post("/{conversation_id}/sender-action", status_code=202)
async def send_sender_action(conversation_id: int, body: SenderActionCreate, request: Request):
    """Show a typing indicator or mark the conversation as seen"""
    sync = request.app.state.message_sync
    try:
        await sync.send_sender_action(conversation_id, body.action)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"success": True}
