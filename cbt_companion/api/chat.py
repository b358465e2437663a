"""
Chat API routes - transcript, sending messages, exports

All routes require a verified, signed-in user; the conversation is opened
on first use.
"""
import logging
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from pydantic import BaseModel

from ..models.conversation import ExportArtifact
from ..services.conversation_controller import ConversationController
from .dependencies import require_conversation

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chat", tags=["chat"])


class SendMessageRequest(BaseModel):
    """User message"""
    text: str


def transcript_payload(conversation: ConversationController) -> dict:
    return {
        "messages": [message.to_dict() for message in conversation.messages],
        "pending": conversation.pending,
    }


def download_response(artifact: ExportArtifact) -> Response:
    """Plain text attachment"""
    return Response(
        content=artifact.content.encode("utf-8"),
        media_type=artifact.media_type,
        headers={
            "Content-Disposition": f"attachment; filename=\"{artifact.filename}\"; "
                                   f"filename*=UTF-8''{quote(artifact.filename)}"
        },
    )


@router.get("/messages")
async def get_messages(conversation: ConversationController = Depends(require_conversation)):
    """Current transcript"""
    return transcript_payload(conversation)


@router.post("/messages")
async def send_message(
    req: SendMessageRequest,
    conversation: ConversationController = Depends(require_conversation)
):
    """
    Send a user message and wait for the reply

    Rejected sends (empty text, reply pending) return accepted=false and
    leave the transcript untouched.
    """
    reply = await conversation.send(req.text)
    payload = transcript_payload(conversation)
    payload["accepted"] = reply is not None
    payload["reply"] = reply.to_dict() if reply else None
    return payload


@router.get("/export")
async def export_transcript(conversation: ConversationController = Depends(require_conversation)):
    """Download the full transcript"""
    artifact = conversation.export_transcript()
    logger.info(f"Transcript exported ({len(conversation.messages)} messages)")
    return download_response(artifact)


@router.get("/messages/{message_id}/export")
async def export_summary(
    message_id: int,
    conversation: ConversationController = Depends(require_conversation)
):
    """Download a single session summary message"""
    try:
        artifact = conversation.export_summary(message_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail={"error": "not_found", "detail": str(e)})
    except ValueError as e:
        raise HTTPException(status_code=400, detail={"error": "not_summary", "detail": str(e)})
    return download_response(artifact)
