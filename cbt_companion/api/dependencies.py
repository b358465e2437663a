"""Common FastAPI dependencies: the collaborators wired by create_app()."""

from fastapi import Depends, HTTPException, Request, status

from ..models.auth_state import AuthStateKind
from ..services.auth_state_machine import AuthStateMachine
from ..services.conversation_controller import ConversationController
from ..services.session_gate import SessionGate

NOT_AUTHENTICATED_MESSAGE = "يرجى تسجيل الدخول وتأكيد بريدك الإلكتروني أولاً."


def get_auth(request: Request) -> AuthStateMachine:
    return request.app.state.auth


def get_conversation(request: Request) -> ConversationController:
    return request.app.state.conversation


def get_gate(request: Request) -> SessionGate:
    return request.app.state.gate


async def require_conversation(
    auth: AuthStateMachine = Depends(get_auth),
    conversation: ConversationController = Depends(get_conversation),
) -> ConversationController:
    """The conversation, opened if needed; only for a verified, signed-in user."""
    if auth.state.kind != AuthStateKind.AUTHENTICATED:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"error": "not_authenticated", "detail": NOT_AUTHENTICATED_MESSAGE},
        )
    if not conversation.is_initialized:
        await conversation.initialize()
    return conversation
