"""
Gate API route - entry point of the client application

The client calls GET /api/gate with the query string of its own URL and
renders the returned view.
"""
from fastapi import APIRouter, Depends, Request

from ..services.auth_state_machine import AuthStateMachine
from ..services.session_gate import SessionGate
from .dependencies import get_auth, get_gate

router = APIRouter(prefix="/api", tags=["gate"])


@router.get("/gate")
async def enter(
    request: Request,
    gate: SessionGate = Depends(get_gate),
    auth: AuthStateMachine = Depends(get_auth)
):
    """
    Select the view for the entry URL

    Applies the verification callback code when the URL carries one, and
    opens the conversation on first entry.
    """
    decision = await gate.enter(dict(request.query_params))
    payload = decision.to_dict()
    payload.update(auth.to_dict())
    return payload
