"""
Auth API routes - sign-in, sign-up, email verification, password reset

Every route returns the machine snapshot {state, busy, ready}; classified
failures are returned as {"detail": {"error": <kind>, "detail": <message>}}.
"""
import logging
from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..models.auth_state import CredentialsMode
from ..models.errors import AuthFlowError
from ..services.auth_state_machine import AuthStateMachine
from .dependencies import get_auth
from .errors import to_http_exception

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


class ModeRequest(BaseModel):
    """Credentials form selection"""
    mode: CredentialsMode = CredentialsMode.LOGIN


class SignInRequest(BaseModel):
    """Sign-in request"""
    email: str
    password: str


class SignUpRequest(BaseModel):
    """Sign-up request"""
    email: str
    password: str
    repeat_password: str


class PasswordResetRequest(BaseModel):
    """Password reset request"""
    email: str


class VerifyRequest(BaseModel):
    """Verification callback code"""
    code: str


@router.get("/state")
async def get_state(auth: AuthStateMachine = Depends(get_auth)):
    """Current auth state"""
    return auth.to_dict()


@router.post("/mode")
async def show_credentials(req: ModeRequest, auth: AuthStateMachine = Depends(get_auth)):
    """Switch between the login and sign-up forms"""
    try:
        auth.show_credentials(req.mode)
    except AuthFlowError as e:
        raise to_http_exception(e)
    return auth.to_dict()


@router.post("/signin")
async def sign_in(req: SignInRequest, auth: AuthStateMachine = Depends(get_auth)):
    """Sign in with email and password"""
    try:
        await auth.start_sign_in(req.email, req.password)
    except AuthFlowError as e:
        raise to_http_exception(e)
    return auth.to_dict()


@router.post("/signup")
async def sign_up(req: SignUpRequest, auth: AuthStateMachine = Depends(get_auth)):
    """Create an account and send the verification email"""
    try:
        await auth.start_sign_up(req.email, req.password, req.repeat_password)
    except AuthFlowError as e:
        raise to_http_exception(e)
    return auth.to_dict()


@router.post("/resend")
async def resend_verification(auth: AuthStateMachine = Depends(get_auth)):
    """Resend the verification email (no-op during the cooldown)"""
    try:
        await auth.resend_verification()
    except AuthFlowError as e:
        raise to_http_exception(e)
    return auth.to_dict()


@router.post("/refresh")
async def refresh_account(auth: AuthStateMachine = Depends(get_auth)):
    """Re-read the account, e.g. after verifying in another tab"""
    try:
        await auth.refresh_account()
    except AuthFlowError as e:
        raise to_http_exception(e)
    return auth.to_dict()


@router.post("/password-reset/start")
async def begin_password_reset(auth: AuthStateMachine = Depends(get_auth)):
    """Show the password reset form"""
    try:
        auth.begin_password_reset()
    except AuthFlowError as e:
        raise to_http_exception(e)
    return auth.to_dict()


@router.post("/password-reset")
async def request_password_reset(req: PasswordResetRequest, auth: AuthStateMachine = Depends(get_auth)):
    """Send the password reset email"""
    try:
        await auth.request_password_reset(req.email)
    except AuthFlowError as e:
        raise to_http_exception(e)
    return auth.to_dict()


@router.post("/verify")
async def complete_email_verification(req: VerifyRequest, auth: AuthStateMachine = Depends(get_auth)):
    """Apply a verification callback code"""
    try:
        await auth.complete_email_verification(req.code)
    except AuthFlowError as e:
        raise to_http_exception(e)
    return auth.to_dict()


@router.post("/return-to-login")
async def return_to_login(auth: AuthStateMachine = Depends(get_auth)):
    """Leave a form or verification result"""
    try:
        auth.return_to_login()
    except AuthFlowError as e:
        raise to_http_exception(e)
    return auth.to_dict()


@router.post("/signout")
async def sign_out(auth: AuthStateMachine = Depends(get_auth)):
    """Sign out and end the conversation"""
    try:
        await auth.sign_out()
    except AuthFlowError as e:
        raise to_http_exception(e)
    return auth.to_dict()
