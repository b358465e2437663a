"""
Identity Client - identity provider collaborator

Responsibilities:
- Credential operations (sign-up, sign-in, sign-out)
- Email verification (send message, apply callback code)
- Password reset requests
- Pushing the authoritative account snapshot to the single registered listener
- Renewing an expired ID token from the stored refresh token

FirebaseIdentityClient talks to the Firebase Identity Toolkit REST API:
    https://firebase.google.com/docs/reference/rest/auth
and exchanges refresh tokens at the Secure Token endpoint.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional

import httpx

from ..models.account import Account
from ..models.errors import IdentityError, IdentityErrorCode

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[Optional[Account]], None]


class IdentityClient(ABC):
    """
    Identity provider interface

    Every operation is a coroutine and raises IdentityError on failure.
    Implementations call _emit_snapshot() whenever the signed-in account
    changes (sign-in, sign-out, verification flip).
    """

    def __init__(self):
        self._listener: Optional[SnapshotCallback] = None

    def on_account_snapshot_changed(self, callback: SnapshotCallback) -> None:
        """
        Register the process-wide account snapshot listener

        Args:
            callback: Called with the new Account, or None after sign-out

        Raises:
            RuntimeError: A listener is already registered
        """
        if self._listener is not None:
            raise RuntimeError("An account snapshot listener is already registered")
        self._listener = callback

    def _emit_snapshot(self, account: Optional[Account]) -> None:
        if self._listener is not None:
            self._listener(account)

    @abstractmethod
    async def sign_up(self, email: str, password: str) -> Account:
        """Create an account and sign it in"""
        pass

    @abstractmethod
    async def sign_in(self, email: str, password: str) -> Account:
        """Sign in with email and password"""
        pass

    @abstractmethod
    async def sign_out(self) -> None:
        """Forget the signed-in account"""
        pass

    @abstractmethod
    async def send_verification_email(self, account: Account) -> None:
        """Dispatch a verification message to the account's email"""
        pass

    @abstractmethod
    async def send_password_reset(self, email: str) -> None:
        """Dispatch a password reset message"""
        pass

    @abstractmethod
    async def apply_verification_code(self, code: str) -> None:
        """Apply the one-time code carried by a verification callback URL"""
        pass

    @abstractmethod
    async def reload_account(self) -> Optional[Account]:
        """
        Re-read the signed-in account from the provider

        Returns:
            Fresh Account, or None when nobody is signed in
        """
        pass


# Firebase error strings -> IdentityErrorCode
FIREBASE_ERROR_CODES: Dict[str, IdentityErrorCode] = {
    "EMAIL_EXISTS": IdentityErrorCode.EMAIL_IN_USE,
    "WEAK_PASSWORD": IdentityErrorCode.WEAK_PASSWORD,
    "INVALID_PASSWORD": IdentityErrorCode.INVALID_CREDENTIAL,
    "INVALID_LOGIN_CREDENTIALS": IdentityErrorCode.INVALID_CREDENTIAL,
    "INVALID_EMAIL": IdentityErrorCode.INVALID_CREDENTIAL,
    "MISSING_PASSWORD": IdentityErrorCode.INVALID_CREDENTIAL,
    "USER_DISABLED": IdentityErrorCode.INVALID_CREDENTIAL,
    "INVALID_ID_TOKEN": IdentityErrorCode.INVALID_CREDENTIAL,
    "TOKEN_EXPIRED": IdentityErrorCode.INVALID_CREDENTIAL,
    "INVALID_REFRESH_TOKEN": IdentityErrorCode.INVALID_CREDENTIAL,
    "EMAIL_NOT_FOUND": IdentityErrorCode.USER_NOT_FOUND,
    "USER_NOT_FOUND": IdentityErrorCode.USER_NOT_FOUND,
    "TOO_MANY_ATTEMPTS_TRY_LATER": IdentityErrorCode.TOO_MANY_REQUESTS,
    "QUOTA_EXCEEDED": IdentityErrorCode.TOO_MANY_REQUESTS,
    "INVALID_OOB_CODE": IdentityErrorCode.INVALID_OR_EXPIRED_CODE,
    "EXPIRED_OOB_CODE": IdentityErrorCode.INVALID_OR_EXPIRED_CODE,
}

# Reasons answered by exchanging the refresh token for a new ID token
EXPIRED_TOKEN_REASONS = ("TOKEN_EXPIRED", "INVALID_ID_TOKEN")


def parse_firebase_error(response: httpx.Response) -> IdentityError:
    """
    Build an IdentityError from a failed Identity Toolkit response

    The error body looks like
    {"error": {"code": 400, "message": "WEAK_PASSWORD : Password should be ..."}}
    """
    try:
        message = response.json()["error"]["message"]
    except (ValueError, KeyError, TypeError):
        return IdentityError(IdentityErrorCode.UNKNOWN, f"HTTP {response.status_code}")

    reason = str(message).split(":")[0].strip()
    code = FIREBASE_ERROR_CODES.get(reason, IdentityErrorCode.UNKNOWN)
    if code == IdentityErrorCode.UNKNOWN and response.status_code == 429:
        code = IdentityErrorCode.TOO_MANY_REQUESTS
    return IdentityError(code, reason)


class FirebaseIdentityClient(IdentityClient):
    """
    Firebase Identity Toolkit REST client

    Keeps the ID token and refresh token of the signed-in account. An expired
    ID token is exchanged at the Secure Token endpoint and the request is
    sent once more.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://identitytoolkit.googleapis.com/v1",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        token_url: str = "https://securetoken.googleapis.com/v1/token"
    ):
        """
        Initialize the Firebase identity client

        Args:
            api_key: Firebase web API key
            base_url: Identity Toolkit base URL
            timeout: Request timeout (seconds)
            transport: Optional httpx transport (used by tests)
            token_url: Secure Token endpoint for ID token refresh
        """
        super().__init__()
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.token_url = token_url
        self.timeout = timeout
        self._transport = transport

        self._id_token: Optional[str] = None
        self._refresh_token: Optional[str] = None
        self._account: Optional[Account] = None

        logger.info(f"FirebaseIdentityClient initialized (base_url={self.base_url})")

    @property
    def current_account(self) -> Optional[Account]:
        return self._account

    async def _request(
        self,
        url: str,
        label: str,
        json: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, str]] = None
    ) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(url, params={"key": self.api_key}, json=json, data=data)
        except httpx.TransportError as e:
            logger.error(f"Identity request {label} failed: {type(e).__name__}: {e}")
            raise IdentityError(IdentityErrorCode.NETWORK, str(e)) from e

        if response.status_code >= 400:
            error = parse_firebase_error(response)
            logger.warning(f"Identity request {label} rejected: {error.code.value} ({error.detail})")
            raise error

        try:
            return response.json()
        except ValueError as e:
            raise IdentityError(IdentityErrorCode.UNKNOWN, "Malformed provider response") from e

    async def _post(self, endpoint: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST to accounts:{endpoint} and return the JSON body"""
        return await self._request(f"{self.base_url}/accounts:{endpoint}", f"accounts:{endpoint}", json=payload)

    async def _refresh_id_token(self) -> None:
        """Exchange the refresh token for a new ID token"""
        data = await self._request(self.token_url, "token", data={
            "grant_type": "refresh_token",
            "refresh_token": self._refresh_token,
        })
        self._id_token = data["id_token"]
        self._refresh_token = data.get("refresh_token", self._refresh_token)
        logger.info("ID token refreshed")

    async def _post_authorized(
        self,
        endpoint: str,
        build_payload: Callable[[str], Dict[str, Any]]
    ) -> Dict[str, Any]:
        """
        POST a request carrying the current ID token

        Args:
            endpoint: accounts:{endpoint}
            build_payload: Builds the payload from an ID token
        """
        try:
            return await self._post(endpoint, build_payload(self._id_token))
        except IdentityError as e:
            if e.detail not in EXPIRED_TOKEN_REASONS or not self._refresh_token:
                raise

        await self._refresh_id_token()
        return await self._post(endpoint, build_payload(self._id_token))

    async def _lookup(self, id_token: str) -> Account:
        data = await self._post("lookup", {"idToken": id_token})
        return self._account_from_lookup(data)

    @staticmethod
    def _account_from_lookup(data: Dict[str, Any]) -> Account:
        users = data.get("users") or []
        if not users:
            raise IdentityError(IdentityErrorCode.USER_NOT_FOUND, "lookup returned no users")

        user = users[0]
        return Account(
            uid=user["localId"],
            email=user.get("email", ""),
            email_verified=bool(user.get("emailVerified", False)),
        )

    def _set_account(self, account: Optional[Account]) -> None:
        self._account = account
        self._emit_snapshot(account)

    async def sign_up(self, email: str, password: str) -> Account:
        data = await self._post("signUp", {
            "email": email,
            "password": password,
            "returnSecureToken": True,
        })

        self._id_token = data["idToken"]
        self._refresh_token = data.get("refreshToken")
        account = Account(
            uid=data["localId"],
            email=data.get("email", email),
            email_verified=False,
        )
        logger.info(f"Account created: {account.uid}")
        self._set_account(account)
        return account

    async def sign_in(self, email: str, password: str) -> Account:
        data = await self._post("signInWithPassword", {
            "email": email,
            "password": password,
            "returnSecureToken": True,
        })

        # signInWithPassword does not report emailVerified
        id_token = data["idToken"]
        account = await self._lookup(id_token)

        self._id_token = id_token
        self._refresh_token = data.get("refreshToken")
        logger.info(f"Signed in: {account.uid} (verified={account.email_verified})")
        self._set_account(account)
        return account

    async def sign_out(self) -> None:
        if self._account:
            logger.info(f"Signed out: {self._account.uid}")
        self._id_token = None
        self._refresh_token = None
        self._set_account(None)

    async def send_verification_email(self, account: Account) -> None:
        if not self._id_token or not self._account or self._account.uid != account.uid:
            raise IdentityError(IdentityErrorCode.UNKNOWN, "Account is not signed in")

        await self._post_authorized("sendOobCode", lambda id_token: {
            "requestType": "VERIFY_EMAIL",
            "idToken": id_token,
        })
        logger.info(f"Verification email sent for {account.uid}")

    async def send_password_reset(self, email: str) -> None:
        await self._post("sendOobCode", {
            "requestType": "PASSWORD_RESET",
            "email": email,
        })
        logger.info("Password reset email requested")

    async def apply_verification_code(self, code: str) -> None:
        data = await self._post("update", {"oobCode": code})

        verified_email = (data.get("email") or "").lower()
        if self._account and self._account.email.lower() == verified_email:
            self._set_account(Account(
                uid=self._account.uid,
                email=self._account.email,
                email_verified=bool(data.get("emailVerified", True)),
            ))
        logger.info("Verification code applied")

    async def reload_account(self) -> Optional[Account]:
        if not self._id_token:
            return None

        data = await self._post_authorized("lookup", lambda id_token: {"idToken": id_token})
        account = self._account_from_lookup(data)
        self._set_account(account)
        return account


__all__ = [
    "SnapshotCallback",
    "IdentityClient",
    "FirebaseIdentityClient",
    "FIREBASE_ERROR_CODES",
    "EXPIRED_TOKEN_REASONS",
    "parse_firebase_error",
]
