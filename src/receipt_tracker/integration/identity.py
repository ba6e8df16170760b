import asyncio
import os

import httpx

from receipt_tracker.errors import AuthError
from receipt_tracker.logger import get_logger
from receipt_tracker.storage.base import Owner

logger = get_logger(__name__)

IDENTITY_TOOLKIT_URL = "https://identitytoolkit.googleapis.com/v1"

_FRIENDLY_ERRORS = {
    "EMAIL_NOT_FOUND": "No account exists for that email address.",
    "INVALID_PASSWORD": "The password is incorrect.",
    "INVALID_LOGIN_CREDENTIALS": "The email or password is incorrect.",
    "USER_DISABLED": "This account has been disabled.",
}


class IdentityClient:
    """Email/password sign-in against the Firebase Identity Toolkit REST API."""

    def __init__(
        self,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
        base_url: str = IDENTITY_TOOLKIT_URL,
    ):
        self.api_key = api_key or os.getenv("FIREBASE_API_KEY")
        self.base_url = base_url.rstrip("/")
        self._client = client
        self._client_lock = asyncio.Lock()

    async def aclose(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _get_client(self) -> httpx.AsyncClient:
        client = self._client
        if client is not None and not client.is_closed:
            return client
        async with self._client_lock:
            client = self._client
            if client is None or client.is_closed:
                client = httpx.AsyncClient(timeout=30.0)
                self._client = client
            return client

    async def sign_in(self, email: str, password: str) -> Owner:
        if not self.api_key:
            raise AuthError("FIREBASE_API_KEY not configured", user_message="Sign-in is not configured.")
        if not email or not password:
            raise AuthError("missing credentials", user_message="Email and password are required.")

        client = await self._get_client()
        try:
            response = await client.post(
                f"{self.base_url}/accounts:signInWithPassword",
                params={"key": self.api_key},
                json={"email": email, "password": password, "returnSecureToken": True},
            )
        except httpx.HTTPError as exc:
            logger.error("[AUTH] Identity provider unreachable: %s", exc)
            raise AuthError(f"Identity provider unreachable: {exc}") from exc

        if response.status_code != 200:
            code = self._error_code(response)
            logger.warning("[AUTH] Sign-in rejected for %s: %s", email, code)
            raise AuthError(
                f"Sign-in rejected: {code}",
                user_message=_FRIENDLY_ERRORS.get(code, AuthError.default_message),
            )

        data = response.json()
        user_id = data.get("localId")
        id_token = data.get("idToken")
        if not user_id or not id_token:
            raise AuthError("Sign-in response missing localId or idToken")

        logger.info("[AUTH] Signed in %s.", email)
        return Owner(user_id=user_id, id_token=id_token, email=data.get("email") or email)

    @staticmethod
    def _error_code(response: httpx.Response) -> str:
        try:
            message = response.json().get("error", {}).get("message", "")
        except ValueError:
            return f"HTTP_{response.status_code}"
        # Messages look like "INVALID_PASSWORD" or "TOO_MANY_ATTEMPTS : detail"
        return message.split(" ", 1)[0] if message else f"HTTP_{response.status_code}"
