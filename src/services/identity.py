"""Identity provider adapter (GoTrue-compatible admin/auth REST API).

Provider failures are translated here, from HTTP status and the provider's
structured error code, into the exception classes below. Callers never look
at provider message text.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from src.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()


class IdentityProviderError(Exception):
    """Provider unreachable or returned an unexpected error."""

    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class InvalidCredentials(IdentityProviderError):
    """Email/password pair rejected."""


class RateLimited(IdentityProviderError):
    """Provider throttled the request."""


class IdentityNotFound(IdentityProviderError):
    """No identity with that id or email."""


class IdentityConflict(IdentityProviderError):
    """An identity with that email already exists."""


class WeakPassword(IdentityProviderError):
    """Password rejected by the provider's policy."""


_CODE_MAP: dict[str, type[IdentityProviderError]] = {
    "invalid_credentials": InvalidCredentials,
    "invalid_grant": InvalidCredentials,
    "over_request_rate_limit": RateLimited,
    "over_email_send_rate_limit": RateLimited,
    "user_not_found": IdentityNotFound,
    "email_exists": IdentityConflict,
    "user_already_exists": IdentityConflict,
    "weak_password": WeakPassword,
}

_STATUS_MAP: dict[int, type[IdentityProviderError]] = {
    404: IdentityNotFound,
    409: IdentityConflict,
    429: RateLimited,
}


def translate_error(response: httpx.Response) -> IdentityProviderError:
    """Map a failed provider response onto the error hierarchy."""
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}

    code = body.get("error_code") or body.get("error")
    message = body.get("msg") or body.get("error_description") or body.get("message") or response.reason_phrase

    exc_class = _CODE_MAP.get(code) if isinstance(code, str) else None
    if exc_class is None:
        exc_class = _STATUS_MAP.get(response.status_code, IdentityProviderError)
    return exc_class(str(message), status_code=response.status_code, code=code)


@dataclass
class ProviderIdentity:
    """An identity as the provider reports it."""

    id: str
    email: str
    email_confirmed_at: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "ProviderIdentity":
        # Admin endpoints return the user directly; some wrap it in "user"
        user = payload.get("user", payload)
        return cls(
            id=user["id"],
            email=user.get("email", ""),
            email_confirmed_at=user.get("email_confirmed_at"),
        )


@dataclass
class ProviderSession:
    """Session returned by password sign-in."""

    access_token: str
    user: ProviderIdentity
    refresh_token: Optional[str] = None


class IdentityProvider:
    """Async client for the external identity provider."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        anon_key: Optional[str] = None,
        service_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = (base_url or settings.identity_url).rstrip("/")
        self._anon_key = anon_key if anon_key is not None else settings.identity_anon_key
        self._service_key = service_key if service_key is not None else settings.identity_service_key
        self._timeout = timeout or settings.outbound_timeout_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Lazy initialization of the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=httpx.Timeout(self._timeout),
                transport=self._transport,
            )
        return self._client

    async def aclose(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _headers(self, bearer: Optional[str] = None, admin: bool = False) -> dict[str, str]:
        key = self._service_key if admin else self._anon_key
        return {
            "apikey": key,
            "Authorization": f"Bearer {bearer or key}",
        }

    async def _request(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        try:
            response = await self.client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"Identity provider unreachable ({method} {path}): {e}")
            raise IdentityProviderError(f"Identity provider unreachable: {e}") from e

        if response.is_error:
            raise translate_error(response)
        if not response.content:
            return {}
        return response.json()

    async def create_user(
        self,
        email: str,
        password: str,
        email_confirm: bool = True,
        metadata: Optional[dict[str, Any]] = None,
    ) -> ProviderIdentity:
        """Create an identity through the admin API."""
        payload = await self._request(
            "POST",
            "/admin/users",
            headers=self._headers(admin=True),
            json={
                "email": email,
                "password": password,
                "email_confirm": email_confirm,
                "user_metadata": metadata or {},
            },
        )
        return ProviderIdentity.from_payload(payload)

    async def delete_user(self, user_id: str) -> None:
        await self._request("DELETE", f"/admin/users/{user_id}", headers=self._headers(admin=True))

    async def sign_in_with_password(self, email: str, password: str) -> ProviderSession:
        payload = await self._request(
            "POST",
            "/token",
            params={"grant_type": "password"},
            headers=self._headers(),
            json={"email": email, "password": password},
        )
        return ProviderSession(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token"),
            user=ProviderIdentity.from_payload(payload["user"]),
        )

    async def sign_out(self, access_token: str) -> None:
        await self._request("POST", "/logout", headers=self._headers(bearer=access_token))

    async def reset_password_for_email(self, email: str, redirect_to: str) -> None:
        await self._request(
            "POST",
            "/recover",
            params={"redirect_to": redirect_to},
            headers=self._headers(),
            json={"email": email},
        )

    async def update_user_password(self, access_token: str, password: str) -> ProviderIdentity:
        """Set a new password for the identity owning ``access_token``."""
        payload = await self._request(
            "PUT",
            "/user",
            headers=self._headers(bearer=access_token),
            json={"password": password},
        )
        return ProviderIdentity.from_payload(payload)


# Singleton instance
identity_provider = IdentityProvider()


def get_identity_provider() -> IdentityProvider:
    """FastAPI dependency returning the shared adapter."""
    return identity_provider
