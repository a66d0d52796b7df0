from __future__ import annotations

import logging
from typing import Any

import httpx

from kurso.core.config import get_settings
from kurso.core.errors import (
    DependencyError,
    DuplicateIdentityError,
    FatalConfigError,
    IdentityNotFoundError,
)
from kurso.services.resilience import call_with_timeout, retry_async


logger = logging.getLogger(__name__)

_DUPLICATE_MARKERS = ("already registered", "already been registered", "email_exists", "unique constraint")


def _is_duplicate_response(response: httpx.Response) -> bool:
    if response.status_code not in {400, 409, 422}:
        return False
    body = response.text.lower()
    return any(marker in body for marker in _DUPLICATE_MARKERS)


class SupabaseAdminIdentityProvider:
    """Identity provider backed by the hosted auth admin REST API.

    Creation uses ``POST /auth/v1/admin/users``. Lookup by email goes through the
    ``get_user_id_by_email`` database function exposed over ``/rest/v1/rpc`` so it
    stays an indexed point lookup instead of paging through every identity.
    """

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._settings = get_settings()
        if not self._settings.identity_api_url or not self._settings.identity_service_key:
            raise FatalConfigError("IDENTITY_API_URL and IDENTITY_SERVICE_KEY are required")
        self._base_url = self._settings.identity_api_url.rstrip("/")
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        # Reuse a single client per provider for connection pooling.
        timeout_s = self._settings.identity_call_timeout_ms / 1000.0
        self._client = httpx.AsyncClient(timeout=timeout_s)
        return self._client

    def _headers(self) -> dict[str, str]:
        key = self._settings.identity_service_key or ""
        return {"apikey": key, "Authorization": f"Bearer {key}"}

    async def create_identity(
        self,
        *,
        email: str,
        password: str,
        confirmed: bool,
        metadata: dict[str, Any],
    ) -> str:
        payload = {
            "email": email,
            "password": password,
            "email_confirm": confirmed,
            "user_metadata": metadata,
        }
        client = self._get_client()

        async def _call() -> httpx.Response:
            return await client.post(
                f"{self._base_url}/auth/v1/admin/users",
                json=payload,
                headers=self._headers(),
            )

        try:
            response = await call_with_timeout(_call, timeout_ms=self._settings.identity_call_timeout_ms)
        except (TimeoutError, httpx.TimeoutException) as exc:
            raise DependencyError("identity creation timed out") from exc
        except httpx.HTTPError as exc:
            raise DependencyError(f"identity provider unreachable: {exc}") from exc

        if _is_duplicate_response(response):
            raise DuplicateIdentityError(f"identity already registered: {email}")
        if response.status_code >= 400:
            logger.warning("identity_create_failed status=%s", response.status_code)
            raise DependencyError(f"identity provider responded with status {response.status_code}")
        body = response.json()
        identity_id = body.get("id") or (body.get("user") or {}).get("id")
        if not identity_id:
            raise DependencyError("identity provider response missing id")
        return str(identity_id)

    async def lookup_identity_by_email(self, email: str) -> str:
        client = self._get_client()

        async def _call() -> httpx.Response:
            response = await client.post(
                f"{self._base_url}/rest/v1/rpc/get_user_id_by_email",
                json={"p_email": email.lower()},
                headers=self._headers(),
            )
            if response.status_code >= 500:
                response.raise_for_status()
            return response

        def _retryable(exc: Exception) -> bool:
            if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError, TimeoutError)):
                return True
            if isinstance(exc, httpx.HTTPStatusError):
                return exc.response.status_code >= 500
            return False

        try:
            response = await retry_async(_call, retryable=_retryable)
        except (TimeoutError, httpx.HTTPError) as exc:
            raise DependencyError(f"identity lookup failed: {exc}") from exc

        if response.status_code == 404:
            raise IdentityNotFoundError(email)
        if response.status_code >= 400:
            raise DependencyError(f"identity lookup responded with status {response.status_code}")
        identity_id = response.json()
        if not identity_id:
            raise IdentityNotFoundError(email)
        return str(identity_id)
