from __future__ import annotations

from typing import Any
from uuid import uuid4

from kurso.core.errors import DependencyError, DuplicateIdentityError, IdentityNotFoundError


class FakeIdentityProvider:
    def __init__(self, *, fail_emails: set[str] | None = None) -> None:
        # In-memory identities keep dev runs and tests free of external calls.
        self.identities: dict[str, str] = {}
        self.metadata: dict[str, dict[str, Any]] = {}
        self.create_calls: list[str] = []
        self._fail_emails = {email.lower() for email in (fail_emails or set())}

    def seed(self, email: str, identity_id: str | None = None) -> str:
        resolved = identity_id or uuid4().hex
        self.identities[email.lower()] = resolved
        return resolved

    async def create_identity(
        self,
        *,
        email: str,
        password: str,
        confirmed: bool,
        metadata: dict[str, Any],
    ) -> str:
        key = email.lower()
        self.create_calls.append(key)
        if key in self._fail_emails:
            raise DependencyError("identity provider timed out")
        if key in self.identities:
            raise DuplicateIdentityError(f"identity already registered: {key}")
        identity_id = uuid4().hex
        self.identities[key] = identity_id
        self.metadata[identity_id] = {**metadata, "confirmed": confirmed}
        return identity_id

    async def lookup_identity_by_email(self, email: str) -> str:
        identity_id = self.identities.get(email.lower())
        if identity_id is None:
            raise IdentityNotFoundError(email)
        return identity_id
