from __future__ import annotations

from typing import Any, Protocol


class IdentityProvider(Protocol):
    async def create_identity(
        self,
        *,
        email: str,
        password: str,
        confirmed: bool,
        metadata: dict[str, Any],
    ) -> str:
        # Returns the opaque identity id; raises DuplicateIdentityError for taken emails.
        ...

    async def lookup_identity_by_email(self, email: str) -> str:
        # Point lookup; raises IdentityNotFoundError when nothing matches.
        ...
