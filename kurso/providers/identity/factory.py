from __future__ import annotations

from kurso.core.config import get_settings
from kurso.core.errors import FatalConfigError
from kurso.providers.identity.base import IdentityProvider
from kurso.providers.identity.fake import FakeIdentityProvider
from kurso.providers.identity.supabase_admin import SupabaseAdminIdentityProvider


def get_identity_provider() -> IdentityProvider:
    settings = get_settings()
    provider = (settings.identity_provider or "supabase").lower()

    if provider == "fake":
        return FakeIdentityProvider()
    if provider == "supabase":
        return SupabaseAdminIdentityProvider()
    raise FatalConfigError(f"Unsupported identity provider: {settings.identity_provider}")
