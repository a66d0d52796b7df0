from __future__ import annotations


class KursoError(Exception):
    """Base error for kurso."""


class ValidationError(KursoError):
    """Malformed input or bad checksum; never retried."""


class ConflictError(KursoError):
    """Duplicate identity or duplicate key; recoverable by lookup or safely ignored."""


class DuplicateIdentityError(ConflictError):
    """Identity provider already holds an identity for this email."""


class IdentityNotFoundError(KursoError):
    """Identity lookup by email found nothing."""


class DependencyError(KursoError):
    """Store or identity provider unreachable or timed out; retry by re-running."""


class FatalConfigError(KursoError):
    """Missing tenant or required environment; aborts a whole batch."""


class DatabaseError(KursoError):
    """Database layer failure."""
