from __future__ import annotations

from dataclasses import asdict, dataclass, field
import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from kurso.core.config import get_settings
from kurso.core.errors import (
    ConflictError,
    DatabaseError,
    DependencyError,
    DuplicateIdentityError,
    FatalConfigError,
    IdentityNotFoundError,
)
from kurso.domain.context import STUDENT_ACCOUNT_ROLE, TENANT_ROLE_STUDENT, ActorContext
from kurso.domain.models import Student
from kurso.persistence.db import SessionLocal
from kurso.persistence.repos import accounts as accounts_repo
from kurso.persistence.repos import tenants as tenants_repo
from kurso.providers.identity.base import IdentityProvider
from kurso.providers.identity.factory import get_identity_provider
from kurso.services.audit import actor_fields, record_event
from kurso.services.identity_numbers import derive_credentials, validate_identity_number
from kurso.services.resilience import call_with_timeout


logger = logging.getLogger(__name__)

OUTCOME_CREATED = "created"
OUTCOME_LINKED = "linked"
OUTCOME_SKIPPED = "skipped"
OUTCOME_ERROR = "error"

REASON_NO_ID = "no-id"
REASON_ALREADY_LINKED = "already-linked"
REASON_INVALID_CHECKSUM = "invalid-checksum"
REASON_UNRECOVERABLE_DUPLICATE = "unrecoverable-duplicate"
REASON_DEPENDENCY_UNAVAILABLE = "dependency-unavailable"
REASON_LINK_FAILED = "link-failed"


@dataclass(frozen=True)
class Subject:
    # Detached snapshot; per-step rollbacks expire ORM rows mid-batch.
    id: str
    tenant_id: str
    full_name: str
    identity_number: str | None

    @classmethod
    def from_row(cls, row: Student) -> "Subject":
        return cls(
            id=row.id,
            tenant_id=row.tenant_id,
            full_name=row.full_name,
            identity_number=row.identity_number,
        )


@dataclass
class SubjectOutcome:
    subject_id: str
    tenant_id: str
    full_name: str
    outcome: str
    reason: str | None = None
    user_id: str | None = None
    email: str | None = None
    # Account works but is not listed as a tenant member yet; a re-run will not fix it.
    membership_missing: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class BatchReport:
    results: list[SubjectOutcome] = field(default_factory=list)

    def add(self, outcome: SubjectOutcome) -> None:
        self.results.append(outcome)

    def _count(self, outcome: str) -> int:
        return sum(1 for item in self.results if item.outcome == outcome)

    @property
    def created(self) -> int:
        return self._count(OUTCOME_CREATED)

    @property
    def linked(self) -> int:
        return self._count(OUTCOME_LINKED)

    @property
    def skipped(self) -> int:
        return self._count(OUTCOME_SKIPPED)

    @property
    def errors(self) -> list[SubjectOutcome]:
        return [item for item in self.results if item.outcome == OUTCOME_ERROR]

    @property
    def failed(self) -> int:
        return len(self.errors)

    def to_dict(self) -> dict[str, Any]:
        return {
            "created": self.created,
            "linked": self.linked,
            "skipped": self.skipped,
            "failed": self.failed,
            "results": [item.to_dict() for item in self.results],
            "errors": [item.to_dict() for item in self.errors],
        }


def _outcome(subject: Subject, outcome: str, reason: str | None = None, **extra: Any) -> SubjectOutcome:
    return SubjectOutcome(
        subject_id=subject.id,
        tenant_id=subject.tenant_id,
        full_name=subject.full_name,
        outcome=outcome,
        reason=reason,
        **extra,
    )


def _failure(subject: Subject, reason: str, **extra: Any) -> SubjectOutcome:
    logger.warning(
        "provisioning_subject_failed tenant_id=%s subject_id=%s reason=%s",
        subject.tenant_id,
        subject.id,
        reason,
    )
    return _outcome(subject, OUTCOME_ERROR, reason, **extra)


async def _recover_identity(
    session: AsyncSession,
    provider: IdentityProvider,
    email: str,
) -> str | None:
    # Prefer the local directory mirror, then the provider's own point lookup.
    user_id = await accounts_repo.find_directory_user_id(session, email)
    if user_id:
        return user_id
    try:
        return await provider.lookup_identity_by_email(email)
    except IdentityNotFoundError:
        return None


async def _ensure_directory_entry(
    session: AsyncSession, *, user_id: str, email: str, full_name: str
) -> None:
    if await accounts_repo.get_app_user(session, user_id) is not None:
        return
    try:
        await accounts_repo.insert_app_user(session, user_id=user_id, email=email, full_name=full_name)
        await session.commit()
    except (ConflictError, DatabaseError) as exc:
        logger.info("provisioning_directory_mirror_skipped user_id=%s error=%s", user_id, exc)


async def _ensure_role(session: AsyncSession, *, user_id: str, user_name: str) -> None:
    # An existing role row is kept as-is; only the first writer sets first_login.
    if await accounts_repo.get_role_assignment(session, user_id) is not None:
        return
    try:
        await accounts_repo.insert_role_assignment(
            session,
            user_id=user_id,
            role=STUDENT_ACCOUNT_ROLE,
            user_name=user_name,
            first_login=True,
        )
        await session.commit()
    except ConflictError:
        logger.info("provisioning_role_exists user_id=%s", user_id)


async def _ensure_membership(session: AsyncSession, *, tenant_id: str, user_id: str) -> bool:
    if await accounts_repo.get_membership(session, tenant_id=tenant_id, user_id=user_id) is not None:
        return True
    try:
        await accounts_repo.insert_membership(
            session,
            tenant_id=tenant_id,
            user_id=user_id,
            role=TENANT_ROLE_STUDENT,
            status="active",
        )
        await session.commit()
        return True
    except ConflictError:
        # Lost a race with a concurrent run; the membership exists.
        return True
    except (DatabaseError, SQLAlchemyError) as exc:
        await session.rollback()
        logger.warning(
            "provisioning_membership_failed tenant_id=%s user_id=%s",
            tenant_id,
            user_id,
            exc_info=exc,
        )
        return False


async def provision_subject(
    session: AsyncSession,
    ctx: ActorContext,
    *,
    subject: Subject,
    provider: IdentityProvider,
) -> SubjectOutcome:
    """Bring one subject to "has a login account" without a shared transaction.

    Each write is committed on its own and re-checked right before it runs, so
    a crash between steps leaves a state the next run completes.
    """
    if not subject.identity_number:
        return _outcome(subject, OUTCOME_SKIPPED, REASON_NO_ID)
    if await accounts_repo.get_student_link(session, subject.id) is not None:
        return _outcome(subject, OUTCOME_SKIPPED, REASON_ALREADY_LINKED)
    if not validate_identity_number(subject.identity_number):
        return _failure(subject, REASON_INVALID_CHECKSUM)

    settings = get_settings()
    credentials = derive_credentials(subject.identity_number)
    metadata = {"full_name": subject.full_name, "identity_number": credentials.storage_form}
    created = True
    try:
        user_id = await call_with_timeout(
            lambda: provider.create_identity(
                email=credentials.email,
                password=credentials.password,
                confirmed=True,
                metadata=metadata,
            ),
            timeout_ms=settings.identity_call_timeout_ms,
        )
    except DuplicateIdentityError:
        created = False
        try:
            user_id = await _recover_identity(session, provider, credentials.email)
        except (DependencyError, TimeoutError):
            return _failure(subject, REASON_DEPENDENCY_UNAVAILABLE, email=credentials.email)
        if user_id is None:
            return _failure(subject, REASON_UNRECOVERABLE_DUPLICATE, email=credentials.email)
    except (DependencyError, TimeoutError):
        return _failure(subject, REASON_DEPENDENCY_UNAVAILABLE, email=credentials.email)

    if created:
        await _ensure_directory_entry(
            session, user_id=user_id, email=credentials.email, full_name=subject.full_name
        )
    try:
        await _ensure_role(session, user_id=user_id, user_name=subject.full_name)
    except DatabaseError:
        return _failure(subject, REASON_DEPENDENCY_UNAVAILABLE, user_id=user_id, email=credentials.email)

    if await accounts_repo.get_student_link(session, subject.id) is not None:
        return _outcome(subject, OUTCOME_SKIPPED, REASON_ALREADY_LINKED, user_id=user_id)
    try:
        await accounts_repo.insert_student_link(
            session,
            user_id=user_id,
            student_id=subject.id,
            display_name=subject.full_name,
        )
        await session.commit()
    except (ConflictError, DatabaseError, SQLAlchemyError) as exc:
        await session.rollback()
        logger.warning("provisioning_link_insert_failed subject_id=%s", subject.id, exc_info=exc)
        return _failure(subject, REASON_LINK_FAILED, user_id=user_id, email=credentials.email)

    member_ok = await _ensure_membership(session, tenant_id=subject.tenant_id, user_id=user_id)
    outcome = _outcome(
        subject,
        OUTCOME_CREATED if created else OUTCOME_LINKED,
        user_id=user_id,
        email=credentials.email,
        membership_missing=not member_ok,
    )
    await record_event(
        session=session,
        tenant_id=subject.tenant_id,
        **actor_fields(ctx),
        event_type=f"account.{outcome.outcome}",
        outcome="success",
        resource_type="student",
        resource_id=subject.id,
        metadata={"user_id": user_id, "email": credentials.email, "membership_missing": not member_ok},
        commit=True,
    )
    logger.info(
        "provisioning_subject_done tenant_id=%s subject_id=%s outcome=%s",
        subject.tenant_id,
        subject.id,
        outcome.outcome,
    )
    return outcome


async def provision_tenant_accounts(
    session: AsyncSession,
    ctx: ActorContext,
    *,
    tenant_id: str,
    provider: IdentityProvider,
    report: BatchReport | None = None,
) -> BatchReport:
    report = report if report is not None else BatchReport()
    students = await accounts_repo.list_students(session, tenant_id=tenant_id)
    # Sequential on purpose: identity creation is rate limited upstream.
    for subject in [Subject.from_row(row) for row in students]:
        try:
            outcome = await provision_subject(session, ctx, subject=subject, provider=provider)
        except (DatabaseError, SQLAlchemyError) as exc:
            await session.rollback()
            logger.warning("provisioning_subject_store_error subject_id=%s", subject.id, exc_info=exc)
            outcome = _failure(subject, REASON_DEPENDENCY_UNAVAILABLE)
        report.add(outcome)
    return report


async def provision_accounts(
    ctx: ActorContext,
    *,
    tenant_id: str | None = None,
    provider: IdentityProvider | None = None,
) -> BatchReport:
    """Provision login accounts for every eligible subject.

    Restricted to one tenant when ``tenant_id`` is given, otherwise every
    tenant is processed. Configuration problems raise ``FatalConfigError``
    before any subject is touched; per-subject failures land in the report.
    """
    resolved_provider = provider if provider is not None else get_identity_provider()
    report = BatchReport()
    async with SessionLocal() as session:
        if tenant_id is not None:
            if not tenant_id.strip():
                raise FatalConfigError("tenant_id must not be empty")
            if await tenants_repo.get_tenant(session, tenant_id) is None:
                raise FatalConfigError(f"Unknown tenant: {tenant_id}")
            tenant_ids = [tenant_id]
        else:
            tenant_ids = await tenants_repo.list_tenant_ids(session)

        for current in tenant_ids:
            await provision_tenant_accounts(
                session, ctx, tenant_id=current, provider=resolved_provider, report=report
            )
    logger.info(
        "provisioning_batch_done tenants=%s created=%s linked=%s skipped=%s failed=%s",
        len(tenant_ids),
        report.created,
        report.linked,
        report.skipped,
        report.failed,
    )
    return report


async def has_default_password(session: AsyncSession, user_id: str) -> bool:
    role = await accounts_repo.get_role_assignment(session, user_id)
    return bool(role is not None and role.first_login)


async def mark_password_changed(session: AsyncSession, user_id: str) -> bool:
    updated = await accounts_repo.set_first_login(session, user_id=user_id, first_login=False)
    await session.commit()
    return updated
