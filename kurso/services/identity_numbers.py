from __future__ import annotations

from dataclasses import dataclass
import re

from kurso.core.config import get_settings
from kurso.core.errors import ValidationError


_NON_SIGNIFICANT = re.compile(r"[^0-9kK]")
# Shortest accepted input, e.g. 1.111.111-1 once separators are stripped.
MIN_SIGNIFICANT_CHARS = 8
CHECK_SYMBOL_TEN = "K"


@dataclass(frozen=True)
class Credentials:
    storage_form: str
    email: str
    password: str


def clean_identity_number(raw: str | None) -> str:
    # Keep digits and the K check symbol only; dots, dashes and spaces are formatting.
    if not isinstance(raw, str):
        return ""
    return _NON_SIGNIFICANT.sub("", raw).upper()


def compute_check_symbol(body: str) -> str:
    # Modulo-11 over the body, weights 2..7 cycling from the least-significant digit.
    total = 0
    multiplier = 2
    for digit in reversed(body):
        total += int(digit) * multiplier
        multiplier = 2 if multiplier == 7 else multiplier + 1
    rest = 11 - (total % 11)
    if rest == 11:
        return "0"
    if rest == 10:
        return CHECK_SYMBOL_TEN
    return str(rest)


def _split(clean: str) -> tuple[str, str]:
    return clean[:-1], clean[-1:]


def validate_identity_number(raw: str | None) -> bool:
    clean = clean_identity_number(raw)
    if len(clean) < MIN_SIGNIFICANT_CHARS:
        return False
    body, check = _split(clean)
    if not body.isdigit():
        return False
    return compute_check_symbol(body) == check


def format_identity_number(raw: str | None) -> str:
    # Canonical storage form BODY-CHECK without thousands separators.
    clean = clean_identity_number(raw)
    if len(clean) < 2:
        return clean
    body, check = _split(clean)
    return f"{body}-{check}"


def derive_credentials(
    raw: str,
    *,
    email_domain: str | None = None,
    password_length: int | None = None,
    fallback_password: str | None = None,
) -> Credentials:
    """Turn a validated identity number into login credentials.

    The login email is the lowercased body plus check symbol at the configured
    domain. The default password is the first ``password_length`` characters of
    the lowercased number; bodies shorter than that get ``fallback_password``.
    """
    if not validate_identity_number(raw):
        raise ValidationError("identity number failed checksum validation")
    settings = get_settings()
    domain = email_domain or settings.credential_email_domain
    length = password_length if password_length is not None else settings.credential_password_length
    fallback = fallback_password or settings.credential_fallback_password

    clean = clean_identity_number(raw)
    body, _check = _split(clean)
    lowered = clean.lower()
    password = lowered[:length] if len(body) >= length else fallback
    return Credentials(
        storage_form=format_identity_number(clean),
        email=f"{lowered}@{domain}",
        password=password,
    )
