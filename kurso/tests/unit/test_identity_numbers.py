from __future__ import annotations

import pytest

from kurso.core.errors import ValidationError
from kurso.services.identity_numbers import (
    clean_identity_number,
    compute_check_symbol,
    derive_credentials,
    format_identity_number,
    validate_identity_number,
)


@pytest.mark.parametrize(
    ("body", "expected"),
    [
        ("12345678", "5"),
        ("11111111", "1"),
        ("20000003", "K"),
        ("10000004", "0"),
        ("1000000", "9"),
    ],
)
def test_compute_check_symbol(body: str, expected: str) -> None:
    assert compute_check_symbol(body) == expected


@pytest.mark.parametrize(
    "raw",
    [
        "12.345.678-5",
        "12345678-5",
        "123456785",
        " 12 345 678 - 5 ",
        "20.000.003-K",
        "20000003-k",
        "10.000.004-0",
        "1.000.000-9",
    ],
)
def test_validate_accepts_valid_numbers_in_any_formatting(raw: str) -> None:
    assert validate_identity_number(raw) is True


@pytest.mark.parametrize(
    "raw",
    [
        "12.345.678-4",
        "20000003-0",
        "1234567",
        "",
        "abc",
        "1234567K-5",
        None,
        12345678,
    ],
)
def test_validate_rejects_bad_numbers_without_raising(raw) -> None:
    assert validate_identity_number(raw) is False


def test_clean_and_format() -> None:
    assert clean_identity_number("20.000.003-k") == "20000003K"
    assert format_identity_number("12.345.678-5") == "12345678-5"
    assert clean_identity_number(None) == ""


def test_derive_credentials_uses_lowercased_number() -> None:
    creds = derive_credentials("12.345.678-5", email_domain="kurso.cl", password_length=6)
    assert creds.storage_form == "12345678-5"
    assert creds.email == "123456785@kurso.cl"
    assert creds.password == "123456"

    with_k = derive_credentials("20.000.003-K", email_domain="kurso.cl", password_length=6)
    assert with_k.email == "20000003k@kurso.cl"
    assert with_k.password == "200000"


def test_derive_credentials_falls_back_for_short_bodies() -> None:
    creds = derive_credentials("1.000.000-9", password_length=8, fallback_password="fallback1")
    assert creds.password == "fallback1"
    assert creds.email.startswith("10000009@")


def test_derive_credentials_reads_domain_from_settings(monkeypatch) -> None:
    from kurso.core.config import get_settings

    monkeypatch.setenv("CREDENTIAL_EMAIL_DOMAIN", "colegio.test")
    get_settings.cache_clear()
    assert derive_credentials("12345678-5").email == "123456785@colegio.test"


def test_derive_credentials_rejects_invalid_numbers() -> None:
    with pytest.raises(ValidationError):
        derive_credentials("12.345.678-4")
