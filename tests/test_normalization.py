import pytest

from backoffice.services.normalization import (
    PhoneFormat,
    PhoneNormalizer,
    normalize_email,
    normalize_phone,
)


def test_normalize_email():
    assert normalize_email("test@example.com") == "test@example.com"
    assert normalize_email("  Test@Example.COM  ") == "test@example.com"
    assert normalize_email("TEST@EXAMPLE.COM") == "test@example.com"

    assert normalize_email(None) is None
    assert normalize_email("") is None
    assert normalize_email("   ") is None
    assert normalize_email("invalid") is None  # No @
    assert normalize_email("invalid@") is None  # No domain


def test_normalize_phone_e164():
    # Non-Argentine E.164 is preserved
    assert normalize_phone("+15125550123") == "+15125550123"
    assert normalize_phone("  +15125550123  ") == "+15125550123"
    assert normalize_phone("+1234567890123456") == "+1234567890123456"  # Max length


def test_normalize_phone_digits_only():
    assert normalize_phone("(512) 555-0123") == "5125550123"
    assert normalize_phone("512-555-0123") == "5125550123"
    assert normalize_phone("512.555.0123") == "5125550123"
    assert normalize_phone("512 555 0123") == "5125550123"


@pytest.mark.parametrize(
    "raw",
    [
        "+54 9 11 2345-6789",
        "+5491123456789",
        "54 11 2345 6789",
        "011 2345-6789",
        "11 2345-6789",
        "2345-6789",
        "11 15 2345 6789",
    ],
)
def test_argentine_variants_share_one_key(raw):
    assert normalize_phone(raw) == "1123456789"


def test_unknown_length_keeps_digits():
    result = PhoneNormalizer().normalize("123-456-789")
    assert result.formatted == "123456789"
    assert result.phone_format is PhoneFormat.DIGITS


def test_normalize_phone_invalid():
    assert normalize_phone(None) is None
    assert normalize_phone("") is None
    assert normalize_phone("   ") is None
    assert normalize_phone("123") is None  # Too short (< 7 digits)
    assert normalize_phone("abc") is None  # No digits

    result = PhoneNormalizer().normalize("12-34")
    assert not result.is_valid
    assert result.phone_format is PhoneFormat.INVALID
    assert result.original == "12-34"
