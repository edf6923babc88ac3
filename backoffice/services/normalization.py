from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class PhoneFormat(Enum):
    E164 = "e164"
    NATIONAL = "national"
    DIGITS = "digits"
    INVALID = "invalid"


_EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
_E164_PATTERN = re.compile(r"^\+[1-9]\d{7,15}$")

# Argentina national numbers: 10 digits including the area code
_AR_COUNTRY_CODE = "54"
_AR_DEFAULT_AREA_CODE = "11"
_AR_NATIONAL_LENGTH = 10


@dataclass(frozen=True)
class NormalizedPhone:
    original: str
    formatted: Optional[str]
    phone_format: PhoneFormat

    @property
    def is_valid(self) -> bool:
        return self.formatted is not None


class PhoneNormalizer:
    """Reduce a submitted phone to the digits used as the dedup key.

    Non-Argentine E.164 input is kept as is. Anything else is stripped to digits and, when
    it looks like an Argentine number, brought to its 10-digit national form
    (country code, trunk ``0``, mobile ``9`` and ``15`` markers removed).
    """

    def __init__(self, min_phone_length: int = 7):
        self.min_phone_length = min_phone_length

    def normalize(self, phone: Optional[str]) -> NormalizedPhone:
        original = phone or ""
        cleaned = original.strip()
        if not cleaned:
            return NormalizedPhone(original, None, PhoneFormat.INVALID)

        if _E164_PATTERN.match(cleaned) and not cleaned.startswith("+" + _AR_COUNTRY_CODE):
            return NormalizedPhone(original, cleaned, PhoneFormat.E164)

        digits = re.sub(r"\D+", "", cleaned)
        if len(digits) < self.min_phone_length:
            return NormalizedPhone(original, None, PhoneFormat.INVALID)

        national = self._argentina_national(digits)
        if national is not None:
            return NormalizedPhone(original, national, PhoneFormat.NATIONAL)

        return NormalizedPhone(original, digits, PhoneFormat.DIGITS)

    def _argentina_national(self, digits: str) -> Optional[str]:
        while True:
            if len(digits) > 9 and digits.startswith(_AR_COUNTRY_CODE):
                digits = digits[len(_AR_COUNTRY_CODE):]
            elif len(digits) > 8 and digits[0] in ("0", "9"):
                digits = digits[1:]
            else:
                break

        if len(digits) == _AR_NATIONAL_LENGTH:
            return digits
        if len(digits) == 8:
            return _AR_DEFAULT_AREA_CODE + digits
        if len(digits) == 12:
            pos = digits.find("15")
            if pos != -1:
                return digits[:pos] + digits[pos + 2:]
        return None


normalizer = PhoneNormalizer()


def normalize_phone(phone: Optional[str]) -> Optional[str]:
    """Formatted phone used for duplicate detection, or None when unusable."""
    return normalizer.normalize(phone).formatted


def normalize_email(email: Optional[str]) -> Optional[str]:
    if not email:
        return None

    normalized = email.strip().lower()
    if not _EMAIL_PATTERN.match(normalized):
        return None

    return normalized
