# Input checks for user-supplied addresses and station ids.

import re
from typing import Any, List, Pattern

from .errors import ValidationError
from .stations import RED_LINE_STATIONS

ADDRESS_MIN_LEN = 5
ADDRESS_MAX_LEN = 200

_STRIP_CHARS = re.compile(r"[<>\"'&]")

SUSPICIOUS_PATTERNS: List[Pattern[str]] = [
    re.compile(r"<script", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"data:", re.IGNORECASE),
    re.compile(r"vbscript:", re.IGNORECASE),
    re.compile(r"onload", re.IGNORECASE),
    re.compile(r"onerror", re.IGNORECASE),
    re.compile(r"onclick", re.IGNORECASE),
    re.compile(r"alert\(", re.IGNORECASE),
    re.compile(r"eval\(", re.IGNORECASE),
    re.compile(r"\{\{"),
    re.compile(r"\$\{"),
    re.compile(r"\[\["),
]

_HAS_DIGIT = re.compile(r"\d")
_HAS_LETTER = re.compile(r"[a-zA-Z]")
_HAS_LOCALITY = re.compile(r"(,|MA|Massachusetts|Boston|Cambridge)", re.IGNORECASE)


def validate_address(address: Any) -> str:
    """Return a sanitized address or raise ValidationError.

    Length is checked on the raw input. Suspicious patterns are checked on
    both the raw and the sanitized text, so markup that only forms a
    pattern once quotes are stripped (``java"script:``) is rejected too.
    """
    if not address or not isinstance(address, str):
        raise ValidationError("Address must be a non-empty string")

    if len(address) < ADDRESS_MIN_LEN or len(address) > ADDRESS_MAX_LEN:
        raise ValidationError(
            f"Address must be between {ADDRESS_MIN_LEN} and {ADDRESS_MAX_LEN} characters"
        )

    sanitized = _STRIP_CHARS.sub("", address.strip())

    for text in (address, sanitized):
        if any(pattern.search(text) for pattern in SUSPICIOUS_PATTERNS):
            raise ValidationError("Address contains invalid characters")

    has_digit = _HAS_DIGIT.search(sanitized) is not None
    has_letter = _HAS_LETTER.search(sanitized) is not None
    has_locality = _HAS_LOCALITY.search(sanitized) is not None
    if not (has_digit and has_letter and has_locality):
        raise ValidationError("Address must include street number, street name, and city/state")

    return sanitized


def validate_station_id(station_id: Any) -> str:
    if not isinstance(station_id, str) or station_id not in RED_LINE_STATIONS:
        raise ValidationError("Invalid MBTA station ID")
    return station_id
