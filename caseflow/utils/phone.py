"""Sender identifier normalization for messaging channels."""

import re

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(raw, country_code: str = "55") -> str | None:
    """Return an E.164-like ``+<digits>`` string or ``None``.

    Provider-internal ids (``...@lid``) are not phone numbers and yield
    ``None``.  Numbers already carrying ``country_code`` are kept; 10/11-digit
    local numbers get it prefixed; anything else is rejected.
    """
    if raw is None:
        return None
    text = str(raw).strip()
    if not text or "@lid" in text.lower():
        return None
    digits = _NON_DIGITS.sub("", text)
    if not digits:
        return None
    if digits.startswith(country_code):
        return f"+{digits}"
    if len(digits) not in (10, 11):
        return None
    return f"+{country_code}{digits}"
