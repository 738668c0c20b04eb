"""
State key canonicalization.

Turns free-text state labels ("Em andamento", "Ready for Review") into the
machine-safe keys stored in journey state machines and tenant configs.

Usage:
    from caseflow.services.state_keys import canonicalize

    canonicalize("  Ready for  Review ")   # -> "ready_for_review"
"""

import re

MAX_STATE_KEY_LENGTH = 48

STATE_KEY_PATTERN = re.compile(r"^[a-z0-9_-]{0,48}$")

_WHITESPACE_RUN = re.compile(r"\s+")
_DISALLOWED_STATE_CHARS = re.compile(r"[^a-z0-9_-]")
_DISALLOWED_FIELD_CHARS = re.compile(r"[^a-z0-9_]")


def canonicalize(raw) -> str:
    """Return the canonical state key for ``raw``.

    Steps, in order: trim, lower-case, whitespace runs -> "_", drop every
    character outside ``[a-z0-9_-]``, truncate to 48 chars.  An empty result
    means the label must be rejected by the caller.
    """
    text = str(raw or "").strip().lower()
    text = _WHITESPACE_RUN.sub("_", text)
    text = _DISALLOWED_STATE_CHARS.sub("", text)
    return text[:MAX_STATE_KEY_LENGTH]


def is_canonical(key) -> bool:
    """Non-empty and already in canonical form."""
    return isinstance(key, str) and bool(key) and bool(STATE_KEY_PATTERN.match(key))


def normalize_field_key(raw) -> str:
    """Normalize a required case-field key to ``[a-z0-9_]``.

    Disallowed characters become underscores (``"CEP-Entrega"`` ->
    ``"cep_entrega"``).  Blank input yields ``""``.
    """
    text = str(raw or "").strip().lower()
    if not text:
        return ""
    return _DISALLOWED_FIELD_CHARS.sub("_", text)


def normalize_field_keys(raw_keys) -> list[str]:
    """Normalize, drop blanks, and dedupe preserving first-seen order."""
    seen: list[str] = []
    for raw in raw_keys or []:
        key = normalize_field_key(raw)
        if key and key not in seen:
            seen.append(key)
    return seen
