"""Validation layer — Input sanitiser.

Cleans user-supplied values before they are validated or sent anywhere.

Rules applied to strings:
  1. Encoding norm   — NFKC normalisation collapses compatibility characters.
  2. Control chars   — C0/C1 control characters are removed (tab, LF, CR kept).
  3. Script blocks   — ``<script>...</script>`` is removed with its body.
  4. Markup          — any remaining ``<tag ...>`` is removed.
  5. Schemes         — ``javascript:`` and ``vbscript:`` are removed, as is
                       ``data:`` when a MIME type or comma follows it.
  6. Handlers        — inline DOM event attributes (``onclick=``, ``onload=``,
                       ...) are removed.
  7. Whitespace      — surrounding whitespace is trimmed.

Plain text without any of the above comes back unchanged apart from the
trim.  Mappings and sequences are cleaned recursively; other values pass
through untouched.
"""

from __future__ import annotations

import re
import unicodedata
from typing import Any

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]")
_SCRIPT_BLOCK = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script\s*>", re.IGNORECASE)
_TAG = re.compile(r"<[^>]*>")
_DANGEROUS_SCHEME = re.compile(
    r"\b(?:javascript|vbscript)\s*:|\bdata:(?=[\w.+-]+/[\w.+-]+|,)", re.IGNORECASE
)
_EVENT_HANDLER = re.compile(
    r"\bon(?:abort|blur|change|click|contextmenu|copy|cut|dblclick|drag\w*|drop|error|"
    r"focus\w*|hashchange|input|invalid|key(?:down|press|up)|load\w*|message|mouse\w+|"
    r"paste|pointer\w+|popstate|reset|resize|scroll|select|submit|toggle|touch\w+|"
    r"beforeunload|unload|wheel|animation\w+|transition\w+)\s*=",
    re.IGNORECASE,
)

_MARKUP_PATTERNS: tuple[re.Pattern[str], ...] = (
    _SCRIPT_BLOCK,
    _TAG,
    _DANGEROUS_SCHEME,
    _EVENT_HANDLER,
)


def sanitize_string(value: str) -> str:
    value = unicodedata.normalize("NFKC", value)
    value = _CONTROL_CHARS.sub("", value)
    value = _SCRIPT_BLOCK.sub("", value)
    value = _TAG.sub("", value)
    value = _DANGEROUS_SCHEME.sub("", value)
    value = _EVENT_HANDLER.sub("", value)
    return value.strip()


def sanitize(value: Any) -> Any:
    """Return a cleaned copy of *value*."""
    if isinstance(value, str):
        return sanitize_string(value)
    if isinstance(value, dict):
        return {k: sanitize(v) for k, v in value.items()}
    if isinstance(value, list):
        return [sanitize(item) for item in value]
    if isinstance(value, tuple):
        return tuple(sanitize(item) for item in value)
    return value


def contains_markup(value: Any) -> bool:
    """Return True if *value* holds a sequence that :func:`sanitize` strips as injection."""
    if isinstance(value, str):
        normalised = unicodedata.normalize("NFKC", value)
        return any(p.search(normalised) for p in _MARKUP_PATTERNS)
    if isinstance(value, dict):
        return any(contains_markup(v) for v in value.values())
    if isinstance(value, (list, tuple)):
        return any(contains_markup(v) for v in value)
    return False
