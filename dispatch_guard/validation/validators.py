"""Validation layer — Field validators and request validation.

``validate(value, rule)`` checks one value against one ``FieldRule``;
``validate_request(data, rules)`` applies a whole rule table in declaration
order, collects every failing field and returns a sanitised copy of the input.
Callers must forward ``result.data``, never the original payload.
"""

from __future__ import annotations

import re
from typing import Any, Mapping
from urllib.parse import urlsplit, urlunsplit

from dispatch_guard.validation.rules import (
    FieldRule,
    FileMetadata,
    FileOptions,
    RequestValidationResult,
    RuleType,
    ValidationOutcome,
)
from dispatch_guard.validation.sanitizer import sanitize

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128
MAX_EMAIL_LENGTH = 254
MIN_PHONE_DIGITS = 7
MAX_PHONE_DIGITS = 15

_EMAIL = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_PHONE_CHARS = re.compile(r"^\+?[\d\s().-]+$")
_SYMBOL = re.compile(r"""[!@#$%^&*()_+\-=\[\]{};':"\\|,.<>/?`~]""")
_SUSPICIOUS_FILE = re.compile(r"\.(exe|bat|cmd|scr|pif|com|vbs|js|jar|msi|sh|ps1)$", re.IGNORECASE)

COMMON_PASSWORDS = frozenset({
    "password", "123456", "123456789", "qwerty", "abc123",
    "password123", "admin", "letmein", "welcome", "monkey",
})


def is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value == ""
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    return False


# ---------------------------------------------------------------------------
# Single-rule validators
# ---------------------------------------------------------------------------


def validate_required(value: Any) -> ValidationOutcome:
    if is_blank(value):
        return ValidationOutcome.fail("is required")
    return ValidationOutcome.ok(value)


def validate_length(
    value: str, min_length: int | None = None, max_length: int | None = None
) -> ValidationOutcome:
    length = len(value)
    if min_length is not None and length < min_length:
        return ValidationOutcome.fail(f"must be at least {min_length} characters", value=value)
    if max_length is not None and length > max_length:
        return ValidationOutcome.fail(f"must be no more than {max_length} characters", value=value)
    return ValidationOutcome.ok(value)


def validate_email(value: str) -> ValidationOutcome:
    if len(value) > MAX_EMAIL_LENGTH:
        return ValidationOutcome.fail(
            f"must be no more than {MAX_EMAIL_LENGTH} characters", value=value
        )
    if not _EMAIL.match(value) or ".." in value:
        return ValidationOutcome.fail("must be a valid email address", value=value)
    return ValidationOutcome.ok(value)


def validate_phone(value: str) -> ValidationOutcome:
    if not _PHONE_CHARS.match(value):
        return ValidationOutcome.fail("must be a valid phone number", value=value)
    digits = sum(ch.isdigit() for ch in value)
    if not MIN_PHONE_DIGITS <= digits <= MAX_PHONE_DIGITS:
        return ValidationOutcome.fail("must be a valid phone number", value=value)
    return ValidationOutcome.ok(value)


def validate_password(value: str, require_symbol: bool = True) -> ValidationOutcome:
    errors: list[str] = []
    if len(value) < MIN_PASSWORD_LENGTH:
        errors.append(f"must be at least {MIN_PASSWORD_LENGTH} characters long")
    if len(value) > MAX_PASSWORD_LENGTH:
        errors.append(f"must be no more than {MAX_PASSWORD_LENGTH} characters long")
    if not re.search(r"[a-z]", value):
        errors.append("must contain at least one lowercase letter")
    if not re.search(r"[A-Z]", value):
        errors.append("must contain at least one uppercase letter")
    if not re.search(r"\d", value):
        errors.append("must contain at least one number")
    if require_symbol and not _SYMBOL.search(value):
        errors.append("must contain at least one special character")
    if value.lower() in COMMON_PASSWORDS:
        errors.append("is too common")
    if errors:
        return ValidationOutcome.fail(*errors)
    return ValidationOutcome.ok(value)


def validate_url(value: str) -> ValidationOutcome:
    """Accept http(s) URLs with a host; return the normalised form as ``value``."""
    try:
        parts = urlsplit(value.strip())
        port = parts.port
    except ValueError:
        return ValidationOutcome.fail("must be a valid URL", value=value)
    scheme = parts.scheme.lower()
    if scheme not in ("http", "https"):
        return ValidationOutcome.fail("must use http or https", value=value)
    if not parts.hostname:
        return ValidationOutcome.fail("must be a valid URL", value=value)
    netloc = parts.hostname.lower()
    if port is not None:
        netloc = f"{netloc}:{port}"
    if parts.username:
        # Credentials embedded in a URL are never forwarded.
        return ValidationOutcome.fail("must not embed credentials", value=value)
    path = parts.path or "/"
    normalised = urlunsplit((scheme, netloc, path, parts.query, parts.fragment))
    return ValidationOutcome.ok(normalised)


def validate_file(file: FileMetadata, options: FileOptions | None = None) -> ValidationOutcome:
    opts = options or FileOptions()
    errors: list[str] = []
    if file.size > opts.max_size:
        errors.append(f"file size must be no more than {opts.max_size} bytes")
    if opts.allowed_types and file.content_type not in opts.allowed_types:
        errors.append(
            f"file type not allowed. Allowed types: {', '.join(opts.allowed_types)}"
        )
    name = file.name.lower()
    dot = name.rfind(".")
    extension = name[dot:] if dot != -1 else ""
    if opts.allowed_extensions and extension not in opts.allowed_extensions:
        errors.append(
            "file extension not allowed. Allowed extensions: "
            + ", ".join(opts.allowed_extensions)
        )
    if _SUSPICIOUS_FILE.search(name):
        errors.append("file type not allowed for security reasons")
    if errors:
        return ValidationOutcome.fail(*errors, value=file)
    return ValidationOutcome.ok(file)


def _as_file(value: Any) -> FileMetadata | None:
    if isinstance(value, FileMetadata):
        return value
    if isinstance(value, Mapping):
        try:
            return FileMetadata.model_validate(value)
        except ValueError:
            return None
    return None


# ---------------------------------------------------------------------------
# Rule dispatch
# ---------------------------------------------------------------------------


def validate(value: Any, rule: FieldRule) -> ValidationOutcome:
    """Check *value* against every clause of *rule*; collect all messages.

    Blank values only fail when the rule is ``required``.
    """
    if is_blank(value):
        if rule.required:
            return ValidationOutcome.fail("is required", value=value)
        return ValidationOutcome.ok(value)

    errors: list[str] = []
    result_value = value

    if rule.type is RuleType.FILE:
        file = _as_file(value)
        if file is None:
            return ValidationOutcome.fail("must be a file", value=value)
        return validate_file(file, rule.file_options)

    if rule.type is RuleType.NUMBER:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            errors.append("must be a number")
    elif rule.type is RuleType.BOOLEAN:
        if not isinstance(value, bool):
            errors.append("must be a boolean")
    elif rule.type is not None and not isinstance(value, str):
        errors.append("must be a string")

    if errors:
        return ValidationOutcome.fail(*errors, value=value)
    if not isinstance(value, str):
        return ValidationOutcome.ok(value)

    if rule.min_length is not None or rule.max_length is not None:
        outcome = validate_length(value, rule.min_length, rule.max_length)
        errors.extend(outcome.errors)

    if rule.type is RuleType.EMAIL:
        errors.extend(validate_email(value).errors)
    elif rule.type is RuleType.PHONE:
        errors.extend(validate_phone(value).errors)
    elif rule.type is RuleType.PASSWORD:
        errors.extend(validate_password(value, rule.require_symbol).errors)
    elif rule.type is RuleType.URL:
        outcome = validate_url(value)
        if outcome.valid:
            result_value = outcome.value
        else:
            errors.extend(outcome.errors)

    if rule.pattern is not None and not rule.pattern.search(value):
        errors.append("format is invalid")

    if errors:
        return ValidationOutcome.fail(*errors, value=result_value)
    return ValidationOutcome.ok(result_value)


def validate_request(
    data: Mapping[str, Any], rules: Mapping[str, FieldRule]
) -> RequestValidationResult:
    """Validate *data* against *rules* without short-circuiting.

    Fields present in *data* but absent from *rules* are sanitised and copied
    through.  Passwords are validated on the raw value and copied verbatim,
    since sanitising would silently change the secret.
    """
    errors: list[str] = []
    failed: list[str] = []
    cleaned: dict[str, Any] = {}

    for field, rule in rules.items():
        raw = data.get(field)
        value = raw if rule.type in (RuleType.PASSWORD, RuleType.FILE) else sanitize(raw)
        outcome = validate(value, rule)
        if field not in data and outcome.valid:
            continue
        cleaned[field] = outcome.value if outcome.value is not None else value
        if not outcome.valid:
            failed.append(field)
            errors.extend(f"{field} {message}" for message in outcome.errors)

    for field, raw in data.items():
        if field not in rules:
            cleaned[field] = sanitize(raw)

    return RequestValidationResult(
        valid=not errors,
        errors=errors,
        data=cleaned,
        failed_fields=failed,
    )
