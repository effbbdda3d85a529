"""Sanitisation & validation engine — pure field-level checks."""

from dispatch_guard.validation.rules import (
    FieldRule,
    FileMetadata,
    FileOptions,
    RequestValidationResult,
    RuleType,
    ValidationOutcome,
)
from dispatch_guard.validation.sanitizer import contains_markup, sanitize
from dispatch_guard.validation.validators import (
    validate,
    validate_email,
    validate_file,
    validate_length,
    validate_password,
    validate_phone,
    validate_request,
    validate_required,
    validate_url,
)

__all__ = [
    "FieldRule",
    "FileMetadata",
    "FileOptions",
    "RequestValidationResult",
    "RuleType",
    "ValidationOutcome",
    "sanitize",
    "contains_markup",
    "validate",
    "validate_request",
    "validate_required",
    "validate_length",
    "validate_email",
    "validate_phone",
    "validate_password",
    "validate_url",
    "validate_file",
]
