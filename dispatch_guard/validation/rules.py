"""Validation layer — Rule vocabulary and result models.

Callers (UI forms) declare a per-field rule table; the engine defines the
vocabulary but not which fields exist::

    rules = {
        "email": FieldRule(required=True, type=RuleType.EMAIL),
        "notes": FieldRule(max_length=500),
        "proof": FieldRule(type=RuleType.FILE, file_options=FileOptions(max_size=2_000_000)),
    }

Rule tables may also be built from plain dicts with ``FieldRule.model_validate``.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_ALLOWED_TYPES = [
    "image/jpeg",
    "image/png",
    "image/webp",
    "image/gif",
    "application/pdf",
]
DEFAULT_ALLOWED_EXTENSIONS = [".jpg", ".jpeg", ".png", ".webp", ".gif", ".pdf"]
DEFAULT_MAX_FILE_SIZE = 10 * 1024 * 1024


class RuleType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    EMAIL = "email"
    PHONE = "phone"
    PASSWORD = "password"
    URL = "url"
    FILE = "file"


class FileOptions(BaseModel):
    max_size: int = Field(default=DEFAULT_MAX_FILE_SIZE, ge=1)
    allowed_types: list[str] = Field(default_factory=lambda: list(DEFAULT_ALLOWED_TYPES))
    allowed_extensions: list[str] = Field(
        default_factory=lambda: list(DEFAULT_ALLOWED_EXTENSIONS)
    )

    @field_validator("allowed_extensions")
    @classmethod
    def normalise_extensions(cls, v: list[str]) -> list[str]:
        return [e.lower() if e.startswith(".") else f".{e.lower()}" for e in v]


class FileMetadata(BaseModel):
    """What the engine needs to know about an upload — never its bytes."""

    model_config = ConfigDict(frozen=True)

    name: str
    size: int = Field(ge=0)
    content_type: str


class FieldRule(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    required: bool = False
    type: RuleType | None = None
    min_length: int | None = Field(default=None, ge=0)
    max_length: int | None = Field(default=None, ge=0)
    pattern: re.Pattern[str] | None = None
    file_options: FileOptions | None = None
    require_symbol: bool = True

    @field_validator("pattern", mode="before")
    @classmethod
    def compile_pattern(cls, v: Any) -> Any:
        if isinstance(v, str):
            return re.compile(v)
        return v


class ValidationOutcome(BaseModel):
    """Result of a single-value check.

    ``value`` carries a normalised form when the rule produces one (URLs).
    """

    valid: bool
    message: str | None = None
    errors: list[str] = Field(default_factory=list)
    value: Any = None

    @classmethod
    def ok(cls, value: Any = None) -> "ValidationOutcome":
        return cls(valid=True, value=value)

    @classmethod
    def fail(cls, *errors: str, value: Any = None) -> "ValidationOutcome":
        return cls(valid=False, message=errors[0], errors=list(errors), value=value)


class RequestValidationResult(BaseModel):
    valid: bool
    errors: list[str] = Field(default_factory=list)
    data: dict[str, Any] = Field(default_factory=dict)
    failed_fields: list[str] = Field(default_factory=list)
