"""Trust layer — Response shape validation.

Schemas are JSON-Schema-like dicts restricted to what a client can cheaply
check::

    {"required": ["id", "items"],
     "properties": {"id": {"type": "string"}, "items": {"type": "array"}}}

Arrays and objects are distinguished strictly, and ``bool`` never counts as
a number.
"""

from __future__ import annotations

from typing import Any, Mapping

from dispatch_guard.validation.rules import RequestValidationResult


def _matches(value: Any, expected: str) -> bool:
    if expected == "string":
        return isinstance(value, str)
    if expected == "number":
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if expected == "integer":
        return isinstance(value, int) and not isinstance(value, bool)
    if expected == "boolean":
        return isinstance(value, bool)
    if expected == "array":
        return isinstance(value, (list, tuple))
    if expected == "object":
        return isinstance(value, Mapping)
    if expected == "null":
        return value is None
    return True


def validate_response(response: Any, schema: Mapping[str, Any]) -> RequestValidationResult:
    errors: list[str] = []
    if not isinstance(response, Mapping):
        return RequestValidationResult(
            valid=False, errors=["Invalid response format"], data={}
        )

    failed: list[str] = []
    for field in schema.get("required", []):
        if field not in response:
            errors.append(f"Missing required field: {field}")
            failed.append(field)

    for field, spec in (schema.get("properties") or {}).items():
        if field not in response:
            continue
        expected = (spec or {}).get("type")
        if expected and not _matches(response[field], expected):
            article = "an" if expected[0] in "aeiou" else "a"
            errors.append(f"{field} must be {article} {expected}")
            failed.append(field)

    return RequestValidationResult(
        valid=not errors,
        errors=errors,
        data=dict(response),
        failed_fields=failed,
    )
