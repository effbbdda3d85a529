"""Unit tests — Field validators and request validation."""

from __future__ import annotations

import pytest

from dispatch_guard.validation import (
    FieldRule,
    FileMetadata,
    FileOptions,
    RuleType,
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


@pytest.mark.unit
class TestRequired:
    @pytest.mark.parametrize("value", [None, "", [], {}])
    def test_blank_fails(self, value: object) -> None:
        outcome = validate_required(value)
        assert outcome.valid is False
        assert outcome.message == "is required"

    @pytest.mark.parametrize("value", ["x", 0, False, [1]])
    def test_present_passes(self, value: object) -> None:
        assert validate_required(value).valid is True


@pytest.mark.unit
class TestLength:
    def test_too_short(self) -> None:
        assert validate_length("ab", min_length=3).errors == ["must be at least 3 characters"]

    def test_too_long(self) -> None:
        assert validate_length("abcd", max_length=3).errors == ["must be no more than 3 characters"]

    def test_within_bounds(self) -> None:
        assert validate_length("abc", 1, 3).valid is True


@pytest.mark.unit
class TestEmail:
    def test_valid(self) -> None:
        assert validate_email("driver@example.com").valid is True

    @pytest.mark.parametrize("value", ["no-at-sign", "a@b", "a@@b.com", "a..b@example.com", "a b@c.io"])
    def test_invalid(self, value: str) -> None:
        assert validate_email(value).valid is False

    def test_too_long(self) -> None:
        value = "a" * 250 + "@x.io"
        assert validate_email(value).errors == ["must be no more than 254 characters"]


@pytest.mark.unit
class TestPhone:
    @pytest.mark.parametrize("value", ["+1 (555) 123-4567", "555.123.4567", "0612345678"])
    def test_valid(self, value: str) -> None:
        assert validate_phone(value).valid is True

    @pytest.mark.parametrize("value", ["12345", "call me", "+1 555 123 4567 8901 23"])
    def test_invalid(self, value: str) -> None:
        assert validate_phone(value).valid is False


@pytest.mark.unit
class TestPassword:
    def test_strong(self) -> None:
        assert validate_password("Str0ng!Pass").valid is True

    def test_collects_every_failure(self) -> None:
        outcome = validate_password("short")
        assert "must be at least 8 characters long" in outcome.errors
        assert "must contain at least one uppercase letter" in outcome.errors
        assert "must contain at least one number" in outcome.errors
        assert "must contain at least one special character" in outcome.errors

    def test_symbol_optional(self) -> None:
        assert validate_password("Str0ngPass", require_symbol=False).valid is True
        assert validate_password("Str0ngPass").valid is False

    def test_common_password_rejected(self) -> None:
        outcome = validate_password("password", require_symbol=False)
        assert "is too common" in outcome.errors

    def test_too_long(self) -> None:
        outcome = validate_password("Aa1!" * 40)
        assert "must be no more than 128 characters long" in outcome.errors


@pytest.mark.unit
class TestUrl:
    def test_normalises_scheme_and_host(self) -> None:
        outcome = validate_url("HTTPS://Example.COM/Path?q=1#frag")
        assert outcome.valid is True
        assert outcome.value == "https://example.com/Path?q=1#frag"

    def test_empty_path_becomes_slash(self) -> None:
        assert validate_url("http://example.com").value == "http://example.com/"

    def test_keeps_port(self) -> None:
        assert validate_url("http://example.com:8080/x").value == "http://example.com:8080/x"

    @pytest.mark.parametrize("value", ["ftp://example.com", "javascript:alert(1)", "example.com"])
    def test_rejects_non_http(self, value: str) -> None:
        assert validate_url(value).valid is False

    def test_rejects_missing_host(self) -> None:
        assert validate_url("http:///path").valid is False

    def test_rejects_credentials(self) -> None:
        assert validate_url("https://user:pw@example.com").errors == ["must not embed credentials"]

    def test_rejects_bad_port(self) -> None:
        assert validate_url("http://example.com:99999").valid is False


@pytest.mark.unit
class TestFile:
    def test_valid_image(self) -> None:
        f = FileMetadata(name="proof.jpg", size=1024, content_type="image/jpeg")
        assert validate_file(f).valid is True

    def test_too_large(self) -> None:
        f = FileMetadata(name="proof.jpg", size=2_000, content_type="image/jpeg")
        outcome = validate_file(f, FileOptions(max_size=1_000))
        assert outcome.errors == ["file size must be no more than 1000 bytes"]

    def test_disallowed_type(self) -> None:
        f = FileMetadata(name="notes.txt", size=10, content_type="text/plain")
        outcome = validate_file(f)
        assert any(e.startswith("file type not allowed.") for e in outcome.errors)

    def test_executable_rejected(self) -> None:
        f = FileMetadata(name="invoice.pdf.exe", size=10, content_type="application/pdf")
        outcome = validate_file(f)
        assert "file type not allowed for security reasons" in outcome.errors

    def test_extensions_normalised(self) -> None:
        assert FileOptions(allowed_extensions=["PNG", ".Jpg"]).allowed_extensions == [".png", ".jpg"]


@pytest.mark.unit
class TestValidateRule:
    def test_blank_optional_passes(self) -> None:
        assert validate("", FieldRule()).valid is True

    def test_blank_required_fails(self) -> None:
        assert validate(None, FieldRule(required=True)).errors == ["is required"]

    def test_number_type(self) -> None:
        assert validate(3.5, FieldRule(type=RuleType.NUMBER)).valid is True
        assert validate("3", FieldRule(type=RuleType.NUMBER)).errors == ["must be a number"]

    def test_bool_is_not_a_number(self) -> None:
        assert validate(True, FieldRule(type=RuleType.NUMBER)).valid is False

    def test_boolean_type(self) -> None:
        assert validate(False, FieldRule(type=RuleType.BOOLEAN, required=True)).valid is True
        assert validate("yes", FieldRule(type=RuleType.BOOLEAN)).valid is False

    def test_string_type(self) -> None:
        assert validate(12, FieldRule(type=RuleType.STRING)).errors == ["must be a string"]

    def test_untyped_non_string_passes(self) -> None:
        assert validate(12, FieldRule(min_length=3)).valid is True

    def test_pattern_from_string(self) -> None:
        rule = FieldRule(pattern=r"^ORD-\d+$")
        assert validate("ORD-12", rule).valid is True
        assert validate("12", rule).errors == ["format is invalid"]

    def test_url_returns_normalised_value(self) -> None:
        outcome = validate("HTTP://Shop.Example", FieldRule(type=RuleType.URL))
        assert outcome.value == "http://shop.example/"

    def test_file_from_mapping(self) -> None:
        rule = FieldRule(type=RuleType.FILE)
        outcome = validate({"name": "a.png", "size": 1, "content_type": "image/png"}, rule)
        assert outcome.valid is True

    def test_file_wrong_shape(self) -> None:
        assert validate("a.png", FieldRule(type=RuleType.FILE)).errors == ["must be a file"]

    def test_rule_from_dict(self) -> None:
        rule = FieldRule.model_validate({"required": True, "type": "email"})
        assert rule.type is RuleType.EMAIL


@pytest.mark.unit
class TestValidateRequest:
    def test_collects_every_failing_field(self) -> None:
        rules = {
            "email": FieldRule(required=True, type=RuleType.EMAIL),
            "phone": FieldRule(required=True, type=RuleType.PHONE),
        }
        result = validate_request({"email": "bad", "phone": "x"}, rules)
        assert result.valid is False
        assert result.failed_fields == ["email", "phone"]
        assert "email must be a valid email address" in result.errors
        assert "phone must be a valid phone number" in result.errors

    def test_returns_sanitised_copy(self) -> None:
        rules = {"notes": FieldRule(max_length=100)}
        data = {"notes": "<b>Leave</b> at door", "extra": "<i>x</i>"}
        result = validate_request(data, rules)
        assert result.valid is True
        assert result.data == {"notes": "Leave at door", "extra": "x"}
        assert data["notes"] == "<b>Leave</b> at door"

    def test_password_not_sanitised(self) -> None:
        rules = {"password": FieldRule(required=True, type=RuleType.PASSWORD)}
        result = validate_request({"password": "<Ab1!xyzw>"}, rules)
        assert result.data["password"] == "<Ab1!xyzw>"

    def test_missing_optional_field_skipped(self) -> None:
        result = validate_request({}, {"notes": FieldRule()})
        assert result.valid is True
        assert result.data == {}

    def test_missing_required_field_reported(self) -> None:
        result = validate_request({}, {"address": FieldRule(required=True)})
        assert result.errors == ["address is required"]
