"""
Unit tests for rbridge/errors.py
Tests: structured and text-based classification, priority order, message normalization
"""

import pytest

from rbridge.errors import (
    ClassifiedError,
    DatasetNotFoundError,
    ErrorKind,
    RConditionError,
    classify,
    display_message,
    missing_package_name,
    normalize_message,
)


# ────────────────────────────────────────────────────────────────────────────
# Classification
# ────────────────────────────────────────────────────────────────────────────

class TestClassify:

    def test_structured_package_condition_wins(self):
        condition = RConditionError(
            "loading failed", ("packageNotFoundError", "error", "condition"), "janitor"
        )
        result = classify(condition)
        assert result.kind is ErrorKind.PACKAGE_MISSING
        assert result.package == "janitor"
        assert result.recoverable

    @pytest.mark.parametrize("message,package", [
        ("there is no package called ‘corrplot’", "corrplot"),
        ("there is no package called 'data.table'", "data.table"),
        ("Error in library(foo): there is no package called `foo`", "foo"),
        ("package ‘zoo’ is not available for this version of R", "zoo"),
    ])
    def test_package_messages(self, message, package):
        result = classify(RConditionError(message))
        assert result.kind is ErrorKind.PACKAGE_MISSING
        assert result.package == package

    @pytest.mark.parametrize("message", [
        "object 'x' not found",
        "object ‘undefined_thing’ not found",
        'could not find function "ggplot"',
    ])
    def test_reference_errors(self, message):
        result = classify(RConditionError(message, ("simpleError", "error", "condition")))
        assert result.kind is ErrorKind.REFERENCE
        assert not result.recoverable

    def test_malformed_identifier(self):
        result = classify(RConditionError("attempt to use zero-length variable name"))
        assert result.kind is ErrorKind.MALFORMED_IDENTIFIER

    def test_runtime_fallback(self):
        result = classify(RConditionError("non-numeric argument to binary operator"))
        assert result.kind is ErrorKind.RUNTIME
        assert result.package is None

    def test_package_before_reference(self):
        # Mentions both signatures; the package one has priority.
        message = "object 'x' not found; there is no package called ‘pkg’"
        assert classify(RConditionError(message)).kind is ErrorKind.PACKAGE_MISSING

    def test_missing_package_name_none(self):
        assert missing_package_name("something else went wrong") is None


# ────────────────────────────────────────────────────────────────────────────
# Message normalization
# ────────────────────────────────────────────────────────────────────────────

class TestMessages:

    @pytest.mark.parametrize("raw,expected", [
        ("Error: Error: boom", "Error: boom"),
        ("Error: Error:Error:   boom", "Error: boom"),
        ("error: boom", "Error: boom"),
        ("boom", "boom"),
        ("", ""),
    ])
    def test_normalize(self, raw, expected):
        assert normalize_message(raw) == expected

    @pytest.mark.parametrize("raw", ["boom", "Error: boom", "Error: Error: boom"])
    def test_display_has_single_prefix(self, raw):
        message = display_message(raw)
        assert message == "Error: boom"
        assert "Error: Error:" not in message

    def test_classified_messages_never_doubled(self):
        result = classify(RConditionError("Error: Error: object 'y' not found"))
        assert result.message == "Error: object 'y' not found"

    def test_bridge_errors_carry_kind(self):
        err = DatasetNotFoundError("nope")
        assert err.kind is ErrorKind.DATASET_NOT_FOUND
        assert err.message == "Dataset 'nope' not found in the dataset catalog"

    @pytest.mark.parametrize("kind,package,expected", [
        (ErrorKind.PACKAGE_MISSING, "janitor", True),
        (ErrorKind.PACKAGE_MISSING, None, False),
        (ErrorKind.REFERENCE, None, False),
        (ErrorKind.RUNTIME, "janitor", False),
    ])
    def test_only_named_missing_packages_are_recoverable(self, kind, package, expected):
        assert ClassifiedError(kind, "Error: x", package).recoverable is expected
