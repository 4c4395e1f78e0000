"""
Error taxonomy and classification for R evaluation failures.

R reports failures as condition objects. Where the condition carries a class
we recognise (``packageNotFoundError``) it is used directly; otherwise the
classifier falls back to matching the condition message.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence


class ErrorKind(str, Enum):
    DATASET_NOT_FOUND = "DatasetNotFoundError"
    PACKAGE_MISSING = "PackageMissingError"
    MALFORMED_IDENTIFIER = "MalformedIdentifierError"
    REFERENCE = "ReferenceError"
    RUNTIME = "InterpreterRuntimeError"
    INITIALIZATION = "InitializationError"


@dataclass(frozen=True)
class ClassifiedError:
    """An evaluation failure, reported on the result rather than raised."""

    kind: ErrorKind
    message: str
    package: Optional[str] = None

    @property
    def recoverable(self) -> bool:
        return self.kind is ErrorKind.PACKAGE_MISSING and bool(self.package)


class RBridgeError(Exception):
    """Base class for every error raised by the bridge."""

    kind: ErrorKind = ErrorKind.RUNTIME

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class DatasetNotFoundError(RBridgeError):
    kind = ErrorKind.DATASET_NOT_FOUND

    def __init__(self, name: str, reason: str = "not found in the dataset catalog"):
        super().__init__(f"Dataset '{name}' {reason}")
        self.name = name


class InitializationError(RBridgeError):
    kind = ErrorKind.INITIALIZATION


class HandleReleasedError(RuntimeError):
    """An RHandle was used or destroyed after it had been released."""


class EmptyTableError(ValueError):
    """Inline rows were empty; callers must use the synthetic dataset instead."""


class RConditionError(Exception):
    """A raw condition signalled by R, before classification.

    Attributes:
        message: ``conditionMessage()`` of the condition (or the rpy2 error text).
        classes: R class vector of the condition; empty when only text is known.
        package: the ``package`` field of a ``packageNotFoundError``, if any.
    """

    def __init__(self, message: str, classes: Sequence[str] = (), package: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.classes = tuple(classes)
        self.package = package or None


# Message signatures, checked in priority order.
_PACKAGE_PATTERNS = [
    re.compile(r"there is no package called\s+[‘'\"`]?([A-Za-z][A-Za-z0-9.]*)[’'\"`]?"),
    re.compile(r"package\s+[‘'\"`]([A-Za-z][A-Za-z0-9.]*)[’'\"`]\s+(?:is not available|not found|required)"),
]
_REFERENCE_PATTERNS = [
    re.compile(r"object\s+[‘'\"`][^’'\"`]*[’'\"`]\s+not found"),
    re.compile(r"could not find function"),
]
_MALFORMED_PATTERNS = [
    re.compile(r"zero-length variable name"),
    re.compile(r"invalid (?:variable|symbol) name"),
]

_ERROR_PREFIX = re.compile(r"^(?:\s*Error\s*:\s*)+", re.IGNORECASE)


def normalize_message(text: str) -> str:
    """Collapse repeated leading ``Error:`` prefixes into a single one."""
    text = (text or "").strip()
    if _ERROR_PREFIX.match(text):
        return "Error: " + _ERROR_PREFIX.sub("", text, count=1).strip()
    return text


def display_message(text: str) -> str:
    """Message as surfaced to callers: always exactly one ``Error:`` prefix."""
    return normalize_message(f"Error: {text}")


def missing_package_name(message: str) -> Optional[str]:
    for pattern in _PACKAGE_PATTERNS:
        match = pattern.search(message)
        if match:
            return match.group(1)
    return None


def classify(condition: RConditionError) -> ClassifiedError:
    """Map a raw R condition onto the error taxonomy."""
    message = display_message(condition.message)

    if "packageNotFoundError" in condition.classes:
        package = condition.package or missing_package_name(condition.message)
        return ClassifiedError(ErrorKind.PACKAGE_MISSING, message, package)
    package = missing_package_name(condition.message)
    if package:
        return ClassifiedError(ErrorKind.PACKAGE_MISSING, message, package)

    if any(p.search(condition.message) for p in _REFERENCE_PATTERNS):
        return ClassifiedError(ErrorKind.REFERENCE, message)

    if any(p.search(condition.message) for p in _MALFORMED_PATTERNS):
        return ClassifiedError(ErrorKind.MALFORMED_IDENTIFIER, message)

    return ClassifiedError(ErrorKind.RUNTIME, message)
