"""
Errors raised by emqu.

Every error is fatal to the command that raised it. The CLI maps each class
to its own exit code so scripts can tell them apart.
"""

from typing import Any, Dict, Optional


class EmquError(Exception):
    """Base class for all emqu errors."""

    exit_code = 1

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} ({context_str})"
        return self.message


class InputError(EmquError):
    """A source file is missing, unreadable or not valid UTF-8, or a glob matched nothing."""

    exit_code = 3


class ProviderError(EmquError):
    """The embedding provider call failed or returned something unusable."""

    exit_code = 4


class CorruptDatabase(EmquError):
    """A database file failed structural or dimension validation."""

    exit_code = 5


class DimensionMismatch(EmquError):
    """
    A vector's length differs from the database dimension.

    At query time this usually means the index was built with a different
    embedding model than the one answering the query.
    """

    exit_code = 6

    def __init__(self, expected: int, actual: int, message: Optional[str] = None):
        super().__init__(
            message
            or f"Embedding has {actual} dimensions but the database uses {expected}. "
            "Was the database built with a different embedding model?",
            {"expected": expected, "actual": actual},
        )
        self.expected = expected
        self.actual = actual
