"""
Exceptions raised by typedefaults.
"""

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from .types import Type


class TypeDefaultsError(Exception):
    """Base class for all typedefaults errors."""


class ConversionError(TypeDefaultsError, ValueError):
    """
    A value could not be converted to the requested type.

    `path` holds the attribute / element steps leading to the failing value,
    e.g. `['.b', '[0]', '.c']`.
    """

    def __init__(self, message: str, path: Sequence[str] = ()):
        self.message = message
        self.path = list(path)
        super().__init__(self._format())

    def _format(self) -> str:
        if not self.path:
            return self.message
        return f"{''.join(self.path)}: {self.message}"


class MismatchError(TypeDefaultsError, ValueError):
    """
    A value with defaults applied does not conform to the declared type.
    """

    def __init__(self, message: str, source_type: "Type", target_type: "Type"):
        self.source_type = source_type
        self.target_type = target_type
        super().__init__(message)


class InvariantViolation(TypeDefaultsError, AssertionError):
    """
    A conversion that should be safe by construction failed. This means the
    defaults tree disagrees with the types of the default values it carries.
    """


class NestingDepthError(TypeDefaultsError, RecursionError):
    """Applying defaults exceeded the configured maximum nesting depth."""
