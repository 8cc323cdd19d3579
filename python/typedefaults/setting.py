"""
Settings for typedefaults.
"""

import os
from dataclasses import dataclass
from typing import Callable, Self, TypeVar

T = TypeVar("T")

_ENV_MAX_DEPTH = "TYPEDEFAULTS_MAX_DEPTH"


def _load_field(
    target: dict[str, object],
    name: str,
    env_name: str,
    parse: Callable[[str], T],
) -> None:
    value = os.getenv(env_name)
    if value is None:
        return
    try:
        target[name] = parse(value)
    except ValueError as e:
        raise ValueError(f"Invalid value for {env_name}: {value!r}") from e


def _parse_positive_int(value: str) -> int:
    n = int(value)
    if n <= 0:
        raise ValueError(f"expected a positive integer, got {n}")
    return n


@dataclass
class Settings:
    """Settings for applying defaults."""

    # Maximum number of nested defaults nodes walked in a single application.
    max_depth: int = 512

    def __post_init__(self) -> None:
        if self.max_depth <= 0:
            raise ValueError(f"max_depth must be positive, got {self.max_depth}")

    @classmethod
    def from_env(cls) -> Self:
        """Load settings from environment variables."""
        kwargs: dict[str, object] = {}
        _load_field(kwargs, "max_depth", _ENV_MAX_DEPTH, _parse_positive_int)
        return cls(**kwargs)  # type: ignore[arg-type]
