import typing

import pytest

from typedefaults import lib


@pytest.fixture(autouse=True)
def _typedefaults_settings_fixture(
    monkeypatch: pytest.MonkeyPatch,
) -> typing.Generator[None, None, None]:
    """Start every test from default settings."""
    monkeypatch.delenv("TYPEDEFAULTS_MAX_DEPTH", raising=False)
    lib.reset()

    yield

    lib.reset()
