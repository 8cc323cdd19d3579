"""
Library level functions and states.
"""

import threading
import warnings

from . import setting

_settings: setting.Settings | None = None
_settings_lock: threading.Lock = threading.Lock()


def init(settings: setting.Settings | None = None) -> None:
    """
    Initialize the typedefaults library.

    If the settings are not provided, they are loaded from the environment variables.
    """
    global _settings  # pylint: disable=global-statement
    new_settings = settings if settings is not None else setting.Settings.from_env()
    with _settings_lock:
        if _settings is not None and _settings != new_settings:
            warnings.warn(
                f"Initializing with new settings overrides the previous ones {_settings}."
            )
        _settings = new_settings


def get_settings() -> setting.Settings:
    """Get the current settings, loading them from the environment on first use."""
    global _settings  # pylint: disable=global-statement
    with _settings_lock:
        if _settings is None:
            _settings = setting.Settings.from_env()
        return _settings


def reset() -> None:
    """Forget the current settings, so the next use reloads them."""
    global _settings  # pylint: disable=global-statement
    with _settings_lock:
        _settings = None
