"""Exception types shared across caixabean."""

from __future__ import annotations


class ConfigurationError(ValueError):
    """A rule set or configuration file cannot be used as given."""

    def __init__(self, message: str, config_path: str | None = None):
        super().__init__(message)
        self.config_path = config_path
