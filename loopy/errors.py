"""
errors.py - Exception taxonomy

Only provider-level failures and configuration mistakes are exceptions.
Tool failures are data ({"error": ...}) and never show up here.
"""


class LoopyError(Exception):
    """Base class for all loopy errors."""


class ConfigError(LoopyError):
    """Invalid user-supplied configuration (CLI flags, values)."""


class ProviderError(LoopyError):
    """The model provider could not be reached or rejected the request."""

    def __init__(self, message: str, provider: str | None = None):
        super().__init__(message)
        self.provider = provider


class ExchangeAborted(LoopyError):
    """The abort signal was set while an exchange was in flight."""
