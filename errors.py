"""
Rate change sync error types.

Only configuration, validation, conflict and token-exchange problems are
raised. Per-matter CRM failures travel as values (ApiResult, MatterSyncOutcome)
so a batch can carry on past them.
"""
from enum import Enum


class RateChangeError(Exception):
    """Base class for rate change sync errors."""


class ConfigurationError(RateChangeError):
    """A required setting (connection string, field id) is missing or invalid."""


class ValidationError(RateChangeError):
    """A request is missing a required field."""


class AuthError(RateChangeError):
    """Clio credentials could not be loaded or exchanged for a token."""


class ConflictError(RateChangeError):
    """The notification record changed since the caller last read it."""


class UpstreamError(RateChangeError):
    """A Clio read that an operation depends on failed outright."""


class ErrorKind(str, Enum):
    AUTH = "auth"
    NOT_FOUND = "not_found"
    UPSTREAM = "upstream"
    TRANSPORT = "transport"
