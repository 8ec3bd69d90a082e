"""Adapter failure types. The queue processor only cares which side of
TransientError / PermanentError an exception falls on."""


class SyncError(Exception):
    """Base class for dispatch failures raised by provider adapters."""


class TransientError(SyncError):
    """Timeout, 5xx, rate limit: a later attempt may succeed."""


class PermanentError(SyncError):
    """Validation rejection or similar: retrying the same input cannot succeed."""


class AuthError(PermanentError):
    """Credentials are missing, expired and unrefreshable, or rejected."""


class UnsupportedKind(PermanentError):
    """The provider has no mapping for this kind/action."""


class UnsupportedProvider(PermanentError):
    """No adapter is registered for the item's provider."""
