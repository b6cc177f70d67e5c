class AdapterError(Exception):
    """Raised when an AI service call fails."""


class AdapterTransientError(AdapterError):
    """Raised on timeouts, connection failures and retryable provider statuses."""


class AdapterPermanentError(AdapterError):
    """Raised when the provider rejects the request outright. Never retried."""
