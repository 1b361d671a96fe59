"""
Error taxonomy for price lookups and usage persistence.

Provider-facing errors are recovered inside the price clients; persistence
errors are recovered inside the usage ledger.
"""


class PriceGuardError(Exception):
    """Base exception for price-guard errors."""

    def __init__(self, message: str, code: str = "PRICE_GUARD_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class TransportError(PriceGuardError):
    """Raised when a provider cannot be reached (network error, timeout)."""

    def __init__(self, message: str):
        super().__init__(message, code="TRANSPORT_ERROR")


class ProviderError(PriceGuardError):
    """Raised when a provider answers with an error or an unusable body.

    Soft rate-limit notices are provider errors too; they are flagged so
    callers can tell them apart from hard failures.
    """

    def __init__(self, message: str, is_rate_limited: bool = False):
        super().__init__(message, code="PROVIDER_ERROR")
        self.is_rate_limited = is_rate_limited


class DataAbsentError(PriceGuardError):
    """Raised when a well-formed response has no data for the requested key."""

    def __init__(self, key: str):
        super().__init__(f"No price data found for {key}", code="DATA_ABSENT")
        self.key = key


class PersistenceError(PriceGuardError):
    """Raised when the durable usage store cannot be read or written."""

    def __init__(self, message: str):
        super().__init__(message, code="PERSISTENCE_ERROR")
