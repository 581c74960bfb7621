"""Custom exceptions for the funding rate arbitrage decision engine.

Only contract violations propagate out of the core. Data unavailability is
raised by providers and absorbed at the boundary; economic infeasibility is
a ``None`` result, never an exception.
"""


class ArbError(Exception):
    """Base exception for all decision engine errors."""


class InvariantViolation(ArbError):
    """Raised when upstream data breaks a structural contract.

    Examples: an opportunity with the same exchange on both legs, or more
    than one open position pair for a single symbol.
    """


class DataUnavailableError(ArbError):
    """Raised by a provider when a rate, price, OI or balance query fails."""


class ProviderTimeout(DataUnavailableError):
    """Raised when an external call exceeds its configured timeout."""
