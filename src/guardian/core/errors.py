"""Exceptions raised by Guardian.

- GuardianError: Base exception for all Guardian errors
- ConfigError: Invalid arguments or tunables, raised before any side effect
- StoreError: Persistence failure in the review history database
"""


class GuardianError(Exception):
    """Base exception for all Guardian errors.

    Attributes:
        message: Human-readable error description.
        details: Optional dictionary with additional error context.
    """

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        """Return string representation with details if available."""
        if self.details:
            return f"{self.message} - Details: {self.details}"
        return self.message


class ConfigError(GuardianError):
    """Invalid configuration or argument.

    Raised for empty session references, inverted disclosure thresholds
    and similar caller mistakes. Nothing is persisted when it is raised.
    """


class StoreError(GuardianError):
    """The review history database could not complete an operation.

    Wraps the underlying sqlite3 error, which is kept as ``__cause__``.
    Learning and retrieval callers log it and continue.
    """
