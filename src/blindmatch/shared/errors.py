"""
Exception taxonomy.

Fatal errors propagate to the top level (the CLI exits non-zero).
Recoverable conditions (truncated store tail, empty plaintext) are logged
where they happen and never raised.
"""


class BlindMatchError(Exception):
    """Base class for all blindmatch errors."""


class ConfigurationError(BlindMatchError, ValueError):
    """Invalid or unsupported pipeline configuration."""


class DepthBudgetError(ConfigurationError):
    """The configured depth budget cannot fit the worst-case reduction path."""

    def __init__(self, worst_case_level: int, depth_budget: int, detail: str = ""):
        self.worst_case_level = worst_case_level
        self.depth_budget = depth_budget
        message = (
            f"Worst-case ciphertext level {worst_case_level} reaches the "
            f"multiplicative depth budget {depth_budget}"
        )
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class EmptyDatabaseError(BlindMatchError, ValueError):
    """There is no maximum of zero elements."""


class StoreError(BlindMatchError, OSError):
    """The encrypted store could not be created, opened or written."""


class RecordDecodeError(BlindMatchError, ValueError):
    """A stored record could not be turned back into a ciphertext."""


class DepthBudgetExceededError(BlindMatchError, RuntimeError):
    """An operation produced a level at or above the depth budget."""
