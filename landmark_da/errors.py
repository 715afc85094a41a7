"""Exception taxonomy for data association queries.

All errors raised by ``landmark_da`` derive from :class:`AssociationError`,
so callers can catch the whole family or a single condition:

- :class:`InvalidInputError`  — shapes/IDs do not agree (raised before search)
- :class:`NumericalError`     — a covariance is not positive-definite
- :class:`ConfigurationError` — unknown method/metric or out-of-range option
"""

from typing import Optional


class AssociationError(Exception):
    """Base class of every data-association failure."""


class InvalidInputError(AssociationError, ValueError):
    """Dimension mismatch among means, covariances or the ID table.

    Attributes:
        argument: Name of the offending argument
        index: Offending row/block index, if one can be singled out
    """

    def __init__(self, message: str, argument: Optional[str] = None,
                 index: Optional[int] = None):
        super().__init__(message)
        self.argument = argument
        self.index = index


class NumericalError(AssociationError, ArithmeticError):
    """Covariance failed the positive-definiteness (Cholesky) check.

    Attributes:
        index: Prediction index whose block failed, when known
        pairs: (observation, prediction) pairs of the failing hypothesis
    """

    def __init__(self, message: str, index: Optional[int] = None,
                 pairs: Optional[tuple] = None):
        super().__init__(message)
        self.index = index
        self.pairs = pairs


class ConfigurationError(AssociationError, ValueError):
    """Unknown/unsupported method or metric, or an option out of range."""

    def __init__(self, message: str, option: Optional[str] = None):
        super().__init__(message)
        self.option = option
