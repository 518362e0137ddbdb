"""Exceptions and warnings raised while discretizing a PDE system."""

from __future__ import annotations

from typing import Any


class DiscretizationError(ValueError):
    """
    Base class of all errors raised by a discretization pass.

    Any of these aborts the whole pass: no partially assembled system is returned.
    """


class DomainShapeError(DiscretizationError):
    """A domain is not a single closed Cartesian interval, or cannot be gridded."""


class UnsupportedDerivativeFormError(DiscretizationError):
    """A derivative is applied to an inner expression that has no stencil expansion."""

    def __init__(self, message: str, expression: Any = None) -> None:
        """
        Initialize the error.

        Parameters
        ----------
        message
            The error message.
        expression
            The offending subexpression.
        """
        super().__init__(message)
        #: the offending subexpression
        self.expression = expression


class UnsupportedBCShapeError(DiscretizationError):
    """A boundary or initial condition has a shape that cannot be translated."""

    def __init__(self, message: str, condition: Any = None) -> None:
        """
        Initialize the error.

        Parameters
        ----------
        message
            The error message.
        condition
            The offending condition.
        """
        super().__init__(message)
        #: the offending condition
        self.condition = condition


class UnderspecifiedSystemError(DiscretizationError):
    """A grid point has no equation, or more than one, assigned to it."""


class InstabilityWarning(UserWarning):
    """The requested scheme is accepted, but its accuracy/stability is not guaranteed."""
