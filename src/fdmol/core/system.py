"""Declarations of a continuous PDE system: domains, fields, equations and conditions."""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from .errors import DomainShapeError
from .expressions import Equation, FieldRef, Sym
from .types import ParameterMap


@dataclass(frozen=True)
class Domain:
    """
    An independent variable together with the closed interval it ranges over.

    The interval is only validated when it is needed (see :meth:`bounds`), so
    that non-interval requests are reported as a :class:`DomainShapeError` by
    the discretization pass.
    """

    variable: str
    interval: Any

    def bounds(self) -> tuple[float, float]:
        """
        The interval (lo, hi) of the domain.

        Raises
        ------
        DomainShapeError
            If the domain is not a single closed interval with lo < hi.
        """
        interval = self.interval
        if not isinstance(interval, Sequence) or isinstance(interval, str) or len(interval) != 2:
            raise DomainShapeError(
                f"Domain of '{self.variable}' must be a single closed interval (lo, hi), got {interval!r}"
            )
        try:
            lo, hi = float(interval[0]), float(interval[1])
        except (TypeError, ValueError) as err:
            raise DomainShapeError(
                f"Domain of '{self.variable}' must have numeric bounds, got {interval!r}"
            ) from err
        if not (math.isfinite(lo) and math.isfinite(hi)) or lo >= hi:
            raise DomainShapeError(f"Domain of '{self.variable}' must satisfy lo < hi with finite bounds, got {interval!r}")
        return lo, hi

    @property
    def lo(self) -> float:
        return self.bounds()[0]

    @property
    def hi(self) -> float:
        return self.bounds()[1]


class PDESystem:
    """
    A continuous PDE system.

    Holds the governing equations, the boundary/initial conditions, the domains
    of the independent variables, the signatures of the dependent variable
    fields and default values for free parameters. The order in which the
    fields are declared determines the ordering of the discrete unknowns.
    """

    def __init__(
        self,
        equations: Iterable[Equation],
        conditions: Iterable[Equation],
        domains: Iterable[Domain],
        fields: Iterable[FieldRef],
        parameters: ParameterMap | None = None,
    ) -> None:
        """
        Initialize the PDESystem.

        Parameters
        ----------
        equations
            The governing equations.
        conditions
            The boundary and initial conditions.
        domains
            The domains of all independent variables.
        fields
            The field signatures, e.g. u(t, x), with symbol arguments only.
        parameters
            Default numeric values of free parameters.
        """
        #: the governing equations
        self.equations: list[Equation] = list(equations)
        #: the boundary and initial conditions
        self.conditions: list[Equation] = list(conditions)
        #: the domains in declaration order
        self.domains: list[Domain] = list(domains)
        #: the field signatures in declaration order
        self.fields: list[FieldRef] = list(fields)
        #: default values of free parameters
        self.parameters: ParameterMap = dict(parameters or {})

        variables = [d.variable for d in self.domains]
        if len(set(variables)) != len(variables):
            raise DomainShapeError(f"Duplicate domain declarations in {variables}")
        names = [f.name for f in self.fields]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate field declarations in {names}")
        for field in self.fields:
            for arg in field.args:
                if not isinstance(arg, Sym):
                    raise ValueError(f"Field signature {field} must only have independent variables as arguments")
                if arg.name not in variables:
                    raise DomainShapeError(f"Field {field} depends on '{arg.name}', which has no domain")

    @property
    def field_names(self) -> list[str]:
        """The names of the fields in declaration order."""
        return [f.name for f in self.fields]

    def signature(self, name: str) -> tuple[str, ...]:
        """The independent variables a field depends on, in argument order."""
        for field in self.fields:
            if field.name == name:
                return tuple(arg.name for arg in field.args if isinstance(arg, Sym))
        raise KeyError(f"Unknown field '{name}'")

    def domain(self, variable: str) -> Domain:
        """The domain of an independent variable."""
        for domain in self.domains:
            if domain.variable == variable:
                return domain
        raise KeyError(f"No domain declared for '{variable}'")

    def __repr__(self) -> str:
        return (
            f"PDESystem(fields={self.field_names}, equations={len(self.equations)}, "
            f"conditions={len(self.conditions)})"
        )
