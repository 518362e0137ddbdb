"""Common type aliases used throughout the package."""

from __future__ import annotations

from typing import TypeAlias

import numpy as np
import numpy.typing

# Common type for Arrays, e.g. a vector of unknowns
Array: TypeAlias = numpy.typing.NDArray[np.float64]

# Type for purely real-valued arrays (e.g. grid points)
RealArray: TypeAlias = numpy.typing.NDArray[np.float64]

# Objects that can be coerced into an Array
ArrayLike: TypeAlias = numpy.typing.ArrayLike

# Position of a grid point in the Cartesian product of a field's axes
MultiIndex: TypeAlias = tuple[int, ...]

# Numeric values for the free parameters of a system
ParameterMap: TypeAlias = dict[str, float]
