"""
Core algorithms for birth-death-migration likelihood calculation.

This module provides low-level computational routines:

- **Intervals**: the global piecewise-constant time grid
- **Integration**: the p0/ge master equations via scipy
- **Recursion**: subtree and origin-branch densities
- **Arithmetic**: plain doubles or scaled numbers for densities

These are expert-level functions typically not needed by end users.
The high-level API (:mod:`bdmm.api`) provides easier access.
"""

from bdmm.core.arithmetic import FLOAT, SCALED, Arithmetic, get_arithmetic
from bdmm.core.integrator import IntegrationError, P0GeIntegrator
from bdmm.core.intervals import IntervalIndex
from bdmm.core.likelihood import OriginLikelihood, State, SubtreeLikelihood
from bdmm.core.scaled import ScaledNumber

__all__ = [
    "Arithmetic",
    "FLOAT",
    "SCALED",
    "get_arithmetic",
    "IntegrationError",
    "P0GeIntegrator",
    "IntervalIndex",
    "OriginLikelihood",
    "State",
    "SubtreeLikelihood",
    "ScaledNumber",
]
