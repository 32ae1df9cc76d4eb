"""
Arithmetic back-ends for likelihood densities.

The recursion in :mod:`bdmm.core.likelihood` is written once against the
small capability set defined by :class:`Arithmetic`. Two instances exist:
:data:`FLOAT` stores densities as plain doubles (fast, but can underflow to
exactly zero on large trees) and :data:`SCALED` stores them as
:class:`~bdmm.core.scaled.ScaledNumber` (slower, never underflows).

Extinction probabilities are always plain floats.
"""

import math
from abc import ABC, abstractmethod
from typing import Any, Sequence

import numpy as np

from .scaled import ScaledNumber


class Arithmetic(ABC):
    """Operations the likelihood recursion needs on density values."""

    name: str = ""

    @abstractmethod
    def zeros(self, n: int) -> Any:
        """Mutable vector of ``n`` zero densities."""

    @abstractmethod
    def from_float(self, value: float) -> Any:
        pass

    @abstractmethod
    def multiply(self, a: Any, b: Any) -> Any:
        pass

    @abstractmethod
    def scale(self, a: Any, factor: float) -> Any:
        """Multiply a density by a plain double."""

    @abstractmethod
    def log(self, a: Any) -> float:
        pass

    @abstractmethod
    def normalize(self, densities: Sequence) -> tuple[np.ndarray, int]:
        """
        Rescale a density vector by a power of two.

        Returns
        -------
        tuple[np.ndarray, int]
            Plain floats with the largest entry in ``[0.5, 1)``, and the
            exponent ``e`` such that ``densities == floats * 2**e``
        """

    @abstractmethod
    def denormalize(self, values: np.ndarray, exponent: int) -> Any:
        """Inverse of :meth:`normalize`."""


class FloatArithmetic(Arithmetic):
    name = "float"

    def zeros(self, n: int) -> np.ndarray:
        return np.zeros(n)

    def from_float(self, value: float) -> float:
        return float(value)

    def multiply(self, a: float, b: float) -> float:
        return a * b

    def scale(self, a: float, factor: float) -> float:
        return a * factor

    def log(self, a: float) -> float:
        return math.log(a) if a > 0.0 else -math.inf

    def normalize(self, densities: np.ndarray) -> tuple[np.ndarray, int]:
        largest = float(np.max(densities)) if len(densities) else 0.0
        if largest <= 0.0:
            return np.asarray(densities, dtype=np.float64).copy(), 0
        _, exponent = math.frexp(largest)
        return np.ldexp(densities, -exponent), exponent

    def denormalize(self, values: np.ndarray, exponent: int) -> np.ndarray:
        # this is where plain doubles underflow to zero
        return np.ldexp(values, exponent)


class ScaledArithmetic(Arithmetic):
    name = "scaled"

    def zeros(self, n: int) -> list:
        return [ScaledNumber() for _ in range(n)]

    def from_float(self, value: float) -> ScaledNumber:
        return ScaledNumber.from_float(value)

    def multiply(self, a: ScaledNumber, b: ScaledNumber) -> ScaledNumber:
        return a * b

    def scale(self, a: ScaledNumber, factor: float) -> ScaledNumber:
        return a.scale(factor)

    def log(self, a: ScaledNumber) -> float:
        return a.log()

    def normalize(self, densities: Sequence[ScaledNumber]) -> tuple[np.ndarray, int]:
        nonzero = [d.exponent for d in densities if not d.is_zero]
        if not nonzero:
            return np.zeros(len(densities)), 0
        exponent = max(nonzero)
        values = np.array(
            [math.ldexp(d.mantissa, d.exponent - exponent) for d in densities]
        )
        return values, exponent

    def denormalize(self, values: np.ndarray, exponent: int) -> list:
        return [ScaledNumber.from_float(float(v)).shift(exponent) for v in values]


FLOAT = FloatArithmetic()
SCALED = ScaledArithmetic()


def get_arithmetic(use_scaled_numbers: bool) -> Arithmetic:
    return SCALED if use_scaled_numbers else FLOAT
