"""
Underflow-resistant scalar type for likelihood densities.

Densities of large or deep trees can drop below the smallest positive
double. A ScaledNumber keeps the value as a mantissa and a separate
integer power of two, so products of tiny densities stay representable.
"""

import math
from dataclasses import dataclass
from typing import Union

LOG_2 = math.log(2.0)


@dataclass(frozen=True)
class ScaledNumber:
    """
    Non-negative real stored as ``mantissa * 2**exponent``.

    The mantissa is kept in ``[0.5, 1)`` (the range returned by
    :func:`math.frexp`), except for zero which is ``(0.0, 0)``.

    Attributes
    ----------
    mantissa : float
        Normalised mantissa
    exponent : int
        Power of two

    Examples
    --------
    >>> x = ScaledNumber.from_float(1e-300)
    >>> y = x * x * x
    >>> float(y)
    0.0
    >>> round(y.log(), 3)
    -2072.327
    """

    mantissa: float = 0.0
    exponent: int = 0

    @classmethod
    def from_float(cls, value: float) -> "ScaledNumber":
        """Convert a plain float, normalising the mantissa."""
        if value == 0.0:
            return cls()
        mantissa, exponent = math.frexp(value)
        return cls(mantissa, exponent)

    @classmethod
    def zero(cls) -> "ScaledNumber":
        return cls()

    @property
    def is_zero(self) -> bool:
        return self.mantissa == 0.0

    def _renormalised(self, mantissa: float, exponent: int) -> "ScaledNumber":
        if mantissa == 0.0:
            return ScaledNumber()
        m, e = math.frexp(mantissa)
        return ScaledNumber(m, exponent + e)

    def __mul__(self, other: Union["ScaledNumber", float]) -> "ScaledNumber":
        if isinstance(other, ScaledNumber):
            return self._renormalised(
                self.mantissa * other.mantissa, self.exponent + other.exponent
            )
        return self.scale(other)

    __rmul__ = __mul__

    def scale(self, factor: float) -> "ScaledNumber":
        """
        Multiply by a plain double.

        Parameters
        ----------
        factor : float
            Scalar multiplier (a rate or probability)

        Returns
        -------
        ScaledNumber
            The scaled value
        """
        if not math.isfinite(factor):
            raise ValueError(f"Cannot scale by non-finite factor {factor}")
        return self._renormalised(self.mantissa * factor, self.exponent)

    def shift(self, exponent: int) -> "ScaledNumber":
        """Multiply by ``2**exponent`` exactly."""
        if self.is_zero:
            return self
        return ScaledNumber(self.mantissa, self.exponent + exponent)

    def log(self) -> float:
        """Natural logarithm; ``-inf`` for zero."""
        if self.mantissa <= 0.0:
            return -math.inf
        return math.log(self.mantissa) + self.exponent * LOG_2

    def __float__(self) -> float:
        # ldexp underflows to 0.0 and raises OverflowError past the double range
        return math.ldexp(self.mantissa, self.exponent)

    def __repr__(self) -> str:
        return f"ScaledNumber({self.mantissa!r}, {self.exponent})"
