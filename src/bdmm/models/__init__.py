"""
Parameters of the multi-type birth-death-migration process.

Rates are piecewise constant in time. They are given either directly
(birth, death, sampling) or in epidemiological form, and resolved once per
evaluation into an immutable :class:`~bdmm.models.rates.RateModel`.
"""

from bdmm.models.rates import (
    BirthDeathMigrationParameters,
    EpidemiologicalParameters,
    InvalidParametersError,
    PiecewiseSchedule,
    RateModel,
    RhoSampling,
)

__all__ = [
    "BirthDeathMigrationParameters",
    "EpidemiologicalParameters",
    "InvalidParametersError",
    "PiecewiseSchedule",
    "RateModel",
    "RhoSampling",
]
