"""
Piecewise-constant rate parameters of the multi-type birth-death-migration
process.

Parameters are supplied as schedules (one value array per epoch plus the
times at which the epoch changes) and resolved once per likelihood
evaluation into a :class:`RateModel`, an immutable table indexed by type and
global interval.
"""

from dataclasses import dataclass, field
from typing import Optional, Union

import numpy as np

from ..core.intervals import TIME_TOLERANCE, IntervalIndex

RATE_KINDS = ("birth", "death", "sampling", "removal")


class InvalidParametersError(ValueError):
    """Raised when parameters cannot be resolved against the tree horizon."""


@dataclass
class PiecewiseSchedule:
    """
    A parameter that is constant within epochs.

    Parameters
    ----------
    values : array_like
        Values per epoch; the first axis indexes epochs. A schedule with a
        single epoch may omit that axis.
    change_times : array_like, optional
        Increasing times at which the value changes (one fewer than the
        number of epochs). Measured forward from the horizon, unless
        ``reverse_time`` is set.
    reverse_time : bool, default=False
        Interpret ``change_times`` as heights before the present, with
        ``values`` ordered from the present backwards.

    Examples
    --------
    >>> # birth rate of two types, dropping at time 3
    >>> birth = PiecewiseSchedule([[2.0, 1.5], [1.0, 0.8]], change_times=[3.0])
    """

    values: np.ndarray
    change_times: np.ndarray = field(default_factory=lambda: np.empty(0))
    reverse_time: bool = False

    def __post_init__(self):
        self.values = np.asarray(self.values, dtype=np.float64)
        self.change_times = np.asarray(self.change_times, dtype=np.float64).reshape(-1)
        if self.change_times.size > 1 and np.any(np.diff(self.change_times) <= 0):
            raise ValueError("Schedule change times must be strictly increasing")

    @property
    def n_epochs(self) -> int:
        return self.change_times.size + 1

    def with_item_shape(self, item_shape: tuple) -> "PiecewiseSchedule":
        """
        Return a copy whose values have shape ``(n_epochs, *item_shape)``.

        A scalar is broadcast to every item; a value array of exactly
        ``item_shape`` is taken as the single epoch.
        """
        values = self.values
        if values.ndim == 0:
            values = np.full((self.n_epochs,) + item_shape, float(values))
        elif values.shape == item_shape and self.n_epochs == 1:
            values = values[np.newaxis, ...]
        elif item_shape == (1,) and values.shape == (self.n_epochs,):
            values = values[:, np.newaxis]
        if values.shape != (self.n_epochs,) + item_shape:
            raise ValueError(
                f"Schedule values have shape {self.values.shape}, expected "
                f"{(self.n_epochs,) + item_shape} for {self.n_epochs} epoch(s)"
            )
        return PiecewiseSchedule(values, self.change_times.copy(), self.reverse_time)

    def forward_change_times(self, horizon: float) -> np.ndarray:
        """Change times measured forward from the horizon, ascending."""
        if self.reverse_time:
            return (horizon - self.change_times)[::-1]
        return self.change_times

    def forward_values(self) -> np.ndarray:
        """Epoch values in forward-time order."""
        return self.values[::-1] if self.reverse_time else self.values

    def resolve(self, intervals: IntervalIndex) -> np.ndarray:
        """
        Value of this schedule in every global interval.

        Parameters
        ----------
        intervals : IntervalIndex
            Global breakpoints (which include this schedule's change times)

        Returns
        -------
        np.ndarray, shape (n_intervals, *item_shape)
            Value in force over each interval
        """
        change = self.forward_change_times(intervals.horizon)
        epoch = np.searchsorted(change, intervals.times, side="left")
        return self.forward_values()[epoch]

    def refine(self, change_times: np.ndarray) -> "PiecewiseSchedule":
        """
        Re-express this schedule on a finer set of change times.

        ``change_times`` must be in the same convention as the schedule's own
        change times and contain all of them.
        """
        change_times = np.unique(np.asarray(change_times, dtype=np.float64))
        if change_times.size == 0:
            return PiecewiseSchedule(self.values.copy(), change_times, self.reverse_time)
        # one representative point strictly inside each refined epoch
        inner = 0.5 * (change_times[:-1] + change_times[1:])
        probes = np.concatenate(([change_times[0] - 1.0], inner, [change_times[-1] + 1.0]))
        epoch = np.searchsorted(self.change_times, probes, side="left")
        return PiecewiseSchedule(self.values[epoch], change_times, self.reverse_time)


ScheduleLike = Union[PiecewiseSchedule, np.ndarray, list, float]


def as_schedule(value: ScheduleLike, item_shape: tuple) -> PiecewiseSchedule:
    """Coerce a bare array or scalar into a schedule with the given item shape."""
    if not isinstance(value, PiecewiseSchedule):
        value = PiecewiseSchedule(value)
    return value.with_item_shape(item_shape)


@dataclass
class RhoSampling:
    """
    Scheduled (instantaneous) sampling probabilities.

    Parameters
    ----------
    values : array_like, shape (n_times, n_types) or (n_types,)
        Probability that each lineage of a type is sampled at each time
    times : array_like, optional
        Sampling times, forward from the horizon unless ``reverse_time``.
        ``None`` samples at the present only.
    reverse_time : bool, default=False
        Interpret ``times`` as heights before the present
    """

    values: np.ndarray
    times: Optional[np.ndarray] = None
    reverse_time: bool = False

    def __post_init__(self):
        self.values = np.asarray(self.values, dtype=np.float64)
        if self.times is not None:
            self.times = np.asarray(self.times, dtype=np.float64).reshape(-1)
        n_times = 1 if self.times is None else self.times.size
        if self.values.ndim == 1:
            self.values = self.values[np.newaxis, :]
        if self.values.ndim != 2 or self.values.shape[0] != n_times:
            raise ValueError(
                f"rho values have shape {self.values.shape}, expected "
                f"({n_times}, n_types)"
            )

    def forward_times(self, horizon: float) -> np.ndarray:
        if self.times is None:
            return np.array([horizon])
        if self.reverse_time:
            return horizon - self.times
        return self.times


@dataclass
class BirthDeathMigrationParameters:
    """
    Parameters of the multi-type birth-death-migration process.

    Attributes
    ----------
    n_types : int
        Number of types (demes)
    birth_rate, death_rate, sampling_rate : PiecewiseSchedule
        Per-type rates, shape ``(n_epochs, n_types)``
    migration_rate : PiecewiseSchedule
        Migration matrix per epoch, shape ``(n_epochs, n_types, n_types)``.
        Entry ``[i, j]`` is the rate at which a lineage of type ``i`` moves
        to type ``j`` forward in time; the diagonal is ignored.
    root_frequencies : np.ndarray
        Probability of each type at the horizon
    removal_probability : PiecewiseSchedule, optional
        Probability that a sampled individual is removed. Setting it enables
        the sampled-ancestor model.
    rho : RhoSampling, optional
        Scheduled sampling probabilities
    """

    n_types: int
    birth_rate: ScheduleLike
    death_rate: ScheduleLike
    sampling_rate: ScheduleLike
    root_frequencies: np.ndarray
    migration_rate: Optional[ScheduleLike] = None
    removal_probability: Optional[ScheduleLike] = None
    rho: Optional[RhoSampling] = None

    def __post_init__(self):
        n = self.n_types
        if n < 1:
            raise ValueError(f"n_types must be positive, got {n}")
        self.birth_rate = as_schedule(self.birth_rate, (n,))
        self.death_rate = as_schedule(self.death_rate, (n,))
        self.sampling_rate = as_schedule(self.sampling_rate, (n,))
        if self.migration_rate is None:
            self.migration_rate = np.zeros((n, n))
        self.migration_rate = as_schedule(self.migration_rate, (n, n))
        if self.removal_probability is not None:
            self.removal_probability = as_schedule(self.removal_probability, (n,))
        self.root_frequencies = np.asarray(self.root_frequencies, dtype=np.float64)
        if self.root_frequencies.shape != (n,):
            raise ValueError(
                f"root_frequencies has shape {self.root_frequencies.shape}, expected ({n},)"
            )
        if self.rho is not None and self.rho.values.shape[1] != n:
            raise ValueError(f"rho must give one probability per type ({n})")

    @property
    def sampled_ancestors(self) -> bool:
        """Whether the sampled-ancestor model is active."""
        return self.removal_probability is not None

    @property
    def removal_always_one(self) -> bool:
        """True when every removal probability is fixed at 1."""
        return self.removal_probability is None or bool(
            np.all(self.removal_probability.values == 1.0)
        )

    def schedules(self) -> dict:
        out = {
            "birth": self.birth_rate,
            "death": self.death_rate,
            "sampling": self.sampling_rate,
            "migration": self.migration_rate,
        }
        if self.removal_probability is not None:
            out["removal"] = self.removal_probability
        return out


@dataclass
class EpidemiologicalParameters:
    """
    Epidemiological parameterisation of the same process.

    Rates are derived per epoch as ``birth = R * delta``,
    ``sampling = s * delta`` and ``death = delta - sampling * r``, where
    ``r`` is the removal probability (1 without sampled ancestors).

    Attributes
    ----------
    n_types : int
        Number of types
    reproductive_number : PiecewiseSchedule
        Effective reproductive number ``R`` per type
    become_uninfectious_rate : PiecewiseSchedule
        Rate ``delta`` at which lineages stop transmitting
    sampling_proportion : PiecewiseSchedule
        Proportion ``s`` of lineages sampled on becoming uninfectious
    """

    n_types: int
    reproductive_number: ScheduleLike
    become_uninfectious_rate: ScheduleLike
    sampling_proportion: ScheduleLike
    root_frequencies: np.ndarray
    migration_rate: Optional[ScheduleLike] = None
    removal_probability: Optional[ScheduleLike] = None
    rho: Optional[RhoSampling] = None

    def to_rates(self) -> BirthDeathMigrationParameters:
        """
        Convert to birth/death/sampling rates.

        Returns
        -------
        BirthDeathMigrationParameters
            Equivalent rate parameters on the merged epoch grid

        Raises
        ------
        ValueError
            If the schedules mix forward and reverse time, or the derived
            death rate is negative
        """
        n = self.n_types
        parts = [
            as_schedule(self.reproductive_number, (n,)),
            as_schedule(self.become_uninfectious_rate, (n,)),
            as_schedule(self.sampling_proportion, (n,)),
        ]
        if self.removal_probability is not None:
            parts.append(as_schedule(self.removal_probability, (n,)))

        if len({p.reverse_time for p in parts}) > 1:
            raise ValueError("Epidemiological schedules must share one time direction")
        reverse = parts[0].reverse_time
        merged = np.unique(np.concatenate([p.change_times for p in parts]))
        parts = [p.refine(merged) for p in parts]

        R, delta, s = (p.values for p in parts[:3])
        r = parts[3].values if len(parts) > 3 else np.ones_like(delta)
        birth = R * delta
        sampling = s * delta
        death = delta - sampling * r
        if np.any(death < 0):
            raise ValueError("Sampling proportion too high: derived death rate is negative")

        def schedule(values):
            return PiecewiseSchedule(values, merged, reverse)

        return BirthDeathMigrationParameters(
            n_types=n,
            birth_rate=schedule(birth),
            death_rate=schedule(death),
            sampling_rate=schedule(sampling),
            root_frequencies=self.root_frequencies,
            migration_rate=self.migration_rate,
            removal_probability=schedule(r) if len(parts) > 3 else None,
            rho=self.rho,
        )


@dataclass(frozen=True)
class RateModel:
    """
    Rates resolved against the global interval grid for one evaluation.

    Per-type arrays have shape ``(n_types, n_intervals)``; ``migration`` has
    shape ``(n_intervals, n_types, n_types)`` with a zero diagonal.
    """

    intervals: IntervalIndex
    birth: np.ndarray
    death: np.ndarray
    sampling: np.ndarray
    removal: Optional[np.ndarray]
    migration: np.ndarray
    rho: np.ndarray
    rho_times: np.ndarray
    frequencies: np.ndarray

    @classmethod
    def build(cls, params: BirthDeathMigrationParameters, horizon: float) -> "RateModel":
        """
        Resolve parameters for a tree whose horizon lies ``horizon`` before
        the present.

        Parameters
        ----------
        params : BirthDeathMigrationParameters
            Current parameter values
        horizon : float
            Length of time from the horizon (origin or root) to the present

        Returns
        -------
        RateModel
            Immutable rate table

        Raises
        ------
        InvalidParametersError
            If a change time falls outside ``[0, horizon]`` or a value is out
            of range
        """
        if not np.isfinite(horizon) or horizon < 0:
            raise InvalidParametersError(f"Invalid horizon {horizon}")

        schedules = params.schedules()
        change_sets = {name: s.forward_change_times(horizon) for name, s in schedules.items()}
        rho_times = (
            params.rho.forward_times(horizon) if params.rho is not None else np.empty(0)
        )
        change_sets["rho"] = rho_times

        for name, times in change_sets.items():
            if times.size and times.max() > horizon:
                raise InvalidParametersError(
                    f"{name} change time {times.max():g} exceeds horizon {horizon:g}"
                )
            if times.size and times.min() < 0:
                raise InvalidParametersError(
                    f"{name} change time {times.min():g} lies before the horizon"
                )

        intervals = IntervalIndex.collect(horizon, *change_sets.values())

        n = params.n_types
        resolved = {name: s.resolve(intervals) for name, s in schedules.items()}
        resolved["migration"] = resolved["migration"].copy()
        resolved["migration"][:, np.arange(n), np.arange(n)] = 0.0
        for name in ("birth", "death", "sampling", "migration"):
            values = resolved[name]
            if not np.all(np.isfinite(values)) or np.any(values < 0):
                raise InvalidParametersError(f"{name} rates must be finite and non-negative")

        removal = resolved.get("removal")
        if removal is not None and np.any((removal < 0) | (removal > 1)):
            raise InvalidParametersError("removal probabilities must lie in [0, 1]")

        rho = np.zeros((n, len(intervals)))
        if params.rho is not None:
            if np.any((params.rho.values < 0) | (params.rho.values > 1)):
                raise InvalidParametersError("rho must lie in [0, 1]")
            for t, values in zip(rho_times, params.rho.values):
                rho[:, intervals.index_of(t)] = values

        frequencies = params.root_frequencies
        if (
            not np.isfinite(frequencies).all()
            or np.any(frequencies < 0)
            or frequencies.sum() <= 0
        ):
            raise InvalidParametersError("root frequencies must be non-negative with a positive sum")

        return cls(
            intervals=intervals,
            birth=resolved["birth"].T.copy(),
            death=resolved["death"].T.copy(),
            sampling=resolved["sampling"].T.copy(),
            removal=None if removal is None else removal.T.copy(),
            migration=resolved["migration"],
            rho=rho,
            rho_times=np.asarray(rho_times, dtype=np.float64),
            frequencies=frequencies.copy(),
        )

    @property
    def n_types(self) -> int:
        return self.birth.shape[0]

    @property
    def n_intervals(self) -> int:
        return len(self.intervals)

    def interval_of(self, t: float) -> int:
        return self.intervals.index_of(t)

    def rate(self, kind: str, type_: int, interval: int) -> float:
        """
        Look up a per-type rate.

        Parameters
        ----------
        kind : str
            One of ``"birth"``, ``"death"``, ``"sampling"``, ``"removal"``
        type_ : int
            Type index
        interval : int
            Global interval index

        Returns
        -------
        float
            Rate value
        """
        if kind not in RATE_KINDS:
            raise KeyError(f"Unknown rate kind '{kind}'")
        table = getattr(self, kind)
        if table is None:
            raise KeyError(f"Rate '{kind}' is not part of this model")
        return float(table[type_, interval])

    def migration_rate(self, from_type: int, to_type: int, interval: int) -> float:
        """Forward-time migration rate from ``from_type`` to ``to_type``."""
        return float(self.migration[interval, from_type, to_type])

    def rho_at(self, type_: int, t: float) -> float:
        """Scheduled sampling probability at time ``t``, or 0 if none is scheduled."""
        for rho_time in self.rho_times:
            if abs(rho_time - t) < TIME_TOLERANCE:
                return float(self.rho[type_, self.interval_of(rho_time)])
        return 0.0
