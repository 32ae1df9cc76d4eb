"""
Piecewise-constant time intervals.

All rate schedules of a model are resolved against one global set of
breakpoints. Times are measured forward from the horizon (the origin, or
the root when no origin is given): ``t = 0`` at the horizon and ``t = T``
at the present.
"""

from typing import Iterable, Optional

import numpy as np

# Two times closer than this are treated as the same instant
TIME_TOLERANCE = 1e-10


class IntervalIndex:
    """
    Ordered breakpoints partitioning ``[0, T]``.

    Interval ``i`` is ``(times[i-1], times[i]]``; the first interval starts
    at 0. The last breakpoint is always the horizon ``T``.

    Parameters
    ----------
    times : array_like
        Strictly increasing breakpoint times, ending with ``T``
    """

    def __init__(self, times: Iterable[float]):
        times = np.asarray(list(times), dtype=np.float64)
        if times.ndim != 1 or times.size == 0:
            raise ValueError("IntervalIndex needs at least one breakpoint")
        if np.any(np.diff(times) <= 0):
            raise ValueError("Breakpoints must be strictly increasing")
        self.times = times
        self.times.setflags(write=False)

    @classmethod
    def collect(cls, horizon: float, *change_times: Iterable[float]) -> "IntervalIndex":
        """
        Merge the change times of several schedules into one index.

        Parameters
        ----------
        horizon : float
            Time of the present, measured from the horizon
        *change_times : iterable of float
            Change times of the individual schedules

        Returns
        -------
        IntervalIndex
            Sorted, de-duplicated breakpoints with ``horizon`` appended
        """
        merged = [float(horizon)]
        for group in change_times:
            merged.extend(float(t) for t in group)
        return cls(np.unique(np.asarray(merged, dtype=np.float64)))

    def __len__(self) -> int:
        return self.times.size

    @property
    def horizon(self) -> float:
        return float(self.times[-1])

    def index_of(self, t: float) -> int:
        """
        Interval containing time ``t``.

        Parameters
        ----------
        t : float
            Time measured forward from the horizon

        Returns
        -------
        int
            First ``i`` with ``times[i] >= t``, clamped to the last interval
        """
        i = int(np.searchsorted(self.times, t, side="left"))
        return min(i, self.times.size - 1)

    def interior(self, t_from: float, t_to: float) -> np.ndarray:
        """
        Indices of breakpoints strictly inside ``(t_from, t_to)``.

        Breakpoints within :data:`TIME_TOLERANCE` of either end are excluded.
        """
        lo = np.searchsorted(self.times, t_from + TIME_TOLERANCE, side="right")
        hi = np.searchsorted(self.times, t_to - TIME_TOLERANCE, side="left")
        return np.arange(lo, max(lo, hi))

    def breakpoint_at(self, t: float) -> Optional[int]:
        """Index of the breakpoint coinciding with ``t``, if any."""
        i = self.index_of(t)
        for k in (i - 1, i):
            if k >= 0 and abs(self.times[k] - t) < TIME_TOLERANCE:
                return k
        return None
