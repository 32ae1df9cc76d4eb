"""
Numerical integration of the p0/ge master equations.

For ``n`` types the state is ``[p_1..p_n, g_1..g_n]``: ``p_i(t)`` is the
probability that a type-``i`` lineage alive at time ``t`` leaves no sampled
descendant, and ``g_i(t)`` the density of the observed subtree below it.
Time runs forward from the horizon (``t = 0``) to the present (``t = T``);
integration runs backwards, from the tips towards the horizon.

Type changes along branches are recorded in the tree, so the density
equations carry no migration inflow term (the "augmented" system):

    dp_i/dt = (b_i + d_i + s_i - b_i p_i) p_i - d_i + sum_j m_ij (p_i - p_j)
    dg_i/dt = (b_i + d_i + s_i - 2 b_i p_i) g_i + sum_j m_ij g_i

Rates are constant inside each interval of the rate model, so every
integration is split at the interval breakpoints.
"""

import logging

import numpy as np
from scipy.integrate import solve_ivp

from ..models.rates import RateModel
from .intervals import TIME_TOLERANCE

logger = logging.getLogger(__name__)


class IntegrationError(RuntimeError):
    """Raised when the ODE solver fails to reach the end of a window."""


class P0GeIntegrator:
    """
    Propagate extinction probabilities and densities between two times.

    Parameters
    ----------
    rates : RateModel
        Rates resolved for the current evaluation
    rtol : float, default=1e-10
        Relative tolerance passed to :func:`scipy.integrate.solve_ivp`
    atol : float, default=1e-100
        Absolute tolerance; kept tiny because densities are only meaningful
        relative to each other
    method : str, default="DOP853"
        Integration method for :func:`scipy.integrate.solve_ivp`

    Attributes
    ----------
    max_evaluations_used : int
        Largest number of right-hand-side evaluations used by a single
        solver call so far
    """

    def __init__(
        self,
        rates: RateModel,
        rtol: float = 1e-10,
        atol: float = 1e-100,
        method: str = "DOP853",
    ):
        self.rates = rates
        self.n = rates.n_types
        self.horizon = rates.intervals.horizon
        self.rtol = rtol
        self.atol = atol
        self.method = method
        self.max_evaluations_used = 0
        self._extinction_cache: dict[float, np.ndarray] = {}

        # per-interval constants of the right-hand side
        self._total_rate = (rates.birth + rates.death + rates.sampling).T
        self._migration_out = rates.migration.sum(axis=2)

    def _rhs(self, interval: int):
        n = self.n
        b = self.rates.birth[:, interval]
        d = self.rates.death[:, interval]
        total = self._total_rate[interval]
        M = self.rates.migration[interval]
        m_out = self._migration_out[interval]

        def derivatives(t, y):
            p = y[:n]
            dp = (total - b * p) * p - d + m_out * p - M @ p
            if y.size == n:
                return dp
            g = y[n:]
            dg = (total - 2.0 * b * p + m_out) * g
            return np.concatenate((dp, dg))

        return derivatives

    def _solve(self, y: np.ndarray, t_hi: float, t_lo: float) -> np.ndarray:
        interval = self.rates.interval_of(0.5 * (t_hi + t_lo))
        sol = solve_ivp(
            self._rhs(interval),
            (t_hi, t_lo),
            y,
            method=self.method,
            rtol=self.rtol,
            atol=self.atol,
        )
        self.max_evaluations_used = max(self.max_evaluations_used, int(sol.nfev))
        if not sol.success:
            logger.debug("solve_ivp failed in interval %d after %d evaluations", interval, sol.nfev)
            raise IntegrationError(
                f"Integration from t={t_hi:g} to t={t_lo:g} failed: {sol.message}"
            )
        return sol.y[:, -1]

    def _integrate(self, y: np.ndarray, t_from: float, t_to: float) -> np.ndarray:
        """Integrate ``y`` from ``t_to`` back to ``t_from`` across breakpoints."""
        n = self.n
        times = self.rates.intervals.times
        upper = t_to
        for k in self.rates.intervals.interior(t_from, t_to)[::-1]:
            y = self._solve(y, upper, times[k])
            # lineages passing a scheduled sampling time went unsampled
            survive = 1.0 - self.rates.rho[:, k]
            y[:n] *= survive
            if y.size > n:
                y[n:] *= survive
            upper = times[k]
        return self._solve(y, upper, t_from)

    def extinction(self, t: float) -> np.ndarray:
        """
        Probability that a lineage at time ``t`` leaves no sampled descendant.

        Parameters
        ----------
        t : float
            Time measured forward from the horizon

        Returns
        -------
        np.ndarray, shape (n_types,)
            ``p_i(t)`` for every type
        """
        cached = self._extinction_cache.get(t)
        if cached is not None:
            return cached.copy()

        p = 1.0 - self.rates.rho[:, self.rates.n_intervals - 1]
        if self.horizon - t >= TIME_TOLERANCE:
            p = self._integrate(p, t, self.horizon)
            k = self.rates.intervals.breakpoint_at(t)
            if k is not None:
                p = p * (1.0 - self.rates.rho[:, k])
        self._extinction_cache[t] = p
        return p.copy()

    def propagate(
        self, p: np.ndarray, g: np.ndarray, t_from: float, t_to: float
    ) -> tuple[np.ndarray, np.ndarray]:
        """
        Propagate a state from ``t_to`` back to ``t_from``.

        ``g`` must already be rescaled to order one (see
        :meth:`bdmm.core.arithmetic.Arithmetic.normalize`); the density
        equations are linear in ``g``, so the caller restores the scale.

        Parameters
        ----------
        p : np.ndarray, shape (n_types,)
            Extinction probabilities at ``t_to``
        g : np.ndarray, shape (n_types,)
            Rescaled densities at ``t_to``
        t_from : float
            Older end of the window (closer to the horizon)
        t_to : float
            Younger end of the window

        Returns
        -------
        tuple[np.ndarray, np.ndarray]
            ``(p, g)`` at ``t_from``
        """
        if (
            abs(t_to - t_from) < TIME_TOLERANCE
            or abs(self.horizon - t_from) < TIME_TOLERANCE
            or t_from > self.horizon
        ):
            return p.copy(), g.copy()
        y = self._integrate(np.concatenate((p, g)), t_from, t_to)
        return y[: self.n], y[self.n :]
