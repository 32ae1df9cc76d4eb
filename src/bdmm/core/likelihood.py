"""
Likelihood of a type-annotated tree under the multi-type
birth-death-migration process.

Each lineage is walked from its node up through its recorded type changes,
with subtrees visited in post-order from an explicit stack.
Three kinds of events end a propagation window:

- **MigrationStep**: a recorded type change on the branch above a node
- **LeafSample**: a sampled tip
- **Bifurcation**: a birth event with two children

The state returned for a window is the extinction probability vector and the
density vector at the older end of the window. Densities are handled through
an :class:`~bdmm.core.arithmetic.Arithmetic`, so the same recursion serves
plain doubles and scaled numbers.
"""

from dataclasses import dataclass
from typing import Any, Union

import numpy as np

from ..io.trees import OriginBranch, TypedNode, iter_postorder
from ..models.rates import RateModel
from .arithmetic import Arithmetic
from .integrator import P0GeIntegrator


@dataclass(frozen=True)
class MigrationStep:
    """Type change number ``index`` on the branch above ``node``."""

    node: TypedNode
    index: int


@dataclass(frozen=True)
class LeafSample:
    node: TypedNode


@dataclass(frozen=True)
class Bifurcation:
    node: TypedNode


Event = Union[MigrationStep, LeafSample, Bifurcation]


def node_event(node: TypedNode) -> Event:
    """The event at the node itself, ignoring its branch."""
    return LeafSample(node) if node.is_leaf else Bifurcation(node)


def lineage_top(node: TypedNode) -> Event:
    """The oldest event on the lineage ending at ``node``."""
    if node.events:
        return MigrationStep(node, len(node.events) - 1)
    return node_event(node)


def event_height(event: Event) -> float:
    if isinstance(event, MigrationStep):
        return event.node.events[event.index].time
    return event.node.height


def ordered_children(node: TypedNode) -> list[TypedNode]:
    # lower id first
    return sorted(node.children, key=lambda child: child.id)


@dataclass
class State:
    """
    Extinction probabilities and densities at one time.

    Attributes
    ----------
    p : np.ndarray
        Extinction probability per type (always plain floats)
    ge : Any
        Density per type, in the representation of the active arithmetic
    """

    p: np.ndarray
    ge: Any


class SubtreeLikelihood:
    """
    Density of the subtree below an event.

    Parameters
    ----------
    horizon : float
        Height of the horizon (origin, or root if no origin is given)
    rates : RateModel
        Rates for this evaluation
    integrator : P0GeIntegrator
        ODE propagator bound to ``rates``
    arithmetic : Arithmetic
        Representation of densities
    """

    def __init__(
        self,
        horizon: float,
        rates: RateModel,
        integrator: P0GeIntegrator,
        arithmetic: Arithmetic,
    ):
        self.horizon = horizon
        self.rates = rates
        self.integrator = integrator
        self.arithmetic = arithmetic
        self.n = rates.n_types

    def start_time(self, event: Event) -> float:
        """Time of an event, measured forward from the horizon."""
        return self.horizon - event_height(event)

    def evaluate(self, event: Event, t_from: float, t_to: float) -> State:
        """
        State at ``t_from`` of the lineage whose youngest event is ``event``.

        The subtree below the event's node is walked in post-order with an
        explicit stack of pending lineage states, so tree depth is not
        limited by the interpreter's recursion limit.

        Parameters
        ----------
        event : Event
            Event at the younger end of the window (at time ``t_to``)
        t_from : float
            Older end of the window, forward from the horizon
        t_to : float
            Younger end of the window; the time of ``event``

        Returns
        -------
        State
            Extinction probabilities and densities at ``t_from``
        """
        if not isinstance(event, (MigrationStep, LeafSample, Bifurcation)):
            raise TypeError(f"Unknown event {event!r}")
        node = event.node
        pending = {}
        for below in iter_postorder(node)[:-1]:
            top = lineage_top(below)
            t_parent = self.start_time(node_event(below.parent))
            pending[below] = self._climb(top, t_parent, self.start_time(top), pending)
        return self._climb(event, t_from, t_to, pending)

    def evaluate_lineage(self, node: TypedNode, t_from: float) -> State:
        """State at ``t_from`` of the whole lineage ending at ``node``."""
        top = lineage_top(node)
        return self.evaluate(top, t_from, self.start_time(top))

    def migrate(self, below_state: State, above: int, below: int, interval: int) -> State:
        """
        Initial state just above a type change from ``below`` to ``above``.

        The density of the type above is the density of the type below times
        the migration rate from ``above`` to ``below``; extinction
        probabilities pass through unchanged.
        """
        ge = self.arithmetic.zeros(self.n)
        ge[above] = self.arithmetic.scale(
            below_state.ge[below], self.rates.migration_rate(above, below, interval)
        )
        return State(below_state.p.copy(), ge)

    def propagate(self, state: State, t_from: float, t_to: float) -> State:
        """Integrate a state from ``t_to`` back to ``t_from``."""
        g, exponent = self.arithmetic.normalize(state.ge)
        p, g = self.integrator.propagate(state.p, g, t_from, t_to)
        return State(p, self.arithmetic.denormalize(g, exponent))

    def _climb(self, event: Event, t_from: float, t_to: float, pending: dict) -> State:
        """
        Evaluate one lineage from its node event up to ``event``.

        Child lineage states are taken (and removed) from ``pending``, keyed
        by node.
        """
        node = event.node
        top = event.index if isinstance(event, MigrationStep) else -1
        t_node = t_to if top < 0 else self.start_time(node_event(node))

        interval = self.rates.interval_of(t_node)
        if node.is_leaf:
            state = self._sample(node, t_node, interval)
        else:
            first, second = ordered_children(node)
            state = self._bifurcation(
                node, pending.pop(first), pending.pop(second), interval
            )

        t_below, type_below = t_node, node.type
        for index in range(top + 1):
            step = MigrationStep(node, index)
            t_step = t_to if index == top else self.start_time(step)
            state = self.propagate(state, t_step, t_below)
            above = node.events[index].type
            state = self.migrate(state, above, type_below, self.rates.interval_of(t_step))
            t_below, type_below = t_step, above
        return self.propagate(state, t_from, t_below)

    def _sample(self, node: TypedNode, t_to: float, interval: int) -> State:
        arith = self.arithmetic
        type_ = node.type
        p = self.integrator.extinction(t_to)
        ge = arith.zeros(self.n)

        rho = self.rates.rho_at(type_, t_to)
        if rho > 0.0:
            ge[type_] = arith.from_float(rho)
        else:
            psi = self.rates.rate("sampling", type_, interval)
            if self.rates.removal is not None:
                r = self.rates.rate("removal", type_, interval)
                ge[type_] = arith.from_float(psi * (r + (1.0 - r) * p[type_]))
            else:
                ge[type_] = arith.from_float(psi)
        return State(p, ge)

    def _bifurcation(self, node: TypedNode, g0: State, g1: State, interval: int) -> State:
        arith = self.arithmetic
        type_ = node.type
        ge = arith.zeros(self.n)
        ge[type_] = arith.scale(
            arith.multiply(g0.ge[type_], g1.ge[type_]),
            self.rates.rate("birth", type_, interval),
        )
        return State(g0.p.copy(), ge)

    def root_children(self, root: TypedNode) -> State:
        """
        Combined state of the root's two child lineages at the root.

        Used when no origin is given: the densities are multiplied without a
        birth factor, and extinction probabilities come from the first child.
        """
        arith = self.arithmetic
        first, second = ordered_children(root)
        g0 = self.evaluate_lineage(first, 0.0)
        g1 = self.evaluate_lineage(second, 0.0)
        ge = arith.zeros(self.n)
        for i in range(self.n):
            ge[i] = arith.multiply(g0.ge[i], g1.ge[i])
        return State(g0.p.copy(), ge)


class OriginLikelihood:
    """
    Density of the tree plus the type history on the origin branch.

    Parameters
    ----------
    subtree : SubtreeLikelihood
        Recursion for the tree below the root
    origin_branch : OriginBranch
        Recorded type changes between the root and the origin
    root : TypedNode
        Root of the tree
    """

    def __init__(self, subtree: SubtreeLikelihood, origin_branch: OriginBranch, root: TypedNode):
        self.subtree = subtree
        self.origin_branch = origin_branch
        self.root = root

    def start_time(self, index: int) -> float:
        return self.subtree.horizon - self.origin_branch.events[index].time

    def evaluate(self, index: int, t_from: float, t_to: float) -> State:
        """
        State at ``t_from`` above origin-branch event ``index``.

        Parameters
        ----------
        index : int
            Event on the origin branch at time ``t_to``
        t_from : float
            Older end of the window
        t_to : float
            Time of the event

        Returns
        -------
        State
            Extinction probabilities and densities at ``t_from``
        """
        subtree = self.subtree
        events = self.origin_branch.events

        def step_time(i: int) -> float:
            return t_to if i == index else self.start_time(i)

        state = subtree.evaluate(
            node_event(self.root), step_time(0), subtree.horizon - self.root.height
        )
        type_below = self.root.type
        for i in range(index + 1):
            t_step = step_time(i)
            if i > 0:
                state = subtree.propagate(state, t_step, step_time(i - 1))
            above = events[i].type
            state = subtree.migrate(state, above, type_below, subtree.rates.interval_of(t_step))
            type_below = above
        return subtree.propagate(state, t_from, t_to)
