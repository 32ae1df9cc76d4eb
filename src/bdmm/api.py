"""
High-level API for bdmm tree likelihoods.

This module provides the likelihood driver used by samplers and the CLI,
with a result object for reporting single evaluations.
"""

from dataclasses import dataclass
from typing import Dict, Any, Optional, Union
import json
import logging
import math

from .core.arithmetic import FLOAT, get_arithmetic
from .core.integrator import P0GeIntegrator
from .core.likelihood import OriginLikelihood, SubtreeLikelihood, node_event
from .io.trees import OriginBranch, TypedTree
from .models.rates import (
    BirthDeathMigrationParameters,
    EpidemiologicalParameters,
    InvalidParametersError,
    RateModel,
)

logger = logging.getLogger(__name__)

# Survival probabilities this close to 1 make conditioning meaningless
SURVIVAL_TOLERANCE = 1e-14

REJECTION_REASONS = ("structure", "parameters", "conditioning", "numerical")

ParametersLike = Union[BirthDeathMigrationParameters, EpidemiologicalParameters]


class _Rejected(Exception):
    """Internal signal that an evaluation has zero probability."""

    def __init__(self, reason: str, message: str):
        if reason not in REJECTION_REASONS:
            raise ValueError(f"Unknown rejection reason '{reason}'")
        super().__init__(message)
        self.reason = reason


@dataclass
class LikelihoodResult:
    """
    Outcome of one likelihood evaluation.

    Attributes
    ----------
    log_likelihood : float
        Log probability density of the tree, ``-inf`` if rejected
    rejection : Optional[str]
        Why the evaluation was rejected (one of ``"structure"``,
        ``"parameters"``, ``"conditioning"``, ``"numerical"``), or None
    horizon : float
        Height of the origin, or of the root without an origin
    n_types : int
        Number of types in the model
    n_leaves : int
        Number of sampled tips
    n_events : int
        Number of recorded type changes, including the origin branch
    arithmetic : str
        ``"float"`` or ``"scaled"``
    conditioned : bool
        Whether the density was conditioned on survival
    max_evaluations_used : int
        Largest solver call, in right-hand-side evaluations

    Examples
    --------
    >>> engine = BirthDeathMigrationLikelihood(params)
    >>> result = engine.evaluate(tree)
    >>> print(result.summary())
    """

    log_likelihood: float
    rejection: Optional[str]
    horizon: float
    n_types: int
    n_leaves: int
    n_events: int
    arithmetic: str
    conditioned: bool
    max_evaluations_used: int

    @property
    def accepted(self) -> bool:
        return self.rejection is None

    def summary(self) -> str:
        """
        Generate human-readable summary of the evaluation.

        Returns
        -------
        str
            Formatted multi-line summary
        """
        lines = []
        lines.append("=" * 70)
        lines.append("MULTI-TYPE BIRTH-DEATH-MIGRATION LIKELIHOOD")
        lines.append("=" * 70)
        lines.append("")
        lines.append(f"Log-likelihood:       {self.log_likelihood:.6f}")
        if self.rejection is not None:
            lines.append(f"Rejected:             {self.rejection}")
        lines.append("")
        lines.append("TREE:")
        lines.append(f"  {self.n_leaves} samples")
        lines.append(f"  {self.n_events} type changes")
        lines.append(f"  horizon height = {self.horizon:.6g}")
        lines.append("")
        lines.append("SETTINGS:")
        lines.append(f"  types = {self.n_types}")
        lines.append(f"  arithmetic = {self.arithmetic}")
        lines.append(f"  conditioned on survival = {'yes' if self.conditioned else 'no'}")
        lines.append(f"  max solver evaluations = {self.max_evaluations_used}")
        lines.append("")
        lines.append("=" * 70)
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """
        Export the result as a dictionary.

        ``-inf`` is exported as None to keep the dictionary JSON-serializable.
        """
        log_l = float(self.log_likelihood)
        return {
            'log_likelihood': log_l if math.isfinite(log_l) else None,
            'rejection': self.rejection,
            'horizon': float(self.horizon),
            'n_types': int(self.n_types),
            'n_leaves': int(self.n_leaves),
            'n_events': int(self.n_events),
            'arithmetic': self.arithmetic,
            'conditioned': bool(self.conditioned),
            'max_evaluations_used': int(self.max_evaluations_used),
        }

    def to_json(self, filepath: Optional[str] = None, indent: int = 2) -> str:
        """
        Export the result as JSON.

        Parameters
        ----------
        filepath : str, optional
            If provided, write JSON to this file
        indent : int, default=2
            Indentation level for pretty printing

        Returns
        -------
        str
            JSON string representation
        """
        json_str = json.dumps(self.to_dict(), indent=indent)

        if filepath:
            with open(filepath, 'w') as f:
                f.write(json_str)

        return json_str

    def __str__(self) -> str:
        return self.summary()


class BirthDeathMigrationLikelihood:
    """
    Log-likelihood of type-annotated trees under the multi-type
    birth-death-migration process.

    Every call of :meth:`log_likelihood` returns a finite log density or
    ``-inf``; invalid trees, invalid parameters and numerical failures all
    map to ``-inf``.

    Parameters
    ----------
    parameters : BirthDeathMigrationParameters or EpidemiologicalParameters
        Model parameters. Epidemiological parameters are converted on every
        evaluation, so they may be updated in place between calls.
    condition_on_survival : bool, default=True
        Condition on at least one sampled descendant of the horizon lineage
    use_scaled_numbers : bool, default=False
        Carry densities as scaled numbers, which cannot underflow
    rtol, atol : float
        Tolerances of the ODE solver
    method : str, default="DOP853"
        ODE solver method

    Attributes
    ----------
    max_evaluations_used : int
        Largest single solver call seen over all evaluations
    last_rejection : Optional[str]
        Category of the most recent ``-inf``, or None after an accepted
        evaluation

    Examples
    --------
    >>> params = BirthDeathMigrationParameters(
    ...     n_types=2, birth_rate=[1.0, 1.5], death_rate=0.5,
    ...     sampling_rate=0.3, root_frequencies=[0.5, 0.5],
    ...     migration_rate=[[0.0, 0.1], [0.2, 0.0]])
    >>> engine = BirthDeathMigrationLikelihood(params)
    >>> engine.log_likelihood(tree)
    """

    def __init__(
        self,
        parameters: ParametersLike,
        condition_on_survival: bool = True,
        use_scaled_numbers: bool = False,
        rtol: float = 1e-10,
        atol: float = 1e-100,
        method: str = "DOP853",
    ):
        self.parameters = parameters
        self.condition_on_survival = condition_on_survival
        self.use_scaled_numbers = use_scaled_numbers
        self.rtol = rtol
        self.atol = atol
        self.method = method
        self.max_evaluations_used = 0
        self.last_rejection: Optional[str] = None

    @property
    def arithmetic(self):
        return get_arithmetic(self.use_scaled_numbers)

    def rate_parameters(self) -> BirthDeathMigrationParameters:
        """Current parameters in the birth/death/sampling form."""
        if isinstance(self.parameters, EpidemiologicalParameters):
            return self.parameters.to_rates()
        return self.parameters

    def check_sampling(self, tree: TypedTree) -> None:
        """
        Check that contemporaneous tips are explained by the sampling model.

        Raises
        ------
        ValueError
            If more than one tip lies at the present and no scheduled
            sampling is configured
        """
        n_present = tree.contemporaneous_tip_count()
        if n_present > 1 and self.rate_parameters().rho is None:
            raise ValueError(
                f"{n_present} tips are sampled at the present but no rho sampling "
                "is configured; the density of contemporaneous samples under "
                "rate sampling alone is zero"
            )

    def log_likelihood(
        self, tree: TypedTree, origin_branch: Optional[OriginBranch] = None
    ) -> float:
        """
        Log probability density of a type-annotated tree.

        Parameters
        ----------
        tree : TypedTree
            Tree with its full type history
        origin_branch : OriginBranch, optional
            Pseudo-branch from the root to the origin. Without it, the
            process is assumed to start at the root.

        Returns
        -------
        float
            Log density, or ``-inf`` if the tree has zero probability or
            cannot be evaluated
        """
        self.last_rejection = None
        try:
            log_l = self._evaluate(tree, origin_branch)
        except _Rejected as rejected:
            logger.debug("Rejected (%s): %s", rejected.reason, rejected)
            self.last_rejection = rejected.reason
            return -math.inf
        except Exception as e:
            logger.debug("Evaluation failed: %s", e)
            self.last_rejection = "numerical"
            return -math.inf

        if not math.isfinite(log_l):
            logger.debug("Non-finite log-likelihood %r clamped to -inf", log_l)
            self.last_rejection = "numerical"
            return -math.inf
        return log_l

    def evaluate(
        self, tree: TypedTree, origin_branch: Optional[OriginBranch] = None
    ) -> LikelihoodResult:
        """
        Evaluate and package the log-likelihood with its diagnostics.

        Parameters
        ----------
        tree : TypedTree
            Tree with its full type history
        origin_branch : OriginBranch, optional
            Pseudo-branch from the root to the origin

        Returns
        -------
        LikelihoodResult
            Log-likelihood, rejection category and run settings
        """
        log_l = self.log_likelihood(tree, origin_branch)
        n_events = tree.n_events
        horizon = tree.root.height
        if origin_branch is not None:
            n_events += origin_branch.change_count
            horizon = origin_branch.origin
        return LikelihoodResult(
            log_likelihood=log_l,
            rejection=self.last_rejection,
            horizon=horizon,
            n_types=self.parameters.n_types,
            n_leaves=tree.n_leaves,
            n_events=n_events,
            arithmetic=self.arithmetic.name,
            conditioned=self.condition_on_survival,
            max_evaluations_used=self.max_evaluations_used,
        )

    def _evaluate(self, tree: TypedTree, origin_branch: Optional[OriginBranch]) -> float:
        root = tree.root
        if not tree.is_valid():
            raise _Rejected("structure", "inconsistent type history in tree")
        if origin_branch is None:
            horizon = root.height
            horizon_type = root.type
        else:
            if not origin_branch.is_valid(root):
                raise _Rejected("structure", "inconsistent origin branch")
            horizon = origin_branch.origin
            horizon_type = origin_branch.type_at_origin(root)
        if horizon - root.height < 0:
            raise _Rejected("structure", "origin lies below the root")
        n_types = self.parameters.n_types
        if not tree.types_in_range(n_types) or (
            origin_branch is not None and not origin_branch.types_in_range(n_types)
        ):
            raise _Rejected("structure", f"type index outside 0..{n_types - 1}")

        try:
            params = self.rate_parameters()
            rates = RateModel.build(params, horizon)
        except (InvalidParametersError, ValueError) as e:
            raise _Rejected("parameters", str(e))

        integrator = P0GeIntegrator(rates, rtol=self.rtol, atol=self.atol, method=self.method)
        arith = self.arithmetic
        subtree = SubtreeLikelihood(horizon, rates, integrator, arith)

        try:
            p_empty = integrator.extinction(0.0)
            p_horizon = float(p_empty[horizon_type])
            if self.condition_on_survival and (
                p_horizon < 0
                or p_horizon > 1
                or abs(1.0 - p_horizon) < SURVIVAL_TOLERANCE
            ):
                raise _Rejected(
                    "conditioning", f"extinction probability at the horizon is {p_horizon!r}"
                )

            if origin_branch is None:
                state = subtree.root_children(root)
            elif origin_branch.events:
                last = origin_branch.change_count - 1
                origin = OriginLikelihood(subtree, origin_branch, root)
                state = origin.evaluate(last, 0.0, origin.start_time(last))
            else:
                state = subtree.evaluate(node_event(root), 0.0, horizon - root.height)
        finally:
            self.max_evaluations_used = max(
                self.max_evaluations_used, integrator.max_evaluations_used
            )

        density = state.ge[horizon_type]
        if self.condition_on_survival:
            density = arith.scale(density, 1.0 / (1.0 - p_horizon))
        log_l = FLOAT.log(float(rates.frequencies[horizon_type])) + arith.log(density)

        if params.sampled_ancestors and not params.removal_always_one and math.isfinite(log_l):
            # sampled-ancestor trees are counted without orientation
            log_l += math.log(2) * (tree.n_leaves - tree.direct_ancestor_count - 1)
        return log_l


def calculate_log_likelihood(
    tree: TypedTree,
    parameters: ParametersLike,
    origin_branch: Optional[OriginBranch] = None,
    condition_on_survival: bool = True,
    use_scaled_numbers: bool = False,
) -> float:
    """
    Compute the log-likelihood of one tree in a single call.

    Parameters
    ----------
    tree : TypedTree
        Tree with its full type history
    parameters : BirthDeathMigrationParameters or EpidemiologicalParameters
        Model parameters
    origin_branch : OriginBranch, optional
        Pseudo-branch from the root to the origin
    condition_on_survival : bool, default=True
        Condition on survival of the horizon lineage
    use_scaled_numbers : bool, default=False
        Use scaled numbers for densities

    Returns
    -------
    float
        Log density, or ``-inf``

    Examples
    --------
    >>> from bdmm import TypedTree, calculate_log_likelihood
    >>> tree = TypedTree.from_newick("(A[&type=0]:1.0,B[&type=0]:0.5)[&type=0];")
    >>> calculate_log_likelihood(tree, params)
    """
    engine = BirthDeathMigrationLikelihood(
        parameters,
        condition_on_survival=condition_on_survival,
        use_scaled_numbers=use_scaled_numbers,
    )
    return engine.log_likelihood(tree, origin_branch)
