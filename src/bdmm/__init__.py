"""
bdmm: likelihoods of type-annotated phylogenies under the multi-type
birth-death-migration process.

Quick Start
-----------
Evaluate a tree with a full type history:

>>> from bdmm import TypedTree, BirthDeathMigrationParameters, calculate_log_likelihood
>>> tree = TypedTree.from_newick(
...     "((A[&type=0]:1.0)[&type=1]:0.5,B[&type=1]:1.0)[&type=1];")
>>> params = BirthDeathMigrationParameters(
...     n_types=2, birth_rate=[1.0, 1.2], death_rate=0.5, sampling_rate=0.4,
...     migration_rate=[[0.0, 0.1], [0.1, 0.0]], root_frequencies=[0.5, 0.5])
>>> calculate_log_likelihood(tree, params)

Repeated evaluations, as in a sampler:

>>> from bdmm import BirthDeathMigrationLikelihood
>>> engine = BirthDeathMigrationLikelihood(params, use_scaled_numbers=True)
>>> log_l = engine.log_likelihood(tree)
>>> if log_l == float("-inf"):
...     print(engine.last_rejection)
"""

__version__ = "0.1.0"

# High-level API (simple interface)
from .api import (
    BirthDeathMigrationLikelihood,
    LikelihoodResult,
    calculate_log_likelihood,
)

# Parameters
from .models.rates import (
    BirthDeathMigrationParameters,
    EpidemiologicalParameters,
    InvalidParametersError,
    PiecewiseSchedule,
    RhoSampling,
)

# I/O classes
from .io.trees import MigrationEvent, OriginBranch, TypedNode, TypedTree
from .io.params import LikelihoodConfig, load_config

# Numerics (expert use)
from .core.scaled import ScaledNumber
from .core.integrator import IntegrationError

__all__ = [
    # Simple API - Start here!
    "calculate_log_likelihood",
    "BirthDeathMigrationLikelihood",
    "LikelihoodResult",

    # Parameters
    "BirthDeathMigrationParameters",
    "EpidemiologicalParameters",
    "PiecewiseSchedule",
    "RhoSampling",
    "InvalidParametersError",

    # I/O
    "TypedTree",
    "TypedNode",
    "MigrationEvent",
    "OriginBranch",
    "LikelihoodConfig",
    "load_config",

    # Numerics
    "ScaledNumber",
    "IntegrationError",
]
