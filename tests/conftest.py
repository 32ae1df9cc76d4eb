"""
Pytest configuration and shared fixtures.
"""

import json
import math

import pytest
from typer.testing import CliRunner

from bdmm.io.trees import TypedTree
from bdmm.models.rates import BirthDeathMigrationParameters


# Single-type tree with serially sampled tips (only A at the present)
SINGLE_TYPE_NEWICK = (
    "((A[&type=0]:1.0,B[&type=0]:0.7)[&type=0]:0.5,C[&type=0]:1.2)[&type=0];"
)

# Two-type tree rooted in type 1; A and C are type 0, with type changes
# at heights 0.6 and 0.7
TWO_TYPE_NEWICK = (
    "(((A[&type=0]:0.6)[&type=1]:0.3,B[&type=1]:0.7)[&type=1]:0.4,"
    "(C[&type=0]:0.5)[&type=1]:0.6)[&type=1];"
)


def stadler_log_density(tree, birth, death, sampling, rho=0.0, origin=None, condition=True):
    """
    Closed-form single-type log density (Stadler 2010).

    Tips at the present are rho-sampled when ``rho > 0``; all other tips
    are rate-sampled.
    """
    c1 = math.sqrt((birth - death - sampling) ** 2 + 4.0 * birth * sampling)
    c2 = -(birth - death - 2.0 * birth * rho - sampling) / c1

    def q(x):
        return (
            2.0 * (1.0 - c2 ** 2)
            + math.exp(-c1 * x) * (1.0 - c2) ** 2
            + math.exp(c1 * x) * (1.0 + c2) ** 2
        )

    def p0(x):
        e = math.exp(-c1 * x)
        return (
            birth + death + sampling
            + c1 * (e * (1.0 - c2) - (1.0 + c2)) / (e * (1.0 - c2) + (1.0 + c2))
        ) / (2.0 * birth)

    root = tree.root
    log_d = 0.0
    for node in tree.postorder():
        if node.is_leaf:
            at_present = abs(node.height) < 1e-10
            log_d += math.log(rho if (rho > 0 and at_present) else sampling)
        elif node is not root or origin is not None:
            log_d += math.log(birth)
        if node.parent is not None:
            log_d += math.log(q(node.height)) - math.log(q(node.parent.height))

    x = root.height
    if origin is not None:
        log_d += math.log(q(root.height)) - math.log(q(origin))
        x = origin
    if condition:
        log_d -= math.log(1.0 - p0(x))
    return log_d


@pytest.fixture
def stadler():
    """Closed-form single-type reference density."""
    return stadler_log_density


@pytest.fixture
def cli_runner():
    """CLI test runner for Typer apps."""
    return CliRunner()


@pytest.fixture
def single_type_tree():
    return TypedTree.from_newick(SINGLE_TYPE_NEWICK)


@pytest.fixture
def two_type_tree():
    return TypedTree.from_newick(TWO_TYPE_NEWICK)


@pytest.fixture
def single_type_params():
    return BirthDeathMigrationParameters(
        n_types=1,
        birth_rate=1.2,
        death_rate=0.4,
        sampling_rate=0.3,
        root_frequencies=[1.0],
    )


@pytest.fixture
def two_type_params():
    return BirthDeathMigrationParameters(
        n_types=2,
        birth_rate=[1.2, 0.9],
        death_rate=[0.4, 0.5],
        sampling_rate=[0.3, 0.2],
        migration_rate=[[0.0, 0.15], [0.25, 0.0]],
        root_frequencies=[0.4, 0.6],
    )


@pytest.fixture
def two_type_tree_file(tmp_path):
    """Create a temporary tree file for the two-type tree."""
    tree_file = tmp_path / "colored.nwk"
    tree_file.write_text(TWO_TYPE_NEWICK + "\n")
    return tree_file


@pytest.fixture
def two_type_params_file(tmp_path):
    """Create a temporary JSON parameter file matching ``two_type_params``."""
    params_file = tmp_path / "params.json"
    params_file.write_text(json.dumps({
        "n_types": 2,
        "birth_rate": [1.2, 0.9],
        "death_rate": [0.4, 0.5],
        "sampling_rate": [0.3, 0.2],
        "migration_rate": [[0.0, 0.15], [0.25, 0.0]],
        "root_frequencies": [0.4, 0.6],
    }))
    return params_file
