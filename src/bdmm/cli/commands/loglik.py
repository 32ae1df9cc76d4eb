"""Loglik command implementation."""

import sys
import logging
from pathlib import Path
from typing import Optional

from bdmm.api import BirthDeathMigrationLikelihood
from bdmm.io.params import load_config
from bdmm.io.trees import TypedTree


def run_loglik(
    tree: Path,
    params: Path,
    scaled: Optional[bool],
    condition_on_survival: Optional[bool],
    output: Optional[Path],
    format: str,
    verbose: bool,
    quiet: bool,
):
    """Evaluate the log-likelihood of one tree."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s: %(message)s")

    try:
        config = load_config(params)
    except Exception as e:
        print(f"Error: Could not load parameters from {params}", file=sys.stderr)
        print(f"Details: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        with open(tree, 'r') as f:
            tree_str = f.read().strip()
        tree_obj = TypedTree.from_newick(tree_str, type_labels=config.type_labels)
    except Exception as e:
        print(f"Error: Could not load tree from {tree}", file=sys.stderr)
        print(f"Details: {e}", file=sys.stderr)
        sys.exit(1)

    engine = BirthDeathMigrationLikelihood(
        config.parameters,
        condition_on_survival=(
            config.condition_on_survival if condition_on_survival is None else condition_on_survival
        ),
        use_scaled_numbers=config.use_scaled_numbers if scaled is None else scaled,
    )

    try:
        engine.check_sampling(tree_obj)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    if not quiet:
        print("Birth-Death-Migration Likelihood", file=sys.stderr)
        print("=" * 80, file=sys.stderr)
        print(f"Tree:       {tree}", file=sys.stderr)
        print(f"Parameters: {params}", file=sys.stderr)
        print(file=sys.stderr)

    result = engine.evaluate(tree_obj, config.origin_branch)

    if not quiet and not result.accepted:
        print(f"Warning: evaluation rejected ({result.rejection})", file=sys.stderr)

    # Format output
    if format == "json":
        output_text = result.to_json()
    elif quiet:
        output_text = f"{result.log_likelihood:.10g}"
    else:
        output_text = result.summary()

    # Write output
    if output:
        with open(output, 'w') as f:
            f.write(output_text + "\n")
        if not quiet:
            print(f"\nResults written to {output}", file=sys.stderr)
    else:
        print(output_text)
