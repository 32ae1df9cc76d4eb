"""Check command implementation."""

import sys
from pathlib import Path
from typing import Optional

from bdmm.api import BirthDeathMigrationLikelihood
from bdmm.io.params import load_config
from bdmm.io.trees import TypedTree


def run_check(tree: Path, params: Optional[Path]):
    """Validate a tree's type history, and its origin branch if configured."""
    config = None
    type_labels = None
    if params is not None:
        try:
            config = load_config(params)
        except Exception as e:
            print(f"Error: Could not load parameters from {params}", file=sys.stderr)
            print(f"Details: {e}", file=sys.stderr)
            sys.exit(1)
        type_labels = config.type_labels

    try:
        with open(tree, 'r') as f:
            tree_str = f.read().strip()
        tree_obj = TypedTree.from_newick(tree_str, type_labels=type_labels)
    except Exception as e:
        print(f"Error: Could not load tree from {tree}", file=sys.stderr)
        print(f"Details: {e}", file=sys.stderr)
        sys.exit(1)

    problems = []
    if not tree_obj.is_valid():
        problems.append("tree type history is inconsistent")

    origin_branch = config.origin_branch if config is not None else None
    if origin_branch is not None and not origin_branch.is_valid(tree_obj.root):
        problems.append("origin branch is inconsistent with the root")

    if config is not None:
        n_types = config.parameters.n_types
        if not tree_obj.types_in_range(n_types) or (
            origin_branch is not None and not origin_branch.types_in_range(n_types)
        ):
            problems.append(f"type index outside 0..{n_types - 1} for a {n_types}-type model")
        try:
            BirthDeathMigrationLikelihood(config.parameters).check_sampling(tree_obj)
        except ValueError as e:
            problems.append(str(e))

    print(f"Nodes:               {tree_obj.n_nodes}")
    print(f"Samples:             {tree_obj.n_leaves}")
    print(f"Sampled ancestors:   {tree_obj.direct_ancestor_count}")
    print(f"Type changes:        {tree_obj.n_events}")
    print(f"Root height:         {tree_obj.root.height:.6g}")
    if origin_branch is not None:
        print(f"Origin:              {origin_branch.origin:.6g}")
        print(f"Origin type changes: {origin_branch.change_count}")

    if problems:
        for problem in problems:
            print(f"Invalid: {problem}", file=sys.stderr)
        sys.exit(1)
    print("OK")
