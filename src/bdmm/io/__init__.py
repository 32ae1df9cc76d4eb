"""
Input/Output modules for type-annotated trees and parameter files.

This module provides classes for reading and working with:

- **Typed trees**: extended Newick with ``[&type=...]`` annotations
- **Parameter files**: JSON rate and epidemiological parameters
"""

from bdmm.io.params import LikelihoodConfig, load_config
from bdmm.io.trees import MigrationEvent, OriginBranch, TypedNode, TypedTree

__all__ = [
    "LikelihoodConfig",
    "load_config",
    "MigrationEvent",
    "OriginBranch",
    "TypedNode",
    "TypedTree",
]
