"""Mixed-integer programming solvers for LP Optimizer."""

from .branch_and_bound import BranchNode, branch_and_bound_solve
from .cutting_plane import GomoryCut, cutting_plane_solve, derive_gomory_cut
from .knapsack import knapsack_solve

__all__ = [
    "BranchNode",
    "GomoryCut",
    "branch_and_bound_solve",
    "cutting_plane_solve",
    "derive_gomory_cut",
    "knapsack_solve",
]
