"""Linear programming solvers for LP Optimizer."""

from .dual import dual_simplex_solve
from .revised import revised_simplex_solve
from .tableau import primal_simplex_solve

__all__ = ["primal_simplex_solve", "revised_simplex_solve", "dual_simplex_solve"]
