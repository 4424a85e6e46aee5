from __future__ import annotations

import logging
from typing import Callable, Dict, Optional

from .canonical import CanonicalForm, to_canonical
from .errors import InvalidProblem
from .lp.revised import revised_simplex_solve
from .lp.tableau import primal_simplex_solve
from .mip.branch_and_bound import branch_and_bound_solve
from .mip.cutting_plane import cutting_plane_solve
from .mip.knapsack import knapsack_solve
from .schemas import Algorithm, Problem, SolveOptions, Solution

logger = logging.getLogger(__name__)

Solver = Callable[[CanonicalForm, SolveOptions], Solution]

SOLVERS: Dict[str, Solver] = {
    "primal_simplex": primal_simplex_solve,
    "revised_simplex": revised_simplex_solve,
    "branch_and_bound": branch_and_bound_solve,
    "cutting_plane": cutting_plane_solve,
    "knapsack": knapsack_solve,
}


def solve(
    problem: Problem,
    algorithm: Algorithm = "primal_simplex",
    options: Optional[SolveOptions] = None,
) -> Solution:
    """
    Convert ``problem`` to canonical form and run the selected algorithm.
    Malformed problems raise DimensionMismatch / InvalidProblem before any solving.
    The LP algorithms solve the continuous relaxation of integer programs.
    """

    form = to_canonical(problem)
    logger.debug(
        "Solving %s with %s: %d rows, %d canonical columns",
        problem.name, algorithm, form.constraint_count, form.total_variable_count,
    )
    return solve_canonical(form, algorithm, options)


def solve_canonical(
    form: CanonicalForm,
    algorithm: Algorithm = "primal_simplex",
    options: Optional[SolveOptions] = None,
) -> Solution:
    solver = SOLVERS.get(algorithm)
    if solver is None:
        raise InvalidProblem(f"Unknown algorithm {algorithm!r}; expected one of {sorted(SOLVERS)}.")
    solution = solver(form, options or SolveOptions())
    logger.info("%s finished with status %s: %s", algorithm, solution.status, solution.objective_value)
    return solution
