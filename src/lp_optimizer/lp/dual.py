from __future__ import annotations

import logging
from typing import List, Optional, Sequence

import numpy as np

from ..canonical import CanonicalForm
from ..schemas import SolveOptions, Solution
from .tableau import primal_simplex_solve
from .utils import (
    NUMERICAL_ERRORS,
    BasisTracker,
    Deadline,
    TraceRecorder,
    basic_vector,
    build_solution,
    column_labels,
    error_solution,
    invert_basis,
    pivot_description,
    pivot_tableau,
)

logger = logging.getLogger(__name__)

ALGORITHM = "dual_simplex"


def dual_simplex_solve(
    form: CanonicalForm,
    basis: Sequence[int],
    opts: Optional[SolveOptions] = None,
) -> Solution:
    """
    Re-optimise from a dual-feasible basis whose basic values may be negative.

    Typical use: an optimal basis extended with the slack of a newly added,
    violated row. A basis that is not dual feasible falls back to the primal
    simplex from scratch.
    """

    opts = opts or SolveOptions()
    trace = TraceRecorder(column_labels(form, form.total_variable_count), opts.record_tableaux)
    try:
        T = _dual_feasible_tableau(form, basis, opts.tol)
        if T is None:
            logger.warning("Basis %s is not dual feasible; re-solving with primal simplex", list(basis))
            return primal_simplex_solve(form, opts)
        return _solve(form, T, list(basis), opts, trace)
    except NUMERICAL_ERRORS as exc:
        return error_solution(form, ALGORITHM, exc, trace.records, trace.pivots)


def _dual_feasible_tableau(form: CanonicalForm, basis: Sequence[int], tol: float) -> Optional[np.ndarray]:
    m, n = form.A.shape
    if len(basis) != m or len(set(basis)) != m:
        return None
    Binv = invert_basis(form.A, basis, tol)
    T = np.zeros((m + 1, n + 1), dtype=float)
    T[:m, :n] = Binv @ form.A
    T[:m, -1] = Binv @ form.b
    cost_b = form.c[list(basis)]
    T[m, :n] = form.c - cost_b @ T[:m, :n]
    T[m, -1] = -(cost_b @ T[:m, -1])
    T[np.abs(T) < tol] = 0.0
    if np.any(T[m, :n] < -tol):
        return None
    return T


def _solve(
    form: CanonicalForm,
    T: np.ndarray,
    basis: List[int],
    opts: SolveOptions,
    trace: TraceRecorder,
) -> Solution:
    tol = opts.tol
    m, n = form.A.shape
    tracker = BasisTracker(use_bland=True)
    deadline = Deadline(opts.time_limit)
    _record(trace, "Dual simplex: start from a dual-feasible basis", T, basis, kind="phase")

    while True:
        rhs = T[:m, -1]
        row = int(np.argmin(rhs)) if m else -1
        if m == 0 or rhs[row] >= -tol:
            break
        if trace.pivots >= opts.max_iters or deadline.expired():
            message = "Time limit reached." if deadline.expired() else f"Hit iteration limit of {trace.pivots} pivots."
            logger.warning("Dual simplex stopped early: %s", message)
            trace.add(message, kind="phase", is_final=True)
            return build_solution(
                form, "max_iterations", ALGORITHM,
                basis=basis, iterations=trace.records, pivots=trace.pivots, message=message,
            )

        entering = _select_entering(T, row, basis, n, tol)
        if entering is None:
            logger.info("Row %d has no negative entry; problem is infeasible", row + 1)
            _record(trace, f"Row {row + 1} has no negative entry: infeasible", T, basis, kind="phase", is_final=True)
            return build_solution(
                form, "infeasible", ALGORITHM,
                basis=basis, iterations=trace.records, pivots=trace.pivots, message="Infeasible.",
            )

        description = pivot_description(trace.labels, entering, basis[row], row)
        pivot_tableau(T, row, entering, tol)
        basis[row] = entering
        trace.pivots += 1
        logger.debug("Dual pivot %d: %s", trace.pivots, description)
        tracker.visit(basis)
        _record(trace, description, T, basis, entering=entering, row=row)

    x = basic_vector(n, basis, T[:m, -1])
    _record(trace, "Optimal tableau", T, basis, kind="phase", is_optimal=True, is_final=True)
    logger.info("Dual simplex optimal after %d pivots, z=%.6g", trace.pivots, form.objective_value(x))
    return build_solution(
        form, "optimal", ALGORITHM,
        x=x, basis=basis, iterations=trace.records, pivots=trace.pivots,
    )


def _select_entering(T: np.ndarray, row: int, basis: List[int], n: int, tol: float) -> Optional[int]:
    """Minimum |r_j / alpha_j| over negative row entries; ties go to the lowest column."""
    m = len(basis)
    basic = set(basis)
    entering: Optional[int] = None
    best = np.inf
    for j in range(n):
        alpha = T[row, j]
        if j in basic or alpha >= -tol:
            continue
        ratio = abs(T[m, j] / alpha)
        if entering is None or ratio < best - tol:
            entering, best = j, ratio
    return entering


def _record(trace: TraceRecorder, description: str, T: np.ndarray, basis: List[int], **kwargs) -> None:
    m = len(basis)
    trace.add(
        description,
        rows=T[:m, :-1],
        rhs=T[:m, -1],
        basis=basis,
        reduced=T[m, :-1],
        objective=-T[m, -1],
        **kwargs,
    )
