from __future__ import annotations

import logging
from typing import List, Optional, Sequence

import numpy as np

from ..canonical import CanonicalForm
from ..schemas import SolveOptions, Solution
from .utils import (
    NUMERICAL_ERRORS,
    BasisTracker,
    Deadline,
    TraceRecorder,
    basic_vector,
    build_initial_basis,
    build_solution,
    column_labels,
    error_solution,
    invert_basis,
    pivot_description,
    pivot_tableau,
    select_entering,
    select_leaving,
)

logger = logging.getLogger(__name__)

ALGORITHM = "primal_simplex"


def primal_simplex_solve(
    form: CanonicalForm,
    opts: Optional[SolveOptions] = None,
    initial_basis: Optional[Sequence[int]] = None,
) -> Solution:
    """
    Full-tableau primal simplex with a Phase 1 on artificial variables.

    The tableau is an (m+1) x (n+1) array: constraint rows first, the
    reduced-cost row last, right-hand side in the last column. A valid
    ``initial_basis`` skips Phase 1 entirely; an optimal one costs zero pivots.
    """

    opts = opts or SolveOptions()
    trace = TraceRecorder(column_labels(form, form.total_variable_count), opts.record_tableaux)
    try:
        return _solve(form, opts, initial_basis, trace)
    except NUMERICAL_ERRORS as exc:
        return error_solution(form, ALGORITHM, exc, trace.records, trace.pivots)


def _solve(
    form: CanonicalForm,
    opts: SolveOptions,
    initial_basis: Optional[Sequence[int]],
    trace: TraceRecorder,
) -> Solution:
    tol = opts.tol
    m, n = form.A.shape
    tracker = BasisTracker(use_bland=opts.pivot_rule == "bland")
    deadline = Deadline(opts.time_limit)

    T = None
    basis: List[int] = []
    if initial_basis is not None:
        T = _warm_tableau(form, initial_basis, tol)
        if T is None:
            logger.warning("Initial basis %s rejected; starting from scratch", list(initial_basis))
        else:
            basis = list(initial_basis)

    if T is None:
        start = build_initial_basis(form, tol)
        width = start.A.shape[1]
        T = np.zeros((m + 1, width + 1), dtype=float)
        T[:m, :width] = start.A
        T[:m, -1] = start.b
        basis = list(start.basis)
        trace.labels = column_labels(form, width)

        if start.needs_phase_one:
            cost = np.zeros(width, dtype=float)
            cost[start.artificial] = 1.0
            _set_objective_row(T, cost, basis)
            _record(trace, "Phase 1: minimise the sum of artificial variables", T, basis, kind="phase")
            status = _iterate(T, basis, range(width), trace, tracker, opts, deadline)
            if status != "optimal":
                return _stopped(form, status, T, basis, trace, phase_one=True)

            infeasibility = -T[m, -1]
            if infeasibility > tol * max(1.0, float(np.abs(start.b).max(initial=0.0))):
                logger.info("Phase 1 ended with artificial sum %.6g; problem is infeasible", infeasibility)
                _record(trace, "Phase 1 optimum is positive: infeasible", T, basis, kind="phase", is_final=True)
                return build_solution(
                    form, "infeasible", ALGORITHM,
                    basis=[col for col in basis if col < n],
                    iterations=trace.records,
                    pivots=trace.pivots,
                    message="Infeasible.",
                )
            T, basis = _drive_out_artificials(T, basis, start.artificial, n, trace, tol)
            trace.labels = column_labels(form, n)

    _set_objective_row(T, form.c, basis)
    _record(trace, "Phase 2: optimise the original objective", T, basis, kind="phase")
    tracker = BasisTracker(use_bland=opts.pivot_rule == "bland")
    status = _iterate(T, basis, range(n), trace, tracker, opts, deadline)
    if status != "optimal":
        return _stopped(form, status, T, basis, trace, phase_one=False)

    rows = len(basis)
    x = basic_vector(n, basis, T[:rows, -1])
    _record(trace, "Optimal tableau", T, basis, kind="phase", is_optimal=True, is_final=True)
    logger.info("Primal simplex optimal after %d pivots, z=%.6g", trace.pivots, form.objective_value(x))
    message = "" if rows == m else f"{m - rows} redundant constraint(s) removed."
    return build_solution(
        form, "optimal", ALGORITHM,
        x=x, basis=basis, iterations=trace.records, pivots=trace.pivots, message=message,
    )


def _iterate(
    T: np.ndarray,
    basis: List[int],
    allowed: Sequence[int],
    trace: TraceRecorder,
    tracker: BasisTracker,
    opts: SolveOptions,
    deadline: Deadline,
) -> str:
    tol = opts.tol
    m = len(basis)
    allowed = list(allowed)
    while True:
        entering = select_entering(T[m, :-1], allowed, tol, tracker.use_bland)
        if entering is None:
            return "optimal"
        if trace.pivots >= opts.max_iters:
            return "max_iterations"
        if deadline.expired():
            return "time_limit"

        row = select_leaving(T[:m, entering], T[:m, -1], basis, tol)
        if row is None:
            logger.info("Column %s has no positive entry; problem is unbounded", trace.labels[entering])
            return "unbounded"

        description = pivot_description(trace.labels, entering, basis[row], row)
        pivot_tableau(T, row, entering, tol)
        basis[row] = entering
        trace.pivots += 1
        logger.debug("Pivot %d: %s", trace.pivots, description)
        tracker.visit(basis)
        _record(trace, description, T, basis, entering=entering, row=row)


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


def _set_objective_row(T: np.ndarray, cost: np.ndarray, basis: List[int]) -> None:
    m = len(basis)
    cost_b = cost[basis]
    T[m, :-1] = cost - cost_b @ T[:m, :-1]
    T[m, -1] = -(cost_b @ T[:m, -1])


def _warm_tableau(form: CanonicalForm, basis: Sequence[int], tol: float) -> Optional[np.ndarray]:
    m, n = form.A.shape
    if len(basis) != m or len(set(basis)) != m or any(col < 0 or col >= n for col in basis):
        return None
    try:
        Binv = invert_basis(form.A, basis, tol)
    except np.linalg.LinAlgError:
        return None
    T = np.zeros((m + 1, n + 1), dtype=float)
    T[:m, :n] = Binv @ form.A
    T[:m, -1] = Binv @ form.b
    if np.any(T[:m, -1] < -tol):
        return None
    T[np.abs(T) < tol] = 0.0
    return T


def _drive_out_artificials(
    T: np.ndarray,
    basis: List[int],
    artificial: Sequence[int],
    n: int,
    trace: TraceRecorder,
    tol: float,
):
    """Pivot zero-valued artificials out of the basis, drop redundant rows and artificial columns."""
    artificial_set = set(artificial)
    redundant: List[int] = []
    for row, col in enumerate(basis):
        if col not in artificial_set:
            continue
        candidates = np.flatnonzero(np.abs(T[row, :n]) > tol)
        if candidates.size == 0:
            redundant.append(row)
            continue
        entering = int(candidates[0])
        description = pivot_description(trace.labels, entering, col, row)
        pivot_tableau(T, row, entering, tol)
        basis[row] = entering
        trace.pivots += 1
        logger.debug("Drive-out pivot: %s", description)
        _record(trace, f"Drive-out: {description}", T, basis, entering=entering, row=row)

    if redundant:
        logger.warning("Removing %d redundant constraint row(s): %s", len(redundant), redundant)
        T = np.delete(T, redundant, axis=0)
        basis = [col for row, col in enumerate(basis) if row not in redundant]

    keep = list(range(n)) + [T.shape[1] - 1]
    return T[:, keep], basis


def _stopped(
    form: CanonicalForm,
    status: str,
    T: np.ndarray,
    basis: List[int],
    trace: TraceRecorder,
    phase_one: bool,
) -> Solution:
    n = form.total_variable_count
    if status == "unbounded":
        _record(trace, "No leaving row: unbounded", T, basis, kind="phase", is_final=True)
        return build_solution(
            form, "unbounded", ALGORITHM,
            basis=[col for col in basis if col < n],
            iterations=trace.records,
            pivots=trace.pivots,
            message="Unbounded.",
        )

    message = (
        "Time limit reached." if status == "time_limit"
        else f"Hit iteration limit of {trace.pivots} pivots."
    )
    if phase_one:
        message += " No feasible basis was found."
    logger.warning("Primal simplex stopped early: %s", message)
    _record(trace, message, T, basis, kind="phase", is_final=True)
    x = None if phase_one else basic_vector(n, basis, T[: len(basis), -1])
    return build_solution(
        form, "max_iterations", ALGORITHM,
        x=x, basis=[col for col in basis if col < n],
        iterations=trace.records, pivots=trace.pivots, message=message,
    )
