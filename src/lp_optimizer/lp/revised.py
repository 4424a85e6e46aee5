from __future__ import annotations

import logging
from dataclasses import dataclass
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
    select_entering,
    select_leaving,
)

logger = logging.getLogger(__name__)

ALGORITHM = "revised_simplex"


@dataclass
class _RevisedState:
    """Basis inverse and basic values for the current column set."""

    A: np.ndarray
    b: np.ndarray
    basis: List[int]
    Binv: np.ndarray
    xB: np.ndarray
    since_refactor: int = 0

    def reinvert(self, tol: float) -> None:
        self.Binv = invert_basis(self.A, self.basis, tol)
        self.xB = self.Binv @ self.b
        self.xB[np.abs(self.xB) < tol] = 0.0
        self.since_refactor = 0

    def pivot(self, row: int, entering: int, d: np.ndarray) -> None:
        """Eta update: B^-1 <- E B^-1 and x_B stepped along -d."""
        theta = self.xB[row] / d[row]
        self.xB = self.xB - theta * d
        self.xB[row] = theta
        pivot_row = self.Binv[row] / d[row]
        self.Binv = self.Binv - np.outer(d, pivot_row)
        self.Binv[row] = pivot_row
        self.basis[row] = entering
        self.since_refactor += 1


def revised_simplex_solve(
    form: CanonicalForm,
    opts: Optional[SolveOptions] = None,
    initial_basis: Optional[Sequence[int]] = None,
) -> Solution:
    """
    Revised simplex in product form.

    Only B^-1 and x_B are kept between iterations. Pricing uses
    y = c_B B^-1, the pivot column is d = B^-1 A_q, and B^-1 is refreshed
    from an LU factorisation every ``opts.refactor_every`` pivots.
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

    state = _warm_state(form, initial_basis, tol) if initial_basis is not None else None
    if initial_basis is not None and state is None:
        logger.warning("Initial basis %s rejected; starting from scratch", list(initial_basis))

    if state is None:
        start = build_initial_basis(form, tol)
        width = start.A.shape[1]
        state = _RevisedState(
            A=start.A,
            b=start.b,
            basis=list(start.basis),
            Binv=np.eye(m),
            xB=start.b.copy(),
        )
        trace.labels = column_labels(form, width)

        if start.needs_phase_one:
            cost = np.zeros(width, dtype=float)
            cost[start.artificial] = 1.0
            _record(trace, "Phase 1: minimise the sum of artificial variables", state, cost, kind="phase")
            status = _iterate(state, cost, range(width), trace, tracker, opts, deadline)
            if status != "optimal":
                return _stopped(form, status, state, trace, phase_one=True)

            infeasibility = float(cost[state.basis] @ state.xB)
            if infeasibility > tol * max(1.0, float(np.abs(start.b).max(initial=0.0))):
                logger.info("Phase 1 ended with artificial sum %.6g; problem is infeasible", infeasibility)
                _record(trace, "Phase 1 optimum is positive: infeasible", state, cost, kind="phase", is_final=True)
                return build_solution(
                    form, "infeasible", ALGORITHM,
                    basis=[col for col in state.basis if col < n],
                    iterations=trace.records,
                    pivots=trace.pivots,
                    message="Infeasible.",
                )
            _drive_out_artificials(state, start.artificial, n, trace, tol)
            trace.labels = column_labels(form, n)

    _record(trace, "Phase 2: optimise the original objective", state, form.c, kind="phase")
    tracker = BasisTracker(use_bland=opts.pivot_rule == "bland")
    status = _iterate(state, form.c, range(n), trace, tracker, opts, deadline)
    if status != "optimal":
        return _stopped(form, status, state, trace, phase_one=False)

    x = basic_vector(n, state.basis, state.xB)
    _record(trace, "Optimal basis", state, form.c, kind="phase", is_optimal=True, is_final=True)
    logger.info("Revised simplex optimal after %d pivots, z=%.6g", trace.pivots, form.objective_value(x))
    rows = len(state.basis)
    message = "" if rows == m else f"{m - rows} redundant constraint(s) removed."
    return build_solution(
        form, "optimal", ALGORITHM,
        x=x, basis=state.basis, iterations=trace.records, pivots=trace.pivots, message=message,
    )


def _iterate(
    state: _RevisedState,
    cost: np.ndarray,
    allowed: Sequence[int],
    trace: TraceRecorder,
    tracker: BasisTracker,
    opts: SolveOptions,
    deadline: Deadline,
) -> str:
    tol = opts.tol
    allowed = list(allowed)
    cols = state.A[:, : len(cost)]
    while True:
        y = cost[state.basis] @ state.Binv
        reduced = cost - y @ cols
        reduced[state.basis] = 0.0
        entering = select_entering(reduced, allowed, tol, tracker.use_bland)
        if entering is None:
            return "optimal"
        if trace.pivots >= opts.max_iters:
            return "max_iterations"
        if deadline.expired():
            return "time_limit"

        d = state.Binv @ state.A[:, entering]
        d[np.abs(d) < tol] = 0.0
        row = select_leaving(d, state.xB, state.basis, tol)
        if row is None:
            logger.info("Column %s has no positive entry; problem is unbounded", trace.labels[entering])
            return "unbounded"

        description = pivot_description(trace.labels, entering, state.basis[row], row)
        state.pivot(row, entering, d)
        trace.pivots += 1
        if state.since_refactor >= opts.refactor_every:
            logger.debug("Reinverting basis after %d eta updates", state.since_refactor)
            state.reinvert(tol)
        state.xB[np.abs(state.xB) < tol] = 0.0
        logger.debug("Pivot %d: %s", trace.pivots, description)
        tracker.visit(state.basis)
        # B^-1 A is rebuilt only for phase boundaries and the final basis.
        trace.add(description, entering=entering, row=row)


def _record(trace: TraceRecorder, description: str, state: _RevisedState, cost: np.ndarray, **kwargs) -> None:
    if not trace.record_tableaux:
        trace.add(description, **kwargs)
        return
    # Tableau rows are rebuilt from B^-1 for display only.
    cols = state.A[:, : len(cost)]
    rows = state.Binv @ cols
    y = cost[state.basis] @ state.Binv
    trace.add(
        description,
        rows=rows,
        rhs=state.xB,
        basis=state.basis,
        reduced=cost - y @ cols,
        objective=float(cost[state.basis] @ state.xB),
        **kwargs,
    )


def _warm_state(form: CanonicalForm, basis: Sequence[int], tol: float) -> Optional[_RevisedState]:
    m, n = form.A.shape
    if len(basis) != m or len(set(basis)) != m or any(col < 0 or col >= n for col in basis):
        return None
    state = _RevisedState(A=form.A, b=form.b, basis=list(basis), Binv=np.eye(m), xB=form.b.copy())
    try:
        state.reinvert(tol)
    except np.linalg.LinAlgError:
        return None
    if np.any(state.xB < -tol):
        return None
    return state


def _drive_out_artificials(
    state: _RevisedState,
    artificial: Sequence[int],
    n: int,
    trace: TraceRecorder,
    tol: float,
) -> None:
    artificial_set = set(artificial)
    redundant: List[int] = []
    for row, col in enumerate(list(state.basis)):
        if col not in artificial_set:
            continue
        alpha = state.Binv[row] @ state.A[:, :n]
        candidates = np.flatnonzero(np.abs(alpha) > tol)
        if candidates.size == 0:
            redundant.append(row)
            continue
        entering = int(candidates[0])
        d = state.Binv @ state.A[:, entering]
        description = pivot_description(trace.labels, entering, col, row)
        state.pivot(row, entering, d)
        trace.pivots += 1
        logger.debug("Drive-out pivot: %s", description)
        trace.add(f"Drive-out: {description}", entering=entering, row=row)

    if redundant:
        logger.warning("Removing %d redundant constraint row(s): %s", len(redundant), redundant)
        keep = [row for row in range(len(state.basis)) if row not in redundant]
        state.A = state.A[keep]
        state.b = state.b[keep]
        state.basis = [state.basis[row] for row in keep]
    state.A = state.A[:, :n]
    state.reinvert(tol)


def _stopped(
    form: CanonicalForm,
    status: str,
    state: _RevisedState,
    trace: TraceRecorder,
    phase_one: bool,
) -> Solution:
    n = form.total_variable_count
    basis = [col for col in state.basis if col < n]
    if status == "unbounded":
        trace.add("No leaving row: unbounded", kind="phase", is_final=True)
        return build_solution(
            form, "unbounded", ALGORITHM,
            basis=basis, iterations=trace.records, pivots=trace.pivots, message="Unbounded.",
        )

    message = (
        "Time limit reached." if status == "time_limit"
        else f"Hit iteration limit of {trace.pivots} pivots."
    )
    if phase_one:
        message += " No feasible basis was found."
    logger.warning("Revised simplex stopped early: %s", message)
    trace.add(message, kind="phase", is_final=True)
    x = None if phase_one else basic_vector(n, state.basis, state.xB)
    return build_solution(
        form, "max_iterations", ALGORITHM,
        x=x, basis=basis, iterations=trace.records, pivots=trace.pivots, message=message,
    )
