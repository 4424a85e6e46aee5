from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from ..canonical import CanonicalForm
from ..errors import InvalidCut
from ..lp.revised import revised_simplex_solve
from ..lp.utils import (
    NUMERICAL_ERRORS,
    Deadline,
    TraceRecorder,
    build_solution,
    error_solution,
    fractional_columns,
    fractional_part,
    invert_basis,
)
from ..schemas import SolveOptions, Solution
from .branch_and_bound import INTEGRALITY_TOL, with_binary_bounds

logger = logging.getLogger(__name__)

ALGORITHM = "cutting_plane"


@dataclass
class GomoryCut:
    """
    ``coefficients . x >= rhs`` over every column of the working form it was
    derived from. ``mixed`` marks mixed-integer rounding coefficients, used when
    a non-basic column in the source row is not integral.
    """

    coefficients: np.ndarray
    rhs: float
    source_row: int
    source_column: int
    mixed: bool

    def describe(self, form: CanonicalForm) -> str:
        terms = [
            f"{coef:.4g} {form.get_variable_name(j)}"
            for j, coef in enumerate(self.coefficients)
            if coef != 0.0
        ]
        return f"{' + '.join(terms) or '0'} >= {self.rhs:.4g}"


def derive_gomory_cut(
    form: CanonicalForm,
    solution: Solution,
    tol: float = 1e-9,
    int_tol: float = INTEGRALITY_TOL,
) -> GomoryCut:
    """
    Build a cut from the tableau row of the most fractional basic integer
    variable. The row is reconstructed as (B^-1)_i A from the solution's basis.
    """

    basis = list(solution.basic_variables)
    m, n = form.A.shape
    if len(basis) != m:
        raise InvalidCut(f"Basis has {len(basis)} columns for {m} rows.")

    Binv = invert_basis(form.A, basis, tol)
    xB = Binv @ form.b
    integer = set(form.integer_columns())

    best_row: Optional[int] = None
    best_deviation = 0.0
    for row, col in enumerate(basis):
        if col not in integer:
            continue
        frac = fractional_part(xB[row])
        deviation = min(frac, 1.0 - frac)
        if deviation <= int_tol:
            continue
        if best_row is None or deviation > best_deviation + tol:
            best_row, best_deviation = row, deviation
    if best_row is None:
        raise InvalidCut("No basic integer variable has a fractional value.")

    alpha = Binv[best_row] @ form.A
    alpha[np.abs(alpha) < tol] = 0.0
    f0 = fractional_part(xB[best_row])
    integral = form.integral_columns(tol)
    basic = set(basis)
    support = [j for j in range(n) if j not in basic and alpha[j] != 0.0]
    mixed = any(j not in integral for j in support)

    coefficients = np.zeros(n, dtype=float)
    for j in support:
        if j in integral:
            fj = fractional_part(alpha[j])
            if fj <= tol or fj >= 1.0 - tol:
                continue
            if mixed and fj > f0:
                coefficients[j] = f0 * (1.0 - fj) / (1.0 - f0)
            else:
                coefficients[j] = fj
        elif alpha[j] > 0:
            coefficients[j] = alpha[j]
        else:
            coefficients[j] = -alpha[j] * f0 / (1.0 - f0)

    return GomoryCut(
        coefficients=coefficients,
        rhs=f0,
        source_row=best_row,
        source_column=basis[best_row],
        mixed=mixed,
    )


def drop_redundant_rows(form: CanonicalForm, basis: Sequence[int], tol: float = 1e-9) -> CanonicalForm:
    """
    Remove the rows Phase 1 found linearly dependent, keeping the first rows
    (in order) that make A[rows, basis] square and nonsingular.
    """

    B = form.A[:, list(basis)]
    kept: List[int] = []
    redundant: List[int] = []
    for row in range(form.constraint_count):
        if B.shape[1] and np.linalg.matrix_rank(B[kept + [row]], tol=tol) > len(kept):
            kept.append(row)
        else:
            redundant.append(row)
    if len(kept) != len(basis):
        raise InvalidCut(f"Basis has {len(basis)} columns for {form.constraint_count} rows.")
    logger.info("Dropping redundant row(s) %s from the working form", [form.row_names[row] for row in redundant])
    return form.without_rows(redundant)


def cutting_plane_solve(form: CanonicalForm, opts: Optional[SolveOptions] = None) -> Solution:
    """
    Gomory cutting-plane loop on a private working copy of ``form`` that
    carries an x_j <= 1 row for every binary column.

    Each round solves the relaxation with the revised simplex and, while a
    basic integer column is fractional, appends one cut as a new row and
    surplus column.
    """

    opts = opts or SolveOptions()
    if not form.integer_columns():
        solution = revised_simplex_solve(form, opts)
        note = "No integer columns; solved as a linear program."
        return solution.model_copy(
            update={"algorithm": ALGORITHM, "message": f"{note} {solution.message}".strip()}
        )

    trace = TraceRecorder([], record_tableaux=False)
    try:
        return _cut_loop(form, opts, trace)
    except NUMERICAL_ERRORS as exc:
        return error_solution(form, ALGORITHM, exc, trace.records, trace.pivots)


def _cut_loop(form: CanonicalForm, opts: SolveOptions, trace: TraceRecorder) -> Solution:
    tol = opts.tol
    int_tol = max(tol, INTEGRALITY_TOL)
    integer_columns = form.integer_columns()
    lp_opts = opts.model_copy(update={"record_tableaux": False, "time_limit": None})
    deadline = Deadline(opts.time_limit)
    working = with_binary_bounds(form.copy())
    stop_reason = f"Cut limit of {opts.max_cuts} reached."

    cuts = 0
    while True:
        lp = revised_simplex_solve(working, lp_opts)
        trace.pivots += lp.pivots
        if lp.status != "optimal" or lp.x is None:
            message = f"Relaxation after {cuts} cut(s) ended with status {lp.status}."
            logger.info(message)
            trace.add(message, kind="cut", is_final=True, iteration=cuts)
            return build_solution(
                working, lp.status, ALGORITHM,
                basis=lp.basic_variables, iterations=trace.records, pivots=trace.pivots,
                message=f"{message} {lp.message}".strip(),
            )

        if len(lp.basic_variables) < working.constraint_count:
            working = drop_redundant_rows(working, lp.basic_variables, tol)

        x = np.asarray(lp.x, dtype=float)
        if not fractional_columns(x, integer_columns, int_tol):
            for col in integer_columns:
                x[col] = float(round(x[col]))
            objective = working.objective_value(x)
            trace.add(
                f"Integer solution after {cuts} cut(s): z={objective:g}",
                kind="cut", is_optimal=True, is_final=True, iteration=cuts,
            )
            logger.info("Cutting plane optimal after %d cuts, z=%.6g", cuts, objective)
            return build_solution(
                working, "optimal", ALGORITHM,
                x=x, basis=lp.basic_variables, iterations=trace.records, pivots=trace.pivots,
                message=f"Cuts added: {cuts}.",
            )

        if cuts >= opts.max_cuts or deadline.expired():
            if deadline.expired():
                stop_reason = "Time limit reached."
            break

        cut = derive_gomory_cut(working, lp, tol, int_tol)
        source = working.get_variable_name(cut.source_column)
        if not np.any(cut.coefficients > tol):
            message = f"Tableau row of {source} admits no integer solution."
            logger.info(message)
            trace.add(message, kind="cut", is_final=True, iteration=cuts)
            return build_solution(
                working, "infeasible", ALGORITHM,
                iterations=trace.records, pivots=trace.pivots, message=message,
            )

        cuts += 1
        description = cut.describe(working)
        logger.debug("Cut %d from row %d (%s = %.6g): %s", cuts, cut.source_row + 1, source, x[cut.source_column], description)
        trace.add(
            f"Cut {cuts} from row {cut.source_row + 1} ({source} = {x[cut.source_column]:g}): {description}",
            kind="cut",
            iteration=cuts,
            source_row=cut.source_row,
            source_column=cut.source_column,
            mixed=cut.mixed,
            rhs=float(cut.rhs),
        )
        working = working.extend(cut.coefficients, ">=", cut.rhs, name=f"cut{cuts}")

    logger.warning("Cutting plane stopped early: %s", stop_reason)
    trace.add(stop_reason, kind="cut", is_final=True, iteration=cuts)
    return build_solution(
        working, "max_iterations", ALGORITHM,
        x=np.asarray(lp.x, dtype=float), basis=lp.basic_variables,
        iterations=trace.records, pivots=trace.pivots,
        message=f"{stop_reason} Returning the last relaxation.",
    )
