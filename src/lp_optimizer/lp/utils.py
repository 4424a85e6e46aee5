from __future__ import annotations

import logging
import time
import warnings
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Set, Tuple

import numpy as np
from scipy.linalg import LinAlgWarning, lu_factor, lu_solve

from ..canonical import CanonicalForm
from ..errors import NumericalDegeneracy, OptimizerError
from ..schemas import IterationRecord, RecordKind, Solution, SolutionStatus, TableauRow

logger = logging.getLogger(__name__)

# Errors a solver loop converts into status="error" instead of propagating.
NUMERICAL_ERRORS = (
    OptimizerError,
    np.linalg.LinAlgError,
    FloatingPointError,
    ZeroDivisionError,
)


@dataclass
class InitialBasis:
    """
    Starting point for Phase 1: rows with a negative right-hand side are
    negated, +1 unit columns are reused as basic, and an artificial column
    is appended for every other row.
    """

    A: np.ndarray
    b: np.ndarray
    basis: List[int]
    artificial: List[int]

    @property
    def needs_phase_one(self) -> bool:
        return bool(self.artificial)


def build_initial_basis(form: CanonicalForm, tol: float) -> InitialBasis:
    m, n = form.A.shape
    A = form.A.copy()
    b = form.b.copy()
    negative = b < 0
    A[negative] *= -1.0
    b[negative] *= -1.0

    basis: List[int] = []
    needs_artificial: List[int] = []
    for row in range(m):
        slack = form.row_slack[row]
        if slack is not None and abs(A[row, slack] - 1.0) <= tol:
            basis.append(slack)
        else:
            basis.append(-1)
            needs_artificial.append(row)

    artificial: List[int] = []
    if needs_artificial:
        extra = np.zeros((m, len(needs_artificial)), dtype=float)
        for offset, row in enumerate(needs_artificial):
            extra[row, offset] = 1.0
            basis[row] = n + offset
            artificial.append(n + offset)
        A = np.hstack([A, extra])

    return InitialBasis(A=A, b=b, basis=basis, artificial=artificial)


def select_entering(
    reduced: np.ndarray,
    allowed: Sequence[int],
    tol: float,
    use_bland: bool,
) -> Optional[int]:
    """Most negative reduced cost (lowest index on ties), or the first negative one under Bland."""
    best: Optional[int] = None
    best_value = 0.0
    for j in allowed:
        value = reduced[j]
        if value >= -tol:
            continue
        if use_bland:
            return j
        if best is None or value < best_value - tol:
            best, best_value = j, value
    return best


def select_leaving(
    column: np.ndarray,
    rhs: np.ndarray,
    basis: Sequence[int],
    tol: float,
) -> Optional[int]:
    """Minimum-ratio test over strictly positive entries; ties go to the lowest basic column."""
    leaving: Optional[int] = None
    best_ratio = np.inf
    for row, value in enumerate(column):
        if value <= tol:
            continue
        ratio = max(rhs[row], 0.0) / value
        if leaving is None or ratio < best_ratio - tol:
            leaving, best_ratio = row, ratio
        elif abs(ratio - best_ratio) <= tol and basis[row] < basis[leaving]:
            leaving = row
    return leaving


def pivot_tableau(T: np.ndarray, row: int, col: int, tol: float) -> None:
    """Scale the pivot row and eliminate the pivot column from every other row, in place."""
    T[row] /= T[row, col]
    factors = T[:, col].copy()
    factors[row] = 0.0
    T -= np.outer(factors, T[row])
    T[np.abs(T) < tol] = 0.0


def factorize(B: np.ndarray, tol: float) -> Tuple[np.ndarray, np.ndarray]:
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", LinAlgWarning)
        lu, piv = lu_factor(B)
    if B.size and np.min(np.abs(np.diag(lu))) <= tol:
        raise np.linalg.LinAlgError("Basis matrix is singular.")
    return lu, piv


def invert_basis(A: np.ndarray, basis: Sequence[int], tol: float) -> np.ndarray:
    m = A.shape[0]
    if m == 0:
        return np.zeros((0, 0), dtype=float)
    lu_piv = factorize(A[:, list(basis)], tol)
    return lu_solve(lu_piv, np.eye(m))


class BasisTracker:
    """
    Remembers visited basis signatures. The first repeat switches Dantzig
    pricing to Bland's rule; a repeat under Bland raises NumericalDegeneracy.
    """

    def __init__(self, use_bland: bool = False) -> None:
        self.use_bland = use_bland
        self._seen: Set[Tuple[int, ...]] = set()

    def visit(self, basis: Sequence[int]) -> None:
        signature = tuple(sorted(basis))
        if signature not in self._seen:
            self._seen.add(signature)
            return
        if self.use_bland:
            raise NumericalDegeneracy(f"Basis {list(signature)} revisited under Bland's rule.")
        logger.warning("Basis %s revisited; switching to Bland's rule", list(signature))
        self.use_bland = True
        self._seen = {signature}


class Deadline:
    def __init__(self, time_limit: Optional[float]) -> None:
        self._expires = None if time_limit is None else time.monotonic() + time_limit

    def expired(self) -> bool:
        return self._expires is not None and time.monotonic() >= self._expires


def column_labels(form: CanonicalForm, width: int) -> List[str]:
    labels = form.variable_names()
    labels.extend(f"a{k + 1}" for k in range(width - len(labels)))
    return labels


def snapshot_rows(
    rows: np.ndarray,
    rhs: np.ndarray,
    basis: Sequence[int],
    labels: Sequence[str],
    reduced: Optional[np.ndarray] = None,
    objective: Optional[float] = None,
) -> List[TableauRow]:
    snapshot = [
        TableauRow(basis=labels[col], coefficients=[float(v) for v in rows[idx]], rhs=float(rhs[idx]))
        for idx, col in enumerate(basis)
    ]
    if reduced is not None:
        snapshot.append(
            TableauRow(
                basis="z",
                coefficients=[float(v) for v in reduced],
                rhs=float(objective if objective is not None else 0.0),
            )
        )
    return snapshot


class TraceRecorder:
    """Collects iteration records; tableau snapshots only when requested."""

    def __init__(self, labels: Sequence[str], record_tableaux: bool) -> None:
        self.labels = list(labels)
        self.record_tableaux = record_tableaux
        self.records: List[IterationRecord] = []
        self.pivots = 0

    def add(
        self,
        description: str,
        rows: Optional[np.ndarray] = None,
        rhs: Optional[np.ndarray] = None,
        basis: Sequence[int] = (),
        reduced: Optional[np.ndarray] = None,
        objective: Optional[float] = None,
        kind: RecordKind = "pivot",
        is_optimal: bool = False,
        is_final: bool = False,
        iteration: Optional[int] = None,
        **data: Any,
    ) -> IterationRecord:
        record = IterationRecord(
            iteration=self.pivots if iteration is None else iteration,
            kind=kind,
            description=description,
            is_optimal=is_optimal,
            is_final=is_final,
            data=data,
        )
        if self.record_tableaux and rows is not None and rhs is not None:
            width = rows.shape[1] if rows.ndim == 2 else 0
            record.columns = self.labels[:width]
            record.rows = snapshot_rows(rows, rhs, basis, self.labels, reduced, objective)
        self.records.append(record)
        return record


def pivot_description(labels: Sequence[str], entering: int, leaving_col: int, row: int) -> str:
    return (
        f"{labels[entering]} enters, {labels[leaving_col]} leaves "
        f"(pivot row {row + 1}, column {entering + 1})"
    )


def basic_vector(width: int, basis: Sequence[int], values: np.ndarray) -> np.ndarray:
    x = np.zeros(width, dtype=float)
    for row, col in enumerate(basis):
        if col < width:
            x[col] = max(float(values[row]), 0.0)
    x[np.abs(x) < 1e-12] = 0.0
    return x


def build_solution(
    form: CanonicalForm,
    status: SolutionStatus,
    algorithm: str,
    x: Optional[np.ndarray] = None,
    basis: Optional[Sequence[int]] = None,
    iterations: Optional[List[IterationRecord]] = None,
    pivots: int = 0,
    message: str = "",
) -> Solution:
    basic = [int(col) for col in (basis or [])]
    basic_set = set(basic)
    nonbasic = [j for j in range(form.total_variable_count) if j not in basic_set]
    objective = None
    values = None
    x_list = None
    if x is not None:
        objective = form.objective_value(x)
        values = form.reconstruct(x)
        x_list = [float(v) for v in x]
    return Solution(
        status=status,
        algorithm=algorithm,
        objective_value=objective,
        x=x_list,
        values=values,
        basic_variables=basic,
        nonbasic_variables=nonbasic,
        iterations=iterations or [],
        pivots=pivots,
        message=message,
        canonical=form,
    )


def error_solution(
    form: Optional[CanonicalForm],
    algorithm: str,
    exc: BaseException,
    iterations: Optional[List[IterationRecord]] = None,
    pivots: int = 0,
) -> Solution:
    logger.error("%s failed: %s", algorithm, exc)
    return Solution(
        status="error",
        algorithm=algorithm,
        iterations=iterations or [],
        pivots=pivots,
        message=f"{type(exc).__name__}: {exc}",
        canonical=form,
    )


def fractional_part(value: float) -> float:
    return float(value - np.floor(value))


def is_integral(value: float, tol: float) -> bool:
    return abs(value - round(value)) <= tol


def fractional_columns(x: Sequence[float], columns: Sequence[int], tol: float) -> List[int]:
    return [col for col in columns if not is_integral(x[col], tol)]
