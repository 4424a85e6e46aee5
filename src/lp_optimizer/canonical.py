from __future__ import annotations

import dataclasses
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set, Tuple

import numpy as np

from .errors import DimensionMismatch, InvalidProblem
from .schemas import INTEGER_KINDS, Problem, Relation, VariableKind


@dataclass(frozen=True)
class VariableMapping:
    original_index: int
    kind: VariableKind
    name: str
    columns: Tuple[int, ...]
    signs: Tuple[float, ...]


@dataclass
class CanonicalForm:
    """
    Standard equality form of a problem:

        min c^T x
        s.t. A x = b
             x >= 0

    Structural columns come first (one per original variable, two for free
    variables), followed by one slack/surplus column per inequality row.
    Extending the form with a row always returns a new instance.
    """

    is_maximization: bool
    c: np.ndarray
    A: np.ndarray
    b: np.ndarray
    variable_map: List[VariableMapping]
    structural_count: int
    slack_count: int
    row_slack: List[Optional[int]]
    row_relations: List[Relation]
    row_names: List[str] = field(default_factory=list)

    @property
    def original_variable_count(self) -> int:
        return len(self.variable_map)

    @property
    def total_variable_count(self) -> int:
        return self.structural_count + self.slack_count

    @property
    def constraint_count(self) -> int:
        return int(self.A.shape[0])

    def get_variable_name(self, index: int) -> str:
        if index < 0 or index >= self.total_variable_count:
            raise IndexError(f"Canonical column {index} out of range 0..{self.total_variable_count - 1}.")
        if index >= self.structural_count:
            return f"s{index - self.structural_count + 1}"
        for mapping in self.variable_map:
            if index not in mapping.columns:
                continue
            if mapping.kind == "free":
                return f"{mapping.name}+" if index == mapping.columns[0] else f"{mapping.name}-"
            return mapping.name
        raise IndexError(f"Canonical column {index} is not mapped to any variable.")

    def column_sign(self, index: int) -> float:
        """Sign linking a canonical column to its original variable (+1 for slacks)."""
        for mapping in self.variable_map:
            if index in mapping.columns:
                return mapping.signs[mapping.columns.index(index)]
        return 1.0

    def variable_names(self) -> List[str]:
        return [self.get_variable_name(idx) for idx in range(self.total_variable_count)]

    def integer_columns(self) -> List[int]:
        return [
            mapping.columns[0]
            for mapping in self.variable_map
            if mapping.kind in INTEGER_KINDS
        ]

    def binary_columns(self) -> List[int]:
        return [mapping.columns[0] for mapping in self.variable_map if mapping.kind == "bin"]

    def integral_columns(self, tol: float = 1e-9) -> Set[int]:
        """Integer columns plus slacks of rows that force them to integer values."""
        integral = set(self.integer_columns())
        changed = True
        while changed:
            changed = False
            for row_idx, slack in enumerate(self.row_slack):
                if slack is None or slack in integral:
                    continue
                if abs(self.b[row_idx] - round(self.b[row_idx])) > tol:
                    continue
                row = self.A[row_idx]
                support = [j for j in np.flatnonzero(np.abs(row) > tol) if j != slack]
                if all(j in integral and abs(row[j] - round(row[j])) <= tol for j in support):
                    integral.add(slack)
                    changed = True
        return integral

    def objective_value(self, x: np.ndarray) -> float:
        """Objective of a canonical vector in the problem's own max/min sense."""
        z = float(self.c @ np.asarray(x, dtype=float)[: self.total_variable_count])
        return -z if self.is_maximization else z

    def reconstruct(self, x: Sequence[float]) -> Dict[str, float]:
        values: Dict[str, float] = {}
        for mapping in self.variable_map:
            value = 0.0
            for idx, sign in zip(mapping.columns, mapping.signs):
                value += sign * float(x[idx])
            if abs(value) < 1e-12:
                value = 0.0
            values[mapping.name] = value
        return values

    def copy(self) -> "CanonicalForm":
        return dataclasses.replace(
            self,
            c=self.c.copy(),
            A=self.A.copy(),
            b=self.b.copy(),
            variable_map=list(self.variable_map),
            row_slack=list(self.row_slack),
            row_relations=list(self.row_relations),
            row_names=list(self.row_names),
        )

    def extend(
        self,
        coefficients: Sequence[float],
        relation: Relation,
        rhs: float,
        name: Optional[str] = None,
    ) -> "CanonicalForm":
        """Return a new form with one more row (and a fresh slack/surplus column)."""
        row = np.asarray(coefficients, dtype=float)
        if row.shape != (self.total_variable_count,):
            raise DimensionMismatch(
                f"New row has {row.size} coefficients, expected {self.total_variable_count}."
            )

        m, n = self.A.shape
        needs_slack = relation != "="
        width = n + 1 if needs_slack else n
        A = np.zeros((m + 1, width), dtype=float)
        A[:m, :n] = self.A
        A[m, :n] = row
        c = np.zeros(width, dtype=float)
        c[:n] = self.c

        row_slack = list(self.row_slack)
        if needs_slack:
            A[m, n] = 1.0 if relation == "<=" else -1.0
            row_slack.append(n)
        else:
            row_slack.append(None)

        return dataclasses.replace(
            self,
            c=c,
            A=A,
            b=np.append(self.b, float(rhs)),
            variable_map=list(self.variable_map),
            slack_count=self.slack_count + (1 if needs_slack else 0),
            row_slack=row_slack,
            row_relations=list(self.row_relations) + [relation],
            row_names=list(self.row_names) + [name or f"r{m + 1}"],
        )

    def without_rows(self, rows: Sequence[int]) -> "CanonicalForm":
        """Return a new form without the given equality rows; columns keep their indices."""
        dropped = set(rows)
        if any(self.row_slack[row] is not None for row in dropped):
            raise InvalidProblem("Only equality rows can be dropped without renumbering columns.")
        keep = [row for row in range(self.constraint_count) if row not in dropped]
        return dataclasses.replace(
            self,
            c=self.c.copy(),
            A=self.A[keep].copy(),
            b=self.b[keep].copy(),
            variable_map=list(self.variable_map),
            row_slack=[self.row_slack[row] for row in keep],
            row_relations=[self.row_relations[row] for row in keep],
            row_names=[self.row_names[row] for row in keep],
        )

    def bound_row(self, column: int) -> np.ndarray:
        row = np.zeros(self.total_variable_count, dtype=float)
        row[column] = 1.0
        return row


def to_canonical(problem: Problem) -> CanonicalForm:
    """
    Convert a problem description to standard equality form.
    Maximisation objectives are negated; the sign is restored when reporting.
    """

    n = problem.variable_count
    if n == 0:
        raise DimensionMismatch("Problem must declare at least one variable.")
    if len(problem.objective) != n:
        raise DimensionMismatch(
            f"Objective has {len(problem.objective)} coefficients but {n} variables are declared."
        )
    for idx, cons in enumerate(problem.constraints):
        if len(cons.coefficients) != n:
            raise DimensionMismatch(
                f"Constraint {cons.name or idx + 1} has {len(cons.coefficients)} coefficients "
                f"but {n} variables are declared."
            )
    if problem.variable_names is not None and len(problem.variable_names) != n:
        raise DimensionMismatch(
            f"{len(problem.variable_names)} variable names given for {n} variables."
        )

    names = problem.names()
    if len(set(names)) != len(names):
        raise InvalidProblem("Variable names must be unique.")
    _check_generated_names(names, problem.variable_kinds)

    values = [*problem.objective, *(cons.rhs for cons in problem.constraints)]
    for cons in problem.constraints:
        values.extend(cons.coefficients)
    if not np.all(np.isfinite(np.asarray(values, dtype=float))):
        raise InvalidProblem("Problem contains non-finite coefficients (NaN or Inf).")

    variable_map: List[VariableMapping] = []
    next_column = 0
    for idx, (kind, name) in enumerate(zip(problem.variable_kinds, names)):
        if kind == "free":
            columns: Tuple[int, ...] = (next_column, next_column + 1)
            signs: Tuple[float, ...] = (1.0, -1.0)
        elif kind == "nonpos":
            columns, signs = (next_column,), (-1.0,)
        else:
            columns, signs = (next_column,), (1.0,)
        next_column += len(columns)
        variable_map.append(
            VariableMapping(original_index=idx, kind=kind, name=name, columns=columns, signs=signs)
        )

    structural_count = next_column
    slack_count = sum(1 for cons in problem.constraints if cons.relation != "=")
    m = len(problem.constraints)
    width = structural_count + slack_count

    c = np.zeros(width, dtype=float)
    sense_factor = -1.0 if problem.sense == "max" else 1.0
    for mapping in variable_map:
        coef = problem.objective[mapping.original_index]
        for column, sign in zip(mapping.columns, mapping.signs):
            c[column] = sense_factor * sign * coef

    A = np.zeros((m, width), dtype=float)
    b = np.zeros(m, dtype=float)
    row_slack: List[Optional[int]] = []
    next_slack = structural_count
    for row_idx, cons in enumerate(problem.constraints):
        for mapping in variable_map:
            coef = cons.coefficients[mapping.original_index]
            for column, sign in zip(mapping.columns, mapping.signs):
                A[row_idx, column] = sign * coef
        b[row_idx] = cons.rhs
        if cons.relation == "<=":
            A[row_idx, next_slack] = 1.0
        elif cons.relation == ">=":
            A[row_idx, next_slack] = -1.0
        if cons.relation == "=":
            row_slack.append(None)
        else:
            row_slack.append(next_slack)
            next_slack += 1

    return CanonicalForm(
        is_maximization=problem.sense == "max",
        c=c,
        A=A,
        b=b,
        variable_map=variable_map,
        structural_count=structural_count,
        slack_count=slack_count,
        row_slack=row_slack,
        row_relations=[cons.relation for cons in problem.constraints],
        row_names=problem.constraint_names(),
    )


# Slack columns are labelled s1, s2, ... including those added by later rows.
_SLACK_NAME = re.compile(r"s\d+")


def _check_generated_names(names: Sequence[str], kinds: Sequence[VariableKind]) -> None:
    """Reject user names that collide with generated slack or split-column labels."""
    taken = set(names)
    for name in names:
        if _SLACK_NAME.fullmatch(name):
            raise InvalidProblem(f"Variable name {name!r} is reserved for slack columns.")
    for name, kind in zip(names, kinds):
        if kind != "free":
            continue
        for label in (f"{name}+", f"{name}-"):
            if label in taken:
                raise InvalidProblem(
                    f"Variable name {label!r} collides with a column of free variable {name!r}."
                )
