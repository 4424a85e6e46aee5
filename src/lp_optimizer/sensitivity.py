from __future__ import annotations

import logging
import math
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from .canonical import CanonicalForm, VariableMapping, to_canonical
from .errors import ConstraintViolation, DimensionMismatch, InvalidProblem
from .lp.dual import dual_simplex_solve
from .lp.tableau import primal_simplex_solve
from .lp.utils import invert_basis
from .schemas import (
    DualProblem,
    INTEGER_KINDS,
    Problem,
    ProblemConstraint,
    Relation,
    SensitivityResult,
    ShadowPrice,
    SolveOptions,
    Solution,
    VariableKind,
)

logger = logging.getLogger(__name__)


class SensitivityAnalysis:
    """
    Post-optimal analysis of an optimal solution.

    Every quantity is derived from B = A[:, basis] of the canonical form the
    solution describes: duals y = c_B B^-1 and reduced costs r = c - y A in
    minimisation sense. Reported values (reduced costs, shadow prices,
    objective ranges) are converted back to the problem's own max/min sense.
    """

    def __init__(self, solution: Solution, opts: Optional[SolveOptions] = None) -> None:
        self.solution = solution
        self.opts = opts or SolveOptions()
        self.tol = self.opts.tol
        self.form: Optional[CanonicalForm] = solution.canonical
        self.error = self._validate()
        if not self.error:
            try:
                self._factorize()
            except np.linalg.LinAlgError as exc:
                self.error = f"Basis matrix cannot be factorised: {exc}"
        if self.error:
            logger.info("Sensitivity analysis unavailable: %s", self.error)

    @property
    def available(self) -> bool:
        return not self.error

    def _validate(self) -> str:
        if self.solution.status != "optimal":
            return f"Sensitivity analysis requires an optimal solution (status is {self.solution.status})."
        if self.form is None or self.solution.x is None:
            return "Solution does not carry its canonical form."
        if len(self.solution.basic_variables) != self.form.constraint_count:
            return "Solution basis does not cover every constraint row."
        return ""

    def _factorize(self) -> None:
        form = self.form
        tol = self.tol
        self.basis: List[int] = list(self.solution.basic_variables)
        self.sense = -1.0 if form.is_maximization else 1.0
        self.x = np.asarray(self.solution.x, dtype=float)
        self.objective = float(self.solution.objective_value or 0.0)
        self.Binv = invert_basis(form.A, self.basis, tol)
        self.xB = self.Binv @ form.b
        self.y = form.c[self.basis] @ self.Binv if self.basis else np.zeros(0)
        self.y[np.abs(self.y) < tol] = 0.0
        self.reduced = form.c - self.y @ form.A
        self.reduced[self.basis] = 0.0
        self.reduced[np.abs(self.reduced) < tol] = 0.0
        self.tableau = self.Binv @ form.A
        self.nonbasic = [j for j in range(form.total_variable_count) if j not in set(self.basis)]

    def _failure(self, name: str = "", message: Optional[str] = None) -> SensitivityResult:
        return SensitivityResult(success=False, error_message=message or self.error, name=name)

    def _column_name(self, column: int) -> str:
        return self.form.get_variable_name(column)

    def _check_column(self, column: int) -> Optional[SensitivityResult]:
        if not self.available:
            return self._failure()
        if column < 0 or column >= self.form.total_variable_count:
            return self._failure(message=f"Column {column} is out of range.")
        return None

    def _check_row(self, row: int) -> Optional[SensitivityResult]:
        if not self.available:
            return self._failure()
        if row < 0 or row >= self.form.constraint_count:
            return self._failure(message=f"Constraint {row} is out of range.")
        return None

    def _to_problem_interval(self, column: int, lo: float, hi: float) -> Tuple[float, float]:
        """Map a canonical cost interval of ``column`` onto the problem's coefficient."""
        factor = self.sense * self.form.column_sign(column)
        if factor > 0:
            return lo, hi
        return -hi, -lo

    def reduced_costs(self) -> List[float]:
        """Reduced cost per canonical column, in the problem's objective sense."""
        if not self.available:
            return []
        return [float(self.sense * r) + 0.0 for r in self.reduced]

    def duals(self) -> List[float]:
        """Dual value per constraint row, in the problem's objective sense."""
        if not self.available:
            return []
        return [float(self.sense * value) + 0.0 for value in self.y]

    def variable_range(self, column: int) -> SensitivityResult:
        failure = self._check_column(column)
        if failure is not None:
            return failure
        if column in self.basis:
            return self.basic_variable_range(column)
        return self.nonbasic_variable_range(column)

    def nonbasic_variable_range(self, column: int) -> SensitivityResult:
        failure = self._check_column(column)
        if failure is not None:
            return failure
        name = self._column_name(column)
        if column in self.basis:
            return self._failure(name, f"{name} is basic; use basic_variable_range.")

        c_j = float(self.form.c[column])
        r_j = float(self.reduced[column])
        lo, hi = self._to_problem_interval(column, c_j - r_j, math.inf)
        current = self._to_problem_interval(column, c_j, c_j)[0]
        return SensitivityResult(
            success=True,
            name=name,
            current_value=current,
            lower_bound=lo,
            upper_bound=hi,
            reduced_cost=float(self.sense * r_j) + 0.0,
            description=(
                f"{name} is non-basic at 0; its objective coefficient can move within "
                f"[{lo:g}, {hi:g}] before it becomes attractive to enter the basis."
            ),
        )

    def basic_variable_range(self, column: int) -> SensitivityResult:
        failure = self._check_column(column)
        if failure is not None:
            return failure
        name = self._column_name(column)
        if column not in self.basis:
            return self._failure(name, f"{name} is non-basic; use nonbasic_variable_range.")

        row = self.basis.index(column)
        alpha = self.tableau[row]
        lower, upper = -math.inf, math.inf
        for k in self.nonbasic:
            a = alpha[k]
            if a > self.tol:
                upper = min(upper, self.reduced[k] / a)
            elif a < -self.tol:
                lower = max(lower, self.reduced[k] / a)

        c_j = float(self.form.c[column])
        lo, hi = self._to_problem_interval(column, c_j + lower, c_j + upper)
        current = self._to_problem_interval(column, c_j, c_j)[0]
        return SensitivityResult(
            success=True,
            name=name,
            current_value=current,
            lower_bound=lo,
            upper_bound=hi,
            reduced_cost=0.0,
            description=(
                f"{name} is basic at {self.xB[row]:g}; the current basis stays optimal while its "
                f"objective coefficient lies in [{lo:g}, {hi:g}]."
            ),
        )

    def rhs_range(self, row: int) -> SensitivityResult:
        failure = self._check_row(row)
        if failure is not None:
            return failure
        name = self.form.row_names[row]
        d = self.Binv[:, row]
        lower, upper = -math.inf, math.inf
        for k, value in enumerate(d):
            if value > self.tol:
                lower = max(lower, -self.xB[k] / value)
            elif value < -self.tol:
                upper = min(upper, -self.xB[k] / value)

        b_i = float(self.form.b[row])
        price = self._price(row)
        return SensitivityResult(
            success=True,
            name=name,
            current_value=b_i,
            lower_bound=b_i + lower,
            upper_bound=b_i + upper,
            shadow_price=price,
            description=(
                f"The basis stays feasible while the right-hand side of {name} lies in "
                f"[{b_i + lower:g}, {b_i + upper:g}]; each unit changes the objective by {price:g}."
            ),
        )

    def _slack_value(self, row: int) -> float:
        slack = self.form.row_slack[row]
        return 0.0 if slack is None else float(self.x[slack])

    def _price(self, row: int) -> float:
        if abs(self._slack_value(row)) > self.tol:
            return 0.0
        return float(self.sense * self.y[row]) + 0.0

    def shadow_price(self, row: int) -> SensitivityResult:
        failure = self._check_row(row)
        if failure is not None:
            return failure
        name = self.form.row_names[row]
        price = self._price(row)
        return SensitivityResult(
            success=True,
            name=name,
            current_value=float(self.form.b[row]),
            shadow_price=price,
            description=_interpretation(name, price),
        )

    def shadow_prices(self) -> List[ShadowPrice]:
        if not self.available:
            return []
        prices = []
        for row, name in enumerate(self.form.row_names):
            slack = self._slack_value(row)
            price = self._price(row)
            prices.append(
                ShadowPrice(
                    constraint_index=row,
                    constraint_name=name,
                    price=price,
                    slack=slack,
                    binding=abs(slack) <= self.tol,
                    interpretation=_interpretation(name, price),
                )
            )
        return prices

    def apply_rhs_change(self, row: int, new_rhs: float) -> SensitivityResult:
        """
        Predict the objective for a new right-hand side. Inside the ranging
        interval the shadow price is exact; outside it the changed problem is
        re-optimised with the dual simplex from the current basis.
        """

        ranging = self.rhs_range(row)
        if not ranging.success:
            return ranging
        name = ranging.name
        if ranging.lower_bound - self.tol <= new_rhs <= ranging.upper_bound + self.tol:
            predicted = self.objective + ranging.shadow_price * (new_rhs - ranging.current_value)
            return ranging.model_copy(
                update={
                    "still_optimal": True,
                    "predicted_objective": predicted,
                    "description": f"Basis unchanged; objective becomes {predicted:g}.",
                }
            )

        changed = self.form.copy()
        changed.b[row] = float(new_rhs)
        logger.info("RHS of %s moved outside [%g, %g]; re-optimising", name, ranging.lower_bound, ranging.upper_bound)
        solution = dual_simplex_solve(changed, self.basis, self._reopt_options())
        return ranging.model_copy(
            update={
                "still_optimal": False,
                "predicted_objective": solution.objective_value,
                "reoptimized": solution,
                "description": (
                    f"New right-hand side {new_rhs:g} leaves the range; "
                    f"re-optimisation ended with status {solution.status}."
                ),
            }
        )

    def _structural_mapping(self, column: int) -> VariableMapping:
        for mapping in self.form.variable_map:
            if column in mapping.columns:
                return mapping
        raise InvalidProblem(f"{self._column_name(column)} is a slack column.")

    def _intersect(self, results: Sequence[SensitivityResult]) -> SensitivityResult:
        """Narrowest interval over the canonical columns of one original variable."""
        failed = [result for result in results if not result.success]
        if failed:
            return failed[0]
        lower = max(result.lower_bound for result in results)
        upper = min(result.upper_bound for result in results)
        return results[0].model_copy(update={"lower_bound": lower, "upper_bound": upper})

    def apply_cost_change(self, column: int, new_cost: float) -> SensitivityResult:
        """
        Predict the objective for a new objective coefficient of the variable
        owning ``column``. Inside the ranging interval the basis is unchanged and
        the objective moves by the variable's value per unit; outside it the
        changed problem is re-optimised with the primal simplex from the current
        basis, which stays primal feasible.
        """

        failure = self._check_column(column)
        if failure is not None:
            return failure
        try:
            mapping = self._structural_mapping(column)
        except InvalidProblem as exc:
            return self._failure(self._column_name(column), str(exc))
        # A basic split column fixes the range; its non-basic twin keeps a zero reduced cost.
        columns = [j for j in mapping.columns if j in self.basis] or list(mapping.columns)
        ranging = self._intersect([self.variable_range(j) for j in columns])
        if not ranging.success:
            return ranging
        ranging = ranging.model_copy(update={"name": mapping.name})

        new_cost = float(new_cost)
        if ranging.lower_bound - self.tol <= new_cost <= ranging.upper_bound + self.tol:
            value = self.form.reconstruct(self.x)[mapping.name]
            predicted = self.objective + (new_cost - ranging.current_value) * value
            return ranging.model_copy(
                update={
                    "still_optimal": True,
                    "predicted_objective": predicted,
                    "description": f"Basis unchanged; objective becomes {predicted:g}.",
                }
            )

        changed = self.form.copy()
        for j, sign in zip(mapping.columns, mapping.signs):
            changed.c[j] = self.sense * sign * new_cost
        logger.info(
            "Cost of %s moved outside [%g, %g]; re-optimising",
            mapping.name, ranging.lower_bound, ranging.upper_bound,
        )
        solution = primal_simplex_solve(changed, self._reopt_options(), initial_basis=self.basis)
        return ranging.model_copy(
            update={
                "still_optimal": False,
                "predicted_objective": solution.objective_value,
                "reoptimized": solution,
                "description": (
                    f"New objective coefficient {new_cost:g} leaves the range; "
                    f"re-optimisation ended with status {solution.status}."
                ),
            }
        )

    def nonbasic_column_range(self, column: int, row: int) -> SensitivityResult:
        """Range of the constraint coefficient a_ij of a non-basic column."""
        failure = self._check_column(column) or self._check_row(row)
        if failure is not None:
            return failure
        name = self._column_name(column)
        if column in self.basis:
            return self._failure(name, f"{name} is basic; only non-basic columns can be ranged.")

        r_j = float(self.reduced[column])
        y_i = float(self.y[row])
        lower, upper = -math.inf, math.inf
        if y_i > self.tol:
            upper = r_j / y_i
        elif y_i < -self.tol:
            lower = r_j / y_i

        a_ij = float(self.form.A[row, column])
        sign = self.form.column_sign(column)
        lo, hi = a_ij + lower, a_ij + upper
        if sign < 0:
            lo, hi = -hi, -lo
        return SensitivityResult(
            success=True,
            name=f"{name}@{self.form.row_names[row]}",
            current_value=sign * a_ij,
            lower_bound=lo,
            upper_bound=hi,
            reduced_cost=float(self.sense * r_j) + 0.0,
            description=(
                f"The coefficient of {name} in {self.form.row_names[row]} can move within "
                f"[{lo:g}, {hi:g}] before {name} becomes attractive to enter the basis."
            ),
        )

    def apply_column_change(self, column: int, row: int, new_coeff: float) -> SensitivityResult:
        """
        Predict the effect of a new constraint coefficient for a non-basic
        variable. Inside the range nothing moves; outside it the variable
        becomes attractive and the problem is re-optimised from the current basis.
        """

        failure = self._check_column(column) or self._check_row(row)
        if failure is not None:
            return failure
        try:
            mapping = self._structural_mapping(column)
        except InvalidProblem as exc:
            return self._failure(self._column_name(column), str(exc))
        ranging = self._intersect([self.nonbasic_column_range(j, row) for j in mapping.columns])
        if not ranging.success:
            return ranging
        label = f"{mapping.name}@{self.form.row_names[row]}"
        ranging = ranging.model_copy(update={"name": label})

        new_coeff = float(new_coeff)
        if ranging.lower_bound - self.tol <= new_coeff <= ranging.upper_bound + self.tol:
            return ranging.model_copy(
                update={
                    "still_optimal": True,
                    "predicted_objective": self.objective,
                    "description": f"{mapping.name} stays non-basic; objective remains {self.objective:g}.",
                }
            )

        changed = self.form.copy()
        for j, sign in zip(mapping.columns, mapping.signs):
            changed.A[row, j] = sign * new_coeff
        logger.info(
            "Coefficient %s moved outside [%g, %g]; re-optimising",
            label, ranging.lower_bound, ranging.upper_bound,
        )
        solution = primal_simplex_solve(changed, self._reopt_options(), initial_basis=self.basis)
        return ranging.model_copy(
            update={
                "still_optimal": False,
                "predicted_objective": solution.objective_value,
                "reoptimized": solution,
                "description": (
                    f"New coefficient {new_coeff:g} leaves the range; "
                    f"re-optimisation ended with status {solution.status}."
                ),
            }
        )

    def add_activity(
        self,
        coefficients: Sequence[float],
        objective_coefficient: float,
        name: str = "new",
    ) -> SensitivityResult:
        """Price out a new column: c_new - y^T A_new."""
        if not self.available:
            return self._failure(name)
        column = np.asarray(coefficients, dtype=float)
        if column.shape != (self.form.constraint_count,):
            raise DimensionMismatch(
                f"New activity has {column.size} coefficients, expected {self.form.constraint_count}."
            )
        reduced = self.sense * float(objective_coefficient) - float(self.y @ column)
        attractive = reduced < -self.tol
        return SensitivityResult(
            success=True,
            name=name,
            current_value=float(objective_coefficient),
            reduced_cost=self.sense * reduced + 0.0,
            still_optimal=not attractive,
            predicted_objective=None if attractive else self.objective,
            description=(
                f"{name} should enter the basis; the current solution is no longer optimal."
                if attractive
                else f"{name} would not improve the objective; the current solution stays optimal."
            ),
        )

    def add_constraint(
        self,
        coefficients: Sequence[float],
        relation: Relation,
        rhs: float,
        name: Optional[str] = None,
    ) -> SensitivityResult:
        """
        Check the current solution against a new constraint. A violated row
        is appended (with its slack basic) and re-optimised by the dual simplex.
        """

        label = name or f"c{self.form.constraint_count + 1 if self.form else 1}"
        if not self.available:
            return self._failure(label)
        row = self._canonical_row(coefficients)
        lhs = float(row @ self.x)
        try:
            _check_constraint(lhs, relation, float(rhs), self.tol)
        except ConstraintViolation as violation:
            return self._reoptimize(row, relation, float(rhs), label, violation)

        return SensitivityResult(
            success=True,
            name=label,
            current_value=lhs,
            still_optimal=True,
            predicted_objective=self.objective,
            description=f"Satisfied ({lhs:g} {relation} {rhs:g}); the current solution remains optimal.",
        )

    def _reoptimize(
        self,
        row: np.ndarray,
        relation: Relation,
        rhs: float,
        label: str,
        violation: ConstraintViolation,
    ) -> SensitivityResult:
        logger.info("%s; re-optimising", violation)
        extended = self.form.extend(row, relation, rhs, name=label)
        if relation == "=":
            solution = primal_simplex_solve(extended, self._reopt_options())
        else:
            basis = self.basis + [extended.total_variable_count - 1]
            solution = dual_simplex_solve(extended, basis, self._reopt_options())
        return SensitivityResult(
            success=True,
            name=label,
            current_value=violation.lhs,
            still_optimal=False,
            predicted_objective=solution.objective_value,
            reoptimized=solution,
            description=f"{violation} Re-optimisation ended with status {solution.status}.",
        )

    def _reopt_options(self) -> SolveOptions:
        return self.opts.model_copy(update={"record_tableaux": False})

    def _canonical_row(self, coefficients: Sequence[float]) -> np.ndarray:
        values = np.asarray(coefficients, dtype=float)
        width = self.form.total_variable_count
        if values.size == width:
            return values.copy()
        if values.size != self.form.original_variable_count:
            raise DimensionMismatch(
                f"Constraint has {values.size} coefficients, expected "
                f"{self.form.original_variable_count} (original) or {width} (canonical)."
            )
        row = np.zeros(width, dtype=float)
        for mapping in self.form.variable_map:
            for column, sign in zip(mapping.columns, mapping.signs):
                row[column] = sign * values[mapping.original_index]
        return row

    def summary(self) -> Dict[str, Any]:
        """All ranging results for structural columns and constraint rows."""
        if not self.available:
            return {"success": False, "error_message": self.error}
        structural = range(self.form.structural_count)
        return {
            "success": True,
            "objective_value": self.objective,
            "reduced_costs": dict(zip(self.form.variable_names(), self.reduced_costs())),
            "shadow_prices": [price.model_dump() for price in self.shadow_prices()],
            "variable_ranges": [self.variable_range(j).model_dump() for j in structural],
            "rhs_ranges": [self.rhs_range(i).model_dump() for i in range(self.form.constraint_count)],
        }


def _check_constraint(lhs: float, relation: Relation, rhs: float, tol: float) -> None:
    scale = tol * max(1.0, abs(rhs))
    violated = (
        (relation == "<=" and lhs > rhs + scale)
        or (relation == ">=" and lhs < rhs - scale)
        or (relation == "=" and abs(lhs - rhs) > scale)
    )
    if violated:
        raise ConstraintViolation(
            f"Constraint violated: {lhs:g} {relation} {rhs:g} does not hold.", lhs=lhs, rhs=rhs
        )


def _interpretation(name: str, price: float) -> str:
    if price == 0.0:
        return f"{name} is not binding at the margin; relaxing it does not change the objective."
    direction = "increases" if price > 0 else "decreases"
    return f"Each extra unit of {name} {direction} the objective by {abs(price):g}."


def generate_dual(problem: Problem) -> DualProblem:
    """
    Dual of the continuous relaxation of ``problem``. Integer and binary
    variables are dualised as non-negative continuous variables.
    """

    to_canonical(problem)
    if not problem.constraints:
        raise InvalidProblem("A problem without constraints has no dual variables.")

    primal_max = problem.sense == "max"
    variable_signs: List[VariableKind] = []
    for cons in problem.constraints:
        if cons.relation == "=":
            variable_signs.append("free")
        elif (cons.relation == "<=") == primal_max:
            variable_signs.append("nonneg")
        else:
            variable_signs.append("nonpos")

    relations: List[Relation] = []
    for kind in problem.variable_kinds:
        if kind == "free":
            relations.append("=")
        elif (kind == "nonpos") == primal_max:
            relations.append("<=")
        else:
            relations.append(">=")

    names = problem.names()
    constraints = [
        ProblemConstraint(
            coefficients=[cons.coefficients[j] for cons in problem.constraints],
            relation=relation,
            rhs=problem.objective[j],
            name=names[j],
        )
        for j, relation in enumerate(relations)
    ]
    dual = Problem(
        name=f"dual of {problem.name}",
        sense="min" if primal_max else "max",
        objective=[cons.rhs for cons in problem.constraints],
        constraints=constraints,
        variable_kinds=variable_signs,
        variable_names=[f"y_{name}" for name in problem.constraint_names()],
    )
    if any(kind in INTEGER_KINDS for kind in problem.variable_kinds):
        logger.info("Integer variables of %s dualised as continuous non-negative", problem.name)
    return DualProblem(
        problem=dual,
        primal_sense=problem.sense,
        variable_signs=variable_signs,
        constraint_relations=relations,
    )
