import json
import math
from pathlib import Path

import numpy as np
import pytest
from scipy.optimize import Bounds, LinearConstraint, milp

from lp_optimizer.canonical import to_canonical
from lp_optimizer.lp.tableau import primal_simplex_solve
from lp_optimizer.mip.branch_and_bound import (
    branch_and_bound_solve,
    select_branching_column,
    with_binary_bounds,
)
from lp_optimizer.schemas import Problem, ProblemConstraint, Solution, SolveOptions
from scripts.generate_instances import generate_random_problem


def load_example(name: str) -> Problem:
    data = json.loads(Path(__file__).parent.parent.joinpath("examples", name).read_text())
    return Problem.model_validate(data)


def make_binary_problem() -> Problem:
    return Problem(
        name="basic-mip",
        sense="max",
        objective=[1.0, 1.0],
        constraints=[ProblemConstraint(name="limit", coefficients=[1.0, 1.0], relation="<=", rhs=1.0)],
        variable_kinds=["bin", "bin"],
        variable_names=["x", "y"],
    )


def scipy_milp_max(problem: Problem) -> float:
    result = milp(
        c=-np.array(problem.objective),
        constraints=LinearConstraint(
            [cons.coefficients for cons in problem.constraints],
            -np.inf,
            [cons.rhs for cons in problem.constraints],
        ),
        integrality=np.ones(problem.variable_count),
        bounds=Bounds(0, np.inf),
    )
    assert result.success
    return -result.fun


def test_scenario_c_integer_optimum():
    problem = load_example("integer_program.json")
    form = to_canonical(problem)
    relaxation = primal_simplex_solve(form, SolveOptions())
    solution = branch_and_bound_solve(form, SolveOptions())

    assert relaxation.objective_value == pytest.approx(10.5)
    assert solution.status == "optimal"
    assert solution.objective_value == pytest.approx(9.0)
    assert solution.objective_value <= relaxation.objective_value + 1e-9
    for value in solution.values.values():
        assert value == round(value)
    assert solution.values == {"x1": 0.0, "x2": 3.0}


@pytest.mark.parametrize("node_selection", ["best_first", "depth_first"])
@pytest.mark.parametrize("relaxation", ["primal_simplex", "revised_simplex"])
def test_search_policies_agree(node_selection, relaxation):
    opts = SolveOptions(node_selection=node_selection, relaxation=relaxation)
    solution = branch_and_bound_solve(to_canonical(load_example("integer_program.json")), opts)

    assert solution.status == "optimal"
    assert solution.objective_value == pytest.approx(9.0)


def test_binary_variables_get_upper_bound_rows():
    solution = branch_and_bound_solve(to_canonical(make_binary_problem()), SolveOptions())

    assert solution.status == "optimal"
    assert solution.values["x"] + solution.values["y"] == pytest.approx(1.0)
    assert all(value in (0.0, 1.0) for value in solution.values.values())

    bounded = with_binary_bounds(to_canonical(make_binary_problem()))
    assert bounded.constraint_count == 3
    assert bounded.row_names[1:] == ["x<=1", "y<=1"]


def test_node_trace_uses_arena_indices():
    solution = branch_and_bound_solve(to_canonical(load_example("integer_program.json")), SolveOptions())

    nodes = [record for record in solution.iterations if record.kind == "node" and "parent" in record.data]
    assert nodes[0].data["node"] == 0
    assert nodes[0].data["parent"] is None
    seen = set()
    for record in nodes:
        parent = record.data["parent"]
        assert parent is None or parent in seen
        seen.add(record.data["node"])
    assert solution.iterations[-1].is_final and solution.iterations[-1].is_optimal
    assert "Explored nodes" in solution.message


def test_infeasible_integer_program():
    problem = Problem(
        sense="max",
        objective=[1.0],
        constraints=[ProblemConstraint(coefficients=[2.0], relation="=", rhs=1.0)],
        variable_kinds=["int"],
    )
    solution = branch_and_bound_solve(to_canonical(problem), SolveOptions())

    assert solution.status == "infeasible"
    assert solution.objective_value is None


def test_unbounded_integer_program():
    problem = Problem(
        sense="max",
        objective=[1.0, 1.0],
        constraints=[ProblemConstraint(coefficients=[1.0, -1.0], relation="<=", rhs=1.0)],
        variable_kinds=["int", "int"],
    )
    solution = branch_and_bound_solve(to_canonical(problem), SolveOptions())

    assert solution.status == "unbounded"


def test_node_cap_returns_max_iterations():
    solution = branch_and_bound_solve(
        to_canonical(load_example("integer_program.json")), SolveOptions(max_nodes=1)
    )

    assert solution.status == "max_iterations"
    assert "Node limit" in solution.message


def test_continuous_problem_is_delegated():
    problem = load_example("production_lp.json")
    solution = branch_and_bound_solve(to_canonical(problem), SolveOptions())

    assert solution.status == "optimal"
    assert solution.algorithm == "branch_and_bound"
    assert solution.objective_value == pytest.approx(36.0)


def test_branching_column_prefers_half_then_lowest_index():
    x = np.array([1.5, 2.5, 0.3, 0.9])
    assert select_branching_column(x, [0, 1, 2, 3]) == 0
    assert select_branching_column(x, [2, 3]) == 2
    assert select_branching_column(x, [3]) == 3


def test_mixed_integer_program():
    problem = Problem(
        sense="max",
        objective=[5.0, 4.0, 3.0],
        constraints=[
            ProblemConstraint(coefficients=[2.0, 3.0, 1.0], relation="<=", rhs=5.0),
            ProblemConstraint(coefficients=[4.0, 1.0, 2.0], relation="<=", rhs=11.0),
            ProblemConstraint(coefficients=[3.0, 4.0, 2.0], relation="<=", rhs=8.0),
        ],
        variable_kinds=["int", "nonneg", "int"],
    )
    solution = branch_and_bound_solve(to_canonical(problem), SolveOptions())

    assert solution.status == "optimal"
    assert solution.values["x1"] == round(solution.values["x1"])
    assert solution.values["x3"] == round(solution.values["x3"])
    result = milp(
        c=-np.array(problem.objective),
        constraints=LinearConstraint([c.coefficients for c in problem.constraints], -np.inf, [c.rhs for c in problem.constraints]),
        integrality=np.array([1, 0, 1]),
        bounds=Bounds(0, np.inf),
    )
    assert solution.objective_value == pytest.approx(-result.fun, abs=1e-7)


@pytest.mark.parametrize("seed", range(5))
def test_random_integer_programs_match_scipy(seed):
    problem = generate_random_problem(4, 3, seed, integer=True)
    solution = branch_and_bound_solve(to_canonical(problem), SolveOptions(max_nodes=5000))

    assert solution.status == "optimal"
    assert solution.objective_value == pytest.approx(scipy_milp_max(problem), abs=1e-6)
    assert all(math.isclose(v, round(v), abs_tol=1e-12) for v in solution.values.values())


def make_chvatal_problem() -> Problem:
    return Problem(
        sense="max",
        objective=[5.0, 4.0, 3.0],
        constraints=[
            ProblemConstraint(coefficients=[2.0, 3.0, 1.0], relation="<=", rhs=5.0),
            ProblemConstraint(coefficients=[4.0, 1.0, 2.0], relation="<=", rhs=11.0),
            ProblemConstraint(coefficients=[3.0, 4.0, 2.0], relation="<=", rhs=8.0),
        ],
        variable_kinds=["int", "int", "int"],
    )


def test_capped_root_relaxation_is_not_infeasible():
    form = to_canonical(make_chvatal_problem())
    assert branch_and_bound_solve(form, SolveOptions()).objective_value == pytest.approx(13.0)

    solution = branch_and_bound_solve(form, SolveOptions(max_iters=1))

    assert solution.status == "max_iterations"
    assert "Relaxation iteration limit" in solution.message
    assert solution.objective_value is None


def test_capped_child_relaxation_leaves_optimality_unproven(monkeypatch):
    from lp_optimizer.mip import branch_and_bound as bnb

    def capped_right_branch(form, opts):
        if "x1>=1" in form.row_names:
            return Solution(status="max_iterations", algorithm="primal_simplex", canonical=form)
        return primal_simplex_solve(form, opts)

    monkeypatch.setitem(bnb.RELAXATIONS, "primal_simplex", capped_right_branch)
    solution = branch_and_bound_solve(to_canonical(load_example("integer_program.json")), SolveOptions())

    assert solution.status == "max_iterations"
    assert "Returning best incumbent" in solution.message
    assert solution.objective_value == pytest.approx(9.0)


def test_failed_relaxation_is_reported_as_error(monkeypatch):
    from lp_optimizer.mip import branch_and_bound as bnb

    def failing(form, opts):
        return Solution(status="error", algorithm="primal_simplex", message="LinAlgError: singular", canonical=form)

    monkeypatch.setitem(bnb.RELAXATIONS, "primal_simplex", failing)
    solution = branch_and_bound_solve(to_canonical(load_example("integer_program.json")), SolveOptions())

    assert solution.status == "error"
    assert "singular" in solution.message
