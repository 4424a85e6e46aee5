import json
from pathlib import Path

import numpy as np
import pytest

from lp_optimizer.canonical import to_canonical
from lp_optimizer.errors import InvalidCut
from lp_optimizer.lp.revised import revised_simplex_solve
from lp_optimizer.mip.branch_and_bound import branch_and_bound_solve
from lp_optimizer.mip.cutting_plane import cutting_plane_solve, derive_gomory_cut, drop_redundant_rows
from lp_optimizer.schemas import Problem, ProblemConstraint, SolveOptions


def load_example(name: str) -> Problem:
    data = json.loads(Path(__file__).parent.parent.joinpath("examples", name).read_text())
    return Problem.model_validate(data)


def make_pure_integer_problem() -> Problem:
    # LP optimum (1, 1.5); integer optimum x2 = 1.
    return Problem(
        name="gomory",
        sense="max",
        objective=[0.0, 1.0],
        constraints=[
            ProblemConstraint(coefficients=[3.0, 2.0], relation="<=", rhs=6.0),
            ProblemConstraint(coefficients=[-3.0, 2.0], relation="<=", rhs=0.0),
        ],
        variable_kinds=["int", "int"],
    )


def test_scenario_d_matches_branch_and_bound():
    form = to_canonical(load_example("integer_program.json"))
    cuts = cutting_plane_solve(form, SolveOptions())
    tree = branch_and_bound_solve(form, SolveOptions())

    assert cuts.status == "optimal"
    assert cuts.objective_value == pytest.approx(tree.objective_value, abs=1e-9)
    assert cuts.objective_value == pytest.approx(9.0)
    assert all(value == round(value) for value in cuts.values.values())


def test_working_form_is_never_the_input():
    form = to_canonical(load_example("integer_program.json"))
    shape = form.A.shape
    solution = cutting_plane_solve(form, SolveOptions())

    assert form.A.shape == shape
    assert solution.canonical is not form
    assert solution.canonical.constraint_count > form.constraint_count


def test_pure_gomory_cut_separates_the_fractional_vertex():
    form = to_canonical(make_pure_integer_problem())
    relaxation = revised_simplex_solve(form, SolveOptions())
    assert relaxation.values["x2"] == pytest.approx(1.5)

    cut = derive_gomory_cut(form, relaxation)

    assert not cut.mixed
    assert cut.rhs == pytest.approx(0.5)
    assert form.get_variable_name(cut.source_column) == "x2"
    x = np.asarray(relaxation.x)
    assert cut.coefficients @ x < cut.rhs
    assert all(cut.coefficients[j] == 0.0 for j in relaxation.basic_variables)
    # Every integer point of the original problem satisfies the cut.
    for x1 in range(3):
        for x2 in range(3):
            s1 = 6 - 3 * x1 - 2 * x2
            s2 = 0 + 3 * x1 - 2 * x2
            if s1 < 0 or s2 < 0:
                continue
            point = np.array([x1, x2, s1, s2], dtype=float)
            assert cut.coefficients @ point >= cut.rhs - 1e-9


def test_pure_integer_problem_converges():
    solution = cutting_plane_solve(to_canonical(make_pure_integer_problem()), SolveOptions())

    assert solution.status == "optimal"
    assert solution.objective_value == pytest.approx(1.0)
    cuts = [record for record in solution.iterations if record.kind == "cut" and "source_row" in record.data]
    assert cuts
    assert cuts[0].description.startswith("Cut 1 from row")


def test_fractional_right_hand_side_uses_mixed_cut():
    form = to_canonical(load_example("integer_program.json"))
    relaxation = revised_simplex_solve(form, SolveOptions())
    cut = derive_gomory_cut(form, relaxation)

    assert cut.mixed
    # Slack of x1 + x2 <= 3.5 must be at least 0.5, i.e. x1 + x2 <= 3.
    assert cut.coefficients[2] == pytest.approx(1.0)
    assert cut.rhs == pytest.approx(0.5)


def test_integer_relaxation_has_no_cut():
    problem = make_pure_integer_problem().model_copy(update={"objective": [1.0, 0.0]})
    form = to_canonical(problem)
    relaxation = revised_simplex_solve(form, SolveOptions())

    with pytest.raises(InvalidCut):
        derive_gomory_cut(form, relaxation)


def test_cut_cap_returns_last_relaxation():
    solution = cutting_plane_solve(to_canonical(load_example("integer_program.json")), SolveOptions(max_cuts=0))

    assert solution.status == "max_iterations"
    assert solution.objective_value == pytest.approx(10.5)


def test_row_without_integer_solution_is_infeasible():
    problem = Problem(
        sense="max",
        objective=[1.0],
        constraints=[ProblemConstraint(coefficients=[2.0], relation="=", rhs=1.0)],
        variable_kinds=["int"],
    )
    solution = cutting_plane_solve(to_canonical(problem), SolveOptions())

    assert solution.status == "infeasible"


def test_unbounded_relaxation_aborts():
    problem = Problem(
        sense="max",
        objective=[1.0, 1.0],
        constraints=[ProblemConstraint(coefficients=[1.0, -1.0], relation="<=", rhs=1.5)],
        variable_kinds=["int", "int"],
    )
    solution = cutting_plane_solve(to_canonical(problem), SolveOptions())

    assert solution.status == "unbounded"


def make_duplicated_row_problem() -> Problem:
    return Problem(
        name="duplicated",
        sense="max",
        objective=[2.0, 3.0, 0.0],
        constraints=[
            ProblemConstraint(name="total", coefficients=[1.0, 1.0, 1.0], relation="=", rhs=3.5),
            ProblemConstraint(name="twice", coefficients=[2.0, 2.0, 2.0], relation="=", rhs=7.0),
        ],
        variable_kinds=["int", "int", "nonneg"],
    )


def test_redundant_equality_row_is_dropped_before_cutting():
    form = to_canonical(make_duplicated_row_problem())
    relaxation = revised_simplex_solve(form, SolveOptions())
    assert len(relaxation.basic_variables) == 1

    reduced = drop_redundant_rows(form, relaxation.basic_variables)
    assert reduced.row_names == ["total"]
    assert derive_gomory_cut(reduced, relaxation).mixed

    cuts = cutting_plane_solve(form, SolveOptions())
    tree = branch_and_bound_solve(form, SolveOptions())
    assert cuts.status == tree.status == "optimal"
    assert cuts.objective_value == pytest.approx(tree.objective_value)
    assert cuts.objective_value == pytest.approx(9.0)
