import numpy as np
import pytest
from scipy.optimize import linprog

from lp_optimizer.canonical import to_canonical
from lp_optimizer.lp.revised import revised_simplex_solve
from lp_optimizer.lp.tableau import primal_simplex_solve
from lp_optimizer.schemas import SolveOptions
from scripts.generate_instances import generate_random_problem


def scipy_max(problem) -> float:
    result = linprog(
        [-v for v in problem.objective],
        A_ub=[cons.coefficients for cons in problem.constraints],
        b_ub=[cons.rhs for cons in problem.constraints],
        bounds=[(0, None)] * problem.variable_count,
        method="highs",
    )
    assert result.status == 0
    return -result.fun


@pytest.mark.parametrize("seed", range(6))
def test_random_problems_match_scipy(seed):
    problem = generate_random_problem(6, 4, seed)
    solution = revised_simplex_solve(to_canonical(problem), SolveOptions())

    assert solution.status == "optimal"
    assert solution.objective_value == pytest.approx(scipy_max(problem), rel=1e-7, abs=1e-7)


@pytest.mark.parametrize("seed", range(3))
def test_tableau_and_revised_agree(seed):
    problem = generate_random_problem(5, 5, seed)
    form = to_canonical(problem)
    tableau = primal_simplex_solve(form, SolveOptions())
    revised = revised_simplex_solve(form, SolveOptions())

    assert tableau.status == revised.status == "optimal"
    assert revised.objective_value == pytest.approx(tableau.objective_value, rel=1e-9)


@pytest.mark.parametrize("refactor_every", [1, 2, 1000])
def test_reinversion_period_does_not_change_the_answer(refactor_every):
    problem = generate_random_problem(8, 6, 11)
    solution = revised_simplex_solve(to_canonical(problem), SolveOptions(refactor_every=refactor_every))

    assert solution.status == "optimal"
    assert solution.objective_value == pytest.approx(scipy_max(problem), rel=1e-7)


def test_trace_rows_are_reconstructed_from_the_basis_inverse():
    problem = generate_random_problem(3, 2, 5)
    form = to_canonical(problem)
    solution = revised_simplex_solve(form, SolveOptions())

    final = solution.iterations[-1]
    assert final.is_optimal and final.is_final
    assert final.columns == form.variable_names()
    B = form.A[:, solution.basic_variables]
    expected = np.linalg.solve(B, form.A)
    for idx, row in enumerate(final.rows[:-1]):
        assert row.coefficients == pytest.approx(list(expected[idx]), abs=1e-9)
        assert row.basis == form.get_variable_name(solution.basic_variables[idx])
    # Reduced costs of the optimal basis are non-negative in minimisation sense.
    assert min(final.rows[-1].coefficients) >= -1e-9


def test_solution_vector_satisfies_equality_form():
    problem = generate_random_problem(4, 3, 2)
    form = to_canonical(problem)
    solution = revised_simplex_solve(form, SolveOptions())

    x = np.asarray(solution.x)
    assert form.A @ x == pytest.approx(form.b, abs=1e-9)
    assert np.all(x >= 0)
