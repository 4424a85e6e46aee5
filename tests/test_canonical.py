import math

import numpy as np
import pytest

from lp_optimizer.canonical import to_canonical
from lp_optimizer.errors import DimensionMismatch, InvalidProblem
from lp_optimizer.schemas import Problem, ProblemConstraint


def make_mixed_problem() -> Problem:
    return Problem(
        name="mixed",
        sense="max",
        objective=[1.0, 2.0, 3.0, 4.0],
        constraints=[
            ProblemConstraint(coefficients=[1.0, 1.0, 1.0, 1.0], relation="<=", rhs=10.0),
            ProblemConstraint(coefficients=[1.0, -1.0, 0.0, 0.0], relation=">=", rhs=-2.0),
            ProblemConstraint(coefficients=[0.0, 0.0, 1.0, 1.0], relation="=", rhs=3.0),
        ],
        variable_kinds=["nonneg", "nonpos", "free", "int"],
        variable_names=["a", "b", "c", "d"],
    )


def test_column_counts_follow_variable_kinds():
    form = to_canonical(make_mixed_problem())

    assert form.structural_count == 5  # free variable splits in two
    assert form.slack_count == 2  # "=" row has no slack
    assert form.total_variable_count == form.structural_count + form.slack_count
    assert form.A.shape == (3, 7)
    assert form.original_variable_count == 4


def test_maximisation_is_negated_and_signs_applied():
    form = to_canonical(make_mixed_problem())

    # a, b (nonpos: negated), c+ , c-, d
    assert list(form.c[:5]) == [-1.0, 2.0, -3.0, 3.0, -4.0]
    assert list(form.A[0, :5]) == [1.0, -1.0, 1.0, -1.0, 1.0]
    assert form.A[0, 5] == 1.0  # slack
    assert form.A[1, 6] == -1.0  # surplus
    assert form.row_slack == [5, 6, None]
    assert form.is_maximization


def test_variable_names_are_total_and_injective():
    form = to_canonical(make_mixed_problem())
    names = [form.get_variable_name(idx) for idx in range(form.total_variable_count)]

    assert names == ["a", "b", "c+", "c-", "d", "s1", "s2"]
    assert len(set(names)) == len(names)
    with pytest.raises(IndexError):
        form.get_variable_name(form.total_variable_count)
    with pytest.raises(IndexError):
        form.get_variable_name(-1)


@pytest.mark.parametrize(
    "names, kinds",
    [
        (["s1", "y"], ["nonneg", "nonneg"]),
        (["x", "s12"], ["free", "int"]),
        (["x", "x+"], ["free", "nonneg"]),
        (["x-", "x"], ["nonneg", "free"]),
    ],
)
def test_names_colliding_with_generated_columns_are_rejected(names, kinds):
    problem = Problem(
        sense="max",
        objective=[1.0, 1.0],
        constraints=[ProblemConstraint(coefficients=[1.0, 1.0], relation="<=", rhs=4.0)],
        variable_kinds=kinds,
        variable_names=names,
    )

    with pytest.raises(InvalidProblem):
        to_canonical(problem)


def test_suffixed_names_are_allowed_without_a_free_variable():
    problem = Problem(
        sense="max",
        objective=[1.0, 1.0],
        constraints=[ProblemConstraint(coefficients=[1.0, 1.0], relation="<=", rhs=4.0)],
        variable_names=["x", "x+"],
        variable_kinds=["nonneg", "nonneg"],
    )
    form = to_canonical(problem)
    names = form.variable_names()

    assert names == ["x", "x+", "s1"]
    assert len(set(names)) == len(names)


def test_reconstruct_undoes_the_variable_map():
    form = to_canonical(make_mixed_problem())
    x = np.array([1.0, 2.0, 0.5, 3.0, 4.0, 0.0, 0.0])

    values = form.reconstruct(x)
    assert values == {"a": 1.0, "b": -2.0, "c": -2.5, "d": 4.0}
    assert form.column_sign(1) == -1.0
    assert form.column_sign(3) == -1.0
    assert form.column_sign(5) == 1.0


def test_extend_returns_a_new_form():
    form = to_canonical(make_mixed_problem())
    row = np.zeros(form.total_variable_count)
    row[0] = 1.0

    extended = form.extend(row, ">=", 1.0, name="bound")

    assert extended is not form
    assert form.A.shape == (3, 7)
    assert extended.A.shape == (4, 8)
    assert extended.A[3, 7] == -1.0
    assert extended.c[7] == 0.0
    assert extended.row_slack[-1] == 7
    assert extended.row_names[-1] == "bound"
    assert extended.get_variable_name(7) == "s3"

    equality = form.extend(row, "=", 1.0)
    assert equality.A.shape == (4, 7)
    assert equality.row_slack[-1] is None


def test_extend_rejects_wrong_width():
    form = to_canonical(make_mixed_problem())
    with pytest.raises(DimensionMismatch):
        form.extend([1.0, 0.0], "<=", 1.0)


@pytest.mark.parametrize(
    "changes",
    [
        {"objective": [1.0, 2.0]},
        {"variable_names": ["a", "b"]},
        {"constraints": [ProblemConstraint(coefficients=[1.0], relation="<=", rhs=1.0)]},
    ],
)
def test_dimension_mismatch_fails_fast(changes):
    problem = make_mixed_problem().model_copy(update=changes)
    with pytest.raises(DimensionMismatch):
        to_canonical(problem)


def test_invalid_problems_are_rejected():
    duplicate = make_mixed_problem().model_copy(update={"variable_names": ["a", "a", "c", "d"]})
    with pytest.raises(InvalidProblem):
        to_canonical(duplicate)

    non_finite = make_mixed_problem().model_copy(update={"objective": [1.0, math.nan, 0.0, 0.0]})
    with pytest.raises(InvalidProblem):
        to_canonical(non_finite)

    empty = Problem(sense="min", objective=[], variable_kinds=[])
    with pytest.raises(DimensionMismatch):
        to_canonical(empty)


def test_integral_columns_include_slacks_of_integer_rows():
    problem = Problem(
        sense="max",
        objective=[1.0, 1.0, 1.0],
        constraints=[
            ProblemConstraint(coefficients=[2.0, 3.0, 0.0], relation="<=", rhs=7.0),
            ProblemConstraint(coefficients=[1.0, 1.0, 0.0], relation="<=", rhs=3.5),
            ProblemConstraint(coefficients=[1.0, 0.0, 1.0], relation="<=", rhs=4.0),
        ],
        variable_kinds=["int", "bin", "nonneg"],
    )
    form = to_canonical(problem)

    assert form.integer_columns() == [0, 1]
    assert form.binary_columns() == [1]
    assert form.integral_columns() == {0, 1, 3}


def test_default_names():
    problem = Problem(
        sense="min",
        objective=[1.0, 1.0],
        constraints=[ProblemConstraint(coefficients=[1.0, 1.0], relation=">=", rhs=1.0)],
        variable_kinds=["nonneg", "nonneg"],
    )
    form = to_canonical(problem)

    assert form.variable_names() == ["x1", "x2", "s1"]
    assert form.row_names == ["c1"]
    assert not problem.is_integer_program


def test_without_rows_keeps_column_indices():
    form = to_canonical(make_mixed_problem())
    reduced = form.without_rows([2])

    assert reduced.constraint_count == 2
    assert reduced.total_variable_count == form.total_variable_count
    assert reduced.row_slack == form.row_slack[:2]
    np.testing.assert_allclose(reduced.A, form.A[:2])
    assert form.constraint_count == 3

    with pytest.raises(InvalidProblem):
        form.without_rows([0])
