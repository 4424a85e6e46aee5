"""LP Optimizer: simplex, branch-and-bound and cutting-plane solvers with sensitivity analysis."""

from .canonical import CanonicalForm, VariableMapping, to_canonical
from .engine import SOLVERS, solve, solve_canonical
from .errors import (
    ConstraintViolation,
    DimensionMismatch,
    InvalidCut,
    InvalidProblem,
    NumericalDegeneracy,
    OptimizerError,
)
from .schemas import Problem, ProblemConstraint, SolveOptions, Solution
from .sensitivity import SensitivityAnalysis, generate_dual

__all__ = [
    "CanonicalForm",
    "VariableMapping",
    "to_canonical",
    "SOLVERS",
    "solve",
    "solve_canonical",
    "ConstraintViolation",
    "DimensionMismatch",
    "InvalidCut",
    "InvalidProblem",
    "NumericalDegeneracy",
    "OptimizerError",
    "Problem",
    "ProblemConstraint",
    "SolveOptions",
    "Solution",
    "SensitivityAnalysis",
    "generate_dual",
]
