class OptimizerError(Exception):
    """Base class for errors raised by the optimization engine."""


class InvalidProblem(OptimizerError):
    """Raised when a problem description cannot be converted to canonical form."""


class DimensionMismatch(InvalidProblem):
    """Raised when a coefficient vector length disagrees with the variable count."""


class InvalidCut(OptimizerError):
    """Raised when no valid cutting plane can be derived from the current tableau."""


class NumericalDegeneracy(OptimizerError):
    """Raised when the simplex revisits a basis even under Bland's rule."""


class ConstraintViolation(OptimizerError):
    """Raised when a post-optimal constraint is violated by the current solution."""

    def __init__(self, message: str, lhs: float, rhs: float) -> None:
        super().__init__(message)
        self.lhs = lhs
        self.rhs = rhs
