from __future__ import annotations

import math
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Sense = Literal["min", "max"]
Relation = Literal["<=", ">=", "="]
VariableKind = Literal["nonneg", "nonpos", "free", "int", "bin"]
PivotRule = Literal["dantzig", "bland"]
NodeSelection = Literal["best_first", "depth_first"]
Relaxation = Literal["primal_simplex", "revised_simplex"]
Algorithm = Literal[
    "primal_simplex",
    "revised_simplex",
    "branch_and_bound",
    "cutting_plane",
    "knapsack",
]
SolutionStatus = Literal["optimal", "infeasible", "unbounded", "max_iterations", "error"]
RecordKind = Literal["pivot", "phase", "node", "cut", "item"]

INTEGER_KINDS = ("int", "bin")


class ProblemConstraint(BaseModel):
    coefficients: List[float]
    relation: Relation
    rhs: float
    name: Optional[str] = None


class Problem(BaseModel):
    name: str = "problem"
    sense: Sense
    objective: List[float]
    constraints: List[ProblemConstraint] = Field(default_factory=list)
    variable_kinds: List[VariableKind]
    variable_names: Optional[List[str]] = None

    @property
    def variable_count(self) -> int:
        return len(self.variable_kinds)

    @property
    def is_integer_program(self) -> bool:
        return any(kind in INTEGER_KINDS for kind in self.variable_kinds)

    @property
    def is_binary_program(self) -> bool:
        return bool(self.variable_kinds) and all(kind == "bin" for kind in self.variable_kinds)

    def names(self) -> List[str]:
        if self.variable_names is not None:
            return list(self.variable_names)
        return [f"x{idx + 1}" for idx in range(self.variable_count)]

    def constraint_names(self) -> List[str]:
        return [cons.name or f"c{idx + 1}" for idx, cons in enumerate(self.constraints)]


class SolveOptions(BaseModel):
    max_iters: int = 1_000
    tol: float = 1e-9
    pivot_rule: PivotRule = "dantzig"
    max_nodes: int = 1_000
    max_cuts: int = 100
    node_selection: NodeSelection = "best_first"
    relaxation: Relaxation = "primal_simplex"
    refactor_every: int = 50
    record_tableaux: bool = True
    time_limit: Optional[float] = None


class TableauRow(BaseModel):
    basis: str
    coefficients: List[float]
    rhs: float


class IterationRecord(BaseModel):
    iteration: int
    kind: RecordKind = "pivot"
    description: str
    columns: List[str] = Field(default_factory=list)
    rows: List[TableauRow] = Field(default_factory=list)
    is_optimal: bool = False
    is_final: bool = False
    data: Dict[str, Any] = Field(default_factory=dict)


class Solution(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    status: SolutionStatus
    algorithm: str
    objective_value: Optional[float] = None
    x: Optional[List[float]] = None
    values: Optional[Dict[str, float]] = None
    basic_variables: List[int] = Field(default_factory=list)
    nonbasic_variables: List[int] = Field(default_factory=list)
    iterations: List[IterationRecord] = Field(default_factory=list)
    pivots: int = 0
    message: str = ""
    canonical: Optional[Any] = Field(default=None, exclude=True, repr=False)

    @property
    def is_optimal(self) -> bool:
        return self.status == "optimal"


class SensitivityResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    success: bool
    error_message: str = ""
    name: str = ""
    current_value: float = 0.0
    lower_bound: float = -math.inf
    upper_bound: float = math.inf
    description: str = ""
    reduced_cost: Optional[float] = None
    shadow_price: Optional[float] = None
    still_optimal: Optional[bool] = None
    predicted_objective: Optional[float] = None
    reoptimized: Optional[Solution] = None


class ShadowPrice(BaseModel):
    constraint_index: int
    constraint_name: str
    price: float
    slack: float
    binding: bool
    interpretation: str = ""


class DualProblem(BaseModel):
    problem: Problem
    primal_sense: Sense
    variable_signs: List[VariableKind]
    constraint_relations: List[Relation]
