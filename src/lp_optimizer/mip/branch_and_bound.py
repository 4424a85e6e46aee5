from __future__ import annotations

import heapq
import logging
import math
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from ..canonical import CanonicalForm
from ..lp.revised import revised_simplex_solve
from ..lp.tableau import primal_simplex_solve
from ..lp.utils import (
    NUMERICAL_ERRORS,
    Deadline,
    TraceRecorder,
    build_solution,
    error_solution,
    fractional_columns,
    fractional_part,
)
from ..schemas import SolveOptions, Solution

logger = logging.getLogger(__name__)

ALGORITHM = "branch_and_bound"

# Integrality test for relaxation values; reported integer values are snapped exactly.
INTEGRALITY_TOL = 1e-6

RELAXATIONS: Dict[str, Callable[[CanonicalForm, SolveOptions], Solution]] = {
    "primal_simplex": primal_simplex_solve,
    "revised_simplex": revised_simplex_solve,
}


@dataclass
class BranchNode:
    """
    One node of the search tree. ``form`` already contains every bound row
    on the path from the root; ``parent`` is an index into the node arena.
    ``bound`` and ``objective`` are in minimisation sense.
    """

    id: int
    form: CanonicalForm
    parent: Optional[int]
    depth: int
    bound: float
    branch_column: Optional[int] = None
    branch_direction: Optional[str] = None
    branch_value: Optional[float] = None
    status: str = "active"
    fathom_reason: Optional[str] = None
    objective: Optional[float] = None

    def label(self) -> str:
        if self.branch_column is None:
            return f"Node {self.id} (root)"
        name = self.form.get_variable_name(self.branch_column)
        return f"Node {self.id} ({name} {self.branch_direction} {self.branch_value:g}, depth {self.depth})"


class _Worklist:
    """Best-first heap keyed by (parent bound, node id) or a depth-first stack."""

    def __init__(self, selection: str) -> None:
        self.best_first = selection == "best_first"
        self._items: List = []

    def __bool__(self) -> bool:
        return bool(self._items)

    def push(self, node: BranchNode) -> None:
        if self.best_first:
            heapq.heappush(self._items, (node.bound, node.id, node))
        else:
            self._items.append(node)

    def pop(self) -> BranchNode:
        if self.best_first:
            return heapq.heappop(self._items)[2]
        return self._items.pop()


def branch_and_bound_solve(form: CanonicalForm, opts: Optional[SolveOptions] = None) -> Solution:
    """
    LP-based branch-and-bound over integer and binary columns.

    Every branch appends a real bound row (x_j <= floor or x_j >= ceil) to a
    copy of the parent's form. Problems without integer columns are solved
    directly by the configured relaxation.
    """

    opts = opts or SolveOptions()
    relax = RELAXATIONS[opts.relaxation]
    if not form.integer_columns():
        solution = relax(form, opts)
        note = "No integer columns; solved as a linear program."
        return solution.model_copy(
            update={"algorithm": ALGORITHM, "message": f"{note} {solution.message}".strip()}
        )

    trace = TraceRecorder([], record_tableaux=False)
    try:
        return _search(form, opts, relax, trace)
    except NUMERICAL_ERRORS as exc:
        return error_solution(form, ALGORITHM, exc, trace.records, trace.pivots)


def _search(
    form: CanonicalForm,
    opts: SolveOptions,
    relax: Callable[[CanonicalForm, SolveOptions], Solution],
    trace: TraceRecorder,
) -> Solution:
    tol = opts.tol
    int_tol = max(tol, INTEGRALITY_TOL)
    integer_columns = form.integer_columns()
    node_opts = opts.model_copy(update={"record_tableaux": False, "time_limit": None})
    deadline = Deadline(opts.time_limit)

    arena: List[BranchNode] = [
        BranchNode(id=0, form=with_binary_bounds(form), parent=None, depth=0, bound=-math.inf)
    ]
    worklist = _Worklist(opts.node_selection)
    worklist.push(arena[0])

    incumbent: Optional[Tuple[float, BranchNode, Solution, np.ndarray]] = None
    explored = 0
    stop_reason: Optional[str] = None
    unresolved: List[int] = []

    while worklist:
        if explored >= opts.max_nodes:
            stop_reason = f"Node limit of {opts.max_nodes} reached."
            break
        if deadline.expired():
            stop_reason = "Time limit reached."
            break

        node = worklist.pop()
        if incumbent is not None and node.bound >= incumbent[0] - tol:
            _fathom(node, "bound")
            _record_node(trace, node, explored, "pruned by incumbent before solving")
            continue

        explored += 1
        lp = relax(node.form, node_opts)
        trace.pivots += lp.pivots

        if lp.status == "infeasible":
            _fathom(node, "infeasible")
            _record_node(trace, node, explored, "relaxation infeasible")
            continue
        if lp.status == "unbounded":
            _fathom(node, "unbounded")
            _record_node(trace, node, explored, "relaxation unbounded", is_final=True)
            logger.info("%s: relaxation unbounded; integer program reported unbounded", node.label())
            return build_solution(
                node.form, "unbounded", ALGORITHM,
                iterations=trace.records, pivots=trace.pivots,
                message="LP relaxation unbounded; integer program appears unbounded.",
            )
        if lp.status == "error":
            _fathom(node, "error")
            _record_node(trace, node, explored, "relaxation failed", is_final=True)
            logger.error("%s: relaxation failed (%s)", node.label(), lp.message)
            return build_solution(
                node.form, "error", ALGORITHM,
                iterations=trace.records, pivots=trace.pivots,
                message=f"Relaxation of {node.label()} failed: {lp.message}",
            )
        if lp.status != "optimal" or lp.x is None:
            # The subtree below this node is left unexplored, so optimality is unproven.
            _fathom(node, f"relaxation {lp.status}")
            unresolved.append(node.id)
            logger.warning("%s: relaxation ended with status %s (%s)", node.label(), lp.status, lp.message)
            _record_node(trace, node, explored, f"relaxation ended with status {lp.status}")
            continue

        x = np.asarray(lp.x, dtype=float)
        z = float(node.form.c @ x)
        node.objective = z
        if incumbent is not None and z >= incumbent[0] - tol:
            _fathom(node, "bound")
            _record_node(trace, node, explored, f"bound {_report(node.form, z):g} no better than incumbent")
            continue

        fractional = fractional_columns(x, integer_columns, int_tol)
        if not fractional:
            node.status = "integer"
            snapped = x.copy()
            for col in integer_columns:
                snapped[col] = float(round(snapped[col]))
            z = float(node.form.c @ snapped)
            node.objective = z
            if incumbent is None or z < incumbent[0] - tol:
                incumbent = (z, node, lp, snapped)
                logger.info("%s: new incumbent z=%.6g", node.label(), _report(node.form, z))
            _record_node(trace, node, explored, f"integer solution z={_report(node.form, z):g}")
            continue

        column = select_branching_column(x, fractional)
        value = float(x[column])
        node.status = "branched"
        _record_node(
            trace, node, explored,
            f"z={_report(node.form, z):g}, branch on {node.form.get_variable_name(column)} = {value:g}",
        )
        children = _branch(node, column, value, len(arena))
        arena.extend(children)
        if worklist.best_first:
            for child in children:
                worklist.push(child)
        else:
            # Floor child is explored first.
            for child in reversed(children):
                worklist.push(child)

    if unresolved and stop_reason is None:
        stop_reason = f"Relaxation iteration limit reached at node(s) {unresolved}."

    if incumbent is None:
        if stop_reason is not None:
            logger.warning("Branch-and-bound stopped without an incumbent: %s", stop_reason)
            trace.add(stop_reason, kind="node", is_final=True, iteration=explored)
            return build_solution(
                form, "max_iterations", ALGORITHM,
                iterations=trace.records, pivots=trace.pivots,
                message=f"{stop_reason} No integer solution found.",
            )
        logger.info("Branch-and-bound exhausted %d nodes without an integer solution", explored)
        trace.add("Search exhausted: infeasible", kind="node", is_final=True, iteration=explored)
        return build_solution(
            form, "infeasible", ALGORITHM,
            iterations=trace.records, pivots=trace.pivots,
            message="No feasible integer assignment found.",
        )

    z, best_node, best_lp, snapped = incumbent
    status = "optimal" if stop_reason is None else "max_iterations"
    message = f"Explored nodes: {explored}."
    if stop_reason is not None:
        message = f"{stop_reason} Returning best incumbent. {message}"
        logger.warning("Branch-and-bound stopped early: %s", stop_reason)
    trace.add(
        f"Best integer solution from node {best_node.id}: z={_report(best_node.form, z):g}",
        kind="node",
        is_optimal=status == "optimal",
        is_final=True,
        iteration=explored,
        node=best_node.id,
    )
    logger.info("Branch-and-bound %s after %d nodes, z=%.6g", status, explored, _report(best_node.form, z))
    return build_solution(
        best_node.form, status, ALGORITHM,
        x=snapped, basis=best_lp.basic_variables,
        iterations=trace.records, pivots=trace.pivots, message=message,
    )


def with_binary_bounds(form: CanonicalForm) -> CanonicalForm:
    """Materialise x_j <= 1 for every binary column."""
    for col in form.binary_columns():
        form = form.extend(form.bound_row(col), "<=", 1.0, name=f"{form.get_variable_name(col)}<=1")
    return form


def select_branching_column(x: np.ndarray, fractional: List[int]) -> int:
    """Fractional part closest to 0.5; ties go to the lowest column index."""
    return min(fractional, key=lambda col: (round(abs(fractional_part(x[col]) - 0.5), 9), col))


def _branch(node: BranchNode, column: int, value: float, next_id: int) -> List[BranchNode]:
    name = node.form.get_variable_name(column)
    children = []
    for offset, (direction, bound) in enumerate((("<=", math.floor(value)), (">=", math.ceil(value)))):
        child_form = node.form.extend(
            node.form.bound_row(column), direction, float(bound), name=f"{name}{direction}{bound}"
        )
        children.append(
            BranchNode(
                id=next_id + offset,
                form=child_form,
                parent=node.id,
                depth=node.depth + 1,
                bound=node.objective if node.objective is not None else -math.inf,
                branch_column=column,
                branch_direction=direction,
                branch_value=float(bound),
            )
        )
    return children


def _fathom(node: BranchNode, reason: str) -> None:
    node.status = "fathomed"
    node.fathom_reason = reason


def _report(form: CanonicalForm, z: float) -> float:
    return -z if form.is_maximization else z


def _record_node(
    trace: TraceRecorder,
    node: BranchNode,
    explored: int,
    outcome: str,
    is_final: bool = False,
) -> None:
    logger.debug("%s: %s", node.label(), outcome)
    trace.add(
        f"{node.label()}: {outcome}",
        kind="node",
        is_final=is_final,
        iteration=explored,
        node=node.id,
        parent=node.parent,
        depth=node.depth,
        status=node.status,
        fathom_reason=node.fathom_reason,
        objective=None if node.objective is None else _report(node.form, node.objective),
    )
