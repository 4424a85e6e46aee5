from __future__ import annotations

import heapq
import itertools
import logging
import math
from collections import namedtuple
from typing import List, Optional, Tuple

import numpy as np

from ..canonical import CanonicalForm
from ..lp.utils import NUMERICAL_ERRORS, Deadline, TraceRecorder, build_solution, error_solution
from ..schemas import SolveOptions, Solution

logger = logging.getLogger(__name__)

ALGORITHM = "knapsack"

Item = namedtuple("Item", ["column", "value", "weight", "ratio"])


class _KnapsackNode:
    def __init__(self, level: int, value: float, weight: float, bound: float, taken: Tuple[int, ...]):
        self.level = level
        self.value = value
        self.weight = weight
        self.bound = bound
        self.taken = taken

    def __repr__(self) -> str:
        return f"Node(L:{self.level}, V:{self.value:g}, W:{self.weight:g}, B:{self.bound:.2f})"


def knapsack_items(form: CanonicalForm) -> Tuple[List[Item], float]:
    """
    Extract (items, capacity) from ``max sum v_j x_j s.t. sum w_j x_j <= W``
    over binary variables. Raises ValueError when the form has another shape.
    """

    if not form.is_maximization:
        raise ValueError("Knapsack solver requires a maximisation objective.")
    if not form.variable_map or any(mapping.kind != "bin" for mapping in form.variable_map):
        raise ValueError("Knapsack solver requires every variable to be binary.")
    if form.constraint_count != 1 or form.row_relations[0] != "<=":
        raise ValueError("Knapsack solver requires exactly one <= constraint.")

    capacity = float(form.b[0])
    if capacity < 0:
        raise ValueError("Knapsack capacity must be non-negative.")

    items: List[Item] = []
    for mapping in form.variable_map:
        column = mapping.columns[0]
        value = -float(form.c[column])
        weight = float(form.A[0, column])
        if weight < 0:
            raise ValueError(f"Item {mapping.name} has negative weight {weight:g}.")
        ratio = value / weight if weight > 0 else math.inf
        items.append(Item(column=column, value=value, weight=weight, ratio=ratio))
    return items, capacity


def fractional_bound(node: _KnapsackNode, capacity: float, items: List[Item]) -> float:
    """Greedy fractional-knapsack bound over the items below ``node.level``."""
    if node.weight > capacity:
        return 0.0
    bound_value = node.value
    remaining = capacity - node.weight
    for item in items[node.level + 1:]:
        if item.value <= 0:
            break
        if item.weight <= remaining:
            remaining -= item.weight
            bound_value += item.value
        else:
            bound_value += item.value * remaining / item.weight
            break
    return bound_value


def knapsack_solve(form: CanonicalForm, opts: Optional[SolveOptions] = None) -> Solution:
    """
    Best-first branch-and-bound for the 0/1 knapsack problem, exploring items
    in decreasing value/weight order with the fractional-knapsack bound.
    """

    opts = opts or SolveOptions()
    try:
        items, capacity = knapsack_items(form)
    except ValueError as exc:
        logger.info("Knapsack solver rejected problem: %s", exc)
        return build_solution(form, "error", ALGORITHM, message=str(exc))

    trace = TraceRecorder([], record_tableaux=False)
    try:
        return _search(form, items, capacity, opts, trace)
    except NUMERICAL_ERRORS as exc:
        return error_solution(form, ALGORITHM, exc, trace.records)


def _search(
    form: CanonicalForm,
    items: List[Item],
    capacity: float,
    opts: SolveOptions,
    trace: TraceRecorder,
) -> Solution:
    tol = opts.tol
    ordered = sorted(items, key=lambda item: (-item.ratio, item.column))
    n = len(ordered)
    deadline = Deadline(opts.time_limit)
    counter = itertools.count()

    root = _KnapsackNode(level=-1, value=0.0, weight=0.0, bound=0.0, taken=())
    root.bound = fractional_bound(root, capacity, ordered)
    queue: List = [(-root.bound, next(counter), root)]

    best_value = 0.0
    best_taken: Tuple[int, ...] = ()
    visited = 0
    stop_reason: Optional[str] = None

    while queue:
        if visited >= opts.max_nodes:
            stop_reason = f"Node limit of {opts.max_nodes} reached."
            break
        if deadline.expired():
            stop_reason = "Time limit reached."
            break

        _, _, node = heapq.heappop(queue)
        visited += 1
        if node.bound <= best_value + tol or node.level + 1 == n:
            continue

        item = ordered[node.level + 1]
        name = form.get_variable_name(item.column)
        trace.add(
            f"{node!r}: branch on {name} (value {item.value:g}, weight {item.weight:g})",
            kind="item",
            iteration=visited,
            column=item.column,
            bound=float(node.bound),
            best=float(best_value),
        )

        if node.weight + item.weight <= capacity + tol and item.value > 0:
            include = _KnapsackNode(
                level=node.level + 1,
                value=node.value + item.value,
                weight=node.weight + item.weight,
                bound=0.0,
                taken=node.taken + (item.column,),
            )
            include.bound = fractional_bound(include, capacity, ordered)
            if include.value > best_value + tol:
                best_value, best_taken = include.value, include.taken
                logger.debug("New best knapsack value %.6g with %s", best_value, include.taken)
            if include.bound > best_value + tol:
                heapq.heappush(queue, (-include.bound, next(counter), include))

        exclude = _KnapsackNode(
            level=node.level + 1,
            value=node.value,
            weight=node.weight,
            bound=0.0,
            taken=node.taken,
        )
        exclude.bound = fractional_bound(exclude, capacity, ordered)
        if exclude.bound > best_value + tol:
            heapq.heappush(queue, (-exclude.bound, next(counter), exclude))

    x = np.zeros(form.total_variable_count, dtype=float)
    for column in best_taken:
        x[column] = 1.0
    used = float(sum(form.A[0, column] for column in best_taken))
    if form.row_slack[0] is not None:
        x[form.row_slack[0]] = capacity - used

    status = "optimal" if stop_reason is None else "max_iterations"
    message = f"Visited nodes: {visited}."
    if stop_reason is not None:
        message = f"{stop_reason} Returning best selection. {message}"
        logger.warning("Knapsack search stopped early: %s", stop_reason)
    trace.add(
        f"Best selection: value {best_value:g}, weight {used:g} of {capacity:g}",
        kind="item",
        is_optimal=status == "optimal",
        is_final=True,
        iteration=visited,
    )
    logger.info("Knapsack %s after %d nodes, value=%.6g", status, visited, best_value)
    return build_solution(
        form, status, ALGORITHM,
        x=x, iterations=trace.records, message=message,
    )
