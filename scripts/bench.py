#!/usr/bin/env python3
import json
import time
from pathlib import Path

from lp_optimizer.engine import SOLVERS, solve
from lp_optimizer.schemas import Problem, SolveOptions
from scripts.generate_instances import generate_random_problem

LP_ALGORITHMS = ("primal_simplex", "revised_simplex")


def load_example(name: str) -> Problem:
    path = Path(__file__).resolve().parent.parent / "examples" / name
    return Problem.model_validate(json.loads(path.read_text()))


def main() -> None:
    opts = SolveOptions(record_tableaux=False)
    cases = [
        (f"examples/{name}", load_example(name))
        for name in ("production_lp.json", "integer_program.json", "knapsack.json")
    ]
    for seed in range(3):
        cases.append((f"random-lp-{seed}", generate_random_problem(6, 4, seed)))
        cases.append((f"random-ip-{seed}", generate_random_problem(4, 3, seed, integer=True)))

    print("name,algorithm,status,objective,pivots,time_ms")
    for name, problem in cases:
        for algorithm in SOLVERS:
            if problem.is_integer_program == (algorithm in LP_ALGORITHMS):
                continue
            if algorithm == "knapsack" and not problem.is_binary_program:
                continue
            start = time.perf_counter()
            solution = solve(problem, algorithm, opts)
            elapsed_ms = (time.perf_counter() - start) * 1000
            print(
                f"{name},{algorithm},{solution.status},{solution.objective_value},"
                f"{solution.pivots},{elapsed_ms:.2f}"
            )


if __name__ == "__main__":
    main()
