#!/usr/bin/env python3
import argparse
import json
import random
from pathlib import Path
from typing import List, Optional

from lp_optimizer.schemas import Problem, ProblemConstraint


def generate_random_problem(
    num_vars: int,
    num_constraints: int,
    seed: Optional[int] = None,
    integer: bool = False,
) -> Problem:
    """Random bounded, feasible problem: max c x, A x <= b with positive data (x = 0 is feasible)."""
    rng = random.Random(seed)
    constraints: List[ProblemConstraint] = []
    for j in range(num_constraints):
        constraints.append(
            ProblemConstraint(
                name=f"c{j + 1}",
                coefficients=[round(rng.uniform(0.5, 5.0), 2) for _ in range(num_vars)],
                relation="<=",
                rhs=round(rng.uniform(num_vars * 2.0, num_vars * 6.0), 2),
            )
        )
    return Problem(
        name=f"random-{'ip' if integer else 'lp'}-{seed}",
        sense="max",
        objective=[round(rng.uniform(1.0, 4.0), 2) for _ in range(num_vars)],
        constraints=constraints,
        variable_kinds=["int" if integer else "nonneg"] * num_vars,
    )


def main() -> None:
    parser = argparse.ArgumentParser(description="Generate random feasible LP/IP instances.")
    parser.add_argument("--vars", type=int, default=3, help="Number of variables")
    parser.add_argument("--constraints", type=int, default=3, help="Number of constraints")
    parser.add_argument("--seed", type=int, default=None, help="Random seed")
    parser.add_argument("--count", type=int, default=1, help="Number of instances")
    parser.add_argument("--integer", action="store_true", help="Declare every variable integer")
    parser.add_argument("--out", type=Path, default=None, help="Optional output file")
    args = parser.parse_args()

    instances = [
        generate_random_problem(args.vars, args.constraints, (args.seed or 0) + idx, args.integer)
        for idx in range(args.count)
    ]
    payload = [instance.model_dump() for instance in instances]

    if args.out:
        Path(args.out).write_text(json.dumps(payload, indent=2))
    else:
        print(json.dumps(payload, indent=2))


if __name__ == "__main__":
    main()
