import logging

from mcp.server.fastmcp import FastMCP

from .engine import solve
from .schemas import Algorithm, Problem, SolveOptions
from .sensitivity import SensitivityAnalysis, generate_dual

mcp = FastMCP("LP Optimizer")


@mcp.tool()
def solve_problem(
    problem: Problem,
    algorithm: Algorithm = "primal_simplex",
    options: SolveOptions | None = None,
) -> dict:
    "Solve an LP/MILP with the chosen algorithm and return the solution dict with its iteration trace."
    return solve(problem, algorithm, options or SolveOptions()).model_dump()


@mcp.tool()
def sensitivity_report(problem: Problem, options: SolveOptions | None = None) -> dict:
    "Solve the LP relaxation and report reduced costs, shadow prices and ranging intervals."
    opts = options or SolveOptions(record_tableaux=False)
    solution = solve(problem, "primal_simplex", opts)
    report = SensitivityAnalysis(solution, opts).summary()
    report["status"] = solution.status
    return report


@mcp.tool()
def dual_problem(problem: Problem) -> dict:
    "Generate the dual of a linear program."
    return generate_dual(problem).model_dump()


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    mcp.run()


if __name__ == "__main__":
    # Allow: `mcp dev src/lp_optimizer/server.py` or run as a stdio server
    main()
