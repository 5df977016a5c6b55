import argparse
import logging
from typing import Optional

from hs071_jax.engine import SCIPY_METHODS, SolveOptions, solve_with_ipopt, solve_with_scipy
from hs071_jax.problem import HS071
from hs071_jax.validation import ContractViolationError, check_contract, check_derivatives

logger = logging.getLogger("hs071_jax")


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="python -m hs071_jax")
    p.add_argument("--engine", choices=("scipy", "ipopt"), default="scipy")
    p.add_argument("--method", choices=SCIPY_METHODS, default="SLSQP")
    p.add_argument("--tol", type=float, default=1e-8)
    p.add_argument("--max-iter", type=int, default=3000)
    p.add_argument("--print-level", type=int, default=0)
    p.add_argument("--check-derivatives", action="store_true")
    p.add_argument("-v", "--verbose", action="count", default=0)
    return p


def main(argv: Optional[list[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose > 1 else logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    problem = HS071()
    try:
        check_contract(problem)
    except ContractViolationError as err:
        logger.error("%s", err)
        return 2

    if args.check_derivatives:
        report = check_derivatives(problem, problem.starting_point())
        logger.info("Derivative check: %s", report)
        if not report.ok():
            logger.error("Analytic derivatives disagree with autodiff: %s", report)
            return 2

    options = SolveOptions(
        tol=args.tol,
        max_iter=args.max_iter,
        print_level=args.print_level,
        method=args.method,
    )
    solve = solve_with_ipopt if args.engine == "ipopt" else solve_with_scipy
    try:
        solution = solve(problem, options)
    except ImportError as err:
        logger.error("%s", err)
        return 2
    return 0 if solution.succeeded else 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
