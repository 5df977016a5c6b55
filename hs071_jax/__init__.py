"""HS071-JAX: the Hock-Schittkowski problem 71 for external NLP engines.

This package provides the data and closed-form derivatives of HS071 through
the callback contract of an interior-point / SQP engine such as IPOPT:
dimensions, bounds, a starting point, and evaluators for the objective, its
gradient, the constraints, the sparse constraint Jacobian and the sparse
lower triangle of the Hessian of the Lagrangian. The evaluators are JAX
functions checked at runtime with jaxtyping and beartype.
"""

import jax

# The engines work in double precision; single-precision callbacks stall them.
jax.config.update("jax_enable_x64", True)

from hs071_jax.engine import (  # noqa: E402
    EngineBridge,
    SolveOptions,
    estimate_multipliers,
    solve_with_ipopt,
    solve_with_scipy,
)
from hs071_jax.problem import HS071, HS071_INFO  # noqa: E402
from hs071_jax.solution import (  # noqa: E402
    Solution,
    SolverReturn,
    describe_status,
    format_solution,
)
from hs071_jax.types import (  # noqa: E402
    Bounds,
    IndexStyle,
    NLPProblem,
    ProblemInfo,
    Sparsity,
)
from hs071_jax.utils import triplet_to_dense  # noqa: E402
from hs071_jax.validation import (  # noqa: E402
    ContractViolationError,
    DerivativeReport,
    check_contract,
    check_derivatives,
)

__all__ = [
    # Problem
    "HS071",
    "HS071_INFO",
    # Types
    "NLPProblem",
    "ProblemInfo",
    "Bounds",
    "Sparsity",
    "IndexStyle",
    # Solution
    "Solution",
    "SolverReturn",
    "describe_status",
    "format_solution",
    # Validation
    "ContractViolationError",
    "DerivativeReport",
    "check_contract",
    "check_derivatives",
    # Engines
    "EngineBridge",
    "SolveOptions",
    "estimate_multipliers",
    "solve_with_ipopt",
    "solve_with_scipy",
    # Utilities
    "triplet_to_dense",
]
