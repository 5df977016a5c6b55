"""Terminal solution reported by the engine.

The engine owns these values; the problem definition only receives them
once, at finalization, and renders them for a human reader.
"""

import equinox as eqx
import numpy as np
from jaxtyping import Float


class SolverReturn:
    """Termination status of the engine (IPOPT's ``SolverReturn``)."""

    SUCCESS = 0
    MAXITER_EXCEEDED = 1
    CPUTIME_EXCEEDED = 2
    STOP_AT_TINY_STEP = 3
    STOP_AT_ACCEPTABLE_POINT = 4
    LOCAL_INFEASIBILITY = 5
    USER_REQUESTED_STOP = 6
    FEASIBLE_POINT_FOUND = 7
    DIVERGING_ITERATES = 8
    RESTORATION_FAILURE = 9
    ERROR_IN_STEP_COMPUTATION = 10
    INVALID_NUMBER_DETECTED = 11
    TOO_FEW_DEGREES_OF_FREEDOM = 12
    INVALID_OPTION = 13
    OUT_OF_MEMORY = 14
    INTERNAL_ERROR = 15
    UNASSIGNED = 16


_STATUS_MESSAGES = {
    SolverReturn.SUCCESS: (
        "Algorithm terminated successfully at a locally optimal point, "
        "satisfying the convergence tolerances."
    ),
    SolverReturn.MAXITER_EXCEEDED: "Maximum number of iterations exceeded.",
    SolverReturn.CPUTIME_EXCEEDED: "Maximum number of CPU seconds exceeded.",
    SolverReturn.STOP_AT_TINY_STEP: "Algorithm proceeds with very little progress.",
    SolverReturn.STOP_AT_ACCEPTABLE_POINT: (
        "Algorithm stopped at a point that was converged, not to desired "
        "tolerances, but to acceptable tolerances."
    ),
    SolverReturn.LOCAL_INFEASIBILITY: (
        "Algorithm converged to a point of local infeasibility. "
        "Problem may be infeasible."
    ),
    SolverReturn.USER_REQUESTED_STOP: "The user call-back requested a premature termination.",
    SolverReturn.FEASIBLE_POINT_FOUND: "Feasible point for square problem found.",
    SolverReturn.DIVERGING_ITERATES: "It seems that the iterates diverge.",
    SolverReturn.RESTORATION_FAILURE: (
        "Restoration phase failed, algorithm doesn't know how to proceed."
    ),
    SolverReturn.ERROR_IN_STEP_COMPUTATION: (
        "An unrecoverable error occurred while computing the search direction."
    ),
    SolverReturn.INVALID_NUMBER_DETECTED: (
        "Algorithm received an invalid number (such as NaN or Inf) from the NLP."
    ),
    SolverReturn.TOO_FEW_DEGREES_OF_FREEDOM: "Problem has too few degrees of freedom.",
    SolverReturn.INVALID_OPTION: "An invalid option was provided to the engine.",
    SolverReturn.OUT_OF_MEMORY: "Not enough memory.",
    SolverReturn.INTERNAL_ERROR: "An unknown internal error occurred.",
    SolverReturn.UNASSIGNED: "No status was assigned.",
}


def describe_status(status: int) -> str:
    """One-line description of a termination status."""
    try:
        return _STATUS_MESSAGES[status]
    except KeyError:
        raise ValueError(f"Unknown solver status {status}.") from None


class Solution(eqx.Module):
    """Final iterate handed back by the engine.

    Attributes:
        x: Final values of the primal variables.
        z_L: Final lower bound multipliers.
        z_U: Final upper bound multipliers.
        g: Final values of the constraint functions.
        lambda_: Final constraint multipliers.
        obj_value: Final objective value.
        status: Termination status, one of the ``SolverReturn`` constants.
    """

    x: Float[np.ndarray, " n"]
    z_L: Float[np.ndarray, " n"]
    z_U: Float[np.ndarray, " n"]
    g: Float[np.ndarray, " m"]
    lambda_: Float[np.ndarray, " m"]
    obj_value: float
    status: int = eqx.field(static=True, default=SolverReturn.UNASSIGNED)

    @property
    def succeeded(self) -> bool:
        return self.status in (
            SolverReturn.SUCCESS,
            SolverReturn.STOP_AT_ACCEPTABLE_POINT,
        )


def _format_vector(name: str, values) -> list[str]:
    return [f"{name}[{i}] = {float(v):.6e}" for i, v in enumerate(values)]


def format_solution(solution: Solution) -> str:
    """Render a solution as the human-readable summary printed at the end."""
    lines = ["", "", "Solution of the primal variables, x"]
    lines += _format_vector("x", solution.x)
    lines += ["", "", "Solution of the bound multipliers, z_L and z_U"]
    lines += _format_vector("z_L", solution.z_L)
    lines += _format_vector("z_U", solution.z_U)
    lines += ["", "", "Solution of the constraint multipliers, lambda"]
    lines += _format_vector("lambda", solution.lambda_)
    lines += ["", "", "Objective value", f"f(x*) = {float(solution.obj_value):.6e}"]
    lines += ["", "Final value of the constraints:"]
    lines += [f"g({i}) = {float(v):.6e}" for i, v in enumerate(solution.g)]
    lines += ["", f"Status {solution.status}: {describe_status(solution.status)}"]
    return "\n".join(lines)
