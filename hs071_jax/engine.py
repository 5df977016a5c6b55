"""Bridges handing the problem to external optimization engines.

The engines own the algorithm; the bridges only translate between their
``numpy`` callbacks and the JAX evaluators of the problem, and collect the
terminal values for ``finalize``.

Two engines are supported:

1. IPOPT through ``cyipopt`` (optional extra ``ipopt``). Its callback object
   is exactly ``EngineBridge``.
2. ``scipy.optimize.minimize`` with ``SLSQP`` (analytic gradient and
   constraint Jacobian) or ``trust-constr`` (additionally the Hessian of the
   Lagrangian). SciPy does not report multipliers in the IPOPT convention,
   so they are estimated from the stationarity condition at the solution.

Both sparsity structures are queried once, when the bridge is built, before
any value is requested; every later call only evaluates values.
"""

import logging
from typing import Optional

import equinox as eqx
import jax.numpy as jnp
import numpy as np
from scipy.optimize import Bounds as ScipyBounds
from scipy.optimize import NonlinearConstraint
from scipy.optimize import minimize as scipy_minimize

from hs071_jax.solution import Solution, SolverReturn
from hs071_jax.types import (
    LOWER_BOUND_INF,
    UPPER_BOUND_INF,
    Bounds,
    NLPProblem,
    Sparsity,
)
from hs071_jax.utils import triplet_to_dense
from hs071_jax.validation import check_contract

logger = logging.getLogger(__name__)

SCIPY_METHODS = ("SLSQP", "trust-constr")


class SolveOptions(eqx.Module):
    """Engine configuration.

    Attributes:
        tol: Convergence tolerance passed to the engine.
        max_iter: Maximum number of engine iterations.
        print_level: Engine verbosity (IPOPT print level; scipy prints when
            positive).
        method: SciPy method, one of ``SCIPY_METHODS``. Ignored by IPOPT.
        active_tol: Tolerance for treating a bound or constraint as active
            when estimating multipliers.
    """

    tol: float = 1e-8
    max_iter: int = 3000
    print_level: int = 0
    method: str = eqx.field(static=True, default="SLSQP")
    active_tol: float = 1e-6

    def __check_init__(self):
        if self.method not in SCIPY_METHODS:
            raise ValueError(
                f"Unknown scipy method {self.method!r}, expected one of {SCIPY_METHODS}."
            )
        if self.tol <= 0 or self.active_tol <= 0:
            raise ValueError("Tolerances must be positive.")
        if self.max_iter < 1:
            raise ValueError("max_iter must be at least 1.")


class EngineBridge:
    """Callback object in the shape ``cyipopt`` expects.

    Converts engine arrays to JAX arrays on the way in and results back to
    ``numpy`` on the way out. Structures are returned 0-based whatever index
    style the problem declared.
    """

    def __init__(self, problem: NLPProblem):
        self.problem = problem
        self.info = problem.describe_dimensions()
        self._jac_structure = self._zero_based(problem.constraint_jacobian_structure())
        self._hess_structure = self._zero_based(problem.lagrangian_hessian_structure())
        self.iterations = 0

    def _zero_based(self, structure: Sparsity) -> tuple[np.ndarray, np.ndarray]:
        base = self.info.index_style
        return (
            np.asarray(structure.rows, dtype=np.int64) - base,
            np.asarray(structure.cols, dtype=np.int64) - base,
        )

    @staticmethod
    def _from_engine(x):
        return jnp.asarray(x, dtype=jnp.float64)

    def objective(self, x):
        return float(self.problem.objective(self._from_engine(x)))

    def gradient(self, x):
        return np.asarray(self.problem.objective_gradient(self._from_engine(x)), dtype=float)

    def constraints(self, x):
        return np.asarray(self.problem.constraints(self._from_engine(x)), dtype=float)

    def jacobianstructure(self):
        return self._jac_structure

    def jacobian(self, x):
        return np.asarray(self.problem.constraint_jacobian_values(self._from_engine(x)), dtype=float)

    def hessianstructure(self):
        return self._hess_structure

    def hessian(self, x, lagrange, obj_factor):
        x = self._from_engine(x)
        lagrange = self._from_engine(lagrange)
        values = self.problem.lagrangian_hessian_values(float(obj_factor), x, lagrange)
        return np.asarray(values, dtype=float)

    def intermediate(
        self,
        alg_mod,
        iter_count,
        obj_value,
        inf_pr,
        inf_du,
        mu,
        d_norm,
        regularization_size,
        alpha_du,
        alpha_pr,
        ls_trials,
    ):
        self.iterations = iter_count
        logger.debug(
            "iter %3d  f=%.8e  inf_pr=%.2e  inf_du=%.2e",
            iter_count,
            obj_value,
            inf_pr,
            inf_du,
        )
        return True

    def dense_jacobian(self, x) -> np.ndarray:
        return triplet_to_dense(
            Sparsity(*self._jac_structure),
            self.jacobian(x),
            (self.info.m, self.info.n),
        )

    def dense_hessian(self, x, lagrange, obj_factor) -> np.ndarray:
        return triplet_to_dense(
            Sparsity(*self._hess_structure),
            self.hessian(x, lagrange, obj_factor),
            (self.info.n, self.info.n),
            symmetric=True,
        )


def _infinite_bounds(bounds: Bounds) -> tuple[np.ndarray, ...]:
    """Bounds as numpy arrays with the sentinels replaced by infinities."""

    def lower(v):
        v = np.asarray(v, dtype=float)
        return np.where(v <= LOWER_BOUND_INF, -np.inf, v)

    def upper(v):
        v = np.asarray(v, dtype=float)
        return np.where(v >= UPPER_BOUND_INF, np.inf, v)

    return (
        lower(bounds.x_lower),
        upper(bounds.x_upper),
        lower(bounds.g_lower),
        upper(bounds.g_upper),
    )


def estimate_multipliers(
    problem: NLPProblem,
    x,
    active_tol: float = 1e-6,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Least-squares multipliers at a primal solution.

    Solves ``grad f + J^T lambda - z_L + z_U = 0`` restricted to the active
    constraints and bounds, with inactive multipliers set to zero.

    Returns:
        ``(z_L, z_U, lambda_)``.
    """
    bridge = EngineBridge(problem)
    n, m = bridge.info.n, bridge.info.m
    x = np.asarray(x, dtype=float)
    x_lo, x_hi, g_lo, g_hi = _infinite_bounds(problem.bounds())

    grad = bridge.gradient(x)
    g = bridge.constraints(x)
    jac = bridge.dense_jacobian(x)

    g_scale = active_tol * (1.0 + np.abs(g))
    x_scale = active_tol * (1.0 + np.abs(x))
    active_g = (np.abs(g - g_lo) <= g_scale) | (np.abs(g - g_hi) <= g_scale)
    at_lower = np.abs(x - x_lo) <= x_scale
    at_upper = (np.abs(x - x_hi) <= x_scale) & ~at_lower

    eye = np.eye(n)
    system = np.hstack([jac[active_g].T, -eye[:, at_lower], eye[:, at_upper]])
    if system.shape[1] == 0:
        return np.zeros(n), np.zeros(n), np.zeros(m)
    y = np.linalg.lstsq(system, -grad, rcond=None)[0]

    k, k_lower = int(active_g.sum()), int(at_lower.sum())
    lambda_ = np.zeros(m)
    z_L = np.zeros(n)
    z_U = np.zeros(n)
    lambda_[active_g] = y[:k]
    z_L[at_lower] = y[k : k + k_lower]
    z_U[at_upper] = y[k + k_lower :]
    return z_L, z_U, lambda_


# IPOPT ApplicationReturnStatus -> SolverReturn
_IPOPT_STATUS = {
    0: SolverReturn.SUCCESS,
    1: SolverReturn.STOP_AT_ACCEPTABLE_POINT,
    2: SolverReturn.LOCAL_INFEASIBILITY,
    3: SolverReturn.STOP_AT_TINY_STEP,
    4: SolverReturn.DIVERGING_ITERATES,
    5: SolverReturn.USER_REQUESTED_STOP,
    6: SolverReturn.FEASIBLE_POINT_FOUND,
    -1: SolverReturn.MAXITER_EXCEEDED,
    -2: SolverReturn.RESTORATION_FAILURE,
    -3: SolverReturn.ERROR_IN_STEP_COMPUTATION,
    -4: SolverReturn.CPUTIME_EXCEEDED,
    -10: SolverReturn.TOO_FEW_DEGREES_OF_FREEDOM,
    -12: SolverReturn.INVALID_OPTION,
    -13: SolverReturn.INVALID_NUMBER_DETECTED,
    -102: SolverReturn.OUT_OF_MEMORY,
}

# scipy SLSQP exit modes -> SolverReturn
_SLSQP_STATUS = {
    0: SolverReturn.SUCCESS,
    2: SolverReturn.TOO_FEW_DEGREES_OF_FREEDOM,
    3: SolverReturn.ERROR_IN_STEP_COMPUTATION,
    4: SolverReturn.LOCAL_INFEASIBILITY,
    5: SolverReturn.ERROR_IN_STEP_COMPUTATION,
    6: SolverReturn.ERROR_IN_STEP_COMPUTATION,
    7: SolverReturn.ERROR_IN_STEP_COMPUTATION,
    8: SolverReturn.STOP_AT_TINY_STEP,
    9: SolverReturn.MAXITER_EXCEEDED,
}

# scipy trust-constr statuses -> SolverReturn; 2 is the xtol stop, a trust
# radius below tolerance, not a first-order optimality certificate
_TRUST_CONSTR_STATUS = {
    0: SolverReturn.MAXITER_EXCEEDED,
    1: SolverReturn.SUCCESS,
    2: SolverReturn.STOP_AT_TINY_STEP,
    3: SolverReturn.USER_REQUESTED_STOP,
}


def scipy_status(method: str, code: int) -> int:
    """Map a scipy termination code of ``method`` onto ``SolverReturn``."""
    table = _SLSQP_STATUS if method == "SLSQP" else _TRUST_CONSTR_STATUS
    return table.get(code, SolverReturn.INTERNAL_ERROR)


def _import_cyipopt():
    try:
        import cyipopt
    except ImportError as err:
        raise ImportError(
            "The IPOPT engine requires cyipopt: pip install 'hs071-jax[ipopt]'"
        ) from err
    return cyipopt


def solve_with_ipopt(
    problem: NLPProblem,
    options: Optional[SolveOptions] = None,
    stream=None,
) -> Solution:
    """Solve with IPOPT and hand the terminal values to ``problem.finalize``.

    Raises:
        ContractViolationError: If the problem fails ``check_contract``.
        ImportError: If ``cyipopt`` is not installed.
    """
    cyipopt = _import_cyipopt()
    options = SolveOptions() if options is None else options
    info = check_contract(problem)
    bridge = EngineBridge(problem)
    bounds = problem.bounds()

    nlp = cyipopt.Problem(
        n=info.n,
        m=info.m,
        problem_obj=bridge,
        lb=np.asarray(bounds.x_lower, dtype=float),
        ub=np.asarray(bounds.x_upper, dtype=float),
        cl=np.asarray(bounds.g_lower, dtype=float),
        cu=np.asarray(bounds.g_upper, dtype=float),
    )
    nlp.add_option("tol", float(options.tol))
    nlp.add_option("max_iter", int(options.max_iter))
    nlp.add_option("print_level", int(options.print_level))
    nlp.add_option("nlp_upper_bound_inf", UPPER_BOUND_INF)
    nlp.add_option("nlp_lower_bound_inf", LOWER_BOUND_INF)

    logger.info("Solving with IPOPT (tol=%g, max_iter=%d)", options.tol, options.max_iter)
    x, result = nlp.solve(np.asarray(problem.starting_point(), dtype=float))
    status = _IPOPT_STATUS.get(result["status"], SolverReturn.INTERNAL_ERROR)
    logger.info("IPOPT returned %d: %s", result["status"], result["status_msg"])

    solution = Solution(
        x=np.asarray(x, dtype=float),
        z_L=np.asarray(result["mult_x_L"], dtype=float),
        z_U=np.asarray(result["mult_x_U"], dtype=float),
        g=np.asarray(result["g"], dtype=float),
        lambda_=np.asarray(result["mult_g"], dtype=float),
        obj_value=float(result["obj_val"]),
        status=status,
    )
    problem.finalize(solution, stream=stream)
    return solution


def _slsqp_constraints(bridge: EngineBridge, g_lo, g_hi) -> list[dict]:
    # SLSQP wants "eq" as c(x) = 0 and "ineq" as c(x) >= 0
    constraints = []
    for i in range(bridge.info.m):
        if g_lo[i] == g_hi[i]:
            constraints.append(
                {
                    "type": "eq",
                    "fun": lambda x, i=i: bridge.constraints(x)[i] - g_lo[i],
                    "jac": lambda x, i=i: bridge.dense_jacobian(x)[i],
                }
            )
            continue
        if np.isfinite(g_lo[i]):
            constraints.append(
                {
                    "type": "ineq",
                    "fun": lambda x, i=i: bridge.constraints(x)[i] - g_lo[i],
                    "jac": lambda x, i=i: bridge.dense_jacobian(x)[i],
                }
            )
        if np.isfinite(g_hi[i]):
            constraints.append(
                {
                    "type": "ineq",
                    "fun": lambda x, i=i: g_hi[i] - bridge.constraints(x)[i],
                    "jac": lambda x, i=i: -bridge.dense_jacobian(x)[i],
                }
            )
    return constraints


def solve_with_scipy(
    problem: NLPProblem,
    options: Optional[SolveOptions] = None,
    stream=None,
) -> Solution:
    """Solve with ``scipy.optimize.minimize`` and finalize the problem.

    Raises:
        ContractViolationError: If the problem fails ``check_contract``.
    """
    options = SolveOptions() if options is None else options
    info = check_contract(problem)
    bridge = EngineBridge(problem)
    x_lo, x_hi, g_lo, g_hi = _infinite_bounds(problem.bounds())
    x0 = np.asarray(problem.starting_point(), dtype=float)
    zeros_m = np.zeros(info.m)

    logger.info(
        "Solving with scipy %s (tol=%g, max_iter=%d)",
        options.method,
        options.tol,
        options.max_iter,
    )
    if options.method == "SLSQP":
        result = scipy_minimize(
            bridge.objective,
            x0,
            jac=bridge.gradient,
            method="SLSQP",
            bounds=ScipyBounds(x_lo, x_hi),
            constraints=_slsqp_constraints(bridge, g_lo, g_hi),
            options={
                "ftol": options.tol,
                "maxiter": options.max_iter,
                "disp": options.print_level > 0,
            },
        )
        status = scipy_status("SLSQP", result.status)
    else:
        constraint = NonlinearConstraint(
            bridge.constraints,
            g_lo,
            g_hi,
            jac=bridge.dense_jacobian,
            hess=lambda x, v: bridge.dense_hessian(x, v, 0.0),
        )
        result = scipy_minimize(
            bridge.objective,
            x0,
            jac=bridge.gradient,
            hess=lambda x: bridge.dense_hessian(x, zeros_m, 1.0),
            method="trust-constr",
            bounds=ScipyBounds(x_lo, x_hi),
            constraints=[constraint],
            options={
                "gtol": options.tol,
                "xtol": options.tol,
                "maxiter": options.max_iter,
                "verbose": min(options.print_level, 3),
            },
        )
        status = scipy_status("trust-constr", result.status)

    if not np.all(np.isfinite(result.x)) or not np.isfinite(result.fun):
        status = SolverReturn.INVALID_NUMBER_DETECTED
    logger.info("scipy returned %d: %s", result.status, result.message)

    x = np.asarray(result.x, dtype=float)
    z_L, z_U, lambda_ = estimate_multipliers(problem, x, options.active_tol)
    solution = Solution(
        x=x,
        z_L=z_L,
        z_U=z_U,
        g=bridge.constraints(x),
        lambda_=lambda_,
        obj_value=bridge.objective(x),
        status=status,
    )
    problem.finalize(solution, stream=stream)
    return solution
