"""Startup checks of the callback contract.

An engine allocates its sparse storage from the counts returned by
``describe_dimensions`` and then trusts every later answer to fit in it. A
count that disagrees with the data is therefore a fatal configuration error,
and is checked once here before any solve rather than on every callback.

The derivative check compares the hand-written derivatives against JAX
automatic differentiation of the objective and the constraints.
"""

import logging
from typing import Optional

import equinox as eqx
import jax
import jax.numpy as jnp
import numpy as np

from hs071_jax.types import (
    LOWER_BOUND_INF,
    UPPER_BOUND_INF,
    IndexStyle,
    NLPProblem,
    ProblemInfo,
    Sparsity,
)
from hs071_jax.utils import triplet_to_dense

logger = logging.getLogger(__name__)


class ContractViolationError(ValueError):
    """Declared dimensions or sparsity disagree with the problem data."""

    def __init__(self, violations: list[str]):
        self.violations = list(violations)
        message = "Problem violates the callback contract:\n" + "\n".join(
            f"  - {v}" for v in self.violations
        )
        super().__init__(message)


def _check_shape(errors: list[str], name: str, value, expected: tuple) -> bool:
    shape = np.shape(value)
    if shape != expected:
        errors.append(f"{name} has shape {shape}, expected {expected}")
        return False
    return True


def _check_bound_order(errors: list[str], name: str, lower, upper) -> None:
    lower = np.where(np.asarray(lower) <= LOWER_BOUND_INF, -np.inf, lower)
    upper = np.where(np.asarray(upper) >= UPPER_BOUND_INF, np.inf, upper)
    for i in np.flatnonzero(~(lower <= upper)):
        errors.append(f"{name}[{i}]: lower bound {lower[i]} exceeds upper bound {upper[i]}")


def _check_structure(
    errors: list[str],
    name: str,
    structure: Sparsity,
    nnz: int,
    n_rows: int,
    n_cols: int,
    base: int,
    lower_triangle: bool = False,
) -> None:
    rows = np.asarray(structure.rows)
    cols = np.asarray(structure.cols)
    if not (
        _check_shape(errors, f"{name} rows", rows, (nnz,))
        and _check_shape(errors, f"{name} cols", cols, (nnz,))
    ):
        return
    if np.any((rows < base) | (rows >= n_rows + base)):
        errors.append(f"{name} row indices out of range [{base}, {n_rows + base})")
    if np.any((cols < base) | (cols >= n_cols + base)):
        errors.append(f"{name} column indices out of range [{base}, {n_cols + base})")
    if lower_triangle and np.any(cols > rows):
        errors.append(f"{name} has entries above the diagonal")
    if len(set(zip(rows.tolist(), cols.tolist()))) != nnz:
        errors.append(f"{name} has duplicate entries")


def check_contract(problem: NLPProblem) -> ProblemInfo:
    """Verify that every callback agrees with the declared dimensions.

    Args:
        problem: Object implementing the ``NLPProblem`` callbacks.

    Returns:
        The validated ``ProblemInfo``.

    Raises:
        ContractViolationError: If any mismatch is found. All mismatches are
            collected and reported together.
    """
    info = problem.describe_dimensions()
    errors: list[str] = []
    n, m = info.n, info.m

    if info.index_style not in (IndexStyle.C, IndexStyle.FORTRAN):
        errors.append(f"unknown index style {info.index_style}")
    base = 1 if info.index_style == IndexStyle.FORTRAN else 0

    bounds = problem.bounds()
    if _check_shape(errors, "x_lower", bounds.x_lower, (n,)) & _check_shape(
        errors, "x_upper", bounds.x_upper, (n,)
    ):
        _check_bound_order(errors, "x", bounds.x_lower, bounds.x_upper)
    if _check_shape(errors, "g_lower", bounds.g_lower, (m,)) & _check_shape(
        errors, "g_upper", bounds.g_upper, (m,)
    ):
        _check_bound_order(errors, "g", bounds.g_lower, bounds.g_upper)

    _check_structure(
        errors,
        "Jacobian structure",
        problem.constraint_jacobian_structure(),
        info.nnz_jac,
        m,
        n,
        base,
    )
    _check_structure(
        errors,
        "Hessian structure",
        problem.lagrangian_hessian_structure(),
        info.nnz_hess,
        n,
        n,
        base,
        lower_triangle=True,
    )

    x0 = problem.starting_point()
    if np.dtype(x0.dtype) != np.float64:
        errors.append(
            f"starting point has dtype {x0.dtype}, expected float64 "
            "(is jax_enable_x64 switched off?)"
        )
    if _check_shape(errors, "starting point", x0, (n,)):
        _check_shape(errors, "objective", problem.objective(x0), ())
        _check_shape(errors, "objective gradient", problem.objective_gradient(x0), (n,))
        _check_shape(errors, "constraints", problem.constraints(x0), (m,))
        _check_shape(
            errors,
            "Jacobian values",
            problem.constraint_jacobian_values(x0),
            (info.nnz_jac,),
        )
        _check_shape(
            errors,
            "Hessian values",
            problem.lagrangian_hessian_values(1.0, x0, jnp.zeros(m, dtype=x0.dtype)),
            (info.nnz_hess,),
        )

    if errors:
        raise ContractViolationError(errors)
    logger.debug("Callback contract verified: %s", info)
    return info


class DerivativeReport(eqx.Module):
    """Largest relative errors of the hand-written derivatives.

    Each error is ``max |analytic - reference| / (1 + |reference|)`` over the
    entries, with the reference computed by automatic differentiation.
    """

    gradient_error: float
    jacobian_error: float
    hessian_error: float

    def ok(self, tol: float = 1e-8) -> bool:
        return max(self.gradient_error, self.jacobian_error, self.hessian_error) <= tol


def _relative_error(analytic, reference) -> float:
    analytic = np.asarray(analytic, dtype=float)
    reference = np.asarray(reference, dtype=float)
    return float(np.max(np.abs(analytic - reference) / (1.0 + np.abs(reference))))


def check_derivatives(
    problem: NLPProblem,
    x,
    lambda_: Optional[jax.Array] = None,
    obj_factor: float = 1.0,
) -> DerivativeReport:
    """Compare the analytic derivatives at ``x`` with JAX autodiff.

    Args:
        problem: Object implementing the ``NLPProblem`` callbacks.
        x: Point at which to compare.
        lambda_: Constraint multipliers for the Hessian check. Defaults to
            all ones, so that every constraint contributes.
        obj_factor: Objective factor for the Hessian check.

    Returns:
        A ``DerivativeReport`` with the largest error of each derivative.
    """
    info = problem.describe_dimensions()
    x = jnp.asarray(x)
    if lambda_ is None:
        lambda_ = jnp.ones(info.m, dtype=x.dtype)
    shape_jac = (info.m, info.n)
    shape_hess = (info.n, info.n)

    ref_grad = jax.grad(problem.objective)(x)
    ref_jac = jax.jacfwd(problem.constraints)(x)

    def lagrangian(z):
        return obj_factor * problem.objective(z) + jnp.dot(lambda_, problem.constraints(z))

    ref_hess = jax.hessian(lagrangian)(x)

    jac = triplet_to_dense(
        problem.constraint_jacobian_structure(),
        problem.constraint_jacobian_values(x),
        shape_jac,
        index_style=info.index_style,
    )
    hess = triplet_to_dense(
        problem.lagrangian_hessian_structure(),
        problem.lagrangian_hessian_values(obj_factor, x, lambda_),
        shape_hess,
        symmetric=True,
        index_style=info.index_style,
    )

    report = DerivativeReport(
        gradient_error=_relative_error(problem.objective_gradient(x), ref_grad),
        jacobian_error=_relative_error(jac, ref_jac),
        hessian_error=_relative_error(hess, ref_hess),
    )
    logger.debug("Derivative check at %s: %s", np.asarray(x), report)
    return report
