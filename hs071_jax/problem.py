"""Problem definition for Hock-Schittkowski problem 71.

The problem reads:

    minimize    x0 * x3 * (x0 + x1 + x2) + x2
    subject to  x0 * x1 * x2 * x3                >= 25
                x0^2 + x1^2 + x2^2 + x3^2         = 40
                1 <= x0, x1, x2, x3 <= 5

with starting point x = (1, 5, 5, 1) and local solution
x* ~ (1.00000000, 4.74299963, 3.82114998, 1.37940829), f(x*) ~ 17.0140173.

The evaluators are closed-form JAX functions. The Jacobian and the Hessian
of the Lagrangian are reported in sparse triplet form: a structure query
(indices only, independent of x) is answered once by the engine bridge,
then the value queries fill numbers into that fixed structure.
"""

import logging
import sys
from typing import Union

import equinox as eqx
import jax.numpy as jnp
import numpy as np
from beartype import beartype
from jaxtyping import jaxtyped

from hs071_jax.solution import Solution, format_solution
from hs071_jax.types import (
    Bounds,
    ConstraintValues,
    HessianValues,
    IndexStyle,
    JacobianValues,
    Multipliers,
    Point,
    ProblemInfo,
    Scalar,
    Sparsity,
)

logger = logging.getLogger(__name__)

HS071_INFO = ProblemInfo(n=4, m=2, nnz_jac=8, nnz_hess=10, index_style=IndexStyle.C)

X_LOWER = 1.0
X_UPPER = 5.0
# g0 has no upper bound; anything above 1e19 is infinity to the engine
G_LOWER = (25.0, 40.0)
G_UPPER = (2e19, 40.0)
X0 = (1.0, 5.0, 5.0, 1.0)

# The Jacobian is dense: (0,0) (0,1) (0,2) (0,3) (1,0) (1,1) (1,2) (1,3)
_JAC_ROWS, _JAC_COLS = np.divmod(np.arange(HS071_INFO.nnz_jac), HS071_INFO.n)
# The Hessian is dense too, only its lower triangle is reported, row-major
_HESS_ROWS, _HESS_COLS = np.tril_indices(HS071_INFO.n)


@jaxtyped(typechecker=beartype)
def objective(x: Point) -> Scalar:
    """Objective f(x) = x0 * x3 * (x0 + x1 + x2) + x2."""
    return x[0] * x[3] * (x[0] + x[1] + x[2]) + x[2]


@jaxtyped(typechecker=beartype)
def objective_gradient(x: Point) -> Point:
    """Gradient of the objective, in the order of the variables."""
    return jnp.stack(
        [
            x[0] * x[3] + x[3] * (x[0] + x[1] + x[2]),
            x[0] * x[3],
            x[0] * x[3] + 1.0,
            x[0] * (x[0] + x[1] + x[2]),
        ]
    )


@jaxtyped(typechecker=beartype)
def constraints(x: Point) -> ConstraintValues:
    """Constraint values g(x), without the bounds subtracted."""
    return jnp.stack(
        [
            x[0] * x[1] * x[2] * x[3],
            x[0] ** 2 + x[1] ** 2 + x[2] ** 2 + x[3] ** 2,
        ]
    )


@jaxtyped(typechecker=beartype)
def constraint_jacobian_values(x: Point) -> JacobianValues:
    """Nonzeros of the constraint Jacobian, in structure order."""
    return jnp.stack(
        [
            x[1] * x[2] * x[3],  # 0,0
            x[0] * x[2] * x[3],  # 0,1
            x[0] * x[1] * x[3],  # 0,2
            x[0] * x[1] * x[2],  # 0,3
            2.0 * x[0],  # 1,0
            2.0 * x[1],  # 1,1
            2.0 * x[2],  # 1,2
            2.0 * x[3],  # 1,3
        ]
    )


@jaxtyped(typechecker=beartype)
def lagrangian_hessian_values(
    obj_factor: Union[int, float, Scalar],
    x: Point,
    lambda_: Multipliers,
) -> HessianValues:
    """Lower triangle of the Hessian of the Lagrangian.

    The Lagrangian is ``obj_factor * f(x) + lambda_ @ g(x)``. Entries are
    accumulated term by term into the row-major lower-triangular slots.

    Args:
        obj_factor: Factor in front of the objective term.
        x: Primal point.
        lambda_: Constraint multipliers.

    Returns:
        The 10 values matching ``HS071.lagrangian_hessian_structure()``.
    """
    zero = jnp.zeros_like(x[0])

    # objective
    h_f = jnp.stack(
        [
            2.0 * x[3],  # 0,0
            x[3],  # 1,0
            zero,  # 1,1
            x[3],  # 2,0
            zero,  # 2,1
            zero,  # 2,2
            2.0 * x[0] + x[1] + x[2],  # 3,0
            x[0],  # 3,1
            x[0],  # 3,2
            zero,  # 3,3
        ]
    )
    # first constraint: product of the variables
    h_g0 = jnp.stack(
        [
            zero,
            x[2] * x[3],
            zero,
            x[1] * x[3],
            x[0] * x[3],
            zero,
            x[1] * x[2],
            x[0] * x[2],
            x[0] * x[1],
            zero,
        ]
    )
    # second constraint: sum of squares, 2 on the diagonal
    h_g1 = jnp.where(_HESS_ROWS == _HESS_COLS, 2.0, 0.0).astype(h_f.dtype)

    return obj_factor * h_f + lambda_[0] * h_g0 + lambda_[1] * h_g1


class HS071(eqx.Module):
    """HS071 exposed through the engine callback contract.

    The module carries no state; every method is a pure function of its
    arguments. It satisfies ``hs071_jax.types.NLPProblem``.

    Example:
        >>> import jax.numpy as jnp
        >>> from hs071_jax import HS071
        >>>
        >>> problem = HS071()
        >>> x0 = problem.starting_point()
        >>> float(problem.objective(x0))
        16.0
    """

    def describe_dimensions(self) -> ProblemInfo:
        return HS071_INFO

    def bounds(self) -> Bounds:
        n = HS071_INFO.n
        return Bounds(
            x_lower=jnp.full(n, X_LOWER),
            x_upper=jnp.full(n, X_UPPER),
            g_lower=jnp.array(G_LOWER),
            g_upper=jnp.array(G_UPPER),
        )

    def starting_point(self) -> Point:
        """Initial primal point. No starting values for the duals."""
        return jnp.array(X0)

    def objective(self, x: Point) -> Scalar:
        return objective(x)

    def objective_gradient(self, x: Point) -> Point:
        return objective_gradient(x)

    def constraints(self, x: Point) -> ConstraintValues:
        return constraints(x)

    def constraint_jacobian_structure(self) -> Sparsity:
        return Sparsity(rows=jnp.asarray(_JAC_ROWS), cols=jnp.asarray(_JAC_COLS))

    def constraint_jacobian_values(self, x: Point) -> JacobianValues:
        return constraint_jacobian_values(x)

    def lagrangian_hessian_structure(self) -> Sparsity:
        return Sparsity(rows=jnp.asarray(_HESS_ROWS), cols=jnp.asarray(_HESS_COLS))

    def lagrangian_hessian_values(
        self,
        obj_factor: Union[int, float, Scalar],
        x: Point,
        lambda_: Multipliers,
    ) -> HessianValues:
        return lagrangian_hessian_values(obj_factor, x, lambda_)

    def finalize(self, solution: Solution, stream=None) -> None:
        """Report the terminal solution handed back by the engine.

        Only renders the summary; nothing here feeds back into the solve.
        """
        logger.info(
            "HS071 finished with status %d, f(x*) = %g",
            solution.status,
            solution.obj_value,
        )
        print(format_solution(solution), file=sys.stdout if stream is None else stream)
