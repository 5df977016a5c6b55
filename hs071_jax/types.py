"""Type definitions for hs071-jax.

This module contains the type aliases, records and the callback protocol
shared by the problem definition, the contract checks and the engine
bridges. Array types use jaxtyping for runtime type checking with beartype.
"""

from typing import NamedTuple, Protocol

from jaxtyping import Array, Float, Int

# Type aliases for common array shapes
Scalar = Float[Array, ""]
Vector = Float[Array, " n"]

# Primal point, constraint values and constraint multipliers of HS071
Point = Float[Array, "4"]
ConstraintValues = Float[Array, "2"]
Multipliers = Float[Array, "2"]

# Values of the sparse Jacobian / Lagrangian Hessian in structure order
JacobianValues = Float[Array, "8"]
HessianValues = Float[Array, "10"]

# Row or column indices of a sparse triplet structure
Indices = Int[Array, " nnz"]

# Any bound at or beyond these magnitudes is treated as infinite by the engine
# (IPOPT's nlp_upper_bound_inf / nlp_lower_bound_inf).
UPPER_BOUND_INF = 1e19
LOWER_BOUND_INF = -1e19


class IndexStyle:
    """Numbering style of row/column entries in sparse structures.

    The value is also the index base: C style is 0-based, Fortran 1-based.
    """

    C = 0
    FORTRAN = 1


class ProblemInfo(NamedTuple):
    """Dimensions of a nonlinear program.

    Attributes:
        n: Number of variables.
        m: Number of constraints.
        nnz_jac: Number of nonzeros in the constraint Jacobian.
        nnz_hess: Number of nonzeros in the lower triangle of the
            Lagrangian Hessian.
        index_style: Index base used by the sparsity structures.
    """

    n: int
    m: int
    nnz_jac: int
    nnz_hess: int
    index_style: int = IndexStyle.C


class Bounds(NamedTuple):
    """Box bounds on the variables and the constraint functions.

    Constraints are defined by ``g_lower <= g(x) <= g_upper``; equal bounds
    mark an equality constraint.
    """

    x_lower: Vector
    x_upper: Vector
    g_lower: Float[Array, " m"]
    g_upper: Float[Array, " m"]


class Sparsity(NamedTuple):
    """Triplet sparsity structure: entry k sits at ``(rows[k], cols[k])``."""

    rows: Indices
    cols: Indices


class NLPProblem(Protocol):
    """Callback contract consumed by the engine bridges.

    Structure queries take no arguments and must return the same index sets
    on every call; value queries fill numbers into that fixed structure.
    """

    def describe_dimensions(self) -> ProblemInfo: ...

    def bounds(self) -> Bounds: ...

    def starting_point(self) -> Vector: ...

    def objective(self, x: Vector) -> Scalar: ...

    def objective_gradient(self, x: Vector) -> Vector: ...

    def constraints(self, x: Vector) -> Float[Array, " m"]: ...

    def constraint_jacobian_structure(self) -> Sparsity: ...

    def constraint_jacobian_values(self, x: Vector) -> Float[Array, " nnz"]: ...

    def lagrangian_hessian_structure(self) -> Sparsity: ...

    def lagrangian_hessian_values(
        self, obj_factor: float, x: Vector, lambda_: Float[Array, " m"]
    ) -> Float[Array, " nnz"]: ...

    def finalize(self, solution, stream=None) -> None: ...
