"""Tests for the engine bridges.

The SciPy engine is always available and is run end to end; the IPOPT
engine is exercised only when cyipopt is installed.
"""

import io

import jax
import numpy as np
import pytest

from hs071_jax import (
    HS071,
    ContractViolationError,
    EngineBridge,
    SolveOptions,
    SolverReturn,
    estimate_multipliers,
    solve_with_ipopt,
    solve_with_scipy,
)
from hs071_jax.engine import scipy_status

# Enable 64-bit precision for numerical accuracy
jax.config.update("jax_enable_x64", True)

X_STAR = np.array([1.00000000, 4.74299963, 3.82114998, 1.37940829])
F_STAR = 17.0140173
LAMBDA_STAR = np.array([-0.55229366, 0.16146856])
Z_L_STAR = np.array([1.08787121, 0.0, 0.0, 0.0])


class BrokenProblem:
    """HS071 declaring one Hessian entry too many."""

    def __init__(self):
        self.inner = HS071()

    def __getattr__(self, name):
        return getattr(self.inner, name)

    def describe_dimensions(self):
        return self.inner.describe_dimensions()._replace(nnz_hess=11)


class TestSolveOptions:
    """Tests for the engine configuration."""

    def test_defaults(self):
        options = SolveOptions()
        assert options.tol == 1e-8
        assert options.max_iter == 3000
        assert options.method == "SLSQP"

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"method": "nelder-mead"},
            {"tol": 0.0},
            {"active_tol": -1.0},
            {"max_iter": 0},
        ],
    )
    def test_invalid_options(self, kwargs):
        with pytest.raises(ValueError):
            SolveOptions(**kwargs)


class TestEngineBridge:
    """Tests for the numpy callback object handed to the engines."""

    def test_callbacks_return_numpy(self):
        bridge = EngineBridge(HS071())
        x0 = np.array([1.0, 5.0, 5.0, 1.0])
        assert bridge.objective(x0) == pytest.approx(16.0)
        for values, size in (
            (bridge.gradient(x0), 4),
            (bridge.constraints(x0), 2),
            (bridge.jacobian(x0), 8),
            (bridge.hessian(x0, np.array([1.0, 1.0]), 1.0), 10),
        ):
            assert isinstance(values, np.ndarray)
            assert values.shape == (size,)

    def test_structures_are_cached(self):
        bridge = EngineBridge(HS071())
        assert bridge.jacobianstructure() is bridge.jacobianstructure()
        rows, cols = bridge.hessianstructure()
        assert rows.shape == cols.shape == (10,)
        assert np.all(cols <= rows)

    def test_dense_matrices(self):
        bridge = EngineBridge(HS071())
        x0 = np.array([1.0, 5.0, 5.0, 1.0])
        np.testing.assert_allclose(
            bridge.dense_jacobian(x0),
            [[25.0, 5.0, 5.0, 25.0], [2.0, 10.0, 10.0, 2.0]],
        )
        hess = bridge.dense_hessian(x0, np.zeros(2), 1.0)
        np.testing.assert_allclose(hess, hess.T)
        np.testing.assert_allclose(hess[3], [12.0, 1.0, 1.0, 0.0])

    def test_callbacks_run_in_double_precision(self):
        """Values at x* keep the digits a single-precision evaluation loses."""
        bridge = EngineBridge(HS071())
        g = bridge.constraints(X_STAR)
        np.testing.assert_allclose(g, [24.9999998768, 39.9999998904], rtol=1e-11)
        assert bridge.jacobian(X_STAR.astype(np.float32)).dtype == np.float64

    def test_intermediate_keeps_going(self):
        bridge = EngineBridge(HS071())
        assert bridge.intermediate(0, 7, 17.0, 1e-3, 1e-3, 0.1, 1.0, 0.0, 1.0, 1.0, 1)
        assert bridge.iterations == 7


class TestEstimateMultipliers:
    """Tests for the least-squares multiplier estimate."""

    def test_multipliers_at_solution(self):
        z_L, z_U, lambda_ = estimate_multipliers(HS071(), X_STAR)
        np.testing.assert_allclose(lambda_, LAMBDA_STAR, atol=1e-5)
        np.testing.assert_allclose(z_L, Z_L_STAR, atol=1e-5)
        np.testing.assert_array_equal(z_U, np.zeros(4))

    def test_stationarity_holds(self):
        problem = HS071()
        bridge = EngineBridge(problem)
        z_L, z_U, lambda_ = estimate_multipliers(problem, X_STAR)
        residual = bridge.gradient(X_STAR) + bridge.dense_jacobian(X_STAR).T @ lambda_ - z_L + z_U
        np.testing.assert_allclose(residual, np.zeros(4), atol=1e-5)

    def test_no_active_constraints(self):
        """With nothing active every multiplier is zero."""
        z_L, z_U, lambda_ = estimate_multipliers(HS071(), np.array([2.0, 2.0, 2.0, 2.0]))
        np.testing.assert_array_equal(lambda_, np.zeros(2))
        np.testing.assert_array_equal(z_L, np.zeros(4))
        np.testing.assert_array_equal(z_U, np.zeros(4))


class TestScipyEngine:
    """End-to-end solves with scipy.optimize.minimize."""

    def test_slsqp_reaches_solution(self):
        stream = io.StringIO()
        solution = solve_with_scipy(HS071(), SolveOptions(method="SLSQP"), stream=stream)

        assert solution.status == SolverReturn.SUCCESS
        assert solution.succeeded
        np.testing.assert_allclose(solution.x, X_STAR, atol=1e-4)
        np.testing.assert_allclose(solution.obj_value, F_STAR, rtol=1e-6)
        np.testing.assert_allclose(solution.g, [25.0, 40.0], atol=1e-5)
        np.testing.assert_allclose(solution.lambda_, LAMBDA_STAR, atol=1e-3)
        np.testing.assert_allclose(solution.z_L, Z_L_STAR, atol=1e-3)
        assert "Objective value" in stream.getvalue()

    def test_slsqp_stays_in_bounds(self):
        solution = solve_with_scipy(HS071(), stream=io.StringIO())
        assert np.all(solution.x >= 1.0 - 1e-8)
        assert np.all(solution.x <= 5.0 + 1e-8)

    def test_trust_constr_reaches_solution(self):
        solution = solve_with_scipy(
            HS071(), SolveOptions(method="trust-constr"), stream=io.StringIO()
        )
        assert solution.status in (SolverReturn.SUCCESS, SolverReturn.STOP_AT_TINY_STEP)
        np.testing.assert_allclose(solution.x, X_STAR, atol=1e-3)
        np.testing.assert_allclose(solution.obj_value, F_STAR, rtol=1e-4)

    def test_iteration_limit(self):
        solution = solve_with_scipy(HS071(), SolveOptions(max_iter=1), stream=io.StringIO())
        assert solution.status == SolverReturn.MAXITER_EXCEEDED
        assert not solution.succeeded

    def test_contract_is_checked_before_solving(self):
        with pytest.raises(ContractViolationError):
            solve_with_scipy(BrokenProblem(), stream=io.StringIO())


class TestIpoptEngine:
    """End-to-end solves with IPOPT, when cyipopt is available."""

    def test_ipopt_reaches_solution(self):
        pytest.importorskip("cyipopt")
        stream = io.StringIO()
        solution = solve_with_ipopt(HS071(), stream=stream)

        assert solution.status == SolverReturn.SUCCESS
        np.testing.assert_allclose(solution.x, X_STAR, atol=1e-6)
        np.testing.assert_allclose(solution.obj_value, F_STAR, rtol=1e-7)
        np.testing.assert_allclose(solution.lambda_, LAMBDA_STAR, atol=1e-6)
        np.testing.assert_allclose(solution.z_L, Z_L_STAR, atol=1e-6)
        assert "f(x*) = 1.701402e+01" in stream.getvalue()

    def test_ipopt_contract_is_checked(self):
        pytest.importorskip("cyipopt")
        with pytest.raises(ContractViolationError):
            solve_with_ipopt(BrokenProblem(), stream=io.StringIO())


class TestScipyStatus:
    """Tests for the mapping of scipy termination codes."""

    @pytest.mark.parametrize(
        "method, code, expected",
        [
            ("SLSQP", 0, SolverReturn.SUCCESS),
            ("SLSQP", 8, SolverReturn.STOP_AT_TINY_STEP),
            ("SLSQP", 9, SolverReturn.MAXITER_EXCEEDED),
            ("SLSQP", 42, SolverReturn.INTERNAL_ERROR),
            ("trust-constr", 0, SolverReturn.MAXITER_EXCEEDED),
            ("trust-constr", 1, SolverReturn.SUCCESS),
            ("trust-constr", 2, SolverReturn.STOP_AT_TINY_STEP),
            ("trust-constr", 3, SolverReturn.USER_REQUESTED_STOP),
        ],
    )
    def test_mapping(self, method, code, expected):
        assert scipy_status(method, code) == expected

    def test_xtol_stop_is_not_success(self):
        """A trust radius below xtol is not a first-order optimality certificate."""
        assert scipy_status("trust-constr", 2) != SolverReturn.SUCCESS
