"""Test OSQP solver functionality."""

import jax
import jax.numpy as jnp
import pytest

import conejax as cj
from conejax.api import Sense
from conejax.canonicalize import canonicalize
from conejax.constraints import ConeKind
from conejax.matrix import build_cone_program
from conejax.solvers.osqp_bridge import _convert_to_osqp_format, check_osqp_available, solve_cone_osqp


def _build(sense, objective, constraints):
    descriptor = canonicalize(objective, constraints)
    return build_cone_program(sense, objective, descriptor), descriptor


def _simplex_lp():
    """minimize x1 + 2 x2 subject to x1 + x2 == 1, x >= 0."""
    x = cj.variable(1, (2, 1))
    objective = cj.mul_expr(jnp.array([1.0, 2.0]), x)
    constraints = [
        cj.eq_constr(cj.sum_expr(cj.sum_entries(x), cj.scalar_const(-1.0))),
        cj.leq_constr(cj.neg_expr(x)),
    ]
    return objective, constraints


class TestOSQPSolver:
    """Test OSQP solver bridge."""

    def setup_method(self):
        """Set up test environment."""
        jax.config.update("jax_enable_x64", True)

    def test_format_split(self):
        objective, constraints = _simplex_lp()
        program, _ = _build(Sense.MINIMIZE, objective, constraints)

        data = _convert_to_osqp_format(program)

        A_eq, b_eq = data["eq_constraints"]
        A_ineq, b_ineq = data["ineq_constraints"]
        assert jnp.allclose(A_eq, jnp.array([[1.0, 1.0]]))
        assert jnp.allclose(b_eq, jnp.array([1.0]))
        assert jnp.allclose(A_ineq, -jnp.eye(2))
        assert jnp.allclose(b_ineq, jnp.zeros(2))
        assert jnp.allclose(data["q"], jnp.array([1.0, 2.0]))
        assert data["P"].shape == (2, 2)

    def test_format_without_equalities(self):
        x = cj.variable(1, (2, 1))
        program, _ = _build(Sense.MINIMIZE, cj.sum_entries(x), [cj.leq_constr(x)])
        data = _convert_to_osqp_format(program)
        assert data["eq_constraints"] is None
        assert data["ineq_constraints"] is not None

    @pytest.mark.skipif(not check_osqp_available(), reason="OSQP not available")
    def test_simple_lp_osqp(self):
        objective, constraints = _simplex_lp()
        program, descriptor = _build(Sense.MINIMIZE, objective, constraints)

        solution = solve_cone_osqp(program, descriptor, tol=1e-6, max_iter=4000)

        # Check convergence
        assert solution.status in ["optimal", "max_iter"]
        assert solution.info["solver"] == "osqp"

        if solution.status == "optimal":
            x_val = solution.primal[1]
            assert x_val.shape == (2, 1)
            assert abs(x_val[0, 0] - 1.0) < 1e-3
            assert abs(x_val[1, 0]) < 1e-3
            assert abs(solution.optimal_value - 1.0) < 1e-3
            assert set(solution.dual) == {ConeKind.EQ, ConeKind.LEQ}
            duals = solution.info["constraint_duals"]
            assert sorted(duals) == [0, 1]
            assert duals[0].shape == (1,)
            assert duals[1].shape == (2,)

    @pytest.mark.skipif(not check_osqp_available(), reason="OSQP not available")
    def test_maximize_osqp(self):
        # maximize x1 + x2 subject to x <= [1, 2]
        x = cj.variable(1, (2, 1))
        constraints = [cj.leq_constr(cj.sum_expr(x, cj.dense_const(jnp.array([-1.0, -2.0]))))]
        program, descriptor = _build(Sense.MAXIMIZE, cj.sum_entries(x), constraints)

        solution = solve_cone_osqp(program, descriptor, tol=1e-6, max_iter=4000)

        assert solution.status in ["optimal", "max_iter"]
        if solution.status == "optimal":
            assert abs(solution.optimal_value - 3.0) < 1e-3

    def test_second_order_cone_rejected(self):
        x = cj.variable(1, (3, 1))
        program, descriptor = _build(Sense.MINIMIZE, cj.index(x, 0), [cj.soc_constr(x)])
        with pytest.raises(ValueError, match="SOC"):
            solve_cone_osqp(program, descriptor)

    def test_exponential_cone_rejected(self):
        x = cj.variable(1, (3, 1))
        program, descriptor = _build(Sense.MINIMIZE, cj.index(x, 2), [cj.exp_constr(x)])
        with pytest.raises(ValueError, match="EXP"):
            solve_cone_osqp(program, descriptor)


if __name__ == "__main__":
    pytest.main([__file__])
