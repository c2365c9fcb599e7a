"""Test the solve entry point."""

import warnings

import jax
import jax.numpy as jnp
import pytest

import conejax as cj
import conejax.api as api
from conejax.errors import UnsupportedConeKind


class TestSolve:
    """End-to-end tests through conejax.solve."""

    def setup_method(self):
        """Set up test environment."""
        jax.config.update("jax_enable_x64", True)

    def test_minimize_with_equality_and_bound(self):
        # minimize sum(x) - sum(y) subject to x == (1, 2), y <= 3
        x = cj.variable(1, (2, 1))
        y = cj.variable(2, (3, 1))
        objective = cj.sum_expr(cj.sum_entries(x), cj.neg_expr(cj.sum_entries(y)))
        constraints = [
            cj.eq_constr(cj.sum_expr(x, cj.dense_const(jnp.array([-1.0, -2.0])))),
            cj.leq_constr(cj.sum_expr(y, cj.promote(cj.scalar_const(-3.0), (3, 1)))),
        ]

        solution = cj.solve(cj.Sense.MINIMIZE, objective, constraints)

        assert solution.status == "optimal"
        assert abs(solution.optimal_value - (3.0 - 9.0)) < 1e-6
        assert solution.primal[1].shape == (2, 1)
        assert solution.primal[2].shape == (3, 1)
        assert jnp.allclose(solution.primal[1][:, 0], jnp.array([1.0, 2.0]), atol=1e-6)
        assert jnp.allclose(solution.primal[2], 3.0, atol=1e-6)

    def test_matrix_variable(self):
        # maximize trace(X) subject to X <= [[1, 2], [3, 4]] elementwise
        X = cj.variable(7, (2, 2))
        bound = jnp.array([[1.0, 2.0], [3.0, 4.0]])
        constraints = [cj.leq_constr(cj.sum_expr(X, cj.neg_expr(cj.dense_const(bound))))]

        solution = cj.solve(cj.Sense.MAXIMIZE, cj.trace(X), constraints)

        assert solution.status == "optimal"
        assert abs(solution.optimal_value - 5.0) < 1e-6
        assert solution.primal[7].shape == (2, 2)
        assert jnp.allclose(jnp.diagonal(solution.primal[7]), jnp.array([1.0, 4.0]), atol=1e-6)

    def test_osqp_backend(self):
        x = cj.variable(1, (2, 1))
        constraints = [cj.leq_constr(cj.sum_expr(cj.neg_expr(x), cj.dense_const(jnp.ones(2))))]

        solution = cj.solve(cj.Sense.MINIMIZE, cj.sum_entries(x), constraints, solver="osqp")

        assert solution.info["solver"] == "osqp"
        assert solution.status in ["optimal", "max_iter"]
        if solution.status == "optimal":
            assert abs(solution.optimal_value - 2.0) < 1e-3

    def test_sdp_rejected(self):
        X = cj.variable(1, (2, 2))
        with pytest.raises(UnsupportedConeKind):
            cj.solve(cj.Sense.MINIMIZE, cj.trace(X), [cj.sdp_constr(X)])

    def test_unknown_solver(self):
        x = cj.variable(1, (1, 1))
        with pytest.raises(ValueError, match="Unknown solver"):
            cj.solve(cj.Sense.MINIMIZE, x, [cj.leq_constr(cj.neg_expr(x))], solver="scs")

    def test_unknown_solver_checked_before_canonicalizing(self):
        X = cj.variable(1, (2, 2))
        with pytest.raises(ValueError, match="Unknown solver"):
            cj.solve(cj.Sense.MINIMIZE, cj.trace(X), [cj.sdp_constr(X)], solver="scs")


class TestSolveDispatch:
    """Test what solve hands to the backend."""

    def setup_method(self):
        """Set up test environment."""
        jax.config.update("jax_enable_x64", True)

    def _fake_backend(self, monkeypatch):
        calls = []
        sentinel = api.Solution(status="optimal", optimal_value=0.0, primal={}, dual={}, info={})

        def fake_solve(program, descriptor, **options):
            calls.append((program, descriptor, options))
            return sentinel

        monkeypatch.setattr(api, "solve_cone_clarabel", fake_solve)
        return calls, sentinel

    def test_options_forwarded_unchanged(self, monkeypatch):
        calls, sentinel = self._fake_backend(monkeypatch)
        x = cj.variable(1, (2, 1))

        solution = cj.solve(
            cj.Sense.MINIMIZE,
            cj.sum_entries(x),
            [cj.leq_constr(cj.neg_expr(x))],
            options={"max_iter": 10, "tol_gap_abs": 1e-9},
        )

        assert solution is sentinel
        assert len(calls) == 1
        program, descriptor, options = calls[0]
        assert options == {"max_iter": 10, "tol_gap_abs": 1e-9}
        assert program.A.shape == (2, 2)
        assert descriptor.num_variables == 2

    def test_no_variables_warns_and_still_solves(self, monkeypatch):
        calls, sentinel = self._fake_backend(monkeypatch)

        with pytest.warns(UserWarning, match="no variables"):
            solution = cj.solve(cj.Sense.MINIMIZE, cj.scalar_const(3.0), [])

        assert solution is sentinel
        program, descriptor, _ = calls[0]
        assert program.n_vars == 0
        assert jnp.allclose(program.d, 3.0)

    def test_no_warning_with_variables(self, monkeypatch):
        self._fake_backend(monkeypatch)
        x = cj.variable(1, (1, 1))

        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            cj.solve(cj.Sense.MINIMIZE, x, [cj.leq_constr(cj.neg_expr(x))])

        assert not [w for w in caught if "no variables" in str(w.message)]

    def test_solution_is_pytree(self):
        solution = api.Solution(
            status="optimal",
            optimal_value=1.0,
            primal={1: jnp.ones((2, 1))},
            dual={cj.ConeKind.LEQ: jnp.zeros(2)},
            info={"iterations": 3},
        )
        doubled = jax.tree_util.tree_map(lambda a: 2 * a, solution)
        assert doubled.status == "optimal"
        assert doubled.optimal_value == 2.0
        assert jnp.allclose(doubled.primal[1], 2.0)


if __name__ == "__main__":
    pytest.main([__file__])
