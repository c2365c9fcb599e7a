"""Test linear-operator tree construction."""

import dataclasses

import jax
import jax.numpy as jnp
import pytest

import conejax as cj
from conejax.linop import LinOp, LinOpKind


class TestLinOpNodes:
    """Test the node type itself."""

    def setup_method(self):
        """Set up test environment."""
        jax.config.update("jax_enable_x64", True)

    def test_variable_identity_data(self):
        x = cj.variable(7, (3, 1))

        assert x.kind is LinOpKind.VARIABLE
        assert x.identity_data == 7
        assert x.shape == (3, 1)
        assert x.size == 3
        assert x.children == ()

    def test_identity_data_absent_on_other_kinds(self):
        c = cj.dense_const(jnp.ones((2, 2)))
        assert c.identity_data is None
        assert cj.neg_expr(cj.variable(1, (2, 1))).identity_data is None

    def test_nodes_are_immutable(self):
        x = cj.variable(1, (2, 1))
        with pytest.raises(dataclasses.FrozenInstanceError):
            x.shape = (3, 1)

    def test_children_list_becomes_tuple(self):
        x = cj.variable(1, (2, 1))
        node = LinOp(LinOpKind.NEG, (2, 1), [x])
        assert node.children == (x,)

    def test_invalid_shapes_rejected(self):
        with pytest.raises(ValueError):
            LinOp(LinOpKind.VARIABLE, (3,), (), 1)
        with pytest.raises(ValueError):
            LinOp(LinOpKind.VARIABLE, (0, 1), (), 1)
        with pytest.raises(ValueError):
            LinOp(LinOpKind.VARIABLE, (2.0, 1), (), 1)

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValueError, match="Unknown node kind"):
            LinOp("variable", (1, 1), (), 1)

    def test_variable_id_must_be_int(self):
        with pytest.raises(ValueError):
            cj.variable("x", (1, 1))
        with pytest.raises(ValueError):
            cj.variable(True, (1, 1))

    def test_nodes_hash_by_identity(self):
        a = cj.variable(1, (2, 1))
        b = cj.variable(1, (2, 1))
        assert a != b
        assert len({a, b, a}) == 2


class TestBuilders:
    """Test shape rules of the builder functions."""

    def setup_method(self):
        """Set up test environment."""
        jax.config.update("jax_enable_x64", True)

    def test_constants(self):
        assert cj.scalar_const(2.5).shape == (1, 1)
        assert cj.scalar_const(2.5).data == 2.5
        assert cj.dense_const(jnp.array([1.0, 2.0, 3.0])).shape == (3, 1)
        assert cj.dense_const(jnp.ones((2, 4))).shape == (2, 4)
        assert cj.dense_const(3.0).shape == (1, 1)
        assert cj.parameter(jnp.ones(2)).kind is LinOpKind.PARAM

    def test_sum_requires_equal_shapes(self):
        x = cj.variable(1, (2, 1))
        y = cj.variable(2, (2, 1))
        assert cj.sum_expr(x, y).shape == (2, 1)
        with pytest.raises(ValueError):
            cj.sum_expr(x, cj.variable(3, (3, 1)))
        with pytest.raises(ValueError):
            cj.sum_expr()

    def test_mul_shapes(self):
        X = cj.variable(1, (3, 2))
        assert cj.mul_expr(jnp.ones((4, 3)), X).shape == (4, 2)
        assert cj.mul_expr(2.0, X).shape == (3, 2)
        # 1-d left operand is a row
        assert cj.mul_expr(jnp.ones(3), X).shape == (1, 2)
        with pytest.raises(ValueError):
            cj.mul_expr(jnp.ones((4, 2)), X)

    def test_rmul_shapes(self):
        X = cj.variable(1, (3, 2))
        assert cj.rmul_expr(X, jnp.ones((2, 5))).shape == (3, 5)
        # 1-d right operand is a column
        assert cj.rmul_expr(X, jnp.ones(2)).shape == (3, 1)
        with pytest.raises(ValueError):
            cj.rmul_expr(X, jnp.ones((3, 3)))

    def test_elementwise_and_div(self):
        X = cj.variable(1, (2, 2))
        assert cj.mul_elem(jnp.ones((2, 2)), X).shape == (2, 2)
        with pytest.raises(ValueError):
            cj.mul_elem(jnp.ones((2, 3)), X)
        assert cj.div_expr(X, 4).data == 4.0
        with pytest.raises(ValueError):
            cj.div_expr(X, 0)

    def test_promote(self):
        t = cj.variable(1, (1, 1))
        assert cj.promote(t, (3, 2)).shape == (3, 2)
        with pytest.raises(ValueError):
            cj.promote(cj.variable(2, (2, 1)), (2, 2))

    def test_index(self):
        X = cj.variable(1, (4, 3))
        assert cj.index(X, slice(1, 3), slice(None)).shape == (2, 3)
        assert cj.index(X, 2, 1).shape == (1, 1)
        assert cj.index(X, -1, slice(0, 3, 2)).shape == (1, 2)
        with pytest.raises(ValueError):
            cj.index(X, 4, 0)
        with pytest.raises(ValueError):
            cj.index(X, slice(2, 2), 0)

    def test_index_negative_step(self):
        x = cj.variable(1, (3, 1))
        reversed_x = cj.index(x, slice(None, None, -1))
        assert reversed_x.shape == (3, 1)
        assert reversed_x.data[0] == slice(2, None, -1)

        y = cj.variable(2, (4, 1))
        assert cj.index(y, slice(2, None, -1)).shape == (3, 1)
        assert cj.index(y, slice(3, 0, -2)).shape == (2, 1)

    def test_transpose_sum_trace_reshape(self):
        X = cj.variable(1, (2, 3))
        assert cj.transpose(X).shape == (3, 2)
        assert cj.sum_entries(X).shape == (1, 1)
        assert cj.reshape(X, (3, 2)).shape == (3, 2)
        with pytest.raises(ValueError):
            cj.reshape(X, (4, 2))
        with pytest.raises(ValueError):
            cj.trace(X)
        assert cj.trace(cj.variable(2, (3, 3))).shape == (1, 1)

    def test_stacking(self):
        a = cj.variable(1, (2, 3))
        b = cj.variable(2, (2, 1))
        c = cj.variable(3, (4, 3))
        assert cj.hstack(a, b).shape == (2, 4)
        assert cj.vstack(a, c).shape == (6, 3)
        with pytest.raises(ValueError):
            cj.hstack(a, c)
        with pytest.raises(ValueError):
            cj.vstack(a, b)

    def test_constraint_wrappers(self):
        x = cj.variable(1, (3, 1))
        for builder, kind in [
            (cj.eq_constr, LinOpKind.EQ),
            (cj.leq_constr, LinOpKind.LEQ),
            (cj.soc_constr, LinOpKind.SOC),
            (cj.exp_constr, LinOpKind.EXP),
            (cj.sdp_constr, LinOpKind.SDP),
        ]:
            con = builder(x)
            assert con.kind is kind
            assert con.children == (x,)
            assert con.shape == x.shape


if __name__ == "__main__":
    pytest.main([__file__])
