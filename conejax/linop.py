"""Linear-operator expression trees.

A problem is handed to conejax as trees of ``LinOp`` nodes: an objective
tree and one tree per constraint. Every node evaluates to a dense
``(rows, cols)`` matrix that is an affine function of the problem variables.
Constraint nodes wrap exactly one child and state which cone the child's
value must lie in.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Optional, Tuple, Union

import jax.numpy as jnp

from conejax.utils.checking import check_matrix_multiply_shapes, check_shapes_compatible
from conejax.utils.shapes import (
    as_matrix_shape,
    check_static_shape,
    flatten_shape,
    is_scalar_shape,
    normalize_index,
    slice_length,
    transpose_shape,
)


class LinOpKind(enum.Enum):
    """Closed set of node kinds."""

    # Leaves
    VARIABLE = "variable"
    SCALAR_CONST = "scalar_const"
    DENSE_CONST = "dense_const"
    PARAM = "param"

    # Linear composition
    SUM = "sum"
    NEG = "neg"
    MUL = "mul"
    RMUL = "rmul"
    MUL_ELEM = "mul_elem"
    DIV = "div"
    PROMOTE = "promote"
    INDEX = "index"
    TRANSPOSE = "transpose"
    SUM_ENTRIES = "sum_entries"
    TRACE = "trace"
    RESHAPE = "reshape"
    HSTACK = "hstack"
    VSTACK = "vstack"
    NO_OP = "no_op"

    # Cone membership
    EQ = "eq"
    LEQ = "leq"
    SOC = "soc"
    EXP = "exp"
    SDP = "sdp"


CONE_KINDS = frozenset({LinOpKind.EQ, LinOpKind.LEQ, LinOpKind.SOC, LinOpKind.EXP, LinOpKind.SDP})


@dataclass(frozen=True, eq=False)
class LinOp:
    """One node of a linear-operator tree.

    Nodes compare and hash by identity, so a subtree shared between several
    parents is still a single node.

    Args:
        kind: Operation this node performs.
        shape: (rows, cols) of the value the node evaluates to.
        children: Ordered operands.
        data: Per-kind payload: the variable id for ``VARIABLE``, the constant
            for constant kinds and the multiplier kinds, a (rows, cols) slice
            pair for ``INDEX``.

    Example:
        >>> x = variable(1, (2, 1))
        >>> con = leq_constr(sum_expr(x, dense_const([1.0, -1.0])))
    """
    kind: LinOpKind
    shape: Tuple[int, int]
    children: Tuple[LinOp, ...] = ()
    data: Any = None

    def __post_init__(self) -> None:
        if not isinstance(self.kind, LinOpKind):
            raise ValueError(f"Unknown node kind: {self.kind!r}")
        check_static_shape(self.shape)
        object.__setattr__(self, "shape", (int(self.shape[0]), int(self.shape[1])))
        object.__setattr__(self, "children", tuple(self.children))

    @property
    def size(self) -> int:
        """Scalar width of the node's value."""
        return flatten_shape(self.shape)

    @property
    def identity_data(self) -> Optional[int]:
        """Variable id on ``VARIABLE`` nodes, ``None`` on every other kind."""
        if self.kind is LinOpKind.VARIABLE:
            return self.data
        return None

    def __repr__(self) -> str:
        if self.kind is LinOpKind.VARIABLE:
            return f"LinOp(VARIABLE, id={self.data}, shape={self.shape})"
        return f"LinOp({self.kind.name}, shape={self.shape}, children={len(self.children)})"


def _as_constant_matrix(value: Union[float, jnp.ndarray], vector_as_row: bool = False) -> jnp.ndarray:
    value = jnp.asarray(value)
    shape = as_matrix_shape(value.shape, vector_as_row=vector_as_row)
    return value.reshape(shape)


# Leaves

def variable(var_id: int, shape: Tuple[int, int]) -> LinOp:
    """Variable leaf. Every leaf with the same ``var_id`` is the same variable."""
    if isinstance(var_id, bool) or not isinstance(var_id, int):
        raise ValueError(f"Variable id must be an int, got {type(var_id)}")
    return LinOp(LinOpKind.VARIABLE, shape, (), var_id)


def scalar_const(value: float) -> LinOp:
    """Scalar constant leaf of shape (1, 1)."""
    return LinOp(LinOpKind.SCALAR_CONST, (1, 1), (), float(value))


def dense_const(value: Union[float, jnp.ndarray]) -> LinOp:
    """Dense constant leaf. 1-d arrays become columns."""
    matrix = _as_constant_matrix(value)
    return LinOp(LinOpKind.DENSE_CONST, matrix.shape, (), matrix)


def parameter(value: Union[float, jnp.ndarray]) -> LinOp:
    """Parameter leaf. Canonicalized exactly like a dense constant."""
    matrix = _as_constant_matrix(value)
    return LinOp(LinOpKind.PARAM, matrix.shape, (), matrix)


# Linear composition

def sum_expr(*terms: LinOp) -> LinOp:
    """Sum of same-shape terms."""
    if not terms:
        raise ValueError("sum_expr needs at least one term")
    for term in terms[1:]:
        check_shapes_compatible(terms[0].shape, term.shape)
    return LinOp(LinOpKind.SUM, terms[0].shape, terms)


def neg_expr(expr: LinOp) -> LinOp:
    """Negation."""
    return LinOp(LinOpKind.NEG, expr.shape, (expr,))


def mul_expr(lhs: Union[float, jnp.ndarray], expr: LinOp) -> LinOp:
    """Constant left-multiplication ``lhs @ expr``.

    A scalar ``lhs`` scales ``expr``; a 1-d ``lhs`` is treated as a row.
    """
    matrix = _as_constant_matrix(lhs, vector_as_row=True)
    if is_scalar_shape(matrix.shape):
        shape = expr.shape
    else:
        shape = check_matrix_multiply_shapes(matrix.shape, expr.shape)
    return LinOp(LinOpKind.MUL, shape, (expr,), matrix)


def rmul_expr(expr: LinOp, rhs: Union[float, jnp.ndarray]) -> LinOp:
    """Constant right-multiplication ``expr @ rhs``.

    A scalar ``rhs`` scales ``expr``; a 1-d ``rhs`` is treated as a column.
    """
    matrix = _as_constant_matrix(rhs)
    if is_scalar_shape(matrix.shape):
        shape = expr.shape
    else:
        shape = check_matrix_multiply_shapes(expr.shape, matrix.shape)
    return LinOp(LinOpKind.RMUL, shape, (expr,), matrix)


def mul_elem(weights: jnp.ndarray, expr: LinOp) -> LinOp:
    """Elementwise product with a constant of the same shape."""
    matrix = _as_constant_matrix(weights)
    check_shapes_compatible(matrix.shape, expr.shape)
    return LinOp(LinOpKind.MUL_ELEM, expr.shape, (expr,), matrix)


def div_expr(expr: LinOp, divisor: float) -> LinOp:
    """Division by a nonzero scalar constant."""
    divisor = float(divisor)
    if divisor == 0.0:
        raise ValueError("Division by zero in div_expr")
    return LinOp(LinOpKind.DIV, expr.shape, (expr,), divisor)


def promote(expr: LinOp, shape: Tuple[int, int]) -> LinOp:
    """Broadcast a scalar expression to ``shape``."""
    if not is_scalar_shape(expr.shape):
        raise ValueError(f"Only scalar expressions can be promoted, got shape {expr.shape}")
    return LinOp(LinOpKind.PROMOTE, shape, (expr,))


def index(expr: LinOp, rows: Union[int, slice], cols: Union[int, slice] = 0) -> LinOp:
    """Select a sub-block ``expr[rows, cols]``. Integers keep their axis."""
    row_slice = normalize_index(rows, expr.shape[0])
    col_slice = normalize_index(cols, expr.shape[1])
    shape = (slice_length(row_slice, expr.shape[0]), slice_length(col_slice, expr.shape[1]))
    return LinOp(LinOpKind.INDEX, shape, (expr,), (row_slice, col_slice))


def transpose(expr: LinOp) -> LinOp:
    """Matrix transpose."""
    return LinOp(LinOpKind.TRANSPOSE, transpose_shape(expr.shape), (expr,))


def sum_entries(expr: LinOp) -> LinOp:
    """Sum of all entries, a (1, 1) result."""
    return LinOp(LinOpKind.SUM_ENTRIES, (1, 1), (expr,))


def trace(expr: LinOp) -> LinOp:
    """Trace of a square expression."""
    if expr.shape[0] != expr.shape[1]:
        raise ValueError(f"Trace needs a square expression, got shape {expr.shape}")
    return LinOp(LinOpKind.TRACE, (1, 1), (expr,))


def reshape(expr: LinOp, shape: Tuple[int, int]) -> LinOp:
    """Column-major reshape to a shape with the same number of entries."""
    check_static_shape(shape)
    if flatten_shape(shape) != expr.size:
        raise ValueError(f"Cannot reshape {expr.shape} to {tuple(shape)}")
    return LinOp(LinOpKind.RESHAPE, shape, (expr,))


def hstack(*exprs: LinOp) -> LinOp:
    """Horizontal concatenation of expressions with equal row counts."""
    if not exprs:
        raise ValueError("hstack needs at least one expression")
    rows = exprs[0].shape[0]
    for expr in exprs[1:]:
        if expr.shape[0] != rows:
            raise ValueError(f"hstack row mismatch: {exprs[0].shape} and {expr.shape}")
    return LinOp(LinOpKind.HSTACK, (rows, sum(e.shape[1] for e in exprs)), exprs)


def vstack(*exprs: LinOp) -> LinOp:
    """Vertical concatenation of expressions with equal column counts."""
    if not exprs:
        raise ValueError("vstack needs at least one expression")
    cols = exprs[0].shape[1]
    for expr in exprs[1:]:
        if expr.shape[1] != cols:
            raise ValueError(f"vstack column mismatch: {exprs[0].shape} and {expr.shape}")
    return LinOp(LinOpKind.VSTACK, (sum(e.shape[0] for e in exprs), cols), exprs)


def no_op(expr: LinOp) -> LinOp:
    """Pass-through node."""
    return LinOp(LinOpKind.NO_OP, expr.shape, (expr,))


# Cone membership

def eq_constr(expr: LinOp) -> LinOp:
    """``expr == 0``."""
    return LinOp(LinOpKind.EQ, expr.shape, (expr,))


def leq_constr(expr: LinOp) -> LinOp:
    """``expr <= 0`` elementwise."""
    return LinOp(LinOpKind.LEQ, expr.shape, (expr,))


def soc_constr(expr: LinOp) -> LinOp:
    """Second-order cone membership of a column ``[t; x]``: ``||x||_2 <= t``.

    Example:
        >>> t = variable(1, (1, 1))
        >>> x = variable(2, (3, 1))
        >>> con = soc_constr(vstack(t, x))
    """
    return LinOp(LinOpKind.SOC, expr.shape, (expr,))


def exp_constr(expr: LinOp) -> LinOp:
    """Exponential cone membership, one cone per column ``(x, y, z)``.

    Each column must satisfy ``y * exp(x / y) <= z`` with ``y > 0``.
    """
    return LinOp(LinOpKind.EXP, expr.shape, (expr,))


def sdp_constr(expr: LinOp) -> LinOp:
    """Semidefinite cone membership. Recognized but not canonicalizable."""
    return LinOp(LinOpKind.SDP, expr.shape, (expr,))
