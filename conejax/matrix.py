"""Coefficient assembly for canonicalized cone programs.

Each node of a linear-operator tree is turned into an ``AffineBlock``: the
affine map from the variables to the column-major vectorization of the
node's value. Blocks are then scattered into dense rows using the column
offsets of a ``CanonicalDescriptor`` and stacked into the cone program

    minimize    c^T x + d
    subject to  A x + s = b,  s in K

with the rows of K ordered zero cone, nonnegative cone, second-order cones,
exponential cones.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Sequence, Tuple

import jax.numpy as jnp
from jax import tree_util

if TYPE_CHECKING:
    from conejax.api import Sense

from conejax.canonicalize import CanonicalDescriptor
from conejax.constraints import ConeKind
from conejax.errors import MalformedConstraint, UnsupportedLinOpKind
from conejax.linop import CONE_KINDS, LinOp, LinOpKind
from conejax.utils.checking import create_error_message
from conejax.utils.shapes import vec, vec_index_grid


@dataclass(frozen=True)
class AffineBlock:
    """Affine map ``sum_j coeffs[j] @ x_j + offset``.

    Args:
        coeffs: Variable id -> (size, variable size) coefficient matrix.
        offset: Constant term, length ``size``.
    """
    coeffs: Dict[int, jnp.ndarray]
    offset: jnp.ndarray

    @property
    def size(self) -> int:
        """Number of rows of the block."""
        return self.offset.shape[0]


# Register AffineBlock as JAX pytree
tree_util.register_pytree_node(
    AffineBlock,
    lambda block: ((block.coeffs, block.offset), None),
    lambda aux, children: AffineBlock(children[0], children[1]),
)


@dataclass(frozen=True)
class ConeProgram:
    """Dense cone program ``min c^T x + d  s.t.  A x + s = b, s in K``.

    Args:
        c: Objective vector (already negated for maximization).
        d: Objective constant (already negated for maximization).
        A: Constraint matrix (m x n).
        b: Constraint vector (m,).
        cone_dims: Cone sizes, as ``CanonicalDescriptor.cone_dims``.
        maximize: Whether the objective was maximized.
    """
    c: jnp.ndarray
    d: jnp.ndarray
    A: jnp.ndarray
    b: jnp.ndarray
    cone_dims: Dict[str, Any]
    maximize: bool = False

    @property
    def n_vars(self) -> int:
        return self.A.shape[1]

    @property
    def n_rows(self) -> int:
        return self.A.shape[0]

    def objective_value(self, x: jnp.ndarray) -> jnp.ndarray:
        """Value of the caller's (not negated) objective at ``x``."""
        value = self.c @ x + self.d
        return -value if self.maximize else value


# Register ConeProgram as JAX pytree
tree_util.register_pytree_node(
    ConeProgram,
    lambda cp: ((cp.c, cp.d, cp.A, cp.b), {"cone_dims": cp.cone_dims, "maximize": cp.maximize}),
    lambda aux, children: ConeProgram(*children, **aux),
)


# Block algebra

def _scale(block: AffineBlock, factor: float) -> AffineBlock:
    return AffineBlock(
        coeffs={var_id: factor * coeff for var_id, coeff in block.coeffs.items()},
        offset=factor * block.offset,
    )


def _apply(block: AffineBlock, matrix: jnp.ndarray) -> AffineBlock:
    """Left-multiply the block by a constant matrix acting on its rows."""
    return AffineBlock(
        coeffs={var_id: matrix @ coeff for var_id, coeff in block.coeffs.items()},
        offset=matrix @ block.offset,
    )


def _select(block: AffineBlock, rows: jnp.ndarray) -> AffineBlock:
    return AffineBlock(
        coeffs={var_id: coeff[rows] for var_id, coeff in block.coeffs.items()},
        offset=block.offset[rows],
    )


def _add(left: AffineBlock, right: AffineBlock) -> AffineBlock:
    coeffs = dict(left.coeffs)
    for var_id, coeff in right.coeffs.items():
        if var_id in coeffs:
            coeffs[var_id] = coeffs[var_id] + coeff
        else:
            coeffs[var_id] = coeff
    return AffineBlock(coeffs=coeffs, offset=left.offset + right.offset)


def _concat(blocks: Sequence[AffineBlock]) -> AffineBlock:
    """Stack blocks vertically; a variable absent from a block gets zero rows."""
    widths: Dict[int, int] = {}
    for block in blocks:
        for var_id, coeff in block.coeffs.items():
            widths[var_id] = coeff.shape[1]

    coeffs = {}
    for var_id, width in widths.items():
        coeffs[var_id] = jnp.concatenate([
            block.coeffs[var_id] if var_id in block.coeffs else jnp.zeros((block.size, width))
            for block in blocks
        ], axis=0)

    return AffineBlock(coeffs=coeffs, offset=jnp.concatenate([block.offset for block in blocks]))


def _scatter(block: AffineBlock, positions: jnp.ndarray, size: int) -> AffineBlock:
    """Place the rows of ``block`` at ``positions`` of a zero block of ``size`` rows."""
    return AffineBlock(
        coeffs={
            var_id: jnp.zeros((size, coeff.shape[1]), dtype=coeff.dtype).at[positions].set(coeff)
            for var_id, coeff in block.coeffs.items()
        },
        offset=jnp.zeros(size, dtype=block.offset.dtype).at[positions].set(block.offset),
    )


# Per-kind rules

def _variable_block(node: LinOp, children: List[AffineBlock]) -> AffineBlock:
    return AffineBlock(coeffs={node.identity_data: jnp.eye(node.size)}, offset=jnp.zeros(node.size))


def _scalar_const_block(node: LinOp, children: List[AffineBlock]) -> AffineBlock:
    return AffineBlock(coeffs={}, offset=jnp.full(node.size, node.data))


def _dense_const_block(node: LinOp, children: List[AffineBlock]) -> AffineBlock:
    # Multiplying by 1.0 promotes integer constants to the default float dtype.
    return AffineBlock(coeffs={}, offset=1.0 * vec(jnp.asarray(node.data)))


def _sum_block(node: LinOp, children: List[AffineBlock]) -> AffineBlock:
    result = children[0]
    for child in children[1:]:
        result = _add(result, child)
    return result


def _neg_block(node: LinOp, children: List[AffineBlock]) -> AffineBlock:
    return _scale(children[0], -1.0)


def _mul_block(node: LinOp, children: List[AffineBlock]) -> AffineBlock:
    lhs = jnp.asarray(node.data)
    if lhs.shape == (1, 1):
        return _scale(children[0], lhs[0, 0])
    # vec(L X) = (I_n kron L) vec(X)
    n_cols = node.children[0].shape[1]
    return _apply(children[0], jnp.kron(jnp.eye(n_cols), lhs))


def _rmul_block(node: LinOp, children: List[AffineBlock]) -> AffineBlock:
    rhs = jnp.asarray(node.data)
    if rhs.shape == (1, 1):
        return _scale(children[0], rhs[0, 0])
    # vec(X R) = (R^T kron I_m) vec(X)
    n_rows = node.children[0].shape[0]
    return _apply(children[0], jnp.kron(rhs.T, jnp.eye(n_rows)))


def _mul_elem_block(node: LinOp, children: List[AffineBlock]) -> AffineBlock:
    weights = vec(jnp.asarray(node.data))
    block = children[0]
    return AffineBlock(
        coeffs={var_id: weights[:, None] * coeff for var_id, coeff in block.coeffs.items()},
        offset=weights * block.offset,
    )


def _div_block(node: LinOp, children: List[AffineBlock]) -> AffineBlock:
    return _scale(children[0], 1.0 / node.data)


def _promote_block(node: LinOp, children: List[AffineBlock]) -> AffineBlock:
    return _select(children[0], jnp.zeros(node.size, dtype=jnp.int32))


def _index_block(node: LinOp, children: List[AffineBlock]) -> AffineBlock:
    row_slice, col_slice = node.data
    grid = vec_index_grid(node.children[0].shape)
    return _select(children[0], vec(grid[row_slice, col_slice]))


def _transpose_block(node: LinOp, children: List[AffineBlock]) -> AffineBlock:
    grid = vec_index_grid(node.children[0].shape)
    return _select(children[0], vec(grid.T))


def _sum_entries_block(node: LinOp, children: List[AffineBlock]) -> AffineBlock:
    return _apply(children[0], jnp.ones((1, node.children[0].size)))


def _trace_block(node: LinOp, children: List[AffineBlock]) -> AffineBlock:
    diagonal = jnp.diagonal(vec_index_grid(node.children[0].shape))
    selected = _select(children[0], diagonal)
    return _apply(selected, jnp.ones((1, diagonal.shape[0])))


def _passthrough_block(node: LinOp, children: List[AffineBlock]) -> AffineBlock:
    # Column-major reshape leaves the vectorization unchanged.
    return children[0]


def _hstack_block(node: LinOp, children: List[AffineBlock]) -> AffineBlock:
    # vec([A B]) = [vec(A); vec(B)]
    return _concat(children)


def _vstack_block(node: LinOp, children: List[AffineBlock]) -> AffineBlock:
    grid = vec_index_grid(node.shape)
    placed = []
    row = 0
    for child_node, block in zip(node.children, children):
        positions = vec(grid[row:row + child_node.shape[0], :])
        placed.append(_scatter(block, positions, node.size))
        row += child_node.shape[0]
    return _sum_block(node, placed)


_BLOCK_RULES: Dict[LinOpKind, Callable[[LinOp, List[AffineBlock]], AffineBlock]] = {
    LinOpKind.VARIABLE: _variable_block,
    LinOpKind.SCALAR_CONST: _scalar_const_block,
    LinOpKind.DENSE_CONST: _dense_const_block,
    LinOpKind.PARAM: _dense_const_block,
    LinOpKind.SUM: _sum_block,
    LinOpKind.NEG: _neg_block,
    LinOpKind.MUL: _mul_block,
    LinOpKind.RMUL: _rmul_block,
    LinOpKind.MUL_ELEM: _mul_elem_block,
    LinOpKind.DIV: _div_block,
    LinOpKind.PROMOTE: _promote_block,
    LinOpKind.INDEX: _index_block,
    LinOpKind.TRANSPOSE: _transpose_block,
    LinOpKind.SUM_ENTRIES: _sum_entries_block,
    LinOpKind.TRACE: _trace_block,
    LinOpKind.RESHAPE: _passthrough_block,
    LinOpKind.NO_OP: _passthrough_block,
    LinOpKind.HSTACK: _hstack_block,
    LinOpKind.VSTACK: _vstack_block,
}


def build_affine(node: LinOp, _cache: Optional[Dict[LinOp, AffineBlock]] = None) -> AffineBlock:
    """Build the affine block of an expression tree.

    Shared subtrees are built once per call.

    Args:
        node: Root of an expression (not a constraint) tree.

    Returns:
        AffineBlock with ``node.size`` rows.

    Raises:
        UnsupportedLinOpKind: If the tree contains a constraint node or a
            kind without a rule.
    """
    if _cache is None:
        _cache = {}
    if node in _cache:
        return _cache[node]

    rule = _BLOCK_RULES.get(node.kind)
    if rule is None:
        if node.kind in CONE_KINDS:
            suggestion = "constraint nodes may only appear at the root of a constraint tree"
        else:
            suggestion = None
        raise UnsupportedLinOpKind(create_error_message(
            "UnsupportedLinOpKind",
            {"kind": getattr(node.kind, "name", node.kind), "shape": node.shape},
            suggestion=suggestion,
        ))

    children = [build_affine(child, _cache) for child in node.children]
    block = rule(node, children)
    _cache[node] = block
    return block


def stack_blocks(
    blocks: Sequence[AffineBlock],
    var_offset: Dict[int, int],
    num_variables: int,
) -> Tuple[jnp.ndarray, jnp.ndarray]:
    """Scatter blocks into dense rows over the full variable vector.

    Args:
        blocks: Blocks to stack, top to bottom.
        var_offset: Variable id -> first column.
        num_variables: Number of columns.

    Returns:
        Tuple of (G, g) with ``G x + g`` the stacked affine map.
    """
    if not blocks:
        return jnp.zeros((0, num_variables)), jnp.zeros(0)

    rows = []
    for block in blocks:
        G = jnp.zeros((block.size, num_variables))
        for var_id, coeff in block.coeffs.items():
            start = var_offset[var_id]
            G = G.at[:, start:start + coeff.shape[1]].add(coeff)
        rows.append(G)

    return jnp.concatenate(rows, axis=0), jnp.concatenate([block.offset for block in blocks])


def build_cone_program(
    sense: Sense,
    objective: LinOp,
    descriptor: CanonicalDescriptor,
) -> ConeProgram:
    """Assemble the dense cone program of a canonicalized problem.

    Args:
        sense: Minimize or maximize.
        objective: Scalar objective tree.
        descriptor: Layout from ``canonicalize``.

    Returns:
        ConeProgram whose rows follow the descriptor's cone dimensions.

    Raises:
        ValueError: If the objective is not scalar.
        MalformedConstraint: If an exponential-cone member does not have 3 rows.
    """
    from conejax.api import Sense  # Import to avoid circular dependency

    if objective.shape != (1, 1):
        raise ValueError(f"Objective must be scalar, got shape {objective.shape}")

    cache: Dict[LinOp, AffineBlock] = {}
    var_offset = dict(descriptor.var_offset)
    n = descriptor.num_variables

    c_row, d = stack_blocks([build_affine(objective, cache)], var_offset, n)
    c, d = c_row[0], d[0]
    maximize = sense is Sense.MAXIMIZE
    if maximize:
        c, d = -c, -d

    A_parts = []
    b_parts = []

    # Zero and nonnegative cones: s = -(G x + g)
    for cone in (ConeKind.EQ, ConeKind.LEQ):
        blocks = [build_affine(member, cache) for member in descriptor.constraints_by_cone[cone]]
        G, g = stack_blocks(blocks, var_offset, n)
        A_parts.append(G)
        b_parts.append(-g)

    for j, member in enumerate(descriptor.constraints_by_cone[ConeKind.EXP]):
        if member.shape[0] != 3:
            raise MalformedConstraint(create_error_message(
                "MalformedConstraint",
                {"exp constraint": j, "shape": member.shape},
                suggestion="exponential cone constraints have one (x, y, z) column per cone",
            ))

    # Second-order and exponential cones: s = G x + g
    for cone in (ConeKind.SOC, ConeKind.EXP):
        blocks = [build_affine(member, cache) for member in descriptor.constraints_by_cone[cone]]
        G, g = stack_blocks(blocks, var_offset, n)
        A_parts.append(-G)
        b_parts.append(g)

    return ConeProgram(
        c=c,
        d=d,
        A=jnp.concatenate(A_parts, axis=0),
        b=jnp.concatenate(b_parts),
        cone_dims=descriptor.cone_dims(),
        maximize=maximize,
    )


def unpack_primal(x: jnp.ndarray, descriptor: CanonicalDescriptor) -> Dict[int, jnp.ndarray]:
    """Split a stacked variable vector into per-variable values.

    Args:
        x: Stacked variable vector.
        descriptor: Layout the vector follows.

    Returns:
        Variable id -> value with the variable's (rows, cols) shape.
    """
    primal = {}
    for var_id, start in descriptor.var_offset.items():
        rows, cols = descriptor.var_shapes[var_id]
        primal[var_id] = x[start:start + rows * cols].reshape((cols, rows)).T
    return primal


def split_by_cone(z: jnp.ndarray, cone_dims: Dict[str, Any]) -> Dict[ConeKind, jnp.ndarray]:
    """Split a row-indexed vector (duals, slacks) into per-cone pieces."""
    sizes = [
        (ConeKind.EQ, cone_dims["zero"]),
        (ConeKind.LEQ, cone_dims["nonneg"]),
        (ConeKind.SOC, sum(cone_dims["soc"])),
        (ConeKind.EXP, 3 * cone_dims["exp"]),
    ]
    pieces = {}
    start = 0
    for cone, size in sizes:
        pieces[cone] = z[start:start + size]
        start += size
    return pieces


def split_by_constraint(z: jnp.ndarray, descriptor: CanonicalDescriptor) -> Dict[int, jnp.ndarray]:
    """Split a row-indexed vector into one piece per input constraint.

    Args:
        z: Vector with one entry per program row (duals, slacks).
        descriptor: Layout the program was built from.

    Returns:
        Constraint position -> the entries of that constraint's rows.
    """
    return {
        i: z[start:start + count]
        for i, (_, start, count) in enumerate(descriptor.constraint_rows)
    }
