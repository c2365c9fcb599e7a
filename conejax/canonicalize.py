"""Canonicalization of cone programs to a solver-ready layout.

The canonical layout fixes, for one (objective, constraints) pair:

    * which constrained expressions go to which cone, in input order;
    * how many rows each cone contributes;
    * the column offset of every variable in the stacked variable vector.

Variables are ordered by ascending id. The matrix builder addresses columns
through these offsets, so the layout must be identical on every call with
the same input.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import total_ordering
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Sequence, Tuple

from conejax.constraints import (
    ConeKind,
    SUPPORTED_CONES,
    classify_constraints,
    compute_dimensions,
    constraint_row_ranges,
)
from conejax.errors import InconsistentVariableSize
from conejax.linop import LinOp, LinOpKind
from conejax.utils.checking import create_error_message
from conejax.utils.shapes import flatten_shape

log = logging.getLogger(__name__)


@total_ordering
@dataclass(frozen=True, eq=False)
class Variable:
    """Variable key found in a tree.

    Equality, hashing and ordering use ``id`` only.

    Args:
        id: Variable identifier.
        shape: (rows, cols) of the variable.
    """
    id: int
    shape: Tuple[int, int]

    @property
    def size(self) -> int:
        """Scalar width of the variable."""
        return flatten_shape(self.shape)

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, Variable):
            return NotImplemented
        return self.id == other.id

    def __lt__(self, other: Variable) -> bool:
        if not isinstance(other, Variable):
            return NotImplemented
        return self.id < other.id

    def __hash__(self) -> int:
        return hash(self.id)


@dataclass(frozen=True)
class CanonicalDescriptor:
    """Canonical layout of one cone program.

    Args:
        constraints_by_cone: Cone -> constrained expressions, input order.
        dims_by_cone: Cone -> dimensions (one total for EQ/LEQ/EXP, one entry
            per constraint for SOC).
        var_offset: Variable id -> first column of the variable.
        var_shapes: Variable id -> (rows, cols).
        num_variables: Total scalar width of all variables.
        constraint_rows: Per input constraint, its cone, first row in the
            stacked program and row count.
    """
    constraints_by_cone: Mapping[ConeKind, Tuple[LinOp, ...]]
    dims_by_cone: Mapping[ConeKind, Tuple[int, ...]]
    var_offset: Mapping[int, int]
    var_shapes: Mapping[int, Tuple[int, int]]
    num_variables: int
    constraint_rows: Tuple[Tuple[ConeKind, int, int], ...] = ()

    def cone_dims(self) -> Dict[str, Any]:
        """Cone sizes in solver terms.

        Returns:
            Dictionary with the zero-cone and nonnegative-cone dimensions, the
            list of second-order cone dimensions, and the number of
            3-dimensional exponential cones.
        """
        return {
            "zero": self.dims_by_cone[ConeKind.EQ][0],
            "nonneg": self.dims_by_cone[ConeKind.LEQ][0],
            "soc": list(self.dims_by_cone[ConeKind.SOC]),
            "exp": self.dims_by_cone[ConeKind.EXP][0] // 3,
        }

    @property
    def num_rows(self) -> int:
        """Total number of constraint rows across all cones."""
        return sum(sum(self.dims_by_cone[cone]) for cone in SUPPORTED_CONES)


def collect_variables(root: LinOp) -> List[Variable]:
    """Collect every variable leaf under ``root``, in child order.

    Duplicates are kept; one entry per leaf occurrence.

    Args:
        root: Root of the tree to walk.

    Returns:
        Variables in depth-first, left-to-right order.

    Raises:
        ValueError: If a variable leaf does not carry an integer id.
    """
    found: List[Variable] = []
    stack = [root]

    # Explicit stack: trees deeper than the interpreter recursion limit are fine.
    while stack:
        node = stack.pop()
        if node.kind is LinOpKind.VARIABLE:
            var_id = node.identity_data
            if isinstance(var_id, bool) or not isinstance(var_id, int):
                raise ValueError(f"Variable node carries non-integer id {var_id!r}")
            found.append(Variable(var_id, node.shape))
        else:
            stack.extend(reversed(node.children))

    return found


def collect_problem_variables(objective: LinOp, constraints: Sequence[LinOp]) -> List[Variable]:
    """Collect variables from the objective and then each whole constraint node."""
    variables = collect_variables(objective)
    for constraint in constraints:
        variables.extend(collect_variables(constraint))
    return variables


def unique_variables(variables: Sequence[Variable]) -> List[Variable]:
    """Deduplicate variables by id and sort them by ascending id.

    Args:
        variables: Variables, possibly repeated.

    Returns:
        One variable per id, sorted by id.

    Raises:
        InconsistentVariableSize: If one id occurs with two different shapes.
    """
    seen: Dict[int, Variable] = {}
    for var in variables:
        first = seen.get(var.id)
        if first is None:
            seen[var.id] = var
        elif first.shape != var.shape:
            raise InconsistentVariableSize(create_error_message(
                "InconsistentVariableSize",
                {"variable id": var.id, "shapes": f"{first.shape} and {var.shape}"},
                suggestion="every leaf of a variable must carry that variable's shape",
            ))
    return sorted(seen.values())


def assign_offsets(variables: Sequence[Variable]) -> Tuple[Dict[int, int], int]:
    """Assign each distinct variable a contiguous column offset.

    Variables are laid out by ascending id; each offset is the total width
    of the variables before it.

    Args:
        variables: Variables, possibly repeated.

    Returns:
        Tuple of (id -> offset mapping, total width).

    Raises:
        InconsistentVariableSize: If one id occurs with two different shapes.
    """
    var_offset: Dict[int, int] = {}
    num_variables = 0
    for var in unique_variables(variables):
        var_offset[var.id] = num_variables
        num_variables += var.size
    return var_offset, num_variables


def canonicalize(objective: LinOp, constraints: Sequence[LinOp]) -> CanonicalDescriptor:
    """Compute the canonical layout of a cone program.

    Args:
        objective: Objective tree.
        constraints: Cone-membership nodes.

    Returns:
        CanonicalDescriptor for the problem.

    Raises:
        UnsupportedConeKind: If a constraint is SDP or not a constraint.
        MalformedConstraint: If a constraint is badly shaped or has the wrong
            number of children.
        InconsistentVariableSize: If a variable id occurs with two shapes.
    """
    constraints = list(constraints)

    grouped = classify_constraints(constraints)
    dims = compute_dimensions(grouped)

    variables = collect_problem_variables(objective, constraints)
    distinct = unique_variables(variables)
    var_offset, num_variables = assign_offsets(distinct)

    descriptor = CanonicalDescriptor(
        constraints_by_cone=MappingProxyType({cone: tuple(grouped[cone]) for cone in SUPPORTED_CONES}),
        dims_by_cone=MappingProxyType({cone: tuple(dims[cone]) for cone in SUPPORTED_CONES}),
        var_offset=MappingProxyType(var_offset),
        var_shapes=MappingProxyType({var.id: var.shape for var in distinct}),
        num_variables=num_variables,
        constraint_rows=tuple(constraint_row_ranges(constraints, dims)),
    )

    log.debug(
        "Canonicalized %d constraints: %d variables (%d columns), dims %s",
        len(constraints), len(distinct), num_variables, descriptor.cone_dims(),
    )
    return descriptor
