"""Constraint classification by cone and cone dimensions."""

from __future__ import annotations

import enum
from typing import Dict, List, Mapping, Sequence, Tuple

from conejax.errors import MalformedConstraint, UnsupportedConeKind
from conejax.linop import LinOp, LinOpKind
from conejax.utils.checking import create_error_message
from conejax.utils.shapes import is_column_shape


class ConeKind(str, enum.Enum):
    """Cone a constraint's value must lie in."""

    EQ = "eq"    # zero cone
    LEQ = "leq"  # nonnegative orthant (value <= 0)
    SOC = "soc"  # second-order cone
    EXP = "exp"  # exponential cone
    SDP = "sdp"  # recognized, unsupported


# Iteration order of every cone-keyed mapping, and the row order of the
# assembled cone program.
SUPPORTED_CONES = (ConeKind.EQ, ConeKind.LEQ, ConeKind.SOC, ConeKind.EXP)

_CONE_OF_KIND = {
    LinOpKind.EQ: ConeKind.EQ,
    LinOpKind.LEQ: ConeKind.LEQ,
    LinOpKind.SOC: ConeKind.SOC,
    LinOpKind.EXP: ConeKind.EXP,
    LinOpKind.SDP: ConeKind.SDP,
}


def cone_kind_of(constraint: LinOp, position: int = 0) -> ConeKind:
    """Return the supported cone of a constraint node.

    Args:
        constraint: Cone-membership node.
        position: Index of the constraint in its list, for error messages.

    Returns:
        The constraint's cone.

    Raises:
        UnsupportedConeKind: If the node is SDP or not a cone-membership node.
    """
    cone = _CONE_OF_KIND.get(constraint.kind)
    if cone is None or cone not in SUPPORTED_CONES:
        raise UnsupportedConeKind(create_error_message(
            "UnsupportedConeKind",
            {"constraint": position, "kind": constraint.kind.name},
            suggestion=f"supported cones are {', '.join(c.name for c in SUPPORTED_CONES)}",
        ))
    return cone


def classify_constraints(constraints: Sequence[LinOp]) -> Dict[ConeKind, List[LinOp]]:
    """Partition constraints by cone.

    Every supported cone gets a list, even when no constraint lands in it.
    Each list holds the wrapped child of its constraints, in input order,
    duplicates included.

    Args:
        constraints: Cone-membership nodes, each wrapping one expression.

    Returns:
        Mapping from cone to the constrained expressions.

    Raises:
        UnsupportedConeKind: If a constraint is SDP or not a constraint.
        MalformedConstraint: If a constraint does not have exactly one child.
    """
    grouped: Dict[ConeKind, List[LinOp]] = {cone: [] for cone in SUPPORTED_CONES}

    for i, constraint in enumerate(constraints):
        cone = cone_kind_of(constraint, i)
        if len(constraint.children) != 1:
            raise MalformedConstraint(create_error_message(
                "MalformedConstraint",
                {"constraint": i, "kind": constraint.kind.name, "children": len(constraint.children)},
                suggestion="a constraint node wraps exactly one expression",
            ))
        grouped[cone].append(constraint.children[0])

    return grouped


def compute_dimensions(grouped: Mapping[ConeKind, Sequence[LinOp]]) -> Dict[ConeKind, List[int]]:
    """Compute the rows each cone contributes.

    EQ, LEQ and EXP members are concatenated into one block, so each of
    those cones gets a single total. Every SOC constraint is its own cone and
    gets its own entry.

    Args:
        grouped: Output of ``classify_constraints``.

    Returns:
        Mapping from cone to its list of dimensions.

    Raises:
        MalformedConstraint: If an SOC member is not a column.
        UnsupportedConeKind: If ``grouped`` holds members of an unsupported cone.
    """
    for cone, members in grouped.items():
        if cone not in SUPPORTED_CONES and members:
            raise UnsupportedConeKind(create_error_message(
                "UnsupportedConeKind", {"kind": getattr(cone, "name", cone), "members": len(members)},
            ))

    dims: Dict[ConeKind, List[int]] = {}
    for cone in SUPPORTED_CONES:
        members = grouped.get(cone, ())
        if cone is ConeKind.SOC:
            for j, member in enumerate(members):
                if not is_column_shape(member.shape):
                    raise MalformedConstraint(create_error_message(
                        "MalformedConstraint",
                        {"soc constraint": j, "shape": member.shape},
                        suggestion="second-order cone constraints must be columns",
                    ))
            dims[cone] = [member.shape[0] for member in members]
        else:
            dims[cone] = [sum(member.size for member in members)]

    return dims


def constraint_row_ranges(
    constraints: Sequence[LinOp],
    dims: Mapping[ConeKind, Sequence[int]],
) -> List[Tuple[ConeKind, int, int]]:
    """Locate each constraint's rows in the stacked cone program.

    Rows are laid out cone by cone in ``SUPPORTED_CONES`` order and, within a
    cone, in input order.

    Args:
        constraints: Cone-membership nodes, already classified.
        dims: Output of ``compute_dimensions`` for the same constraints.

    Returns:
        One ``(cone, first row, row count)`` entry per constraint, in input order.
    """
    next_row: Dict[ConeKind, int] = {}
    row = 0
    for cone in SUPPORTED_CONES:
        next_row[cone] = row
        row += sum(dims[cone])

    ranges = []
    for i, constraint in enumerate(constraints):
        cone = cone_kind_of(constraint, i)
        count = constraint.children[0].size
        ranges.append((cone, next_row[cone], count))
        next_row[cone] += count
    return ranges
