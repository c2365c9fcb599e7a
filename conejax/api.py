"""Main API for conejax."""

from __future__ import annotations

import enum
import logging
import warnings
from dataclasses import dataclass
from typing import Any, Dict, Literal, Mapping, Optional, Sequence

import jax.numpy as jnp
from jax import tree_util

from conejax.canonicalize import canonicalize
from conejax.constraints import ConeKind
from conejax.linop import LinOp
from conejax.matrix import build_cone_program
from conejax.solvers.clarabel_bridge import solve_cone_clarabel
from conejax.solvers.osqp_bridge import solve_cone_osqp

log = logging.getLogger(__name__)


class Sense(enum.Enum):
    """Direction of optimization."""

    MINIMIZE = "minimize"
    MAXIMIZE = "maximize"


@dataclass(frozen=True)
class Solution:
    """Solution returned by the solver backends.

    Args:
        status: Solver termination status.
        optimal_value: Objective value at the solution. ``inf``/``-inf`` for
            infeasible/unbounded problems (signs follow the sense), ``nan``
            when the backend failed.
        primal: Variable id -> optimal value with the variable's shape.
        dual: Cone -> dual values of that cone's rows.
        info: Additional solver information.
    """
    status: Literal["optimal", "optimal_inaccurate", "infeasible", "unbounded", "max_iter", "error"]
    optimal_value: float
    primal: Dict[int, jnp.ndarray]
    dual: Dict[ConeKind, jnp.ndarray]
    info: Dict[str, Any]


# Register Solution as a JAX pytree
tree_util.register_pytree_node(
    Solution,
    lambda s: ((s.optimal_value, s.primal, s.dual, s.info), {"status": s.status}),
    lambda aux, children: Solution(aux["status"], *children),
)


def solve(
    sense: Sense,
    objective: LinOp,
    constraints: Sequence[LinOp],
    options: Optional[Mapping[str, float]] = None,
    solver: Literal["clarabel", "osqp"] = "clarabel",
) -> Solution:
    """Canonicalize and solve a cone program.

    Args:
        sense: Minimize or maximize.
        objective: Scalar objective tree.
        constraints: Cone-membership nodes.
        options: Solver settings, forwarded to the backend unchanged.
        solver: Backend to use ("clarabel" or "osqp").

    Returns:
        The backend's Solution.

    Raises:
        CanonicalizationError: If the problem definition is malformed.
        ValueError: If the solver name is unknown or the backend rejects the
            problem's cones or options.

    Example:
        >>> x = variable(1, (2, 1))
        >>> obj = sum_entries(x)
        >>> sol = solve(Sense.MINIMIZE, obj, [leq_constr(neg_expr(x))])
    """
    if solver not in ("clarabel", "osqp"):
        raise ValueError(f"Unknown solver {solver!r}; expected 'clarabel' or 'osqp'")
    options = dict(options or {})

    descriptor = canonicalize(objective, constraints)
    if descriptor.num_variables == 0:
        warnings.warn(
            "Problem has no variables; passing it to the solver as is.",
            UserWarning,
            stacklevel=2,
        )

    program = build_cone_program(sense, objective, descriptor)
    log.debug("Built cone program: %d rows x %d columns", program.n_rows, program.n_vars)

    if solver == "clarabel":
        return solve_cone_clarabel(program, descriptor, **options)
    return solve_cone_osqp(program, descriptor, **options)
