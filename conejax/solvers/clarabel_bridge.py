"""Clarabel bridge for cone programs.

Clarabel solves

    minimize    (1/2) x^T P x + q^T x
    subject to  A x + s = b,  s in K

which is exactly the ``ConeProgram`` layout with ``P = 0``, so the rows and
cone order built by ``conejax.matrix`` go through unchanged.
"""

import logging
from typing import TYPE_CHECKING, Any, Dict, List

import clarabel
import jax.numpy as jnp
import numpy as np
import scipy.sparse as spa

if TYPE_CHECKING:
    from conejax.api import Solution

from conejax.canonicalize import CanonicalDescriptor
from conejax.matrix import ConeProgram, split_by_cone, split_by_constraint, unpack_primal

log = logging.getLogger(__name__)


def solve_cone_clarabel(
    program: ConeProgram,
    descriptor: CanonicalDescriptor,
    verbose: bool = False,
    **settings_kwargs: Any,
) -> "Solution":
    """Solve a cone program with Clarabel.

    Args:
        program: Cone program from ``build_cone_program``.
        descriptor: Layout the program was built from.
        verbose: Print Clarabel's iteration log.
        **settings_kwargs: Attributes of ``clarabel.DefaultSettings`` to set
            (for example ``max_iter``, ``tol_gap_abs``, ``tol_feas``).

    Returns:
        Solution object with optimal values and solver information.

    Raises:
        ValueError: If a settings key is not a Clarabel setting.
    """
    from conejax.api import Solution

    settings = clarabel.DefaultSettings()
    settings.verbose = verbose
    for key, value in settings_kwargs.items():
        if not hasattr(settings, key):
            raise ValueError(f"Unknown Clarabel setting {key!r}")
        setattr(settings, key, value)

    n = program.n_vars
    P = spa.csc_matrix((n, n))
    q = np.asarray(program.c, dtype=np.float64)
    A = spa.csc_matrix(np.asarray(program.A, dtype=np.float64))
    b = np.asarray(program.b, dtype=np.float64)
    cones = _build_cones(program.cone_dims)

    log.debug("Clarabel: %d variables, %d rows, %d cones", n, program.n_rows, len(cones))

    try:
        solver = clarabel.DefaultSolver(P, q, A, b, cones, settings)
        result = solver.solve()
    except Exception as e:
        log.warning("Clarabel failed: %s", e)
        return Solution(
            status="error",
            optimal_value=float("nan"),
            primal={var_id: jnp.full(shape, jnp.nan) for var_id, shape in descriptor.var_shapes.items()},
            dual={},
            info={"error": str(e), "solver": "clarabel"},
        )

    status = _map_status(result.status)
    x = jnp.asarray(np.asarray(result.x, dtype=np.float64))
    z = jnp.asarray(np.asarray(result.z, dtype=np.float64))

    if status in ("optimal", "optimal_inaccurate"):
        optimal_value = float(program.objective_value(x))
    elif status == "infeasible":
        optimal_value = -float("inf") if program.maximize else float("inf")
    elif status == "unbounded":
        optimal_value = float("inf") if program.maximize else -float("inf")
    else:
        optimal_value = float("nan")

    if status == "optimal":
        log.info("Clarabel solved in %d iterations", result.iterations)
    else:
        log.warning("Clarabel finished with status %s", result.status)

    info = {
        "iterations": int(result.iterations),
        "solve_time": float(result.solve_time),
        "raw_status": str(result.status),
        "solver": "clarabel",
        "constraint_duals": split_by_constraint(z, descriptor),
    }

    return Solution(
        status=status,
        optimal_value=optimal_value,
        primal=unpack_primal(x, descriptor),
        dual=split_by_cone(z, program.cone_dims),
        info=info,
    )


def _build_cones(cone_dims: Dict[str, Any]) -> List[Any]:
    """Clarabel cone list in row order: zero, nonnegative, SOC, exponential."""
    cones = []
    if cone_dims["zero"] > 0:
        cones.append(clarabel.ZeroConeT(cone_dims["zero"]))
    if cone_dims["nonneg"] > 0:
        cones.append(clarabel.NonnegativeConeT(cone_dims["nonneg"]))
    cones.extend(clarabel.SecondOrderConeT(dim) for dim in cone_dims["soc"])
    cones.extend(clarabel.ExponentialConeT() for _ in range(cone_dims["exp"]))
    return cones


def _map_status(status: Any) -> str:
    """Map a Clarabel status to the Solution status vocabulary."""
    # Compared by name: str() gives "Solved" or "SolverStatus.Solved" depending on the release.
    name = str(status).split(".")[-1]
    if name == "Solved":
        return "optimal"
    elif name == "AlmostSolved":
        return "optimal_inaccurate"
    elif name in ("PrimalInfeasible", "AlmostPrimalInfeasible"):
        return "infeasible"
    elif name in ("DualInfeasible", "AlmostDualInfeasible"):
        return "unbounded"
    elif name == "MaxIterations":
        return "max_iter"
    else:
        return "error"
