"""OSQP solver bridge for linear cone programs via jaxopt."""

import logging
from typing import TYPE_CHECKING, Any, Dict, Optional, Tuple

import jax.numpy as jnp
import jaxopt

if TYPE_CHECKING:
    from conejax.api import Solution

from conejax.canonicalize import CanonicalDescriptor
from conejax.constraints import ConeKind
from conejax.matrix import ConeProgram, split_by_constraint, unpack_primal

log = logging.getLogger(__name__)


def solve_cone_osqp(
    program: ConeProgram,
    descriptor: CanonicalDescriptor,
    tol: float = 1e-6,
    max_iter: int = 4000,
    **osqp_kwargs: Any,
) -> "Solution":
    """Solve a cone program with only zero and nonnegative cones using jaxopt.OSQP.

    The program is handed to OSQP as

        minimize    c^T x
        subject to  A_eq x = b_eq
                    A_ineq x <= b_ineq

    where the equality rows are the zero cone and the inequality rows the
    nonnegative cone of the program.

    Args:
        program: Cone program from ``build_cone_program``.
        descriptor: Layout the program was built from.
        tol: Convergence tolerance.
        max_iter: Maximum number of iterations.
        **osqp_kwargs: Additional jaxopt.OSQP parameters.

    Returns:
        Solution object with optimal values and solver information.

    Raises:
        ValueError: If the program has second-order or exponential cones.
    """
    from conejax.api import Solution

    unsupported = []
    if program.cone_dims["soc"]:
        unsupported.append(ConeKind.SOC.name)
    if program.cone_dims["exp"]:
        unsupported.append(ConeKind.EXP.name)
    if unsupported:
        raise ValueError(
            "OSQP solver only supports EQ and LEQ constraints. "
            f"Problem has {', '.join(unsupported)} constraints; use solver='clarabel'."
        )

    osqp_data = _convert_to_osqp_format(program)

    solver = jaxopt.OSQP(tol=tol, maxiter=max_iter, **osqp_kwargs)

    try:
        result = solver.run(
            params_obj=(osqp_data["P"], osqp_data["q"]),
            params_eq=osqp_data["eq_constraints"],
            params_ineq=osqp_data["ineq_constraints"],
        )
    except Exception as e:
        log.warning("OSQP failed: %s", e)
        return Solution(
            status="error",
            optimal_value=float("nan"),
            primal={var_id: jnp.full(shape, jnp.nan) for var_id, shape in descriptor.var_shapes.items()},
            dual={},
            info={"error": str(e), "solver": "osqp"},
        )

    x_opt = result.params.primal
    num_iter = int(result.state.iter_num)
    status = _map_status(int(result.state.status), num_iter, max_iter)

    if status == "optimal":
        optimal_value = float(program.objective_value(x_opt))
    elif status == "infeasible":
        optimal_value = -float("inf") if program.maximize else float("inf")
    elif status == "unbounded":
        optimal_value = float("inf") if program.maximize else -float("inf")
    else:
        optimal_value = float("nan")

    if status != "optimal":
        log.warning("OSQP finished with status %s after %d iterations", status, num_iter)

    dual = {}
    if osqp_data["eq_constraints"] is not None:
        dual[ConeKind.EQ] = result.params.dual_eq
    if osqp_data["ineq_constraints"] is not None:
        dual[ConeKind.LEQ] = result.params.dual_ineq

    # Zero-cone rows come first, matching the program row order
    z = jnp.concatenate([dual[cone] for cone in (ConeKind.EQ, ConeKind.LEQ) if cone in dual] or [jnp.zeros(0)])

    residuals = _compute_residuals(program, x_opt)

    info = {
        "iterations": num_iter,
        "primal_residual": residuals["primal"],
        "solver": "osqp",
        "tol": tol,
        "constraint_duals": split_by_constraint(z, descriptor),
    }

    return Solution(
        status=status,
        optimal_value=optimal_value,
        primal=unpack_primal(x_opt, descriptor),
        dual=dual,
        info=info,
    )


def _convert_to_osqp_format(program: ConeProgram) -> Dict[str, Any]:
    """Split the program rows into jaxopt.OSQP objective, equality and inequality data."""
    n_vars = program.n_vars
    n_eq = program.cone_dims["zero"]
    n_ineq = program.cone_dims["nonneg"]

    eq_constraints: Optional[Tuple[jnp.ndarray, jnp.ndarray]] = None
    ineq_constraints: Optional[Tuple[jnp.ndarray, jnp.ndarray]] = None

    # Zero cone: A x + s = b, s = 0
    if n_eq > 0:
        eq_constraints = (program.A[:n_eq], program.b[:n_eq])

    # Nonnegative cone: A x + s = b, s >= 0  ->  A x <= b
    if n_ineq > 0:
        ineq_constraints = (program.A[n_eq:n_eq + n_ineq], program.b[n_eq:n_eq + n_ineq])

    return {
        "P": jnp.zeros((n_vars, n_vars)),
        "q": program.c,
        "eq_constraints": eq_constraints,
        "ineq_constraints": ineq_constraints,
    }


def _map_status(status_code: int, num_iter: int, max_iter: int) -> str:
    """Map a jaxopt BoxOSQP status code to the Solution status vocabulary."""
    if status_code == jaxopt.BoxOSQP.SOLVED:
        return "optimal"
    elif status_code == jaxopt.BoxOSQP.PRIMAL_INFEASIBLE:
        return "infeasible"
    elif status_code == jaxopt.BoxOSQP.DUAL_INFEASIBLE:
        return "unbounded"
    elif num_iter >= max_iter:
        return "max_iter"
    else:
        return "error"


def _compute_residuals(program: ConeProgram, x: jnp.ndarray) -> Dict[str, float]:
    """Compute primal residuals of the OSQP solution."""
    n_eq = program.cone_dims["zero"]
    n_ineq = program.cone_dims["nonneg"]
    residuals = {}

    if n_eq > 0:
        eq_residual = program.A[:n_eq] @ x - program.b[:n_eq]
        residuals["primal_eq"] = float(jnp.linalg.norm(eq_residual))
    else:
        residuals["primal_eq"] = 0.0

    if n_ineq > 0:
        rows = slice(n_eq, n_eq + n_ineq)
        ineq_residual = jnp.maximum(program.A[rows] @ x - program.b[rows], 0)
        residuals["primal_ineq"] = float(jnp.linalg.norm(ineq_residual))
    else:
        residuals["primal_ineq"] = 0.0

    residuals["primal"] = max(residuals["primal_eq"], residuals["primal_ineq"])
    return residuals


def check_osqp_available() -> bool:
    """Check if OSQP is available via jaxopt.

    Returns:
        True if OSQP is available, False otherwise.
    """
    try:
        jaxopt.OSQP()
        return True
    except (ImportError, AttributeError):
        return False
