"""conejax: cone-program canonicalization on JAX."""

from conejax.api import Sense, Solution, solve
from conejax.canonicalize import (
    CanonicalDescriptor,
    Variable,
    assign_offsets,
    canonicalize,
    collect_variables,
)
from conejax.constraints import ConeKind, classify_constraints, compute_dimensions
from conejax.errors import (
    CanonicalizationError,
    InconsistentVariableSize,
    MalformedConstraint,
    UnsupportedConeKind,
    UnsupportedLinOpKind,
)
from conejax.linop import (
    LinOp,
    LinOpKind,
    dense_const,
    div_expr,
    eq_constr,
    exp_constr,
    hstack,
    index,
    leq_constr,
    mul_elem,
    mul_expr,
    neg_expr,
    no_op,
    parameter,
    promote,
    reshape,
    rmul_expr,
    scalar_const,
    sdp_constr,
    soc_constr,
    sum_entries,
    sum_expr,
    trace,
    transpose,
    variable,
    vstack,
)
from conejax.matrix import ConeProgram, build_cone_program

__version__ = "0.1.0"

__all__ = [
    "solve",
    "Sense",
    "Solution",
    "canonicalize",
    "CanonicalDescriptor",
    "Variable",
    "collect_variables",
    "assign_offsets",
    "ConeKind",
    "classify_constraints",
    "compute_dimensions",
    "build_cone_program",
    "ConeProgram",
    "CanonicalizationError",
    "UnsupportedConeKind",
    "MalformedConstraint",
    "InconsistentVariableSize",
    "UnsupportedLinOpKind",
    "LinOp",
    "LinOpKind",
    "variable",
    "scalar_const",
    "dense_const",
    "parameter",
    "sum_expr",
    "neg_expr",
    "mul_expr",
    "rmul_expr",
    "mul_elem",
    "div_expr",
    "promote",
    "index",
    "transpose",
    "sum_entries",
    "trace",
    "reshape",
    "hstack",
    "vstack",
    "no_op",
    "eq_constr",
    "leq_constr",
    "soc_constr",
    "exp_constr",
    "sdp_constr",
]
