"""Errors raised while canonicalizing a cone program.

All of them describe a malformed problem definition. They are raised where
the problem is detected and are never caught or downgraded inside conejax.
"""


class CanonicalizationError(ValueError):
    """Base class for malformed cone-program definitions."""


class UnsupportedConeKind(CanonicalizationError):
    """A constraint is SDP or is not a cone-membership node at all."""


class MalformedConstraint(CanonicalizationError):
    """A constraint has the wrong number of children or an invalid shape."""


class InconsistentVariableSize(CanonicalizationError):
    """The same variable id appears with two different shapes."""


class UnsupportedLinOpKind(CanonicalizationError):
    """The matrix builder reached a node kind it has no rule for."""
