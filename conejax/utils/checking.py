"""Validation and checking utilities."""

from typing import Tuple


def check_shapes_compatible(shape1: Tuple[int, int], shape2: Tuple[int, int]) -> None:
    """Check that two shapes are equal, as required for sums and elementwise ops.

    Args:
        shape1: First shape.
        shape2: Second shape.

    Raises:
        ValueError: If the shapes differ. Broadcasting is explicit in a
            linear-operator tree (see ``promote``), never implicit.
    """
    if tuple(shape1) != tuple(shape2):
        raise ValueError(f"Incompatible shapes {tuple(shape1)} and {tuple(shape2)}")


def check_matrix_multiply_shapes(left_shape: Tuple[int, int], right_shape: Tuple[int, int]) -> Tuple[int, int]:
    """Check matrix multiplication shapes and return result shape.

    Args:
        left_shape: Shape of left operand.
        right_shape: Shape of right operand.

    Returns:
        Shape of the result.

    Raises:
        ValueError: If the inner dimensions do not agree.
    """
    if left_shape[1] != right_shape[0]:
        raise ValueError(
            f"Cannot multiply shapes {tuple(left_shape)} and {tuple(right_shape)}: "
            f"inner dimensions {left_shape[1]} and {right_shape[0]} differ"
        )
    return (left_shape[0], right_shape[1])


def create_error_message(
    error_type: str,
    context: dict,
    suggestion: str | None = None,
) -> str:
    """Create informative error message.

    Args:
        error_type: Type of error.
        context: Context information.
        suggestion: Optional suggestion for fixing.

    Returns:
        Formatted error message.
    """
    message = f"conejax {error_type}:"

    for key, value in context.items():
        message += f"\n  {key}: {value}"

    if suggestion:
        message += f"\n\nSuggestion: {suggestion}"

    return message
