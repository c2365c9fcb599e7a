"""Shape validation and manipulation utilities.

All shapes in conejax are ``(rows, cols)`` pairs. Values are vectorized in
column-major order, so element ``(i, j)`` of a ``(rows, cols)`` node sits at
position ``j * rows + i`` of its vectorization.
"""

from typing import Tuple, Union

import jax.numpy as jnp
import numpy as np


def check_static_shape(shape: Tuple[int, ...]) -> None:
    """Check that shape is a pair of static, positive integer dimensions.

    Args:
        shape: Shape tuple to validate.

    Raises:
        ValueError: If shape is not a pair or contains non-positive or
            non-integer dimensions.
    """
    if not isinstance(shape, (tuple, list)):
        raise ValueError(f"Shape must be tuple or list, got {type(shape)}")

    if len(shape) != 2:
        raise ValueError(f"Shape must be a (rows, cols) pair, got {shape}")

    for i, dim in enumerate(shape):
        if isinstance(dim, bool) or not isinstance(dim, (int, np.integer)):
            raise ValueError(f"Shape dimension {i} must be integer, got {type(dim)}")
        if dim <= 0:
            raise ValueError(f"Shape dimension {i} must be positive, got {dim}")


def flatten_shape(shape: Tuple[int, int]) -> int:
    """Compute total number of elements in shape (its scalar width).

    Args:
        shape: Shape tuple.

    Returns:
        Total number of elements.
    """
    rows, cols = shape
    return rows * cols


def is_scalar_shape(shape: Tuple[int, int]) -> bool:
    """Check if shape represents a scalar."""
    return tuple(shape) == (1, 1)


def is_column_shape(shape: Tuple[int, int]) -> bool:
    """Check if shape represents a column vector."""
    return shape[1] == 1


def transpose_shape(shape: Tuple[int, int]) -> Tuple[int, int]:
    """Compute shape after transposition."""
    rows, cols = shape
    return (cols, rows)


def as_matrix_shape(array_shape: Tuple[int, ...], vector_as_row: bool = False) -> Tuple[int, int]:
    """Lift the shape of a 0-, 1- or 2-d constant to a (rows, cols) pair.

    Args:
        array_shape: Shape of the constant array.
        vector_as_row: Treat 1-d arrays as rows instead of columns.

    Returns:
        The matching (rows, cols) shape.

    Raises:
        ValueError: If the array has more than two dimensions.
    """
    if len(array_shape) == 0:
        return (1, 1)
    if len(array_shape) == 1:
        return (1, array_shape[0]) if vector_as_row else (array_shape[0], 1)
    if len(array_shape) == 2:
        return (array_shape[0], array_shape[1])
    raise ValueError(f"Constants must have at most 2 dimensions, got shape {array_shape}")


def normalize_index(key: Union[int, slice], dim: int) -> slice:
    """Turn an integer or slice along one axis into a non-empty slice.

    Args:
        key: Integer position or slice.
        dim: Length of the axis being indexed.

    Returns:
        Equivalent slice with explicit start, stop and step.

    Raises:
        ValueError: If the selection is out of bounds or empty.
    """
    if isinstance(key, (int, np.integer)) and not isinstance(key, bool):
        pos = int(key)
        if pos < 0:
            pos += dim
        if pos < 0 or pos >= dim:
            raise ValueError(f"Index {key} out of bounds for axis of length {dim}")
        return slice(pos, pos + 1, 1)

    if not isinstance(key, slice):
        raise ValueError(f"Index must be int or slice, got {type(key)}")

    start, stop, step = key.indices(dim)
    if len(range(start, stop, step)) == 0:
        raise ValueError(f"Index {key} selects no elements from axis of length {dim}")
    # A negative stop from indices() means "before position 0", not "from the end".
    if stop < 0:
        return slice(start, None, step)
    return slice(start, stop, step)


def slice_length(key: slice, dim: int) -> int:
    """Number of positions a slice selects along an axis of length ``dim``."""
    return len(range(*key.indices(dim)))


def vec_index_grid(shape: Tuple[int, int]) -> jnp.ndarray:
    """Grid holding, at ``(i, j)``, the column-major position of element ``(i, j)``.

    Args:
        shape: Shape of the matrix being vectorized.

    Returns:
        Integer array of the given shape.
    """
    rows, cols = shape
    return jnp.arange(rows * cols).reshape((cols, rows)).T


def vec(matrix: jnp.ndarray) -> jnp.ndarray:
    """Column-major vectorization of a 2-d array."""
    return jnp.ravel(matrix.T)
