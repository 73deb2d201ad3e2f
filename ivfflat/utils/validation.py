"""
Input validation utilities.
"""

from typing import Optional

import numpy as np
from numpy.typing import NDArray

from ..core.exceptions import (
    ValidationError,
    DimensionMismatchError,
    DuplicateIdError,
)


# Maximum limits
MAX_DIMENSION = 65536


def validate_dimension(dimension: int, min_dim: int = 1, max_dim: int = MAX_DIMENSION) -> int:
    """
    Validate vector dimension.
    
    Raises:
        ValidationError: If dimension is invalid
    """
    if isinstance(dimension, bool) or not isinstance(dimension, (int, np.integer)):
        raise ValidationError(
            f"Dimension must be an integer, got {type(dimension).__name__}"
        )
    
    if dimension < min_dim:
        raise ValidationError(f"Dimension too small: {dimension} (min {min_dim})")
    
    if dimension > max_dim:
        raise ValidationError(f"Dimension too large: {dimension} (max {max_dim})")
    
    return int(dimension)


def is_power_of_two(value: int) -> bool:
    return value > 0 and (value & (value - 1)) == 0


def validate_vector(vector, dimension: int, dtype=np.float32) -> NDArray:
    """
    Coerce a single vector to a 1D array of ``dtype``.
    
    Raises:
        DimensionMismatchError: If the vector length differs from ``dimension``
    """
    vector = np.asarray(vector, dtype=dtype)
    
    if vector.ndim != 1:
        raise ValidationError(f"Vector must be 1D, got {vector.ndim}D")
    
    if len(vector) != dimension:
        raise DimensionMismatchError(
            f"Vector dimension {len(vector)} != index dimension {dimension}"
        )
    
    return vector


def validate_vectors(vectors, dimension: int, dtype=np.float32) -> NDArray:
    """
    Coerce a batch of vectors to a 2D array of ``dtype``.
    
    A single 1D vector is accepted as a batch of one.
    
    Raises:
        DimensionMismatchError: If the row width differs from ``dimension``
    """
    vectors = np.asarray(vectors, dtype=dtype)
    
    if vectors.ndim == 1:
        vectors = vectors.reshape(1, -1)
    
    if vectors.ndim != 2:
        raise ValidationError(f"Vectors must be 2D, got {vectors.ndim}D")
    
    if vectors.shape[1] != dimension:
        raise DimensionMismatchError(
            f"Vector dimension {vectors.shape[1]} != index dimension {dimension}"
        )
    
    return vectors


def validate_ids(ids, count: int, existing: Optional[set] = None) -> NDArray:
    """
    Validate a batch of record ids.
    
    Args:
        ids: Iterable of non-negative integers
        count: Expected number of ids
        existing: Ids already stored (checked for collisions)
        
    Returns:
        int64 array of ids
    """
    ids = np.asarray(ids, dtype=np.int64).reshape(-1)
    
    if len(ids) != count:
        raise ValidationError(f"Number of ids ({len(ids)}) != vectors ({count})")
    
    if count == 0:
        return ids
    
    if ids.min() < 0:
        raise ValidationError("Record ids must be non-negative")
    
    if len(np.unique(ids)) != count:
        raise DuplicateIdError("Record ids repeat within the batch")
    
    if existing:
        for id in ids.tolist():
            if id in existing:
                raise DuplicateIdError(f"ID {id} already exists in index")
    
    return ids
