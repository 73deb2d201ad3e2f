"""
Grouped (interleaved) record layout.

Records of an inverted list are stored in groups of ``group_size``
records. Inside a group, the values of one ``veclen``-wide chunk of
dimensions are stored contiguously for every record of the group, so a
read of one dimension chunk across the whole group touches a single
contiguous region:

    address = group_offset(offset) * dimension
              + l * group_size
              + in_group_id(offset)
              + j

where ``l`` is a multiple of ``veclen`` (the chunk start) and
``j < veclen`` is the position inside the chunk.

Example (group_size=4, veclen=2, dimension=4), element ``rX.dY``:

    group 0: r0.d0 r0.d1 r1.d0 r1.d1 r2.d0 r2.d1 r3.d0 r3.d1
             r0.d2 r0.d3 r1.d2 r1.d3 r2.d2 r2.d3 r3.d2 r3.d3
    group 1: r4.d0 r4.d1 ...
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np
from numpy.typing import NDArray

from ..core.exceptions import ValidationError
from ..utils.validation import is_power_of_two


# Widest single memory transaction the layout is tuned for
TRANSACTION_BYTES = 16


def choose_veclen(dimension: int, dtype=np.float32) -> int:
    """
    Pick the widest chunk length that fits one transaction and divides
    ``dimension``.
    
    Example:
        >>> choose_veclen(128, np.float32)
        4
        >>> choose_veclen(6, np.float32)
        2
    """
    itemsize = np.dtype(dtype).itemsize
    veclen = max(1, TRANSACTION_BYTES // itemsize)
    while veclen > 1 and dimension % veclen != 0:
        veclen //= 2
    return veclen


@dataclass(frozen=True)
class GroupedLayout:
    """
    Pure address arithmetic for the interleaved list format.
    
    Attributes:
        group_size: Records interleaved together (power of two)
        veclen: Width of a dimension chunk stored as a unit
    """
    
    group_size: int = 32
    veclen: int = 4
    
    def __post_init__(self):
        if not is_power_of_two(self.group_size):
            raise ValidationError(
                f"group_size must be a power of two, got {self.group_size}"
            )
        if self.veclen < 1:
            raise ValidationError(f"veclen must be >= 1, got {self.veclen}")
    
    def validate(self, dimension: int) -> None:
        """Check that ``dimension`` can be laid out with this veclen."""
        if dimension % self.veclen != 0:
            raise ValidationError(
                f"Dimension {dimension} is not a multiple of veclen {self.veclen}"
            )
    
    # =========================================================================
    # FORWARD MAPPING
    # =========================================================================
    
    def group_offset(self, offset: int) -> int:
        """Logical offset of the first record in ``offset``'s group."""
        return (offset // self.group_size) * self.group_size
    
    def in_group_id(self, offset: int) -> int:
        """Element start of the record inside each chunk row of its group."""
        return (offset % self.group_size) * self.veclen
    
    def address(self, offset: int, l: int, j: int, dimension: int) -> int:
        """
        Physical element address of dimension ``l + j`` of a record.
        
        Args:
            offset: Logical record offset within the list
            l: Chunk start (multiple of veclen)
            j: Position inside the chunk (< veclen)
            dimension: Vector dimension
        """
        return (
            self.group_offset(offset) * dimension
            + l * self.group_size
            + self.in_group_id(offset)
            + j
        )
    
    def record_addresses(self, offset: int, dimension: int) -> NDArray:
        """
        Addresses of every dimension of a record, in dimension order.
        
        Returns:
            int64 array of shape (dimension,)
        """
        dims = np.arange(dimension, dtype=np.int64)
        l = dims - dims % self.veclen
        j = dims % self.veclen
        base = self.group_offset(offset) * dimension + self.in_group_id(offset)
        return base + l * self.group_size + j
    
    # =========================================================================
    # INVERSE MAPPING
    # =========================================================================
    
    def locate(self, address: int, dimension: int) -> Tuple[int, int]:
        """
        Inverse of :meth:`address`.
        
        Returns:
            Tuple of (record offset, dimension index)
        """
        group_elements = dimension * self.group_size
        chunk_elements = self.veclen * self.group_size
        
        group, rem = divmod(address, group_elements)
        chunk, rem = divmod(rem, chunk_elements)
        record, j = divmod(rem, self.veclen)
        
        return group * self.group_size + record, chunk * self.veclen + j
    
    # =========================================================================
    # SIZING
    # =========================================================================
    
    def round_up(self, n_records: int) -> int:
        """Round a record count up to a whole number of groups."""
        groups = -(-n_records // self.group_size)
        return groups * self.group_size
    
    def n_groups(self, n_records: int) -> int:
        return -(-n_records // self.group_size)
    
    def block_elements(self, capacity: int, dimension: int) -> int:
        """Number of scalar slots needed by a block of ``capacity`` records."""
        return self.round_up(capacity) * dimension
