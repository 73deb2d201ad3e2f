"""
Pack and unpack flat records into interleaved list blocks.

Every function here is a pure transformation over caller-owned buffers:
nothing allocates list storage. Packing distinct offsets of the same
block touches disjoint slots; packing and unpacking the same offset
concurrently must be serialized by the caller.
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray

from .grouped import GroupedLayout


def grouped_view(
    block: NDArray,
    dimension: int,
    veclen: int,
    group_size: int,
) -> NDArray:
    """
    Zero-copy 4D view of a block.
    
    Axis order is ``(group, chunk, record_in_group, j)``; chunk ``c``
    covers dimensions ``c*veclen .. c*veclen + veclen - 1``. Only whole
    groups are viewed.
    """
    group_elements = dimension * group_size
    n_groups = block.size // group_elements
    return block[: n_groups * group_elements].reshape(
        n_groups, dimension // veclen, group_size, veclen
    )


def pack(
    flat_record: NDArray,
    block: NDArray,
    dimension: int,
    veclen: int,
    offset: int,
    group_size: int = 32,
) -> None:
    """
    Write one flat record into ``block`` at logical ``offset``.
    
    Args:
        flat_record: Vector of ``dimension`` values
        block: Interleaved block with room for ``offset + 1`` records
        dimension: Vector dimension (multiple of veclen)
        veclen: Chunk width
        offset: Logical record offset
        group_size: Records per group
    """
    layout = GroupedLayout(group_size, veclen)
    block[layout.record_addresses(offset, dimension)] = flat_record


def unpack(
    block: NDArray,
    flat_record: NDArray,
    dimension: int,
    veclen: int,
    offset: int,
    group_size: int = 32,
) -> NDArray:
    """
    Read the record at logical ``offset`` into ``flat_record``.
    
    Returns:
        ``flat_record``, for chaining
    """
    layout = GroupedLayout(group_size, veclen)
    flat_record[:] = block[layout.record_addresses(offset, dimension)]
    return flat_record


def pack_batch(
    records: NDArray,
    block: NDArray,
    dimension: int,
    veclen: int,
    start_offset: int,
    group_size: int = 32,
) -> None:
    """
    Pack consecutive records starting at ``start_offset``.
    
    Equivalent to calling :func:`pack` for each row, but writes whole
    groups through the grouped view where the range allows it.
    """
    n = len(records)
    if n == 0:
        return
    
    layout = GroupedLayout(group_size, veclen)
    end = start_offset + n
    
    # Leading partial group
    head_end = min(end, layout.round_up(start_offset))
    for i, offset in enumerate(range(start_offset, head_end)):
        pack(records[i], block, dimension, veclen, offset, group_size)
    
    first_full = head_end
    full_groups = (end - first_full) // group_size
    
    if full_groups > 0:
        view = grouped_view(block, dimension, veclen, group_size)
        g0 = first_full // group_size
        chunk = records[first_full - start_offset: first_full - start_offset + full_groups * group_size]
        # (groups, record, chunk, j) -> (groups, chunk, record, j)
        view[g0: g0 + full_groups] = chunk.reshape(
            full_groups, group_size, dimension // veclen, veclen
        ).transpose(0, 2, 1, 3)
    
    # Trailing partial group
    tail_start = first_full + full_groups * group_size
    for offset in range(tail_start, end):
        pack(records[offset - start_offset], block, dimension, veclen, offset, group_size)


def unpack_all(
    block: NDArray,
    size: int,
    dimension: int,
    veclen: int,
    group_size: int = 32,
) -> NDArray:
    """
    Unpack the first ``size`` records of a block into a new flat array.
    
    Returns:
        Array of shape (size, dimension)
    """
    if size == 0:
        return np.empty((0, dimension), dtype=block.dtype)
    
    view = grouped_view(block, dimension, veclen, group_size)
    n_groups = -(-size // group_size)
    flat = view[:n_groups].transpose(0, 2, 1, 3).reshape(n_groups * group_size, dimension)
    return np.ascontiguousarray(flat[:size])
