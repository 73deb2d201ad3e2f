"""
Inverted list: one cluster's interleaved record storage.

A list owns an interleaved block holding ``capacity`` record slots and a
parallel int64 id array aligned 1:1 with logical offsets. Offsets are
assigned in append order. Because the interleaved address of an offset
does not depend on the capacity, growing a list copies the old block into
the prefix of a larger one and the layout stays valid.

Readers go through :meth:`InvertedList.snapshot`, which returns the
block, ids and size that were published together. Writers build any new
buffer completely before publishing it with a single reference swap, so a
reader sees either the old storage in full or the new storage in full.
"""

from __future__ import annotations

import threading
from typing import Iterator, NamedTuple, Optional, Tuple

import numpy as np
from numpy.typing import NDArray

from ..core.exceptions import OutOfRangeError, ValidationError
from ..layout import GroupedLayout, pack, pack_batch, unpack, unpack_all
from ..utils.logging import get_logger
from .base import INVALID_ID


logger = get_logger(__name__)


class ListSnapshot(NamedTuple):
    """Consistent view of a list's storage."""
    data: NDArray
    ids: NDArray
    size: int


class InvertedList:
    """
    Growable interleaved storage for one cluster.
    
    Example:
        >>> lst = InvertedList(0, dimension=8, layout=GroupedLayout(32, 4))
        >>> lst.append(np.ones(8), id=7)
        0
        >>> lst.read(0)[1]
        7
    """
    
    def __init__(
        self,
        cluster_id: int,
        dimension: int,
        layout: GroupedLayout,
        dtype=np.float32,
    ):
        layout.validate(dimension)
        
        self.cluster_id = cluster_id
        self.dimension = dimension
        self.layout = layout
        self.dtype = np.dtype(dtype)
        
        self._snapshot = ListSnapshot(
            data=np.zeros(0, dtype=self.dtype),
            ids=np.zeros(0, dtype=np.int64),
            size=0,
        )
        self._lock = threading.Lock()
    
    # =========================================================================
    # PROPERTIES
    # =========================================================================
    
    @property
    def size(self) -> int:
        return self._snapshot.size
    
    @property
    def capacity(self) -> int:
        return len(self._snapshot.ids)
    
    @property
    def data(self) -> NDArray:
        """Interleaved block of ``capacity * dimension`` elements."""
        return self._snapshot.data
    
    @property
    def ids(self) -> NDArray:
        """Ids of the stored records, in offset order."""
        snap = self._snapshot
        return snap.ids[: snap.size]
    
    @property
    def memory_bytes(self) -> int:
        snap = self._snapshot
        return snap.data.nbytes + snap.ids.nbytes
    
    def snapshot(self) -> ListSnapshot:
        """Return the currently published storage."""
        return self._snapshot
    
    # =========================================================================
    # GROWTH
    # =========================================================================
    
    def _grown(self, snap: ListSnapshot, needed: int) -> ListSnapshot:
        """Copy ``snap`` into buffers large enough for ``needed`` records."""
        capacity = len(snap.ids)
        if needed <= capacity:
            return snap
        
        new_capacity = self.layout.round_up(max(needed, 2 * capacity, self.layout.group_size))
        
        data = np.zeros(new_capacity * self.dimension, dtype=self.dtype)
        data[: snap.data.size] = snap.data
        ids = np.full(new_capacity, INVALID_ID, dtype=np.int64)
        ids[:capacity] = snap.ids
        
        logger.debug(
            f"List {self.cluster_id}: capacity {capacity} -> {new_capacity}"
        )
        return ListSnapshot(data, ids, snap.size)
    
    def reserve(self, n_records: int) -> None:
        """Grow capacity to hold at least ``n_records``."""
        with self._lock:
            self._snapshot = self._grown(self._snapshot, n_records)
    
    # =========================================================================
    # WRITE OPERATIONS
    # =========================================================================
    
    def append(self, flat_record: NDArray, id: int) -> int:
        """
        Append one record.
        
        Args:
            flat_record: Vector of ``dimension`` values
            id: Record id stored alongside the packed record
            
        Returns:
            Logical offset assigned to the record
        """
        flat_record = np.asarray(flat_record, dtype=self.dtype)
        if flat_record.shape != (self.dimension,):
            raise ValidationError(
                f"Record shape {flat_record.shape} != ({self.dimension},)"
            )
        
        with self._lock:
            snap = self._grown(self._snapshot, self._snapshot.size + 1)
            offset = snap.size
            
            pack(
                flat_record, snap.data, self.dimension,
                self.layout.veclen, offset, self.layout.group_size,
            )
            snap.ids[offset] = id
            
            self._snapshot = ListSnapshot(snap.data, snap.ids, offset + 1)
            return offset
    
    def append_batch(self, records: NDArray, ids: NDArray) -> NDArray:
        """
        Append several records in order.
        
        Returns:
            Offsets assigned to the records
        """
        records = np.asarray(records, dtype=self.dtype).reshape(-1, self.dimension)
        ids = np.asarray(ids, dtype=np.int64).reshape(-1)
        if len(records) != len(ids):
            raise ValidationError(
                f"Number of ids ({len(ids)}) != records ({len(records)})"
            )
        
        with self._lock:
            start = self._snapshot.size
            snap = self._grown(self._snapshot, start + len(records))
            
            pack_batch(
                records, snap.data, self.dimension,
                self.layout.veclen, start, self.layout.group_size,
            )
            snap.ids[start: start + len(ids)] = ids
            
            self._snapshot = ListSnapshot(snap.data, snap.ids, start + len(records))
            return np.arange(start, start + len(records), dtype=np.int64)
    
    def truncate(self, size: int) -> None:
        """
        Drop records at offsets ``>= size``.
        
        Used to roll back a partially applied batch.
        """
        with self._lock:
            snap = self._snapshot
            if size < 0 or size > snap.size:
                raise OutOfRangeError(f"Cannot truncate list of size {snap.size} to {size}")
            
            ids = snap.ids.copy()
            ids[size:] = INVALID_ID
            self._snapshot = ListSnapshot(snap.data, ids, size)
    
    def clear(self) -> None:
        """Release all storage."""
        with self._lock:
            self._snapshot = ListSnapshot(
                np.zeros(0, dtype=self.dtype), np.zeros(0, dtype=np.int64), 0
            )
    
    # =========================================================================
    # READ OPERATIONS
    # =========================================================================
    
    def read(self, offset: int) -> Tuple[NDArray, int]:
        """
        Unpack the record stored at ``offset``.
        
        Raises:
            OutOfRangeError: If ``offset >= size``
        """
        snap = self._snapshot
        if offset < 0 or offset >= snap.size:
            raise OutOfRangeError(
                f"Offset {offset} out of range for list {self.cluster_id} "
                f"of size {snap.size}"
            )
        
        record = np.empty(self.dimension, dtype=self.dtype)
        unpack(
            snap.data, record, self.dimension,
            self.layout.veclen, offset, self.layout.group_size,
        )
        return record, int(snap.ids[offset])
    
    def vectors(self) -> NDArray:
        """Unpack every stored record, shape (size, dimension)."""
        snap = self._snapshot
        return unpack_all(
            snap.data, snap.size, self.dimension,
            self.layout.veclen, self.layout.group_size,
        )
    
    def __iter__(self) -> Iterator[Tuple[NDArray, int]]:
        snap = self._snapshot
        for offset in range(snap.size):
            record = np.empty(self.dimension, dtype=self.dtype)
            unpack(
                snap.data, record, self.dimension,
                self.layout.veclen, offset, self.layout.group_size,
            )
            yield record, int(snap.ids[offset])
    
    def __len__(self) -> int:
        return self.size
    
    # =========================================================================
    # PERSISTENCE
    # =========================================================================
    
    @classmethod
    def from_packed(
        cls,
        cluster_id: int,
        dimension: int,
        layout: GroupedLayout,
        data: NDArray,
        ids: NDArray,
        size: int,
        dtype: Optional[np.dtype] = None,
    ) -> "InvertedList":
        """
        Restore a list from an already interleaved block.
        
        Args:
            data: Block of ``capacity * dimension`` elements
            ids: Id array of ``capacity`` entries
            size: Number of valid records
        """
        dtype = np.dtype(dtype or data.dtype)
        capacity = len(ids)
        
        if data.size != capacity * dimension:
            raise ValidationError(
                f"Block has {data.size} elements, expected {capacity * dimension}"
            )
        if capacity % layout.group_size != 0:
            raise ValidationError(
                f"Capacity {capacity} is not a multiple of group size {layout.group_size}"
            )
        if size > capacity:
            raise ValidationError(f"Size {size} exceeds capacity {capacity}")
        
        lst = cls(cluster_id, dimension, layout, dtype)
        lst._snapshot = ListSnapshot(
            np.array(data, dtype=dtype, copy=True),
            np.array(ids, dtype=np.int64, copy=True),
            int(size),
        )
        return lst
    
    def __repr__(self) -> str:
        return (
            f"InvertedList(cluster_id={self.cluster_id}, "
            f"size={self.size}, capacity={self.capacity})"
        )
