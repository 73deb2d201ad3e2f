"""
Saving and loading IVF-Flat indexes.

See :mod:`ivfflat.storage.format` for the file layout.
"""

from __future__ import annotations

import io
import os
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import msgpack
import numpy as np
from numpy.typing import NDArray

from ..core.exceptions import (
    CorruptedDataError,
    FormatMismatchError,
    StorageError,
    ValidationError,
)
from ..layout import GroupedLayout
from ..utils.logging import get_logger
from .format import (
    ClusterHeader,
    FileFooter,
    FileHeader,
    cluster_section_size,
    code_dtype,
    compute_checksum,
    dtype_code,
)


logger = get_logger(__name__)

PathLike = Union[str, Path]


def serialize_params(params: Dict[str, Any]) -> bytes:
    """Serialize the params dictionary with msgpack."""
    return msgpack.packb(params, use_bin_type=True)


def deserialize_params(data: bytes) -> Dict[str, Any]:
    """Deserialize the params dictionary."""
    if not data:
        return {}
    try:
        params = msgpack.unpackb(data, raw=False)
    except ValueError as e:
        raise CorruptedDataError(f"Unreadable params blob: {e}") from e
    if not isinstance(params, dict):
        raise CorruptedDataError("Params blob is not a mapping")
    return params


def save_index(state, path: PathLike, params: Optional[Dict[str, Any]] = None) -> int:
    """
    Write an index state to ``path``.
    
    The file is written next to its destination and moved into place, so
    an interrupted save never leaves a half-written index behind.
    
    Args:
        state: IndexState to persist
        path: Destination file
        params: Extra build/search parameters stored in the params blob
        
    Returns:
        Number of bytes written
    """
    path = Path(path)
    blob = serialize_params(dict(params or {}))
    
    header = FileHeader(
        dimension=state.dimension,
        group_size=state.layout.group_size,
        veclen=state.layout.veclen,
        cluster_count=state.n_lists,
        params_length=len(blob),
        dtype_code=dtype_code(state.dtype),
        metric=state.metric,
    )
    
    buffer = io.BytesIO()
    buffer.write(header.to_bytes())
    buffer.write(blob)
    
    centroids = np.ascontiguousarray(state.centroids, dtype=np.float32)
    for lst in state.lists:
        snap = lst.snapshot()
        capacity = len(snap.ids)
        
        buffer.write(ClusterHeader(lst.cluster_id, snap.size, capacity).to_bytes())
        buffer.write(centroids[lst.cluster_id].tobytes())
        buffer.write(np.ascontiguousarray(snap.data, dtype=state.dtype).tobytes())
        buffer.write(np.ascontiguousarray(snap.ids, dtype=np.int64).tobytes())
    
    payload = buffer.getvalue()
    footer = FileFooter(checksum=compute_checksum(payload))
    
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_name(path.name + ".tmp")
    try:
        with open(temp_path, 'wb') as f:
            f.write(payload)
            f.write(footer.to_bytes())
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, path)
    except OSError as e:
        raise StorageError(f"Failed to write index to {path}: {e}") from e
    
    size = len(payload) + FileFooter.SIZE
    logger.info(
        f"Saved index to {path} ({state.ntotal} vectors, "
        f"{state.n_lists} clusters, {size} bytes)"
    )
    return size


def read_header(path: PathLike) -> FileHeader:
    """Read and validate only the header of a saved index."""
    with open(path, 'rb') as f:
        return FileHeader.from_bytes(f.read(FileHeader.SIZE))


def _check_expected(
    header: FileHeader,
    expected_layout: Optional[GroupedLayout],
    expected_dimension: Optional[int],
) -> None:
    if expected_dimension is not None and header.dimension != expected_dimension:
        raise FormatMismatchError(
            f"File dimension {header.dimension} != expected {expected_dimension}"
        )
    if expected_layout is not None:
        if header.group_size != expected_layout.group_size:
            raise FormatMismatchError(
                f"File group size {header.group_size} != expected {expected_layout.group_size}"
            )
        if header.veclen != expected_layout.veclen:
            raise FormatMismatchError(
                f"File veclen {header.veclen} != expected {expected_layout.veclen}"
            )


def _read_array(buffer: bytes, offset: int, count: int, dtype) -> Tuple[NDArray, int]:
    nbytes = count * np.dtype(dtype).itemsize
    if offset + nbytes > len(buffer):
        raise CorruptedDataError(f"Truncated data at byte {offset}")
    array = np.frombuffer(buffer, dtype=dtype, count=count, offset=offset)
    return array, offset + nbytes


def load_index(
    path: PathLike,
    expected_layout: Optional[GroupedLayout] = None,
    expected_dimension: Optional[int] = None,
):
    """
    Load an index state saved by :func:`save_index`.
    
    Args:
        path: Saved index file
        expected_layout: Layout the caller runs with; a file written with
            a different group size or veclen is rejected
        expected_dimension: Dimension the caller runs with
        
    Returns:
        Tuple of (IndexState, params dict)
        
    Raises:
        FormatMismatchError: If the file's layout or dimension disagrees
            with the expected ones
        CorruptedDataError: On bad magic, truncation or checksum mismatch
    """
    from ..index.inverted_list import InvertedList
    from ..index.state import IndexState
    
    path = Path(path)
    if not path.exists():
        raise StorageError(f"Index file not found: {path}")
    
    data = path.read_bytes()
    if len(data) < FileHeader.SIZE + FileFooter.SIZE:
        raise CorruptedDataError(f"File too short: {len(data)} bytes")
    
    header = FileHeader.from_bytes(data[:FileHeader.SIZE])
    _check_expected(header, expected_layout, expected_dimension)
    
    payload = data[:-FileFooter.SIZE]
    footer = FileFooter.from_bytes(data[-FileFooter.SIZE:])
    if compute_checksum(payload) != footer.checksum:
        raise CorruptedDataError(f"Checksum mismatch in {path}")
    
    dtype = code_dtype(header.dtype_code)
    dimension = header.dimension
    
    try:
        layout = GroupedLayout(header.group_size, header.veclen)
        layout.validate(dimension)
    except ValidationError as e:
        raise CorruptedDataError(f"Invalid layout in header: {e}") from e
    
    offset = FileHeader.SIZE
    if offset + header.params_length > len(payload):
        raise CorruptedDataError("Truncated params blob")
    params = deserialize_params(payload[offset:offset + header.params_length])
    offset += header.params_length
    
    centroids = np.empty((header.cluster_count, dimension), dtype=np.float32)
    lists = []
    
    for c in range(header.cluster_count):
        cluster, offset = ClusterHeader.from_buffer(payload, offset)
        if cluster.cluster_id != c:
            raise CorruptedDataError(
                f"Cluster section {c} holds cluster id {cluster.cluster_id}"
            )
        if offset - ClusterHeader.SIZE + cluster_section_size(
            dimension, cluster.capacity, dtype
        ) > len(payload):
            raise CorruptedDataError(f"Truncated section for cluster {c}")
        
        centroid, offset = _read_array(payload, offset, dimension, np.float32)
        block, offset = _read_array(payload, offset, cluster.capacity * dimension, dtype)
        ids, offset = _read_array(payload, offset, cluster.capacity, np.int64)
        
        centroids[c] = centroid
        try:
            lists.append(
                InvertedList.from_packed(c, dimension, layout, block, ids, cluster.size, dtype)
            )
        except ValidationError as e:
            raise CorruptedDataError(f"Cluster {c}: {e}") from e
    
    if offset != len(payload):
        raise CorruptedDataError(f"{len(payload) - offset} trailing bytes after last cluster")
    
    try:
        state = IndexState.from_lists(centroids, lists, header.metric, layout, dtype)
    except (ValidationError, KeyError) as e:
        raise CorruptedDataError(f"Inconsistent index contents: {e}") from e
    
    logger.info(
        f"Loaded index from {path} ({state.ntotal} vectors, {state.n_lists} clusters)"
    )
    return state, params
