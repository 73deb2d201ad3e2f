"""
File format definitions for saved IVF-Flat indexes.

A file is laid out as::

    FileHeader                       (80 bytes)
    params blob                      (msgpack, header.params_length bytes)
    for each cluster, in id order:
        ClusterHeader                (24 bytes)
        centroid                     (dimension float32)
        interleaved block            (capacity * dimension elements)
        id array                     (capacity int64)
    FileFooter                       (32 bytes, checksum of everything above)

Blocks are written exactly as they are held in memory, so a loaded list
is bit-identical to the saved one.
"""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass
from typing import Dict

import numpy as np

from ..core.exceptions import CorruptedDataError, FormatMismatchError


# Magic number: "IVFFLAT\x00"
MAGIC_NUMBER = b'IVFFLAT\x00'

# File format version
VERSION = 1

DTYPE_CODES: Dict[str, int] = {
    "float32": 0,
    "float64": 1,
    "float16": 2,
}

CODE_DTYPES: Dict[int, str] = {code: name for name, code in DTYPE_CODES.items()}

# Bytes reserved for the metric name in the file header
METRIC_NAME_SIZE = 32


def dtype_code(dtype) -> int:
    name = np.dtype(dtype).name
    if name not in DTYPE_CODES:
        raise FormatMismatchError(f"Unsupported element type: {name}")
    return DTYPE_CODES[name]


def code_dtype(code: int) -> np.dtype:
    if code not in CODE_DTYPES:
        raise CorruptedDataError(f"Unknown element type code: {code}")
    return np.dtype(CODE_DTYPES[code])


@dataclass
class FileHeader:
    """
    File header structure (80 bytes).
    
    Layout:
        0-7:   Magic number (8 bytes)
        8-11:  Version (4 bytes, uint32)
        12-15: Dimension (4 bytes, uint32)
        16-19: Group size (4 bytes, uint32)
        20-23: Veclen (4 bytes, uint32)
        24-27: Cluster count (4 bytes, uint32)
        28-31: Params blob length (4 bytes, uint32)
        32:    Element type code (1 byte)
        33-35: Padding
        36-67: Metric name (32 bytes, NUL padded)
        68-79: Reserved (12 bytes)
    """
    
    magic: bytes = MAGIC_NUMBER
    version: int = VERSION
    dimension: int = 0
    group_size: int = 32
    veclen: int = 1
    cluster_count: int = 0
    params_length: int = 0
    dtype_code: int = 0
    metric: str = "euclidean"
    
    FORMAT = '<8sIIIIIIB3x32s12x'
    SIZE = 80
    
    def validate(self) -> bool:
        """Validate header."""
        if self.magic != MAGIC_NUMBER:
            raise CorruptedDataError(f"Invalid magic number: {self.magic!r}")
        if self.version > VERSION:
            raise FormatMismatchError(f"Unsupported version: {self.version}")
        if self.dimension <= 0:
            raise CorruptedDataError(f"Invalid dimension: {self.dimension}")
        if self.cluster_count <= 0:
            raise CorruptedDataError(f"Invalid cluster count: {self.cluster_count}")
        if self.group_size <= 0 or self.veclen <= 0:
            raise CorruptedDataError(
                f"Invalid layout: group_size={self.group_size}, veclen={self.veclen}"
            )
        return True
    
    def to_bytes(self) -> bytes:
        """
        Serialize header to bytes.
        
        Raises:
            FormatMismatchError: If the metric name does not fit the header
        """
        metric = self.metric.encode('utf-8')
        if len(metric) > METRIC_NAME_SIZE:
            raise FormatMismatchError(
                f"Metric name '{self.metric}' is {len(metric)} bytes, "
                f"at most {METRIC_NAME_SIZE} can be saved"
            )
        
        return struct.pack(
            self.FORMAT,
            self.magic,
            self.version,
            self.dimension,
            self.group_size,
            self.veclen,
            self.cluster_count,
            self.params_length,
            self.dtype_code,
            metric,
        )
    
    @classmethod
    def from_bytes(cls, data: bytes) -> 'FileHeader':
        """Deserialize header from bytes."""
        if len(data) < cls.SIZE:
            raise CorruptedDataError(f"Header too short: {len(data)} < {cls.SIZE}")
        
        unpacked = struct.unpack(cls.FORMAT, data[:cls.SIZE])
        
        header = cls(
            magic=unpacked[0],
            version=unpacked[1],
            dimension=unpacked[2],
            group_size=unpacked[3],
            veclen=unpacked[4],
            cluster_count=unpacked[5],
            params_length=unpacked[6],
            dtype_code=unpacked[7],
            metric=unpacked[8].rstrip(b'\x00').decode('utf-8', errors='replace'),
        )
        
        header.validate()
        return header
    
    def __repr__(self) -> str:
        return (
            f"FileHeader(version={self.version}, dimension={self.dimension}, "
            f"clusters={self.cluster_count}, group_size={self.group_size}, "
            f"veclen={self.veclen}, metric='{self.metric}')"
        )


@dataclass
class ClusterHeader:
    """
    Per-cluster section header (24 bytes).
    
    Layout:
        0-3:   Cluster id (4 bytes, uint32)
        4-11:  Size (8 bytes, uint64)
        12-19: Capacity (8 bytes, uint64)
        20-23: Reserved
    """
    
    cluster_id: int
    size: int
    capacity: int
    
    FORMAT = '<IQQ4x'
    SIZE = 24
    
    def to_bytes(self) -> bytes:
        return struct.pack(self.FORMAT, self.cluster_id, self.size, self.capacity)
    
    @classmethod
    def from_buffer(cls, buffer: bytes, offset: int) -> tuple['ClusterHeader', int]:
        """
        Deserialize a cluster header from buffer at offset.
        
        Returns:
            Tuple of (header, new_offset)
        """
        if offset + cls.SIZE > len(buffer):
            raise CorruptedDataError(f"Truncated cluster header at byte {offset}")
        
        cluster_id, size, capacity = struct.unpack_from(cls.FORMAT, buffer, offset)
        if size > capacity:
            raise CorruptedDataError(
                f"Cluster {cluster_id}: size {size} exceeds capacity {capacity}"
            )
        return cls(cluster_id, size, capacity), offset + cls.SIZE


@dataclass
class FileFooter:
    """
    File footer structure (32 bytes).
    
    Layout:
        0-7:   Checksum (8 bytes, uint64)
        8-31:  Reserved (24 bytes)
    """
    
    checksum: int = 0
    
    FORMAT = '<Q24x'
    SIZE = 32
    
    def to_bytes(self) -> bytes:
        """Serialize footer to bytes."""
        return struct.pack(self.FORMAT, self.checksum)
    
    @classmethod
    def from_bytes(cls, data: bytes) -> 'FileFooter':
        """Deserialize footer from bytes."""
        if len(data) < cls.SIZE:
            raise CorruptedDataError(f"Footer too short: {len(data)} < {cls.SIZE}")
        
        checksum = struct.unpack(cls.FORMAT, data[:cls.SIZE])[0]
        return cls(checksum=checksum)


def compute_checksum(data: bytes) -> int:
    """MD5 of ``data`` truncated to 64 bits."""
    md5 = hashlib.md5(data).digest()
    return struct.unpack('<Q', md5[:8])[0]


def cluster_section_size(dimension: int, capacity: int, dtype) -> int:
    """Bytes taken by one cluster section, header included."""
    return (
        ClusterHeader.SIZE
        + dimension * 4
        + capacity * dimension * np.dtype(dtype).itemsize
        + capacity * 8
    )
