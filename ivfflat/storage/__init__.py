"""
Persistence for IVF-Flat indexes.

Example:
    >>> from ivfflat.storage import save_index, load_index
    >>> save_index(state, "index.ivf", params={"n_probe": 10})
    >>> state, params = load_index("index.ivf")
"""

from .format import (
    MAGIC_NUMBER,
    VERSION,
    FileHeader,
    ClusterHeader,
    FileFooter,
    compute_checksum,
)
from .serialization import (
    save_index,
    load_index,
    read_header,
    serialize_params,
    deserialize_params,
)

__all__ = [
    "MAGIC_NUMBER",
    "VERSION",
    "FileHeader",
    "ClusterHeader",
    "FileFooter",
    "compute_checksum",
    "save_index",
    "load_index",
    "read_header",
    "serialize_params",
    "deserialize_params",
]
