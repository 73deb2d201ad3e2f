"""
Interleaved record layout: address arithmetic and record packing.
"""

from .grouped import GroupedLayout, choose_veclen, TRANSACTION_BYTES
from .codepacker import pack, unpack, pack_batch, unpack_all, grouped_view

__all__ = [
    "GroupedLayout",
    "choose_veclen",
    "TRANSACTION_BYTES",
    "pack",
    "unpack",
    "pack_batch",
    "unpack_all",
    "grouped_view",
]
