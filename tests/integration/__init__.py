"""
Integration tests for ivfflat.

These tests drive whole indexes: build, search, persistence and
concurrent access.
"""
