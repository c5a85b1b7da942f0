"""Shared test fixtures package.

Provides the in-memory ResourceAPI and object builders used by all test
suites. Pytest fixtures themselves live in the conftest.py files.
"""
