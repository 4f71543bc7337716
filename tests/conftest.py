"""Pytest configuration shared by all tests."""

from tests.fixtures import git_env, make_remote

__all__ = ["git_env", "make_remote"]
