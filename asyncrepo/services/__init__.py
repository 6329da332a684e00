"""Concrete backends the engine can drive."""

from .git_backend import GitBackend

__all__ = ["GitBackend"]
