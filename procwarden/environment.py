"""Helpers for building the environment handed to a child process.

The executor passes an environment through unmodified, so a caller that
wants to extend (rather than replace) the inherited environment starts
from current_environment().
"""

from __future__ import annotations

import os


def current_environment() -> dict[str, str]:
    """A mutable copy of this process's environment."""
    return dict(os.environ)


def add_variable(environment: dict[str, str], assignment: str) -> dict[str, str]:
    """Add a ``KEY=value`` assignment to an environment mapping."""
    key, sep, value = assignment.partition("=")
    if not sep or not key:
        raise ValueError(f"Environment variable for this platform must contain an equals sign ('='): {assignment!r}")
    environment[key] = value
    return environment
