"""Core types shared across procwarden modules."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import TypeAlias

# Exit value reported when no real exit value could be obtained.
INVALID_EXIT_VALUE = 0xDEADBEEF

Environment: TypeAlias = Mapping[str, str]
ExitValues: TypeAlias = Sequence[int]
