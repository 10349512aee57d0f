"""Command lines — an executable plus its arguments.

A CommandLine is immutable. Tokens may reference entries of an optional
substitution map as ``${name}``; they are expanded when the command is
turned into the argument vector handed to the launcher.

Usage:
    from procwarden.command import CommandLine

    cmd = CommandLine.parse("cp ${src} ${dst}", {"src": "a.txt", "dst": "b.txt"})
    cmd.to_strings()  # ["cp", "a.txt", "b.txt"]
"""

from __future__ import annotations

import re
import shlex
from collections.abc import Mapping, Sequence

from pydantic import BaseModel, ConfigDict, Field, field_validator

_VARIABLE = re.compile(r"\$\{([^}]+)\}")


class CommandLine(BaseModel):
    """An executable and its arguments, with optional ${name} substitution."""

    model_config = ConfigDict(frozen=True)

    executable: str
    arguments: tuple[str, ...] = ()
    substitution_map: dict[str, str] | None = Field(default=None)

    @field_validator("executable")
    @classmethod
    def _executable_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Executable can not be empty")
        return value

    @classmethod
    def parse(cls, line: str, substitution_map: Mapping[str, str] | None = None) -> CommandLine:
        """Tokenize a command line using POSIX shell quoting rules."""
        tokens = shlex.split(line)
        if not tokens:
            raise ValueError("Command line can not be empty")
        return cls(
            executable=tokens[0],
            arguments=tuple(tokens[1:]),
            substitution_map=dict(substitution_map) if substitution_map is not None else None,
        )

    @classmethod
    def coerce(cls, command: CommandLine | str | Sequence[str]) -> CommandLine:
        if isinstance(command, CommandLine):
            return command
        if isinstance(command, str):
            return cls.parse(command)
        tokens = list(command)
        if not tokens:
            raise ValueError("Command line can not be empty")
        return cls(executable=tokens[0], arguments=tuple(tokens[1:]))

    def add_arguments(self, *arguments: str) -> CommandLine:
        """Return a copy with extra arguments appended."""
        return self.model_copy(update={"arguments": self.arguments + tuple(arguments)})

    def to_strings(self) -> list[str]:
        """The expanded argument vector, executable first."""
        return [self._expand(token) for token in (self.executable, *self.arguments)]

    def _expand(self, token: str) -> str:
        if not self.substitution_map:
            return token
        mapping = self.substitution_map

        # Unknown variables are left verbatim
        return _VARIABLE.sub(lambda m: mapping.get(m.group(1), m.group(0)), token)

    def __str__(self) -> str:
        return shlex.join(self.to_strings())
