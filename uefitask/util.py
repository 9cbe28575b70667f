"""Describing, printing and running external commands."""

from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass, field
from typing import Optional, Union

PathArg = Union[str, "os.PathLike[str]"]

_IGNORED_VARS = ("PATH", "RUSTC", "RUSTDOC")


@dataclass
class Command:
    """A program to run with its arguments and environment changes.

    In ``env`` a value of None removes the variable from the child's
    environment.
    """

    program: str
    args: list[PathArg] = field(default_factory=list)
    env: dict[str, Optional[str]] = field(default_factory=dict)
    cwd: Optional[PathArg] = None

    def build_env(self) -> dict[str, str]:
        """Return the full environment the child process will see."""
        result = dict(os.environ)
        for name, value in self.env.items():
            if value is None:
                result.pop(name, None)
            else:
                result[name] = value
        return result

    def argv(self) -> list[str]:
        """Return the program and its arguments as strings."""
        return [self.program, *(os.fspath(arg) for arg in self.args)]


def command_to_string(cmd: Command) -> str:
    """Format a command as a string, e.g. ``VAR=val program --arg1 arg2``."""
    parts = [
        f"{name}={value or ''}"
        for name, value in sorted(cmd.env.items())
        if name not in _IGNORED_VARS
    ]
    parts.extend(cmd.argv())
    return " ".join(parts)


def run_cmd(cmd: Command) -> None:
    """Print a command and run it, raising if it does not succeed."""
    print(command_to_string(cmd))
    argv = cmd.argv()
    completed = subprocess.run(
        argv,
        env=cmd.build_env(),
        cwd=os.fspath(cmd.cwd) if cmd.cwd is not None else None,
    )
    if completed.returncode != 0:
        raise subprocess.CalledProcessError(completed.returncode, argv)