"""Async command execution helpers for the image pipeline."""

from __future__ import annotations

import asyncio
import logging
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Protocol, Sequence

logger = logging.getLogger("aws_provider.runner")


@dataclass(frozen=True)
class CompletedCommand:
    """Normalized command execution result. stdout holds merged stdout/stderr."""

    cmd: tuple[str, ...]
    returncode: int
    stdout: str = ""


class RunnerError(RuntimeError):
    """Raised when a command cannot be started or exits non-zero."""

    def __init__(self, message: str, *, output: str = "", returncode: Optional[int] = None):
        super().__init__(message)
        self.output = output
        self.returncode = returncode


class CommandRunner(Protocol):
    async def run(
        self,
        cmd: Sequence[str],
        *,
        input: Optional[str] = None,
        cwd: Optional[Path] = None,
    ) -> CompletedCommand: ...


def format_cmd(cmd: Sequence[str]) -> str:
    return "$ " + " ".join(shlex.quote(str(token)) for token in cmd)


class AsyncCommandRunner:
    """Thin asyncio subprocess wrapper; every call is awaited to completion."""

    def __init__(self, *, env: Optional[Mapping[str, str]] = None) -> None:
        self._env = dict(env) if env is not None else None

    async def run(
        self,
        cmd: Sequence[str],
        *,
        input: Optional[str] = None,
        cwd: Optional[Path] = None,
    ) -> CompletedCommand:
        tokens = tuple(str(token) for token in cmd)
        rendered = format_cmd(tokens)
        logger.debug(rendered)

        try:
            proc = await asyncio.create_subprocess_exec(
                *tokens,
                cwd=str(cwd) if cwd else None,
                env=self._env,
                stdin=asyncio.subprocess.PIPE if input is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            raise RunnerError(f"command could not be started: {rendered} ({e})") from e

        raw, _ = await proc.communicate(input.encode("utf-8") if input is not None else None)
        output = raw.decode("utf-8", errors="replace") if raw else ""

        if proc.returncode != 0:
            detail = output.strip()
            message = f"command failed with exit code {proc.returncode}: {rendered}"
            if detail:
                message = f"{message}\n{detail}"
            raise RunnerError(message, output=output, returncode=proc.returncode)

        return CompletedCommand(tokens, proc.returncode, output)
