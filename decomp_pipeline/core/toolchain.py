"""
Subprocess helpers for external toolchain invocations.

Commands are run with ``asyncio`` so a slow compiler or diff tool only
suspends its own run.  Timeouts kill the child process.
"""
from __future__ import annotations

import asyncio
import logging
import shutil
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)


@dataclass
class ToolResult:
    """Captured output of one command."""
    cmd: List[str]
    returncode: int
    stdout: str
    stderr: str
    duration_ms: int


class ToolTimeout(Exception):
    """The command did not finish within its timeout."""


class ToolMissing(Exception):
    """The executable could not be found."""


async def run_tool(
    cmd: List[str],
    *,
    cwd: Optional[Path] = None,
    timeout: float = 60.0,
) -> ToolResult:
    """
    Run *cmd* and capture stdout/stderr.

    Raises
    ------
    ToolMissing
        The executable does not exist.
    ToolTimeout
        The command exceeded *timeout* seconds (the process is killed).
    """
    t0 = time.monotonic()
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=str(cwd) if cwd else None,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as exc:
        raise ToolMissing(f"{cmd[0]}: not found") from exc

    try:
        out, err = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError as exc:
        proc.kill()
        await proc.wait()
        raise ToolTimeout(f"{cmd[0]} timed out after {timeout}s") from exc

    duration = int((time.monotonic() - t0) * 1000)
    logger.debug("%s → exit %s in %d ms", " ".join(cmd), proc.returncode, duration)
    return ToolResult(
        cmd=list(cmd),
        returncode=proc.returncode if proc.returncode is not None else -1,
        stdout=out.decode("utf-8", errors="replace"),
        stderr=err.decode("utf-8", errors="replace"),
        duration_ms=duration,
    )


def tool_available(executable: str) -> bool:
    return shutil.which(executable) is not None


def tool_version(executable: str, timeout: int = 5) -> str:
    """First line of ``<executable> --version``, or ``"unknown"``."""
    try:
        r = subprocess.run([executable, "--version"],
                           capture_output=True, text=True, timeout=timeout)
    except (OSError, subprocess.TimeoutExpired):
        return "unknown"
    out = r.stdout.strip()
    return out.splitlines()[0] if out else "unknown"
