"""Typed wrappers around the external utilities loadwatch consults."""
from __future__ import annotations

import re
import subprocess
from dataclasses import dataclass
from typing import List, Optional, Sequence

DEFAULT_TIMEOUT = 10

OK = "ok"
EMPTY = "empty"
FAILED = "failed"


@dataclass(frozen=True)
class CommandResult:
    status: str
    stdout: str = ""
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.status == OK

    def lines(self) -> List[str]:
        if not self.stdout:
            return []
        return self.stdout.splitlines()


def run(
    cmd: Sequence[str],
    timeout: int = DEFAULT_TIMEOUT,
    input_text: Optional[str] = None,
) -> CommandResult:
    """Run ``cmd`` without a shell and classify the outcome.

    A missing binary, a non-zero exit or a timeout is ``failed``; a clean
    exit with no output is ``empty``.
    """
    try:
        proc = subprocess.run(
            list(cmd),
            input=input_text,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        return CommandResult(FAILED, error="timeout")
    except (FileNotFoundError, PermissionError) as exc:
        return CommandResult(FAILED, error=str(exc))
    if proc.returncode != 0:
        return CommandResult(FAILED, stdout=proc.stdout.strip(), error=proc.stderr.strip() or f"exit {proc.returncode}")
    out = proc.stdout.strip()
    if not out:
        return CommandResult(EMPTY)
    return CommandResult(OK, stdout=out)


def service_active(name: str, timeout: int = DEFAULT_TIMEOUT) -> bool:
    try:
        proc = subprocess.run(
            ["systemctl", "is-active", "--quiet", name],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            timeout=timeout,
        )
    except (subprocess.TimeoutExpired, FileNotFoundError, PermissionError):
        return False
    return proc.returncode == 0


def running_services(timeout: int = DEFAULT_TIMEOUT) -> List[str]:
    result = run(
        ["systemctl", "list-units", "--type=service", "--state=running", "--no-legend", "--plain"],
        timeout=timeout,
    )
    units: List[str] = []
    for line in result.lines():
        parts = line.split()
        if parts:
            units.append(parts[0])
    return units


_PHP_FPM_RE = re.compile(r"php(\d+\.?\d*)-fpm")


def php_fpm_versions(units: Sequence[str]) -> List[str]:
    """Return sorted unique ``phpX.Y-fpm`` names found in ``units``."""
    found = set()
    for unit in units:
        match = _PHP_FPM_RE.search(unit)
        if match:
            found.add(match.group(0))
    return sorted(found)
