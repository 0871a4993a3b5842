"""Alert log helpers for loadwatch.

The alert log is a plain append-only text file. Each delivered alert is one
line of the form ``<YYYY-MM-DD HH:MM:SS> - ALERT: <subject>``.
"""
from __future__ import annotations

import re
import sys
from datetime import date, datetime
from pathlib import Path
from typing import List, Optional, Tuple

DEFAULT_ALERT_LOG = Path("/var/log/server_monitor.log")
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
ALERT_MARKER = " - ALERT: "
FAILED_MARKER = " - ALERT FAILED: "
_LINE_RE = re.compile(r"^(\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}) - ALERT: (.*)$")


def ensure_log_dir(path: Path) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError:
        pass


def format_alert_line(subject: str, when: datetime) -> str:
    return f"{when.strftime(TIMESTAMP_FORMAT)}{ALERT_MARKER}{subject}"


def format_failure_line(subject: str, when: datetime, error: str) -> str:
    return f"{when.strftime(TIMESTAMP_FORMAT)}{FAILED_MARKER}{subject} ({error})"


def _append(path: Path, line: str) -> None:
    ensure_log_dir(path)
    # Subjects are single-line; a stray newline would split the record.
    clean = line.replace("\r", " ").replace("\n", " ")
    with path.open("a", encoding="utf-8") as fh:
        fh.write(clean + "\n")


def append_alert(path: Path, subject: str, when: datetime) -> str:
    line = format_alert_line(subject, when)
    _append(path, line)
    return line


def append_failure(path: Path, subject: str, when: datetime, error: str) -> str:
    line = format_failure_line(subject, when, error)
    _append(path, line)
    return line


def parse_alert_line(line: str) -> Optional[Tuple[datetime, str]]:
    match = _LINE_RE.match(line.rstrip("\n"))
    if not match:
        return None
    try:
        stamp = datetime.strptime(match.group(1), TIMESTAMP_FORMAT)
    except ValueError:
        return None
    return stamp, match.group(2)


def read_alert_lines(path: Path) -> List[str]:
    """Return raw ``ALERT:`` lines; unreadable or missing logs yield nothing."""
    try:
        with path.open("r", encoding="utf-8", errors="ignore") as fh:
            return [line.rstrip("\n") for line in fh if ALERT_MARKER in line]
    except OSError:
        return []


def alerts_for_date(path: Path, day: date) -> List[str]:
    needle = day.strftime("%Y-%m-%d")
    return [line for line in read_alert_lines(path) if needle in line]


def warn(message: str) -> None:
    print(f"[WARN] {message}", file=sys.stderr)


def info(message: str) -> None:
    print(f"[INFO] {message}", file=sys.stderr)
