"""
loadwatch diagnostics collector.

Gathers a best-effort snapshot of the web stack (connections, top URLs,
server status, PHP-FPM pools, MySQL, recent errors). Each section is
collected on its own; a failing probe leaves its section empty and never
aborts the snapshot.
"""

from __future__ import annotations

import re
import urllib.error
import urllib.request
from collections import Counter, deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from loadwatch.lib import commands
from loadwatch.lib.config_loader import MonitorConfig

LOG_ROOT = Path("/var/log")
PHP_CONF_ROOT = Path("/etc/php")
WEB_PORTS = (":80", ":443")
POOL_KEYS = ("pm.max_children", "pm.start_servers", "pm.max_spare_servers")
ERROR_RE = re.compile(r"error|timeout|failed", re.IGNORECASE)
APACHE_STATUS_RE = re.compile(r"CPU|Idle|Req")


@dataclass
class Section:
    title: str
    lines: List[str] = field(default_factory=list)
    status: str = commands.OK

    def render(self) -> str:
        body = "\n".join(self.lines)
        return f"--- {self.title} ---\n{body}".rstrip("\n")


@dataclass
class DiagnosticsBundle:
    web_server: str
    sections: List[Section] = field(default_factory=list)

    def failed(self) -> List[str]:
        return [s.title for s in self.sections if s.status == commands.FAILED]

    def render(self) -> str:
        blocks = ["=== WEB SERVER DIAGNOSTICS ==="]
        blocks.extend(section.render() for section in self.sections)
        return "\n\n".join(blocks)


def section_from(title: str, result: commands.CommandResult, lines: Optional[List[str]] = None) -> Section:
    if result.status == commands.FAILED:
        return Section(title, [], commands.FAILED)
    body = result.lines() if lines is None else lines
    return Section(title, body, commands.OK if body else commands.EMPTY)


def detect_web_server(timeout: int = commands.DEFAULT_TIMEOUT) -> str:
    for name in ("nginx", "apache2"):
        if commands.service_active(name, timeout=timeout):
            return name
    return "unknown"


def access_log_path(web_server: str) -> Path:
    return LOG_ROOT / web_server / "access.log"


def tail_lines(path: Path, limit: int) -> List[str]:
    """Return the last ``limit`` lines of ``path``; unreadable files yield []."""
    try:
        with path.open("r", encoding="utf-8", errors="ignore") as fh:
            return [line.rstrip("\n") for line in deque(fh, maxlen=limit)]
    except OSError:
        return []


def matching_tail(path: Path, pattern: re.Pattern, limit: int) -> List[str]:
    """Return the last ``limit`` lines of the whole file that match ``pattern``."""
    try:
        with path.open("r", encoding="utf-8", errors="ignore") as fh:
            matches = deque((line for line in fh if pattern.search(line)), maxlen=limit)
    except OSError:
        return []
    return [line.rstrip("\n") for line in matches]


def ranked(counter: Counter, limit: Optional[int] = 10) -> List[str]:
    return [f"{count:>7} {value}" for value, count in counter.most_common(limit)]


def field_histogram(lines: Iterable[str], index: int) -> Counter:
    counter: Counter = Counter()
    for line in lines:
        parts = line.split()
        if len(parts) > index:
            counter[parts[index]] += 1
    return counter


def peer_counts(lines: Iterable[str]) -> Counter:
    """Count peers of connections whose local side is on a web port.

    Works for both ``netstat -nt`` and ``ss -nt``: the first two
    ``host:port`` tokens are the local and the peer address.
    """
    counter: Counter = Counter()
    for line in lines:
        addrs = [token for token in line.split() if ":" in token]
        if len(addrs) < 2:
            continue
        local, peer = addrs[0], addrs[1]
        if not local.endswith(WEB_PORTS):
            continue
        host = peer.rsplit(":", 1)[0].strip("[]")
        counter[host] += 1
    return counter


def active_connections(timeout: int) -> Section:
    result = commands.run(["netstat", "-nt"], timeout=timeout)
    if result.status == commands.FAILED:
        result = commands.run(["ss", "-nt"], timeout=timeout)
    return section_from("Active Connections", result, ranked(peer_counts(result.lines())))


def top_urls(web_server: str, limit: int) -> Optional[Section]:
    if web_server == "unknown":
        return None
    lines = tail_lines(access_log_path(web_server), limit)
    body = ranked(field_histogram(lines, 6))
    return Section("Top URLs", body, commands.OK if body else commands.EMPTY)


def fetch_url(url: str, timeout: int) -> commands.CommandResult:
    try:
        with urllib.request.urlopen(url, timeout=timeout) as resp:  # noqa: S310 - local status page
            text = resp.read().decode("utf-8", errors="replace").strip()
    except (urllib.error.URLError, OSError, ValueError) as exc:
        return commands.CommandResult(commands.FAILED, error=str(exc))
    if not text:
        return commands.CommandResult(commands.EMPTY)
    return commands.CommandResult(commands.OK, stdout=text)


def server_status(web_server: str, config: MonitorConfig) -> Optional[Section]:
    if web_server == "nginx":
        result = fetch_url(config.nginx_status_url, config.command_timeout)
        active = [line.strip() for line in result.lines() if "active" in line.lower()]
        lines = [f"Nginx Active Connections: {active[0]}"] if active else []
        return section_from("Server Status", result, lines)
    if web_server == "apache2":
        result = commands.run(["apachectl", "fullstatus"], timeout=config.command_timeout)
        workers = [line for line in result.lines() if APACHE_STATUS_RE.search(line)][:5]
        lines = ["Apache Workers:", *workers] if workers else []
        return section_from("Server Status", result, lines)
    return None


def find_pool_config(version: str) -> Optional[Path]:
    match = re.search(r"(\d+\.?\d*)", version)
    if not match:
        return None
    root = PHP_CONF_ROOT / match.group(1)
    try:
        candidates = sorted(root.rglob("www.conf"))
    except OSError:
        return None
    return candidates[0] if candidates else None


def pool_settings(path: Path) -> Dict[str, str]:
    settings: Dict[str, str] = {}
    try:
        with path.open("r", encoding="utf-8") as fh:
            for raw_line in fh:
                line = raw_line.strip()
                if not line or line.startswith(("#", ";")) or "=" not in line:
                    continue
                key, value = [segment.strip() for segment in line.split("=", 1)]
                if key in POOL_KEYS:
                    settings[key] = value
    except OSError:
        return {}
    return settings


def _mem_percent(line: str) -> float:
    parts = line.split()
    try:
        return float(parts[2])
    except (IndexError, ValueError):
        return 0.0


def php_fpm_sections(timeout: int) -> List[Section]:
    versions = commands.php_fpm_versions(commands.running_services(timeout=timeout))
    if not versions:
        return [Section("PHP-FPM STATUS", ["No active PHP-FPM versions found"], commands.EMPTY)]
    ps = commands.run(["ps", "-eo", "pid,user,%mem,command"], timeout=timeout)
    sections: List[Section] = []
    for version in versions:
        if ps.status == commands.FAILED:
            sections.append(Section(f"PHP {version}", [], commands.FAILED))
            continue
        procs = [line for line in ps.lines()[1:] if version in line]
        lines = [f"Active processes: {len(procs)}", "Top memory users:"]
        lines.extend(sorted(procs, key=_mem_percent, reverse=True)[:3])
        pool_conf = find_pool_config(version)
        settings = pool_settings(pool_conf) if pool_conf else {}
        if settings:
            lines.append("")
            lines.append("Pool Settings:")
            lines.extend(f"{key} = {value}" for key, value in settings.items())
        sections.append(Section(f"PHP {version}", lines))
    return sections


def mysql_query(query: str, timeout: int) -> commands.CommandResult:
    return commands.run(["mysql", "-NBe", query], timeout=timeout)


def database_section(timeout: int) -> Optional[Section]:
    if not commands.service_active("mysql", timeout=timeout):
        return None
    threads = mysql_query("SHOW STATUS LIKE 'Threads_connected';", timeout)
    slow = mysql_query(
        "SELECT LEFT(query,100), ROUND(query_time,2) FROM mysql.slow_log ORDER BY start_time DESC LIMIT 3;",
        timeout,
    )
    lines: List[str] = []
    if threads.ok:
        parts = threads.stdout.split()
        if len(parts) >= 2:
            lines.append(f"MySQL Connections: {parts[1]}")
    if slow.ok:
        lines.append("Slow Queries:")
        lines.extend(slow.lines())
    status = commands.OK if lines else commands.FAILED
    return Section("Database & Other Diagnostics", lines, status)


def recent_errors(path: Path, limit: int = 5) -> Section:
    body = matching_tail(path, ERROR_RE, limit)
    return Section("Recent Errors", body, commands.OK if body else commands.EMPTY)


def top_snapshot(timeout: int, limit: int = 20) -> str:
    result = commands.run(["top", "-bn1"], timeout=timeout)
    return "\n".join(result.lines()[:limit])


def _guard(title: str, probe: Callable[[], object]) -> List[Section]:
    """Run ``probe``; unexpected errors become a failed section."""
    try:
        outcome = probe()
    except Exception as exc:  # noqa: BLE001 - one probe must not sink the snapshot
        return [Section(title, [f"collection error: {exc}"], commands.FAILED)]
    if outcome is None:
        return []
    if isinstance(outcome, Section):
        return [outcome]
    return list(outcome)  # type: ignore[arg-type]


def collect(config: MonitorConfig) -> DiagnosticsBundle:
    timeout = config.command_timeout
    web_server = detect_web_server(timeout)
    bundle = DiagnosticsBundle(web_server)
    probes = [
        ("Active Connections", lambda: active_connections(timeout)),
        ("Top URLs", lambda: top_urls(web_server, config.access_log_lines)),
        ("Server Status", lambda: server_status(web_server, config)),
        ("PHP-FPM STATUS", lambda: php_fpm_sections(timeout)),
        ("Database & Other Diagnostics", lambda: database_section(timeout)),
        ("Recent Errors", lambda: recent_errors(config.web_server_log)),
    ]
    for title, probe in probes:
        bundle.sections.extend(_guard(title, probe))
    return bundle
