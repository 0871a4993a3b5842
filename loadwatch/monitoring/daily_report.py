"""
loadwatch daily report.

Builds the once-a-day server summary (uptime, HTTP status histogram, the
day's alerts, top CPU processes, auth failures) and hands it to the
dispatcher.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import List, Tuple

from loadwatch.lib import commands, logging_utils
from loadwatch.lib.config_loader import MonitorConfig
from loadwatch.monitoring import diagnostics
from loadwatch.monitoring.diagnostics import Section
from loadwatch.monitoring.dispatcher import AlertDispatcher, DispatchResult, hostname

AUTH_FAIL_RE = re.compile(r"fail", re.IGNORECASE)


def traffic_section(web_server: str, limit: int) -> Section:
    if web_server == "unknown":
        return Section("Web Traffic", [], commands.EMPTY)
    lines = diagnostics.tail_lines(diagnostics.access_log_path(web_server), limit)
    body = diagnostics.ranked(diagnostics.field_histogram(lines, 8), limit=None)
    return Section("Web Traffic", body, commands.OK if body else commands.EMPTY)


def alerts_section(config: MonitorConfig, now: datetime) -> Section:
    body = logging_utils.alerts_for_date(config.log_file, now.date())
    return Section("Daily Alerts", body, commands.OK if body else commands.EMPTY)


def processes_section(timeout: int) -> Section:
    result = commands.run(["ps", "-eo", "pid,ppid,cmd,%mem,%cpu", "--sort=-%cpu"], timeout=timeout)
    return diagnostics.section_from("Top Processes", result, result.lines()[:15])


def security_section(config: MonitorConfig) -> Section:
    body = diagnostics.matching_tail(config.auth_log, AUTH_FAIL_RE, 5)
    return Section("Security Checks", body, commands.OK if body else commands.EMPTY)


def compile_report(config: MonitorConfig, now: datetime) -> Tuple[str, str]:
    timeout = config.command_timeout
    web_server = diagnostics.detect_web_server(timeout)
    sections: List[Section] = [
        diagnostics.section_from("System Overview", commands.run(["uptime"], timeout=timeout)),
        traffic_section(web_server, config.access_log_lines),
        alerts_section(config, now),
        processes_section(timeout),
        security_section(config),
    ]
    header = f"DAILY SERVER REPORT - {now.strftime('%A, %B %d %Y %H:%M:%S')}"
    body = "\n\n".join([header, *(section.render() for section in sections)])
    subject = f"Daily Server Report - {hostname()}"
    return subject, body


def send_daily_report(config: MonitorConfig, dispatcher: AlertDispatcher) -> DispatchResult:
    subject, body = compile_report(config, dispatcher.clock.now())
    return dispatcher.dispatch(subject, body)
