#!/usr/bin/env python3
"""
loadwatch server monitor.

Polls the 1-minute load average; on a spike (outside the cooldown) it mails a
diagnostics snapshot, and once a day at the configured time it mails the
daily report.
"""

from __future__ import annotations

import argparse
import dataclasses
import os
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence

from loadwatch.lib import config_loader, logging_utils, mailer
from loadwatch.lib.clock import SystemClock
from loadwatch.lib.config_loader import MonitorConfig
from loadwatch.lib.errors import ConfigError
from loadwatch.monitoring import daily_report, diagnostics
from loadwatch.monitoring.dispatcher import AlertDispatcher, DispatchResult, MonitorState, hostname


def read_load() -> int:
    """Return the 1-minute load average truncated toward zero."""
    try:
        load1, _, _ = os.getloadavg()
    except OSError:
        return 0
    return int(load1)


def build_load_alert(load: int, config: MonitorConfig) -> str:
    top = diagnostics.top_snapshot(config.command_timeout)
    snapshot = diagnostics.collect(config)
    return f"Load: {load}\n{top}\n{snapshot.render()}"


class Monitor:
    def __init__(
        self,
        config: MonitorConfig,
        dispatcher: AlertDispatcher,
        clock: Optional[Any] = None,
        load_reader: Optional[Callable[[], float]] = None,
        alert_builder: Optional[Callable[[int, MonitorConfig], str]] = None,
        reporter: Optional[Callable[[MonitorConfig, AlertDispatcher], DispatchResult]] = None,
    ) -> None:
        self.config = config
        self.dispatcher = dispatcher
        self.state: MonitorState = dispatcher.state
        self.clock = clock or dispatcher.clock
        self.load_reader = load_reader or read_load
        self.alert_builder = alert_builder or build_load_alert
        self.reporter = reporter or daily_report.send_daily_report

    def prime(self) -> None:
        """Treat today's report as sent when starting after the report time."""
        now = self.clock.now()
        if (now.hour, now.minute) > self.config.report_hour_minute:
            self.state.last_report_date = now.date()

    def cooldown_elapsed(self, now: float) -> bool:
        if self.state.last_alert is not None and now - self.state.last_alert < self.config.alert_cooldown:
            return False
        if self.state.last_failure is not None and now - self.state.last_failure < self.config.retry_cooldown:
            return False
        return True

    def check_load(self) -> Optional[DispatchResult]:
        load = int(self.load_reader())
        if load < self.config.load_threshold:
            return None
        if not self.cooldown_elapsed(self.clock.time()):
            return None
        body = self.alert_builder(load, self.config)
        return self.dispatcher.dispatch(f"Load Spike: {load} - {hostname()}", body)

    def report_due(self) -> bool:
        now = self.clock.now()
        if self.state.last_report_date == now.date():
            return False
        return (now.hour, now.minute) >= self.config.report_hour_minute

    def check_report(self) -> Optional[DispatchResult]:
        if not self.report_due():
            return None
        # Marked before sending so a failing transport cannot resend every poll.
        self.state.last_report_date = self.clock.now().date()
        return self.reporter(self.config, self.dispatcher)

    def tick(self) -> List[DispatchResult]:
        results: List[DispatchResult] = []
        for check in (self.check_load, self.check_report):
            try:
                outcome = check()
            except Exception as exc:  # noqa: BLE001 - keep polling after an unexpected check error
                logging_utils.warn(f"{check.__name__} failed: {exc}")
                continue
            if outcome is not None:
                results.append(outcome)
        return results

    def run(self, once: bool = False) -> None:
        while True:
            self.tick()
            if once:
                break
            self.clock.sleep(self.config.check_interval)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="loadwatch load monitor and daily reporter")
    parser.add_argument(
        "--config",
        type=Path,
        default=config_loader.DEFAULT_CONFIG_PATH,
        help="YAML settings file (default %(default)s)",
    )
    parser.add_argument("--once", action="store_true", help="Run a single poll and exit")
    parser.add_argument("--report-now", action="store_true", help="Send the daily report immediately and exit")
    parser.add_argument("--dry-run", action="store_true", help="Print messages instead of mailing them")
    return parser.parse_args(list(argv) if argv is not None else None)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    try:
        config = config_loader.load_config(args.config)
    except ConfigError as exc:
        logging_utils.warn(f"invalid configuration: {exc}")
        return 2

    if args.dry_run:
        config = dataclasses.replace(config, emit_events=False)
    clock = SystemClock()
    dispatcher = AlertDispatcher(
        config,
        mailer.build_mailer(config, dry_run=args.dry_run),
        MonitorState(),
        clock,
        record=not args.dry_run,
    )
    monitor = Monitor(config, dispatcher, clock)

    if args.report_now:
        result = daily_report.send_daily_report(config, dispatcher)
        return 0 if result.delivered else 1

    monitor.prime()
    logging_utils.info(
        f"monitoring load >= {config.load_threshold} every {config.check_interval}s, "
        f"report at {config.report_time}, alerts to {config.email}"
    )
    try:
        monitor.run(once=args.once)
    except KeyboardInterrupt:
        logging_utils.info("interrupted, exiting")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
