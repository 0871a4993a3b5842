"""Alert dispatch: mail the message, record it in the alert log, start the cooldown."""

from __future__ import annotations

import socket
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, Optional

from loadwatch.lib import config_loader, logging_utils
from loadwatch.lib.clock import SystemClock
from loadwatch.lib.config_loader import MonitorConfig
from loadwatch.lib.errors import MailDeliveryError

SUBJECT_PREFIX = "URGENT: "
EVENT_TAG = "loadwatch/alert"


@dataclass
class MonitorState:
    last_alert: Optional[float] = None
    last_failure: Optional[float] = None
    last_report_date: Optional[date] = None


@dataclass(frozen=True)
class DispatchResult:
    delivered: bool
    subject: str
    timestamp: datetime
    error: str = ""


def hostname() -> str:
    return socket.getfqdn()


class AlertDispatcher:
    def __init__(
        self,
        config: MonitorConfig,
        mailer: Any,
        state: MonitorState,
        clock: Optional[Any] = None,
        record: bool = True,
    ) -> None:
        self.config = config
        self.mailer = mailer
        self.state = state
        self.clock = clock or SystemClock()
        self.record = record

    def dispatch(self, subject: str, body: str) -> DispatchResult:
        try:
            self.mailer.send(SUBJECT_PREFIX + subject, body)
        except MailDeliveryError as exc:
            return self._record_failure(subject, str(exc))
        when = self.clock.now()
        self._write(logging_utils.append_alert, subject, when)
        self.state.last_alert = self.clock.time()
        self._emit({"subject": subject, "host": hostname(), "timestamp": when.isoformat()})
        return DispatchResult(True, subject, when)

    def _record_failure(self, subject: str, error: str) -> DispatchResult:
        when = self.clock.now()
        self.state.last_failure = self.clock.time()
        logging_utils.warn(f"mail delivery failed for '{subject}': {error}")
        self._write(logging_utils.append_failure, subject, when, error)
        return DispatchResult(False, subject, when, error)

    def _write(self, writer, *args) -> None:
        if not self.record:
            return
        try:
            writer(self.config.log_file, *args)
        except OSError as exc:
            logging_utils.warn(f"cannot append to {self.config.log_file}: {exc}")

    def _emit(self, payload: Dict[str, Any]) -> None:
        if not self.config.emit_events:
            return
        config_loader.fire_event(EVENT_TAG, payload)
