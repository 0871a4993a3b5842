import tempfile
import unittest
from datetime import datetime
from pathlib import Path
from unittest import mock

from loadwatch.lib import commands, config_loader, logging_utils
from loadwatch.monitoring import daily_report, diagnostics
from loadwatch.monitoring import dispatcher as dispatch_mod
from loadwatch.monitoring.dispatcher import AlertDispatcher, MonitorState


class FixedClock:
    def __init__(self, when: datetime) -> None:
        self.when = when

    def time(self) -> float:
        return 1000.0

    def now(self) -> datetime:
        return self.when

    def sleep(self, seconds: float) -> None:
        pass


class CaptureMailer:
    def __init__(self) -> None:
        self.sent = []

    def send(self, subject: str, body: str) -> None:
        self.sent.append((subject, body))


def fake_run(cmd, timeout=commands.DEFAULT_TIMEOUT, input_text=None):
    if cmd[0] == "uptime":
        return commands.CommandResult(commands.OK, stdout="16:00:01 up 12 days,  3 users,  load average: 0.52, 0.40, 0.33")
    if cmd[0] == "ps":
        rows = ["PID PPID CMD %MEM %CPU"] + [f"{i} 1 worker{i} 0.1 {30 - i}.0" for i in range(20)]
        return commands.CommandResult(commands.OK, stdout="\n".join(rows))
    return commands.CommandResult(commands.FAILED, error="not stubbed")


class DailyReportTest(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.root = Path(self.tmp.name)
        self._log_root = diagnostics.LOG_ROOT
        diagnostics.LOG_ROOT = self.root / "log"
        self.alert_log = self.root / "server_monitor.log"
        self.auth_log = self.root / "auth.log"
        self.config = config_loader.build_config(
            {
                "email": "ops@example.com",
                "log_file": str(self.alert_log),
                "auth_log": str(self.auth_log),
                "emit_events": False,
            }
        )
        self.now = datetime(2026, 3, 4, 16, 0, 1)

    def tearDown(self) -> None:
        diagnostics.LOG_ROOT = self._log_root
        self.tmp.cleanup()

    def _write_access_log(self) -> None:
        access = diagnostics.LOG_ROOT / "nginx" / "access.log"
        access.parent.mkdir(parents=True)
        statuses = ["200", "200", "200", "404", "502"]
        access.write_text(
            "".join(f'10.0.0.{i} - - [04/Mar/2026:15:00:00 +0000] "GET /p{i} HTTP/1.1" {s} 512\n' for i, s in enumerate(statuses)),
            encoding="utf-8",
        )

    def test_traffic_section_histograms_status_codes(self) -> None:
        self._write_access_log()
        section = daily_report.traffic_section("nginx", 5000)
        self.assertEqual(section.lines[0], "      3 200")
        self.assertEqual(len(section.lines), 3)
        self.assertEqual(daily_report.traffic_section("unknown", 5000).lines, [])

    def test_alerts_section_only_today(self) -> None:
        logging_utils.append_alert(self.alert_log, "old", datetime(2026, 3, 3, 9, 0))
        logging_utils.append_alert(self.alert_log, "Load Spike: 18 - web1", datetime(2026, 3, 4, 9, 0))
        logging_utils.append_failure(self.alert_log, "undelivered", datetime(2026, 3, 4, 9, 5), "relay")
        section = daily_report.alerts_section(self.config, self.now)
        self.assertEqual(section.lines, ["2026-03-04 09:00:00 - ALERT: Load Spike: 18 - web1"])

    def test_security_section_tails_auth_failures(self) -> None:
        rows = [f"Mar  4 10:00:{i:02d} sshd[1]: Failed password for root from 192.0.2.{i}" for i in range(7)]
        rows.append("Mar  4 10:01:00 sshd[1]: Accepted publickey for deploy")
        self.auth_log.write_text("\n".join(rows) + "\n", encoding="utf-8")
        section = daily_report.security_section(self.config)
        self.assertEqual(len(section.lines), 5)
        self.assertTrue(section.lines[-1].endswith("192.0.2.6"))

    def test_security_section_scans_whole_auth_log(self) -> None:
        rows = ["Mar  4 02:00:00 sshd[1]: Failed password for admin from 192.0.2.50"]
        rows.extend(f"Mar  4 03:00:00 CRON[{i}]: session opened" for i in range(6000))
        self.auth_log.write_text("\n".join(rows) + "\n", encoding="utf-8")
        self.assertEqual(daily_report.security_section(self.config).lines, rows[:1])

    def test_compile_report_layout(self) -> None:
        self._write_access_log()
        with mock.patch.object(daily_report.commands, "run", side_effect=fake_run), \
                mock.patch.object(diagnostics.commands, "service_active", side_effect=lambda name, timeout=10: name == "nginx"), \
                mock.patch.object(daily_report, "hostname", return_value="web1.example.com"):
            subject, body = daily_report.compile_report(self.config, self.now)
        self.assertEqual(subject, "Daily Server Report - web1.example.com")
        self.assertTrue(body.startswith("DAILY SERVER REPORT - Wednesday, March 04 2026 16:00:01"))
        for title in ("System Overview", "Web Traffic", "Daily Alerts", "Top Processes", "Security Checks"):
            self.assertIn(f"--- {title} ---", body)
        self.assertIn("load average", body)
        processes = body.split("--- Top Processes ---\n", 1)[1].split("\n\n", 1)[0]
        self.assertEqual(len(processes.splitlines()), 15)

    def test_report_survives_missing_everything(self) -> None:
        failing = commands.CommandResult(commands.FAILED, error="missing")
        with mock.patch.object(daily_report.commands, "run", return_value=failing), \
                mock.patch.object(diagnostics.commands, "service_active", return_value=False):
            subject, body = daily_report.compile_report(self.config, self.now)
        self.assertIn("--- Security Checks ---", body)
        self.assertTrue(subject.startswith("Daily Server Report - "))

    def test_send_daily_report_goes_through_dispatcher(self) -> None:
        mailer = CaptureMailer()
        dispatcher = AlertDispatcher(self.config, mailer, MonitorState(), FixedClock(self.now))
        with mock.patch.object(daily_report.commands, "run", side_effect=fake_run), \
                mock.patch.object(diagnostics.commands, "service_active", return_value=False), \
                mock.patch.object(dispatch_mod.config_loader, "fire_event", return_value=False):
            result = daily_report.send_daily_report(self.config, dispatcher)
        self.assertTrue(result.delivered)
        self.assertTrue(mailer.sent[0][0].startswith("URGENT: Daily Server Report - "))
        self.assertEqual(len(logging_utils.read_alert_lines(self.alert_log)), 1)


if __name__ == "__main__":
    unittest.main()
