import tempfile
import unittest
from datetime import date, datetime
from pathlib import Path

from loadwatch.lib import logging_utils


class AlertLogTest(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.log = Path(self.tmp.name) / "nested" / "server_monitor.log"

    def tearDown(self) -> None:
        self.tmp.cleanup()

    def test_append_creates_file_and_parses_back(self) -> None:
        when = datetime(2026, 3, 4, 16, 0, 5)
        line = logging_utils.append_alert(self.log, "Load Spike: 16 - web1", when)
        self.assertEqual(line, "2026-03-04 16:00:05 - ALERT: Load Spike: 16 - web1")
        self.assertTrue(self.log.exists())
        parsed = logging_utils.parse_alert_line(self.log.read_text(encoding="utf-8"))
        self.assertEqual(parsed, (when, "Load Spike: 16 - web1"))

    def test_log_is_append_only(self) -> None:
        self.log.parent.mkdir(parents=True)
        self.log.write_text("existing line\n", encoding="utf-8")
        for minute in range(3):
            logging_utils.append_alert(self.log, f"alert {minute}", datetime(2026, 3, 4, 10, minute))
        lines = self.log.read_text(encoding="utf-8").splitlines()
        self.assertEqual(lines[0], "existing line")
        self.assertEqual(len(lines), 4)
        subjects = [logging_utils.parse_alert_line(line)[1] for line in lines[1:]]
        self.assertEqual(subjects, ["alert 0", "alert 1", "alert 2"])

    def test_newlines_in_subject_stay_on_one_line(self) -> None:
        logging_utils.append_alert(self.log, "two\nlines", datetime(2026, 1, 1))
        self.assertEqual(len(self.log.read_text(encoding="utf-8").splitlines()), 1)

    def test_failure_lines_are_not_alert_lines(self) -> None:
        logging_utils.append_failure(self.log, "Load Spike: 20", datetime(2026, 3, 4, 9, 0), "mail: exit 1")
        logging_utils.append_alert(self.log, "Load Spike: 21", datetime(2026, 3, 4, 9, 5))
        alerts = logging_utils.read_alert_lines(self.log)
        self.assertEqual(alerts, ["2026-03-04 09:05:00 - ALERT: Load Spike: 21"])
        self.assertIsNone(logging_utils.parse_alert_line("2026-03-04 09:00:00 - ALERT FAILED: x (y)"))

    def test_alerts_for_date_filters_by_day(self) -> None:
        logging_utils.append_alert(self.log, "yesterday", datetime(2026, 3, 3, 23, 59))
        logging_utils.append_alert(self.log, "today", datetime(2026, 3, 4, 0, 1))
        result = logging_utils.alerts_for_date(self.log, date(2026, 3, 4))
        self.assertEqual(len(result), 1)
        self.assertTrue(result[0].endswith("ALERT: today"))

    def test_missing_log_reads_empty(self) -> None:
        self.assertEqual(logging_utils.read_alert_lines(self.log), [])


if __name__ == "__main__":
    unittest.main()
