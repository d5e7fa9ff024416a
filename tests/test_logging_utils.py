import logging
import unittest
from unittest import mock

from logging_utils import get_log_level, log_event, set_log_level


class TestLogEvent(unittest.TestCase):
    def setUp(self):
        self._previous = get_log_level()
        set_log_level("DEBUG")

    def tearDown(self):
        set_log_level(self._previous)

    def test_fields_and_tag_rendered(self):
        with self.assertLogs("sonicstate", level="DEBUG") as captured:
            log_event("INFO", "State", "Transition", to_state="peak", energy=0.123456)

        record = captured.records[0]
        self.assertEqual(record.tag, "State")
        self.assertEqual(record.levelno, logging.INFO)
        self.assertEqual(record.getMessage(), "Transition | to_state=peak energy=0.1235")

    def test_level_filtering(self):
        set_log_level("WARNING")
        self.assertEqual(get_log_level(), "WARNING")
        with mock.patch("logging_utils._logger_adapter.log") as log_mock:
            log_event("DEBUG", "Tempo", "hidden")
            log_event("ERROR", "Engine", "shown")

        log_mock.assert_called_once_with(logging.ERROR, "shown", tag="Engine")

    def test_unknown_level_name_falls_back_to_info(self):
        set_log_level("chatty")
        self.assertEqual(get_log_level(), "INFO")
        set_log_level(None)
        self.assertEqual(get_log_level(), "INFO")

    def test_non_float_fields_render_plain(self):
        with self.assertLogs("sonicstate", level="INFO") as captured:
            log_event("INFO", "Capture", "Source connected", sample_rate=48000)

        self.assertEqual(captured.records[0].tag, "Capture")
        self.assertEqual(captured.records[0].getMessage(), "Source connected | sample_rate=48000")


if __name__ == "__main__":
    unittest.main()
