import logging
import unittest

from snapshot_builder.utils.logging import REDACTED, RedactingFilter, get_logger


class _ListHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__()
        self.messages = []

    def emit(self, record: logging.LogRecord) -> None:
        self.messages.append(record.getMessage())


class RedactingFilterTests(unittest.TestCase):
    def setUp(self) -> None:
        self.handler = _ListHandler()
        self.handler.addFilter(RedactingFilter(["tok-abcdef", None, "pw"]))
        self.logger = logging.getLogger("tests.redaction")
        self.logger.addHandler(self.handler)
        self.logger.setLevel(logging.INFO)
        self.logger.propagate = False

    def tearDown(self) -> None:
        self.logger.removeHandler(self.handler)

    def test_scrubs_formatted_arguments(self) -> None:
        self.logger.info("calling API with %s", "tok-abcdef")
        self.assertEqual(self.handler.messages, [f"calling API with {REDACTED}"])

    def test_short_values_are_ignored(self) -> None:
        redaction = RedactingFilter(["pw"])
        self.assertEqual(redaction.secrets, [])
        self.logger.info("pw stays")
        self.assertEqual(self.handler.messages, ["pw stays"])

    def test_redact_replaces_every_occurrence(self) -> None:
        redaction = RedactingFilter(["hunter22"])
        redaction.add("hunter22")
        self.assertEqual(redaction.secrets, ["hunter22"])
        self.assertEqual(redaction.redact("hunter22/hunter22"), f"{REDACTED}/{REDACTED}")


class GetLoggerTests(unittest.TestCase):
    def test_returns_named_logger_with_root_handler(self) -> None:
        logger = get_logger("snapshot_builder.test")
        self.assertEqual(logger.name, "snapshot_builder.test")
        self.assertTrue(logging.getLogger().handlers)


if __name__ == "__main__":
    unittest.main()
