"""Tests for trace-aware logging."""

import logging

from meetsync.common.tracing import trace_logger


class TestTraceLogger:
    def test_prefixes_trace_id(self, caplog):
        logger = logging.getLogger("meetsync.tests.tracing")
        with caplog.at_level(logging.INFO, logger="meetsync.tests.tracing"):
            trace_logger(logger, "3f1c-42").info("Queued %d proposals", 3)

        assert "[Trace: 3f1c-42] Queued 3 proposals" in caplog.text
        assert caplog.records[0].trace_id == "3f1c-42"

    def test_missing_trace_id(self, caplog):
        logger = logging.getLogger("meetsync.tests.tracing")
        with caplog.at_level(logging.INFO, logger="meetsync.tests.tracing"):
            trace_logger(logger, None).info("no session")

        assert "[Trace: N/A] no session" in caplog.text
