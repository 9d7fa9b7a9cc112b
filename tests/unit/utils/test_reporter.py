"""
Tests for progress reporters.
"""
import logging

from cloudprep.utils.reporter import LoggingReporter


def test_logging_reporter_writes_events(caplog):
    """Test each event lands in the log at the expected level."""
    reporter = LoggingReporter(logging.getLogger("cloudprep.test"))

    with caplog.at_level(logging.INFO, logger="cloudprep.test"):
        reporter.started("Opening ports in %s", "sg-1")
        reporter.failed(RuntimeError("boom"))

    assert "Opening ports in sg-1" in caplog.text
    assert any(r.levelno == logging.ERROR and "boom" in r.getMessage() for r in caplog.records)


def test_error_reports_and_returns_error(reporter):
    """Test error() records the failure and hands the error back."""
    err = RuntimeError("no subnets")

    returned = reporter.error(err, "while %s", "deploying")

    assert returned is err
    assert reporter.failures == [err]
    assert ("warning", "while deploying") in reporter.events

