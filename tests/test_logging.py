"""Unit tests for logging_config and timing modules."""
import logging
import warnings
import pytest
from cancer_survival.logging_config import (
    setup_logging,
    log_performance,
    capture_warnings,
    get_logger,
    WarningLogger,
    ProgressLogger,
)
from cancer_survival.timing import Timer, log_execution_time


def _read(log_dir, prefix):
    for handler in logging.getLogger("cancer_survival").handlers:
        handler.flush()
    [path] = list(log_dir.glob(f"{prefix}_*.log"))
    return path.read_text()


class TestSetupLogging:
    """Tests for setup_logging function."""

    def test_creates_log_files(self, tmp_path):
        """Test that main, performance and warning logs are created."""
        setup_logging(log_dir=str(tmp_path), console_output=False)

        names = sorted(p.name.split("_")[0] for p in tmp_path.glob("*.log"))
        assert names == ["main", "performance", "warnings"]

    def test_routes_records_by_kind(self, tmp_path):
        """Test that performance and warning records go to their own files."""
        logger = setup_logging(log_dir=str(tmp_path), console_output=False)

        log_performance(logger, "Cox model fitted", concordance=0.61)
        logger.warning("Dropping 3 records")
        logger.info("plain message")

        assert "Cox model fitted | concordance=0.61" in _read(tmp_path, "performance")
        assert "plain message" not in _read(tmp_path, "performance")
        assert "Dropping 3 records" in _read(tmp_path, "warnings")
        assert "plain message" not in _read(tmp_path, "warnings")
        assert "plain message" in _read(tmp_path, "main")

    def test_child_loggers_share_handlers(self, tmp_path):
        """Test that module loggers write to the package log files."""
        setup_logging(log_dir=str(tmp_path), console_output=False)

        get_logger("cox").info("from the cox module")

        assert "cancer_survival.cox" in _read(tmp_path, "main")

    def test_repeated_setup_replaces_handlers(self, tmp_path):
        """Test that calling setup twice does not duplicate handlers."""
        setup_logging(log_dir=str(tmp_path / "a"), console_output=False)
        logger = setup_logging(log_dir=str(tmp_path / "b"), console_output=False)

        assert len(logger.handlers) == 3


class TestCaptureWarnings:
    """Tests for capture_warnings context manager."""

    def test_categorizes_convergence_warnings(self):
        """Test that library warnings are captured and categorized."""
        logger = get_logger("test")

        with capture_warnings(logger) as caught:
            warnings.warn("Newton-Rhaphson failed to converge sufficiently.", RuntimeWarning)
            warnings.warn("overflow encountered in exp", RuntimeWarning)

        assert caught.summary() == {"convergence": 1, "numerical": 1}
        assert caught.messages[0][1].startswith("RuntimeWarning: Newton-Rhaphson")

    def test_restores_warning_display(self):
        """Test that the original warning display is restored on exit."""
        before = warnings.showwarning

        with capture_warnings(get_logger("test")):
            pass

        assert warnings.showwarning is before

    def test_uncategorized(self):
        """Test the fallback category."""
        assert WarningLogger(get_logger("test")).categorize_warning("something odd") == "other"


class TestTimer:
    """Tests for Timer and log_execution_time."""

    def test_logs_duration(self, caplog):
        """Test that a completed block logs its duration."""
        logger = get_logger("test")

        with caplog.at_level(logging.INFO, logger="cancer_survival"):
            with Timer(logger, "Kaplan-Meier estimation") as timer:
                pass

        assert timer.duration is not None
        assert "Completed: Kaplan-Meier estimation | duration_sec=" in caplog.text

    def test_does_not_suppress_exceptions(self, caplog):
        """Test that errors propagate and are logged."""
        logger = get_logger("test")

        with caplog.at_level(logging.INFO, logger="cancer_survival"):
            with pytest.raises(RuntimeError):
                with Timer(logger, "Cox regression"):
                    raise RuntimeError("singular")

        assert "Cox regression failed" in caplog.text

    def test_decorator_returns_result(self, caplog):
        """Test that the decorator is transparent to the return value."""
        @log_execution_time(get_logger("test"))
        def add(a, b):
            return a + b

        with caplog.at_level(logging.INFO, logger="cancer_survival"):
            assert add(2, 3) == 5

        assert "Completed: add" in caplog.text


def test_progress_logger(caplog):
    """Test that progress lines include counts and metrics."""
    logger = get_logger("test")
    progress = ProgressLogger(logger, total=2, desc="Descriptive charts")

    with caplog.at_level(logging.INFO, logger="cancer_survival"):
        progress.update(1, metrics={"chart": "01.png"})
        progress.update(1)

    assert "Descriptive charts: 1/2 (50.0%) | chart=01.png" in caplog.text
    assert "Descriptive charts: 2/2 (100.0%)" in caplog.text
