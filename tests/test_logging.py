"""Unit tests for batchcox.logging_config and batchcox.timing modules."""
import logging
import warnings

import pytest

from batchcox.batch import run_batch
from batchcox.logging_config import (
    ProgressLogger,
    SolverWarningTally,
    capture_warnings,
    log_performance,
    setup_logging,
)
from batchcox.timing import Timer


class TestSetupLogging:
    """Tests for setup_logging function."""

    def test_log_files_created(self, tmp_path):
        """Test the main, performance and warnings files."""
        logger = setup_logging(output_dir=str(tmp_path), console_output=False, run_name="screen")
        log_performance(logger, "Batch done", n_models=3)
        logger.warning("Model for 'X' failed")

        for handler in logger.handlers:
            handler.flush()
        logs = sorted((tmp_path / "logs").iterdir())
        main = next(p for p in logs if not p.stem.endswith(("_performance", "_warnings")))
        performance = next(p for p in logs if p.stem.endswith("_performance")).read_text()
        warnings_log = next(p for p in logs if p.stem.endswith("_warnings")).read_text()

        assert len(logs) == 3
        assert main.name.startswith("screen_")
        assert "Batch done | n_models=3" in performance
        assert "failed" not in performance
        assert "Model for 'X' failed" in warnings_log
        assert "Batch done" not in warnings_log

    def test_console_only(self):
        """Test no file handlers without an output directory."""
        logger = setup_logging()

        assert len(logger.handlers) == 1
        assert logger.name == "batchcox"

    def test_repeat_call_replaces_handlers(self, tmp_path):
        """Test a second setup does not duplicate handlers."""
        setup_logging(output_dir=str(tmp_path / "a"))
        logger = setup_logging(output_dir=str(tmp_path / "b"))

        assert len(logger.handlers) == 4


class TestSpecFailureLogging:
    """Tests that failures are logged with the candidate name."""

    def test_failure_warning(self, flat_candidate_data, caplog):
        """Test a failed spec is logged at WARNING naming the candidate."""
        with caplog.at_level(logging.WARNING, logger="batchcox"):
            run_batch(flat_candidate_data, ["flat", "X"])

        messages = [r.getMessage() for r in caplog.records if r.levelno == logging.WARNING]
        assert any("'flat'" in m and "zero_variance" in m for m in messages)


class TestWarningCapture:
    """Tests for SolverWarningTally and capture_warnings."""

    def test_classify(self):
        """Test keyword classification of solver warnings."""
        tally = SolverWarningTally(logging.getLogger("batchcox.test"))

        assert tally.classify("Newton-Raphson did not converge") == "convergence"
        assert tally.classify("overflow encountered in exp") == "numerical"
        assert tally.classify("Column G1 has high collinearity") == "separation"
        assert tally.classify("something else") == "other"

    def test_capture(self):
        """Test warnings inside the block are counted."""
        with capture_warnings(logging.getLogger("batchcox.test")) as tally:
            warnings.warn("overflow encountered in exp", RuntimeWarning)

        assert tally.summary() == {"numerical": 1}


class TestProgressAndTimer:
    """Tests for ProgressLogger and Timer."""

    def test_progress_interval(self, caplog):
        """Test progress lines at the interval and at completion."""
        progress = ProgressLogger(logging.getLogger("batchcox.test"), total=5, desc="Models", log_interval=2)
        with caplog.at_level(logging.INFO, logger="batchcox.test"):
            for _ in range(5):
                progress.update()

        lines = [r.getMessage().split(" | ")[0] for r in caplog.records]
        assert lines == ["Models: 2/5 (40.0%)", "Models: 4/5 (80.0%)", "Models: 5/5 (100.0%)"]

    def test_timer_duration(self):
        """Test the timer records a duration."""
        with Timer(logging.getLogger("batchcox.test"), "noop") as timer:
            pass

        assert timer.duration >= 0.0

    def test_timer_propagates(self):
        """Test exceptions inside the block are not swallowed."""
        with pytest.raises(ValueError):
            with Timer(logging.getLogger("batchcox.test"), "failing"):
                raise ValueError("bad")
