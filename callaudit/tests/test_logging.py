"""Tests for the execution-time decorator and metrics collector."""

import pytest

from callaudit.utils.logging_config import log_execution_time, metrics


@pytest.fixture(autouse=True)
def clean_metrics():
    metrics.reset()
    yield
    metrics.reset()


class TestLogExecutionTime:

    def test_records_timing_on_success(self):
        @log_execution_time("callaudit.test")
        def score_call(value):
            return value * 2

        assert score_call(4) == 8
        assert score_call.__name__ == "score_call"
        assert metrics.get_stats()["timings"]["function.score_call"]["count"] == 1

    def test_reraises_without_timing(self):
        @log_execution_time("callaudit.test")
        def broken_call():
            raise ValueError("bad audio")

        with pytest.raises(ValueError):
            broken_call()
        assert "function.broken_call" not in metrics.get_stats()["timings"]
