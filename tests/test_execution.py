"""Unit tests for graphbuilder.execution module."""

from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor

import pytest

from graphbuilder.execution import (
    EXECUTOR_ENV,
    describe_executor,
    get_executor_class,
    parallel_for,
    run_tasks,
)


def _square(x):
    return x * x


class TestExecutorSelection:
    """Env override beats the configured policy."""

    @pytest.mark.parametrize("value,expected", [
        ("serial", None),
        ("threads", ThreadPoolExecutor),
        ("processes", ProcessPoolExecutor),
        ("THREADS", ThreadPoolExecutor),
    ])
    def test_env_override(self, monkeypatch, value, expected):
        monkeypatch.setenv(EXECUTOR_ENV, value)
        assert get_executor_class("processes" if expected is None else "serial") is expected

    def test_policy_used_without_env(self, monkeypatch):
        monkeypatch.delenv(EXECUTOR_ENV, raising=False)
        assert get_executor_class("threads") is ThreadPoolExecutor
        assert get_executor_class("serial") is None

    def test_auto_picks_a_pool(self, monkeypatch):
        monkeypatch.delenv(EXECUTOR_ENV, raising=False)
        assert get_executor_class("auto") in (ThreadPoolExecutor, ProcessPoolExecutor)

    def test_describe(self):
        assert describe_executor(None) == "serial"
        assert describe_executor(ThreadPoolExecutor) == "threads"
        assert describe_executor(ProcessPoolExecutor) == "processes"


class TestRunTasks:
    def test_serial(self):
        assert run_tasks(_square, [1, 2, 3]) == [1, 4, 9]

    def test_threads_keep_order(self):
        assert run_tasks(_square, range(50), ThreadPoolExecutor, 4) == [x * x for x in range(50)]


class TestParallelFor:
    def test_results_in_input_order(self):
        assert parallel_for(range(20), _square, workers=4) == [x * x for x in range(20)]

    def test_empty(self):
        assert parallel_for([], _square) == []

    def test_exception_propagates(self):
        def boom(x):
            if x == 3:
                raise ValueError("bad item")
            return x

        with pytest.raises(ValueError, match="bad item"):
            parallel_for(range(6), boom, workers=3)
