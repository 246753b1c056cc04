"""Test run orchestration."""

from webharness.runner.service import TestRun, classify_console_line, run_web_tests
from webharness.runner.views import RunOutcome, TestRunResult, TestRunState
from webharness.runner.watchdog import IdleWatchdog

__all__ = [
    "IdleWatchdog",
    "RunOutcome",
    "TestRun",
    "TestRunResult",
    "TestRunState",
    "classify_console_line",
    "run_web_tests",
]
