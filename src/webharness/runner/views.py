"""State and result models for a browser test run."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from webharness.exceptions import TestsFailed, TestsTimedOut, WebHarnessError


class TestRunState(str, Enum):
    __test__ = False

    INIT = 'init'
    SERVING = 'serving'
    LAUNCHING = 'launching'
    TAB_FOUND = 'tab_found'
    CONNECTED = 'connected'
    RUNNING = 'running'
    PASSED = 'passed'
    FAILED = 'failed'
    TIMED_OUT = 'timed_out'
    ERRORED = 'errored'
    TORN_DOWN = 'torn_down'


class RunOutcome(str, Enum):
    PASSED = 'passed'
    FAILED = 'failed'
    TIMED_OUT = 'timed_out'
    ERRORED = 'errored'

    @property
    def state(self) -> TestRunState:
        return TestRunState(self.value)


OUTCOME_MESSAGES = {
    RunOutcome.PASSED: 'tests passed',
    RunOutcome.FAILED: 'tests failed',
    RunOutcome.TIMED_OUT: 'tests timed out',
}


class TestRunResult(BaseModel):
    """The single verdict of one test run.

    Attributes:
        outcome: Passed, failed, timed out or errored.
        message: Human readable summary ("tests failed", "tests timed out", ...).
        error: The setup or connection error when ``outcome`` is ERRORED.
        console_lines: Every console line received, in receipt order.
        duration_seconds: Wall time from start to teardown.
    """

    __test__ = False

    model_config = ConfigDict(arbitrary_types_allowed=True)

    outcome: RunOutcome
    message: str
    error: WebHarnessError | None = None
    console_lines: list[str] = Field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def passed(self) -> bool:
        return self.outcome is RunOutcome.PASSED

    @property
    def error_stage(self) -> str | None:
        return self.error.stage if self.error else None

    def raise_for_outcome(self) -> None:
        """Raise the matching exception unless the run passed."""
        if self.outcome is RunOutcome.FAILED:
            raise TestsFailed(self.message)
        if self.outcome is RunOutcome.TIMED_OUT:
            raise TestsTimedOut(self.message)
        if self.outcome is RunOutcome.ERRORED:
            raise self.error or WebHarnessError(self.message)
