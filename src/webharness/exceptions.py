"""Exceptions raised while orchestrating a browser test run."""

from typing import Any


class WebHarnessError(Exception):
    """Base exception for all test run errors.

    Attributes:
        message: Human readable description.
        stage: Name of the test run state the error was raised in, if known.
    """

    default_message: str = 'test run error'

    def __init__(self, message: str | None = None, stage: str | None = None, **details: Any):
        self.message = message or self.default_message
        self.stage = stage
        self.details = details
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.stage:
            return f'[{self.stage}] {self.message}'
        return self.message


class BrowserNotFound(WebHarnessError):
    """No browser installation could be resolved on this host."""

    default_message = 'Unable to locate a Chrome install'


class LaunchFailed(WebHarnessError):
    """The browser executable could not be spawned."""

    default_message = 'failed to launch browser'


class ServerStartFailed(WebHarnessError):
    """The static server could not bind or serve the requested directory."""

    default_message = 'failed to start static server'


class TabNotFound(WebHarnessError):
    """No tab matched the harness predicate within the retry budget."""

    default_message = 'test harness tab not found'


class DevToolsConnectionError(WebHarnessError):
    """The DevTools endpoint or tab connection failed or dropped."""

    default_message = 'devtools connection error'


class ConnectionRefused(DevToolsConnectionError):
    """The DevTools HTTP endpoint is not listening (yet)."""

    default_message = 'devtools endpoint refused the connection'


class TestsFailed(WebHarnessError):
    """The harness reported a failing run."""

    __test__ = False
    default_message = 'tests failed'


class TestsTimedOut(WebHarnessError):
    """No console activity was seen within the idle window."""

    __test__ = False
    default_message = 'tests timed out'
