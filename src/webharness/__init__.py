"""webharness - Run browser test harness pages in Chrome and report the verdict."""

__version__ = "0.1.0"

from webharness.browser import (
    BrowserInstallation,
    BrowserProcess,
    BrowserResolver,
    BrowserVariant,
    DevToolsClient,
)
from webharness.config import CONFIG, RunnerSettings
from webharness.exceptions import (
    BrowserNotFound,
    ConnectionRefused,
    DevToolsConnectionError,
    LaunchFailed,
    ServerStartFailed,
    TabNotFound,
    TestsFailed,
    TestsTimedOut,
    WebHarnessError,
)
from webharness.runner import RunOutcome, TestRun, TestRunResult, TestRunState, run_web_tests
from webharness.server import StaticServer

__all__ = [
    "BrowserInstallation",
    "BrowserNotFound",
    "BrowserProcess",
    "BrowserResolver",
    "BrowserVariant",
    "CONFIG",
    "ConnectionRefused",
    "DevToolsClient",
    "DevToolsConnectionError",
    "LaunchFailed",
    "RunOutcome",
    "RunnerSettings",
    "ServerStartFailed",
    "StaticServer",
    "TabNotFound",
    "TestRun",
    "TestRunResult",
    "TestRunState",
    "TestsFailed",
    "TestsTimedOut",
    "WebHarnessError",
    "run_web_tests",
]
