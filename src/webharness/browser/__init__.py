"""Browser module: installation lookup, process management and DevTools access."""

from webharness.browser.devtools import ConsoleEvent, DebuggingSession, DevToolsClient, Tab, harness_tab_predicate
from webharness.browser.installation import BrowserInstallation, BrowserResolver, BrowserVariant
from webharness.browser.process import BrowserProcess, build_launch_args, file_url

__all__ = [
    "BrowserInstallation",
    "BrowserProcess",
    "BrowserResolver",
    "BrowserVariant",
    "ConsoleEvent",
    "DebuggingSession",
    "DevToolsClient",
    "Tab",
    "build_launch_args",
    "file_url",
    "harness_tab_predicate",
]
