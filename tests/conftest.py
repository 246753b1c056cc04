"""Pytest configuration and fixtures for the webharness test suite.

This module provides in-memory stand-ins for the collaborators of a test run
so the orchestrator can be driven end to end without a real browser.

Shared Fakes:
    FakeServer: Started static server with a fixed port.
    FakeBrowser: Launched browser process owning a real temporary profile dir.
    FakeWebSocket / FakeCDPClient: The page connection behind a DebuggingSession.
    RunHarness: Wires the fakes into a TestRun. The DevTools client is the real
        one, pointed at an ``httpx.MockTransport`` serving ``/json``.

Path Setup:
    The src directory is added to sys.path to enable imports like:
    ``from webharness.runner import TestRun``
"""

import asyncio
import logging
import sys
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import pytest

src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from webharness.browser.devtools import DevToolsClient  # noqa: E402
from webharness.browser.installation import BrowserInstallation, BrowserVariant  # noqa: E402
from webharness.config import RunnerSettings  # noqa: E402
from webharness.runner.service import TestRun  # noqa: E402


# ---------------------------------------------------------------------------
# Shared fakes
# ---------------------------------------------------------------------------


class FakeServer:
    """Started static server; ``stop()`` only counts calls."""

    def __init__(self, directory, host="127.0.0.1", port=51000):
        self.path = Path(directory)
        self.host = host
        self.port = port
        self.stop_calls = 0

    @property
    def url_base(self):
        return f"http://{self.host}:{self.port}"

    def stop(self):
        self.stop_calls += 1


class FakeBrowser:
    """Launched browser that exits when closed (or earlier, on request)."""

    def __init__(self, profile_dir: Path, url: str, debug_port=None, pid=4242):
        self.profile_dir = profile_dir
        self.profile_dir.mkdir(parents=True, exist_ok=True)
        self.url = url
        self.debug_port = debug_port
        self.pid = pid
        self.exit_code = None
        self.kill_calls = 0
        self.close_calls = 0
        self._exited = asyncio.Event()

    def exit(self, code: int) -> None:
        self.exit_code = code
        self._exited.set()

    def kill(self) -> None:
        self.kill_calls += 1

    async def wait(self, timeout=None):
        await asyncio.wait_for(self._exited.wait(), timeout=timeout)
        return self.exit_code

    async def close(self) -> None:
        self.close_calls += 1
        if not self._exited.is_set():
            self.exit(-15)
        if self.profile_dir.exists():
            self.profile_dir.rmdir()


class FakeWebSocket:
    def __init__(self):
        self._closed = asyncio.Event()

    def close(self) -> None:
        self._closed.set()

    async def wait_closed(self) -> None:
        await self._closed.wait()


class FakeCDPClient:
    """Page connection that plays back console lines once ``Runtime.enable`` is sent."""

    def __init__(self, url: str, lines=(), close_after_lines=False):
        self.url = url
        self.lines = list(lines)
        self.close_after_lines = close_after_lines
        self.ws = FakeWebSocket()
        self.console_handler = None
        self.start_calls = 0
        self.stop_calls = 0
        self.enable_calls = 0
        self.register = SimpleNamespace(Runtime=SimpleNamespace(consoleAPICalled=self._register_console))
        self.send = SimpleNamespace(Runtime=SimpleNamespace(enable=self._enable))

    async def start(self):
        self.start_calls += 1

    async def stop(self):
        self.stop_calls += 1
        self.ws.close()

    def _register_console(self, handler):
        self.console_handler = handler

    async def _enable(self, params=None, session_id=None):
        self.enable_calls += 1
        loop = asyncio.get_running_loop()
        for line in self.lines:
            loop.call_soon(self.emit, line)
        if self.close_after_lines:
            loop.call_soon(self.ws.close)
        return {}

    def emit(self, text: str) -> None:
        event = {
            "type": "log",
            "args": [{"type": "string", "value": text}],
            "executionContextId": 1,
            "timestamp": 0.0,
        }
        self.console_handler(event, None)


class RunHarness:
    """Builds TestRuns backed by the fakes above and records how they were used."""

    def __init__(self, tmp_path: Path):
        self.tmp_path = tmp_path
        self.directory = tmp_path / "test"
        self.directory.mkdir()
        (self.directory / "index.html").write_text("<html></html>")

        self.server_port = 51000
        self.debug_port = 33417
        self.lines: list[str] = []
        self.close_after_lines = False
        self.browser_exit_code = None
        self.tabs_available = True

        self.installation = BrowserInstallation(
            variant=BrowserVariant.STABLE,
            executable_path=Path("/opt/google/chrome/chrome"),
            exists=True,
        )
        self.settings = RunnerSettings(
            tab_retry_seconds=0.3,
            tab_poll_interval=0.01,
            idle_timeout_seconds=0.5,
            extra_browser_args=[],
        )

        self.server_calls: list[dict] = []
        self.launch_calls: list[dict] = []
        self.devtools_calls: list[tuple] = []
        self.servers: list[FakeServer] = []
        self.browsers: list[FakeBrowser] = []
        self.cdp_clients: list[FakeCDPClient] = []

    @property
    def server(self) -> FakeServer:
        return self.servers[0]

    @property
    def browser(self) -> FakeBrowser:
        return self.browsers[0]

    @property
    def cdp_client(self) -> FakeCDPClient:
        return self.cdp_clients[0]

    def server_factory(self, directory, port=0, host="127.0.0.1"):
        self.server_calls.append({"directory": directory, "port": port, "host": host})
        server = FakeServer(directory, host=host, port=self.server_port)
        self.servers.append(server)
        return server

    async def launcher(self, installation, url, debug_port=None, extra_args=(), env=None, verbose=False):
        self.launch_calls.append(
            {
                "installation": installation,
                "url": url,
                "debug_port": debug_port,
                "extra_args": list(extra_args),
                "env": env,
                "verbose": verbose,
            }
        )
        browser = FakeBrowser(self.tmp_path / f"profile-{len(self.browsers)}", url, debug_port)
        if self.browser_exit_code is not None:
            browser.exit(self.browser_exit_code)
        self.browsers.append(browser)
        return browser

    def devtools_factory(self, host, port, poll_interval=0.25):
        self.devtools_calls.append((host, port))
        return DevToolsClient(
            host,
            port,
            poll_interval=poll_interval,
            transport=httpx.MockTransport(self._json_endpoint),
            client_factory=self._client_factory,
        )

    def _json_endpoint(self, request: httpx.Request) -> httpx.Response:
        if not self.tabs_available or not self.servers:
            return httpx.Response(200, json=[])
        return httpx.Response(
            200,
            json=[
                {
                    "id": "BLANK",
                    "type": "page",
                    "url": "about:blank",
                    "title": "",
                    "webSocketDebuggerUrl": f"ws://{request.url.host}:{request.url.port}/devtools/page/BLANK",
                },
                {
                    "id": "TAB1",
                    "type": "page",
                    "url": f"{self.server.url_base}/index.html",
                    "title": "harness",
                    "webSocketDebuggerUrl": f"ws://{request.url.host}:{request.url.port}/devtools/page/TAB1",
                },
            ],
        )

    def _client_factory(self, url: str) -> FakeCDPClient:
        client = FakeCDPClient(url, lines=self.lines, close_after_lines=self.close_after_lines)
        self.cdp_clients.append(client)
        return client

    def build(self, **overrides) -> TestRun:
        kwargs = {
            "directory": self.directory,
            "html_file": "index.html",
            "installation": self.installation,
            "settings": self.settings,
            "server_factory": self.server_factory,
            "launcher": self.launcher,
            "devtools_factory": self.devtools_factory,
            "rng": MagicMock(randrange=MagicMock(return_value=self.debug_port)),
        }
        kwargs.update(overrides)
        return TestRun(**kwargs)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def harness(tmp_path):
    """Collaborator fakes for one TestRun."""
    return RunHarness(tmp_path)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep host configuration out of the tests."""
    for name in (
        "CHROME_ARGS",
        "WEBHARNESS_LOGGING_LEVEL",
        "WEBHARNESS_SDK_ROOT",
        "WEBHARNESS_TAB_RETRY_SECONDS",
        "WEBHARNESS_IDLE_TIMEOUT_SECONDS",
        "WEBHARNESS_DEBUG_PORT_RANGE",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def restore_package_logger():
    """setup_logging() changes the package logger level; undo it between tests."""
    logger = logging.getLogger("webharness")
    level = logger.level
    yield
    logger.setLevel(level)
