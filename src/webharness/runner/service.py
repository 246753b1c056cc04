"""Test run orchestrator.

Serves a test directory, launches a browser on the harness page, attaches to
its console over DevTools and waits for the harness to report completion.
"""

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable, Mapping
from pathlib import Path
from typing import Any

from bubus import EventBus

from webharness.browser.devtools import ConsoleEvent, DebuggingSession, DevToolsClient, harness_tab_predicate
from webharness.browser.events import (
    BrowserLaunchedEvent,
    ConsoleMessageEvent,
    TabFoundEvent,
    TestRunErrorEvent,
    TestRunFinishedEvent,
    TestRunStateChangedEvent,
)
from webharness.browser.installation import BrowserInstallation, BrowserResolver
from webharness.browser.process import BrowserProcess
from webharness.config import RunnerSettings
from webharness.exceptions import BrowserNotFound, DevToolsConnectionError, WebHarnessError
from webharness.runner.views import OUTCOME_MESSAGES, RunOutcome, TestRunResult, TestRunState
from webharness.runner.watchdog import IdleWatchdog
from webharness.server import StaticServer

logger = logging.getLogger(__name__)
console_logger = logging.getLogger('webharness.console')

FINISHED_MARKER = 'tests finished -'
FAILED_MARKER = 'tests finished - failed'


def classify_console_line(text: str) -> RunOutcome | None:
    """Return the verdict a console line announces, or None if it announces nothing."""
    if FINISHED_MARKER not in text:
        return None
    if FAILED_MARKER in text:
        return RunOutcome.FAILED
    return RunOutcome.PASSED


class TestRun:
    """One browser test run, from serving the directory to teardown.

    Collaborators are injectable so the flow can be driven without a real
    browser: ``server_factory(directory, port=0, host=...)`` returns a started
    server, ``launcher(installation, url, debug_port=..., extra_args=...,
    env=..., verbose=...)`` returns a running browser and
    ``devtools_factory(host, port, poll_interval=...)`` returns a DevTools client.

    Example:
        >>> run = TestRun('test', html_file='index.html')
        >>> result = await run.run()
        >>> result.outcome
        <RunOutcome.PASSED: 'passed'>
    """

    __test__ = False

    def __init__(
        self,
        directory: str | Path = 'test',
        html_file: str = 'index.html',
        installation: BrowserInstallation | None = None,
        prefer_embedded_runtime: bool = False,
        settings: RunnerSettings | None = None,
        env: Mapping[str, str] | None = None,
        resolver: BrowserResolver | None = None,
        server_factory: Callable[..., Any] = StaticServer.start,
        launcher: Callable[..., Awaitable[Any]] = BrowserProcess.launch,
        devtools_factory: Callable[..., Any] = DevToolsClient,
        event_bus: EventBus | None = None,
        rng: random.Random | None = None,
    ):
        self.directory = Path(directory)
        self.html_file = html_file
        self.installation = installation
        self.prefer_embedded_runtime = prefer_embedded_runtime
        self.settings = settings or RunnerSettings.from_env()
        self.env = dict(env or {})
        self.resolver = resolver or BrowserResolver()
        self.event_bus = event_bus or EventBus()

        self._server_factory = server_factory
        self._launcher = launcher
        self._devtools_factory = devtools_factory
        self._rng = rng or random.Random()

        self.url: str | None = None
        self.debug_port: int | None = None
        self.console_lines: list[str] = []

        self._state = TestRunState.INIT
        self._server: Any = None
        self._browser: Any = None
        self._session: DebuggingSession | None = None
        self._watchdog: IdleWatchdog | None = None
        self._torn_down = False

    @property
    def state(self) -> TestRunState:
        return self._state

    @property
    def torn_down(self) -> bool:
        return self._torn_down

    def _set_state(self, state: TestRunState) -> None:
        previous, self._state = self._state, state
        logger.debug(f'[TestRun] {previous.value} -> {state.value}')
        self.event_bus.dispatch(TestRunStateChangedEvent(state=state.value, previous=previous.value))

    async def run(self) -> TestRunResult:
        """Run the tests and return the verdict. Resources are always released.

        Cancellation (Ctrl-C included) still tears the run down before the
        CancelledError propagates.
        """
        started = time.monotonic()
        try:
            outcome, message, error = await self._settle()
        except asyncio.CancelledError:
            logger.warning(f'[TestRun] Cancelled during {self._state.value}, tearing down')
            raise
        finally:
            await self._teardown_shielded()

        return TestRunResult(
            outcome=outcome,
            message=message,
            error=error,
            console_lines=list(self.console_lines),
            duration_seconds=time.monotonic() - started,
        )

    async def _settle(self) -> tuple[RunOutcome, str, WebHarnessError | None]:
        error: WebHarnessError | None = None
        try:
            outcome = await self._run()
        except WebHarnessError as e:
            if e.stage is None:
                e.stage = self._state.value
            error = e
            outcome = RunOutcome.ERRORED
        except Exception as e:
            logger.error(f'[TestRun] Unexpected error during {self._state.value}: {type(e).__name__}: {e}', exc_info=True)
            error = WebHarnessError(f'{type(e).__name__}: {e}', stage=self._state.value)
            error.__cause__ = e
            outcome = RunOutcome.ERRORED

        if error is not None:
            logger.error(f'[TestRun] {error}')
            self.event_bus.dispatch(
                TestRunErrorEvent(error_type=type(error).__name__, message=error.message, stage=error.stage)
            )
            message = error.message
        else:
            message = OUTCOME_MESSAGES[outcome]
            logger.info(f'[TestRun] {message}')

        self._set_state(outcome.state)
        self.event_bus.dispatch(TestRunFinishedEvent(outcome=outcome.value, message=message))
        return outcome, message, error

    async def _teardown_shielded(self) -> None:
        """Run teardown to completion even if the caller is cancelled meanwhile."""
        task = asyncio.ensure_future(self.teardown())
        cancelled = False
        while not task.done():
            try:
                await asyncio.shield(task)
            except asyncio.CancelledError:
                cancelled = True
        if cancelled:
            raise asyncio.CancelledError
        task.result()

    async def _run(self) -> RunOutcome:
        installation = self._resolve_installation()

        self._set_state(TestRunState.SERVING)
        self._server = await asyncio.to_thread(
            self._server_factory, self.directory, port=0, host=self.settings.host
        )

        self._set_state(TestRunState.LAUNCHING)
        low, high = self.settings.debug_port_range
        self.debug_port = self._rng.randrange(low, high)
        self.url = f'{self._server.url_base}/{self.html_file}'
        self._browser = await self._launcher(
            installation,
            self.url,
            debug_port=self.debug_port,
            extra_args=self.settings.extra_browser_args,
            env=self.env,
            verbose=self.settings.verbose_browser_logging,
        )
        self.event_bus.dispatch(
            BrowserLaunchedEvent(
                pid=self._browser.pid,
                executable_path=str(installation.executable_path),
                debug_port=self.debug_port,
                profile_dir=str(self._browser.profile_dir),
                url=self.url,
            )
        )

        devtools = self._devtools_factory(
            self._server.host, self.debug_port, poll_interval=self.settings.tab_poll_interval
        )
        tab = await devtools.find_tab(
            harness_tab_predicate(self.url, self.html_file), retry_for=self.settings.tab_retry_seconds
        )
        self._set_state(TestRunState.TAB_FOUND)
        self.event_bus.dispatch(
            TabFoundEvent(tab_id=tab.id, url=tab.url, web_socket_debugger_url=tab.web_socket_debugger_url)
        )

        self._session = await devtools.connect(tab)
        self._set_state(TestRunState.CONNECTED)

        return await self._watch_console()

    def _resolve_installation(self) -> BrowserInstallation:
        if self.installation is not None:
            if not self.installation.exists:
                raise BrowserNotFound(
                    f'{self.installation.variant.value} browser not found at {self.installation.executable_path}',
                    stage=TestRunState.INIT.value,
                )
            return self.installation

        installation = self.resolver.resolve_best(prefer_embedded_runtime=self.prefer_embedded_runtime)
        if installation is None:
            raise BrowserNotFound(stage=TestRunState.INIT.value)
        logger.debug(f'[TestRun] Using {installation}')
        return installation

    async def _watch_console(self) -> RunOutcome:
        """Consume console events until a verdict, an idle timeout or a lost connection."""
        assert self._session is not None and self._browser is not None
        self._watchdog = IdleWatchdog(self.settings.idle_timeout_seconds)
        self._watchdog.arm()
        self._set_state(TestRunState.RUNNING)

        watchdog_task = asyncio.create_task(self._watchdog.wait(), name='idle-watchdog')
        closed_task = asyncio.create_task(self._session.wait_closed(), name='devtools-closed')
        exit_task = asyncio.create_task(self._browser.wait(), name='browser-exit')
        event_task: asyncio.Task | None = None
        try:
            while True:
                event_task = asyncio.create_task(self._session.next_event(), name='console-event')
                done, _ = await asyncio.wait(
                    {event_task, watchdog_task, closed_task, exit_task}, return_when=asyncio.FIRST_COMPLETED
                )

                if event_task in done:
                    event = event_task.result()
                    if event is not None:
                        outcome = self._on_console_event(event)
                        if outcome is not None:
                            return outcome
                        continue

                if watchdog_task in done and watchdog_task.result():
                    return RunOutcome.TIMED_OUT
                if exit_task in done:
                    raise DevToolsConnectionError(
                        f'Browser exited with code {self._browser.exit_code} before tests finished'
                    )
                if closed_task in done or (event_task in done and event_task.result() is None):
                    raise DevToolsConnectionError(
                        f'Debugging connection closed before tests finished ({self._session.close_reason})'
                    )
        finally:
            for task in (event_task, watchdog_task, closed_task, exit_task):
                if task is not None and not task.done():
                    task.cancel()

    def _on_console_event(self, event: ConsoleEvent) -> RunOutcome | None:
        assert self._watchdog is not None
        self._watchdog.reset()
        self.console_lines.append(event.text)
        console_logger.info(event.text)
        self.event_bus.dispatch(ConsoleMessageEvent(text=event.text, received_at=event.received_at))
        return classify_console_line(event.text)

    async def teardown(self) -> None:
        """Release every resource acquired so far. Runs once; later calls are no-ops."""
        if self._torn_down:
            return
        self._torn_down = True

        steps: list[tuple[str, Callable[[], Awaitable[None]]]] = [
            ('console subscription', self._unsubscribe),
            ('idle watchdog', self._cancel_watchdog),
            ('debugging session', self._close_session),
            ('browser process', self._close_browser),
            ('static server', self._stop_server),
        ]
        for name, step in steps:
            try:
                await step()
            except Exception as e:
                logger.debug(f'[TestRun] Error releasing {name}: {type(e).__name__}: {e}')

        self._set_state(TestRunState.TORN_DOWN)
        try:
            await self.event_bus.stop(clear=True, timeout=5)
        except Exception as e:
            logger.debug(f'[TestRun] Error stopping event bus: {type(e).__name__}: {e}')

    async def _unsubscribe(self) -> None:
        if self._session is not None:
            self._session.unsubscribe()

    async def _cancel_watchdog(self) -> None:
        if self._watchdog is not None:
            self._watchdog.cancel()

    async def _close_session(self) -> None:
        if self._session is not None:
            await self._session.close()

    async def _close_browser(self) -> None:
        if self._browser is not None:
            self._browser.kill()
            await self._browser.close()

    async def _stop_server(self) -> None:
        if self._server is not None:
            await asyncio.to_thread(self._server.stop)


async def run_web_tests(
    directory: str | Path = 'test',
    html_file: str = 'index.html',
    installation: BrowserInstallation | None = None,
    prefer_embedded_runtime: bool = False,
    settings: RunnerSettings | None = None,
    env: Mapping[str, str] | None = None,
    **collaborators: Any,
) -> TestRunResult:
    """Run the browser tests in ``directory`` and raise unless they pass.

    Raises:
        TestsFailed: The harness reported failure.
        TestsTimedOut: The console went idle before the harness finished.
        WebHarnessError: Setup failed or the connection was lost.
    """
    run = TestRun(
        directory,
        html_file=html_file,
        installation=installation,
        prefer_embedded_runtime=prefer_embedded_runtime,
        settings=settings,
        env=env,
        **collaborators,
    )
    result = await run.run()
    result.raise_for_outcome()
    return result
