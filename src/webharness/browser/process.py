"""Local browser process management.

Launches a Chromium-family browser with an isolated, disposable profile
directory and (optionally) a remote debugging port, and tracks the process
until it exits.

Classes:
    BrowserProcess: A launched browser and the resources it owns.
"""

import asyncio
import logging
import os
import shutil
import tempfile
from collections.abc import Iterable, Mapping
from pathlib import Path

import psutil
from pydantic import BaseModel, ConfigDict, PrivateAttr

from webharness.browser.installation import BrowserInstallation
from webharness.exceptions import LaunchFailed

logger = logging.getLogger(__name__)

# Browser stdout/stderr are forwarded here line by line
output_logger = logging.getLogger('webharness.browser.output')

PROFILE_DIR_PREFIX = 'webharness-user-data-dir-'

# asyncio.StreamReader line limit for the browser's pipes
STREAM_LIMIT = 1024 * 1024

VERBOSE_ARGS = ('--enable-logging=stderr', '--v=1')


def build_launch_args(
    profile_dir: Path,
    url: str,
    debug_port: int | None = None,
    extra_args: Iterable[str] = (),
    verbose: bool = False,
) -> list[str]:
    """Build the browser command line (without the executable)."""
    args = [
        '--no-default-browser-check',
        '--no-first-run',
        f'--user-data-dir={profile_dir}',
    ]
    if verbose:
        args.extend(VERBOSE_ARGS)
    if debug_port is not None:
        args.append(f'--remote-debugging-port={debug_port}')
    args.extend(arg for arg in extra_args if arg)
    args.append(url)
    return args


def file_url(target: str | Path) -> str:
    """Return a file:// URL for an existing local file, otherwise the target unchanged."""
    path = Path(target)
    if path.exists():
        return path.resolve().as_uri()
    return str(target)


class BrowserProcess(BaseModel):
    """A running (or exited) browser process.

    Owns its profile directory exclusively: the directory is created by
    ``launch()`` and removed by ``close()``. ``exit_code`` is written only by
    the background exit watcher, exactly once.

    Example:
        >>> browser = await BrowserProcess.launch(installation, 'http://127.0.0.1:8000/index.html', debug_port=33417)
        >>> browser.running
        True
        >>> await browser.close()
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, revalidate_instances='never')

    installation: BrowserInstallation
    profile_dir: Path
    pid: int
    url: str
    debug_port: int | None = None

    _process: asyncio.subprocess.Process | None = PrivateAttr(default=None)
    _exit_code: int | None = PrivateAttr(default=None)
    _exited: asyncio.Event = PrivateAttr(default_factory=asyncio.Event)
    _tasks: list[asyncio.Task] = PrivateAttr(default_factory=list)
    _closed: bool = PrivateAttr(default=False)

    @classmethod
    async def launch(
        cls,
        installation: BrowserInstallation,
        url: str,
        debug_port: int | None = None,
        extra_args: Iterable[str] = (),
        env: Mapping[str, str] | None = None,
        verbose: bool = False,
    ) -> 'BrowserProcess':
        """Spawn the browser on ``url`` with a fresh profile directory.

        Args:
            installation: Resolved browser to run.
            url: Page to open.
            debug_port: Remote debugging port, or None to launch without one.
            extra_args: Additional command line arguments, appended after the fixed set.
            env: Environment overlay applied on top of the current environment.
            verbose: Ask the browser to log to stderr.

        Raises:
            LaunchFailed: The executable is missing or could not be spawned.
        """
        executable = installation.executable_path
        if executable is None:
            raise LaunchFailed(f'No executable for {installation.variant.value} browser')

        profile_dir = Path(tempfile.mkdtemp(prefix=PROFILE_DIR_PREFIX))
        args = build_launch_args(profile_dir, url, debug_port, extra_args, verbose)
        process_env = {**os.environ, **(env or {})}

        logger.info(f'[BrowserProcess] Opening {executable}')
        logger.debug(f'[BrowserProcess] Launch args: {args}')

        try:
            process = await asyncio.create_subprocess_exec(
                str(executable),
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=process_env,
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            shutil.rmtree(profile_dir, ignore_errors=True)
            raise LaunchFailed(f'Failed to launch {executable}: {e}') from e

        browser = cls(
            installation=installation,
            profile_dir=profile_dir,
            pid=process.pid,
            url=url,
            debug_port=debug_port,
        )
        browser._attach(process)
        logger.info(f'[BrowserProcess] Browser started with PID {process.pid}')
        return browser

    def _attach(self, process: asyncio.subprocess.Process) -> None:
        self._process = process
        self._tasks = [asyncio.create_task(self._watch_exit(), name=f'browser-{process.pid}-exit')]
        if process.stdout is not None:
            self._tasks.append(
                asyncio.create_task(self._drain(process.stdout, logging.INFO, 'stdout'), name=f'browser-{process.pid}-stdout')
            )
        if process.stderr is not None:
            self._tasks.append(
                asyncio.create_task(self._drain(process.stderr, logging.INFO, 'stderr'), name=f'browser-{process.pid}-stderr')
            )

    @property
    def exit_code(self) -> int | None:
        return self._exit_code

    @property
    def running(self) -> bool:
        return self._exit_code is None

    async def _watch_exit(self) -> None:
        assert self._process is not None
        code = await self._process.wait()
        self._exit_code = code
        self._exited.set()
        logger.debug(f'[BrowserProcess] PID {self.pid} exited with code {code}')

    async def _drain(self, stream: asyncio.StreamReader, level: int, name: str) -> None:
        """Forward a pipe to the output logger until EOF."""
        while True:
            try:
                line = await stream.readline()
            except (ValueError, asyncio.LimitOverrunError):
                # Over-long line: consume what is buffered and keep draining
                line = await stream.read(STREAM_LIMIT)
            if not line:
                break
            text = line.decode(errors='replace').rstrip()
            if text:
                output_logger.log(level, f'[{name}] {text}')

    async def wait(self, timeout: float | None = None) -> int | None:
        """Wait for the process to exit; returns the exit code or None on timeout."""
        try:
            await asyncio.wait_for(self._exited.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return None
        return self._exit_code

    def kill(self) -> None:
        """Send a termination signal. Idempotent; does not wait for exit."""
        if self._process is None or not self.running:
            return
        try:
            self._process.terminate()
        except ProcessLookupError:
            pass

    def _force_kill(self) -> None:
        """SIGKILL the browser and any helper processes it spawned."""
        try:
            parent = psutil.Process(self.pid)
            children = parent.children(recursive=True)
        except psutil.NoSuchProcess:
            return
        for proc in [*children, parent]:
            try:
                proc.kill()
            except psutil.NoSuchProcess:
                pass

    async def close(self, grace_period: float = 5.0) -> None:
        """Stop the browser and release its profile directory. Idempotent."""
        if self._closed:
            return
        self._closed = True

        self.kill()
        if await self.wait(timeout=grace_period) is None and self.running:
            logger.warning(f'[BrowserProcess] PID {self.pid} did not terminate gracefully, killing')
            self._force_kill()
            await self.wait(timeout=grace_period)

        # Drains finish at EOF once the process is gone
        if self._tasks:
            done, pending = await asyncio.wait(self._tasks, timeout=1.0)
            for task in pending:
                task.cancel()
            for task in done:
                if not task.cancelled() and task.exception() is not None:
                    logger.debug(f'[BrowserProcess] Background task {task.get_name()} failed: {task.exception()}')

        self.remove_profile_dir()

    def remove_profile_dir(self) -> None:
        if not self.profile_dir.exists():
            return
        shutil.rmtree(self.profile_dir, ignore_errors=True)
        if self.profile_dir.exists():
            logger.warning(f'[BrowserProcess] Could not fully remove profile directory {self.profile_dir}')
        else:
            logger.debug(f'[BrowserProcess] Removed profile directory {self.profile_dir}')
