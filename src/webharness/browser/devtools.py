"""DevTools protocol client for tab discovery and console capture.

Tabs are listed over the browser's HTTP debugging endpoint with httpx; the
console of a single tab is observed over its own WebSocket with cdp-use.

Classes:
    Tab: One page as reported by the ``/json`` endpoint.
    ConsoleEvent: A console line received from a tab.
    DevToolsClient: Lists tabs and polls for the harness tab.
    DebuggingSession: Persistent connection to one tab's console.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from datetime import datetime
from typing import Any

import httpx
from cdp_use import CDPClient
from cdp_use.cdp.runtime.events import ConsoleAPICalledEvent
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from webharness.exceptions import ConnectionRefused, DevToolsConnectionError, TabNotFound

logger = logging.getLogger(__name__)


class Tab(BaseModel):
    """A debuggable page reported by the DevTools HTTP endpoint."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra='ignore')

    id: str
    url: str = ''
    title: str = ''
    type: str = 'page'
    web_socket_debugger_url: str = Field(alias='webSocketDebuggerUrl')

    def __str__(self) -> str:
        return f'{self.title or self.id} [{self.url}]'


class ConsoleEvent(BaseModel):
    """One console message, in the order it was received."""

    text: str
    received_at: datetime = Field(default_factory=datetime.now)


def harness_tab_predicate(url: str, html_file: str) -> Callable[[Tab], bool]:
    """Match the served harness page by exact URL or by trailing file name."""

    def predicate(tab: Tab) -> bool:
        return tab.url == url or tab.url.endswith(html_file)

    return predicate


def console_text(event: ConsoleAPICalledEvent) -> str:
    """Flatten the arguments of a console API call into one line of text."""
    parts = []
    for arg in event.get('args', []):
        if 'value' in arg:
            value = arg['value']
            parts.append(value if isinstance(value, str) else str(value))
        elif 'unserializableValue' in arg:
            parts.append(arg['unserializableValue'])
        else:
            parts.append(arg.get('description', arg.get('type', '')))
    return ' '.join(parts)


class DevToolsClient:
    """Client for the browser's DevTools HTTP endpoint.

    Example:
        >>> client = DevToolsClient('127.0.0.1', 33417)
        >>> tab = await client.find_tab(harness_tab_predicate(url, 'index.html'), retry_for=5.0)
        >>> session = await client.connect(tab)
    """

    def __init__(
        self,
        host: str,
        port: int,
        poll_interval: float = 0.25,
        request_timeout: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
        client_factory: Callable[[str], Any] = CDPClient,
    ):
        self.host = host
        self.port = port
        self.poll_interval = poll_interval
        self.request_timeout = request_timeout
        self._transport = transport
        self._client_factory = client_factory

    @property
    def endpoint(self) -> str:
        return f'http://{self.host}:{self.port}/json'

    async def list_tabs(self, timeout: float | None = None) -> list[Tab]:
        """List open tabs in the order the browser reports them.

        Raises:
            ConnectionRefused: The endpoint is not listening yet.
            DevToolsConnectionError: Any other HTTP or payload failure.
        """
        try:
            async with httpx.AsyncClient(timeout=timeout or self.request_timeout, transport=self._transport) as client:
                response = await client.get(self.endpoint)
                response.raise_for_status()
                payload = response.json()
        except httpx.ConnectError as e:
            raise ConnectionRefused(f'DevTools endpoint {self.endpoint} is not reachable: {e}') from e
        except (httpx.HTTPError, ValueError) as e:
            raise DevToolsConnectionError(f'Failed to list tabs from {self.endpoint}: {e}') from e

        if not isinstance(payload, list):
            raise DevToolsConnectionError(f'Unexpected tab list payload from {self.endpoint}: {type(payload).__name__}')

        try:
            # Tabs already claimed by another client have no debugger URL
            return [Tab.model_validate(entry) for entry in payload if entry.get('webSocketDebuggerUrl')]
        except (ValidationError, AttributeError) as e:
            raise DevToolsConnectionError(f'Malformed tab entry from {self.endpoint}: {e}') from e

    async def find_tab(self, predicate: Callable[[Tab], bool], retry_for: float) -> Tab:
        """Poll the endpoint until a tab satisfies ``predicate``.

        Refused connections are expected right after launch and are retried
        like an empty tab list.

        Raises:
            TabNotFound: No tab matched within ``retry_for`` seconds.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + retry_for
        last_error: DevToolsConnectionError | None = None
        attempts = 0

        while True:
            attempts += 1
            remaining = deadline - loop.time()
            try:
                tabs = await self.list_tabs(timeout=max(min(self.request_timeout, remaining), 0.05))
            except DevToolsConnectionError as e:
                last_error = e
                tabs = []

            for tab in tabs:
                if predicate(tab):
                    logger.debug(f'Found tab {tab.id} after {attempts} attempt(s)')
                    return tab

            remaining = deadline - loop.time()
            if remaining <= 0:
                detail = f' (last error: {last_error.message})' if last_error else ''
                raise TabNotFound(f'No matching tab on {self.host}:{self.port} after {retry_for:.1f}s{detail}')
            await asyncio.sleep(min(self.poll_interval, remaining))

    async def connect(self, tab: Tab) -> 'DebuggingSession':
        session = DebuggingSession(self.host, self.port, tab, client_factory=self._client_factory)
        return await session.open()


class DebuggingSession:
    """A console-observing connection to one tab.

    Console messages are queued in receipt order and exposed through
    ``events()`` until the connection closes. The session never reconnects.
    """

    def __init__(
        self,
        host: str,
        port: int,
        tab: Tab,
        client_factory: Callable[[str], Any] = CDPClient,
    ):
        self.host = host
        self.port = port
        self.tab = tab
        self._client_factory = client_factory
        self._client: Any = None
        self._queue: asyncio.Queue[ConsoleEvent | None] = asyncio.Queue()
        self._closed = asyncio.Event()
        self._subscribed = False
        self._close_reason: str | None = None
        self._watch_task: asyncio.Task | None = None

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    @property
    def close_reason(self) -> str | None:
        return self._close_reason

    async def open(self) -> 'DebuggingSession':
        """Connect to the tab's WebSocket and enable console notifications.

        Raises:
            DevToolsConnectionError: The handshake or ``Runtime.enable`` failed.
        """
        url = self.tab.web_socket_debugger_url
        client = self._client_factory(url)
        try:
            await client.start()
        except Exception as e:
            raise DevToolsConnectionError(f'Failed to connect to {url}: {e}') from e
        self._client = client

        self._subscribed = True
        client.register.Runtime.consoleAPICalled(self._on_console_api_called)
        try:
            await client.send.Runtime.enable()
        except Exception as e:
            await self.close()
            raise DevToolsConnectionError(f'Failed to enable console on {url}: {e}') from e

        self._watch_task = asyncio.create_task(self._watch_connection(), name=f'devtools-{self.tab.id}-watch')
        logger.debug(f'Console capture enabled for tab {self.tab.id}')
        return self

    def _on_console_api_called(self, event: ConsoleAPICalledEvent, session_id: str | None) -> None:
        if not self._subscribed:
            return
        self._queue.put_nowait(ConsoleEvent(text=console_text(event)))

    async def _watch_connection(self) -> None:
        """Mark the session closed once the underlying socket goes away."""
        ws = getattr(self._client, 'ws', None)
        if ws is None:
            logger.debug('CDP client exposes no websocket, close detection limited to explicit close()')
            return
        await ws.wait_closed()
        self._mark_closed('connection closed by browser')

    def _mark_closed(self, reason: str) -> None:
        if self._closed.is_set():
            return
        self._close_reason = reason
        self._closed.set()
        self._queue.put_nowait(None)

    def unsubscribe(self) -> None:
        """Stop accepting console events and drop anything already queued."""
        self._subscribed = False
        while not self._queue.empty():
            self._queue.get_nowait()

    async def next_event(self) -> ConsoleEvent | None:
        """Wait for the next console event; None once the connection is closed."""
        if self._closed.is_set() and self._queue.empty():
            return None
        return await self._queue.get()

    async def events(self) -> AsyncIterator[ConsoleEvent]:
        while True:
            event = await self.next_event()
            if event is None:
                return
            yield event

    async def wait_closed(self) -> str | None:
        await self._closed.wait()
        return self._close_reason

    async def close(self) -> None:
        """Close the connection. Idempotent."""
        self.unsubscribe()
        self._mark_closed('closed by client')
        if self._watch_task is not None and not self._watch_task.done():
            self._watch_task.cancel()
        if self._client is not None:
            client, self._client = self._client, None
            try:
                await client.stop()
            except Exception as e:
                logger.debug(f'Error while stopping CDP client: {type(e).__name__}: {e}')
