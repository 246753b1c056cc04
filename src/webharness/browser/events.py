"""Event definitions published on a test run's event bus."""

import os
from datetime import datetime
from typing import Literal

from bubus import BaseEvent
from pydantic import Field

from webharness.config import parse_seconds

DEFAULT_EVENT_TIMEOUT = 10.0


def _event_timeout(event_name: str) -> float:
    """Handler timeout for an event, overridable with ``TIMEOUT_<EventName>``."""
    env_var = f'TIMEOUT_{event_name}'
    return parse_seconds(env_var, os.getenv(env_var), DEFAULT_EVENT_TIMEOUT)


OutcomeName = Literal['passed', 'failed', 'timed_out', 'errored']


# ============================================================================
# Test Run Lifecycle Events
# ============================================================================


class TestRunStateChangedEvent(BaseEvent[None]):
    """The orchestrator moved to a new state."""

    __test__ = False

    state: str
    previous: str | None = None

    event_timeout: float | None = _event_timeout('TestRunStateChangedEvent')


class TestRunFinishedEvent(BaseEvent[None]):
    """A terminal verdict was reached."""

    __test__ = False

    outcome: OutcomeName
    message: str | None = None

    event_timeout: float | None = _event_timeout('TestRunFinishedEvent')


class TestRunErrorEvent(BaseEvent[None]):
    """A stage of the run failed."""

    __test__ = False

    error_type: str
    message: str
    stage: str | None = None

    event_timeout: float | None = _event_timeout('TestRunErrorEvent')


# ============================================================================
# Browser Events
# ============================================================================


class BrowserLaunchedEvent(BaseEvent[None]):
    """The browser process was spawned."""

    pid: int
    executable_path: str
    debug_port: int | None = None
    profile_dir: str
    url: str

    event_timeout: float | None = _event_timeout('BrowserLaunchedEvent')


class TabFoundEvent(BaseEvent[None]):
    """The harness tab showed up on the DevTools endpoint."""

    tab_id: str
    url: str
    web_socket_debugger_url: str

    event_timeout: float | None = _event_timeout('TabFoundEvent')


class ConsoleMessageEvent(BaseEvent[None]):
    """A console line was received from the harness tab."""

    text: str
    received_at: datetime = Field(default_factory=datetime.now)

    event_timeout: float | None = _event_timeout('ConsoleMessageEvent')
