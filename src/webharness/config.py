"""Configuration system for webharness.

Environment variables are read through pydantic-settings (a local ``.env`` is
honoured) and exposed through the ``CONFIG`` singleton, which re-reads the
environment on every access so tests and callers can override values late.
"""

import logging
from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_TAB_RETRY_SECONDS = 5.0
DEFAULT_IDLE_TIMEOUT_SECONDS = 60.0
DEFAULT_DEBUG_PORT_RANGE = (33000, 43000)


def parse_seconds(env_var: str, env_value: str | None, default: float) -> float:
    """Parse a positive float, falling back to default on bad input."""
    if env_value:
        try:
            parsed = float(env_value)
            if parsed > 0:
                return parsed
        except (ValueError, TypeError):
            pass
        logger.warning(f'Ignoring invalid value for {env_var}: {env_value!r}')
    return default


def _parse_port_range(value: str | None) -> tuple[int, int]:
    """Parse a ``low-high`` port range; invalid ranges fall back to the default."""
    if not value:
        return DEFAULT_DEBUG_PORT_RANGE
    try:
        low_str, high_str = value.split('-', 1)
        low, high = int(low_str), int(high_str)
    except ValueError:
        logger.warning(f'Ignoring invalid debug port range: {value!r}')
        return DEFAULT_DEBUG_PORT_RANGE
    if not (1024 <= low < high <= 65535):
        logger.warning(f'Ignoring out of bounds debug port range: {value!r}')
        return DEFAULT_DEBUG_PORT_RANGE
    return low, high


class EnvConfig(BaseSettings):
    """Environment variable configuration using pydantic-settings.

    Values are kept as raw strings; ``Config`` parses them so that a bad
    value degrades to the default instead of failing the run.
    """

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=True,
        extra='ignore',
    )

    WEBHARNESS_LOGGING_LEVEL: str = Field(default='info')
    CHROME_ARGS: str | None = Field(default=None)
    WEBHARNESS_SDK_ROOT: str | None = Field(default=None)
    WEBHARNESS_TAB_RETRY_SECONDS: str | None = Field(default=None)
    WEBHARNESS_IDLE_TIMEOUT_SECONDS: str | None = Field(default=None)
    WEBHARNESS_DEBUG_PORT_RANGE: str | None = Field(default=None)


class Config:
    """Configuration that re-reads environment variables on every access."""

    _instance: 'Config | None' = None

    def __new__(cls) -> 'Config':
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @property
    def env(self) -> EnvConfig:
        return EnvConfig()

    @property
    def LOGGING_LEVEL(self) -> str:
        return self.env.WEBHARNESS_LOGGING_LEVEL.lower()

    @property
    def CHROME_ARGS(self) -> list[str]:
        """Extra browser launch arguments, space separated."""
        raw = self.env.CHROME_ARGS
        if not raw:
            return []
        return raw.split()

    @property
    def SDK_ROOT(self) -> Path | None:
        raw = self.env.WEBHARNESS_SDK_ROOT
        if not raw:
            return None
        return Path(raw).expanduser().resolve()

    @property
    def TAB_RETRY_SECONDS(self) -> float:
        return parse_seconds(
            'WEBHARNESS_TAB_RETRY_SECONDS', self.env.WEBHARNESS_TAB_RETRY_SECONDS, DEFAULT_TAB_RETRY_SECONDS
        )

    @property
    def IDLE_TIMEOUT_SECONDS(self) -> float:
        return parse_seconds(
            'WEBHARNESS_IDLE_TIMEOUT_SECONDS', self.env.WEBHARNESS_IDLE_TIMEOUT_SECONDS, DEFAULT_IDLE_TIMEOUT_SECONDS
        )

    @property
    def DEBUG_PORT_RANGE(self) -> tuple[int, int]:
        return _parse_port_range(self.env.WEBHARNESS_DEBUG_PORT_RANGE)


CONFIG = Config()


class RunnerSettings(BaseModel):
    """Tunable parameters of a single test run."""

    tab_retry_seconds: float = Field(default=DEFAULT_TAB_RETRY_SECONDS, gt=0)
    tab_poll_interval: float = Field(default=0.25, gt=0)
    idle_timeout_seconds: float = Field(default=DEFAULT_IDLE_TIMEOUT_SECONDS, gt=0)
    debug_port_range: tuple[int, int] = Field(default=DEFAULT_DEBUG_PORT_RANGE)
    extra_browser_args: list[str] = Field(default_factory=list)
    verbose_browser_logging: bool = False
    host: str = '127.0.0.1'

    @classmethod
    def from_env(cls, **overrides) -> 'RunnerSettings':
        """Build settings from the environment, with explicit overrides applied last."""
        values = {
            'tab_retry_seconds': CONFIG.TAB_RETRY_SECONDS,
            'idle_timeout_seconds': CONFIG.IDLE_TIMEOUT_SECONDS,
            'debug_port_range': CONFIG.DEBUG_PORT_RANGE,
            'extra_browser_args': CONFIG.CHROME_ARGS,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
