"""Browser installation discovery.

Resolves Chromium-family browsers from their canonical per-OS install
locations. Each variant maps to a plain path function; the resolver only
probes the filesystem and never raises for a missing browser.

Classes:
    BrowserVariant: The browser flavours that can be resolved.
    BrowserInstallation: A resolved (possibly missing) browser executable.
    BrowserResolver: Probes the filesystem for installations.
"""

import logging
import shutil
import sys
from collections.abc import Callable
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from webharness.config import CONFIG

logger = logging.getLogger(__name__)


class BrowserVariant(str, Enum):
    STABLE = 'stable'
    DEV = 'dev'
    CHROMIUM = 'chromium'
    EMBEDDED_RUNTIME = 'embedded'
    HEADLESS_SHELL = 'headless-shell'


# Order used by resolve_best() when no variant is preferred
BEST_AVAILABLE_ORDER = (BrowserVariant.STABLE, BrowserVariant.DEV, BrowserVariant.CHROMIUM)

# Name of the embedded runtime browser when installed on the search path
EMBEDDED_BROWSER_EXECUTABLE = 'Dartium'


class BrowserInstallation(BaseModel):
    """A browser executable as seen on this host at resolution time."""

    model_config = ConfigDict(frozen=True)

    variant: BrowserVariant
    executable_path: Path | None = None
    exists: bool = False

    def __str__(self) -> str:
        return f'{self.variant.value} ({self.executable_path or "no path"})'


def current_platform() -> str:
    """Normalise sys.platform to one of 'linux', 'macos' or 'windows'."""
    if sys.platform.startswith('darwin'):
        return 'macos'
    if sys.platform.startswith(('win32', 'cygwin')):
        return 'windows'
    return 'linux'


def _stable_paths(platform: str, sdk_root: Path | None) -> list[Path]:
    if platform == 'linux':
        return [Path('/usr/bin/google-chrome')]
    if platform == 'macos':
        return [Path('/Applications/Google Chrome.app/Contents/MacOS/Google Chrome')]
    return [
        Path(r'C:\Program Files (x86)\Google\Chrome\Application\chrome.exe'),
        Path(r'C:\Program Files\Google\Chrome\Application\chrome.exe'),
    ]


def _dev_paths(platform: str, sdk_root: Path | None) -> list[Path]:
    if platform == 'linux':
        return [Path('/usr/bin/google-chrome-unstable')]
    if platform == 'macos':
        return [Path('/Applications/Google Chrome Canary.app/Contents/MacOS/Google Chrome Canary')]
    return []


def _chromium_paths(platform: str, sdk_root: Path | None) -> list[Path]:
    if platform == 'linux':
        return [Path('/usr/bin/chromium-browser')]
    if platform == 'macos':
        return [Path('/Applications/Chromium.app/Contents/MacOS/Chromium')]
    return []


_EMBEDDED_RELATIVE = {
    'linux': 'chrome',
    'macos': 'Chromium.app/Contents/MacOS/Chromium',
    'windows': 'chrome.exe',
}

_HEADLESS_SHELL_RELATIVE = {
    'linux': 'content_shell/content_shell',
    'macos': 'content_shell/Content Shell.app/Contents/MacOS/Content Shell',
    'windows': 'content_shell/content_shell.exe',
}


def _embedded_paths(platform: str, sdk_root: Path | None) -> list[Path]:
    if sdk_root is None:
        return []
    return [sdk_root.parent / 'chromium' / _EMBEDDED_RELATIVE[platform]]


def _headless_shell_paths(platform: str, sdk_root: Path | None) -> list[Path]:
    if sdk_root is None:
        return []
    return [sdk_root.parent / 'chromium' / _HEADLESS_SHELL_RELATIVE[platform]]


VARIANT_PATHS: dict[BrowserVariant, Callable[[str, Path | None], list[Path]]] = {
    BrowserVariant.STABLE: _stable_paths,
    BrowserVariant.DEV: _dev_paths,
    BrowserVariant.CHROMIUM: _chromium_paths,
    BrowserVariant.EMBEDDED_RUNTIME: _embedded_paths,
    BrowserVariant.HEADLESS_SHELL: _headless_shell_paths,
}


class BrowserResolver:
    """Resolves browser installations for one process.

    Filesystem and search path probes are injectable so resolution can be
    exercised against a fake filesystem. The runtime executable lookup on
    the search path is memoised per resolver instance.

    Example:
        >>> resolver = BrowserResolver()
        >>> installation = resolver.resolve_best()
        >>> if installation is None:
        ...     print('no browser')
    """

    def __init__(
        self,
        platform: str | None = None,
        sdk_root: Path | None = None,
        is_file: Callable[[Path], bool] | None = None,
        which: Callable[[str], str | None] | None = None,
        runtime_executable: str = 'dart',
    ):
        self.platform = platform or current_platform()
        self._sdk_root = sdk_root if sdk_root is not None else CONFIG.SDK_ROOT
        self._is_file = is_file or (lambda path: path.is_file())
        self._which = which or shutil.which
        self.runtime_executable = runtime_executable
        self._runtime_path: Path | None = None
        self._runtime_looked_up = False

    @property
    def runtime_on_path(self) -> Path | None:
        """Location of the runtime executable on the search path, looked up once."""
        if not self._runtime_looked_up:
            found = self._which(self.runtime_executable)
            self._runtime_path = Path(found) if found else None
            self._runtime_looked_up = True
        return self._runtime_path

    @property
    def sdk_root(self) -> Path | None:
        """SDK directory used to locate bundled browsers.

        An explicit ``sdk_root`` or ``WEBHARNESS_SDK_ROOT`` wins; otherwise it
        is derived from the runtime executable found on the search path
        (``<sdk>/bin/<runtime>``).
        """
        if self._sdk_root is not None:
            return self._sdk_root
        runtime = self.runtime_on_path
        if runtime is None:
            return None
        return runtime.resolve().parent.parent

    def candidate_paths(self, variant: BrowserVariant) -> list[Path]:
        paths = VARIANT_PATHS[variant](self.platform, self.sdk_root)
        if variant is BrowserVariant.EMBEDDED_RUNTIME:
            on_path = self._which(EMBEDDED_BROWSER_EXECUTABLE)
            if on_path:
                paths.append(Path(on_path))
        return paths

    def resolve(self, variant: BrowserVariant) -> BrowserInstallation:
        """Resolve a single variant. The result may have ``exists=False``."""
        candidates = self.candidate_paths(variant)
        for path in candidates:
            if self._is_file(path):
                logger.debug(f'Resolved {variant.value} browser at {path}')
                return BrowserInstallation(variant=variant, executable_path=path, exists=True)
        return BrowserInstallation(
            variant=variant,
            executable_path=candidates[0] if candidates else None,
            exists=False,
        )

    def resolve_best(self, prefer_embedded_runtime: bool = False) -> BrowserInstallation | None:
        """Return the first existing installation in priority order, or None."""
        order: list[BrowserVariant] = []
        if prefer_embedded_runtime:
            order.append(BrowserVariant.EMBEDDED_RUNTIME)
        order.extend(BEST_AVAILABLE_ORDER)
        if not prefer_embedded_runtime:
            order.append(BrowserVariant.EMBEDDED_RUNTIME)

        for variant in order:
            installation = self.resolve(variant)
            if installation.exists:
                return installation

        logger.debug(f'No browser installation found (checked {", ".join(v.value for v in order)})')
        return None

    def resolve_all(self) -> list[BrowserInstallation]:
        return [self.resolve(variant) for variant in BrowserVariant]
