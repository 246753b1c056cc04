"""Static file server for the test harness page."""

import logging
import threading
from functools import partial
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

from webharness.exceptions import ServerStartFailed

logger = logging.getLogger(__name__)


class _QuietRequestHandler(SimpleHTTPRequestHandler):
    """Routes request logging through the module logger instead of stderr."""

    def log_message(self, format: str, *args) -> None:
        logger.debug(f'{self.address_string()} - {format % args}')


class StaticServer:
    """Serves a directory over HTTP from a background thread.

    Example:
        >>> server = StaticServer.start('test')
        >>> server.url_base
        'http://127.0.0.1:51000'
        >>> server.stop()
    """

    def __init__(self, directory: str | Path, host: str = '127.0.0.1', port: int = 0):
        self.path = Path(directory).resolve()
        self.host = host
        self._requested_port = port
        self._bound_port: int | None = None
        self._httpd: ThreadingHTTPServer | None = None
        self._thread: threading.Thread | None = None

    @classmethod
    def start(cls, directory: str | Path, port: int = 0, host: str = '127.0.0.1') -> 'StaticServer':
        """Bind and start serving ``directory``; port 0 lets the OS pick.

        Raises:
            ServerStartFailed: The directory is missing or the port cannot be bound.
        """
        server = cls(directory, host=host, port=port)
        server.serve()
        return server

    def serve(self) -> None:
        if not self.path.is_dir():
            raise ServerStartFailed(f'Directory to serve does not exist: {self.path}')

        handler = partial(_QuietRequestHandler, directory=str(self.path))
        try:
            httpd = ThreadingHTTPServer((self.host, self._requested_port), handler)
        except OSError as e:
            raise ServerStartFailed(f'Could not bind {self.host}:{self._requested_port}: {e}') from e
        httpd.daemon_threads = True

        self._httpd = httpd
        self._bound_port = httpd.server_address[1]
        self._thread = threading.Thread(target=httpd.serve_forever, name=f'static-server-{self.port}', daemon=True)
        self._thread.start()
        logger.info(f"Serving '{self.path}' on {self.url_base}")

    @property
    def port(self) -> int:
        if self._bound_port is None:
            return self._requested_port
        return self._bound_port

    @property
    def url_base(self) -> str:
        return f'http://{self.host}:{self.port}'

    @property
    def running(self) -> bool:
        return self._httpd is not None

    def stop(self) -> None:
        """Stop serving and release the socket. Idempotent."""
        httpd, self._httpd = self._httpd, None
        if httpd is None:
            return
        httpd.shutdown()
        httpd.server_close()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None
        logger.debug(f"Stopped serving '{self.path}'")
