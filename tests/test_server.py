"""Tests for the static file server."""

import socket

import httpx
import pytest

from webharness.exceptions import ServerStartFailed
from webharness.server import StaticServer


@pytest.fixture
def site(tmp_path):
    (tmp_path / "index.html").write_text("<html><body>harness</body></html>")
    return tmp_path


class TestStaticServer:
    def test_serves_directory_on_ephemeral_port(self, site):
        server = StaticServer.start(site)
        try:
            assert server.running
            assert server.port > 0
            assert server.url_base == f"http://127.0.0.1:{server.port}"

            response = httpx.get(f"{server.url_base}/index.html", trust_env=False)
            assert response.status_code == 200
            assert "harness" in response.text
        finally:
            server.stop()

    def test_stop_releases_port_and_is_idempotent(self, site):
        server = StaticServer.start(site)
        port = server.port
        server.stop()
        server.stop()

        assert not server.running
        assert server.port == port
        with socket.create_server(("127.0.0.1", port)):
            pass

    def test_missing_directory(self, tmp_path):
        with pytest.raises(ServerStartFailed, match="does not exist"):
            StaticServer.start(tmp_path / "missing")

    def test_port_in_use(self, site):
        with socket.create_server(("127.0.0.1", 0)) as busy:
            port = busy.getsockname()[1]
            with pytest.raises(ServerStartFailed):
                StaticServer.start(site, port=port)

    def test_missing_file_is_404(self, site):
        server = StaticServer.start(site)
        try:
            assert httpx.get(f"{server.url_base}/nope.html", trust_env=False).status_code == 404
        finally:
            server.stop()
