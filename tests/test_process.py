"""Tests for browser process management.

A small shell script stands in for the browser executable so launch,
output forwarding, exit tracking and cleanup run against a real process.
"""

import logging
import os
import stat
from pathlib import Path

import pytest

from webharness.browser.installation import BrowserInstallation, BrowserVariant
from webharness.browser.process import PROFILE_DIR_PREFIX, BrowserProcess, build_launch_args, file_url
from webharness.exceptions import LaunchFailed

posix_only = pytest.mark.skipif(os.name == "nt", reason="uses a POSIX shell script as the browser")


def make_browser(tmp_path: Path, body: str) -> BrowserInstallation:
    script = tmp_path / "fake-chrome"
    script.write_text(f"#!/bin/sh\n{body}\n")
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return BrowserInstallation(variant=BrowserVariant.STABLE, executable_path=script, exists=True)


class TestBuildLaunchArgs:
    def test_fixed_arguments_in_order(self, tmp_path):
        args = build_launch_args(tmp_path, "http://127.0.0.1:51000/index.html", debug_port=33417)
        assert args == [
            "--no-default-browser-check",
            "--no-first-run",
            f"--user-data-dir={tmp_path}",
            "--remote-debugging-port=33417",
            "http://127.0.0.1:51000/index.html",
        ]

    def test_without_debug_port(self, tmp_path):
        args = build_launch_args(tmp_path, "https://example.com")
        assert not any(a.startswith("--remote-debugging-port") for a in args)
        assert args[-1] == "https://example.com"

    def test_extra_args_follow_fixed_set(self, tmp_path):
        args = build_launch_args(tmp_path, "about:blank", 33000, extra_args=["--headless", "", "--disable-gpu"])
        assert args[-3:] == ["--headless", "--disable-gpu", "about:blank"]

    def test_verbose_logging_flags_precede_debug_port(self, tmp_path):
        args = build_launch_args(tmp_path, "about:blank", debug_port=33000, verbose=True)
        assert args[3:6] == ["--enable-logging=stderr", "--v=1", "--remote-debugging-port=33000"]


class TestFileUrl:
    def test_existing_file_becomes_file_url(self, tmp_path):
        page = tmp_path / "index.html"
        page.write_text("<html></html>")
        assert file_url(page) == page.resolve().as_uri()
        assert file_url(page).startswith("file://")

    def test_url_passes_through(self):
        assert file_url("https://example.com/test.html") == "https://example.com/test.html"


@posix_only
class TestBrowserProcess:
    @pytest.mark.asyncio
    async def test_launch_and_close(self, tmp_path, caplog):
        caplog.set_level(logging.INFO, logger="webharness.browser.output")
        installation = make_browser(tmp_path, 'echo "launched $*"\nexec sleep 30')

        browser = await BrowserProcess.launch(installation, "http://127.0.0.1:51000/index.html", debug_port=33417)
        try:
            assert browser.running
            assert browser.pid > 0
            assert browser.profile_dir.is_dir()
            assert browser.profile_dir.name.startswith(PROFILE_DIR_PREFIX)
            assert browser.debug_port == 33417
        finally:
            await browser.close()

        assert not browser.running
        assert browser.exit_code is not None
        assert not browser.profile_dir.exists()
        output = " ".join(r.getMessage() for r in caplog.records if r.name == "webharness.browser.output")
        assert "--remote-debugging-port=33417" in output
        assert f"--user-data-dir={browser.profile_dir}" in output

    @pytest.mark.asyncio
    async def test_exit_code_is_recorded(self, tmp_path):
        installation = make_browser(tmp_path, "exit 3")
        browser = await BrowserProcess.launch(installation, "about:blank")
        try:
            assert await browser.wait(timeout=5) == 3
            assert not browser.running
        finally:
            await browser.close()

    @pytest.mark.asyncio
    async def test_wait_times_out_while_running(self, tmp_path):
        installation = make_browser(tmp_path, "exec sleep 30")
        browser = await BrowserProcess.launch(installation, "about:blank")
        try:
            assert await browser.wait(timeout=0.05) is None
        finally:
            await browser.close()

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, tmp_path):
        installation = make_browser(tmp_path, "exec sleep 30")
        browser = await BrowserProcess.launch(installation, "about:blank")
        await browser.close()
        await browser.close()
        browser.kill()
        assert not browser.profile_dir.exists()

    @pytest.mark.asyncio
    async def test_environment_overlay(self, tmp_path, caplog):
        caplog.set_level(logging.INFO, logger="webharness.browser.output")
        installation = make_browser(tmp_path, 'echo "flag=$WEBHARNESS_TEST_FLAG"')
        browser = await BrowserProcess.launch(installation, "about:blank", env={"WEBHARNESS_TEST_FLAG": "on"})
        await browser.wait(timeout=5)
        await browser.close()
        assert any("flag=on" in r.getMessage() for r in caplog.records)


class TestLaunchFailures:
    @pytest.mark.asyncio
    async def test_missing_executable(self, tmp_path, monkeypatch):
        profile_dir = tmp_path / "profile"
        monkeypatch.setattr(
            "webharness.browser.process.tempfile.mkdtemp",
            lambda prefix: str(profile_dir.mkdir() or profile_dir),
        )
        installation = BrowserInstallation(
            variant=BrowserVariant.STABLE, executable_path=tmp_path / "does-not-exist", exists=True
        )

        with pytest.raises(LaunchFailed):
            await BrowserProcess.launch(installation, "about:blank")
        assert not profile_dir.exists()

    @pytest.mark.asyncio
    async def test_installation_without_path(self):
        installation = BrowserInstallation(variant=BrowserVariant.DEV, executable_path=None, exists=False)
        with pytest.raises(LaunchFailed, match="dev"):
            await BrowserProcess.launch(installation, "about:blank")
