"""CLI module for webharness."""

import asyncio
import logging
import sys
from typing import Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from webharness import __version__
from webharness.browser.events import ConsoleMessageEvent
from webharness.browser.installation import BrowserInstallation, BrowserResolver, BrowserVariant
from webharness.browser.process import BrowserProcess, file_url
from webharness.config import CONFIG, RunnerSettings
from webharness.exceptions import BrowserNotFound, WebHarnessError
from webharness.logging_config import setup_logging
from webharness.runner.service import TestRun
from webharness.runner.views import RunOutcome, TestRunResult

console = Console()

EXIT_CODES = {
    RunOutcome.PASSED: 0,
    RunOutcome.FAILED: 1,
    RunOutcome.TIMED_OUT: 2,
    RunOutcome.ERRORED: 3,
}

# Conventional shell status for a run stopped by SIGINT
INTERRUPTED_EXIT_CODE = 130

VARIANT_CHOICES = [variant.value for variant in BrowserVariant]


def default_prefer_embedded(directory: str) -> bool:
    """Prefer the embedded runtime browser unless serving a build output directory."""
    return not str(directory).startswith('build')


def _explicit_installation(resolver: BrowserResolver, browser: Optional[str]) -> Optional[BrowserInstallation]:
    if browser is None:
        return None
    return resolver.resolve(BrowserVariant(browser))


@click.group()
@click.version_option(version=__version__, prog_name="webharness")
def cli():
    """webharness - run browser test pages and report the verdict."""
    pass


@cli.command()
@click.argument("directory", default="test")
@click.option("--html-file", default="index.html", help="Harness page inside DIRECTORY")
@click.option("--browser", "-b", type=click.Choice(VARIANT_CHOICES), default=None, help="Browser variant to use")
@click.option(
    "--prefer-embedded/--no-prefer-embedded",
    default=None,
    help="Try the embedded runtime browser first (default: unless DIRECTORY starts with 'build')",
)
@click.option("--idle-timeout", type=float, default=None, help="Seconds without console output before giving up")
@click.option("--tab-retry", type=float, default=None, help="Seconds to wait for the harness tab to appear")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging, including browser output")
def run(
    directory: str,
    html_file: str,
    browser: Optional[str],
    prefer_embedded: Optional[bool],
    idle_timeout: Optional[float],
    tab_retry: Optional[float],
    verbose: bool,
):
    """Serve DIRECTORY, open HTML_FILE in a browser and wait for the tests to finish.

    Exit status is 0 when the tests pass, 1 when they fail, 2 when the
    console goes idle and 3 on any setup or connection error.

    Example:
        >>> webharness run build/web --html-file index.html --browser stable
    """
    setup_logging("debug" if verbose else None)
    if not verbose:
        # Console lines are printed below
        logging.getLogger("webharness.console").setLevel(logging.WARNING)

    if prefer_embedded is None:
        prefer_embedded = default_prefer_embedded(directory)

    settings = RunnerSettings.from_env(
        idle_timeout_seconds=idle_timeout,
        tab_retry_seconds=tab_retry,
        verbose_browser_logging=verbose,
    )
    resolver = BrowserResolver()

    console.print(Panel.fit(
        f"[bold blue]webharness[/bold blue]\n"
        f"Directory: {escape(directory)}\n"
        f"Page: {escape(html_file)}\n"
        f"Browser: {browser or ('embedded first' if prefer_embedded else 'best available')}\n"
        f"Idle timeout: {settings.idle_timeout_seconds:g}s",
        title="Starting Test Run",
    ))

    async def execute() -> TestRunResult:
        test_run = TestRun(
            directory,
            html_file=html_file,
            installation=_explicit_installation(resolver, browser),
            prefer_embedded_runtime=prefer_embedded,
            settings=settings,
            resolver=resolver,
        )
        test_run.event_bus.on(ConsoleMessageEvent, _print_console_line)
        return await test_run.run()

    try:
        result = asyncio.run(execute())
    except (KeyboardInterrupt, asyncio.CancelledError):
        console.print("\n[yellow]Interrupted, browser and server were shut down[/yellow]")
        sys.exit(INTERRUPTED_EXIT_CODE)
    _print_result(result)
    sys.exit(EXIT_CODES[result.outcome])


def _print_console_line(event: ConsoleMessageEvent) -> None:
    console.print(f"[dim]console>[/dim] {escape(event.text)}")


def _print_result(result: TestRunResult) -> None:
    console.print()
    summary = f"Console lines: {len(result.console_lines)}\nDuration: {result.duration_seconds:.1f}s"
    if result.outcome is RunOutcome.PASSED:
        console.print(Panel.fit(f"[green]{result.message}[/green]\n\n{summary}", title="Results"))
    elif result.outcome is RunOutcome.ERRORED:
        stage = f" during {result.error_stage}" if result.error_stage else ""
        console.print(Panel.fit(f"[red]Error{stage}: {escape(result.message)}[/red]\n\n{summary}", title="Results"))
    else:
        console.print(Panel.fit(f"[yellow]{result.message}[/yellow]\n\n{summary}", title="Results"))


@cli.command()
def browsers():
    """List every browser variant with its resolved path.

    Missing installations are shown with the first location that was
    checked, so the expected install path is visible.
    """
    resolver = BrowserResolver()
    table = Table(title="Browsers")
    table.add_column("Variant", style="bold")
    table.add_column("Path")
    table.add_column("Found")

    for installation in resolver.resolve_all():
        found = "[green]yes[/green]" if installation.exists else "[yellow]no[/yellow]"
        table.add_row(installation.variant.value, escape(str(installation.executable_path or "-")), found)

    console.print(table)


@cli.command(name="open")
@click.argument("target")
@click.option("--browser", "-b", type=click.Choice(VARIANT_CHOICES), default=None, help="Browser variant to use")
def open_target(target: str, browser: Optional[str]):
    """Open TARGET (a local file or URL) in a browser with a throwaway profile.

    Waits until the browser window is closed.
    """
    setup_logging()
    resolver = BrowserResolver()

    installation = _explicit_installation(resolver, browser) or resolver.resolve_best()
    if installation is None or not installation.exists:
        console.print(f"[red]Error: {escape(str(BrowserNotFound()))}[/red]")
        sys.exit(EXIT_CODES[RunOutcome.ERRORED])

    url = file_url(target)
    console.print(f"[blue]Opening {escape(url)} in {installation}[/blue]")

    async def execute() -> Optional[int]:
        process = await BrowserProcess.launch(installation, url, extra_args=CONFIG.CHROME_ARGS)
        try:
            return await process.wait()
        finally:
            await process.close()

    try:
        exit_code = asyncio.run(execute())
    except (KeyboardInterrupt, asyncio.CancelledError):
        console.print("\n[yellow]Interrupted[/yellow]")
        sys.exit(INTERRUPTED_EXIT_CODE)
    except WebHarnessError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        sys.exit(EXIT_CODES[RunOutcome.ERRORED])

    console.print(f"Browser exited with code {exit_code}")


def main():
    """Main entry point for CLI.

    The CLI provides the following commands:
        - run: Run a browser test directory and report the verdict
        - browsers: Show which browsers can be found
        - open: Open a file or URL in an isolated browser profile
    """
    cli()


if __name__ == "__main__":
    main()
