"""browserguard CLI - Main entry point for command-line interface."""

import asyncio
import json
import sys
from typing import Any, Optional

import click
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from browserguard import __version__
from browserguard.core.config import get_settings
from browserguard.core.errors import BrowserNotFoundError, InvalidArgumentsError, NoPortAvailableError
from browserguard.core.logging import setup_logging
from browserguard.models.tools import ToolResponse

console = Console()
err_console = Console(stderr=True)


@click.group()
@click.version_option(version=__version__, prog_name="browserguard")
def cli():
    """
    browserguard - Resilient browser automation for AI agents

    Drives one browser session behind circuit breakers, workflow checks,
    token budgets and self-healing selectors.
    """
    setup_logging()


@cli.command()
@click.argument("url")
@click.option("--mode", "-m", type=click.Choice(["full", "main", "summary", "selector"]), default="main", help="Extraction mode")
@click.option("--selector", "-s", help="CSS selector (selector mode only)")
@click.option("--budget", "-b", type=int, help="Token budget for the response")
@click.option("--html", "as_html", is_flag=True, help="Return HTML instead of text")
@click.option("--headed", is_flag=True, help="Show the browser window")
@click.option("--output", "-o", type=click.Choice(["text", "json"]), default="text", help="Output format")
def fetch(url: str, mode: str, selector: Optional[str], budget: Optional[int], as_html: bool, headed: bool, output: str):
    """
    Open URL and print its content within a token budget.

    URL: The page to fetch

    Examples:

        # Main content as text
        browserguard fetch https://example.com

        # One element, as JSON
        browserguard fetch https://example.com -m selector -s "#price" -o json
    """
    arguments: dict[str, Any] = {"mode": mode, "content_type": "html" if as_html else "text"}
    if selector:
        arguments["selector"] = selector
    if budget:
        arguments["token_budget"] = budget

    responses = asyncio.run(_fetch(url, arguments, headless=not headed))
    failed = next((r for r in responses if not r.ok), None)

    if output == "json":
        console.print_json(data=[r.model_dump(mode="json") for r in responses])
    elif failed is None:
        _display_content(responses[-1].data or {})

    if failed is not None:
        if output != "json":
            _display_error(failed)
        raise click.Abort()


async def _fetch(url: str, content_arguments: dict[str, Any], headless: bool) -> list[ToolResponse]:
    from browserguard.tools import ToolDispatcher

    dispatcher = ToolDispatcher()
    responses: list[ToolResponse] = []
    try:
        for operation, arguments in (
            ("browser_init", {"headless": headless}),
            ("navigate", {"url": url}),
            ("get_content", content_arguments),
        ):
            response = await dispatcher.dispatch(operation, arguments)
            responses.append(response)
            if not response.ok:
                break
    finally:
        await dispatcher.dispatch("browser_close")
    return responses


@cli.command()
@click.option("--headed", is_flag=True, help="Show the browser window")
def session(headed: bool):
    """
    Serve tool calls as JSON lines on stdin/stdout.

    Each input line is {"operation": ..., "arguments": {...}}; each output
    line is the ToolResponse. The browser is closed at end of input.

    Examples:

        echo '{"operation": "browser_init"}' | browserguard session
    """
    asyncio.run(_serve(headless=not headed))


async def _serve(headless: bool) -> None:
    from browserguard.tools import ToolDispatcher

    dispatcher = ToolDispatcher()
    stdin = click.get_text_stream("stdin")
    try:
        while True:
            line = await asyncio.to_thread(stdin.readline)
            if not line:
                break
            if not line.strip():
                continue
            response = await _handle_line(dispatcher, line, headless)
            click.echo(response.model_dump_json())
    finally:
        await dispatcher.context.session.close()


async def _handle_line(dispatcher: Any, line: str, headless: bool) -> ToolResponse:
    try:
        request = json.loads(line)
        operation = request["operation"]
        arguments = request.get("arguments") or {}
        if not isinstance(arguments, dict):
            raise TypeError("arguments must be an object")
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        error = InvalidArgumentsError(
            f"Malformed request line: {e}",
            suggested_action='Send {"operation": "...", "arguments": {...}} per line.',
        )
        return ToolResponse.failure("unknown", error.to_payload())

    if operation == "browser_init":
        arguments.setdefault("headless", headless)
    return await dispatcher.dispatch(operation, arguments)


@cli.command()
def config():
    """
    Show current browserguard configuration.

    Values come from the environment and the .env file.
    """
    try:
        settings = get_settings()
    except Exception as e:
        console.print(f"[red]✗ Failed to load configuration:[/red] {str(e)}")
        raise click.Abort()

    table = Table(
        title="browserguard Configuration",
        box=box.DOUBLE,
        border_style="cyan",
        show_header=True,
        header_style="bold cyan"
    )
    table.add_column("Setting", style="cyan", width=36)
    table.add_column("Value", style="green")

    for name, value in settings.model_dump(mode="json").items():
        if name == "BROWSER_CDP_ENDPOINT" and value:
            value = _mask_url(value)
        table.add_row(name, str(value))

    console.print(table)


@cli.command()
def doctor():
    """
    Run diagnostic checks on the browserguard installation.

    Verifies Python, Playwright, the browser executable and a free debug port.
    """
    from browserguard.browser.locator import find_available_port, recommended_host, resolve_browser_executable

    console.print(Panel.fit(
        "[bold cyan]browserguard doctor[/bold cyan]\n\n"
        "[dim]Running diagnostic checks...[/dim]",
        border_style="cyan"
    ))

    checks = []

    python_ok = sys.version_info >= (3, 10)
    checks.append(("Python 3.10+", python_ok, f"Python {sys.version_info.major}.{sys.version_info.minor}"))

    try:
        import playwright  # noqa: F401
        playwright_ok = True
    except ImportError:
        playwright_ok = False
    checks.append(("Playwright", playwright_ok, "Installed" if playwright_ok else "Not found"))

    try:
        settings = get_settings()
        config_ok = True
    except Exception as e:
        settings = None
        config_ok = False
        checks.append(("Configuration", False, str(e)))
    if config_ok:
        checks.append(("Configuration", True, "Valid"))

    if settings is not None:
        if settings.BROWSER_CDP_ENDPOINT:
            checks.append(("Browser", True, f"CDP endpoint {_mask_url(settings.BROWSER_CDP_ENDPOINT)}"))
        else:
            try:
                executable = resolve_browser_executable(settings.BROWSER_PATH_ENV_VAR)
                checks.append(("Browser", True, executable))
            except BrowserNotFoundError:
                checks.append(("Browser", True, "Playwright bundled Chromium"))

        try:
            port = find_available_port(settings.DEBUG_PORT_START, span=settings.DEBUG_PORT_SPAN)
            checks.append(("Debug port", True, str(port)))
        except NoPortAvailableError as e:
            checks.append(("Debug port", False, e.message))

        checks.append(("Loopback host", True, recommended_host()))
        checks.append((
            "Thresholds",
            True,
            f"breaker {settings.CIRCUIT_FAILURE_THRESHOLD} failures / {settings.CIRCUIT_COOLDOWN_SECONDS:g}s, "
            f"budget {settings.DEFAULT_TOKEN_BUDGET} tokens, emergency {settings.EMERGENCY_TOKEN_LIMIT}",
        ))

    console.print()
    table = Table(box=box.ROUNDED, show_header=True, header_style="bold cyan")
    table.add_column("Check", style="cyan")
    table.add_column("Status", width=10)
    table.add_column("Details", style="dim")

    all_ok = True
    for name, ok, details in checks:
        table.add_row(name, _status_icon(ok), details)
        if not ok:
            all_ok = False

    console.print(table)
    console.print()

    if all_ok:
        console.print(Panel(
            "[bold green]All checks passed! browserguard is ready to use.[/bold green]",
            border_style="green"
        ))
    else:
        console.print(Panel(
            "[bold yellow]Some checks failed. Please review the configuration.[/bold yellow]\n\n"
            "Run [bold]browserguard config[/bold] for more details.",
            border_style="yellow"
        ))


def _display_content(data: dict[str, Any]):
    """Print extracted content followed by a metadata table."""
    console.print(data.get("content", ""), markup=False, highlight=False)
    console.print()

    table = Table(show_header=False, box=box.ROUNDED, border_style="cyan")
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Mode", str(data.get("mode")))
    table.add_row("Estimated tokens", f"{data.get('estimated_tokens')} / {data.get('total_estimated_tokens')}")
    table.add_row("Truncated", str(data.get("truncated")))

    chunk = data.get("chunk_info")
    if chunk:
        table.add_row("Chunk", f"{chunk['index'] + 1} of {chunk['total']}")
    if data.get("recommendation"):
        table.add_row("Recommendation", str(data["recommendation"]))
    err_console.print(table)


def _display_error(response: ToolResponse):
    """Print a failed tool response."""
    error = response.error
    if error is None:
        return
    body = f"[red]✗ {response.operation} failed:[/red] {error.message}"
    if error.suggested_action:
        body += f"\n\n[dim]{error.suggested_action}[/dim]"
    err_console.print(Panel(body, border_style="red", title=f"[bold]{error.kind}[/bold]"))


def _mask_url(url: str) -> str:
    """Hide credentials in a URL."""
    if "@" not in url or "://" not in url:
        return url
    scheme, rest = url.split("://", 1)
    return f"{scheme}://***@{rest.split('@', 1)[1]}"


def _status_icon(ok: bool) -> str:
    """Return a status icon."""
    return "[green]✓[/green]" if ok else "[red]✗[/red]"


if __name__ == "__main__":
    cli()
