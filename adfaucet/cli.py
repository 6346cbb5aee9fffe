from typing import Optional

import typer
import uvicorn
from rich.console import Console

from adfaucet.config.settings import load_settings
from adfaucet.tools.vanity import run_vanity, validate_pattern
from adfaucet.utils.errors import ConfigError
from adfaucet.utils.log import configure_logging

app = typer.Typer(no_args_is_help=True, help="Ad faucet backend.")

_console = Console()


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="Bind address"),
    port: int = typer.Option(8000, help="Bind port"),
    reload: bool = typer.Option(False, help="Reload on code changes"),
) -> None:
    """Run the HTTP API. Refuses to start with an invalid configuration."""
    try:
        settings = load_settings()
    except ConfigError as e:
        _console.print(f"[red]❌ {e.message}[/red]: {e.details}")
        raise typer.Exit(code=1)

    configure_logging(settings.log_level)
    _console.print(f"🚀 Serving on {host}:{port} (funding address {settings.funding_address})")
    uvicorn.run("adfaucet.main:app", host=host, port=port, reload=reload, log_level=settings.log_level.lower())


@app.command()
def vanity(
    prefix: str = typer.Option("0xE7C3", help="Leading characters of the address, including 0x"),
    suffix: str = typer.Option("3c29", help="Trailing characters of the address"),
    workers: int = typer.Option(4, min=1, help="Worker processes"),
    ignore_case: bool = typer.Option(False, "--ignore-case", help="Match regardless of checksum casing"),
    max_attempts: Optional[int] = typer.Option(None, min=1, help="Give up after this many keys"),
) -> None:
    """Mine a private key whose address has the given prefix and suffix."""
    try:
        validate_pattern(prefix, suffix)
    except ValueError as e:
        raise typer.BadParameter(str(e))

    result = run_vanity(
        prefix,
        suffix,
        workers=workers,
        case_sensitive=not ignore_case,
        max_attempts=max_attempts,
        console=_console,
    )
    if result is None:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
