"""
Main Typer application for threadkeeper CLI.

The root command only configures logging; work happens in sub-apps.
"""

import logging
from typing import Annotated

import typer

from threadkeeper import __version__
from threadkeeper.cli.commands import memory
from threadkeeper.cli.output import print_info
from threadkeeper.config import ConfigurationError, get_config
from threadkeeper.config.schema import LoggingConfig

app = typer.Typer(
    name="threadkeeper",
    help="Session memory for conversational agents.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_enable=True,
    pretty_exceptions_show_locals=False,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        print_info(f"threadkeeper version [green]{__version__}[/green]")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Log debug output to stderr.",
        ),
    ] = False,
) -> None:
    """
    [bold blue]threadkeeper[/bold blue] - session memory for agents

    Inspect session event logs, active sessions and context pressure.
    """
    try:
        logging_config = get_config().logging
    except ConfigurationError:
        # Reported by the command that needs the config
        logging_config = LoggingConfig()

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging_config.level,
        format=logging_config.format,
    )


# Sub-apps
app.add_typer(memory.app, name="memory")


if __name__ == "__main__":
    app()
