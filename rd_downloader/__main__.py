"""
Command-line entry point for rd-downloader.

Maps the application's exception families onto exit codes and rendered
error panels, so `cli.app` can simply let them propagate.
"""

import asyncio
import logging
import os
import sys

import typer
from rich.console import Console

from rd_downloader.cli.app import app
from rd_downloader.cli.formatters import format_error_with_suggestions
from rd_downloader.exceptions import (
    ConfigurationError,
    InvalidJobStateError,
    JobNotFoundError,
    RdDownloaderError,
)

EXIT_FAILURE = 1
EXIT_USAGE = 2

log = logging.getLogger("rd_downloader")


def _exit_code(error: RdDownloaderError) -> int:
    """Configuration and bad job references are caller mistakes; the rest are failures."""
    if isinstance(error, (ConfigurationError, JobNotFoundError, InvalidJobStateError)):
        return EXIT_USAGE
    return EXIT_FAILURE


def main() -> None:
    if os.name == "nt":
        # Progress tables use symbols the legacy Windows code pages lack.
        try:
            sys.stdout.reconfigure(encoding="utf-8")
            sys.stderr.reconfigure(encoding="utf-8")
        except (TypeError, AttributeError):
            pass

    console = Console(stderr=True)

    try:
        app()
    except (typer.Exit, typer.Abort):
        pass
    except (KeyboardInterrupt, asyncio.CancelledError):
        console.print(
            "\n[yellow]⚠️  Interrupted. Unfinished jobs continue with "
            "`rd-downloader resume`.[/yellow]"
        )
        sys.exit(0)
    except RdDownloaderError as e:
        console.print(format_error_with_suggestions(e))
        log.debug("Full traceback:", exc_info=True)
        sys.exit(_exit_code(e))
    except Exception as e:
        console.print(format_error_with_suggestions(e, {"type": "Unexpected"}))
        log.debug("Full traceback:", exc_info=True)
        sys.exit(EXIT_FAILURE)


if __name__ == "__main__":
    main()
