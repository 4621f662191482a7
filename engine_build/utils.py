"""
Utility functions for engine_build.

Includes logging setup, console output and event rendering.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from engine_build.events import (
    RunnerError,
    RunnerEvent,
    RunnerProgress,
    RunnerResult,
    RunnerStart,
    event_kind,
)


# Global console for pretty output
console = Console()


def setup_logging(log_file: Path, log_level: str = "INFO", log_format: str = "structured", console_output: bool = True) -> logging.Logger:
    """
    Set up logging for a build run.

    Args:
        log_file: Path to log file
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: "structured" (JSON) or "pretty" (human-readable)
        console_output: Also log to console

    Returns:
        Configured logger
    """
    # Create log directory if needed
    log_file.parent.mkdir(parents=True, exist_ok=True)

    # Create logger
    logger = logging.getLogger("engine_build")
    logger.setLevel(getattr(logging, log_level.upper()))
    logger.handlers = []  # Clear existing handlers

    # File handler
    file_handler = logging.FileHandler(log_file)
    if log_format == "structured":
        file_handler.setFormatter(StructuredFormatter())
    else:
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )

    logger.addHandler(file_handler)

    # Console handler
    if console_output:
        if log_format == "pretty":
            console_handler = RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_time=False)
        else:
            console_handler = logging.StreamHandler()
            console_handler.setFormatter(
                logging.Formatter("%(levelname)s: %(message)s")
            )

        logger.addHandler(console_handler)

    return logger


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Add extra fields if present
        if hasattr(record, "stage"):
            log_data["stage"] = record.stage
        if hasattr(record, "event"):
            log_data["event"] = record.event
        if hasattr(record, "metadata"):
            log_data["metadata"] = record.metadata

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def log_event(logger: logging.Logger, event: RunnerEvent) -> None:
    """
    Write a runner event to the log.

    Progress events go to DEBUG, failures to ERROR, everything else to INFO.
    """
    extra = {"stage": event.name, "event": event_kind(event)}
    if isinstance(event, RunnerProgress):
        logger.debug(str(event), extra=extra)
    elif isinstance(event, RunnerError):
        logger.error(str(event), extra=extra)
    elif isinstance(event, RunnerResult):
        extra["metadata"] = {
            "exit_code": event.result.exit_code,
            "command": list(event.command),
        }
        if event.ok:
            logger.info(str(event), extra=extra)
        else:
            logger.error(str(event), extra=extra)
    else:
        extra["metadata"] = {"command": list(event.command)}
        logger.info(str(event), extra=extra)


def print_event(event: RunnerEvent, verbose: bool = False) -> None:
    """
    Print a runner event to the console.

    Progress lines are only printed when verbose, or for the final one.
    """
    if isinstance(event, RunnerStart):
        console.print(f"[bold cyan]▶[/bold cyan] {escape(str(event))}")
        if verbose:
            console.print(f"  [dim]{escape(' '.join(event.command))}[/dim]")
    elif isinstance(event, RunnerProgress):
        if verbose or event.done:
            console.print(f"  [dim]{escape(str(event))}[/dim]")
    elif isinstance(event, RunnerResult):
        if event.ok:
            print_success(escape(str(event)))
        else:
            print_error(escape(str(event)))
    elif isinstance(event, RunnerError):
        print_error(escape(str(event)))


def format_duration(seconds: float) -> str:
    """
    Format duration in seconds to human-readable string.

    Args:
        seconds: Duration in seconds

    Returns:
        Formatted string (e.g., "1m 23s", "45s")
    """
    if seconds < 60:
        return f"{int(seconds)}s"

    minutes = int(seconds // 60)
    remaining_seconds = int(seconds % 60)

    if minutes < 60:
        return f"{minutes}m {remaining_seconds}s"

    hours = minutes // 60
    remaining_minutes = minutes % 60
    return f"{hours}h {remaining_minutes}m {remaining_seconds}s"


def print_banner(title: str) -> None:
    """
    Print a banner to console.

    Args:
        title: Banner title
    """
    console.rule(f"[bold blue]{title}[/bold blue]")


def print_success(message: str) -> None:
    """Print success message to console."""
    console.print(f"[bold green]✓[/bold green] {message}")


def print_error(message: str) -> None:
    """Print error message to console."""
    console.print(f"[bold red]✗[/bold red] {message}")

