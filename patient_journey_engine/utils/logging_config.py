"""
Structured logging configuration for the Patient Journey Engine.
"""

import structlog
import logging
import sys
from pathlib import Path
from typing import Any, Optional

from rich.console import Console
from rich.logging import RichHandler


def configure_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    json_logs: bool = False
) -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional path to log file
        json_logs: If True, output JSON formatted logs (for production)
    """
    # Shared processors for all outputs
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_logs:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=shared_processors,
    )

    handlers = []

    if json_logs:
        console_handler = logging.StreamHandler(sys.stderr)
    else:
        console_handler = RichHandler(
            console=Console(stderr=True),
            show_time=False,  # structlog handles this
            show_path=False,
            rich_tracebacks=True
        )

    console_handler.setFormatter(formatter)
    handlers.append(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    root_logger = logging.getLogger()
    root_logger.handlers = handlers
    root_logger.setLevel(getattr(logging, log_level.upper()))

    # Silence noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


class ProgressLogger:
    """
    Run lifecycle events.

    Every event goes to structlog. With ``echo`` enabled the events are also
    printed to a rich console, which is how the simulator shows a run.
    """

    def __init__(self, echo: bool = False, console: Optional[Console] = None):
        """
        Initialize the progress logger.

        Args:
            echo: Also print events to the console
            console: Console to print to (defaults to stdout)
        """
        self.logger = structlog.get_logger("patient_journey_engine.runs")
        self.echo = echo
        if echo and console is None:
            console = Console()
        self.console = console

    def _print(self, message: str, style: str = "") -> None:
        if self.echo and self.console:
            self.console.print(message, style=style, soft_wrap=True)

    def run_started(self, run_id: str, journey_id: str, patient_id: str, node_id: Optional[str]) -> None:
        """Log a run being created or resumed at a node."""
        self._print(f"[bold blue]Run {run_id}[/bold blue] started for patient {patient_id}")
        self.logger.info(
            "run_started",
            run_id=run_id,
            journey_id=journey_id,
            patient_id=patient_id,
            node_id=node_id
        )

    def node_entered(self, run_id: str, node_id: str, node_type: str) -> None:
        """Log a node about to execute."""
        self._print(f"  -> {node_id} [dim]({node_type})[/dim]")
        self.logger.debug("node_entered", run_id=run_id, node_id=node_id, node_type=node_type)

    def message_sent(self, run_id: str, patient_id: str, message: str, language: Any = None) -> None:
        """Log a message delivered to a patient."""
        self._print(f"     [green]message[/green] to {patient_id}: {message}")
        self.logger.info(
            "message_sent",
            run_id=run_id,
            patient_id=patient_id,
            language=language,
            message=message
        )

    def delay_started(self, run_id: str, duration_seconds: float) -> None:
        """Log the start of a delay."""
        self._print(f"     [yellow]waiting[/yellow] {duration_seconds}s")
        self.logger.info("delay_started", run_id=run_id, duration_seconds=duration_seconds)

    def delay_finished(self, run_id: str) -> None:
        """Log a delay that ran to expiry."""
        self.logger.debug("delay_finished", run_id=run_id)

    def condition_evaluated(
        self,
        run_id: str,
        field: str,
        operator: str,
        expected: Any,
        actual: Any,
        result: bool
    ) -> None:
        """Log a conditional branch decision."""
        self._print(f"     [cyan]condition[/cyan] {field} {operator} {expected!r} -> {result}")
        self.logger.info(
            "condition_evaluated",
            run_id=run_id,
            field=field,
            operator=operator,
            expected=expected,
            actual=actual,
            result=result
        )

    def run_completed(self, run_id: str, steps: int) -> None:
        """Log run completion."""
        self._print(f"[bold green]Run {run_id} completed[/bold green] ({steps} steps)")
        self.logger.info("run_completed", run_id=run_id, steps=steps)

    def run_failed(self, run_id: str, error: str) -> None:
        """Log run failure."""
        self._print(f"[bold red]Run {run_id} failed:[/bold red] {error}")
        self.logger.error("run_failed", run_id=run_id, error=error)

    def run_cancelled(self, run_id: str) -> None:
        """Log run cancellation."""
        self._print(f"[yellow]Run {run_id} cancelled[/yellow]")
        self.logger.warning("run_cancelled", run_id=run_id)

    def runs_resumed(self, resumed: int, failed: int) -> None:
        """Log the outcome of startup resume."""
        self.logger.info("runs_resumed", resumed=resumed, failed=failed)
