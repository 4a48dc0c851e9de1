"""CLI entrypoint for call-transcribe."""

import logging

import rich_click as click

from call_transcribe import __version__
from call_transcribe.controllers import (
    ListRecentCommand,
    PipelineCliController,
    RunPipelineCommand,
)
from call_transcribe.errors import PipelineError

click.rich_click.USE_MARKDOWN = True
PIPELINE_CONTROLLER = PipelineCliController()
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@click.group()
@click.version_option(version=__version__, prog_name="call-transcribe")
def call_transcribe() -> None:
    """Call recording transcription pipeline."""


@call_transcribe.command("run")
@click.option(
    "--base-path",
    default=None,
    help="Remote base directory. Defaults to CALL_TRANSCRIBE_REMOTE_BASE_PATH.",
)
@click.option(
    "--max-files",
    type=click.IntRange(min=0),
    default=None,
    help="Process at most this many of the newest recordings.",
)
@click.option(
    "--metrics-port",
    type=click.IntRange(min=1, max=65_535),
    default=None,
    help="Expose Prometheus metrics on this port while the run lasts.",
)
@click.option("--verbose", is_flag=True, default=False, help="Enable debug logging.")
def run(
    base_path: str | None,
    max_files: int | None,
    metrics_port: int | None,
    verbose: bool,
) -> None:
    """Process the newest recordings once: fetch, transcode, transcribe, record.

    SIGINT or SIGTERM lets the current recording finish and skips the rest.
    """

    _configure_logging(verbose=verbose)
    try:
        lines = PIPELINE_CONTROLLER.run(
            RunPipelineCommand(
                base_path=base_path,
                max_files=max_files,
                metrics_port=metrics_port,
            ),
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    except PipelineError as error:
        raise click.ClickException(f"Pipeline run failed: [{error.code}] {error}") from error
    _emit_lines(lines)


@call_transcribe.command("list")
@click.option(
    "--base-path",
    default=None,
    help="Remote base directory. Defaults to CALL_TRANSCRIBE_REMOTE_BASE_PATH.",
)
@click.option(
    "--max-files",
    type=click.IntRange(min=0),
    default=None,
    help="List at most this many of the newest recordings.",
)
@click.option("--verbose", is_flag=True, default=False, help="Enable debug logging.")
def list_recent(base_path: str | None, max_files: int | None, verbose: bool) -> None:
    """List the newest recordings without processing them."""

    _configure_logging(verbose=verbose)
    try:
        lines = PIPELINE_CONTROLLER.list_recent(
            ListRecentCommand(base_path=base_path, max_files=max_files),
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    except PipelineError as error:
        raise click.ClickException(f"Remote listing failed: [{error.code}] {error}") from error
    _emit_lines(lines)


@call_transcribe.command("config")
def show_config() -> None:
    """Print effective settings with credentials redacted."""

    try:
        lines = PIPELINE_CONTROLLER.show_config()
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _configure_logging(*, verbose: bool) -> None:
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format=LOG_FORMAT)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    call_transcribe()
