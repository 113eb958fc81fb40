"""Command-line interface for Clif."""

from __future__ import annotations

import concurrent.futures
import dataclasses
import json
import logging
import sys
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Final, TypeVar, cast

import click

from ._datetime import format_timestamp
from .capture import CaptureSession, MssFrameSource, PermissionProbe, mss_permission_check
from .clipboard import ClipboardSink, CommandClipboardSink
from .config import Config, ConfigurationError, LoggingConfig, load_config
from .encoder import GifEncoder
from .errors import ClifError, NotFoundError, describe_error
from .library import LibraryStore
from .models import ModelValidationError, Region
from .pipeline import PipelineController, PipelineResult, PipelineState

RESERVED_LOG_RECORD_ATTRS: Final[set[str]] = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "taskName",
}
_STOP_POLL_SEC: Final[float] = 0.05

F = TypeVar("F", bound=Callable[..., Any])


class JsonFormatter(logging.Formatter):
    """Serialize log records to JSON, preserving custom ``extra`` fields."""

    def format(self, record: logging.LogRecord) -> str:
        """Return a JSON-encoded representation of ``record``."""
        payload: dict[str, object] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key in RESERVED_LOG_RECORD_ATTRS or key.startswith("_"):
                continue
            payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str, ensure_ascii=False)


def configure_logging(config: LoggingConfig) -> logging.Logger:
    """Configure the ``clif`` logger hierarchy.

    Args:
        config: Logging configuration settings.

    Returns:
        logging.Logger: Root logger for the Clif namespace.
    """
    resolved_level = getattr(logging, config.level.upper(), logging.INFO)
    handler = logging.StreamHandler()
    resolved_format = config.format.lower()
    if resolved_format == "auto":
        stream = getattr(handler, "stream", sys.stderr)
        is_tty = bool(getattr(stream, "isatty", lambda: False)())
        resolved_format = "text" if is_tty else "json"

    if resolved_format == "json":
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    handler.setFormatter(formatter)
    logger = logging.getLogger("clif")
    logger.handlers.clear()
    logger.setLevel(resolved_level)
    logger.propagate = False
    logger.addHandler(handler)
    logging.captureWarnings(True)
    return logger


def create_library(config: Config) -> LibraryStore:
    """Build the library store rooted at the configured directory."""
    return LibraryStore(config=config.library, logger=logging.getLogger("clif.library"))


def create_clipboard() -> ClipboardSink:
    """Return the clipboard sink for the current platform."""
    return CommandClipboardSink()


def create_controller(config: Config, *, keep_video: bool | None = None) -> PipelineController:
    """Wire the production capture, encoder, library and clipboard together.

    Args:
        config: Unified application configuration.
        keep_video: Overrides ``config.library.keep_video`` when not ``None``.

    Returns:
        PipelineController: Controller ready to record regions of the screen.
    """
    source = MssFrameSource(fps=config.capture.fps)
    return PipelineController(
        CaptureSession(source, config=config.capture),
        GifEncoder(config.encoder),
        create_library(config),
        create_clipboard(),
        permission=PermissionProbe(mss_permission_check),
        keep_video=keep_video,
        logger=logging.getLogger("clif.pipeline"),
    )


def log_options(command: F) -> F:
    """Attach ``--log-level`` and ``--log-format`` to ``command``."""
    command = click.option(
        "--log-format",
        type=click.Choice(["auto", "json", "text"], case_sensitive=False),
        default=None,
        help="Logging output format  [default: CLIF_LOG_FORMAT or auto]",
    )(command)
    command = click.option(
        "--log-level",
        type=click.Choice(["debug", "info", "warning", "error", "critical"], case_sensitive=False),
        default=None,
        help="Logging verbosity  [default: CLIF_LOG_LEVEL or info]",
    )(command)
    return command


def _configure_from_options(config: Config, options: dict[str, Any]) -> logging.Logger:
    return configure_logging(
        LoggingConfig(
            level=cast(str | None, options["log_level"]) or config.logging.level,
            format=cast(str | None, options["log_format"]) or config.logging.format,
        )
    )


def _wait_for_capture(
    controller: PipelineController, future: concurrent.futures.Future[PipelineResult]
) -> None:
    """Block until the run reaches the capture stage or finishes early."""
    while not future.done() and controller.state is not PipelineState.CAPTURING:
        concurrent.futures.wait([future], timeout=_STOP_POLL_SEC)


def _stop_capture(
    controller: PipelineController, future: concurrent.futures.Future[PipelineResult]
) -> None:
    """Repeat the stop request until the controller accepts it or the run ends."""
    while not future.done():
        if controller.stop():
            return
        concurrent.futures.wait([future], timeout=_STOP_POLL_SEC)


def _with_encoder_overrides(config: Config, fps: int | None, max_width: int | None) -> Config:
    try:
        encoder = dataclasses.replace(
            config.encoder,
            fps=fps if fps is not None else config.encoder.fps,
            max_width=max_width if max_width is not None else config.encoder.max_width,
        )
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint="--fps/--max-width") from exc
    return dataclasses.replace(config, encoder=encoder)


@click.group()
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Record a region of the screen as a GIF and keep it in a local library."""
    try:
        ctx.obj = load_config()
    except ConfigurationError as exc:
        raise click.ClickException(str(exc)) from exc


@cli.command()
@click.option("--x", "x", type=float, default=0.0, show_default=True, help="Left edge of the region")
@click.option("--y", "y", type=float, default=0.0, show_default=True, help="Top edge of the region")
@click.option("--width", type=float, required=True, help="Region width in pixels")
@click.option("--height", type=float, required=True, help="Region height in pixels")
@click.option("--display", type=int, default=1, show_default=True, help="Display number (1 = primary)")
@click.option(
    "--duration",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Stop after this many seconds instead of waiting for Enter",
)
@click.option(
    "--keep-video/--no-keep-video",
    default=None,
    help="Keep the MP4 next to the GIF  [default: CLIF_KEEP_VIDEO or keep]",
)
@click.option("--fps", type=int, default=None, help="GIF frame rate  [default: CLIF_GIF_FPS or 15]")
@click.option("--max-width", type=int, default=None, help="GIF width limit  [default: 640]")
@log_options
@click.pass_obj
def record(config: Config, **options: Any) -> None:
    """Record a screen region, convert it to a GIF and save it to the library."""
    config = _with_encoder_overrides(
        config, cast(int | None, options["fps"]), cast(int | None, options["max_width"])
    )
    logger = _configure_from_options(config, options)
    try:
        region = Region(
            x=cast(float, options["x"]),
            y=cast(float, options["y"]),
            width=cast(float, options["width"]),
            height=cast(float, options["height"]),
            display_id=cast(int, options["display"]),
        )
    except ModelValidationError as exc:
        raise click.BadParameter(str(exc), param_hint="--width/--height") from exc

    duration = cast(float | None, options["duration"])
    controller = create_controller(config, keep_video=cast(bool | None, options["keep_video"]))
    logger.info("cli.record", extra={"region": region.to_dict(), "duration": duration})
    try:
        future = controller.start(region)
        _wait_for_capture(controller, future)
        if duration is not None:
            click.echo(f"Recording for {duration:g}s...")
            concurrent.futures.wait([future], timeout=duration)
        else:
            limit = config.capture.max_duration_sec
            suffix = f" (stops automatically after {limit:g}s)" if limit else ""
            click.echo(f"Recording... press Enter to stop{suffix}.")
            click.get_text_stream("stdin").readline()
        _stop_capture(controller, future)
        result = future.result()
    except ClifError as exc:
        raise click.ClickException(describe_error(exc)) from exc
    finally:
        controller.shutdown()

    click.echo(f"Saved {result.gif_path}")
    if result.copied_to_clipboard:
        click.echo("Copied to clipboard.")
    else:
        click.echo("Clipboard was not updated.")


@cli.command()
@click.argument("video", type=click.Path(path_type=Path, exists=True, dir_okay=False))
@click.option("--fps", type=int, default=None, help="GIF frame rate  [default: CLIF_GIF_FPS or 15]")
@click.option("--max-width", type=int, default=None, help="GIF width limit  [default: 640]")
@click.option(
    "--output",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Destination GIF (defaults to the video path with a .gif suffix)",
)
@log_options
@click.pass_obj
def convert(config: Config, **options: Any) -> None:
    """Convert an existing video to a GIF without touching the library."""
    config = _with_encoder_overrides(
        config, cast(int | None, options["fps"]), cast(int | None, options["max_width"])
    )
    _configure_from_options(config, options)
    encoder = GifEncoder(config.encoder, logger=logging.getLogger("clif.encoder"))
    try:
        artifact = encoder.convert(
            cast(Path, options["video"]),
            output_path=cast(Path | None, options["output"]),
        )
    except ClifError as exc:
        raise click.ClickException(describe_error(exc)) from exc
    click.echo(f"GIF written to {artifact.gif_path} ({artifact.frame_count} frames)")


@cli.group()
def library() -> None:
    """Inspect the clif library."""


@library.command("list")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print entries as JSON")
@log_options
@click.pass_obj
def list_command(config: Config, **options: Any) -> None:
    """List saved clifs, newest first."""
    _configure_from_options(config, options)
    entries = create_library(config).load_all()
    if options["as_json"]:
        payload = [{**entry.metadata.to_dict(), "path": str(entry.gif_path)} for entry in entries]
        click.echo(json.dumps(payload, indent=2))
        return
    if not entries:
        click.echo(f"No clifs in {config.library.root}")
        return
    for entry in entries:
        metadata = entry.metadata
        click.echo(
            f"{metadata.id}  {format_timestamp(metadata.created_at)}  "
            f"{metadata.duration_ms / 1000:.1f}s  {metadata.width}x{metadata.height}  {entry.gif_path}"
        )


@library.command("copy")
@click.argument("clif_id")
@log_options
@click.pass_obj
def copy_command(config: Config, **options: Any) -> None:
    """Copy a saved clif to the clipboard."""
    _configure_from_options(config, options)
    clif_id = cast(str, options["clif_id"])
    entry = create_library(config).get(clif_id)
    if entry is None:
        raise click.ClickException(describe_error(NotFoundError(f"No clif with id {clif_id}")))
    if not create_clipboard().copy(entry.gif_path):
        raise click.ClickException("Clipboard was not updated; is pbcopy, wl-copy or xclip installed?")
    click.echo(f"Copied {entry.gif_path}")


if __name__ == "__main__":
    cli()
