"""Configuration models and utilities for Clif."""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Callable, Mapping, MutableMapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import TypeVar, cast

from dotenv import find_dotenv, load_dotenv

_LOGGER = logging.getLogger(__name__)

ENV_LIBRARY_DIR = "CLIF_LIBRARY_DIR"
ENV_KEEP_VIDEO = "CLIF_KEEP_VIDEO"
ENV_CAPTURE_FPS = "CLIF_CAPTURE_FPS"
ENV_MAX_DURATION = "CLIF_MAX_DURATION"
ENV_GIF_FPS = "CLIF_GIF_FPS"
ENV_GIF_MAX_WIDTH = "CLIF_GIF_MAX_WIDTH"
ENV_GIFSKI_PATH = "CLIF_GIFSKI_PATH"
ENV_ENCODER_TIMEOUT = "CLIF_ENCODER_TIMEOUT"
ENV_LOG_LEVEL = "CLIF_LOG_LEVEL"
ENV_LOG_FORMAT = "CLIF_LOG_FORMAT"

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off"})
_DISABLED_VALUES = frozenset({"", "0", "none", "off"})

T = TypeVar("T")


class ConfigurationError(RuntimeError):
    """Raised when Clif configuration is missing or invalid."""


def default_library_root() -> Path:
    """Return the platform default location of the clif library."""
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / "Clify" / "clifs"
    data_home = os.environ.get("XDG_DATA_HOME")
    base = Path(data_home) if data_home else Path.home() / ".local" / "share"
    return base / "clify" / "clifs"


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Structured logging configuration."""

    level: str = "info"
    format: str = "auto"


@dataclass(frozen=True, slots=True)
class CaptureConfig:
    """Configuration for screen capture sessions.

    Args:
        fps: Frame rate requested from the frame source and used by the container.
        max_dimension: Upper bound for the recorded width and height in pixels.
        queue_size: Frames that may wait for the writer before new ones are dropped.
        max_duration_sec: Recording length after which capture stops on its own;
            ``None`` disables the limit.
        temp_dir: Directory for in-progress recordings (system temp when ``None``).

    Raises:
        ValueError: If any provided parameter violates constraints.
    """

    fps: float = 30.0
    max_dimension: int = 1920
    queue_size: int = 8
    max_duration_sec: float | None = 20.0
    temp_dir: Path | None = None

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.fps <= 0:
            raise ValueError("fps must be greater than 0")
        if self.max_dimension <= 1:
            raise ValueError("max_dimension must be greater than 1")
        if self.queue_size <= 0:
            raise ValueError("queue_size must be greater than 0")
        if self.max_duration_sec is not None and self.max_duration_sec <= 0:
            raise ValueError("max_duration_sec must be greater than 0 when set")


@dataclass(frozen=True, slots=True)
class EncoderConfig:
    """Configuration for GIF conversion with gifski.

    Args:
        fps: Sampling rate of stills taken from the video and GIF frame rate.
        max_width: Width handed to gifski; it never upscales.
        quality: gifski quality setting (1-100).
        binary: Explicit gifski path; searched on ``PATH`` when ``None``.
        timeout_sec: Seconds gifski may run before it is killed; ``None`` waits forever.
        temp_dir: Parent of the scoped frame directories (system temp when ``None``).
    """

    fps: int = 15
    max_width: int = 640
    quality: int = 90
    binary: Path | None = None
    timeout_sec: float | None = 120.0
    temp_dir: Path | None = None

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.fps <= 0:
            raise ValueError("fps must be greater than 0")
        if self.max_width <= 0:
            raise ValueError("max_width must be greater than 0")
        if not 1 <= self.quality <= 100:
            raise ValueError("quality must be between 1 and 100 inclusive")
        if self.timeout_sec is not None and self.timeout_sec <= 0:
            raise ValueError("timeout_sec must be greater than 0 when set")


@dataclass(frozen=True, slots=True)
class LibraryConfig:
    """Configuration for the on-disk clif library."""

    root: Path = field(default_factory=default_library_root)
    keep_video: bool = True


@dataclass(frozen=True, slots=True)
class Config:
    """Unified application configuration."""

    logging: LoggingConfig = field(default_factory=LoggingConfig)
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    encoder: EncoderConfig = field(default_factory=EncoderConfig)
    library: LibraryConfig = field(default_factory=LibraryConfig)


def _parse_value(env: Mapping[str, str | None], name: str, parse: Callable[[str], T]) -> T | None:
    """Return ``parse(env[name])`` or ``None`` when the variable is unset."""
    raw = env.get(name)
    if raw is None:
        return None
    try:
        return parse(raw.strip())
    except ValueError as exc:
        raise ConfigurationError(f"Invalid value for {name}: {raw!r}") from exc


def _parse_bool(raw: str) -> bool:
    lowered = raw.lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(raw)


def _parse_optional_seconds(raw: str) -> float | None:
    if raw.lower() in _DISABLED_VALUES:
        return None
    return float(raw)


def load_config(
    *,
    dotenv_path: str | os.PathLike[str] | None = None,
    environ: Mapping[str, str | None] | None = None,
) -> Config:
    """Load Clif configuration from the environment and optional ``.env`` file.

    Args:
        dotenv_path: Optional path to a dotenv file. When supplied, the file is
            loaded before reading environment variables. The default behaviour
            mirrors :func:`dotenv.find_dotenv`.
        environ: Optional mapping used instead of :data:`os.environ`. Primarily
            intended for testing.

    Returns:
        Loaded :class:`Config` with defaults for every unset variable.

    Raises:
        ConfigurationError: When a variable is set to a malformed value.
    """
    env: MutableMapping[str, str | None]
    if environ is not None:
        env = dict(environ)
    else:
        env = cast(MutableMapping[str, str | None], os.environ)
        if dotenv_path:
            resolved_path = find_dotenv(str(dotenv_path), raise_error_if_not_found=False)
        else:
            resolved_path = find_dotenv(raise_error_if_not_found=False, usecwd=True)
        if resolved_path:
            _LOGGER.debug("config.load_dotenv", extra={"path": resolved_path})
            load_dotenv(resolved_path, override=False)

    defaults = Config()
    library_dir = env.get(ENV_LIBRARY_DIR)
    keep_video = _parse_value(env, ENV_KEEP_VIDEO, _parse_bool)
    capture_fps = _parse_value(env, ENV_CAPTURE_FPS, float)
    gif_fps = _parse_value(env, ENV_GIF_FPS, int)
    gif_max_width = _parse_value(env, ENV_GIF_MAX_WIDTH, int)
    gifski_path = env.get(ENV_GIFSKI_PATH)

    max_duration = defaults.capture.max_duration_sec
    if env.get(ENV_MAX_DURATION) is not None:
        max_duration = _parse_value(env, ENV_MAX_DURATION, _parse_optional_seconds)
    timeout = defaults.encoder.timeout_sec
    if env.get(ENV_ENCODER_TIMEOUT) is not None:
        timeout = _parse_value(env, ENV_ENCODER_TIMEOUT, _parse_optional_seconds)

    try:
        capture = CaptureConfig(
            fps=capture_fps if capture_fps is not None else defaults.capture.fps,
            max_duration_sec=max_duration,
        )
        encoder = EncoderConfig(
            fps=gif_fps if gif_fps is not None else defaults.encoder.fps,
            max_width=gif_max_width if gif_max_width is not None else defaults.encoder.max_width,
            binary=Path(gifski_path).expanduser() if gifski_path else None,
            timeout_sec=timeout,
        )
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from exc

    library = LibraryConfig(
        root=Path(library_dir).expanduser() if library_dir else default_library_root(),
        keep_video=keep_video if keep_video is not None else defaults.library.keep_video,
    )
    logging_config = LoggingConfig(
        level=env.get(ENV_LOG_LEVEL) or defaults.logging.level,
        format=env.get(ENV_LOG_FORMAT) or defaults.logging.format,
    )
    return Config(logging=logging_config, capture=capture, encoder=encoder, library=library)


__all__ = [
    "ENV_CAPTURE_FPS",
    "ENV_ENCODER_TIMEOUT",
    "ENV_GIFSKI_PATH",
    "ENV_GIF_FPS",
    "ENV_GIF_MAX_WIDTH",
    "ENV_KEEP_VIDEO",
    "ENV_LIBRARY_DIR",
    "ENV_LOG_FORMAT",
    "ENV_LOG_LEVEL",
    "ENV_MAX_DURATION",
    "CaptureConfig",
    "Config",
    "ConfigurationError",
    "EncoderConfig",
    "LibraryConfig",
    "LoggingConfig",
    "default_library_root",
    "load_config",
]
