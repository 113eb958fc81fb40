from __future__ import annotations

from pathlib import Path

import pytest

from clif.config import (
    CaptureConfig,
    ConfigurationError,
    EncoderConfig,
    default_library_root,
    load_config,
)


def test_load_config_defaults() -> None:
    config = load_config(environ={})

    assert config.capture.fps == 30.0
    assert config.capture.max_dimension == 1920
    assert config.capture.max_duration_sec == 20.0
    assert config.encoder.fps == 15
    assert config.encoder.max_width == 640
    assert config.encoder.quality == 90
    assert config.encoder.timeout_sec == 120.0
    assert config.encoder.binary is None
    assert config.library.keep_video is True
    assert config.logging.level == "info"
    assert config.logging.format == "auto"


def test_load_config_reads_environment(tmp_path: Path) -> None:
    config = load_config(
        environ={
            "CLIF_LIBRARY_DIR": str(tmp_path / "lib"),
            "CLIF_KEEP_VIDEO": "no",
            "CLIF_CAPTURE_FPS": "24",
            "CLIF_MAX_DURATION": "off",
            "CLIF_GIF_FPS": "10",
            "CLIF_GIF_MAX_WIDTH": "480",
            "CLIF_GIFSKI_PATH": str(tmp_path / "gifski"),
            "CLIF_ENCODER_TIMEOUT": "45",
            "CLIF_LOG_LEVEL": "debug",
            "CLIF_LOG_FORMAT": "json",
        }
    )

    assert config.library.root == tmp_path / "lib"
    assert config.library.keep_video is False
    assert config.capture.fps == 24.0
    assert config.capture.max_duration_sec is None
    assert config.encoder.fps == 10
    assert config.encoder.max_width == 480
    assert config.encoder.binary == tmp_path / "gifski"
    assert config.encoder.timeout_sec == 45.0
    assert config.logging.level == "debug"
    assert config.logging.format == "json"


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("CLIF_KEEP_VIDEO", "maybe"),
        ("CLIF_GIF_FPS", "fast"),
        ("CLIF_GIF_FPS", "0"),
        ("CLIF_CAPTURE_FPS", "-1"),
        ("CLIF_ENCODER_TIMEOUT", "-5"),
    ],
)
def test_load_config_rejects_invalid_values(name: str, value: str) -> None:
    with pytest.raises(ConfigurationError):
        load_config(environ={name: value})


def test_load_config_reads_dotenv(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    dotenv = tmp_path / ".env"
    dotenv.write_text("CLIF_GIF_FPS=12\n", encoding="utf-8")
    # Registered so the value load_dotenv writes into os.environ is undone after the test.
    monkeypatch.setenv("CLIF_GIF_FPS", "1")
    monkeypatch.delenv("CLIF_GIF_FPS")

    config = load_config(dotenv_path=dotenv)

    assert config.encoder.fps == 12


def test_default_library_root_per_platform(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setattr("clif.config.sys.platform", "darwin")
    assert default_library_root().parts[-4:] == ("Library", "Application Support", "Clify", "clifs")

    monkeypatch.setattr("clif.config.sys.platform", "linux")
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path))
    assert default_library_root() == tmp_path / "clify" / "clifs"


def test_capture_config_validation() -> None:
    with pytest.raises(ValueError):
        CaptureConfig(fps=0)
    with pytest.raises(ValueError):
        CaptureConfig(queue_size=0)
    with pytest.raises(ValueError):
        CaptureConfig(max_duration_sec=0)


def test_encoder_config_validation() -> None:
    with pytest.raises(ValueError):
        EncoderConfig(quality=101)
    with pytest.raises(ValueError):
        EncoderConfig(max_width=0)
    with pytest.raises(ValueError):
        EncoderConfig(timeout_sec=0)
