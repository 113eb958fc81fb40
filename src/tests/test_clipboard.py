from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Any

import pytest

from clif.clipboard import ClipboardSink, CommandClipboardSink, find_clipboard_command


class RecordingRunner:
    def __init__(self, returncode: int = 0, error: Exception | None = None) -> None:
        self.returncode = returncode
        self.error = error
        self.calls: list[tuple[list[str], dict[str, Any]]] = []

    def __call__(self, args: list[str], **kwargs: Any) -> subprocess.CompletedProcess[bytes]:
        self.calls.append((args, kwargs))
        if self.error is not None:
            raise self.error
        return subprocess.CompletedProcess(args, self.returncode, stdout=b"", stderr=b"")


@pytest.fixture
def gif_file(tmp_path: Path) -> Path:
    path = tmp_path / "my clip.gif"
    path.write_bytes(b"GIF89a")
    return path


def test_find_clipboard_command_returns_first_available() -> None:
    available = {"xclip"}

    command = find_clipboard_command(which=lambda name: f"/usr/bin/{name}" if name in available else None)

    assert command == ("xclip", "-selection", "clipboard")


def test_find_clipboard_command_returns_none_when_nothing_installed() -> None:
    assert find_clipboard_command(which=lambda _name: None) is None


def test_copy_writes_file_uri_to_command(gif_file: Path) -> None:
    runner = RecordingRunner()
    sink = CommandClipboardSink(["pbcopy"], runner=runner)

    assert isinstance(sink, ClipboardSink)
    assert sink.copy(gif_file) is True
    args, kwargs = runner.calls[0]
    assert args == ["pbcopy"]
    assert kwargs["input"] == gif_file.resolve().as_uri().encode("utf-8")
    assert b"my%20clip.gif" in kwargs["input"]


def test_copy_missing_file_returns_false(tmp_path: Path) -> None:
    runner = RecordingRunner()
    sink = CommandClipboardSink(["pbcopy"], runner=runner)

    assert sink.copy(tmp_path / "gone.gif") is False
    assert runner.calls == []


def test_copy_without_command_returns_false(
    monkeypatch: pytest.MonkeyPatch, gif_file: Path
) -> None:
    monkeypatch.setattr("clif.clipboard.shutil.which", lambda _name: None)
    sink = CommandClipboardSink(runner=RecordingRunner())

    assert sink.command is None
    assert sink.copy(gif_file) is False


def test_copy_nonzero_exit_returns_false(gif_file: Path) -> None:
    sink = CommandClipboardSink(["wl-copy"], runner=RecordingRunner(returncode=1))
    assert sink.copy(gif_file) is False


def test_copy_os_error_returns_false(gif_file: Path) -> None:
    sink = CommandClipboardSink(["wl-copy"], runner=RecordingRunner(error=FileNotFoundError("wl-copy")))
    assert sink.copy(gif_file) is False
