"""Clipboard sinks that publish the path of a finished GIF."""

from __future__ import annotations

import logging
import shutil
import subprocess
import sys
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Final, Protocol, runtime_checkable

_LOGGER = logging.getLogger(__name__)

CLIPBOARD_COMMANDS: Final[tuple[tuple[str, ...], ...]] = (
    ("pbcopy",),
    ("wl-copy",),
    ("xclip", "-selection", "clipboard"),
)


@runtime_checkable
class ClipboardSink(Protocol):
    """Receives one file reference to the final artifact."""

    def copy(self, path: Path) -> bool:
        """Publish ``path``; return ``False`` when the clipboard was not updated."""
        ...


def find_clipboard_command(
    candidates: Sequence[tuple[str, ...]] = CLIPBOARD_COMMANDS,
    *,
    which: Callable[[str], str | None] | None = None,
) -> tuple[str, ...] | None:
    """Return the first clipboard command available on ``PATH``."""
    lookup = which or shutil.which
    for command in candidates:
        if lookup(command[0]):
            return command
    return None


class CommandClipboardSink:
    """Write the file URI of a GIF to the clipboard through a platform command."""

    def __init__(
        self,
        command: Sequence[str] | None = None,
        *,
        runner: Callable[..., "subprocess.CompletedProcess[bytes]"] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        """Use ``command`` or the first of :data:`CLIPBOARD_COMMANDS` found on ``PATH``."""
        self.command = tuple(command) if command else find_clipboard_command()
        self.logger = logger or _LOGGER
        self._run = runner or subprocess.run

    def copy(self, path: Path) -> bool:
        if not path.is_file():
            self.logger.error("clipboard.file_missing", extra={"path": str(path)})
            return False
        if self.command is None:
            self.logger.warning("clipboard.unavailable", extra={"platform": sys.platform})
            return False
        try:
            completed = self._run(
                list(self.command),
                input=path.resolve().as_uri().encode("utf-8"),
                capture_output=True,
                check=False,
            )
        except OSError as exc:
            self.logger.error("clipboard.command_failed", extra={"error": str(exc)})
            return False
        if completed.returncode != 0:
            self.logger.error(
                "clipboard.command_failed",
                extra={"returncode": completed.returncode, "command": self.command[0]},
            )
            return False
        self.logger.info(
            "clipboard.copied",
            extra={"path": str(path), "size_kb": path.stat().st_size // 1024},
        )
        return True


__all__ = ["CLIPBOARD_COMMANDS", "ClipboardSink", "CommandClipboardSink", "find_clipboard_command"]
