"""Screen capture: frame sources, permission gate and the recording session."""

from .permissions import PermissionProbe
from .session import CaptureSession, compute_output_size, open_container_writer
from .sources import Frame, FrameSource, MssFrameSource, ScreenRect, mss_permission_check

__all__ = [
    "CaptureSession",
    "Frame",
    "FrameSource",
    "MssFrameSource",
    "PermissionProbe",
    "ScreenRect",
    "compute_output_size",
    "mss_permission_check",
    "open_container_writer",
]
