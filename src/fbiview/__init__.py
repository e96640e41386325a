"""fbiview - Show images on the Linux framebuffer with fbi."""

__version__ = "0.1.0"

from .launcher import (
    CommandFailedError,
    CommandResult,
    FbiError,
    LaunchError,
    ProcessLauncher,
    RecordingLauncher,
    SubprocessLauncher,
    ViewerProcess,
    kill_by_name,
)
from .viewer import Fbi

__all__ = [
    "Fbi",
    "FbiError",
    "LaunchError",
    "CommandFailedError",
    "CommandResult",
    "ProcessLauncher",
    "SubprocessLauncher",
    "RecordingLauncher",
    "ViewerProcess",
    "kill_by_name",
    "__version__",
]
