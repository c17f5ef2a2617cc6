"""
Test helpers shared across modules.
"""

import time
from pathlib import Path

from PIL import Image


def write_image(path: Path, size=(64, 48), color=(200, 30, 30)) -> Path:
    """Write a small real image; format follows the extension."""
    fmt = "PNG" if path.suffix.lower() == ".png" else "JPEG"
    Image.new("RGB", size, color).save(path, format=fmt)
    return path


def wait_for(predicate, timeout: float = 5.0, interval: float = 0.05) -> bool:
    """Poll until predicate() is truthy or the timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return bool(predicate())
