"""
Utility functions for Gallery Uploader.
"""

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
from .logger import get_logger

logger = get_logger(__name__)

WRITE_PROBE_NAME = ".watcher_test"


def mask_secret(secret: Optional[str], visible: int = 10) -> str:
    """Shorten a credential for log output.

    Args:
        secret: API key or other credential
        visible: Number of leading characters to keep

    Returns:
        Masked string (e.g., "abcdef1234...")
    """
    if not secret:
        return ""
    return f"{secret[:visible]}..."


def format_duration(seconds: float) -> str:
    """Format seconds as human-readable duration.

    Args:
        seconds: Duration in seconds

    Returns:
        Formatted string (e.g., "2m 15s")
    """
    seconds = int(seconds)
    if seconds < 60:
        return f"{seconds}s"
    elif seconds < 3600:
        return f"{seconds // 60}m {seconds % 60}s"
    else:
        return f"{seconds // 3600}h {(seconds % 3600) // 60}m"


def probe_write_access(folder: Path) -> bool:
    """Check whether a folder accepts new files.

    Writes and removes a small marker file. The result is advisory only,
    a failed probe is logged and never raised.

    Args:
        folder: Directory to probe

    Returns:
        True if the marker file could be written
    """
    test_file = Path(folder) / WRITE_PROBE_NAME
    try:
        test_file.write_text("test")
    except OSError as e:
        logger.warning(f"Watch directory may not be writable: {folder} - {e}")
        return False

    try:
        test_file.unlink()
    except OSError as e:
        logger.debug(f"Could not remove write probe {test_file}: {e}")

    logger.info(f"Watch directory is writable: {folder}")
    return True


def collision_free_destination(
    source: Path,
    destination_dir: Path,
    now: Optional[datetime] = None
) -> Path:
    """Pick the target path for moving a file into a directory.

    Keeps the original file name unless a file of that name already exists,
    in which case a ``_YYYYmmdd_HHMMSS`` suffix is inserted before the
    extension. If that name is also taken a counter is appended.

    Args:
        source: File that will be moved
        destination_dir: Directory receiving the file
        now: Clock override

    Returns:
        Path inside destination_dir that does not exist yet

    Raises:
        ValueError: If source has no usable file name
    """
    source = Path(source)
    if not source.name or source.name in (".", ".."):
        raise ValueError("Invalid file name")

    target = destination_dir / source.name
    if not target.exists():
        return target

    timestamp = (now or datetime.now(timezone.utc)).strftime("%Y%m%d_%H%M%S")
    stem = source.stem
    suffix = source.suffix

    target = destination_dir / f"{stem}_{timestamp}{suffix}"
    counter = 1
    while target.exists():
        target = destination_dir / f"{stem}_{timestamp}_{counter}{suffix}"
        counter += 1

    return target


def gallery_url(api_endpoint: str, event_code: str) -> str:
    """Public gallery page for an event.

    Args:
        api_endpoint: Base URL of the gallery service
        event_code: Event identifier

    Returns:
        URL string
    """
    return f"{api_endpoint.rstrip('/')}/{event_code}/photos"


def restrict_permissions(path: Path) -> None:
    """Make a file readable by its owner only (no-op where unsupported)."""
    try:
        os.chmod(path, 0o600)
    except OSError as e:
        logger.debug(f"Could not restrict permissions on {path}: {e}")
