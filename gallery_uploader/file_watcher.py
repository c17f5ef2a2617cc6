"""
Watch-folder monitoring for Gallery Uploader.
Detects new or changed image files and hands their paths to a channel.
"""

import queue
from pathlib import Path
from typing import Callable, Optional, Union

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .logger import get_logger
from .utils import probe_write_access

logger = get_logger(__name__)

IMAGE_EXTENSIONS = frozenset({"jpg", "jpeg", "png", "nef"})


class WatchFolderError(Exception):
    """The folder cannot be watched (missing, not a directory, subscription refused)."""


def is_image_file(path: Union[str, Path]) -> bool:
    """Check the extension against the accepted image types (case-insensitive).

    Args:
        path: File path

    Returns:
        True for jpg, jpeg, png and nef files
    """
    suffix = Path(path).suffix
    if not suffix:
        return False
    return suffix[1:].lower() in IMAGE_EXTENSIONS


def _decode(path: Union[str, bytes]) -> str:
    if isinstance(path, bytes):
        return path.decode(errors="surrogateescape")
    return path


class ImageEventHandler(FileSystemEventHandler):
    """Filters watchdog events down to image files and forwards their paths."""

    def __init__(self, channel: "queue.Queue[Path]", watch_folder: Path):
        """Initialize handler.

        Args:
            channel: Queue receiving accepted paths
            watch_folder: Folder being watched; paths elsewhere are ignored
        """
        super().__init__()
        self.channel = channel
        self.watch_folder = watch_folder
        self._resolved_folder = Path(watch_folder).resolve()

    def _offer(self, raw_path: Union[str, bytes], reason: str) -> bool:
        file_path = Path(_decode(raw_path))

        if file_path.parent.resolve() != self._resolved_folder:
            logger.debug(f"Outside watched folder: {file_path}")
            return False

        if not is_image_file(file_path):
            logger.debug(f"Not an image file: {file_path}")
            return False

        if not file_path.is_file():
            logger.debug(f"Not a regular file: {file_path}")
            return False

        logger.debug(f"Image file detected ({reason}): {file_path}")
        self.channel.put(file_path)
        return True

    def on_created(self, event: FileSystemEvent) -> None:
        """Handle file creation event."""
        if event.is_directory:
            return
        self._offer(event.src_path, "created")

    def on_modified(self, event: FileSystemEvent) -> None:
        """Handle file modification event."""
        if event.is_directory:
            return
        self._offer(event.src_path, "modified")

    def on_moved(self, event: FileSystemEvent) -> None:
        """A rename into the folder counts as a modification of the new name."""
        if event.is_directory:
            return
        self._offer(event.dest_path, "moved")

    def on_deleted(self, event: FileSystemEvent) -> None:
        """Report removal of the watched folder itself."""
        if Path(_decode(event.src_path)).resolve() == self._resolved_folder:
            logger.error(
                f"Watch error: watched folder was removed: {self.watch_folder}. "
                "The watched folder might have been moved or deleted."
            )


class FolderWatcher:
    """Watches one folder, non-recursively, for image files.

    Accepted paths are put on ``channel`` once per notification. Repeated
    notifications for the same file are not filtered here; the upload
    queue deduplicates.
    """

    def __init__(
        self,
        folder: Union[str, Path],
        channel: Optional["queue.Queue[Path]"] = None,
        observer_factory: Callable[[], Observer] = Observer,
        probe_writable: bool = True
    ):
        """Validate the folder and prepare the watcher.

        Args:
            folder: Directory to watch
            channel: Queue for accepted paths (created if omitted)
            observer_factory: Builds the watchdog observer
            probe_writable: Log whether the folder is writable

        Raises:
            WatchFolderError: If folder is missing or not a directory
        """
        self.folder = Path(folder).expanduser().absolute()

        if not self.folder.exists():
            raise WatchFolderError(f"Watch path does not exist: {self.folder}")

        if not self.folder.is_dir():
            raise WatchFolderError(f"Watch path is not a directory: {self.folder}")

        if probe_writable:
            probe_write_access(self.folder)

        self.channel: "queue.Queue[Path]" = channel if channel is not None else queue.Queue()
        self.handler = ImageEventHandler(self.channel, self.folder)
        self._observer_factory = observer_factory
        self.observer: Optional[Observer] = None
        self._healthy = True

    def start(self) -> None:
        """Install the filesystem subscription.

        Raises:
            WatchFolderError: If the OS refuses the subscription
        """
        if self.observer is not None:
            logger.warning("Watcher already running")
            return

        logger.info(f"Starting to watch directory: {self.folder}")

        observer = self._observer_factory()
        try:
            observer.schedule(self.handler, str(self.folder), recursive=False)
            observer.start()
        except OSError as e:
            _log_watch_error(e)
            raise WatchFolderError(f"Failed to watch {self.folder}: {e}") from e

        self.observer = observer
        logger.info(f"Successfully started watching: {self.folder}")

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the subscription and its delivery thread."""
        if self.observer is None:
            return

        logger.info("Stopping file watcher")
        observer = self.observer
        self.observer = None
        observer.stop()
        observer.join(timeout=timeout)
        if observer.is_alive():
            logger.warning(f"File watcher thread did not stop within {timeout}s")
        else:
            logger.info("File watcher stopped")

    def is_running(self) -> bool:
        """Check if watcher is running."""
        return self.observer is not None and self.observer.is_alive()

    def check_health(self) -> bool:
        """Log (never raise) when the subscription becomes unusable or recovers.

        Only changes of health state are logged; repeated calls while the
        folder stays missing are silent.

        Returns:
            True if the folder still exists and the observer is alive
        """
        problems = []
        if not self.folder.is_dir():
            problems.append(
                f"Watch error: folder not found: {self.folder}. "
                "The watched folder might have been moved or deleted."
            )
        if self.observer is not None and not self.observer.is_alive():
            problems.append(f"Watch error: observer thread for {self.folder} has exited")

        healthy = not problems
        if healthy != self._healthy:
            for problem in problems:
                logger.error(problem)
            if healthy:
                logger.info(f"Watch folder available again: {self.folder}")
            self._healthy = healthy
        return healthy

    def __enter__(self) -> "FolderWatcher":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()


def _log_watch_error(error: Exception) -> None:
    logger.error(f"Watch error: {error}")
    text = str(error).lower()
    if isinstance(error, PermissionError) or "permission" in text or "denied" in text:
        logger.error("This might be a permissions issue. Check folder permissions.")
    elif isinstance(error, FileNotFoundError) or "not found" in text:
        logger.error("The watched folder might have been moved or deleted.")
