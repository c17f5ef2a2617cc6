"""
Producer side of the pipeline: moves detected paths into the upload queue.
"""

import queue
import threading
from pathlib import Path
from typing import Callable, Optional

from .logger import get_logger
from .upload_queue import UploadQueue

logger = get_logger(__name__)

_STOP = object()


class IngestWorker:
    """Background thread that drains the watcher channel.

    Each path taken from the channel goes through ``UploadQueue.add``,
    which deduplicates and attaches a thumbnail.
    """

    def __init__(
        self,
        channel: "queue.Queue[Path]",
        upload_queue: UploadQueue,
        poll_interval: float = 1.0,
        on_idle: Optional[Callable[[], None]] = None
    ):
        """
        Args:
            channel: Queue fed by the file watcher
            upload_queue: Destination queue
            poll_interval: Seconds to wait for a path before calling on_idle
            on_idle: Optional housekeeping callback (watcher health checks)
        """
        self.channel = channel
        self.upload_queue = upload_queue
        self.poll_interval = poll_interval
        self.on_idle = on_idle

        self.files_added = 0
        self.duplicates_skipped = 0

        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            logger.warning("Ingest worker already running")
            return

        self._thread = threading.Thread(
            target=self._run,
            daemon=True,
            name="IngestWorker"
        )
        self._thread.start()
        logger.debug("Ingest worker started")

    def stop(self, timeout: float = 5.0) -> None:
        """Ingest every path already on the channel, then end the thread."""
        if not self._thread:
            return

        self.channel.put(_STOP)
        self._thread.join(timeout=timeout)
        if self._thread.is_alive():
            logger.warning(f"Ingest worker did not stop within {timeout}s")
        self._thread = None
        logger.debug("Ingest worker stopped")

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def ingest(self, file_path: Path) -> None:
        """Insert one detected path into the upload queue."""
        logger.info(f"Detected new file: {file_path.name}")
        item_id = self.upload_queue.add(file_path)
        if item_id is None:
            self.duplicates_skipped += 1
            logger.debug(f"File already in queue: {file_path.name}")
        else:
            self.files_added += 1

    def _run(self) -> None:
        while True:
            try:
                file_path = self.channel.get(timeout=self.poll_interval)
            except queue.Empty:
                if self.on_idle:
                    self._run_idle()
                continue

            if file_path is _STOP:
                break

            try:
                self.ingest(file_path)
            except Exception as e:
                logger.error(f"Failed to queue {file_path}: {e}", exc_info=True)

    def _run_idle(self) -> None:
        try:
            self.on_idle()
        except Exception as e:
            logger.error(f"Ingest housekeeping failed: {e}", exc_info=True)
