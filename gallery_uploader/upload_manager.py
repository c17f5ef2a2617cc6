"""
Upload dispatcher for Gallery Uploader.

Architecture:
    - A 1-second tick claims at most one queued item
    - Each claimed item is uploaded by an independent task on a thread pool
    - The number of in-flight tasks is capped at max_concurrent_uploads
    - The destination event code is a shared, versioned cell; each task
      works with the value captured when it was dispatched

Flow:
    1. start() → create "uploaded/" → schedule tick
    2. tick() → claim next item (Queued → Uploading) → submit task
    3. Task → upload → progress 0.9 → move file → Completed
    4. Any failure → Failed("Upload failed: ...") → file left in place
"""

import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Set, Union

from .api_client import APIError, GalleryAPIClient, UploadResponse
from .logger import get_logger
from .scheduler import TickScheduler
from .upload_queue import PROGRESS_SENT, UploadQueue
from .utils import collision_free_destination, mask_secret

logger = get_logger(__name__)

UPLOADED_FOLDER_NAME = "uploaded"
DEFAULT_MAX_CONCURRENT_UPLOADS = 3
DEFAULT_TICK_INTERVAL = 1.0


class ManagerStartError(Exception):
    """The manager could not be started (output folder not creatable)."""


@dataclass(frozen=True)
class DestinationSnapshot:
    """Event code as seen by one upload task."""
    value: str
    version: int


class DestinationContext:
    """Lock-guarded, versioned event code shared by the manager and its tasks."""

    def __init__(self, value: str):
        self._lock = threading.Lock()
        self._value = value
        self._version = 0

    def snapshot(self) -> DestinationSnapshot:
        with self._lock:
            return DestinationSnapshot(self._value, self._version)

    @property
    def value(self) -> str:
        return self.snapshot().value

    def update(self, new_value: str) -> Optional[DestinationSnapshot]:
        """Swap in a new value.

        Returns:
            The previous snapshot if the value changed, None otherwise
        """
        with self._lock:
            if new_value == self._value:
                return None
            previous = DestinationSnapshot(self._value, self._version)
            self._value = new_value
            self._version += 1
            return previous


@dataclass
class UploadResult:
    """Outcome of one upload task."""
    item_id: uuid.UUID
    source_path: Path
    event_code: str
    success: bool
    photo_id: Optional[str] = None
    destination_path: Optional[Path] = None
    error: Optional[str] = None


class UploadManager:
    """
    Dispatches queued items to concurrent upload tasks.

    Features:
        - Atomic claim of the earliest queued item per tick
        - Concurrency ceiling on in-flight uploads
        - Live-updatable destination event code
        - Move to "uploaded/" on success, never overwriting
    """

    def __init__(
        self,
        upload_queue: UploadQueue,
        api_client: GalleryAPIClient,
        event_code: str,
        watch_folder: Union[str, Path],
        api_key: str,
        max_concurrent_uploads: int = DEFAULT_MAX_CONCURRENT_UPLOADS,
        tick_interval: float = DEFAULT_TICK_INTERVAL
    ):
        """
        Initialize upload manager.

        Args:
            upload_queue: Queue shared with the ingest side
            api_client: Transport used by every task
            event_code: Initial destination event
            watch_folder: Folder whose "uploaded" subfolder receives files
            api_key: Credential sent with each upload
            max_concurrent_uploads: Ceiling on in-flight upload tasks
            tick_interval: Seconds between dispatch ticks
        """
        if max_concurrent_uploads < 1:
            raise ValueError("max_concurrent_uploads must be at least 1")

        self.upload_queue = upload_queue
        self.api_client = api_client
        self.destination = DestinationContext(event_code)
        self.watch_folder = Path(watch_folder).expanduser().absolute()
        self.api_key = api_key
        self.max_concurrent_uploads = max_concurrent_uploads
        self.tick_interval = tick_interval

        self._state_lock = threading.Lock()
        self._running = False
        self._active_uploads = 0
        self._futures: Set[Future] = set()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._scheduler: Optional[TickScheduler] = None

    @property
    def uploaded_folder(self) -> Path:
        return self.watch_folder / UPLOADED_FOLDER_NAME

    @property
    def active_uploads(self) -> int:
        with self._state_lock:
            return self._active_uploads

    def is_running(self) -> bool:
        with self._state_lock:
            return self._running

    # ========================================
    # Lifecycle
    # ========================================

    def start(self, background: bool = True) -> None:
        """Start dispatching.

        Idempotent. With ``background=False`` no tick job is scheduled and
        the caller drives ``tick()`` itself.

        Raises:
            ManagerStartError: If the uploaded folder cannot be created
        """
        with self._state_lock:
            if self._running:
                return

            logger.info("UploadManager starting...")
            logger.info(f"Event code: {self.destination.value}")
            logger.info(f"API key: {mask_secret(self.api_key)}")
            logger.info(f"Watch folder: {self.watch_folder}")

            try:
                self.uploaded_folder.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise ManagerStartError(
                    f"Cannot create uploaded folder {self.uploaded_folder}: {e}"
                ) from e

            self._executor = ThreadPoolExecutor(
                max_workers=self.max_concurrent_uploads,
                thread_name_prefix="upload"
            )
            self._running = True

        if background:
            self._scheduler = TickScheduler()
            self._scheduler.add_tick_job(self.tick, interval_seconds=self.tick_interval)
            self._scheduler.start()

        logger.info("Upload manager started successfully")

    def stop(self, wait: bool = True) -> None:
        """Stop dispatching.

        No item is claimed after this returns. Uploads already in flight
        are not interrupted; with ``wait=True`` this blocks until they have
        recorded their result.
        """
        with self._state_lock:
            if not self._running:
                return
            self._running = False
            scheduler, self._scheduler = self._scheduler, None
            executor, self._executor = self._executor, None

        if scheduler is not None:
            scheduler.stop(wait=True)
        if executor is not None:
            executor.shutdown(wait=wait)

        logger.info("Upload manager stopped")

    # ========================================
    # Dispatch
    # ========================================

    def tick(self) -> Optional[Future]:
        """Claim at most one queued item and start uploading it.

        Returns:
            Future of the launched task, or None if nothing was dispatched
        """
        try:
            return self._dispatch_one()
        except Exception as e:
            logger.error(f"Error in dispatch tick: {e}", exc_info=True)
            return None

    def _dispatch_one(self) -> Optional[Future]:
        with self._state_lock:
            if not self._running or self._executor is None:
                return None
            if self._active_uploads >= self.max_concurrent_uploads:
                logger.debug(
                    f"Concurrency limit reached ({self._active_uploads}/"
                    f"{self.max_concurrent_uploads}), not claiming"
                )
                return None

            item = self.upload_queue.claim_next()
            if item is None:
                return None

            destination = self.destination.snapshot()
            self._active_uploads += 1
            executor = self._executor

        logger.info(f"Starting upload for: {item.display_name}")

        try:
            future = executor.submit(
                self._run_upload, item.id, item.source_path, destination
            )
        except RuntimeError as e:
            # Executor shut down between claim and submit
            self._release_slot(None)
            self.upload_queue.mark_failed(item.id, f"Upload failed: {e}")
            logger.error(f"Could not start upload for {item.display_name}: {e}")
            return None

        with self._state_lock:
            self._futures.add(future)
        future.add_done_callback(self._release_slot)
        return future

    def _release_slot(self, future: Optional[Future]) -> None:
        with self._state_lock:
            if self._active_uploads > 0:
                self._active_uploads -= 1
            if future is not None:
                self._futures.discard(future)

    # ========================================
    # Upload task
    # ========================================

    def _run_upload(
        self,
        item_id: uuid.UUID,
        source_path: Path,
        destination: DestinationSnapshot
    ) -> UploadResult:
        """Upload one file, move it, and record the outcome on its item."""
        file_name = source_path.name or "unknown"

        logger.info(f"Attempting to upload: {source_path}")
        logger.debug(f"Event code: {destination.value} (version {destination.version})")

        result = UploadResult(
            item_id=item_id,
            source_path=source_path,
            event_code=destination.value,
            success=False
        )

        try:
            response = self.api_client.upload_photo(
                destination.value, source_path, self.api_key
            )
            self.upload_queue.mark_progress(item_id, PROGRESS_SENT)
            result.photo_id = response.photo_id
            result.destination_path = self._move_to_uploaded(source_path)
        except APIError as e:
            result.error = f"API error: {e}"
        except (OSError, ValueError) as e:
            result.error = f"Failed to move file: {e}"
        except Exception as e:
            logger.error(f"Unexpected error uploading {file_name}", exc_info=True)
            result.error = f"Unexpected error: {e}"
        else:
            result.success = True

        if result.success:
            self.upload_queue.mark_completed(item_id)
            self._log_success(file_name, response)
        else:
            self.upload_queue.mark_failed(item_id, f"Upload failed: {result.error}")
            logger.error(f"Upload failed for {file_name}: {result.error}")

        return result

    def _move_to_uploaded(self, source_path: Path) -> Path:
        target = collision_free_destination(source_path, self.uploaded_folder)
        source_path.rename(target)
        logger.debug(f"Moved {source_path.name} to {target}")
        return target

    @staticmethod
    def _log_success(file_name: str, response: UploadResponse) -> None:
        logger.info(f"Upload successful: {file_name} (Photo ID: {response.photo_id or 'N/A'})")
        if response.s3 is not None:
            logger.info(
                f"S3: {response.s3.original_key} in bucket "
                f"{response.s3.bucket} ({response.s3.region})"
            )

    # ========================================
    # Destination
    # ========================================

    def update_destination(self, new_event_code: str) -> bool:
        """Point future uploads at another event.

        Uploads already dispatched keep the event code they started with.

        Returns:
            True if the value changed
        """
        previous = self.destination.update(new_event_code)
        if previous is None:
            return False

        logger.info(f"Event code updated: {previous.value} -> {new_event_code}")
        return True
