"""
Watch session: wires the watcher, ingest worker, queue and upload manager
together for one configured folder and event.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from watchdog.observers import Observer

from .api_client import APIError, GalleryAPIClient
from .config import Config
from .file_watcher import FolderWatcher, WatchFolderError
from .ingest import IngestWorker
from .logger import ActivityLog, attach_activity_log, detach_activity_log, get_logger
from .upload_manager import UploadManager
from .upload_queue import QueueStats, UploadQueue
from .utils import gallery_url, mask_secret

logger = get_logger(__name__)


class ConnectionState(Enum):
    NOT_TESTED = "not_tested"
    TESTING = "testing"
    CONNECTED = "connected"
    FAILED = "failed"


@dataclass(frozen=True)
class ConnectionStatus:
    state: ConnectionState
    message: Optional[str] = None


class WatchSession:
    """Owns the pipeline components for one watch session.

    The queue outlives start/stop cycles; only the maintenance calls on
    ``upload_queue`` ever empty it.
    """

    def __init__(
        self,
        config: Config,
        upload_queue: Optional[UploadQueue] = None,
        api_client: Optional[GalleryAPIClient] = None,
        activity_log: Optional[ActivityLog] = None,
        observer_factory: Callable[[], Observer] = Observer
    ):
        """Initialize session.

        Args:
            config: Validated configuration
            upload_queue: Queue to use (created if omitted)
            api_client: Transport override, otherwise built from config
            activity_log: Operator log sink (created if omitted)
            observer_factory: Builds the watchdog observer
        """
        self.config = config
        self.upload_queue = upload_queue or UploadQueue(thumbnail_size=config.thumbnail_size)
        self.activity_log = attach_activity_log(activity_log or ActivityLog())
        self.connection_status = ConnectionStatus(ConnectionState.NOT_TESTED)

        self._observer_factory = observer_factory

        self.api_client: Optional[GalleryAPIClient] = api_client
        self.watcher: Optional[FolderWatcher] = None
        self.ingest_worker: Optional[IngestWorker] = None
        self.upload_manager: Optional[UploadManager] = None
        self.is_watching = False

    def _get_api_client(self) -> GalleryAPIClient:
        """Return the session's client, building it from config on first use."""
        if self.api_client is not None:
            return self.api_client

        self.api_client = GalleryAPIClient(
            api_endpoint=self.config.api_endpoint,
            api_key=self.config.api_key,
            timeout=self.config.request_timeout,
            verify_ssl=self.config.verify_ssl
        )
        logger.info(f"API client created for endpoint: {self.config.api_endpoint}")
        return self.api_client

    def test_connection(self) -> ConnectionStatus:
        """Run the API key check and remember the outcome."""
        self.connection_status = ConnectionStatus(ConnectionState.TESTING)
        logger.info("Testing connection...")

        client = self._get_api_client()
        try:
            response = client.health_check(self.config.api_key)
        except APIError as e:
            logger.error(f"Connection test failed: {e}")
            self.connection_status = ConnectionStatus(ConnectionState.FAILED, str(e))
        else:
            logger.info(
                f"Connection test successful: {response.message} "
                f"(Timestamp: {response.timestamp})"
            )
            self.connection_status = ConnectionStatus(ConnectionState.CONNECTED, response.message)

        return self.connection_status

    def start(self, background: bool = True) -> None:
        """Start watching and uploading.

        Args:
            background: Run the dispatch tick on its scheduler thread

        Raises:
            WatchFolderError: If no usable watch folder is configured
            ManagerStartError: If the uploaded folder cannot be created
        """
        if self.is_watching:
            logger.warning("Session already watching")
            return

        folder = self.config.watch_path
        if folder is None:
            raise WatchFolderError("Please select a folder to watch first")

        watcher = FolderWatcher(folder, observer_factory=self._observer_factory)

        client = self._get_api_client()

        if self.upload_manager is None or self.upload_manager.watch_folder != watcher.folder:
            self.upload_manager = UploadManager(
                upload_queue=self.upload_queue,
                api_client=client,
                event_code=self.config.event_code,
                watch_folder=watcher.folder,
                api_key=self.config.api_key,
                max_concurrent_uploads=self.config.max_concurrent_uploads,
                tick_interval=self.config.tick_interval_seconds
            )
            logger.info(f"Upload manager created (API key {mask_secret(self.config.api_key)})")
        else:
            self.upload_manager.api_client = client
            self.upload_manager.update_destination(self.config.event_code)

        self.upload_manager.start(background=background)

        try:
            watcher.start()
        except WatchFolderError:
            self.upload_manager.stop()
            raise

        self.watcher = watcher
        self.ingest_worker = IngestWorker(
            watcher.channel,
            self.upload_queue,
            on_idle=watcher.check_health
        )
        self.ingest_worker.start()

        self.is_watching = True
        logger.info("File watcher is now active and monitoring for new image files")

    def stop(self, wait: bool = True) -> None:
        """Stop watching; in-flight uploads finish when ``wait`` is set."""
        if self.watcher is not None:
            self.watcher.stop()
            self.watcher = None

        if self.ingest_worker is not None:
            self.ingest_worker.stop()
            self.ingest_worker = None

        if self.upload_manager is not None:
            self.upload_manager.stop(wait=wait)

        if self.is_watching:
            logger.info("File watching stopped")
        self.is_watching = False

    def close(self) -> None:
        """Stop everything and release the operator log."""
        self.stop()
        if self.api_client is not None:
            self.api_client.close()
            self.api_client = None
        detach_activity_log(self.activity_log)

    def update_event_code(self, event_code: str) -> bool:
        """Change the destination for uploads dispatched from now on."""
        self.config.event_code = event_code
        if self.upload_manager is None:
            return False
        return self.upload_manager.update_destination(event_code)

    def stats(self) -> QueueStats:
        return self.upload_queue.stats()

    def gallery_url(self) -> str:
        return gallery_url(self.config.api_endpoint, self.config.event_code)

    @property
    def watch_folder(self) -> Optional[Path]:
        return self.config.watch_path

    def __enter__(self) -> "WatchSession":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
