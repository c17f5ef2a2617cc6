"""
Gallery Uploader
Version: 1.0

Watches a folder for new photos and uploads them to an event gallery.
Tracks per-file progress in an in-memory queue and moves uploaded files
into an "uploaded" subfolder.
"""

__version__ = "1.0.0"

from .logger import get_logger, ActivityLog
from .config import Config, ConfigManager
from .api_client import (
    APIError,
    GalleryAPIClient,
    LocalFileError,
    ResponseDecodeError,
    ServiceError,
    TransportError,
)
from .file_watcher import FolderWatcher, WatchFolderError, is_image_file
from .upload_queue import (
    InvalidTransitionError,
    QueueStats,
    UploadItem,
    UploadQueue,
    UploadState,
    UploadStatus,
)
from .upload_manager import DestinationContext, ManagerStartError, UploadManager
from .session import WatchSession

__all__ = [
    "get_logger",
    "ActivityLog",
    "Config",
    "ConfigManager",
    "APIError",
    "GalleryAPIClient",
    "LocalFileError",
    "ResponseDecodeError",
    "ServiceError",
    "TransportError",
    "FolderWatcher",
    "WatchFolderError",
    "is_image_file",
    "InvalidTransitionError",
    "QueueStats",
    "UploadItem",
    "UploadQueue",
    "UploadState",
    "UploadStatus",
    "DestinationContext",
    "ManagerStartError",
    "UploadManager",
    "WatchSession",
    "__version__"
]
