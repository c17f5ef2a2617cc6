"""
In-memory upload queue for the watch session.

Architecture:
    - Ordered list of UploadItems, insertion order is dispatch order
    - One item per source path across every status (dedup)
    - Single re-entrant lock guards all reads and writes
    - Best-effort thumbnails generated outside the lock

Flow:
    1. add(path) → dedup check → thumbnail → append as Queued
    2. claim_next() → earliest Queued item flipped to Uploading
    3. Upload task → mark_progress / mark_completed / mark_failed by id
    4. Maintenance → clear_completed / clear_failed / clear_all
"""

import copy
import os
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from PIL import Image

from .logger import get_logger

logger = get_logger(__name__)

DEFAULT_THUMBNAIL_SIZE = 100

PROGRESS_STARTED = 0.1
PROGRESS_SENT = 0.9
PROGRESS_DONE = 1.0


class InvalidTransitionError(RuntimeError):
    """Raised when an item is asked to move backwards or out of a terminal state."""


class UploadState(Enum):
    """Lifecycle states of an upload item."""
    QUEUED = "queued"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"


_ALLOWED_TRANSITIONS = {
    UploadState.QUEUED: {UploadState.UPLOADING},
    UploadState.UPLOADING: {UploadState.COMPLETED, UploadState.FAILED},
    UploadState.COMPLETED: set(),
    UploadState.FAILED: set(),
}


@dataclass(frozen=True)
class UploadStatus:
    """Item status. Only FAILED carries a message."""
    state: UploadState
    message: Optional[str] = None

    @classmethod
    def queued(cls) -> "UploadStatus":
        return cls(UploadState.QUEUED)

    @classmethod
    def uploading(cls) -> "UploadStatus":
        return cls(UploadState.UPLOADING)

    @classmethod
    def completed(cls) -> "UploadStatus":
        return cls(UploadState.COMPLETED)

    @classmethod
    def failed(cls, message: str) -> "UploadStatus":
        return cls(UploadState.FAILED, message)

    @property
    def is_terminal(self) -> bool:
        return self.state in (UploadState.COMPLETED, UploadState.FAILED)

    def __str__(self) -> str:
        if self.state is UploadState.FAILED:
            return f"Failed: {self.message}"
        return self.state.value.capitalize()


@dataclass(frozen=True)
class Thumbnail:
    """Small RGB preview (raw 8-bit pixels, row-major)."""
    width: int
    height: int
    data: bytes


ThumbnailGenerator = Callable[[Path, int], Optional[Thumbnail]]


def generate_thumbnail(file_path: Path, size: int = DEFAULT_THUMBNAIL_SIZE) -> Thumbnail:
    """Decode an image and shrink it to fit a size x size box.

    Raises whatever Pillow raises for unreadable files.
    """
    with Image.open(file_path) as img:
        img.thumbnail((size, size))
        rgb = img.convert("RGB")
        return Thumbnail(width=rgb.width, height=rgb.height, data=rgb.tobytes())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UploadItem:
    """One file's journey through the pipeline."""

    def __init__(self, source_path: Union[str, Path]):
        self.id: uuid.UUID = uuid.uuid4()
        self._source_path = normalize_path(source_path)
        self.display_name: str = self._source_path.name
        self.status: UploadStatus = UploadStatus.queued()
        self.added_at: datetime = _utcnow()
        self.started_at: Optional[datetime] = None
        self.completed_at: Optional[datetime] = None
        self.progress: float = 0.0
        self.thumbnail: Optional[Thumbnail] = None

    @property
    def source_path(self) -> Path:
        return self._source_path

    @property
    def state(self) -> UploadState:
        return self.status.state

    def _transition(self, status: UploadStatus) -> None:
        if status.state not in _ALLOWED_TRANSITIONS[self.status.state]:
            raise InvalidTransitionError(
                f"{self.display_name}: cannot move from "
                f"{self.status.state.value} to {status.state.value}"
            )
        self.status = status

    def start_upload(self) -> None:
        """Queued → Uploading."""
        self._transition(UploadStatus.uploading())
        self.started_at = _utcnow()
        self.progress = PROGRESS_STARTED

    def update_progress(self, progress: float) -> None:
        self.progress = min(max(progress, 0.0), 1.0)

    def complete_upload(self) -> None:
        """Uploading → Completed."""
        self._transition(UploadStatus.completed())
        self.completed_at = _utcnow()
        self.progress = PROGRESS_DONE

    def fail_upload(self, error: str) -> None:
        """Uploading → Failed. Progress is left where it was."""
        self._transition(UploadStatus.failed(error))
        self.completed_at = _utcnow()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'id': str(self.id),
            'source_path': str(self.source_path),
            'display_name': self.display_name,
            'status': self.status.state.value,
            'error_message': self.status.message,
            'added_at': self.added_at.isoformat(),
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'progress': self.progress,
            'has_thumbnail': self.thumbnail is not None,
        }

    def __repr__(self) -> str:
        return f"UploadItem(id={self.id}, name={self.display_name!r}, status={self.status})"


def normalize_path(path: Union[str, Path]) -> Path:
    """Absolute, normalized form of a path, used as the dedup key.

    Collapses ".." segments without resolving symlinks.
    """
    return Path(os.path.normpath(Path(path).expanduser().absolute()))


@dataclass(frozen=True)
class QueueStats:
    total: int = 0
    queued: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            'total': self.total,
            'queued': self.queued,
            'active': self.active,
            'completed': self.completed,
            'failed': self.failed,
        }


class UploadQueue:
    """
    Ordered, in-memory upload queue.

    Features:
        - Deduplicated insertion keyed by source path
        - FIFO claiming of queued items
        - Per-id status updates from concurrent upload tasks
        - Status counts for display

    ``lock`` is public: callers that need several operations to be atomic
    (for example ``next_queued`` followed by ``start_upload``) hold it
    around the whole sequence. Every method also takes it, so the lock is
    re-entrant.
    """

    def __init__(
        self,
        thumbnail_size: int = DEFAULT_THUMBNAIL_SIZE,
        thumbnail_generator: Optional[ThumbnailGenerator] = generate_thumbnail
    ):
        """
        Initialize upload queue.

        Args:
            thumbnail_size: Longest edge of generated previews
            thumbnail_generator: Callable(path, size) returning a Thumbnail,
                or None to skip previews entirely
        """
        self.lock = threading.RLock()
        self._items: List[UploadItem] = []
        self.thumbnail_size = thumbnail_size
        self.thumbnail_generator = thumbnail_generator

    def _contains_path(self, path: Path) -> bool:
        return any(item.source_path == path for item in self._items)

    def _make_thumbnail(self, path: Path) -> Optional[Thumbnail]:
        if self.thumbnail_generator is None:
            return None
        try:
            return self.thumbnail_generator(path, self.thumbnail_size)
        except Exception as e:
            logger.debug(f"Failed to generate thumbnail for {path}: {e}")
            return None

    def add(self, file_path: Union[str, Path]) -> Optional[uuid.UUID]:
        """
        Add a file to the queue.

        Args:
            file_path: Path of the file to upload

        Returns:
            New item id, or None if the path is already tracked (any status)
        """
        path = normalize_path(file_path)

        with self.lock:
            if self._contains_path(path):
                logger.debug(f"File already exists in queue: {path}")
                return None

        # Decoding happens without the lock held
        item = UploadItem(path)
        item.thumbnail = self._make_thumbnail(path)
        if item.thumbnail is None:
            logger.debug(f"No thumbnail for: {path}")

        with self.lock:
            # Another producer may have inserted the same path meanwhile
            if self._contains_path(path):
                logger.debug(f"File already exists in queue: {path}")
                return None
            self._items.append(item)
            total = len(self._items)

        logger.info(f"Added to upload queue: {item.display_name} (ID: {item.id}, total: {total})")
        return item.id

    def next_queued(self) -> Optional[UploadItem]:
        """
        Earliest-inserted item that is still queued.

        Hold ``lock`` across this call and the subsequent ``start_upload``;
        otherwise two callers may see the same item. Prefer ``claim_next``.

        Returns:
            Mutable item handle or None
        """
        with self.lock:
            for item in self._items:
                if item.state is UploadState.QUEUED:
                    return item
            return None

    def claim_next(self) -> Optional[UploadItem]:
        """
        Atomically take the next queued item and mark it uploading.

        Returns:
            Snapshot of the claimed item, or None if nothing is queued
        """
        with self.lock:
            item = self.next_queued()
            if item is None:
                return None
            item.start_upload()
            return copy.copy(item)

    def get_by_id(self, item_id: uuid.UUID) -> Optional[UploadItem]:
        """Mutable handle to an item. Hold ``lock`` while mutating it."""
        with self.lock:
            for item in self._items:
                if item.id == item_id:
                    return item
            return None

    def snapshot(self, item_id: uuid.UUID) -> Optional[UploadItem]:
        """Read-only copy of an item."""
        with self.lock:
            item = self.get_by_id(item_id)
            return copy.copy(item) if item is not None else None

    def _update(self, item_id: uuid.UUID, action: Callable[[UploadItem], None]) -> bool:
        with self.lock:
            item = self.get_by_id(item_id)
            if item is None:
                logger.warning(f"Upload item {item_id} no longer in queue")
                return False
            action(item)
            return True

    def mark_progress(self, item_id: uuid.UUID, progress: float) -> bool:
        return self._update(item_id, lambda item: item.update_progress(progress))

    def mark_completed(self, item_id: uuid.UUID) -> bool:
        """Mark item as successfully uploaded."""
        return self._update(item_id, lambda item: item.complete_upload())

    def mark_failed(self, item_id: uuid.UUID, error_message: str) -> bool:
        """Mark item as failed (terminal, no retry)."""
        return self._update(item_id, lambda item: item.fail_upload(error_message))

    def _filter(self, state: Optional[UploadState] = None) -> List[UploadItem]:
        with self.lock:
            return [
                copy.copy(item) for item in self._items
                if state is None or item.state is state
            ]

    def items(self) -> List[UploadItem]:
        """Copies of every item, in insertion order."""
        return self._filter()

    def queued_items(self) -> List[UploadItem]:
        return self._filter(UploadState.QUEUED)

    def active_items(self) -> List[UploadItem]:
        return self._filter(UploadState.UPLOADING)

    def completed_items(self) -> List[UploadItem]:
        return self._filter(UploadState.COMPLETED)

    def failed_items(self) -> List[UploadItem]:
        return self._filter(UploadState.FAILED)

    def stats(self) -> QueueStats:
        """Count items per status."""
        counts = {state: 0 for state in UploadState}
        with self.lock:
            for item in self._items:
                counts[item.state] += 1
            total = len(self._items)

        return QueueStats(
            total=total,
            queued=counts[UploadState.QUEUED],
            active=counts[UploadState.UPLOADING],
            completed=counts[UploadState.COMPLETED],
            failed=counts[UploadState.FAILED],
        )

    def remove(self, item_id: uuid.UUID) -> Optional[UploadItem]:
        """Remove item from queue (any status)."""
        with self.lock:
            for index, item in enumerate(self._items):
                if item.id == item_id:
                    return self._items.pop(index)
            return None

    def _retain(self, keep: Callable[[UploadItem], bool]) -> int:
        with self.lock:
            before = len(self._items)
            self._items = [item for item in self._items if keep(item)]
            return before - len(self._items)

    def clear_completed(self) -> int:
        """Drop completed items. Returns the number removed."""
        removed = self._retain(lambda item: item.state is not UploadState.COMPLETED)
        logger.info(f"Cleared {removed} completed items")
        return removed

    def clear_failed(self) -> int:
        """Drop failed items so their paths can be submitted again."""
        removed = self._retain(lambda item: item.state is not UploadState.FAILED)
        logger.info(f"Cleared {removed} failed items")
        return removed

    def clear_all(self) -> int:
        removed = self._retain(lambda item: False)
        logger.info(f"Cleared {removed} items")
        return removed

    def __len__(self) -> int:
        with self.lock:
            return len(self._items)
