"""
Tests for the upload dispatcher.

Ticks are driven by hand (start(background=False)) unless a test is about
the scheduler itself.
"""

import threading

import pytest

from gallery_uploader.api_client import LocalFileError, ServiceError
from gallery_uploader.upload_manager import (
    DestinationContext,
    ManagerStartError,
    UploadManager,
)
from gallery_uploader.upload_queue import UploadState

from tests.helpers import wait_for, write_image


@pytest.fixture
def make_manager(upload_queue, mock_client, watch_folder):
    managers = []

    def factory(**kwargs):
        options = dict(
            upload_queue=upload_queue,
            api_client=mock_client,
            event_code="EVT1",
            watch_folder=watch_folder,
            api_key="secret-key-123456",
        )
        options.update(kwargs)
        manager = UploadManager(**options)
        managers.append(manager)
        return manager

    yield factory

    for manager in managers:
        manager.stop()


class BlockingUpload:
    """upload_photo replacement that holds each call until released."""

    def __init__(self, response):
        self.response = response
        self.release = threading.Event()
        self.started = threading.Semaphore(0)
        self.event_codes = []
        self._lock = threading.Lock()

    def __call__(self, event_code, file_path, api_key):
        with self._lock:
            self.event_codes.append(event_code)
        self.started.release()
        assert self.release.wait(timeout=10)
        return self.response

    def wait_started(self, count=1):
        for _ in range(count):
            assert self.started.acquire(timeout=5)


# ============================================================================
# LIFECYCLE
# ============================================================================

def test_start_creates_uploaded_folder(make_manager, watch_folder):
    manager = make_manager()
    manager.start(background=False)

    assert (watch_folder / "uploaded").is_dir()
    assert manager.is_running()


def test_start_is_idempotent(make_manager):
    manager = make_manager()
    manager.start(background=False)
    executor = manager._executor

    manager.start(background=False)

    assert manager._executor is executor


def test_start_fails_when_uploaded_cannot_be_created(make_manager, watch_folder):
    (watch_folder / "uploaded").write_text("a file, not a folder")
    manager = make_manager()

    with pytest.raises(ManagerStartError):
        manager.start(background=False)

    assert not manager.is_running()


def test_tick_before_start_does_nothing(make_manager, upload_queue, photo):
    upload_queue.add(photo)
    manager = make_manager()

    assert manager.tick() is None
    assert upload_queue.stats().queued == 1


def test_stop_prevents_further_claims(make_manager, upload_queue, watch_folder, mock_client):
    manager = make_manager()
    manager.start(background=False)
    manager.stop()

    write_image(watch_folder / "photo.jpg")
    upload_queue.add(watch_folder / "photo.jpg")

    assert manager.tick() is None
    assert upload_queue.stats().queued == 1
    mock_client.upload_photo.assert_not_called()


def test_invalid_ceiling_rejected(make_manager):
    with pytest.raises(ValueError):
        make_manager(max_concurrent_uploads=0)


# ============================================================================
# SUCCESSFUL UPLOADS
# ============================================================================

def test_successful_upload_moves_file(make_manager, upload_queue, mock_client, photo, watch_folder):
    item_id = upload_queue.add(photo)
    manager = make_manager()
    manager.start(background=False)

    result = manager.tick().result(timeout=5)

    assert result.success
    assert result.photo_id == "photo-123"
    assert result.event_code == "EVT1"

    item = upload_queue.snapshot(item_id)
    assert item.state is UploadState.COMPLETED
    assert item.progress == 1.0
    assert item.completed_at is not None

    assert (watch_folder / "uploaded" / "photo.jpg").exists()
    assert not photo.exists()

    mock_client.upload_photo.assert_called_once_with("EVT1", photo, "secret-key-123456")


def test_name_collision_renames_instead_of_overwriting(make_manager, upload_queue, photo, watch_folder):
    uploaded = watch_folder / "uploaded"
    uploaded.mkdir()
    existing = uploaded / "photo.jpg"
    existing.write_bytes(b"earlier upload")
    original_bytes = photo.read_bytes()

    item_id = upload_queue.add(photo)
    manager = make_manager()
    manager.start(background=False)

    result = manager.tick().result(timeout=5)

    assert upload_queue.snapshot(item_id).state is UploadState.COMPLETED
    assert existing.read_bytes() == b"earlier upload"
    assert result.destination_path != existing
    assert result.destination_path.parent == uploaded
    assert result.destination_path.name.startswith("photo_")
    assert result.destination_path.suffix == ".jpg"
    assert result.destination_path.read_bytes() == original_bytes
    assert not photo.exists()


# ============================================================================
# FAILURES
# ============================================================================

def test_service_failure_marks_item_failed(make_manager, upload_queue, mock_client, photo):
    mock_client.upload_photo.side_effect = ServiceError("quota exceeded")
    item_id = upload_queue.add(photo)
    manager = make_manager()
    manager.start(background=False)

    result = manager.tick().result(timeout=5)

    assert not result.success
    item = upload_queue.snapshot(item_id)
    assert item.state is UploadState.FAILED
    assert "quota exceeded" in item.status.message
    assert item.status.message.startswith("Upload failed:")
    assert item.progress == pytest.approx(0.1)
    assert item.completed_at is not None
    assert photo.exists()


def test_failed_item_is_not_retried(make_manager, upload_queue, mock_client, photo):
    mock_client.upload_photo.side_effect = ServiceError("quota exceeded")
    upload_queue.add(photo)
    manager = make_manager()
    manager.start(background=False)

    manager.tick().result(timeout=5)

    assert manager.tick() is None
    assert mock_client.upload_photo.call_count == 1
    assert upload_queue.add(photo) is None


def test_local_file_error_marks_failed(make_manager, upload_queue, mock_client, photo):
    mock_client.upload_photo.side_effect = LocalFileError("Invalid file path")
    item_id = upload_queue.add(photo)
    manager = make_manager()
    manager.start(background=False)

    manager.tick().result(timeout=5)

    assert upload_queue.snapshot(item_id).state is UploadState.FAILED


def test_move_failure_marks_failed(make_manager, upload_queue, mock_client, photo, success_response):
    def upload_then_vanish(event_code, file_path, api_key):
        file_path.unlink()
        return success_response

    mock_client.upload_photo.side_effect = upload_then_vanish
    item_id = upload_queue.add(photo)
    manager = make_manager()
    manager.start(background=False)

    result = manager.tick().result(timeout=5)

    item = upload_queue.snapshot(item_id)
    assert item.state is UploadState.FAILED
    assert "Failed to move file" in item.status.message
    assert item.progress == pytest.approx(0.9)
    assert result.error.startswith("Failed to move file")


def test_unexpected_error_is_contained(make_manager, upload_queue, mock_client, photo):
    mock_client.upload_photo.side_effect = KeyError("surprise")
    item_id = upload_queue.add(photo)
    manager = make_manager()
    manager.start(background=False)

    manager.tick().result(timeout=5)

    assert upload_queue.snapshot(item_id).state is UploadState.FAILED


# ============================================================================
# DISPATCH RULES
# ============================================================================

def test_one_claim_per_tick(make_manager, upload_queue, mock_client, watch_folder, success_response):
    blocker = BlockingUpload(success_response)
    mock_client.upload_photo.side_effect = blocker
    for i in range(3):
        upload_queue.add(write_image(watch_folder / f"img_{i}.jpg"))

    manager = make_manager()
    manager.start(background=False)

    first = manager.tick()
    blocker.wait_started()

    stats = upload_queue.stats()
    assert stats.active == 1
    assert stats.queued == 2
    assert upload_queue.active_items()[0].display_name == "img_0.jpg"

    blocker.release.set()
    first.result(timeout=5)


def test_concurrency_ceiling_is_enforced(make_manager, upload_queue, mock_client, watch_folder, success_response):
    blocker = BlockingUpload(success_response)
    mock_client.upload_photo.side_effect = blocker
    for i in range(3):
        upload_queue.add(write_image(watch_folder / f"img_{i}.jpg"))

    manager = make_manager(max_concurrent_uploads=2)
    manager.start(background=False)

    futures = [manager.tick(), manager.tick()]
    blocker.wait_started(2)

    assert manager.tick() is None
    assert manager.active_uploads == 2
    assert upload_queue.stats().queued == 1

    blocker.release.set()
    for future in futures:
        future.result(timeout=5)

    assert wait_for(lambda: manager.active_uploads == 0)
    last = manager.tick()
    assert last is not None
    last.result(timeout=5)
    assert upload_queue.stats().completed == 3


def test_in_flight_upload_keeps_old_destination(make_manager, upload_queue, mock_client, watch_folder, success_response):
    blocker = BlockingUpload(success_response)
    mock_client.upload_photo.side_effect = blocker
    upload_queue.add(write_image(watch_folder / "first.jpg"))
    upload_queue.add(write_image(watch_folder / "second.jpg"))

    manager = make_manager()
    manager.start(background=False)

    first = manager.tick()
    blocker.wait_started()

    assert manager.update_destination("EVT2") is True

    second = manager.tick()
    blocker.wait_started()
    blocker.release.set()

    assert first.result(timeout=5).event_code == "EVT1"
    assert second.result(timeout=5).event_code == "EVT2"
    assert blocker.event_codes == ["EVT1", "EVT2"]


def test_update_destination_same_value_is_noop(make_manager):
    manager = make_manager()
    version = manager.destination.snapshot().version

    assert manager.update_destination("EVT1") is False
    assert manager.destination.snapshot().version == version


def test_destination_context_versions():
    context = DestinationContext("A")
    assert context.snapshot().version == 0

    previous = context.update("B")
    assert previous.value == "A"
    assert context.snapshot().value == "B"
    assert context.snapshot().version == 1

    assert context.update("B") is None


def test_background_scheduler_uploads(make_manager, upload_queue, photo, watch_folder):
    item_id = upload_queue.add(photo)
    manager = make_manager(tick_interval=0.1)
    manager.start()

    assert wait_for(lambda: upload_queue.snapshot(item_id).state is UploadState.COMPLETED)
    assert (watch_folder / "uploaded" / "photo.jpg").exists()

    manager.stop()
    assert not manager.is_running()


def test_stop_waits_for_in_flight_upload(make_manager, upload_queue, mock_client, photo, success_response):
    blocker = BlockingUpload(success_response)
    mock_client.upload_photo.side_effect = blocker
    item_id = upload_queue.add(photo)

    manager = make_manager()
    manager.start(background=False)
    manager.tick()
    blocker.wait_started()

    stopper = threading.Thread(target=manager.stop)
    stopper.start()
    blocker.release.set()
    stopper.join(timeout=5)

    assert not stopper.is_alive()
    assert upload_queue.snapshot(item_id).state is UploadState.COMPLETED
