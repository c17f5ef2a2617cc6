"""
Shared fixtures for Gallery Uploader tests.
"""

import logging
from unittest.mock import MagicMock

import pytest

from gallery_uploader.api_client import GalleryAPIClient, UploadResponse
from gallery_uploader.logger import ROOT_LOGGER_NAME, ActivityLog
from gallery_uploader.upload_queue import UploadQueue

from tests.helpers import write_image


@pytest.fixture
def watch_folder(tmp_path):
    """Empty folder to watch."""
    folder = tmp_path / "watch"
    folder.mkdir()
    return folder


@pytest.fixture
def photo(watch_folder):
    """A real JPEG named photo.jpg inside the watch folder."""
    return write_image(watch_folder / "photo.jpg")


@pytest.fixture
def upload_queue():
    """Queue without thumbnail decoding."""
    return UploadQueue(thumbnail_generator=None)


@pytest.fixture
def success_response():
    return UploadResponse(
        success=True,
        message="Photo uploaded",
        photo_id="photo-123",
        s3={
            "original_key": "events/EVT1/photo.jpg",
            "thumb_key": "events/EVT1/thumb/photo.jpg",
            "bucket": "gallery",
            "region": "eu-west-1",
        },
    )


@pytest.fixture
def mock_client(success_response):
    """Transport that always accepts uploads."""
    client = MagicMock(spec=GalleryAPIClient)
    client.upload_photo.return_value = success_response
    return client


@pytest.fixture(autouse=True)
def detach_activity_logs():
    """Drop operator log handlers left behind by a test."""
    yield
    package_logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(package_logger.handlers):
        if isinstance(handler, ActivityLog):
            package_logger.removeHandler(handler)
