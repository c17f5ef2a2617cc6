"""
Gallery service API client.
Handles the connection check and photo uploads against the remote gallery.
"""

import mimetypes
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Union

import requests
from pydantic import BaseModel, ValidationError

from .logger import get_logger
from .utils import mask_secret

logger = get_logger(__name__)

DEFAULT_MIME_TYPE = "image/jpeg"


# ========================================
# Errors
# ========================================

class APIError(Exception):
    """Base class for every gallery client failure."""


class TransportError(APIError):
    """The HTTP request itself failed (DNS, connection, TLS, timeout)."""

    def __init__(self, error: requests.RequestException):
        super().__init__(f"HTTP error: {error}")
        self.error = error


class ResponseDecodeError(APIError):
    """The response body was not the JSON document we expect."""

    def __init__(self, detail: str):
        super().__init__(f"JSON error: {detail}")
        self.detail = detail


class LocalFileError(APIError):
    """The file to upload could not be read."""

    def __init__(self, detail: Union[str, OSError]):
        super().__init__(f"IO error: {detail}")
        self.detail = detail


class ServiceError(APIError):
    """The service answered but reported a failure."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(f"API returned error: {message}")
        self.message = message
        self.status_code = status_code


# ========================================
# Response models
# ========================================

class HealthResponse(BaseModel):
    success: bool
    message: str
    timestamp: str


class S3Info(BaseModel):
    original_key: str
    thumb_key: Optional[str] = None
    bucket: str
    region: str


class MetaInfo(BaseModel):
    original_name: str
    local_path: str
    shot_at: str
    checksum: Optional[str] = None
    event_code: str


class UploadResponse(BaseModel):
    success: bool
    message: str
    photo_id: Optional[str] = None
    s3: Optional[S3Info] = None
    meta: Optional[MetaInfo] = None


class GalleryAPIClient:
    """Client for the gallery HTTP API.

    The client holds no per-upload state; one instance is shared by every
    upload task.
    """

    def __init__(
        self,
        api_endpoint: str,
        api_key: str,
        timeout: Optional[float] = None,
        verify_ssl: bool = True,
        session: Optional[requests.Session] = None
    ):
        """Initialize API client.

        Args:
            api_endpoint: Base URL of the gallery service
            api_key: Default credential, used when a call passes none
            timeout: Request timeout in seconds (None waits indefinitely)
            verify_ssl: Verify SSL certificates
            session: Optional preconfigured requests session
        """
        self.api_endpoint = api_endpoint.rstrip('/')
        self.api_key = api_key
        self.timeout = timeout
        self.verify_ssl = verify_ssl

        self.session = session or requests.Session()
        self.session.headers.update({'User-Agent': 'GalleryUploader/1.0'})

    def _make_request(self, method: str, endpoint: str, **kwargs) -> requests.Response:
        """Send a request and map transport failures.

        Args:
            method: HTTP method
            endpoint: Path below the base URL
            **kwargs: Passed through to requests

        Returns:
            Raw response

        Raises:
            TransportError: On network failures
        """
        url = f"{self.api_endpoint}{endpoint}"
        logger.debug(f"{method} {url}")

        try:
            return self.session.request(
                method=method,
                url=url,
                timeout=self.timeout,
                verify=self.verify_ssl,
                **kwargs
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Request failed: {url} - {e}")
            raise TransportError(e) from e

    @staticmethod
    def _parse(response: requests.Response, model):
        """Classify a response into a model instance or an APIError.

        A non-2xx status becomes a ServiceError carrying the body. A body
        that parses but reports ``success: false`` becomes a ServiceError
        carrying the service's message.
        """
        if not response.ok:
            logger.error(f"HTTP error {response.status_code}: {response.url}")
            raise ServiceError(
                f"HTTP {response.status_code}: {response.text}",
                status_code=response.status_code
            )

        try:
            payload: Dict[str, Any] = response.json()
        except ValueError as e:
            raise ResponseDecodeError(str(e)) from e

        try:
            parsed = model.model_validate(payload)
        except ValidationError as e:
            raise ResponseDecodeError(str(e)) from e

        if not parsed.success:
            raise ServiceError(parsed.message, status_code=response.status_code)

        return parsed

    # ========================================
    # Health
    # ========================================

    def health_check(self, api_key: Optional[str] = None) -> HealthResponse:
        """Validate the API key against the service.

        GET /check-api-key?api_key=<key>

        Args:
            api_key: Credential to check (defaults to the client's key)

        Returns:
            HealthResponse

        Raises:
            APIError: On any failure
        """
        api_key = api_key if api_key is not None else self.api_key
        response = self._make_request(
            'GET',
            '/check-api-key',
            params={'api_key': api_key}
        )
        return self._parse(response, HealthResponse)

    def ping(self) -> bool:
        """Check connectivity and credentials.

        Returns:
            True if the health check succeeds
        """
        try:
            self.health_check()
            return True
        except APIError as e:
            logger.warning(f"API ping failed: {e}")
            return False

    # ========================================
    # Uploads
    # ========================================

    def upload_photo(
        self,
        event_code: str,
        file_path: Path,
        api_key: Optional[str] = None
    ) -> UploadResponse:
        """Upload one photo to an event gallery.

        POST /api/gallery/{event_code}/photos (multipart)

        Args:
            event_code: Destination event
            file_path: Local file to send
            api_key: Credential (defaults to the client's key)

        Returns:
            UploadResponse with photo_id and storage info when available

        Raises:
            APIError: On any failure
        """
        api_key = api_key if api_key is not None else self.api_key
        file_path = Path(file_path)
        endpoint = f"/api/gallery/{event_code}/photos"

        logger.debug(
            f"Uploading {file_path} to {self.api_endpoint}{endpoint} "
            f"(key {mask_secret(api_key)})"
        )

        file_name = file_path.name
        if not file_name:
            raise LocalFileError("Invalid file path")

        try:
            content = file_path.read_bytes()
        except OSError as e:
            raise LocalFileError(e) from e

        logger.debug(f"Read {file_name}: {len(content)} bytes")

        mime_type = mimetypes.guess_type(file_name)[0] or DEFAULT_MIME_TYPE

        response = self._make_request(
            'POST',
            endpoint,
            files={'original_file': (file_name, content, mime_type)},
            data={
                'api_key': api_key,
                'original_name': file_name,
                'local_path': str(file_path),
                'shot_at': datetime.now(timezone.utc).isoformat(),
            }
        )

        result = self._parse(response, UploadResponse)
        logger.debug(f"Upload accepted: {file_name} (photo_id={result.photo_id})")
        return result

    def close(self) -> None:
        """Close HTTP session."""
        self.session.close()
