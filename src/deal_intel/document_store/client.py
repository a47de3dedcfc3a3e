"""
Document store API client.

The store keeps uploaded deal documents under opaque file references. A
reference resolves to a (possibly short-lived) download URL, which is then
fetched as raw bytes.
"""

import logging

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..errors import DealIntelError, DocumentNotFoundError

logger = logging.getLogger(__name__)


class DocumentStoreError(DealIntelError):
    """Base exception for document store client errors."""


class DocumentStoreAPIError(DocumentStoreError):
    """Store returned an error response."""

    def __init__(self, status_code: int, message: str, response_body: str | None = None):
        self.status_code = status_code
        self.message = message
        self.response_body = response_body
        super().__init__(f"Document store error {status_code}: {message}")


class DocumentStoreConnectionError(DocumentStoreError):
    """Failed to reach the document store."""


class DocumentStoreClient:
    """
    Client for the document store HTTP API.

    Features:
    - Resolve a file reference to a download URL
    - Download file bytes (absolute or store-relative URLs)
    - Automatic retry with backoff on 429/5xx
    """

    DEFAULT_TIMEOUT = 30

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = 3,
        backoff_factor: float = 0.5,
    ):
        """
        Initialize the client.

        Args:
            base_url: Store URL (e.g., "http://localhost:8080")
            token: Bearer token; omitted from headers when empty
            timeout: Request timeout in seconds
            max_retries: Maximum retry attempts for transient failures
            backoff_factor: Backoff factor for retries
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

        self.session = requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def _request(self, url: str, params: dict | None = None) -> requests.Response:
        """GET with error mapping."""
        if not url.startswith(("http://", "https://")):
            url = f"{self.base_url}{url}"

        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
        except requests.exceptions.ConnectionError as e:
            raise DocumentStoreConnectionError(
                f"Failed to connect to document store at {self.base_url}: {e}"
            ) from e
        except requests.exceptions.Timeout as e:
            raise DocumentStoreConnectionError(f"Request to document store timed out: {e}") from e
        except requests.exceptions.RequestException as e:
            raise DocumentStoreError(f"Request failed: {e}") from e

        if not response.ok:
            raise DocumentStoreAPIError(
                status_code=response.status_code,
                message=response.reason or "",
                response_body=response.text,
            )
        return response

    def test_connection(self) -> bool:
        """Check that the store answers."""
        try:
            self._request("/api/health")
            return True
        except DocumentStoreError as e:
            logger.debug(f"Document store connection test failed: {e}")
            return False

    def get_file_url(self, file_ref: str) -> str | None:
        """
        Resolve a file reference to a download URL.

        Returns:
            The URL, or None when the store does not know the reference
        """
        try:
            response = self._request(f"/api/files/{file_ref}")
        except DocumentStoreAPIError as e:
            if e.status_code == 404:
                return None
            raise

        url = response.json().get("url")
        return url or None

    def download(self, url: str) -> bytes:
        """
        Download file bytes.

        Raises:
            DocumentNotFoundError: If the URL no longer resolves (404/410)
        """
        try:
            response = self._request(url)
        except DocumentStoreAPIError as e:
            if e.status_code in (404, 410):
                raise DocumentNotFoundError(f"File not found in storage: {url}") from e
            raise
        logger.debug(f"Downloaded {len(response.content)} bytes from {url}")
        return response.content

    def close(self) -> None:
        self.session.close()
