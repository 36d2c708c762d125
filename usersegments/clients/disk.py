"""Yandex Disk client used to publish operation reports."""

import csv
import io
import logging
from typing import List, Optional

import httpx

from usersegments.core.exceptions import (
    ReportStorageUnavailableException,
    ReportUploadException,
)

logger = logging.getLogger(__name__)


class YandexDiskClient:
    """
    Uploads CSV reports to Yandex Disk and returns a download link.

    Args:
        token: OAuth token for the Disk REST API.
        base_url: API root, ``https://cloud-api.yandex.net/v1/disk`` by default.
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport, used to stub the API in tests.
    """

    def __init__(
        self,
        token: str,
        base_url: str = "https://cloud-api.yandex.net/v1/disk",
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._token = token
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=self._timeout, transport=self._transport)

    def _auth_headers(self) -> dict:
        return {"Authorization": f"OAuth {self._token}"}

    def is_available(self) -> bool:
        """The API root answers HEAD with 405 when it is up."""
        try:
            with self._client() as client:
                response = client.head(f"{self._base_url}/")
        except httpx.HTTPError:
            logger.warning("Yandex Disk availability probe failed", exc_info=True)
            return False
        return response.status_code == httpx.codes.METHOD_NOT_ALLOWED

    def upload_and_return_download_url(self, name: str, rows: List[str]) -> str:
        """Upload ``rows`` as a one-column CSV file called ``name``."""
        if not self.is_available():
            raise ReportStorageUnavailableException("Yandex Disk is not available")

        buffer = io.StringIO()
        writer = csv.writer(buffer)
        for row in rows:
            writer.writerow([row])
        payload = buffer.getvalue().encode("utf-8")

        with self._client() as client:
            upload_path = self._upload_csv_file(client, name, payload)
            logger.info(f"Uploaded report to Yandex Disk: {upload_path}")
            return self._get_download_url(client, upload_path)

    def _upload_csv_file(self, client: httpx.Client, name: str, payload: bytes) -> str:
        response = client.get(
            f"{self._base_url}/resources/upload",
            params={"path": name, "overwrite": "true"},
            headers=self._auth_headers(),
        )
        if response.status_code != httpx.codes.OK:
            raise ReportUploadException(
                f"Failed to get upload URL: HTTP {response.status_code}"
            )

        upload_href = response.json()["href"]
        response = client.put(upload_href, content=payload)
        if response.status_code != httpx.codes.CREATED:
            raise ReportUploadException(
                f"Failed to upload file: HTTP {response.status_code}"
            )

        return name

    def _get_download_url(self, client: httpx.Client, path: str) -> str:
        response = client.get(
            f"{self._base_url}/resources/download",
            params={"path": path},
            headers=self._auth_headers(),
        )
        if response.status_code != httpx.codes.OK:
            raise ReportUploadException(
                f"Failed to get download URL: HTTP {response.status_code}"
            )

        return response.json()["href"]
