import httpx
import pytest

from usersegments.clients.disk import YandexDiskClient
from usersegments.core.exceptions import (
    ReportStorageUnavailableException,
    ReportUploadException,
)

API = "https://cloud-api.yandex.net/v1/disk"
UPLOAD_HREF = "https://uploader.disk.yandex.net/upload-target/123"
DOWNLOAD_HREF = "https://downloader.disk.yandex.ru/disk/report.csv"


class FakeDisk:
    """Routes requests like the Disk REST API and records them."""

    def __init__(self, upload_status=201, head_status=405):
        self.upload_status = upload_status
        self.head_status = head_status
        self.requests = []
        self.uploaded = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        if request.method == "HEAD":
            return httpx.Response(self.head_status)
        if request.method == "GET" and request.url.path.endswith("/resources/upload"):
            return httpx.Response(200, json={"href": UPLOAD_HREF})
        if request.method == "PUT" and url == UPLOAD_HREF:
            self.uploaded = request.content
            return httpx.Response(self.upload_status)
        if request.method == "GET" and request.url.path.endswith("/resources/download"):
            return httpx.Response(200, json={"href": DOWNLOAD_HREF})
        return httpx.Response(404)


def make_client(fake):
    return YandexDiskClient("secret", base_url=API, transport=httpx.MockTransport(fake))


def test_is_available_expects_method_not_allowed():
    assert make_client(FakeDisk(head_status=405)).is_available() is True
    assert make_client(FakeDisk(head_status=200)).is_available() is False


def test_is_available_on_network_error():
    def unreachable(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = YandexDiskClient("secret", base_url=API, transport=httpx.MockTransport(unreachable))

    assert client.is_available() is False


def test_upload_returns_download_url():
    fake = FakeDisk()

    url = make_client(fake).upload_and_return_download_url(
        "1_2026-03.csv", ["(1, a, add, 2026-03-14 12:00:00)", "(1, a, delete, 2026-03-15 08:00:00)"]
    )

    assert url == DOWNLOAD_HREF
    assert fake.uploaded.decode().splitlines() == [
        '"(1, a, add, 2026-03-14 12:00:00)"',
        '"(1, a, delete, 2026-03-15 08:00:00)"',
    ]
    upload_request = fake.requests[1]
    assert upload_request.headers["Authorization"] == "OAuth secret"
    assert upload_request.url.params["path"] == "1_2026-03.csv"
    assert upload_request.url.params["overwrite"] == "true"
    assert fake.requests[-1].url.params["path"] == "1_2026-03.csv"


def test_upload_when_unavailable():
    fake = FakeDisk(head_status=503)

    with pytest.raises(ReportStorageUnavailableException):
        make_client(fake).upload_and_return_download_url("1.csv", [])

    assert [r.method for r in fake.requests] == ["HEAD"]


def test_upload_failure_status():
    with pytest.raises(ReportUploadException):
        make_client(FakeDisk(upload_status=507)).upload_and_return_download_url("1.csv", ["x"])
