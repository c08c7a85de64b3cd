"""Test doubles shared across test modules."""

import io

import requests
from PIL import Image

from qrstudio.errors import StorageWriteError, UpstreamFetchError


class MemoryStore:
    """In-memory object store that counts uploads and can fail on demand."""

    def __init__(self):
        self.objects: dict[tuple[str, str], bytes] = {}
        self.uploads: list[tuple[str, str]] = []
        self.fail_paths: set[str] = set()

    def upload(self, bucket, path, data, content_type):
        if any(marker in path for marker in self.fail_paths):
            raise StorageWriteError(f"simulated failure for {path}")
        self.uploads.append((bucket, path))
        self.objects[(bucket, path)] = bytes(data)

    def download(self, bucket, path):
        try:
            return self.objects[(bucket, path)]
        except KeyError:
            raise UpstreamFetchError(f"missing {bucket}/{path}") from None

    def exists(self, bucket, path):
        return (bucket, path) in self.objects

    def create_signed_url(self, bucket, path, expires_in):
        if not self.exists(bucket, path):
            raise UpstreamFetchError(f"missing {bucket}/{path}")
        return f"memory://{bucket}/{path}?ttl={expires_in}"


class FakeLogos:
    """Stands in for LogoFetcher: returns fixed bytes and counts calls."""

    def __init__(self, data: bytes | None = None):
        self.data = data
        self.calls = 0

    def fetch_or_none(self, logo_path):
        self.calls += 1
        return self.data if logo_path else None


class FakeResponse:
    def __init__(self, content: bytes = b"", status: int = 200):
        self.content = content
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class FakeHttp:
    """Minimal requests.Session stand-in recording every GET."""

    def __init__(self, response=None, error: Exception | None = None):
        self.response = response or FakeResponse()
        self.error = error
        self.calls: list[tuple[str, float]] = []

    def get(self, url, timeout=None):
        self.calls.append((url, timeout))
        if self.error is not None:
            raise self.error
        return self.response


def make_png(size=(64, 64), color=(200, 30, 30, 255)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGBA", size, color).save(buf, format="PNG")
    return buf.getvalue()
