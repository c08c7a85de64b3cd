"""Object storage: buckets of opaque blobs plus short-lived signed URLs.

``LocalObjectStore`` keeps objects under a directory and signs URLs with
HMAC-SHA256; the Flask app serves them at ``/storage/<bucket>/<path>``.
Any store with the same four methods can be swapped in.
"""

import hashlib
import hmac
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Protocol
from urllib.parse import quote, urlencode

from qrstudio.errors import StorageWriteError, UpstreamFetchError, ValidationError
from qrstudio.logging import audit, get_logger, trace

log = get_logger("storage")


class ObjectStore(Protocol):
    def upload(self, bucket: str, path: str, data: bytes, content_type: str) -> None: ...

    def download(self, bucket: str, path: str) -> bytes: ...

    def exists(self, bucket: str, path: str) -> bool: ...

    def create_signed_url(self, bucket: str, path: str, expires_in: int) -> str: ...


def _check_key(bucket: str, path: str) -> None:
    if not bucket or "/" in bucket or bucket in (".", ".."):
        raise ValidationError(f"invalid bucket name: {bucket!r}")
    segments = path.split("/")
    if not path or path.startswith("/") or any(s in ("", ".", "..") for s in segments):
        raise ValidationError(f"invalid object path: {path!r}")


class LocalObjectStore:
    """Directory-backed object store.

    Thread-safe. Writes go to a temp file and are renamed into place, so a
    reader never sees a half-written object.
    """

    def __init__(self, root: str | Path, base_url: str, secret: str):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")
        self._secret = secret.encode("utf-8")
        self._lock = threading.Lock()
        self.root.mkdir(parents=True, exist_ok=True)

    def _file(self, bucket: str, path: str) -> Path:
        _check_key(bucket, path)
        return self.root / bucket / Path(*path.split("/"))

    @trace
    def upload(self, bucket: str, path: str, data: bytes, content_type: str) -> None:
        target = self._file(bucket, path)
        with self._lock:
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp = tempfile.mkstemp(dir=target.parent, prefix=".upload-")
                with os.fdopen(fd, "wb") as f:
                    f.write(data)
                os.replace(tmp, target)
            except OSError as e:
                raise StorageWriteError(f"upload to {bucket}/{path} failed: {e}") from e
        audit("storage.uploaded", logger=log, bucket=bucket, path=path, bytes=len(data), content_type=content_type)

    def download(self, bucket: str, path: str) -> bytes:
        target = self._file(bucket, path)
        try:
            return target.read_bytes()
        except FileNotFoundError:
            raise UpstreamFetchError(f"object not found: {bucket}/{path}") from None

    def exists(self, bucket: str, path: str) -> bool:
        return self._file(bucket, path).is_file()

    def _signature(self, bucket: str, path: str, expires: int) -> str:
        msg = f"{bucket}/{path}:{expires}".encode("utf-8")
        return hmac.new(self._secret, msg, hashlib.sha256).hexdigest()

    def create_signed_url(self, bucket: str, path: str, expires_in: int, now: float | None = None) -> str:
        if not self.exists(bucket, path):
            raise UpstreamFetchError(f"cannot sign missing object: {bucket}/{path}")
        expires = int(now if now is not None else time.time()) + int(expires_in)
        query = urlencode({"expires": expires, "token": self._signature(bucket, path, expires)})
        return f"{self.base_url}/storage/{quote(bucket)}/{quote(path)}?{query}"

    def verify_signature(self, bucket: str, path: str, expires: int, token: str, now: float | None = None) -> bool:
        if int(now if now is not None else time.time()) > expires:
            return False
        return hmac.compare_digest(self._signature(bucket, path, expires), token)
