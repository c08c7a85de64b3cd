from urllib.parse import parse_qs, urlsplit

import pytest

from qrstudio.errors import StorageWriteError, UpstreamFetchError, ValidationError
from qrstudio.storage import LocalObjectStore


@pytest.fixture
def local(tmp_path):
    return LocalObjectStore(tmp_path / "objects", "http://files.test/", "secret")


def test_upload_then_download(local):
    local.upload("qr-logos", "logos/u-1/p-1.png", b"abc", "image/png")
    assert local.exists("qr-logos", "logos/u-1/p-1.png")
    assert local.download("qr-logos", "logos/u-1/p-1.png") == b"abc"


def test_upload_overwrites_atomically(local, tmp_path):
    local.upload("b", "a/x.pdf", b"one", "application/pdf")
    local.upload("b", "a/x.pdf", b"two", "application/pdf")
    assert local.download("b", "a/x.pdf") == b"two"
    leftovers = [p.name for p in (tmp_path / "objects" / "b" / "a").iterdir()]
    assert leftovers == ["x.pdf"]


def test_missing_object(local):
    assert not local.exists("b", "nope.png")
    with pytest.raises(UpstreamFetchError):
        local.download("b", "nope.png")
    with pytest.raises(UpstreamFetchError):
        local.create_signed_url("b", "nope.png", 60)


@pytest.mark.parametrize("bucket,path", [
    ("b", "../escape.png"),
    ("b", "/abs.png"),
    ("b", "a//b.png"),
    ("../b", "x.png"),
    ("", "x.png"),
])
def test_keys_cannot_escape_the_root(local, bucket, path):
    with pytest.raises(ValidationError):
        local.upload(bucket, path, b"x", "image/png")


def test_write_failure_is_a_storage_error(local, tmp_path):
    # a file where a directory is needed
    (tmp_path / "objects" / "b").write_bytes(b"")
    with pytest.raises(StorageWriteError):
        local.upload("b", "a/x.png", b"x", "image/png")


def test_signed_url_round_trip(local):
    local.upload("b", "dir/file.pdf", b"%PDF", "application/pdf")
    url = local.create_signed_url("b", "dir/file.pdf", 60, now=1000)
    parts = urlsplit(url)
    assert url.startswith("http://files.test/storage/b/dir/file.pdf?")
    query = {k: v[0] for k, v in parse_qs(parts.query).items()}
    expires, token = int(query["expires"]), query["token"]
    assert expires == 1060

    assert local.verify_signature("b", "dir/file.pdf", expires, token, now=1030)
    assert not local.verify_signature("b", "dir/file.pdf", expires, token, now=1061)
    assert not local.verify_signature("b", "dir/other.pdf", expires, token, now=1030)
    assert not local.verify_signature("b", "dir/file.pdf", expires + 1, token, now=1030)
