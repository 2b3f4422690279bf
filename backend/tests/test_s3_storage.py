"""S3 backend with mocks (no real AWS): presigned PUT with retry, HeadObject verification, delete, URLs."""
from unittest.mock import MagicMock

import httpx
import pytest

from filestore.core.exceptions import BackendDeleteError, BackendUploadError, StorageBackendError
from filestore.services.storage.base import S3StorageConfig, StorageBackendKind
from filestore.services.storage.s3 import S3Storage


class Fake404(Exception):
    response = {"Error": {"Code": "404"}}


class FakeBoto:
    """Minimal in-memory stand-in for the boto3 S3 client calls the backend makes."""

    def __init__(self):
        self.objects: dict[str, int] = {}
        self.presigned: list[tuple[str, dict]] = []
        self.deleted: list[str] = []

    def generate_presigned_url(self, op, Params, ExpiresIn):
        self.presigned.append((op, Params))
        return f"https://mock-s3/{Params['Key']}?op={op}&X-Amz-Signature=abc"

    def head_object(self, Bucket, Key):
        if Key not in self.objects:
            raise Fake404()
        return {"ContentLength": self.objects[Key], "ContentType": "text/plain"}

    def delete_object(self, Bucket, Key):
        self.deleted.append(Key)
        self.objects.pop(Key, None)


def _config(**kwargs) -> S3StorageConfig:
    base = {"bucket": "blog-files", "public_domain": "cdn.example.com", "backoff_seconds": 1.0}
    base.update(kwargs)
    return S3StorageConfig(**base)


def _storage(boto: FakeBoto, handler, **config_kwargs):
    sleeps: list[float] = []
    storage = S3Storage(
        _config(**config_kwargs),
        client=boto,
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
        sleep=sleeps.append,
    )
    return storage, sleeps


def _accepting(boto: FakeBoto):
    def handler(request: httpx.Request) -> httpx.Response:
        key = request.url.path.lstrip("/")
        boto.objects[key] = len(request.content)
        return httpx.Response(200)
    return handler


def test_upload_success_and_exists():
    boto = FakeBoto()
    storage, sleeps = _storage(boto, _accepting(boto))
    result = storage.upload(b"hello", 5, "note.txt", "text/plain", "docs")
    assert result.success
    assert result.backend is StorageBackendKind.S3
    assert result.key.startswith("docs/") and result.key.endswith(".txt")
    assert result.url == f"https://cdn.example.com/{result.key}"
    assert storage.exists(result.key)
    assert sleeps == []
    # one upload credential per call
    assert [op for op, _ in boto.presigned] == ["put_object"]


def test_upload_retries_with_increasing_backoff():
    boto = FakeBoto()
    calls = {"n": 0}
    accept = _accepting(boto)

    def flaky(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] < 3:
            return httpx.Response(503)
        return accept(request)

    storage, sleeps = _storage(boto, flaky)
    result = storage.upload(b"hello", 5, "note.txt", "text/plain", "docs")
    assert result.success
    assert calls["n"] == 3
    assert sleeps == [1.0, 2.0]


def test_upload_gives_up_after_max_attempts():
    boto = FakeBoto()

    def down(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    storage, sleeps = _storage(boto, down)
    with pytest.raises(BackendUploadError, match="after 3 attempts"):
        storage.upload(b"hello", 5, "note.txt", "text/plain", "docs")
    assert sleeps == [1.0, 2.0]
    assert boto.objects == {}


def test_upload_size_mismatch_is_not_success():
    boto = FakeBoto()

    def truncating(request: httpx.Request) -> httpx.Response:
        boto.objects[request.url.path.lstrip("/")] = 1
        return httpx.Response(200)

    storage, _ = _storage(boto, truncating)
    with pytest.raises(BackendUploadError, match="verification failed"):
        storage.upload(b"hello", 5, "note.txt", "text/plain", "docs")
    assert boto.objects == {}


def test_upload_empty_is_failure_result():
    boto = FakeBoto()
    storage, _ = _storage(boto, _accepting(boto))
    result = storage.upload(b"", 0, "note.txt", "text/plain", "docs")
    assert not result.success
    assert boto.presigned == []


def test_delete_twice_true_then_false():
    boto = FakeBoto()
    storage, _ = _storage(boto, _accepting(boto))
    key = storage.upload(b"hello", 5, "note.txt", "text/plain", "docs").key
    assert storage.delete(key) is True
    assert storage.exists(key) is False
    assert storage.delete(key) is False
    assert storage.delete("") is False


def test_delete_error_is_wrapped():
    client = MagicMock()
    client.head_object.return_value = {"ContentLength": 1}
    client.delete_object.side_effect = RuntimeError("AccessDenied")
    storage = S3Storage(_config(), client=client, http_client=MagicMock())
    with pytest.raises(BackendDeleteError) as exc_info:
        storage.delete("docs/a.txt")
    assert exc_info.value.key == "docs/a.txt"
    assert "backend=s3" in str(exc_info.value)


def test_exists_missing_and_error():
    client = MagicMock()
    client.head_object.side_effect = Fake404()
    storage = S3Storage(_config(), client=client, http_client=MagicMock())
    assert storage.exists("missing/key") is False
    assert storage.exists("") is False

    class Fake403(Exception):
        response = {"Error": {"Code": "403"}}

    client.head_object.side_effect = Fake403()
    with pytest.raises(StorageBackendError):
        storage.exists("forbidden/key")


def test_resolve_url_variants():
    client = MagicMock()
    client.generate_presigned_url.return_value = "https://signed/get"
    public = S3Storage(_config(public_domain="https://cdn.example.com/", use_https=False), client=client,
                       http_client=MagicMock())
    assert public.resolve_url("a/b c.png") == "http://cdn.example.com/a/b%20c.png"
    assert public.resolve_url("") is None

    default_domain = S3Storage(_config(public_domain=None, region="eu-west-1"), client=client,
                               http_client=MagicMock())
    assert default_domain.resolve_url("k.png") == "https://blog-files.s3.eu-west-1.amazonaws.com/k.png"

    signed = S3Storage(_config(signed_urls=True), client=client, http_client=MagicMock())
    assert signed.resolve_url("k.png") == "https://signed/get"
    client.generate_presigned_url.assert_called_with(
        "get_object", Params={"Bucket": "blog-files", "Key": "k.png"}, ExpiresIn=3600
    )


def test_diagnostic_info_has_no_secrets():
    storage = S3Storage(
        _config(access_key_id="AKIAEXAMPLE", secret_access_key="very-secret"),
        client=MagicMock(),
        http_client=MagicMock(),
    )
    info = storage.diagnostic_info()
    assert "blog-files" in info
    assert "cdn.example.com" in info
    assert "AKIAEXAMPLE" not in info
    assert "very-secret" not in info


def test_upload_unverifiable_object_is_discarded():
    boto = FakeBoto()

    class Fake500(Exception):
        response = {"Error": {"Code": "InternalError"}}

    def head_fails(Bucket, Key):
        raise Fake500()

    boto.head_object = head_fails
    storage, _ = _storage(boto, _accepting(boto))
    with pytest.raises(BackendUploadError, match="could not be verified"):
        storage.upload(b"hello", 5, "note.txt", "text/plain", "docs")
    assert len(boto.deleted) == 1
    assert boto.objects == {}
