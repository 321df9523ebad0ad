"""
Tests for the S3 and local object stores.

The S3 store runs against a stubbed boto3 client (botocore's Stubber), so
no network or credentials are needed.
"""

import io
import json

import boto3
import pytest
from botocore.response import StreamingBody
from botocore.stub import Stubber

from preview_backend.exceptions import ObjectNotFoundError, StorageError
from preview_backend.storage import LocalObjectStore, S3ObjectStore, create_object_store

BUCKET = "case-documents"
KEY = "thumbnails/doc-1.jpg"


@pytest.fixture
def s3_client():
    return boto3.client(
        "s3",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


@pytest.fixture
def stubber(s3_client):
    with Stubber(s3_client) as stub:
        yield stub
        stub.assert_no_pending_responses()


@pytest.fixture
def s3_store(s3_client):
    return S3ObjectStore(BUCKET, client=s3_client)


class TestS3ObjectStore:
    def test_put_sends_content_type_and_metadata(self, s3_store, stubber):
        metadata = {"type": "thumbnail", "original-document": "doc-1"}
        stubber.add_response(
            "put_object",
            {},
            {"Bucket": BUCKET, "Key": KEY, "Body": b"jpeg", "ContentType": "image/jpeg", "Metadata": metadata},
        )
        assert s3_store.put(KEY, b"jpeg", "image/jpeg", metadata) == KEY

    def test_put_failure_is_storage_error(self, s3_store, stubber):
        stubber.add_client_error("put_object", service_error_code="AccessDenied", http_status_code=403)
        with pytest.raises(StorageError):
            s3_store.put(KEY, b"jpeg", "image/jpeg")

    def test_get_drains_body(self, s3_store, stubber):
        body = StreamingBody(io.BytesIO(b"thumbnail-bytes"), len(b"thumbnail-bytes"))
        stubber.add_response("get_object", {"Body": body}, {"Bucket": BUCKET, "Key": KEY})
        assert s3_store.get(KEY) == b"thumbnail-bytes"

    def test_get_missing_key(self, s3_store, stubber):
        stubber.add_client_error("get_object", service_error_code="NoSuchKey", http_status_code=404)
        with pytest.raises(ObjectNotFoundError) as exc_info:
            s3_store.get(KEY)
        assert exc_info.value.key == KEY

    def test_exists(self, s3_store, stubber):
        stubber.add_response("head_object", {}, {"Bucket": BUCKET, "Key": KEY})
        stubber.add_client_error("head_object", service_error_code="404", http_status_code=404)
        assert s3_store.exists(KEY) is True
        assert s3_store.exists(KEY) is False

    def test_delete_missing_is_silent(self, s3_store, stubber):
        stubber.add_client_error("delete_object", service_error_code="NoSuchKey", http_status_code=404)
        s3_store.delete(KEY)

    def test_delete_failure_is_storage_error(self, s3_store, stubber):
        stubber.add_client_error("delete_object", service_error_code="InternalError", http_status_code=500)
        with pytest.raises(StorageError):
            s3_store.delete(KEY)

    def test_bucket_required(self):
        with pytest.raises(StorageError):
            S3ObjectStore("")


class TestLocalObjectStore:
    def test_round_trip_with_metadata(self, tmp_path):
        store = LocalObjectStore(tmp_path / "storage")
        store.put(KEY, b"jpeg", "image/jpeg", {"type": "thumbnail"})

        assert store.exists(KEY)
        assert store.get(KEY) == b"jpeg"
        assert store.read_metadata(KEY) == {"content_type": "image/jpeg", "metadata": {"type": "thumbnail"}}
        sidecar = tmp_path / "storage" / "thumbnails" / "doc-1.jpg.metadata.json"
        assert json.loads(sidecar.read_text())["content_type"] == "image/jpeg"

    def test_missing_object(self, tmp_path):
        store = LocalObjectStore(tmp_path)
        assert not store.exists(KEY)
        with pytest.raises(ObjectNotFoundError):
            store.get(KEY)

    def test_delete_is_idempotent(self, tmp_path):
        store = LocalObjectStore(tmp_path)
        store.put(KEY, b"jpeg", "image/jpeg")
        store.delete(KEY)
        store.delete(KEY)
        assert not store.exists(KEY)
        assert not (tmp_path / "thumbnails" / "doc-1.jpg.metadata.json").exists()

    @pytest.mark.parametrize("key", ["../outside.jpg", "thumbnails/../../x.jpg", "/etc/passwd", "a\\b.jpg", ""])
    def test_rejects_escaping_keys(self, tmp_path, key):
        store = LocalObjectStore(tmp_path / "root")
        with pytest.raises(StorageError):
            store.put(key, b"x", "image/jpeg")


class TestCreateObjectStore:
    def test_local_without_bucket(self, monkeypatch, tmp_path):
        monkeypatch.delenv("S3_BUCKET_NAME", raising=False)
        monkeypatch.setenv("THUMBNAIL_STORAGE_DIR", str(tmp_path / "local"))
        store = create_object_store()
        assert isinstance(store, LocalObjectStore)
        assert store.base_dir == (tmp_path / "local").resolve()

    def test_s3_with_bucket(self, monkeypatch):
        monkeypatch.setenv("S3_BUCKET_NAME", BUCKET)
        store = create_object_store()
        assert isinstance(store, S3ObjectStore)
        assert store.bucket == BUCKET
