"""
Pytest configuration and fixtures for Preview Backend tests.
"""

import io
import os
import shutil
import tempfile
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from fastapi.testclient import TestClient
from PIL import Image

# Set test environment variables before importing the app
os.environ.pop("S3_BUCKET_NAME", None)
os.environ.pop("THUMBNAIL_CONFIG", None)
os.environ["THUMBNAIL_STORAGE_DIR"] = tempfile.mkdtemp(prefix="preview_test_storage_")

from preview_backend.configuration import make_settings
from preview_backend.exceptions import ObjectNotFoundError
from preview_backend.guard import ResourceGuard
from preview_backend.main import app, get_thumbnail_queue, get_thumbnail_service
from preview_backend.models import ConversionResult
from preview_backend.service import ThumbnailService

DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


def make_image_bytes(size=(640, 480), fmt="JPEG", mode="RGB", color="steelblue", **save_kwargs):
    """Encode a flat test image."""
    image = Image.new(mode, size, color)
    buffer = io.BytesIO()
    image.save(buffer, format=fmt, **save_kwargs)
    return buffer.getvalue()


def make_pdf_bytes(size=(612, 792)):
    """A real one-page PDF, produced by Pillow's PDF writer."""
    image = Image.new("RGB", size, "white")
    buffer = io.BytesIO()
    image.save(buffer, format="PDF")
    return buffer.getvalue()


def decode(data):
    image = Image.open(io.BytesIO(data))
    image.load()
    return image


class InMemoryObjectStore:
    """Object store double that keeps everything in a dict."""

    def __init__(self):
        self.objects = {}
        self.puts = []

    def put(self, key, data, content_type, metadata=None):
        self.objects[key] = (bytes(data), content_type, dict(metadata or {}))
        self.puts.append(key)
        return key

    def get(self, key):
        if key not in self.objects:
            raise ObjectNotFoundError(key)
        return self.objects[key][0]

    def delete(self, key):
        self.objects.pop(key, None)

    def exists(self, key):
        return key in self.objects


class FakeConverter:
    """Synchronous office converter returning a canned result."""

    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = []

    def convert_to_pdf(self, data, mime_type):
        self.calls.append((len(data), mime_type))
        if self.error is not None:
            raise self.error
        return self.result


class AsyncFakeConverter(FakeConverter):
    async def convert_to_pdf(self, data, mime_type):
        return FakeConverter.convert_to_pdf(self, data, mime_type)


@pytest.fixture(scope="session", autouse=True)
def test_storage_dir():
    """Cleanup the storage directory used by the module-level app."""
    storage_dir = os.environ["THUMBNAIL_STORAGE_DIR"]
    yield storage_dir
    shutil.rmtree(storage_dir, ignore_errors=True)


@pytest.fixture
def assets_dir(tmp_path):
    path = tmp_path / "assets"
    path.mkdir()
    return path


@pytest.fixture
def work_dir(tmp_path):
    """Temp directory handed to the external raster tool."""
    path = tmp_path / "work"
    path.mkdir()
    return path


@pytest.fixture
def settings_overrides(assets_dir, work_dir):
    return {
        "limits": {
            "max_input_bytes": 5 * 1024 * 1024,
            "max_processing_seconds": 2.0,
            "max_command_seconds": 1.0,
            "max_stream_seconds": 1.0,
            "max_temp_files": 2,
            "max_store_seconds": 1.0,
        },
        "formats": {
            "placeholder": {"assets_dir": str(assets_dir)},
            "external_tool": {"temp_dir": str(work_dir)},
        },
    }


@pytest.fixture
def settings(settings_overrides):
    """Settings with tightened limits and an empty placeholder asset dir."""
    return make_settings(overrides=settings_overrides)


@pytest.fixture
def release():
    """Event that unblocks hanging test doubles at teardown."""
    event = threading.Event()
    yield event
    event.set()


@pytest.fixture
def executor():
    pool = ThreadPoolExecutor(max_workers=4)
    yield pool
    pool.shutdown(wait=False, cancel_futures=True)


@pytest.fixture
def guard(settings, executor):
    return ResourceGuard(settings.limits, executor)


@pytest.fixture
def store():
    return InMemoryObjectStore()


@pytest.fixture
def converter():
    return FakeConverter(result=ConversionResult(success=True, pdf_bytes=make_pdf_bytes(), original_size=10))


@pytest.fixture
def service(store, converter, settings, release):
    service = ThumbnailService(store, converter=converter, settings=settings)
    yield service
    release.set()
    service.close()


@pytest.fixture
def jpeg_bytes():
    return make_image_bytes()


@pytest.fixture
def pdf_bytes():
    return make_pdf_bytes()


@pytest.fixture
def client(service):
    """Create a test client for the FastAPI app wired to the test service."""
    app.dependency_overrides[get_thumbnail_service] = lambda: service
    app.dependency_overrides[get_thumbnail_queue] = lambda: None
    yield TestClient(app)
    app.dependency_overrides.clear()
