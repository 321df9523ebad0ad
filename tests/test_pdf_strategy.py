"""
Tests for the PDF strategy chain.

pdf2image needs poppler on the host, so the primary rasterizer is always
replaced with monkeypatch. pypdfium2 ships its own binary and runs for real.
"""

import subprocess
import time

import pytest
from PIL import Image

from preview_backend.exceptions import ConversionTimeoutError, ExternalToolError, UnsafePathError
from preview_backend.guard import Deadline
from preview_backend.models import GenerationMethod, GenerationRequest
from preview_backend.placeholder import PlaceholderGenerator
from preview_backend.strategies import PdfStrategy

from conftest import decode, make_image_bytes, make_pdf_bytes

PDF_MODULE = "preview_backend.strategies.pdf"


@pytest.fixture
def strategy(settings, guard):
    formats = settings.formats
    return PdfStrategy(formats, guard, PlaceholderGenerator(formats.placeholder, formats.output))


def request_for(data):
    return GenerationRequest(source_bytes=data, declared_mime_type="application/pdf", document_id="pdf-1")


def primary_returns_page(monkeypatch, calls=None):
    def fake_convert(data, **kwargs):
        if calls is not None:
            calls.append(kwargs)
        return [Image.new("RGB", (850, 1100), "white")]

    monkeypatch.setattr(f"{PDF_MODULE}.convert_from_bytes", fake_convert)


def primary_fails(monkeypatch):
    def fake_convert(data, **kwargs):
        raise RuntimeError("poppler not installed")

    monkeypatch.setattr(f"{PDF_MODULE}.convert_from_bytes", fake_convert)


def fallback_fails(monkeypatch):
    def fake_document(data):
        raise RuntimeError("pdfium cannot open document")

    monkeypatch.setattr(f"{PDF_MODULE}.pdfium.PdfDocument", fake_document)


class FakeImageMagick:
    """Stands in for subprocess.run: writes a JPEG to the last argument."""

    def __init__(self, returncode=0, write_output=True, raise_exc=None):
        self.returncode = returncode
        self.write_output = write_output
        self.raise_exc = raise_exc
        self.commands = []

    def __call__(self, command, **kwargs):
        self.commands.append((command, kwargs))
        if self.raise_exc is not None:
            raise self.raise_exc
        if self.write_output:
            with open(command[-1], "wb") as handle:
                handle.write(make_image_bytes(size=(155, 200)))
        return subprocess.CompletedProcess(command, self.returncode, stdout="", stderr="boom" if self.returncode else "")


@pytest.fixture
def imagemagick(monkeypatch):
    fake = FakeImageMagick()
    monkeypatch.setattr(f"{PDF_MODULE}.shutil.which", lambda name: f"/usr/bin/{name}")
    monkeypatch.setattr(f"{PDF_MODULE}.subprocess.run", fake)
    return fake


class TestPdfChain:
    @pytest.mark.asyncio
    async def test_primary_success(self, strategy, monkeypatch, pdf_bytes):
        calls = []
        primary_returns_page(monkeypatch, calls)
        result = await strategy.generate(request_for(pdf_bytes), Deadline(2.0))

        assert result.method is GenerationMethod.PRIMARY
        image = decode(result.image_bytes)
        assert image.format == "JPEG"
        assert max(image.size) <= 200
        assert calls[0]["first_page"] == 1
        assert calls[0]["last_page"] == 1
        assert calls[0]["dpi"] == 100

    @pytest.mark.asyncio
    async def test_secondary_library_after_primary_failure(self, strategy, monkeypatch, pdf_bytes):
        primary_fails(monkeypatch)
        result = await strategy.generate(request_for(pdf_bytes), Deadline(2.0))

        assert result.method is GenerationMethod.FALLBACK
        assert result.attempt == 1
        assert max(decode(result.image_bytes).size) <= 200

    @pytest.mark.asyncio
    async def test_external_tool_after_libraries_fail(self, strategy, monkeypatch, pdf_bytes, imagemagick, work_dir):
        primary_fails(monkeypatch)
        fallback_fails(monkeypatch)
        result = await strategy.generate(request_for(pdf_bytes), Deadline(2.0))

        assert result.method is GenerationMethod.EXTERNAL_TOOL
        assert decode(result.image_bytes).size == (155, 200)
        assert len(imagemagick.commands) == 1
        assert list(work_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_placeholder_when_everything_fails(self, strategy, monkeypatch, pdf_bytes, imagemagick):
        primary_fails(monkeypatch)
        fallback_fails(monkeypatch)
        imagemagick.returncode = 1
        result = await strategy.generate(request_for(pdf_bytes), Deadline(2.0))

        assert result.method is GenerationMethod.PLACEHOLDER
        assert result.placeholder_type == "pdf"

    @pytest.mark.asyncio
    async def test_caller_placeholder_type(self, strategy, monkeypatch):
        result = await strategy.generate(request_for(b"PK\x03\x04 docx"), Deadline(2.0), placeholder_type="docx")
        assert result.placeholder_type == "docx"

    @pytest.mark.asyncio
    async def test_bad_signature_skips_conversion(self, strategy, monkeypatch, assets_dir):
        def must_not_run(data, **kwargs):
            raise AssertionError("primary rasterizer must not run")

        monkeypatch.setattr(f"{PDF_MODULE}.convert_from_bytes", must_not_run)
        asset = make_image_bytes(size=(200, 200), color="red")
        (assets_dir / "pdf.jpg").write_bytes(asset)

        result = await strategy.generate(request_for(b"<html>not a pdf</html>"), Deadline(2.0))
        assert result.method is GenerationMethod.PLACEHOLDER
        assert result.image_bytes == asset

    @pytest.mark.asyncio
    async def test_hung_primary_returns_within_budget(self, strategy, monkeypatch, pdf_bytes, release):
        monkeypatch.setattr(f"{PDF_MODULE}.convert_from_bytes", lambda data, **kwargs: release.wait(10))
        started = time.monotonic()
        result = await strategy.generate(request_for(pdf_bytes), Deadline(0.5))

        assert time.monotonic() - started < 1.5
        assert result.method is GenerationMethod.PLACEHOLDER

    @pytest.mark.parametrize("index", range(4))
    def test_every_fallback_variant_fits_envelope(self, strategy, settings, index):
        variant = settings.formats.pdf_fallback[index]
        data = strategy.render_fallback(make_pdf_bytes(size=(1224, 1584)), variant)
        assert max(decode(data).size) <= 200

    def test_chain_order(self, strategy, pdf_bytes):
        steps = strategy.build_chain(pdf_bytes, Deadline(2.0))
        assert [step.name for step in steps] == [
            "pdf2image",
            "pypdfium2:full",
            "pypdfium2:quality",
            "pypdfium2:plain",
            "pypdfium2:small",
            "imagemagick",
        ]
        assert [step.index for step in steps[1:5]] == [1, 2, 3, 4]


class TestExternalTool:
    def test_command_is_an_argument_vector(self, strategy):
        command = strategy.build_command("/usr/bin/magick", "/tmp/in.pdf", "/tmp/out.jpg")
        assert command == [
            "/usr/bin/magick",
            "/tmp/in.pdf[0]",
            "-thumbnail",
            "200x200",
            "-quality",
            "75",
            "-background",
            "white",
            "-alpha",
            "remove",
            "/tmp/out.jpg",
        ]

    def test_run_options(self, strategy, pdf_bytes, imagemagick):
        strategy.render_external(pdf_bytes, Deadline(2.0))
        _, kwargs = imagemagick.commands[0]
        assert kwargs.get("shell", False) is False
        assert 0 < kwargs["timeout"] <= 1.0

    def test_temp_files_removed_on_failure(self, strategy, pdf_bytes, imagemagick, work_dir):
        imagemagick.returncode = 2
        with pytest.raises(ExternalToolError):
            strategy.render_external(pdf_bytes, Deadline(2.0))
        assert list(work_dir.iterdir()) == []

    def test_missing_output_is_failure(self, strategy, pdf_bytes, imagemagick, work_dir):
        imagemagick.write_output = False
        with pytest.raises(ExternalToolError):
            strategy.render_external(pdf_bytes, Deadline(2.0))
        assert list(work_dir.iterdir()) == []

    def test_process_timeout(self, strategy, pdf_bytes, imagemagick, work_dir):
        imagemagick.raise_exc = subprocess.TimeoutExpired(cmd="magick", timeout=1)
        with pytest.raises(ConversionTimeoutError):
            strategy.render_external(pdf_bytes, Deadline(2.0))
        assert list(work_dir.iterdir()) == []

    def test_unsafe_temp_dir_rejected_before_spawn(self, settings, guard, tmp_path, imagemagick):
        unsafe_dir = tmp_path / "$(reboot)"
        unsafe_dir.mkdir()
        formats = settings.formats.model_copy(
            update={"external_tool": settings.formats.external_tool.model_copy(update={"temp_dir": str(unsafe_dir)})}
        )
        strategy = PdfStrategy(formats, guard, PlaceholderGenerator(formats.placeholder, formats.output))

        with pytest.raises(UnsafePathError):
            strategy.render_external(b"%PDF-1.4", Deadline(2.0))
        assert imagemagick.commands == []
        assert list(unsafe_dir.iterdir()) == []

    def test_missing_binary(self, strategy, pdf_bytes, monkeypatch):
        monkeypatch.setattr(f"{PDF_MODULE}.shutil.which", lambda name: None)
        with pytest.raises(ExternalToolError):
            strategy.render_external(pdf_bytes, Deadline(2.0))
