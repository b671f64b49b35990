"""
Unit tests for inference runtime and OCR source resolution.
"""

import io
import zipfile
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from passingplates.infrastructure.assets.loader import AssetLoadError
from passingplates.infrastructure.ml.ocr_loader import (
    OCRAssetSource,
    build_ocr_sources,
    create_ocr_loader,
    extract_model_archive,
    missing_model_files,
    prepare_ocr_source,
)
from passingplates.infrastructure.ml.runtime_loader import (
    CPU_PROVIDER,
    CUDA_PROVIDER,
    build_runtime_sources,
    create_runtime_loader,
)

MODEL_FILES = ["craft_mlt_25k.pth", "english_g2.pth"]


def fake_runtime(providers: list[str]) -> MagicMock:
    module = MagicMock()
    module.get_available_providers.return_value = providers
    return module


def zip_bytes(members: dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, content in members.items():
            archive.writestr(name, content)
    return buffer.getvalue()


def easyocr_importer(name: str):
    assert name == "easyocr"
    return SimpleNamespace(Reader=object)


class TestRuntimeSources:
    """Tests for build_runtime_sources."""

    def test_gpu_first_when_preferred(self, settings):
        settings.runtime_prefer_gpu = True

        sources = build_runtime_sources(settings)

        assert [s.providers for s in sources] == [(CUDA_PROVIDER, CPU_PROVIDER), (CPU_PROVIDER,)]
        assert sources[0].label == "onnxruntime (cuda)"

    def test_cpu_only(self, settings):
        sources = build_runtime_sources(settings)

        assert [s.providers for s in sources] == [(CPU_PROVIDER,)]


class TestRuntimeLoader:
    """Tests for create_runtime_loader."""

    @pytest.mark.asyncio
    async def test_falls_back_to_cpu(self, settings):
        settings.runtime_prefer_gpu = True
        module = fake_runtime([CPU_PROVIDER])
        loader = create_runtime_loader(settings, importer=lambda name: module)

        runtime = await loader.resolve()

        assert runtime.providers == (CPU_PROVIDER,)
        assert runtime.source.label == "onnxruntime (cpu)"
        assert loader.selected_source is runtime.source

    @pytest.mark.asyncio
    async def test_uses_cuda_when_available(self, settings):
        settings.runtime_prefer_gpu = True
        module = fake_runtime([CUDA_PROVIDER, CPU_PROVIDER])
        loader = create_runtime_loader(settings, importer=lambda name: module)

        runtime = await loader.resolve()

        assert runtime.providers == (CUDA_PROVIDER, CPU_PROVIDER)

    @pytest.mark.asyncio
    async def test_import_failure(self, settings):
        def importer(name):
            raise ImportError(f"No module named '{name}'")

        loader = create_runtime_loader(settings, importer=importer)

        with pytest.raises(AssetLoadError, match="inference runtime"):
            await loader.resolve()

    @pytest.mark.asyncio
    async def test_module_without_session(self, settings):
        loader = create_runtime_loader(settings, importer=lambda name: SimpleNamespace())

        with pytest.raises(AssetLoadError, match="does not expose InferenceSession"):
            await loader.resolve()

    @pytest.mark.asyncio
    async def test_create_session(self, settings):
        module = fake_runtime([CPU_PROVIDER])
        runtime = await create_runtime_loader(settings, importer=lambda name: module).resolve()

        session = runtime.create_session(b"model", max_threads=2)

        assert session is module.InferenceSession.return_value
        args, kwargs = module.InferenceSession.call_args
        assert args == (b"model",)
        assert kwargs["providers"] == [CPU_PROVIDER]
        assert kwargs["sess_options"].intra_op_num_threads == 2


class TestOCRSources:
    """Tests for OCR source listing and archive handling."""

    def test_source_order(self, settings):
        settings.ocr_mirror_base_urls = ["https://mirror.example/easyocr/", "  "]

        sources = build_ocr_sources(settings)

        assert [s.label for s in sources] == [
            "bundled",
            "mirror https://mirror.example/easyocr/",
            "easyocr hub",
        ]
        assert sources[0].model_dir == settings.ocr_bundle_dir
        assert sources[1].model_dir == settings.ocr_cache_dir
        assert sources[2].download_enabled is True

    def test_missing_model_files(self, tmp_path):
        (tmp_path / "craft_mlt_25k.pth").write_bytes(b"x")

        assert missing_model_files(str(tmp_path), MODEL_FILES) == ["english_g2.pth"]

    def test_extract_only_expected_members(self, tmp_path):
        content = zip_bytes({"nested/english_g2.pth": b"weights", "README.txt": b"ignored"})

        written = extract_model_archive(content, str(tmp_path / "models"), MODEL_FILES)

        assert written == ["english_g2.pth"]
        assert (tmp_path / "models" / "english_g2.pth").read_bytes() == b"weights"
        assert not (tmp_path / "models" / "README.txt").exists()


class TestPrepareOCRSource:
    """Tests for prepare_ocr_source."""

    @pytest.mark.asyncio
    async def test_bundled_source_with_models(self, tmp_path):
        for name in MODEL_FILES:
            (tmp_path / name).write_bytes(b"x")
        source = OCRAssetSource(label="bundled", model_dir=str(tmp_path))

        backend = await prepare_ocr_source(source, MODEL_FILES, MagicMock(), easyocr_importer)

        assert backend.source is source
        assert backend.module.Reader is object

    @pytest.mark.asyncio
    async def test_bundled_source_missing_models(self, tmp_path):
        source = OCRAssetSource(label="bundled", model_dir=str(tmp_path))

        with pytest.raises(FileNotFoundError, match="craft_mlt_25k.pth"):
            await prepare_ocr_source(source, MODEL_FILES, MagicMock(), easyocr_importer)

    @pytest.mark.asyncio
    async def test_mirror_downloads_archives(self, tmp_path):
        fetcher = MagicMock()
        fetcher.fetch_bytes = AsyncMock(
            side_effect=lambda url: zip_bytes({url.rsplit("/", 1)[1][:-4] + ".pth": b"w"})
        )
        source = OCRAssetSource(
            label="mirror",
            model_dir=str(tmp_path / "cache"),
            archive_base_url="https://mirror.example/",
        )

        await prepare_ocr_source(source, MODEL_FILES, fetcher, easyocr_importer)

        urls = [call.args[0] for call in fetcher.fetch_bytes.await_args_list]
        assert urls == [
            "https://mirror.example/craft_mlt_25k.zip",
            "https://mirror.example/english_g2.zip",
        ]
        assert missing_model_files(source.model_dir, MODEL_FILES) == []

    @pytest.mark.asyncio
    async def test_hub_source_creates_directory(self, tmp_path):
        source = OCRAssetSource(label="hub", model_dir=str(tmp_path / "hub"), download_enabled=True)

        await prepare_ocr_source(source, MODEL_FILES, MagicMock(), easyocr_importer)

        assert (tmp_path / "hub").is_dir()

    @pytest.mark.asyncio
    async def test_missing_library(self, tmp_path):
        def importer(name):
            raise ImportError("No module named 'easyocr'")

        source = OCRAssetSource(label="hub", model_dir=str(tmp_path), download_enabled=True)

        with pytest.raises(ImportError):
            await prepare_ocr_source(source, MODEL_FILES, MagicMock(), importer)


class TestOCRLoader:
    """Tests for create_ocr_loader."""

    @pytest.mark.asyncio
    async def test_falls_through_to_hub(self, settings):
        loader = create_ocr_loader(settings, fetcher=MagicMock(), importer=easyocr_importer)

        backend = await loader.resolve()

        assert backend.source.label == "easyocr hub"
        assert loader.fallback_sources()[0].label == "easyocr hub"

    @pytest.mark.asyncio
    async def test_prefers_bundle(self, settings, tmp_path):
        bundle = tmp_path / "easyocr"
        bundle.mkdir()
        for name in settings.ocr_model_files:
            (bundle / name).write_bytes(b"x")
        loader = create_ocr_loader(settings, fetcher=MagicMock(), importer=easyocr_importer)

        backend = await loader.resolve()

        assert backend.source.label == "bundled"
