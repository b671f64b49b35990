"""
OCR engine source resolution.

EasyOCR needs its detection and recognition weights on disk before a
reader can be built. Sources are tried in order: the bundled model
directory (works offline), archive mirrors that are downloaded and
unpacked into the cache directory, and finally EasyOCR's own model hub.
"""

import importlib
import io
import zipfile
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from types import ModuleType
from typing import Any

from fastapi.concurrency import run_in_threadpool

from passingplates.core.config import Settings
from passingplates.core.logging import get_logger
from passingplates.infrastructure.assets.loader import AssetFetcher, SourceResolver

logger = get_logger(__name__)


@dataclass(frozen=True)
class OCRAssetSource:
    """
    One place EasyOCR models can come from.

    Attributes:
        label: Name used in logs and errors.
        model_dir: Directory the reader loads models from.
        download_enabled: Let EasyOCR download missing models itself.
        archive_base_url: Mirror serving `{base}{model}.zip` archives.
    """

    label: str
    model_dir: str
    download_enabled: bool = False
    archive_base_url: str | None = None


@dataclass(frozen=True)
class OCRBackend:
    """OCR library module prepared against one source."""

    source: OCRAssetSource
    module: Any


def build_ocr_sources(settings: Settings) -> list[OCRAssetSource]:
    """Ranked OCR sources: bundle, archive mirrors, model hub."""
    sources = [OCRAssetSource(label="bundled", model_dir=settings.ocr_bundle_dir)]
    for base in settings.ocr_mirror_base_urls:
        if base.strip():
            sources.append(
                OCRAssetSource(
                    label=f"mirror {base.strip()}",
                    model_dir=settings.ocr_cache_dir,
                    archive_base_url=base.strip(),
                )
            )
    sources.append(
        OCRAssetSource(
            label="easyocr hub",
            model_dir=settings.ocr_cache_dir,
            download_enabled=True,
        )
    )
    return sources


def missing_model_files(model_dir: str, model_files: list[str]) -> list[str]:
    """Model files not present in a directory."""
    directory = Path(model_dir)
    return [name for name in model_files if not (directory / name).is_file()]


def extract_model_archive(content: bytes, model_dir: str, model_files: list[str]) -> list[str]:
    """
    Unpack the expected model files from a zip archive.

    Only members whose file name is one of `model_files` are written, flat
    into `model_dir`.

    Returns:
        list: Names of the files written.
    """
    directory = Path(model_dir)
    directory.mkdir(parents=True, exist_ok=True)
    wanted = set(model_files)
    written = []
    with zipfile.ZipFile(io.BytesIO(content)) as archive:
        for member in archive.infolist():
            name = PurePosixPath(member.filename).name
            if member.is_dir() or name not in wanted:
                continue
            (directory / name).write_bytes(archive.read(member))
            written.append(name)
    return written


async def prepare_ocr_source(
    source: OCRAssetSource,
    model_files: list[str],
    fetcher: AssetFetcher,
    importer: Callable[[str], ModuleType] = importlib.import_module,
) -> OCRBackend:
    """
    Make one source usable for reader creation.

    Raises:
        ImportError: EasyOCR is not installed.
        FileNotFoundError: Required model files are still missing.
        httpx.HTTPError: An archive download failed.
    """
    module = importer("easyocr")
    if not hasattr(module, "Reader"):
        raise ImportError("easyocr does not expose Reader")

    if source.download_enabled:
        Path(source.model_dir).mkdir(parents=True, exist_ok=True)
        return OCRBackend(source=source, module=module)

    if source.archive_base_url:
        for name in missing_model_files(source.model_dir, model_files):
            archive_url = f"{source.archive_base_url}{PurePosixPath(name).stem}.zip"
            content = await fetcher.fetch_bytes(archive_url)
            written = await run_in_threadpool(
                extract_model_archive, content, source.model_dir, model_files
            )
            logger.info("ocr_model_archive_extracted", url=archive_url, files=written)

    missing = missing_model_files(source.model_dir, model_files)
    if missing:
        raise FileNotFoundError(f"Missing OCR models in {source.model_dir}: {', '.join(missing)}")
    return OCRBackend(source=source, module=module)


def create_ocr_loader(
    settings: Settings,
    fetcher: AssetFetcher | None = None,
    importer: Callable[[str], ModuleType] = importlib.import_module,
) -> SourceResolver[OCRAssetSource, OCRBackend]:
    """
    Build the memoizing resolver for the OCR engine.

    Args:
        settings: Application settings.
        fetcher: Asset fetcher for archive mirrors.
        importer: Module import function (replaced in tests).
    """
    asset_fetcher = fetcher or AssetFetcher(timeout=settings.asset_fetch_timeout_seconds)
    model_files = list(settings.ocr_model_files)

    async def load(source: OCRAssetSource) -> OCRBackend:
        return await prepare_ocr_source(source, model_files, asset_fetcher, importer)

    return SourceResolver("OCR engine", build_ocr_sources(settings), load)
