"""
Ranked-source asset resolution.

Every external resource the pipeline needs (inference runtime, model
weights, OCR models) is reachable through several candidate sources: a
bundled local copy first, then remote mirrors. Sources are tried strictly
in order; the first success wins and individual failures are only
reported once the whole list is exhausted.
"""

from collections.abc import Awaitable, Callable, Sequence
from pathlib import Path
from typing import Generic, TypeVar
from urllib.parse import urlparse

import httpx
from fastapi.concurrency import run_in_threadpool

from passingplates.core.events import EngineStatus, StatusCallback, StatusEvent, notify
from passingplates.core.lazy import AsyncOnce
from passingplates.core.logging import get_logger

logger = get_logger(__name__)

S = TypeVar("S")
T = TypeVar("T")


class AssetLoadError(Exception):
    """
    Raised when every candidate source of a resource failed.

    Attributes:
        resource: Name of the resource that could not be loaded.
        failures: (source, reason) pairs in the order they were tried.
    """

    def __init__(self, resource: str, failures: list[tuple[str, str]]):
        self.resource = resource
        self.failures = list(failures)
        if self.failures:
            details = "; ".join(f"{source}: {reason}" for source, reason in self.failures)
        else:
            details = "no candidate sources configured"
        super().__init__(f"Failed to load {resource} ({details})")

    @property
    def user_message(self) -> str:
        """Status-channel text for this failure."""
        return f"Unable to load {self.resource}"


async def _first_success(
    resource: str,
    candidates: Sequence[S],
    attempt: Callable[[S], Awaitable[T]],
    describe: Callable[[S], str],
    on_status: StatusCallback | None,
) -> tuple[S, T]:
    failures: list[tuple[str, str]] = []

    for index, candidate in enumerate(candidates):
        label = describe(candidate)
        try:
            value = await attempt(candidate)
        except Exception as e:
            reason = str(e) or type(e).__name__
            failures.append((label, reason))
            logger.warning(
                "asset_source_failed",
                resource=resource,
                source=label,
                error=reason,
            )
            if index < len(candidates) - 1:
                notify(
                    on_status,
                    StatusEvent(
                        EngineStatus.LOADING,
                        f"Retrying {resource} from an alternate source",
                    ),
                )
            continue

        logger.info("asset_source_selected", resource=resource, source=label)
        return candidate, value

    logger.error("asset_sources_exhausted", resource=resource, attempts=len(failures))
    raise AssetLoadError(resource, failures)


async def fetch_with_fallback(
    candidates: Sequence[S],
    loader: Callable[[S], Awaitable[T]],
    description: str,
    on_status: StatusCallback | None = None,
) -> T:
    """
    Load a resource from the first candidate that works.

    Args:
        candidates: Sources in priority order.
        loader: Coroutine function loading one candidate.
        description: Resource name used in logs and errors.
        on_status: Optional status callback for retry notices.

    Returns:
        The value produced by the first successful candidate.

    Raises:
        AssetLoadError: If every candidate failed (or none was given).
    """
    _, value = await _first_success(description, candidates, loader, str, on_status)
    return value


class SourceResolver(Generic[S, T]):
    """
    Resolves and memoizes the first working source of a resource.

    The first successful value is kept for the lifetime of the resolver and
    later `resolve()` calls make no further attempts. A full failure is not
    memoized, so the next call walks the list again.

    Example:
        resolver = SourceResolver("inference runtime", sources, load_runtime)
        runtime = await resolver.resolve(on_status)
    """

    def __init__(
        self,
        resource: str,
        sources: Sequence[S],
        attempt: Callable[[S], Awaitable[T]],
        describe: Callable[[S], str] | None = None,
    ):
        """
        Initialize resolver.

        Args:
            resource: Resource name used in logs and errors.
            sources: Candidate sources in priority order.
            attempt: Coroutine function loading one source.
            describe: Label for a source (defaults to its `label` attribute).
        """
        self.resource = resource
        self._sources = list(sources)
        self._attempt = attempt
        self._describe = describe or _default_label
        self._selected: S | None = None
        self._once: AsyncOnce[T] = AsyncOnce()

    @property
    def sources(self) -> list[S]:
        """Candidate sources in rank order."""
        return list(self._sources)

    @property
    def selected_source(self) -> S | None:
        """Source that produced the memoized value, if any."""
        return self._selected

    async def resolve(self, on_status: StatusCallback | None = None) -> T:
        """
        Return the memoized value, trying sources in order on first use.

        Raises:
            AssetLoadError: If every source failed.
        """
        return await self._once.get(lambda: self._resolve_in_order(on_status))

    async def _resolve_in_order(self, on_status: StatusCallback | None) -> T:
        source, value = await _first_success(
            self.resource,
            self._sources,
            self._attempt,
            self._describe,
            on_status,
        )
        self._selected = source
        return value

    def fallback_sources(self) -> list[S]:
        """
        The selected source followed by the sources ranked after it.

        Sources ranked above the selected one already failed during
        resolution and are skipped.
        """
        if self._selected is None:
            return list(self._sources)
        index = next(i for i, s in enumerate(self._sources) if s is self._selected)
        return list(self._sources[index:])

    async def attempt_source(self, source: S) -> T:
        """Load one specific source without touching the memoized value."""
        return await self._attempt(source)

    def describe(self, source: S) -> str:
        """Label of a source for logs and errors."""
        return self._describe(source)

    def reset(self) -> None:
        """Forget the memoized value and the selected source."""
        self._once.reset()
        self._selected = None


def _default_label(source: object) -> str:
    return str(getattr(source, "label", source))


def is_remote(location: str) -> bool:
    """Check if a location is an HTTP(S) URL."""
    return urlparse(location).scheme in ("http", "https")


def build_candidate_list(
    bundle_dir: str | None,
    overrides: Sequence[str],
    base_urls: Sequence[str],
    filename: str,
) -> list[str]:
    """
    Ranked locations for one model file.

    Order: bundled directory, explicit overrides, then `{base}{filename}`
    for each mirror. Empty entries and duplicates are dropped.
    """
    candidates: list[str] = []
    if bundle_dir:
        candidates.append(str(Path(bundle_dir) / filename))
    candidates.extend(overrides)
    for base in base_urls:
        if base:
            candidates.append(f"{base}{filename}")

    seen: set[str] = set()
    ranked = []
    for candidate in candidates:
        candidate = candidate.strip()
        if candidate and candidate not in seen:
            seen.add(candidate)
            ranked.append(candidate)
    return ranked


class AssetFetcher:
    """
    Reads asset bytes from disk or over HTTP.

    Local paths are read in the thread pool; remote URLs go through
    `httpx.AsyncClient`. A client can be injected for tests.
    """

    def __init__(
        self,
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.timeout = timeout
        self._client = client

    async def fetch_bytes(self, location: str) -> bytes:
        """
        Fetch the raw content of a location.

        Raises:
            FileNotFoundError: Local file is missing.
            httpx.HTTPError: Remote request failed or returned an error status.
        """
        if not is_remote(location):
            path = Path(urlparse(location).path if location.startswith("file://") else location)
            content = await run_in_threadpool(path.read_bytes)
            logger.debug("asset_read", location=str(path), size=len(content))
            return content

        if self._client is not None:
            response = await self._client.get(location)
        else:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
            ) as client:
                response = await client.get(location)
        response.raise_for_status()
        logger.debug("asset_downloaded", location=location, size=len(response.content))
        return response.content

    async def fetch_text(self, location: str) -> str:
        """Fetch a location and decode it as UTF-8 text."""
        content = await self.fetch_bytes(location)
        return content.decode("utf-8")
