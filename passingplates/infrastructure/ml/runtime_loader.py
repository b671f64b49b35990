"""
Inference runtime resolution.

The runtime is an importable module exposing `InferenceSession` (onnxruntime
by default). Sources are execution-provider profiles: the accelerated
profile is tried first when enabled, the CPU profile always last.
"""

import importlib
from collections.abc import Callable
from dataclasses import dataclass
from types import ModuleType
from typing import Any

from passingplates.core.config import Settings
from passingplates.core.logging import get_logger
from passingplates.infrastructure.assets.loader import SourceResolver

logger = get_logger(__name__)

CUDA_PROVIDER = "CUDAExecutionProvider"
CPU_PROVIDER = "CPUExecutionProvider"


@dataclass(frozen=True)
class RuntimeSource:
    """One way of loading the inference runtime."""

    label: str
    module: str
    providers: tuple[str, ...]


@dataclass(frozen=True)
class LoadedRuntime:
    """
    Runtime module resolved from a source.

    Attributes:
        source: Source that loaded successfully.
        module: Imported runtime module.
        providers: Execution providers to request for new sessions.
    """

    source: RuntimeSource
    module: Any
    providers: tuple[str, ...]

    def create_session(self, model: bytes, max_threads: int = 4) -> Any:
        """
        Build an inference session from serialized model bytes.

        Blocking; call it from the thread pool.
        """
        options = self.module.SessionOptions()
        options.intra_op_num_threads = max_threads
        return self.module.InferenceSession(
            model,
            sess_options=options,
            providers=list(self.providers),
        )


def build_runtime_sources(settings: Settings) -> list[RuntimeSource]:
    """Ranked runtime sources for the configured module."""
    sources = []
    if settings.runtime_prefer_gpu:
        sources.append(
            RuntimeSource(
                label=f"{settings.runtime_module} (cuda)",
                module=settings.runtime_module,
                providers=(CUDA_PROVIDER, CPU_PROVIDER),
            )
        )
    sources.append(
        RuntimeSource(
            label=f"{settings.runtime_module} (cpu)",
            module=settings.runtime_module,
            providers=(CPU_PROVIDER,),
        )
    )
    return sources


def create_runtime_loader(
    settings: Settings,
    importer: Callable[[str], ModuleType] = importlib.import_module,
) -> SourceResolver[RuntimeSource, LoadedRuntime]:
    """
    Build the memoizing resolver for the inference runtime.

    Args:
        settings: Application settings.
        importer: Module import function (replaced in tests).

    Returns:
        SourceResolver: Resolver yielding a `LoadedRuntime`.
    """

    async def load(source: RuntimeSource) -> LoadedRuntime:
        module = importer(source.module)
        if not hasattr(module, "InferenceSession"):
            raise RuntimeError(f"{source.module} does not expose InferenceSession")

        available = set(module.get_available_providers())
        primary = source.providers[0]
        if primary not in available:
            raise RuntimeError(f"{primary} is not available")

        providers = tuple(p for p in source.providers if p in available)
        logger.info(
            "inference_runtime_loaded",
            source=source.label,
            providers=list(providers),
        )
        return LoadedRuntime(source=source, module=module, providers=providers)

    return SourceResolver(
        "inference runtime",
        build_runtime_sources(settings),
        load,
    )
