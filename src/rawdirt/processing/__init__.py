"""File processing: pipeline, worker pool and batch runner."""

from __future__ import annotations

from typing import Any

__all__ = [
    "BatchRunner",
    "BatchStats",
    "FileJob",
    "FileProcessingPipeline",
    "ProcessedResult",
    "WorkerPool",
]


def __getattr__(name: str) -> Any:
    if name in {"BatchRunner", "BatchStats"}:
        from rawdirt.processing import batch

        return getattr(batch, name)
    if name in {"FileJob", "ProcessedResult"}:
        from rawdirt.processing import models

        return getattr(models, name)
    if name == "FileProcessingPipeline":
        from rawdirt.processing.pipeline import FileProcessingPipeline

        return FileProcessingPipeline
    if name == "WorkerPool":
        from rawdirt.processing.pool import WorkerPool

        return WorkerPool
    raise AttributeError(name)
