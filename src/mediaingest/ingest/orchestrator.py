"""End-to-end ingestion of one URL.

Order of operations for ``IngestionOrchestrator.ingest``:

1. Derive the resource key and take its lock (held => ``in_progress``).
2. Probe the size (never fails; unknown size means heavyweight).
3. Ask the disk guard for admission (unsafe => ``denied``).
4. Run the selected method, then the other one once if it fails.
5. Release the lock and return a single ``IngestionResult``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Protocol

from ..config import ProbeSettings
from .artifacts import discard_partial, scratch_path
from .disk import DiskGuard
from .errors import AdmissionDenied, AllMethodsExhausted, IngestError, LockContention
from .lock import ResourceLock
from .models import (
    IngestionResult,
    IngestStatus,
    Method,
    MethodRecommendation,
    SizeEstimate,
    TransferOutcome,
)
from .policy import match_resource, resource_key, stream_url
from .probe import SizeProbe

logger = logging.getLogger(__name__)


class Downloader(Protocol):
    method: Method

    async def download(self, url: str, destination: Path) -> TransferOutcome: ...


def format_size(estimate: SizeEstimate) -> str:
    return "unknown" if estimate.is_unknown else f"{estimate.size_mb:.2f}MB"


class IngestionOrchestrator:
    """Owns the lifecycle of each ingestion attempt.

    The lock, disk guard, probe and downloaders are shared services passed in
    by the caller; see ``mediaingest.pipeline.build_pipeline``.
    """

    def __init__(
        self,
        lock: ResourceLock,
        disk: DiskGuard,
        probe: SizeProbe,
        stream: Downloader,
        heavyweight: Downloader,
        *,
        scratch_dir: Path,
        settings: Optional[ProbeSettings] = None,
    ) -> None:
        self.lock = lock
        self.disk = disk
        self.probe = probe
        self.settings = settings or ProbeSettings()
        self.scratch_dir = Path(scratch_dir)
        self._downloaders = {
            Method.STREAM: stream,
            Method.HEAVYWEIGHT: heavyweight,
        }

    async def ingest(self, url: str, destination: Optional[Path] = None) -> IngestionResult:
        key = resource_key(url)
        if not self.lock.acquire(key):
            return self._failed(LockContention(key), key)

        try:
            return await self._attempt(url, key, destination)
        finally:
            self.lock.release(key)

    async def get_recommended_method(self, url: str) -> MethodRecommendation:
        """Probe only: which method ``ingest`` would start with. No lock, no disk."""
        estimate = await self.probe.estimate(url)
        size = format_size(estimate)
        if estimate.is_unknown:
            return MethodRecommendation(
                method=Method.HEAVYWEIGHT,
                reason="File size could not be determined; heavyweight download is the safe choice",
                estimated_size=size,
            )
        if estimate.needs_heavyweight:
            return MethodRecommendation(
                method=Method.HEAVYWEIGHT,
                reason=f"Large file ({size}) requires heavyweight download for reliability",
                estimated_size=size,
            )
        return MethodRecommendation(
            method=Method.STREAM,
            reason=f"Small to medium file ({size}) can use direct streaming download",
            estimated_size=size,
        )

    async def _attempt(self, url: str, key: str, destination: Optional[Path]) -> IngestionResult:
        estimate = await self.probe.estimate(url)
        path = Path(destination) if destination is not None else scratch_path(self.scratch_dir, key)

        try:
            await self._admit(estimate)
            outcome = await self._transfer(url, estimate, path)
        except IngestError as exc:
            return self._failed(exc, key, size_mb=estimate.size_mb)

        logger.info("Ingested %s via %s -> %s", key, outcome.method.value, path)
        return IngestionResult(
            success=True,
            status=IngestStatus.SUCCEEDED,
            method_used=outcome.method,
            file_path=path,
            file_size_bytes=outcome.size_bytes,
            size_mb=estimate.size_mb,
            resource_key=key,
        )

    async def _admit(self, estimate: SizeEstimate) -> None:
        size_mb = self.settings.unknown_size_mb if estimate.is_unknown else estimate.size_mb
        decision = await self.disk.is_safe_for_operation(size_mb)
        if not decision.safe:
            raise AdmissionDenied(decision.reason or "operation not safe")

    async def _transfer(self, url: str, estimate: SizeEstimate, path: Path) -> TransferOutcome:
        primary = Method.HEAVYWEIGHT if estimate.needs_heavyweight else Method.STREAM
        failures: list[tuple[Method, str]] = []

        for method in (primary, primary.other):
            if failures:
                logger.warning("%s download failed, falling back to %s", primary.value, method.value)
            outcome = await self._run(method, url, estimate, path)
            if outcome.success:
                return outcome
            failures.append((method, outcome.error or "unknown error"))

        raise AllMethodsExhausted(failures)

    async def _run(self, method: Method, url: str, estimate: SizeEstimate, path: Path) -> TransferOutcome:
        downloader = self._downloaders[method]
        if method is Method.STREAM:
            source = self._stream_source(url, estimate)
        else:
            source = url

        try:
            return await downloader.download(source, path)
        except Exception as exc:
            logger.exception("%s downloader raised for %s", method.value, url)
            discard_partial(path)
            return TransferOutcome(success=False, method=method, error=f"Unexpected error: {exc}")

    @staticmethod
    def _stream_source(url: str, estimate: SizeEstimate) -> str:
        content_type = (estimate.content_type or "").lower()
        if estimate.conclusive and "html" not in content_type:
            return estimate.probed_url
        return stream_url(url, match_resource(url))

    @staticmethod
    def _failed(exc: IngestError, key: str, *, size_mb: float = 0.0) -> IngestionResult:
        if isinstance(exc, AllMethodsExhausted):
            errors = exc.messages
            logger.error("Ingestion of %s failed: %s", key, exc)
        else:
            errors = [str(exc)]
            logger.warning("Ingestion of %s not attempted: %s", key, exc)
        return IngestionResult(
            success=False,
            status=exc.status,
            error=str(exc),
            errors=errors,
            size_mb=size_mb,
            resource_key=key,
        )
