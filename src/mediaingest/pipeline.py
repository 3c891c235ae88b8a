"""Process-wide wiring of the ingestion services.

One ``IngestPipeline`` per process: it owns the shared HTTP client, the lock
table and the disk guard, and hands them to the orchestrator. Use it as an
async context manager so the client is closed and the monitor stopped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from .config import IngestConfig, StreamSettings
from .ingest.artifacts import ScratchDirCleaner
from .ingest.disk import DfFilesystemStats, DiskGuard
from .ingest.heavyweight import FfmpegRemuxDownloader, HeavyweightDownloader, YtDlpDownloader
from .ingest.lock import ResourceLock
from .ingest.orchestrator import IngestionOrchestrator
from .ingest.probe import SizeProbe
from .ingest.stream import StreamDownloader

logger = logging.getLogger(__name__)


def build_http_client(settings: StreamSettings) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        headers={"User-Agent": settings.user_agent},
        max_redirects=settings.max_redirects,
        timeout=httpx.Timeout(settings.connect_timeout_seconds),
    )


@dataclass
class IngestPipeline:
    config: IngestConfig
    client: httpx.AsyncClient
    lock: ResourceLock
    disk: DiskGuard
    orchestrator: IngestionOrchestrator
    owns_client: bool = True

    async def __aenter__(self) -> "IngestPipeline":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self.disk.stop_monitoring()
        self.lock.clear()
        if self.owns_client:
            await self.client.aclose()


def build_pipeline(
    config: Optional[IngestConfig] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> IngestPipeline:
    """Construct the full service graph for one process."""
    config = config or IngestConfig()
    owns_client = client is None
    if client is None:
        client = build_http_client(config.stream)

    lock = ResourceLock(config.lock.ttl_seconds)
    cleaner = ScratchDirCleaner(
        config.scratch_dir,
        min_age_seconds=config.disk.cleanup_min_age_minutes * 60.0,
        protected_keys=lock.active_keys,
    )
    disk = DiskGuard(DfFilesystemStats(config.disk_volume), cleaner, config.disk)

    min_bytes = config.stream.min_file_bytes
    heavyweight = HeavyweightDownloader(
        ffmpeg=FfmpegRemuxDownloader(
            config.heavyweight,
            min_file_bytes=min_bytes,
            user_agent=config.stream.user_agent,
        ),
        ytdlp=YtDlpDownloader(config.heavyweight, min_file_bytes=min_bytes),
    )
    orchestrator = IngestionOrchestrator(
        lock,
        disk,
        SizeProbe(client, config.probe, user_agent=config.stream.user_agent),
        StreamDownloader(client, config.stream),
        heavyweight,
        scratch_dir=config.scratch_dir,
        settings=config.probe,
    )
    logger.debug("Built ingestion pipeline (scratch=%s, volume=%s)", config.scratch_dir, config.disk_volume)
    return IngestPipeline(
        config=config,
        client=client,
        lock=lock,
        disk=disk,
        orchestrator=orchestrator,
        owns_client=owns_client,
    )
