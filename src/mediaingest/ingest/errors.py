"""Failure types raised inside the ingestion pipeline.

Only ``LockContention``, ``AdmissionDenied`` and ``AllMethodsExhausted`` ever
reach a caller, and then only as an ``IngestionResult``. The others are
absorbed where they are raised.
"""

from __future__ import annotations

from typing import Optional, Sequence

from .models import IngestStatus, Method


class IngestError(Exception):
    """Base class for pipeline failures that map to a result status."""

    status: IngestStatus = IngestStatus.EXHAUSTED


class LockContention(IngestError):
    """Another attempt already holds the lock for this resource."""

    status = IngestStatus.IN_PROGRESS

    def __init__(self, key: str) -> None:
        super().__init__(f"Ingestion already in progress for {key}")
        self.key = key


class AdmissionDenied(IngestError):
    """Not enough disk headroom to start the download."""

    status = IngestStatus.DENIED

    def __init__(self, reason: str) -> None:
        super().__init__(f"Disk admission denied: {reason}")
        self.reason = reason


class AllMethodsExhausted(IngestError):
    """Every download method failed for this attempt."""

    status = IngestStatus.EXHAUSTED

    def __init__(self, failures: Sequence[tuple[Method, str]]) -> None:
        self.failures = list(failures)
        detail = "; ".join(f"{method.value}: {error}" for method, error in self.failures)
        super().__init__(f"All download methods failed ({detail})")

    @property
    def messages(self) -> list[str]:
        return [f"{method.value}: {error}" for method, error in self.failures]


class ProbeInconclusive(Exception):
    """No candidate URL reported a usable size."""


class TransferFailed(Exception):
    """A single download method failed (network, HTTP or verification)."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class DiskIntrospectionUnavailable(Exception):
    """Filesystem usage could not be sampled."""
