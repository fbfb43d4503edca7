"""
Test helpers shared across the suite.
"""

import asyncio
import hashlib
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from modelhub.errors import LoadCancelledError
from modelhub.registry import ArtifactMetadata, LoadedArtifact


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = datetime(2026, 1, 15, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class StubLoader:
    """
    Loader double for lifecycle tests.

    Records every load, reports progress 0.5 then 1.0, optionally waits
    ``delay`` seconds (observing cancel()) and optionally raises ``error``.
    """

    def __init__(self, payload: Any = None, delay: float = 0.0, error: Optional[Exception] = None):
        self.payload = payload if payload is not None else {"weights": [1.0, 2.0]}
        self.delay = delay
        self.error = error
        self.calls: List[str] = []
        self.cancelled: List[str] = []
        self._cancel_requested = set()

    async def load(self, metadata: ArtifactMetadata, on_progress=None) -> LoadedArtifact:
        self.calls.append(metadata.id)
        self._cancel_requested.discard(metadata.id)
        if on_progress:
            on_progress(0.5)

        waited = 0.0
        while waited < self.delay:
            if metadata.id in self._cancel_requested:
                raise LoadCancelledError(f"Load of {metadata.id} was cancelled")
            await asyncio.sleep(0.01)
            waited += 0.01

        if self.error is not None:
            raise self.error
        if on_progress:
            on_progress(1.0)
        return LoadedArtifact(
            artifact_id=metadata.id,
            version=metadata.version,
            format=metadata.format,
            payload=self.payload,
            size_bytes=metadata.size_bytes,
            checksum=metadata.checksum,
            loaded_at=datetime(2026, 1, 15, 12, 0, 0),
        )

    def cancel(self, artifact_id: str) -> bool:
        self.cancelled.append(artifact_id)
        self._cancel_requested.add(artifact_id)
        return True


def make_metadata(artifact_id: str = "test-model", **overrides) -> ArtifactMetadata:
    data: Dict[str, Any] = {
        "id": artifact_id,
        "name": artifact_id.replace("-", " ").title(),
        "version": "1.0.0",
        "size_bytes": 1024,
        "format": "json",
        "declared_accuracy": 0.8,
        "checksum": "",
    }
    data.update(overrides)
    return ArtifactMetadata.from_dict(data)


def write_artifact(path, data: bytes) -> str:
    """Write artifact bytes and return their SHA-256 digest."""
    path.write_bytes(data)
    return hashlib.sha256(data).hexdigest()
