"""
Model Loader Module.

Turns registry metadata into an in-memory artifact handle:
- Byte transport over HTTP(S) (streaming) or local files
- Progress reporting, strictly increasing and ending at 1.0
- SHA-256 checksum verification
- Per-format decode strategies (closed set, extensible via register_strategy)
- Coalescing of concurrent loads for the same artifact
- Cooperative cancellation

Blocking I/O and decoding run in the default executor; progress is marshalled
back onto the event loop before listeners are called.

Example:
    >>> loader = ModelLoader(artifact_dir="artifacts/models")
    >>> artifact = await loader.load(metadata, on_progress=print)
    >>> artifact.payload
"""

from typing import Dict, List, Optional, Any, Callable
from dataclasses import dataclass, asdict
from datetime import datetime
from pathlib import Path
from urllib.parse import urlparse, unquote
import asyncio
import io
import json
import logging
import pickle
import threading
import time

import numpy as np
import requests

from modelhub.errors import (
    UnsupportedFormatError,
    LoadFailureError,
    ChecksumMismatchError,
    LoadCancelledError,
)
from modelhub.config import DEFAULT_ARTIFACT_DIR
from .registry import ArtifactMetadata, ArtifactFormat
from .utils import compute_bytes_hash, is_sha256_digest

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]
LoadStrategy = Callable[[bytes, ArtifactMetadata], Any]


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class LoadedArtifact:
    """In-memory handle for a loaded artifact."""
    artifact_id: str
    version: str
    format: ArtifactFormat
    payload: Any
    size_bytes: int
    checksum: str
    loaded_at: datetime


@dataclass
class LoaderStats:
    """Model loader statistics."""
    total_loads: int = 0
    failed_loads: int = 0
    coalesced_loads: int = 0
    cancelled_loads: int = 0
    bytes_downloaded: int = 0
    last_load_time_ms: float = 0


# ============================================================================
# Progress Reporting
# ============================================================================

class ProgressReporter:
    """
    Fan-out of load progress to any number of listeners.

    Values are clamped to [0, 1]; a value not strictly greater than the last
    reported one is dropped, so listeners only ever see increasing progress.
    """

    def __init__(self):
        self._listeners: List[ProgressCallback] = []
        self._last = -1.0

    @property
    def current(self) -> float:
        return max(self._last, 0.0)

    def add_listener(self, callback: ProgressCallback) -> None:
        self._listeners.append(callback)
        if self._last >= 0:
            self._notify(callback, self._last)

    def report(self, value: float) -> None:
        value = min(max(float(value), 0.0), 1.0)
        if value <= self._last:
            return
        self._last = value
        for callback in list(self._listeners):
            self._notify(callback, value)

    def finish(self) -> None:
        self.report(1.0)

    @staticmethod
    def _notify(callback: ProgressCallback, value: float) -> None:
        try:
            callback(value)
        except Exception as e:
            logger.warning(f"Progress listener raised: {e}")


@dataclass
class _InflightLoad:
    task: asyncio.Task
    reporter: ProgressReporter
    cancel_event: threading.Event


# ============================================================================
# Decode Strategies
# ============================================================================

def _load_npy(data: bytes, metadata: ArtifactMetadata) -> np.ndarray:
    return np.load(io.BytesIO(data), allow_pickle=False)


def _load_npz(data: bytes, metadata: ArtifactMetadata) -> Dict[str, np.ndarray]:
    with np.load(io.BytesIO(data), allow_pickle=False) as archive:
        return {key: archive[key] for key in archive.files}


def _load_pickle(data: bytes, metadata: ArtifactMetadata) -> Any:
    return pickle.loads(data)


def _load_json(data: bytes, metadata: ArtifactMetadata) -> Any:
    return json.loads(data.decode('utf-8'))


def _load_onnx(data: bytes, metadata: ArtifactMetadata) -> bytes:
    # Serialized graph; the consumer hands it to its own runtime session
    return data


def _load_torch(data: bytes, metadata: ArtifactMetadata) -> Any:
    try:
        import torch
    except ImportError as e:
        raise LoadFailureError(f"torch is required to load {metadata.id}: {e}") from e
    return torch.load(io.BytesIO(data), map_location='cpu')


DEFAULT_STRATEGIES: Dict[ArtifactFormat, LoadStrategy] = {
    ArtifactFormat.NPY: _load_npy,
    ArtifactFormat.NPZ: _load_npz,
    ArtifactFormat.PICKLE: _load_pickle,
    ArtifactFormat.JSON: _load_json,
    ArtifactFormat.ONNX: _load_onnx,
    ArtifactFormat.TORCH: _load_torch,
}

UNSUPPORTED_MESSAGES = {
    ArtifactFormat.TFJS: "TensorFlow.js models not yet supported",
}


# ============================================================================
# Model Loader
# ============================================================================

class ModelLoader:
    """
    Async artifact loader with coalescing, progress and checksum support.

    Example:
        >>> loader = ModelLoader()
        >>> artifact = await loader.load(metadata, on_progress=lambda p: print(f"{p:.0%}"))
    """

    def __init__(
        self,
        artifact_dir: str = DEFAULT_ARTIFACT_DIR,
        base_url: Optional[str] = None,
        chunk_size: int = 64 * 1024,
        request_timeout: float = 10.0,
        verify_checksums: bool = True,
        session: Optional[requests.Session] = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        """
        Initialize model loader.

        Args:
            artifact_dir: Directory used when metadata has no source_location
            base_url: Prefix for root-relative locations such as ``/models/x.onnx``
            chunk_size: Transport chunk size in bytes
            request_timeout: HTTP timeout in seconds
            verify_checksums: Verify SHA-256 checksums when declared
            session: Optional requests session
            clock: Returns the current time (tests inject a fake)
        """
        self.artifact_dir = Path(artifact_dir)
        self.base_url = base_url.rstrip('/') if base_url else None
        self.chunk_size = chunk_size
        self.request_timeout = request_timeout
        self.verify_checksums = verify_checksums
        self.session = session or requests.Session()
        self.clock = clock

        self._strategies: Dict[ArtifactFormat, LoadStrategy] = dict(DEFAULT_STRATEGIES)
        self._inflight: Dict[str, _InflightLoad] = {}
        self._stats = LoaderStats()

    # ------------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------------

    def register_strategy(self, fmt: ArtifactFormat, strategy: LoadStrategy) -> None:
        """Add or replace the decode strategy for a format."""
        self._strategies[ArtifactFormat.parse(fmt)] = strategy
        logger.info(f"Registered load strategy for format {ArtifactFormat.parse(fmt).value}")

    def supports(self, fmt: ArtifactFormat) -> bool:
        return ArtifactFormat.parse(fmt) in self._strategies

    def is_loading(self, artifact_id: str) -> bool:
        return artifact_id in self._inflight

    async def load(
        self,
        metadata: ArtifactMetadata,
        on_progress: Optional[ProgressCallback] = None
    ) -> LoadedArtifact:
        """
        Load an artifact, joining an in-flight load for the same id.

        Args:
            metadata: Artifact metadata
            on_progress: Called on the event loop with values in [0, 1]

        Returns:
            LoadedArtifact

        Raises:
            UnsupportedFormatError: No strategy for metadata.format
            LoadFailureError: Transport, checksum or decode failure
        """
        entry = self._inflight.get(metadata.id)

        if entry is None:
            self._get_strategy(metadata.format)

            entry = _InflightLoad(
                task=None,
                reporter=ProgressReporter(),
                cancel_event=threading.Event(),
            )
            entry.task = asyncio.get_running_loop().create_task(
                self._run_load(metadata, entry.reporter, entry.cancel_event)
            )
            self._inflight[metadata.id] = entry
            entry.task.add_done_callback(
                lambda task, aid=metadata.id, own=entry: self._on_load_done(aid, own, task)
            )
        else:
            self._stats.coalesced_loads += 1
            logger.debug(f"Joining in-flight load for {metadata.id}")

        if on_progress is not None:
            entry.reporter.add_listener(on_progress)

        return await asyncio.shield(entry.task)

    def cancel(self, artifact_id: str) -> bool:
        """
        Request cancellation of an in-flight load.

        Awaiters of the load receive LoadCancelledError.

        Returns:
            True if a load was in flight
        """
        entry = self._inflight.get(artifact_id)
        if entry is None:
            return False
        entry.cancel_event.set()
        logger.info(f"Cancellation requested for {artifact_id}")
        return True

    def cancel_all(self) -> int:
        return sum(1 for artifact_id in list(self._inflight) if self.cancel(artifact_id))

    def get_stats(self) -> Dict[str, Any]:
        stats = asdict(self._stats)
        stats['inflight'] = sorted(self._inflight)
        stats['formats'] = sorted(fmt.value for fmt in self._strategies)
        return stats

    # ------------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------------

    def _get_strategy(self, fmt: ArtifactFormat) -> LoadStrategy:
        strategy = self._strategies.get(fmt)
        if strategy is None:
            message = UNSUPPORTED_MESSAGES.get(fmt, f"Unsupported model format: {getattr(fmt, 'value', fmt)}")
            raise UnsupportedFormatError(message)
        return strategy

    def _on_load_done(self, artifact_id: str, entry: _InflightLoad, task: asyncio.Task) -> None:
        if self._inflight.get(artifact_id) is entry:
            del self._inflight[artifact_id]
        if not task.cancelled():
            # Mark retrieved; awaiters may all have gone away
            task.exception()

    async def _run_load(
        self,
        metadata: ArtifactMetadata,
        reporter: ProgressReporter,
        cancel_event: threading.Event
    ) -> LoadedArtifact:
        loop = asyncio.get_running_loop()
        strategy = self._get_strategy(metadata.format)
        start_time = time.perf_counter()

        def progress(value: float) -> None:
            loop.call_soon_threadsafe(reporter.report, value)

        logger.info(f"Loading model {metadata.id} v{metadata.version} ({metadata.format.value})")
        reporter.report(0.0)

        try:
            data = await loop.run_in_executor(
                None, self._fetch_bytes, metadata, progress, cancel_event
            )
            if cancel_event.is_set():
                raise LoadCancelledError(f"Load of {metadata.id} was cancelled")
            self._verify_checksum(metadata, data)
            payload = await loop.run_in_executor(None, strategy, data, metadata)
        except LoadCancelledError:
            self._stats.cancelled_loads += 1
            logger.info(f"Load of {metadata.id} cancelled")
            raise
        except (UnsupportedFormatError, LoadFailureError) as e:
            self._stats.failed_loads += 1
            logger.error(f"Failed to load model {metadata.id}: {e}")
            raise
        except Exception as e:
            self._stats.failed_loads += 1
            logger.error(f"Failed to load model {metadata.id}: {e}")
            raise LoadFailureError(f"Failed to load model {metadata.id}: {e}") from e

        reporter.finish()

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        self._stats.total_loads += 1
        self._stats.bytes_downloaded += len(data)
        self._stats.last_load_time_ms = elapsed_ms
        logger.info(f"Model {metadata.id} loaded: {len(data)} bytes in {elapsed_ms:.1f}ms")

        return LoadedArtifact(
            artifact_id=metadata.id,
            version=metadata.version,
            format=metadata.format,
            payload=payload,
            size_bytes=len(data),
            checksum=metadata.checksum,
            loaded_at=self.clock(),
        )

    def _resolve_location(self, metadata: ArtifactMetadata) -> str:
        location = metadata.source_location
        if not location:
            return str(self.artifact_dir / f"{metadata.id}{metadata.format.suffix}")
        if location.startswith('/') and self.base_url:
            return f"{self.base_url}{location}"
        return location

    def _fetch_bytes(
        self,
        metadata: ArtifactMetadata,
        progress: ProgressCallback,
        cancel_event: threading.Event
    ) -> bytes:
        location = self._resolve_location(metadata)
        scheme = urlparse(location).scheme.lower()

        if scheme in ('http', 'https'):
            return self._download_http(location, progress, cancel_event)
        if scheme == 'file':
            location = unquote(urlparse(location).path)
        return self._read_file(Path(location), progress, cancel_event)

    def _download_http(
        self,
        url: str,
        progress: ProgressCallback,
        cancel_event: threading.Event
    ) -> bytes:
        try:
            response = self.session.get(url, stream=True, timeout=self.request_timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise LoadFailureError(f"Failed to download model: {e}") from e

        try:
            total = int(response.headers.get('content-length') or 0)
        except ValueError:
            total = 0

        buffer = bytearray()
        try:
            for chunk in response.iter_content(chunk_size=self.chunk_size):
                if cancel_event.is_set():
                    raise LoadCancelledError(f"Download of {url} was cancelled")
                if not chunk:
                    continue
                buffer.extend(chunk)
                if total:
                    progress(len(buffer) / total)
        except requests.RequestException as e:
            raise LoadFailureError(f"Failed to download model: {e}") from e
        finally:
            response.close()

        return bytes(buffer)

    def _read_file(
        self,
        path: Path,
        progress: ProgressCallback,
        cancel_event: threading.Event
    ) -> bytes:
        if not path.exists():
            raise LoadFailureError(f"Model file not found: {path}")

        total = path.stat().st_size
        buffer = bytearray()
        with open(path, 'rb') as f:
            for chunk in iter(lambda: f.read(self.chunk_size), b''):
                if cancel_event.is_set():
                    raise LoadCancelledError(f"Read of {path} was cancelled")
                buffer.extend(chunk)
                if total:
                    progress(len(buffer) / total)
        return bytes(buffer)

    def _verify_checksum(self, metadata: ArtifactMetadata, data: bytes) -> None:
        if not self.verify_checksums:
            return
        if not is_sha256_digest(metadata.checksum):
            logger.debug(f"Skipping checksum for {metadata.id}: not a SHA-256 digest")
            return
        actual = compute_bytes_hash(data, 'sha256')
        if actual.lower() != metadata.checksum.lower():
            raise ChecksumMismatchError(
                f"Checksum mismatch for {metadata.id}: expected {metadata.checksum}, got {actual}"
            )
