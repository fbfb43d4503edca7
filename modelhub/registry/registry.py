"""
Artifact Registry Module.

Metadata for every inference artifact the hub can serve:
- Closed set of artifact formats, rejected at parse time if unknown
- Immutable metadata records (updates replace the record)
- JSON registry file with a built-in default set
- Remote registry feed for update checks

Example:
    >>> from modelhub.registry import ArtifactRegistry
    >>> registry = ArtifactRegistry("artifacts/models/registry.json")
    >>> entries = registry.load()
    >>> latest = registry.fetch_latest()
"""

from typing import Dict, List, Optional, Any, NewType
from dataclasses import dataclass, asdict, replace
from datetime import datetime
from enum import Enum
from pathlib import Path
import json
import logging

import requests

from modelhub.errors import UnsupportedFormatError
from modelhub.config import DEFAULT_REGISTRY_PATH
from .utils import ensure_directory

logger = logging.getLogger(__name__)

ArtifactId = NewType('ArtifactId', str)


# ============================================================================
# Enumerations
# ============================================================================

class ArtifactFormat(str, Enum):
    ONNX = 'onnx'
    TFJS = 'tfjs'
    NPY = 'npy'
    NPZ = 'npz'
    PICKLE = 'pickle'
    JSON = 'json'
    TORCH = 'torch'

    @property
    def suffix(self) -> str:
        return {
            ArtifactFormat.ONNX: '.onnx',
            ArtifactFormat.TFJS: '/model.json',
            ArtifactFormat.NPY: '.npy',
            ArtifactFormat.NPZ: '.npz',
            ArtifactFormat.PICKLE: '.pkl',
            ArtifactFormat.JSON: '.json',
            ArtifactFormat.TORCH: '.pt',
        }[self]

    @classmethod
    def parse(cls, value: Any) -> "ArtifactFormat":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise UnsupportedFormatError(f"Unsupported model format: {value}")


class Quantization(str, Enum):
    INT8 = 'int8'
    FLOAT16 = 'float16'
    FLOAT32 = 'float32'


class DeploymentTag(str, Enum):
    EDGE = 'edge'
    CLOUD = 'cloud'
    HYBRID = 'hybrid'


# ============================================================================
# Metadata
# ============================================================================

def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if not value:
        return datetime.now()
    text = str(value)
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    parsed = datetime.fromisoformat(text)
    # Compare everything as naive local time
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


@dataclass(frozen=True)
class ArtifactMetadata:
    """Immutable description of a registered artifact."""
    id: ArtifactId
    name: str
    version: str
    size_bytes: int
    format: ArtifactFormat
    quantization: Quantization = Quantization.FLOAT32
    declared_accuracy: float = 0.0
    declared_latency_ms: float = 0.0
    deployment_tag: DeploymentTag = DeploymentTag.EDGE
    last_updated: datetime = None
    checksum: str = ''
    source_location: Optional[str] = None
    training_dataset: Optional[str] = None

    def __post_init__(self):
        # Frozen: coerce through object.__setattr__
        object.__setattr__(self, 'format', ArtifactFormat.parse(self.format))
        object.__setattr__(self, 'quantization', Quantization(self.quantization))
        object.__setattr__(self, 'deployment_tag', DeploymentTag(self.deployment_tag))
        object.__setattr__(self, 'last_updated', _parse_datetime(self.last_updated))
        if not 0.0 <= float(self.declared_accuracy) <= 1.0:
            raise ValueError(f"declared_accuracy out of range for {self.id}: {self.declared_accuracy}")
        if int(self.size_bytes) < 0:
            raise ValueError(f"size_bytes must be non-negative for {self.id}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ArtifactMetadata":
        """
        Build metadata from a registry entry.

        Accepts both snake_case keys and the camelCase keys used by the
        registry feed (``modelId``, ``modelName``, ``size``, ``accuracy``,
        ``latency``, ``deploymentType``, ``lastUpdated``, ``url``).

        Raises:
            UnsupportedFormatError: format tag is not a known ArtifactFormat
            KeyError: required field missing
        """
        def pick(*keys, default=None):
            for key in keys:
                if key in data and data[key] is not None:
                    return data[key]
            return default

        artifact_id = pick('id', 'modelId')
        if artifact_id is None:
            raise KeyError("Registry entry missing 'id'")

        return cls(
            id=ArtifactId(str(artifact_id)),
            name=pick('name', 'modelName', default=str(artifact_id)),
            version=str(pick('version', default='0.0.0')),
            size_bytes=int(pick('size_bytes', 'size', default=0)),
            format=ArtifactFormat.parse(pick('format', default='')),
            quantization=pick('quantization', default='float32'),
            declared_accuracy=float(pick('declared_accuracy', 'accuracy', default=0.0)),
            declared_latency_ms=float(pick('declared_latency_ms', 'latency', default=0.0)),
            deployment_tag=pick('deployment_tag', 'deploymentType', default='edge'),
            last_updated=pick('last_updated', 'lastUpdated'),
            checksum=str(pick('checksum', default='')),
            source_location=pick('source_location', 'url'),
            training_dataset=pick('training_dataset', 'trainingDataset'),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['format'] = self.format.value
        data['quantization'] = self.quantization.value
        data['deployment_tag'] = self.deployment_tag.value
        data['last_updated'] = self.last_updated.isoformat()
        return data

    def with_updates(self, **changes) -> "ArtifactMetadata":
        return replace(self, **changes)


# ============================================================================
# Default Registry
# ============================================================================

MB = 1024 * 1024

DEFAULT_ARTIFACTS: List[Dict[str, Any]] = [
    {
        'id': 'educational-content-model',
        'name': 'Educational Content Model',
        'version': '1.0.0',
        'size_bytes': 400 * MB,
        'format': 'onnx',
        'quantization': 'int8',
        'declared_accuracy': 0.87,
        'declared_latency_ms': 300,
        'deployment_tag': 'edge',
        'training_dataset': 'NCERT + DIKSHA',
        'checksum': 'abc123',
    },
    {
        'id': 'performance-prediction-model',
        'name': 'Performance Prediction Model',
        'version': '1.0.0',
        'size_bytes': 300 * MB,
        'format': 'onnx',
        'quantization': 'int8',
        'declared_accuracy': 0.82,
        'declared_latency_ms': 150,
        'deployment_tag': 'edge',
        'training_dataset': 'Student Activity Data',
        'checksum': 'def456',
    },
    {
        'id': 'content-recommender-model',
        'name': 'Content Recommender Model',
        'version': '1.0.0',
        'size_bytes': 450 * MB,
        'format': 'onnx',
        'quantization': 'int8',
        'declared_accuracy': 0.75,
        'declared_latency_ms': 180,
        'deployment_tag': 'hybrid',
        'training_dataset': 'User Interactions',
        'checksum': 'ghi789',
    },
    {
        'id': 'cultural-context-model',
        'name': 'Cultural Context Model',
        'version': '1.0.0',
        'size_bytes': 350 * MB,
        'format': 'onnx',
        'quantization': 'int8',
        'declared_accuracy': 0.92,
        'declared_latency_ms': 250,
        'deployment_tag': 'edge',
        'training_dataset': 'Indian Cultural Content',
        'checksum': 'jkl012',
    },
]


def parse_registry_entries(raw: Any) -> List[ArtifactMetadata]:
    """
    Parse a registry document into metadata records.

    Accepts a JSON array or an object with a ``models`` list. Entries with an
    unknown format or missing id are skipped with a warning.
    """
    if isinstance(raw, dict):
        raw = raw.get('models', [])
    if not isinstance(raw, list):
        raise ValueError("Invalid registry schema: expected a list of models")

    entries = []
    for item in raw:
        try:
            entries.append(ArtifactMetadata.from_dict(item))
        except (UnsupportedFormatError, KeyError, ValueError, TypeError) as e:
            logger.warning(f"Skipping registry entry {item.get('id', item.get('modelId')) if isinstance(item, dict) else item}: {e}")
    return entries


# ============================================================================
# Artifact Registry
# ============================================================================

class ArtifactRegistry:
    """
    Source of artifact metadata: local registry file plus remote feed.

    The lifecycle manager owns the live table; this class only reads and
    writes the registry document and queries the feed.
    """

    def __init__(
        self,
        registry_path: str = DEFAULT_REGISTRY_PATH,
        registry_url: Optional[str] = None,
        request_timeout: float = 10.0,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize registry.

        Args:
            registry_path: Path to registry.json
            registry_url: Remote feed returning a JSON array of metadata
            request_timeout: HTTP timeout in seconds
            session: Optional requests session (tests inject a fake)
        """
        self.registry_path = Path(registry_path)
        self.registry_url = registry_url
        self.request_timeout = request_timeout
        self.session = session or requests.Session()

    def load(self) -> List[ArtifactMetadata]:
        """Load the registry file, or the default registry if it is absent or invalid."""
        if not self.registry_path.exists():
            logger.info(f"No registry at {self.registry_path}, using {len(DEFAULT_ARTIFACTS)} default models")
            return parse_registry_entries(DEFAULT_ARTIFACTS)

        try:
            with open(self.registry_path, 'r', encoding='utf-8') as f:
                return parse_registry_entries(json.load(f))
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to read registry {self.registry_path}: {e}, using defaults")
            return parse_registry_entries(DEFAULT_ARTIFACTS)

    def save(self, entries: List[ArtifactMetadata]) -> None:
        """Save registry to JSON file."""
        ensure_directory(self.registry_path.parent)
        document = {
            'models': [entry.to_dict() for entry in entries],
            'last_updated': datetime.now().isoformat(),
        }
        with open(self.registry_path, 'w', encoding='utf-8') as f:
            json.dump(document, f, indent=2, ensure_ascii=False)

    def fetch_latest(self) -> List[ArtifactMetadata]:
        """
        Fetch the remote registry feed.

        Returns:
            Parsed entries, or [] when no feed is configured or the request
            fails for any reason.
        """
        if not self.registry_url:
            return []
        try:
            response = self.session.get(self.registry_url, timeout=self.request_timeout)
            response.raise_for_status()
            return parse_registry_entries(response.json())
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"Failed to check for model updates: {e}")
            return []

    def find_latest(self, artifact_id: str) -> Optional[ArtifactMetadata]:
        for entry in self.fetch_latest():
            if entry.id == artifact_id:
                return entry
        return None
