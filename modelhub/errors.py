"""
Error taxonomy for the model hub.

Each error subclasses a built-in exception as well as ``ModelHubError`` so
callers that already catch ``KeyError``/``ValueError``/``TimeoutError``
keep working.
"""


class ModelHubError(Exception):
    """Base class for model hub errors."""


class NotRegisteredError(ModelHubError, KeyError):
    """Artifact id is not present in the registry."""

    def __init__(self, artifact_id: str):
        self.artifact_id = artifact_id
        super().__init__(f"Model {artifact_id} not registered")

    def __str__(self) -> str:
        # KeyError.__str__ would repr() the message
        return self.args[0]


class UnsupportedFormatError(ModelHubError, ValueError):
    """Artifact format has no load strategy."""


class LoadFailureError(ModelHubError, RuntimeError):
    """Download, decode or checksum step failed."""


class ChecksumMismatchError(LoadFailureError):
    """Downloaded bytes do not match the declared checksum."""


class LoadCancelledError(LoadFailureError):
    """Load was cancelled before it completed."""


class CacheWriteError(ModelHubError):
    """Persistent cache could not store a record."""


class CatalogQueryError(ModelHubError):
    """Content catalog lookup failed."""


class LoadTimeoutError(ModelHubError, TimeoutError):
    """Waiting for a load exceeded its time budget."""
