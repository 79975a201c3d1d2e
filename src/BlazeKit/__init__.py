"""BlazeKit: a client for the B2 object-storage API.

Highlights:
- Standard and multipart uploads that hash exactly the bytes they send.
- 503 backoff with a bounded retry budget.
- Authorization and bucket listings cached with explicit lifetimes.
"""

__version__ = "0.1.0"

from .cancellation import CancellationToken
from .client import B2Client
from .errors import (
    BlazeKitError,
    CacheError,
    ConfigurationError,
    NotFoundError,
    RemoteRequestError,
    ServiceUnavailableError,
    SourceChangedError,
    UnauthorizedError,
    UploadCancelledError,
    ValidationError,
)
from .models import (
    BucketById,
    BucketByName,
    BucketRecord,
    BucketType,
    Capability,
    FileById,
    FileByName,
    FileRecord,
)
from .settings import ClientSettings, load_settings

__all__ = [
    "__version__",
    "B2Client",
    "BlazeKitError",
    "BucketById",
    "BucketByName",
    "BucketRecord",
    "BucketType",
    "CacheError",
    "CancellationToken",
    "Capability",
    "ClientSettings",
    "ConfigurationError",
    "FileById",
    "FileByName",
    "FileRecord",
    "NotFoundError",
    "RemoteRequestError",
    "ServiceUnavailableError",
    "SourceChangedError",
    "UnauthorizedError",
    "UploadCancelledError",
    "ValidationError",
    "load_settings",
]
