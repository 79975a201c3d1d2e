"""Records exchanged with the service and the request shapes that address them.

Records are immutable snapshots built from JSON payloads.  Request shapes
(``BucketById``/``BucketByName`` and ``FileById``/``FileByName``) replace the
loosely-typed option maps a caller would otherwise pass around, so that the
"id if present, otherwise name" branching is resolved once at the boundary.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from .errors import ValidationError

__all__ = [
    "BucketType",
    "Capability",
    "AuthSessionState",
    "BucketRecord",
    "FileRecord",
    "BucketById",
    "BucketByName",
    "BucketRef",
    "FileById",
    "FileByName",
    "FileRef",
    "as_bucket_ref",
    "UploadPath",
    "UploadPlan",
    "PartDescriptor",
]


class BucketType(str, Enum):
    PUBLIC = "allPublic"
    PRIVATE = "allPrivate"

    @classmethod
    def coerce(cls, value: Union["BucketType", str]) -> "BucketType":
        """Return the matching member or raise :class:`ValidationError`."""

        try:
            return cls(value)
        except ValueError:
            raise ValidationError(
                f"Bucket type must be {cls.PRIVATE.value} or {cls.PUBLIC.value}"
            ) from None


class Capability(str, Enum):
    """Capability names an application key may be granted."""

    LIST_KEYS = "listKeys"
    WRITE_KEYS = "writeKeys"
    DELETE_KEYS = "deleteKeys"
    LIST_ALL_BUCKET_NAMES = "listAllBucketNames"
    LIST_BUCKETS = "listBuckets"
    READ_BUCKETS = "readBuckets"
    WRITE_BUCKETS = "writeBuckets"
    DELETE_BUCKETS = "deleteBuckets"
    READ_BUCKET_RETENTIONS = "readBucketRetentions"
    WRITE_BUCKET_RETENTIONS = "writeBucketRetentions"
    READ_BUCKET_ENCRYPTION = "readBucketEncryption"
    WRITE_BUCKET_ENCRYPTION = "writeBucketEncryption"
    LIST_FILES = "listFiles"
    READ_FILES = "readFiles"
    SHARE_FILES = "shareFiles"
    WRITE_FILES = "writeFiles"
    DELETE_FILES = "deleteFiles"
    READ_FILE_LEGAL_HOLDS = "readFileLegalHolds"
    WRITE_FILE_LEGAL_HOLDS = "writeFileLegalHolds"
    READ_FILE_RETENTIONS = "readFileRetentions"
    WRITE_FILE_RETENTIONS = "writeFileRetentions"
    BYPASS_GOVERNANCE = "bypassGovernance"


@dataclass(frozen=True, slots=True)
class AuthSessionState:
    """Complete result of one authorization exchange.

    ``api_url`` already carries the versioned path (``.../b2api/v1``) so
    callers only append the endpoint name.
    """

    authorization_token: str
    api_url: str
    download_url: str
    recommended_part_size: int
    account_id: str
    absolute_minimum_part_size: int
    capabilities: Tuple[str, ...]
    cached_at: float

    @classmethod
    def from_payload(
        cls,
        payload: Mapping[str, Any],
        *,
        version_path: str,
        cached_at: Optional[float] = None,
    ) -> "AuthSessionState":
        allowed = payload.get("allowed") or {}
        part_size = int(payload["recommendedPartSize"])
        return cls(
            authorization_token=str(payload["authorizationToken"]),
            api_url=str(payload["apiUrl"]).rstrip("/") + version_path,
            download_url=str(payload["downloadUrl"]).rstrip("/"),
            recommended_part_size=part_size,
            account_id=str(payload.get("accountId") or ""),
            absolute_minimum_part_size=int(payload.get("absoluteMinimumPartSize") or part_size),
            capabilities=tuple(allowed.get("capabilities") or ()),
            cached_at=time.time() if cached_at is None else float(cached_at),
        )

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "authorization_token": self.authorization_token,
            "api_url": self.api_url,
            "download_url": self.download_url,
            "recommended_part_size": self.recommended_part_size,
            "account_id": self.account_id,
            "absolute_minimum_part_size": self.absolute_minimum_part_size,
            "capabilities": list(self.capabilities),
            "cached_at": self.cached_at,
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "AuthSessionState":
        return cls(
            authorization_token=str(data["authorization_token"]),
            api_url=str(data["api_url"]),
            download_url=str(data["download_url"]),
            recommended_part_size=int(data["recommended_part_size"]),
            account_id=str(data["account_id"]),
            absolute_minimum_part_size=int(data["absolute_minimum_part_size"]),
            capabilities=tuple(data.get("capabilities") or ()),
            cached_at=float(data["cached_at"]),
        )

    def has_capability(self, capability: Union[Capability, str]) -> bool:
        name = capability.value if isinstance(capability, Capability) else capability
        return name in self.capabilities


_BUCKET_CORE_KEYS = frozenset({"bucketId", "bucketName", "bucketType", "revision", "accountId"})


@dataclass(frozen=True, slots=True)
class BucketRecord:
    """Bucket as reported by the listing/creation endpoints.

    Policy fields (CORS rules, lifecycle rules, bucket info, lock and
    encryption settings) are kept verbatim in ``attributes``.
    """

    bucket_id: str
    name: str
    bucket_type: str
    revision: Optional[int] = None
    account_id: Optional[str] = None
    attributes: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "BucketRecord":
        revision = payload.get("revision")
        return cls(
            bucket_id=str(payload["bucketId"]),
            name=str(payload["bucketName"]),
            bucket_type=str(payload.get("bucketType") or ""),
            revision=int(revision) if revision is not None else None,
            account_id=payload.get("accountId"),
            attributes={k: v for k, v in payload.items() if k not in _BUCKET_CORE_KEYS},
        )

    @property
    def cors_rules(self) -> Any:
        return self.attributes.get("corsRules")

    @property
    def lifecycle_rules(self) -> Any:
        return self.attributes.get("lifecycleRules")

    @property
    def is_public(self) -> bool:
        return self.bucket_type == BucketType.PUBLIC.value


@dataclass(frozen=True, slots=True)
class FileRecord:
    """File version produced by an upload, a listing, or a file-info lookup."""

    file_id: str
    file_name: str
    bucket_id: Optional[str]
    content_type: Optional[str]
    content_length: int
    content_sha1: Optional[str]
    upload_timestamp: Optional[int]
    action: str = "upload"
    file_info: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "FileRecord":
        length = payload.get("contentLength", payload.get("size"))
        timestamp = payload.get("uploadTimestamp")
        return cls(
            file_id=str(payload["fileId"]),
            file_name=str(payload["fileName"]),
            bucket_id=payload.get("bucketId"),
            content_type=payload.get("contentType"),
            content_length=int(length or 0),
            content_sha1=payload.get("contentSha1"),
            upload_timestamp=int(timestamp) if timestamp is not None else None,
            action=str(payload.get("action") or "upload"),
            file_info=dict(payload.get("fileInfo") or {}),
        )

    @property
    def is_complete(self) -> bool:
        """False for large files that were started but never finished."""

        return self.action != "start"

    @property
    def last_modified_millis(self) -> Optional[int]:
        raw = self.file_info.get("src_last_modified_millis")
        if raw is not None:
            return int(raw)
        return self.upload_timestamp


@dataclass(frozen=True, slots=True)
class BucketById:
    bucket_id: str


@dataclass(frozen=True, slots=True)
class BucketByName:
    name: str


BucketRef = Union[BucketById, BucketByName]


@dataclass(frozen=True, slots=True)
class FileById:
    file_id: str


@dataclass(frozen=True, slots=True)
class FileByName:
    bucket: BucketRef
    file_name: str


FileRef = Union[FileById, FileByName]


def as_bucket_ref(value: Union[BucketRecord, BucketById, BucketByName, str]) -> BucketRef:
    """Normalise the accepted bucket arguments; plain strings are bucket names."""

    if isinstance(value, (BucketById, BucketByName)):
        return value
    if isinstance(value, BucketRecord):
        return BucketById(value.bucket_id)
    if isinstance(value, str) and value:
        return BucketByName(value)
    raise ValidationError(f"Unsupported bucket reference: {value!r}")


class UploadPath(str, Enum):
    STANDARD = "standard"
    MULTIPART = "multipart"


@dataclass(slots=True)
class UploadPlan:
    """Decision and digests for one upload call."""

    total_size: int
    content_sha1: str
    path: UploadPath
    part_size: int
    part_sha1s: list[str] = field(default_factory=list)

    @property
    def part_count(self) -> int:
        if self.path is UploadPath.STANDARD:
            return 1
        return -(-self.total_size // self.part_size)


@dataclass(frozen=True, slots=True)
class PartDescriptor:
    """One part transfer: byte range, digest, and its single-use upload target."""

    part_number: int
    offset: int
    length: int
    content_sha1: str
    upload_url: str
    authorization_token: str
