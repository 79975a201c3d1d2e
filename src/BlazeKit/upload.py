"""Upload orchestration: standard single-request uploads and multipart large files.

The orchestrator runs one state machine per call::

    Sizing -> StandardUpload -> Done
    Sizing -> MultipartUpload(start -> parts... -> finish) -> Done

**Sizing** streams the source through SHA-1 once to learn its size and
whole-file digest, then compares the size with both ``large_file_limit`` and
the account's recommended part size.  Only a payload within *both* limits goes
through a single ``b2_get_upload_url`` + POST exchange.

**Multipart** uploads announce the file with ``b2_start_large_file``, transfer
``ceil(size / part_size)`` parts, each through its own freshly acquired
``b2_get_upload_part_url`` target, and close with ``b2_finish_large_file``
carrying the part digests in ascending part order.  With ``workers > 1`` the
part transfers run on a bounded thread pool; at most ``workers`` parts are
read into memory at a time and finish still waits for every part.

Every byte sent is the byte that was hashed: a part's digest and payload come
from one :func:`~BlazeKit.hashing.digest_range` read, and the standard path
re-checks its single read against the Sizing digest.

Failures are never rolled back.  A started large file whose parts failed, or
that was cancelled, is left for the caller to finish, cancel or abandon.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import FIRST_COMPLETED, Future, wait
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Mapping, Optional, Tuple
from urllib.parse import quote

from .api import ApiSession
from .buckets import BucketDirectory
from .cancellation import CancellationToken
from .concurrency import create_executor
from .errors import SourceChangedError, UploadCancelledError, ValidationError
from .hashing import (
    ByteSource,
    FileByteSource,
    Payload,
    as_byte_source,
    digest_and_size,
    digest_range,
)
from .logging_config import generate_correlation_id
from .models import BucketRef, FileRecord, PartDescriptor, UploadPath, UploadPlan
from .network.policy import (
    DEFAULT_CONTENT_TYPE,
    HEADER_AUTHORIZATION,
    HEADER_CONTENT_LENGTH,
    HEADER_CONTENT_SHA1,
    HEADER_CONTENT_TYPE,
    HEADER_FILE_NAME,
    HEADER_INFO_PREFIX,
    HEADER_LAST_MODIFIED,
    HEADER_PART_NUMBER,
)

__all__ = [
    "UploadRequest",
    "UploadOrchestrator",
    "choose_upload_path",
    "iter_part_ranges",
    "normalize_file_name",
]

logger = logging.getLogger(__name__)

# (part_number, offset, length)
PartRange = Tuple[int, int, int]


@dataclass(frozen=True)
class UploadRequest:
    """Everything one upload call needs besides the byte source."""

    bucket: BucketRef
    file_name: str
    content_type: str = DEFAULT_CONTENT_TYPE
    last_modified_millis: Optional[int] = None
    file_info: Mapping[str, str] = field(default_factory=dict)


def normalize_file_name(file_name: str) -> str:
    """Strip one leading ``/``; the service rejects absolute-looking names."""

    name = file_name[1:] if file_name.startswith("/") else file_name
    if not name:
        raise ValidationError("File name must not be empty")
    return name


def choose_upload_path(size: int, part_size: int, large_file_limit: int) -> UploadPath:
    if size <= large_file_limit and size <= part_size:
        return UploadPath.STANDARD
    return UploadPath.MULTIPART


def iter_part_ranges(size: int, part_size: int) -> Iterator[PartRange]:
    """Yield contiguous 1-based part ranges covering ``size`` bytes.

    The final part holds the remainder and is never empty; a size that is an
    exact multiple of ``part_size`` ends with a full part.
    """
    if part_size <= 0:
        raise ValidationError("part_size must be positive")
    number = 1
    offset = 0
    while offset < size:
        length = min(part_size, size - offset)
        yield number, offset, length
        number += 1
        offset += length


def _now_millis() -> int:
    return int(time.time() * 1000)


class UploadOrchestrator:
    """Drives uploads through an :class:`ApiSession`.

    Args:
        api: Authorized API session; also supplies the transport for the
            upload-target POSTs.
        buckets: Directory used to resolve bucket names before Sizing.
        large_file_limit: Size above which the standard path is never taken.
        workers: Concurrent part transfers; ``1`` keeps transfers sequential.
    """

    def __init__(
        self,
        api: ApiSession,
        buckets: BucketDirectory,
        *,
        large_file_limit: int,
        workers: int = 1,
    ) -> None:
        self.api = api
        self.buckets = buckets
        self.large_file_limit = large_file_limit
        self.workers = max(1, workers)

    def upload(
        self,
        request: UploadRequest,
        body: Payload,
        *,
        cancel_token: Optional[CancellationToken] = None,
    ) -> FileRecord:
        """Upload ``body`` and return the stored file's record.

        Raises:
            ValidationError: Bucket name unresolvable or unusable arguments.
            SourceChangedError: Source bytes changed between hashing and sending.
            UploadCancelledError: ``cancel_token`` stopped a multipart upload.
            RemoteRequestError: The service rejected a step.
        """
        bucket_id = self.buckets.require_id(request.bucket)
        file_name = normalize_file_name(request.file_name)
        last_modified = (
            request.last_modified_millis
            if request.last_modified_millis is not None
            else _now_millis()
        )

        source = as_byte_source(body)
        try:
            return self._run(source, bucket_id, file_name, request, last_modified, cancel_token)
        finally:
            # Sources opened here from a path are ours to close.
            if isinstance(source, FileByteSource) and source is not body:
                source.close()

    def _run(
        self,
        source: ByteSource,
        bucket_id: str,
        file_name: str,
        request: UploadRequest,
        last_modified: int,
        cancel_token: Optional[CancellationToken],
    ) -> FileRecord:
        content_sha1, size = digest_and_size(source)
        part_size = self.api.auth.get().recommended_part_size
        plan = UploadPlan(
            total_size=size,
            content_sha1=content_sha1,
            path=choose_upload_path(size, part_size, self.large_file_limit),
            part_size=part_size,
        )
        correlation_id = generate_correlation_id()
        logger.info(
            "Uploading file",
            extra={
                "correlation_id": correlation_id,
                "bucket_id": bucket_id,
                "file_name": file_name,
                "size": size,
                "path": plan.path.value,
                "part_count": plan.part_count,
            },
        )

        if plan.path is UploadPath.STANDARD:
            record = self._upload_standard(
                plan, source, bucket_id, file_name, request, last_modified
            )
        else:
            record = self._upload_multipart(
                plan, source, bucket_id, file_name, request, last_modified, cancel_token
            )
        logger.info(
            "Upload complete",
            extra={"correlation_id": correlation_id, "file_id": record.file_id},
        )
        return record

    # -- standard path -----------------------------------------------------

    def _upload_standard(
        self,
        plan: UploadPlan,
        source: ByteSource,
        bucket_id: str,
        file_name: str,
        request: UploadRequest,
        last_modified: int,
    ) -> FileRecord:
        target = self.api.call("b2_get_upload_url", {"bucketId": bucket_id})

        digest, data = digest_range(source, 0, plan.total_size)
        if len(data) != plan.total_size or digest != plan.content_sha1:
            raise SourceChangedError(
                f"Upload source for {file_name!r} changed after it was hashed"
            )

        headers = {
            HEADER_AUTHORIZATION: target["authorizationToken"],
            HEADER_CONTENT_TYPE: request.content_type,
            HEADER_CONTENT_LENGTH: str(plan.total_size),
            HEADER_FILE_NAME: quote(file_name, safe="/"),
            HEADER_CONTENT_SHA1: plan.content_sha1,
            HEADER_LAST_MODIFIED: str(last_modified),
        }
        for key, value in request.file_info.items():
            headers[f"{HEADER_INFO_PREFIX}{key}"] = quote(str(value), safe="")

        response = self.api.transport.send("POST", target["uploadUrl"], headers=headers, content=data)
        return FileRecord.from_payload(response.json())

    # -- multipart path ----------------------------------------------------

    def _upload_multipart(
        self,
        plan: UploadPlan,
        source: ByteSource,
        bucket_id: str,
        file_name: str,
        request: UploadRequest,
        last_modified: int,
        cancel_token: Optional[CancellationToken],
    ) -> FileRecord:
        file_info = {str(key): str(value) for key, value in request.file_info.items()}
        file_info["src_last_modified_millis"] = str(last_modified)
        file_info["large_file_sha1"] = plan.content_sha1
        started = self.api.call(
            "b2_start_large_file",
            {
                "bucketId": bucket_id,
                "fileName": file_name,
                "contentType": request.content_type,
                "fileInfo": file_info,
            },
        )
        file_id = started["fileId"]
        ranges = list(iter_part_ranges(plan.total_size, plan.part_size))

        executor, needs_shutdown = create_executor(min(self.workers, len(ranges)))
        if executor is None:
            digests = self._transfer_sequential(file_id, source, ranges, cancel_token)
        else:
            try:
                digests = self._transfer_parallel(executor, file_id, source, ranges, cancel_token)
            finally:
                if needs_shutdown:
                    executor.shutdown(wait=True)

        plan.part_sha1s.extend(digests[number] for number, _, _ in ranges)
        finished = self.api.call(
            "b2_finish_large_file",
            {"fileId": file_id, "partSha1Array": plan.part_sha1s},
        )
        logger.debug(
            "Large file finished",
            extra={"file_id": file_id, "file_name": file_name, "part_count": len(ranges)},
        )
        return FileRecord.from_payload(finished)

    def _transfer_sequential(
        self,
        file_id: str,
        source: ByteSource,
        ranges: List[PartRange],
        cancel_token: Optional[CancellationToken],
    ) -> Dict[int, str]:
        digests: Dict[int, str] = {}
        for number, offset, length in ranges:
            if cancel_token is not None and cancel_token.is_cancelled():
                self._raise_cancelled(file_id, digests)
            digests[number] = self._transfer_part(file_id, source, number, offset, length)
        return digests

    def _transfer_parallel(
        self,
        executor,
        file_id: str,
        source: ByteSource,
        ranges: List[PartRange],
        cancel_token: Optional[CancellationToken],
    ) -> Dict[int, str]:
        digests: Dict[int, str] = {}
        pending: Dict[Future, int] = {}
        remaining = iter(ranges)
        cancelled = False
        try:
            while True:
                while not cancelled and len(pending) < self.workers:
                    if cancel_token is not None and cancel_token.is_cancelled():
                        cancelled = True
                        break
                    part = next(remaining, None)
                    if part is None:
                        break
                    future = executor.submit(self._transfer_part, file_id, source, *part)
                    pending[future] = part[0]
                if not pending:
                    break
                done, _ = wait(pending, return_when=FIRST_COMPLETED)
                for future in done:
                    number = pending.pop(future)
                    digests[number] = future.result()
        finally:
            for future in pending:
                future.cancel()

        if cancelled:
            self._raise_cancelled(file_id, digests)
        return digests

    def _transfer_part(
        self,
        file_id: str,
        source: ByteSource,
        part_number: int,
        offset: int,
        length: int,
    ) -> str:
        target = self.api.call("b2_get_upload_part_url", {"fileId": file_id})
        digest, data = digest_range(source, offset, length)
        if len(data) != length:
            raise SourceChangedError(
                f"Part {part_number} of {file_id} read {len(data)} bytes, expected {length}"
            )
        part = PartDescriptor(
            part_number=part_number,
            offset=offset,
            length=length,
            content_sha1=digest,
            upload_url=target["uploadUrl"],
            authorization_token=target["authorizationToken"],
        )
        self.api.transport.send(
            "POST",
            part.upload_url,
            headers={
                HEADER_AUTHORIZATION: part.authorization_token,
                HEADER_PART_NUMBER: str(part.part_number),
                HEADER_CONTENT_LENGTH: str(part.length),
                HEADER_CONTENT_SHA1: part.content_sha1,
            },
            content=data,
        )
        logger.debug(
            "Part uploaded",
            extra={"file_id": file_id, "part_number": part_number, "length": length},
        )
        return part.content_sha1

    @staticmethod
    def _raise_cancelled(file_id: str, digests: Mapping[int, str]) -> None:
        completed = tuple(sorted(digests))
        logger.warning(
            "Large file upload cancelled",
            extra={"file_id": file_id, "completed_parts": list(completed)},
        )
        raise UploadCancelledError(
            f"Upload of large file {file_id} cancelled after {len(completed)} part(s)",
            file_id=file_id,
            completed_parts=completed,
        )
