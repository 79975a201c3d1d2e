"""Public client for the B2 object-storage API.

:class:`B2Client` wires the pieces together once per instance:

- an ``httpx`` client (or a caller-supplied one) behind an
  :class:`~BlazeKit.network.client.HttpxSender`,
- a :class:`~BlazeKit.network.retry.ResilientTransport` for 503 backoff and
  error classification,
- an :class:`~BlazeKit.auth.AuthSession` and a
  :class:`~BlazeKit.buckets.BucketDirectory` sharing one cache store,
- an :class:`~BlazeKit.upload.UploadOrchestrator` for uploads.

Every public method is a thin caller into those collaborators.

Example:
    >>> from BlazeKit import B2Client
    >>> with B2Client(key_id="...", application_key="...") as client:  # doctest: +SKIP
    ...     record = client.upload("my-bucket", "reports/q1.csv", b"a,b\\n1,2\\n")
    ...     data = client.download(FileById(record.file_id))
"""

from __future__ import annotations

import logging
import posixpath
import time
from typing import IO, Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Union
from urllib.parse import quote, urlencode

import httpx

from .api import ApiSession
from .auth import AuthSession
from .buckets import BucketDirectory
from .cache import CacheStore, FileCache, MemoryCache
from .cancellation import CancellationToken
from .errors import NotFoundError, ValidationError
from .hashing import Payload
from .logging_config import setup_logging
from .models import (
    AuthSessionState,
    BucketById,
    BucketByName,
    BucketRecord,
    BucketType,
    FileById,
    FileByName,
    FileRecord,
    FileRef,
    as_bucket_ref,
)
from .network.client import HttpxSender, create_http_client
from .network.policy import DEFAULT_CONTENT_TYPE
from .network.retry import ResilientTransport
from .settings import ClientSettings, load_settings
from .upload import UploadOrchestrator, UploadRequest, normalize_file_name

__all__ = ["B2Client", "MAX_LIST_PAGE_SIZE"]

logger = logging.getLogger(__name__)

MAX_LIST_PAGE_SIZE = 1000

BucketArg = Union[BucketRecord, BucketById, BucketByName, str]
ByteRange = Tuple[int, int]


class B2Client:
    """Client for bucket management, uploads, listings and downloads.

    Args:
        settings: Fully built settings; when omitted, settings are loaded from
            defaults, ``BLAZEKIT_*`` environment variables and ``overrides``.
        http_client: Optional ``httpx.Client`` to send through; it is not
            closed by :meth:`close`.
        cache: Cache store shared by authorization and bucket lookups.
            Defaults to a :class:`FileCache` when ``cache_dir`` is set,
            otherwise a :class:`MemoryCache`.
        sleep: Sleep used between 503 retries.
        authorize: Authorize immediately instead of on first use.
        configure_logging: Install the JSON log handler on the ``BlazeKit``
            logger at ``settings.log_level``.
        **overrides: Settings fields, used only when ``settings`` is omitted.

    Raises:
        ConfigurationError: Credentials missing or settings invalid.
        CacheError: The file cache directory cannot be provisioned.
    """

    def __init__(
        self,
        settings: Optional[ClientSettings] = None,
        *,
        http_client: Optional[httpx.Client] = None,
        cache: Optional[CacheStore] = None,
        sleep: Callable[[float], None] = time.sleep,
        authorize: bool = True,
        configure_logging: bool = False,
        **overrides: Any,
    ) -> None:
        self.settings = settings if settings is not None else load_settings(**overrides)
        if configure_logging:
            setup_logging(self.settings.log_level)
        self.settings.require_credentials()

        if cache is None:
            cache = FileCache(self.settings.cache_dir) if self.settings.cache_dir else MemoryCache()
        self.cache = cache

        if http_client is not None:
            sender = HttpxSender(http_client, owns_client=False)
        else:
            sender = HttpxSender(create_http_client(self.settings))
        self.transport = ResilientTransport.from_settings(sender, self.settings, sleep=sleep)
        self.auth = AuthSession(self.transport, self.settings, cache)
        self.transport.token_provider = self.auth.peek_token
        self.api = ApiSession(self.transport, self.auth, self.settings)
        self.buckets = BucketDirectory(self.api, cache, ttl_sec=self.settings.bucket_cache_ttl_sec)
        self.uploader = UploadOrchestrator(
            self.api,
            self.buckets,
            large_file_limit=self.settings.large_file_limit,
            workers=self.settings.upload_workers,
        )

        if authorize:
            self.auth.get()

    # -- lifecycle ---------------------------------------------------------

    def close(self) -> None:
        self.transport.sender.close()

    def __enter__(self) -> "B2Client":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # -- buckets -----------------------------------------------------------

    def create_bucket(
        self,
        name: str,
        bucket_type: Union[BucketType, str],
        *,
        bucket_info: Optional[Mapping[str, Any]] = None,
        cors_rules: Optional[Sequence[Mapping[str, Any]]] = None,
        lifecycle_rules: Optional[Sequence[Mapping[str, Any]]] = None,
    ) -> BucketRecord:
        """Create a bucket.

        Raises:
            ValidationError: ``bucket_type`` is not ``allPublic``/``allPrivate``.
        """
        kind = BucketType.coerce(bucket_type)
        if not name:
            raise ValidationError("Bucket name must not be empty")
        payload: Dict[str, Any] = {
            "accountId": self.api.account_id,
            "bucketName": name,
            "bucketType": kind.value,
        }
        payload.update(self._bucket_options(bucket_info, cors_rules, lifecycle_rules))
        response = self.api.call("b2_create_bucket", payload)
        self.buckets.invalidate()
        logger.info("Bucket created", extra={"bucket_name": name, "bucket_type": kind.value})
        return BucketRecord.from_payload(response)

    def update_bucket(
        self,
        bucket: BucketArg,
        bucket_type: Union[BucketType, str],
        *,
        bucket_info: Optional[Mapping[str, Any]] = None,
        cors_rules: Optional[Sequence[Mapping[str, Any]]] = None,
        lifecycle_rules: Optional[Sequence[Mapping[str, Any]]] = None,
        if_revision_is: Optional[int] = None,
    ) -> BucketRecord:
        kind = BucketType.coerce(bucket_type)
        bucket_id = self.buckets.require_id(as_bucket_ref(bucket))
        payload: Dict[str, Any] = {
            "accountId": self.api.account_id,
            "bucketId": bucket_id,
            "bucketType": kind.value,
        }
        payload.update(self._bucket_options(bucket_info, cors_rules, lifecycle_rules))
        if if_revision_is is not None:
            payload["ifRevisionIs"] = if_revision_is
        response = self.api.call("b2_update_bucket", payload)
        self.buckets.invalidate()
        return BucketRecord.from_payload(response)

    @staticmethod
    def _bucket_options(
        bucket_info: Optional[Mapping[str, Any]],
        cors_rules: Optional[Sequence[Mapping[str, Any]]],
        lifecycle_rules: Optional[Sequence[Mapping[str, Any]]],
    ) -> Dict[str, Any]:
        options: Dict[str, Any] = {}
        if bucket_info is not None:
            options["bucketInfo"] = dict(bucket_info)
        if cors_rules is not None:
            options["corsRules"] = [dict(rule) for rule in cors_rules]
        if lifecycle_rules is not None:
            options["lifecycleRules"] = [dict(rule) for rule in lifecycle_rules]
        return options

    def list_buckets(self, refresh: bool = False) -> List[BucketRecord]:
        return self.buckets.list_all(refresh=refresh)

    def get_bucket(self, bucket: BucketArg) -> BucketRecord:
        """Return the bucket record.

        Raises:
            NotFoundError: No bucket matches.
        """
        ref = as_bucket_ref(bucket)
        if isinstance(ref, BucketById):
            record = self.buckets.resolve_name_by_id(ref.bucket_id)
        else:
            record = self.buckets.resolve_id_by_name(ref.name)
        if record is None:
            raise NotFoundError(f"Bucket not found: {ref!r}")
        return record

    def get_bucket_id(self, name: str) -> Optional[str]:
        record = self.buckets.resolve_id_by_name(name)
        return record.bucket_id if record is not None else None

    def get_bucket_name(self, bucket_id: str) -> Optional[str]:
        record = self.buckets.resolve_name_by_id(bucket_id)
        return record.name if record is not None else None

    def delete_bucket(self, bucket: BucketArg) -> BucketRecord:
        bucket_id = self.buckets.require_id(as_bucket_ref(bucket))
        response = self.api.call(
            "b2_delete_bucket",
            {"accountId": self.api.account_id, "bucketId": bucket_id},
        )
        self.buckets.invalidate()
        logger.info("Bucket deleted", extra={"bucket_id": bucket_id})
        return BucketRecord.from_payload(response)

    # -- files -------------------------------------------------------------

    def upload(
        self,
        bucket: BucketArg,
        file_name: str,
        body: Payload,
        *,
        content_type: str = DEFAULT_CONTENT_TYPE,
        last_modified_millis: Optional[int] = None,
        file_info: Optional[Mapping[str, str]] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> FileRecord:
        """Upload ``body`` as ``file_name``.

        ``body`` may be bytes, a ``str`` (sent as UTF-8), a :class:`~pathlib.Path`,
        or a seekable binary stream.  Payloads larger than the account's
        recommended part size go through the multipart protocol.
        """
        request = UploadRequest(
            bucket=as_bucket_ref(bucket),
            file_name=file_name,
            content_type=content_type or DEFAULT_CONTENT_TYPE,
            last_modified_millis=last_modified_millis,
            file_info=dict(file_info or {}),
        )
        return self.uploader.upload(request, body, cancel_token=cancel_token)

    def iter_files(
        self,
        bucket: BucketArg,
        *,
        prefix: str = "",
        delimiter: Optional[str] = None,
        start_file_name: Optional[str] = None,
        page_size: int = MAX_LIST_PAGE_SIZE,
    ) -> Iterator[FileRecord]:
        """Yield every file in ``bucket``, following ``nextFileName`` across pages.

        Folder placeholders (names ending in ``/``) are skipped.
        """
        if page_size < 1:
            raise ValidationError("page_size must be at least 1")
        bucket_id = self.buckets.require_id(as_bucket_ref(bucket))
        next_name = start_file_name
        while True:
            payload: Dict[str, Any] = {
                "bucketId": bucket_id,
                "maxFileCount": min(page_size, MAX_LIST_PAGE_SIZE),
                "prefix": prefix,
            }
            if next_name is not None:
                payload["startFileName"] = next_name
            if delimiter is not None:
                payload["delimiter"] = delimiter
            page = self.api.call("b2_list_file_names", payload)
            for entry in page.get("files") or []:
                if entry["fileName"].endswith("/"):
                    continue
                yield FileRecord.from_payload(entry)
            next_name = page.get("nextFileName")
            if next_name is None:
                return

    def list_files(self, bucket: BucketArg, **kwargs: Any) -> List[FileRecord]:
        return list(self.iter_files(bucket, **kwargs))

    def get_file(self, ref: Union[FileRef, FileRecord]) -> FileRecord:
        """Look up one file version.

        Raises:
            NotFoundError: A name lookup found no file with exactly that name.
        """
        if isinstance(ref, FileRecord):
            ref = FileById(ref.file_id)
        if isinstance(ref, FileById):
            return FileRecord.from_payload(self.api.call("b2_get_file_info", {"fileId": ref.file_id}))

        file_name = normalize_file_name(ref.file_name)
        bucket_id = self.buckets.require_id(ref.bucket)
        page = self.api.call(
            "b2_list_file_names",
            {"bucketId": bucket_id, "startFileName": file_name, "maxFileCount": 1},
        )
        files = page.get("files") or []
        if not files or files[0].get("fileName") != file_name:
            raise NotFoundError(f"File not found: {file_name!r}")
        return FileRecord.from_payload(files[0])

    def file_exists(self, bucket: BucketArg, file_name: str) -> bool:
        try:
            self.get_file(FileByName(as_bucket_ref(bucket), file_name))
        except NotFoundError:
            return False
        return True

    def delete_file(self, ref: Union[FileRef, FileRecord]) -> FileRecord:
        """Delete one file version, resolving whichever of name/id is missing."""

        record = ref if isinstance(ref, FileRecord) else self.get_file(ref)
        self.api.call(
            "b2_delete_file_version",
            {"fileName": record.file_name, "fileId": record.file_id},
        )
        logger.info("File version deleted", extra={"file_id": record.file_id, "file_name": record.file_name})
        return record

    # -- downloads ---------------------------------------------------------

    def _download_location(self, ref: FileRef) -> Tuple[str, Dict[str, str]]:
        """Return the download path (relative to the download host) and query."""

        if isinstance(ref, FileById):
            return f"{self.settings.version_path}/b2_download_file_by_id", {"fileId": ref.file_id}
        bucket_name = self.buckets.require_name(ref.bucket)
        file_name = normalize_file_name(ref.file_name)
        return f"/file/{bucket_name}/{quote(file_name, safe='/')}", {}

    def download(
        self,
        ref: Union[FileRef, FileRecord],
        *,
        byte_range: Optional[ByteRange] = None,
        sink: Optional[IO[bytes]] = None,
    ) -> Union[bytes, int]:
        """Download a file by id or by bucket and name.

        Args:
            ref: File to fetch.
            byte_range: Inclusive ``(first, last)`` byte offsets.
            sink: Writable binary stream; when given the body is streamed into
                it and the number of bytes written is returned.

        Returns:
            The body as ``bytes``, or the byte count when ``sink`` is given.
        """
        if isinstance(ref, FileRecord):
            ref = FileById(ref.file_id)
        path, params = self._download_location(ref)
        headers: Dict[str, str] = {}
        if byte_range is not None:
            first, last = byte_range
            if first < 0 or last < first:
                raise ValidationError(f"Invalid byte range: {byte_range!r}")
            headers["Range"] = f"bytes={first}-{last}"

        def url_for(state: AuthSessionState) -> str:
            return f"{state.download_url}{path}"

        if sink is None:
            response = self.api.send("GET", url_for, params=params, headers=headers)
            return response.content

        response = self.api.send("GET", url_for, params=params, headers=headers, stream=True)
        written = 0
        try:
            for chunk in response.iter_bytes():
                sink.write(chunk)
                written += len(chunk)
        finally:
            response.close()
        return written

    def accel_redirect_data(self, file: Union[FileById, FileRecord]) -> Dict[str, str]:
        """Return the pieces an nginx ``X-Accel-Redirect`` needs to proxy a by-id download.

        The ``host`` is the account download host; ``path`` and ``query``
        address ``b2_download_file_by_id`` for the given file.
        """
        download_url = httpx.URL(self.auth.get().download_url)
        return {
            "host": download_url.host,
            "path": f"{self.settings.version_path}/b2_download_file_by_id",
            "query": urlencode({"fileId": file.file_id}),
        }

    def get_download_authorization(
        self,
        bucket: BucketArg,
        prefix: str,
        valid_duration: int = 60,
    ) -> str:
        """Return a token authorizing downloads of ``prefix*`` from a private bucket."""

        bucket_id = self.buckets.require_id(as_bucket_ref(bucket))
        response = self.api.call(
            "b2_get_download_authorization",
            {
                "bucketId": bucket_id,
                "fileNamePrefix": prefix,
                "validDurationInSeconds": valid_duration,
            },
        )
        return response["authorizationToken"]

    def get_download_url(
        self,
        bucket: BucketArg,
        file_path: str,
        append_token: bool = False,
        token_timeout: int = 60,
    ) -> str:
        """Build the by-name download URL, optionally carrying a download token.

        Hosts listed in ``domain_aliases`` are rewritten so links point at a
        custom domain.
        """
        ref = as_bucket_ref(bucket)
        bucket_name = self.buckets.require_name(ref)
        file_name = normalize_file_name(file_path)
        url = f"{self.auth.get().download_url}/file/{bucket_name}/{quote(file_name, safe='/')}"
        if append_token:
            directory = posixpath.dirname(file_name)
            prefix = f"{directory}/" if directory else ""
            token = self.get_download_authorization(ref, prefix, token_timeout)
            url = f"{url}?{urlencode({'Authorization': token})}"
        for original, alias in self.settings.domain_aliases.items():
            url = url.replace(original, alias)
        return url

    def get_download_url_for_file(
        self,
        file: FileRecord,
        append_token: bool = False,
        token_timeout: int = 60,
    ) -> str:
        if not file.bucket_id:
            raise ValidationError(f"File record {file.file_id} carries no bucket id")
        return self.get_download_url(
            BucketById(file.bucket_id), file.file_name, append_token, token_timeout
        )
