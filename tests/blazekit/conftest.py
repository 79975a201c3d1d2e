"""Shared fixtures: an in-process fake B2 service behind ``httpx.MockTransport``.

The fake keeps buckets, finished files and in-progress large files in memory
and records every request, so tests can assert on both results and wire
traffic without touching the network.  Failures are scripted per route with
:meth:`FakeB2Service.fail_next`.
"""

from __future__ import annotations

import base64
import hashlib
import itertools
import json
from collections import Counter, defaultdict, deque
from typing import Any, Deque, Dict, List, Optional, Tuple
from urllib.parse import unquote

import httpx
import pytest

from BlazeKit import B2Client
from BlazeKit.cache import MemoryCache
from BlazeKit.settings import ClientSettings

API_ORIGIN = "https://api.test.local"
ACCOUNT_API = "https://api001.test.local"
DOWNLOAD_ORIGIN = "https://f001.test.local"
UPLOAD_ORIGIN = "https://pod-000.test.local"

KEY_ID = "key-123"
APPLICATION_KEY = "app-secret"
ACCOUNT_ID = "acct-1"


def _json(status: int, body: Dict[str, Any]) -> httpx.Response:
    return httpx.Response(status, json=body)


def _error(status: int, code: str, message: str) -> httpx.Response:
    return _json(status, {"status": status, "code": code, "message": message})


class FakeB2Service:
    """Minimal stateful emulation of the B2 native API (v1)."""

    api_origin = API_ORIGIN
    account_api = ACCOUNT_API
    download_origin = DOWNLOAD_ORIGIN
    account_id = ACCOUNT_ID

    def __init__(self, *, part_size: int = 100) -> None:
        self.part_size = part_size
        self.requests: List[httpx.Request] = []
        self.calls: Counter = Counter()
        self.buckets: Dict[str, Dict[str, Any]] = {}
        self.files: Dict[str, Dict[str, Any]] = {}
        self.contents: Dict[str, bytes] = {}
        self.large_files: Dict[str, Dict[str, Any]] = {}
        self.parts: Dict[str, Dict[int, Tuple[str, bytes]]] = defaultdict(dict)
        self.finish_payloads: List[Dict[str, Any]] = []
        self.upload_headers: List[Dict[str, str]] = []
        self.part_headers: List[Dict[str, str]] = []
        self._failures: Dict[str, Deque[httpx.Response]] = defaultdict(deque)
        self._ids = itertools.count(1)
        self.current_token = "token-0"
        self.issued_tokens = 0
        self.capabilities = ["listBuckets", "listFiles", "readFiles", "writeFiles", "deleteFiles"]

    # -- scripting -----------------------------------------------------------

    def fail_next(self, route: str, response: httpx.Response, times: int = 1) -> None:
        """Answer the next ``times`` requests for ``route`` with ``response``."""

        for _ in range(times):
            self._failures[route].append(response)

    def rotate_token(self) -> None:
        """Expire the issued token; the next API call gets a 401 expired_auth_token."""

        self.current_token = f"rotated-{next(self._ids)}"

    def add_bucket(self, name: str, bucket_type: str = "allPrivate") -> Dict[str, Any]:
        bucket_id = f"bucket-{next(self._ids)}"
        bucket = {
            "accountId": ACCOUNT_ID,
            "bucketId": bucket_id,
            "bucketName": name,
            "bucketType": bucket_type,
            "bucketInfo": {},
            "corsRules": [],
            "lifecycleRules": [],
            "revision": 1,
        }
        self.buckets[bucket_id] = bucket
        return bucket

    def add_file(self, bucket_id: str, name: str, data: bytes = b"", **extra: Any) -> Dict[str, Any]:
        file_id = f"file-{next(self._ids)}"
        record = {
            "accountId": ACCOUNT_ID,
            "action": "upload",
            "bucketId": bucket_id,
            "contentLength": len(data),
            "contentSha1": hashlib.sha1(data).hexdigest(),
            "contentType": "application/octet-stream",
            "fileId": file_id,
            "fileInfo": {},
            "fileName": name,
            "uploadTimestamp": 1_700_000_000_000,
        }
        record.update(extra)
        self.files[file_id] = record
        self.contents[file_id] = data
        return record

    def count(self, route: str) -> int:
        return self.calls[route]

    # -- transport -----------------------------------------------------------

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self._route(request)
        self.calls[route] += 1
        if self._failures[route]:
            scripted = self._failures[route].popleft()
            return httpx.Response(scripted.status_code, content=scripted.content, headers=scripted.headers)
        handler = getattr(self, f"_handle_{route}", None)
        if handler is None:
            return _error(400, "bad_request", f"Unknown route {route}")
        presented = request.headers.get("Authorization")
        if route in {"download_by_id", "download_by_name"}:
            if presented is not None and presented != self.current_token:
                return _error(401, "expired_auth_token", "Authorization token has expired")
        elif route not in {"b2_authorize_account", "upload", "upload_part"}:
            if presented != self.current_token:
                return _error(401, "expired_auth_token", "Authorization token has expired")
        return handler(request)

    def _route(self, request: httpx.Request) -> str:
        url = request.url
        host = f"{url.scheme}://{url.host}"
        path = url.path
        if host == UPLOAD_ORIGIN:
            return "upload_part" if path.startswith("/part/") else "upload"
        if host == DOWNLOAD_ORIGIN:
            return "download_by_id" if path.endswith("b2_download_file_by_id") else "download_by_name"
        return path.rsplit("/", 1)[-1]

    @staticmethod
    def _body(request: httpx.Request) -> Dict[str, Any]:
        return json.loads(request.content or b"{}")

    # -- endpoints -----------------------------------------------------------

    def _handle_b2_authorize_account(self, request: httpx.Request) -> httpx.Response:
        expected = base64.b64encode(f"{KEY_ID}:{APPLICATION_KEY}".encode()).decode()
        if request.headers.get("Authorization") != f"Basic {expected}":
            return _error(401, "unauthorized", "Invalid key")
        self.issued_tokens += 1
        if self.issued_tokens > 1 or self.current_token.startswith("rotated"):
            self.current_token = f"token-{self.issued_tokens}"
        return _json(
            200,
            {
                "accountId": ACCOUNT_ID,
                "authorizationToken": self.current_token,
                "apiUrl": ACCOUNT_API,
                "downloadUrl": DOWNLOAD_ORIGIN,
                "recommendedPartSize": self.part_size,
                "absoluteMinimumPartSize": 5,
                "allowed": {"capabilities": list(self.capabilities)},
            },
        )

    def _handle_b2_list_buckets(self, request: httpx.Request) -> httpx.Response:
        return _json(200, {"buckets": list(self.buckets.values())})

    def _handle_b2_create_bucket(self, request: httpx.Request) -> httpx.Response:
        body = self._body(request)
        bucket = self.add_bucket(body["bucketName"], body["bucketType"])
        for key in ("bucketInfo", "corsRules", "lifecycleRules"):
            if key in body:
                bucket[key] = body[key]
        return _json(200, bucket)

    def _handle_b2_update_bucket(self, request: httpx.Request) -> httpx.Response:
        body = self._body(request)
        bucket = self.buckets[body["bucketId"]]
        bucket["bucketType"] = body["bucketType"]
        bucket["revision"] += 1
        return _json(200, bucket)

    def _handle_b2_delete_bucket(self, request: httpx.Request) -> httpx.Response:
        body = self._body(request)
        return _json(200, self.buckets.pop(body["bucketId"]))

    def _handle_b2_get_upload_url(self, request: httpx.Request) -> httpx.Response:
        body = self._body(request)
        n = next(self._ids)
        return _json(
            200,
            {
                "bucketId": body["bucketId"],
                "uploadUrl": f"{UPLOAD_ORIGIN}/upload/{body['bucketId']}/{n}",
                "authorizationToken": f"upload-token-{n}",
            },
        )

    def _handle_upload(self, request: httpx.Request) -> httpx.Response:
        headers = dict(request.headers)
        self.upload_headers.append(headers)
        data = request.content
        if hashlib.sha1(data).hexdigest() != headers["x-bz-content-sha1"]:
            return _error(400, "bad_request", "Checksum did not match data received")
        bucket_id = request.url.path.split("/")[2]
        info = {
            key[len("x-bz-info-"):]: unquote(value)
            for key, value in headers.items()
            if key.startswith("x-bz-info-")
        }
        record = self.add_file(
            bucket_id,
            unquote(headers["x-bz-file-name"]),
            data,
            contentType=headers["content-type"],
            fileInfo=info,
        )
        return _json(200, record)

    def _handle_b2_start_large_file(self, request: httpx.Request) -> httpx.Response:
        body = self._body(request)
        file_id = f"large-{next(self._ids)}"
        self.large_files[file_id] = body
        return _json(
            200,
            {
                "accountId": ACCOUNT_ID,
                "action": "start",
                "bucketId": body["bucketId"],
                "contentType": body["contentType"],
                "fileId": file_id,
                "fileInfo": body.get("fileInfo", {}),
                "fileName": body["fileName"],
                "uploadTimestamp": 1_700_000_000_000,
            },
        )

    def _handle_b2_get_upload_part_url(self, request: httpx.Request) -> httpx.Response:
        body = self._body(request)
        n = next(self._ids)
        return _json(
            200,
            {
                "fileId": body["fileId"],
                "uploadUrl": f"{UPLOAD_ORIGIN}/part/{body['fileId']}/{n}",
                "authorizationToken": f"part-token-{n}",
            },
        )

    def _handle_upload_part(self, request: httpx.Request) -> httpx.Response:
        headers = dict(request.headers)
        self.part_headers.append(headers)
        data = request.content
        digest = hashlib.sha1(data).hexdigest()
        if digest != headers["x-bz-content-sha1"]:
            return _error(400, "bad_request", "Checksum did not match data received")
        file_id = request.url.path.split("/")[2]
        number = int(headers["x-bz-part-number"])
        self.parts[file_id][number] = (digest, data)
        return _json(
            200,
            {"fileId": file_id, "partNumber": number, "contentLength": len(data), "contentSha1": digest},
        )

    def _handle_b2_finish_large_file(self, request: httpx.Request) -> httpx.Response:
        body = self._body(request)
        self.finish_payloads.append(body)
        file_id = body["fileId"]
        parts = self.parts[file_id]
        expected = [parts[n][0] for n in sorted(parts)]
        if body["partSha1Array"] != expected:
            return _error(400, "bad_request", "Part sha1 array does not match uploaded parts")
        started = self.large_files.pop(file_id)
        data = b"".join(parts[n][1] for n in sorted(parts))
        record = {
            "accountId": ACCOUNT_ID,
            "action": "upload",
            "bucketId": started["bucketId"],
            "contentLength": len(data),
            "contentSha1": "none",
            "contentType": started["contentType"],
            "fileId": file_id,
            "fileInfo": started.get("fileInfo", {}),
            "fileName": started["fileName"],
            "uploadTimestamp": 1_700_000_000_000,
        }
        self.files[file_id] = record
        self.contents[file_id] = data
        return _json(200, record)

    def _handle_b2_list_file_names(self, request: httpx.Request) -> httpx.Response:
        body = self._body(request)
        limit = int(body.get("maxFileCount", 100))
        start = body.get("startFileName") or ""
        prefix = body.get("prefix") or ""
        names = sorted(
            (record for record in self.files.values() if record["bucketId"] == body["bucketId"]),
            key=lambda record: record["fileName"],
        )
        matching = [r for r in names if r["fileName"] >= start and r["fileName"].startswith(prefix)]
        page = matching[:limit]
        next_name = matching[limit]["fileName"] if len(matching) > limit else None
        return _json(200, {"files": page, "nextFileName": next_name})

    def _handle_b2_get_file_info(self, request: httpx.Request) -> httpx.Response:
        body = self._body(request)
        record = self.files.get(body["fileId"])
        if record is None:
            return _error(404, "not_found", f"File not present: {body['fileId']}")
        return _json(200, record)

    def _handle_b2_delete_file_version(self, request: httpx.Request) -> httpx.Response:
        body = self._body(request)
        record = self.files.get(body["fileId"])
        if record is None or record["fileName"] != body["fileName"]:
            return _error(400, "file_not_present", f"File not present: {body['fileName']}")
        del self.files[body["fileId"]]
        self.contents.pop(body["fileId"], None)
        return _json(200, {"fileId": body["fileId"], "fileName": body["fileName"]})

    def _handle_b2_get_download_authorization(self, request: httpx.Request) -> httpx.Response:
        body = self._body(request)
        return _json(
            200,
            {
                "bucketId": body["bucketId"],
                "fileNamePrefix": body["fileNamePrefix"],
                "authorizationToken": f"download-{body['fileNamePrefix']}-{body['validDurationInSeconds']}",
            },
        )

    def _serve(self, request: httpx.Request, record: Optional[Dict[str, Any]]) -> httpx.Response:
        if record is None:
            return _error(404, "not_found", "File not found")
        data = self.contents[record["fileId"]]
        byte_range = request.headers.get("Range")
        if byte_range:
            first, last = byte_range.split("=", 1)[1].split("-")
            return httpx.Response(206, content=data[int(first) : int(last) + 1])
        return httpx.Response(200, content=data)

    def _handle_download_by_id(self, request: httpx.Request) -> httpx.Response:
        return self._serve(request, self.files.get(request.url.params.get("fileId", "")))

    def _handle_download_by_name(self, request: httpx.Request) -> httpx.Response:
        _, _, bucket_name, name = request.url.path.split("/", 3)
        bucket_ids = {b["bucketId"] for b in self.buckets.values() if b["bucketName"] == bucket_name}
        for record in self.files.values():
            if record["bucketId"] in bucket_ids and record["fileName"] == unquote(name):
                return self._serve(request, record)
        return self._serve(request, None)


class SleepRecorder:
    """Stand-in for ``time.sleep`` that records requested delays."""

    def __init__(self) -> None:
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def fake_b2() -> FakeB2Service:
    return FakeB2Service()


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def settings() -> ClientSettings:
    return ClientSettings(
        key_id=KEY_ID,
        application_key=APPLICATION_KEY,
        api_base_url=API_ORIGIN,
    )


@pytest.fixture
def http_client(fake_b2: FakeB2Service):
    client = httpx.Client(transport=httpx.MockTransport(fake_b2))
    yield client
    client.close()


@pytest.fixture
def make_client(fake_b2, http_client, sleep_recorder, settings):
    """Factory building a :class:`B2Client` wired to the fake service."""

    def _make(**overrides: Any) -> B2Client:
        client_settings = settings.model_copy(update=overrides) if overrides else settings
        return B2Client(
            client_settings,
            http_client=http_client,
            cache=MemoryCache(),
            sleep=sleep_recorder,
        )

    return _make


@pytest.fixture
def client(make_client) -> B2Client:
    return make_client()
