"""Shared fixtures: local files and an in-process tus + record API server."""

from __future__ import annotations

import base64
import itertools
from pathlib import Path

import aiohttp
import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from vitransfer.models import LocalFile


@pytest.fixture
def make_local_file(tmp_path: Path):
    """Factory writing a file to disk and returning its LocalFile."""

    def factory(
        name: str = "cut_v1.mp4",
        content: bytes = b"0123456789",
        mime_type: str = "video/mp4",
    ) -> LocalFile:
        path = tmp_path / name
        path.write_bytes(content)
        return LocalFile.from_path(path, mime_type=mime_type)

    return factory


class FakeUpload:
    def __init__(self, length: int, metadata: dict[str, str]) -> None:
        self.length = length
        self.metadata = metadata
        self.data = bytearray()

    @property
    def offset(self) -> int:
        return len(self.data)


def decode_metadata(header: str) -> dict[str, str]:
    metadata = {}
    for pair in filter(None, header.split(",")):
        key, _, value = pair.strip().partition(" ")
        metadata[key] = base64.b64decode(value).decode("utf-8")
    return metadata


class FakeTusServer:
    """Minimal tus 1.0 server plus the placeholder record and auth API.

    ``patch_script`` scripts PATCH responses: each request pops the next
    entry; an int is returned as that HTTP status without storing data,
    None lets the request through.
    """

    def __init__(self) -> None:
        self.uploads: dict[str, FakeUpload] = {}
        self.requests: list[tuple[str, str]] = []
        self.patch_script: list[int | None] = []
        self.create_status: int | None = None
        self.records: dict[str, dict] = {}
        self.deleted_records: list[str] = []
        self.valid_token = "access-1"
        self.refreshed_token = "access-2"
        self.refresh_calls = 0
        self._ids = itertools.count(1)
        self.base_url = ""

        self.app = web.Application()
        self.app.router.add_post("/api/uploads", self.create)
        self.app.router.add_route("HEAD", "/api/uploads/{upload_id}", self.head)
        self.app.router.add_patch("/api/uploads/{upload_id}", self.patch)
        self.app.router.add_delete("/api/uploads/{upload_id}", self.delete)
        self.app.router.add_post("/api/projects/{owner_id}/files", self.create_record)
        self.app.router.add_delete(
            "/api/projects/{owner_id}/files/{record_id}", self.delete_record
        )
        self.app.router.add_post("/api/auth/refresh", self.refresh)

    @property
    def api_url(self) -> str:
        return f"{self.base_url}/api"

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/api/uploads"

    def method_count(self, method: str) -> int:
        return sum(1 for m, _ in self.requests if m == method)

    def add_upload(self, data: bytes, length: int) -> str:
        """Create an upload server-side holding ``data`` already."""
        upload_id = f"upload-{next(self._ids)}"
        upload = FakeUpload(length, {})
        upload.data.extend(data)
        self.uploads[upload_id] = upload
        return f"{self.endpoint}/{upload_id}"

    def _authorized(self, request: web.Request) -> bool:
        header = request.headers.get("Authorization")
        return header is None or header == f"Bearer {self.valid_token}"

    async def create(self, request: web.Request) -> web.Response:
        self.requests.append(("POST", request.path))
        if request.headers.get("Tus-Resumable") != "1.0.0":
            return web.Response(status=412)
        if self.create_status is not None:
            return web.Response(status=self.create_status, text="refused")
        upload_id = f"upload-{next(self._ids)}"
        self.uploads[upload_id] = FakeUpload(
            int(request.headers["Upload-Length"]),
            decode_metadata(request.headers.get("Upload-Metadata", "")),
        )
        return web.Response(
            status=201, headers={"Location": f"/api/uploads/{upload_id}"}
        )

    async def head(self, request: web.Request) -> web.Response:
        self.requests.append(("HEAD", request.path))
        if not self._authorized(request):
            return web.Response(status=401)
        upload = self.uploads.get(request.match_info["upload_id"])
        if upload is None:
            return web.Response(status=404)
        return web.Response(
            status=200,
            headers={
                "Upload-Offset": str(upload.offset),
                "Upload-Length": str(upload.length),
                "Cache-Control": "no-store",
            },
        )

    async def patch(self, request: web.Request) -> web.Response:
        self.requests.append(("PATCH", request.path))
        body = await request.read()
        if self.patch_script:
            status = self.patch_script.pop(0)
            if status is not None:
                return web.Response(status=status, text=f"scripted {status}")
        if not self._authorized(request):
            return web.Response(status=401)
        upload = self.uploads.get(request.match_info["upload_id"])
        if upload is None:
            return web.Response(status=404)
        if request.headers.get("Content-Type") != "application/offset+octet-stream":
            return web.Response(status=415)
        if int(request.headers["Upload-Offset"]) != upload.offset:
            return web.Response(status=409, text="offset mismatch")
        upload.data.extend(body)
        return web.Response(status=204, headers={"Upload-Offset": str(upload.offset)})

    async def delete(self, request: web.Request) -> web.Response:
        self.requests.append(("DELETE", request.path))
        if self.uploads.pop(request.match_info["upload_id"], None) is None:
            return web.Response(status=404)
        return web.Response(status=204)

    async def create_record(self, request: web.Request) -> web.Response:
        if not self._authorized(request):
            return web.json_response({"error": "Unauthorized"}, status=401)
        payload = await request.json()
        record_id = f"record-{next(self._ids)}"
        self.records[record_id] = {
            "owner_id": request.match_info["owner_id"],
            **payload,
        }
        return web.json_response({"recordId": record_id}, status=201)

    async def delete_record(self, request: web.Request) -> web.Response:
        record_id = request.match_info["record_id"]
        self.deleted_records.append(record_id)
        if self.records.pop(record_id, None) is None:
            return web.json_response({"error": "Not found"}, status=404)
        return web.Response(status=204)

    async def refresh(self, request: web.Request) -> web.Response:
        self.refresh_calls += 1
        if request.headers.get("Authorization") != "Bearer refresh-1":
            return web.json_response({"error": "Invalid refresh token"}, status=401)
        self.valid_token = self.refreshed_token
        return web.json_response({
            "tokens": {"accessToken": self.refreshed_token, "refreshToken": "refresh-2"}
        })


@pytest_asyncio.fixture
async def tus_server():
    """Run a FakeTusServer on a local port."""
    fake = FakeTusServer()
    server = TestServer(fake.app)
    await server.start_server()
    fake.base_url = str(server.make_url("/")).rstrip("/")
    yield fake
    await server.close()


@pytest_asyncio.fixture
async def client_session():
    """Create an aiohttp session for testing."""
    session = aiohttp.ClientSession()
    yield session
    await session.close()
