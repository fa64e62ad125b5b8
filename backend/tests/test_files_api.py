"""HTTP tests for the files API."""
import logging
import uuid

import httpx
import pytest

from app import main
from app.config import UploadPolicy, settings
from app.main import app
from app.routes.files import get_coordinator
from app.services.catalog import FileCatalog
from app.services.errors import PersistenceFailure
from app.services.file_storage import BlobStore
from app.services.ingestion import IngestionCoordinator
from app.services.upload_gate import UploadGate

PNG_2KB = b"\x89PNG\r\n\x1a\n" + b"\x00" * (2048 - 8)


async def upload(client, filename, data, mime_type):
    return await client.post("/api/files/upload", files={"file": (filename, data, mime_type)})


class TestUploadEndpoint:
    """Tests for POST /api/files/upload."""

    async def test_upload_png(self, api_client, blob_store):
        response = await upload(api_client, "photo.png", PNG_2KB, "image/png")

        assert response.status_code == 201
        body = response.json()
        assert body["originalname"] == "photo.png"
        assert body["mimetype"] == "image/png"
        assert body["size"] == 2048
        assert body["filename"].endswith(".png")
        assert body["path"] == f"/uploads/{body['filename']}"
        assert uuid.UUID(body["id"])
        assert "uploadDate" in body
        assert blob_store.path_for(body["filename"]).read_bytes() == PNG_2KB

    async def test_upload_txt_is_rejected(self, api_client, catalog, blob_store):
        before = sorted(p.name for p in blob_store.base_path.iterdir())

        response = await upload(api_client, "notes.txt", b"plain text", "text/plain")

        assert response.status_code == 415
        assert "unsupported file type" in response.json()["message"]
        assert await catalog.list() == []
        assert sorted(p.name for p in blob_store.base_path.iterdir()) == before

    async def test_oversized_pdf_is_rejected(self, api_client, catalog, blob_store):
        data = b"%PDF-1.7\n" + b"0" * (11 * 1024 * 1024)

        response = await upload(api_client, "big.pdf", data, "application/pdf")

        assert response.status_code == 413
        assert response.json()["message"] == "file exceeds the maximum size of 10485760 bytes"
        assert await catalog.list() == []
        assert list(blob_store.base_path.iterdir()) == []

    async def test_missing_file_field(self, api_client, catalog):
        response = await api_client.post("/api/files/upload", data={"caption": "no file"})

        assert response.status_code == 400
        assert response.json() == {"message": "please upload a file"}

    async def test_non_multipart_body(self, api_client):
        response = await api_client.post("/api/files/upload", json={"file": "photo.png"})

        assert response.status_code == 400
        assert response.json() == {"message": "please upload a file"}

    async def test_wrong_field_name(self, api_client, catalog):
        response = await api_client.post(
            "/api/files/upload", files={"document": ("photo.png", PNG_2KB, "image/png")}
        )

        assert response.status_code == 400
        assert await catalog.list() == []

    async def test_catalog_failure_is_generic_server_error(
        self, api_client, gate, blob_store, session_factory
    ):
        class BrokenCatalog(FileCatalog):
            async def insert(self, record):
                raise PersistenceFailure("insert", "password authentication failed for user")

        broken = IngestionCoordinator(gate, blob_store, BrokenCatalog(session_factory))
        app.dependency_overrides[get_coordinator] = lambda: broken

        response = await upload(api_client, "photo.png", PNG_2KB, "image/png")

        assert response.status_code == 500
        assert response.json() == {"message": "server error"}
        assert list(blob_store.base_path.iterdir()) == []

    async def test_overlong_extension_is_stored_without_it(self, api_client, blob_store):
        response = await upload(api_client, "a." + "p" * 300, PNG_2KB, "image/png")

        assert response.status_code == 201
        body = response.json()
        assert "." not in body["filename"]
        assert blob_store.path_for(body["filename"]).read_bytes() == PNG_2KB

    async def test_overlong_original_name_is_rejected(self, api_client, catalog, blob_store):
        response = await upload(api_client, "a" * 600 + ".png", PNG_2KB, "image/png")

        assert response.status_code == 400
        assert response.json() == {"message": "invalid file name: longer than 500 characters"}
        assert await catalog.list() == []
        assert list(blob_store.base_path.iterdir()) == []

    async def test_client_disconnect_mid_body_leaves_nothing(
        self, coordinator, catalog, blob_store
    ):
        boundary = "uploadboundary"
        head = (
            f"--{boundary}\r\n"
            'Content-Disposition: form-data; name="file"; filename="photo.png"\r\n'
            "Content-Type: image/png\r\n\r\n"
        ).encode()
        messages = [
            {"type": "http.request", "body": head + PNG_2KB[:1024], "more_body": True},
            {"type": "http.disconnect"},
        ]

        async def receive():
            return messages.pop(0) if len(messages) > 1 else messages[0]

        sent = []

        async def send(message):
            sent.append(message)

        scope = {
            "type": "http",
            "asgi": {"version": "3.0"},
            "http_version": "1.1",
            "method": "POST",
            "scheme": "http",
            "path": "/api/files/upload",
            "raw_path": b"/api/files/upload",
            "root_path": "",
            "query_string": b"",
            "headers": [
                (b"host", b"testserver"),
                (b"content-type", f"multipart/form-data; boundary={boundary}".encode()),
            ],
            "client": ("testclient", 50000),
            "server": ("testserver", 80),
        }
        app.dependency_overrides[get_coordinator] = lambda: coordinator
        try:
            await app(scope, receive, send)
        finally:
            app.dependency_overrides.clear()

        start = next(m for m in sent if m["type"] == "http.response.start")
        body = b"".join(m.get("body", b"") for m in sent if m["type"] == "http.response.body")
        assert start["status"] == 400
        assert body == b'{"message":"upload aborted by client"}'
        assert await catalog.list() == []
        assert list(blob_store.base_path.iterdir()) == []


class TestListAndGet:
    """Tests for GET /api/files and GET /api/files/{id}."""

    async def test_list_empty(self, api_client):
        response = await api_client.get("/api/files")
        assert response.status_code == 200
        assert response.json() == []

    async def test_list_newest_first(self, api_client):
        first = (await upload(api_client, "a.png", b"a", "image/png")).json()
        second = (await upload(api_client, "b.pdf", b"b", "application/pdf")).json()
        third = (await upload(api_client, "c.jpg", b"c", "image/jpeg")).json()

        listed = (await api_client.get("/api/files")).json()

        assert [f["id"] for f in listed] == [third["id"], second["id"], first["id"]]

    async def test_get_by_id(self, api_client):
        created = (await upload(api_client, "photo.png", PNG_2KB, "image/png")).json()

        response = await api_client.get(f"/api/files/{created['id']}")

        assert response.status_code == 200
        assert response.json()["filename"] == created["filename"]
        assert response.json()["size"] == 2048

    @pytest.mark.parametrize("file_id", [str(uuid.uuid4()), "not-a-uuid"])
    async def test_get_unknown_id(self, api_client, file_id):
        response = await api_client.get(f"/api/files/{file_id}")
        assert response.status_code == 404
        assert response.json() == {"message": "file not found"}


class TestDeleteEndpoint:
    """Tests for DELETE /api/files/{id}."""

    async def test_full_lifecycle(self, api_client, blob_store):
        created = (await upload(api_client, "photo.png", PNG_2KB, "image/png")).json()
        listed = (await api_client.get("/api/files")).json()
        assert listed[0]["id"] == created["id"]

        response = await api_client.delete(f"/api/files/{created['id']}")

        assert response.status_code == 200
        assert response.json() == {"message": "file deleted successfully"}
        listed = (await api_client.get("/api/files")).json()
        assert created["id"] not in [f["id"] for f in listed]
        assert not await blob_store.exists(created["filename"])

    async def test_delete_twice(self, api_client):
        created = (await upload(api_client, "photo.png", PNG_2KB, "image/png")).json()

        first = await api_client.delete(f"/api/files/{created['id']}")
        second = await api_client.delete(f"/api/files/{created['id']}")

        assert first.status_code == 200
        assert second.status_code == 404
        assert second.json() == {"message": "file not found"}

    @pytest.mark.parametrize("file_id", [str(uuid.uuid4()), "12345"])
    async def test_delete_unknown_id(self, api_client, file_id):
        response = await api_client.delete(f"/api/files/{file_id}")
        assert response.status_code == 404
        assert response.json() == {"message": "file not found"}


class TestPublicRetrieval:
    """Tests for serving stored blobs under /uploads."""

    async def test_uploaded_file_is_served_at_its_path(self, catalog):
        coordinator = IngestionCoordinator(
            gate=UploadGate(UploadPolicy()),
            blob_store=BlobStore(settings.FILE_STORAGE_PATH, settings.PUBLIC_UPLOADS_PREFIX),
            catalog=catalog,
        )
        app.dependency_overrides[get_coordinator] = lambda: coordinator
        transport = httpx.ASGITransport(app=app)
        try:
            async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
                created = (await upload(client, "photo.png", PNG_2KB, "image/png")).json()
                served = await client.get(created["path"])
                await client.delete(f"/api/files/{created['id']}")
        finally:
            app.dependency_overrides.clear()

        assert served.status_code == 200
        assert served.content == PNG_2KB


class TestHealth:
    """Tests for GET /api/health."""

    async def test_connected(self, api_client, session_factory, monkeypatch):
        async def working_db():
            async with session_factory() as session:
                yield session

        monkeypatch.setattr(main, "get_db", working_db)

        response = await api_client.get("/api/health")

        assert response.json() == {"status": "ok", "database": "connected"}

    async def test_failure_does_not_leak_the_cause(self, api_client, monkeypatch, caplog):
        async def broken_db():
            raise OSError("could not connect to 10.0.0.5:5432 as uploads_user")
            yield

        monkeypatch.setattr(main, "get_db", broken_db)

        with caplog.at_level(logging.ERROR):
            response = await api_client.get("/api/health")

        assert response.json() == {"status": "error", "database": "disconnected"}
        assert "10.0.0.5" not in response.text
        assert "10.0.0.5" in caplog.text
