import json

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp import test_utils

from flux_client import HttpClient, HttpResponse, build_form
from flux_config import MultipartPart
from flux_errors import MultipartError, TransportError


async def json_handler(request):
    return web.json_response({"token": "abc123"})


async def echo_handler(request):
    return web.json_response({
        "method": request.method,
        "authorization": request.headers.get("Authorization"),
        "body": await request.text(),
    })


async def upload_handler(request):
    form = await request.post()
    upload = form["document"]
    return web.json_response({
        "filename": upload.filename,
        "content": upload.file.read().decode(),
        "note": form["note"],
    })


async def error_handler(request):
    return web.Response(status=503, text="unavailable")


@pytest_asyncio.fixture
async def server():
    app = web.Application()
    app.router.add_get("/json", json_handler)
    app.router.add_route("*", "/echo", echo_handler)
    app.router.add_post("/upload", upload_handler)
    app.router.add_get("/error", error_handler)
    test_server = test_utils.TestServer(app)
    await test_server.start_server()
    yield test_server
    await test_server.close()


@pytest_asyncio.fixture
async def client():
    http_client = HttpClient(timeout=5)
    yield http_client
    await http_client.close()


class TestHttpClient:
    @pytest.mark.asyncio
    async def test_get_json(self, server, client):
        response = await client.execute("GET", str(server.make_url("/json")))
        assert response.status == 200
        assert json.loads(response.text()) == {"token": "abc123"}

    @pytest.mark.asyncio
    async def test_headers_and_body_sent(self, server, client):
        response = await client.execute(
            "PUT",
            str(server.make_url("/echo")),
            headers={"Authorization": "Bearer abc123"},
            body='{"name": "john"}',
        )
        assert json.loads(response.text()) == {
            "method": "PUT",
            "authorization": "Bearer abc123",
            "body": '{"name": "john"}',
        }

    @pytest.mark.asyncio
    async def test_error_status_is_a_response(self, server, client):
        response = await client.execute("GET", str(server.make_url("/error")))
        assert response.status == 503
        assert response.text() == "unavailable"

    @pytest.mark.asyncio
    async def test_multipart_upload(self, server, client, tmp_path):
        document = tmp_path / "report.txt"
        document.write_text("quarterly numbers")
        parts = [
            MultipartPart(part_type="file", name="document", path=str(document)),
            MultipartPart(part_type="field", name="note", value="Q3"),
        ]

        response = await client.execute("POST", str(server.make_url("/upload")), multipart=parts)

        assert response.status == 200
        assert json.loads(response.text()) == {
            "filename": "report.txt",
            "content": "quarterly numbers",
            "note": "Q3",
        }

    @pytest.mark.asyncio
    async def test_session_reused(self, server, client):
        await client.execute("GET", str(server.make_url("/json")))
        session = client._session
        await client.execute("GET", str(server.make_url("/json")))
        assert client._session is session

    @pytest.mark.asyncio
    async def test_connection_refused(self, client):
        app = web.Application()
        stopped = test_utils.TestServer(app)
        await stopped.start_server()
        url = str(stopped.make_url("/json"))
        await stopped.close()

        with pytest.raises(TransportError):
            await client.execute("GET", url)

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, client):
        await client.close()
        await client.close()
        assert client._session is None


class TestBuildForm:
    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path):
        parts = [MultipartPart(part_type="file", name="doc", path=str(tmp_path / "nope.bin"))]
        with pytest.raises(MultipartError, match="File not found"):
            await build_form(parts)

    @pytest.mark.asyncio
    async def test_unknown_part_type(self):
        with pytest.raises(MultipartError, match="Unknown multipart type: blob"):
            await build_form([MultipartPart(part_type="blob", name="data")])

    @pytest.mark.asyncio
    async def test_missing_file_raised_before_sending(self, tmp_path, client):
        parts = [MultipartPart(part_type="file", name="doc", path=str(tmp_path / "nope.bin"))]
        with pytest.raises(MultipartError):
            await client.execute("POST", "http://127.0.0.1:1/upload", multipart=parts)
        assert client._session is None


def test_response_text_replaces_invalid_utf8():
    assert HttpResponse(200, b"ok\xff").text() == "ok�"
