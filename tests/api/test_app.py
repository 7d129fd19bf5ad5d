"""
End-to-end tests through the starlette test client.

Every request goes through the full default stage sequence:
CORS → response init → body decoding → dispatch.
"""

from __future__ import annotations

import io
import re
import time
from datetime import datetime

import pytest
from starlette.testclient import TestClient
from structlog.testing import capture_logs

from envelope_api.api.app import create_app
from envelope_api.api.pipeline import StageOutcome
from envelope_api.api.settings import Settings
from envelope_api.core.errors import ConsistencyError, DomainError


async def list_items(ctx):
    return {"items": [1, 2]}


async def explode(ctx):
    raise ZeroDivisionError("division by zero")


async def missing(ctx):
    raise DomainError("not_found", "No such widget.", status=404)


async def echo(ctx):
    return {"received": ctx.body}


def _client(handler=None, **overrides) -> TestClient:
    settings = Settings(service_name="test-api", service_version="9.9.9", **overrides)
    return TestClient(create_app(settings=settings, handler=handler))


class TestSuccess:
    def test_payload_and_meta(self):
        client = _client(list_items)
        resp = client.post("/items", json={"name": "widget"})

        assert resp.status_code == 200
        body = resp.json()
        assert body["items"] == [1, 2]
        assert body["meta"]["name"] == "test-api"
        assert body["meta"]["version"] == "9.9.9"
        assert re.fullmatch(r"\d+ms", body["meta"]["duration"])
        assert "error" not in body

    def test_decoded_body_reaches_handler(self):
        client = _client(echo)
        resp = client.post("/echo", json={"a": [1, 2]})
        assert resp.json()["received"] == {"a": [1, 2]}

    def test_form_body_reaches_handler(self):
        client = _client(echo)
        resp = client.post("/echo", data={"name": "widget"})
        assert resp.json()["received"] == {"name": "widget"}

    def test_handler_sets_status_via_meta(self):
        async def create(ctx):
            return {"meta": {"status": 201}, "id": 7}

        resp = _client(create).post("/widgets", json={})
        assert resp.status_code == 201
        assert resp.json()["id"] == 7


class TestErrors:
    def test_malformed_json(self):
        client = _client(list_items)
        resp = client.post(
            "/items",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )

        assert resp.status_code == 400
        body = resp.json()
        assert body["meta"]["success"] is False
        assert body["meta"]["status"] == 400
        assert body["meta"]["name"] == "test-api"
        assert body["error"] == {
            "id": "invalid_body",
            "message": "The body of your request is invalid.",
        }
        assert "items" not in body

    def test_body_too_large(self):
        client = _client(list_items, max_body_size=16)
        resp = client.post("/items", json={"data": "x" * 64})
        assert resp.status_code == 413
        assert resp.json()["error"]["id"] == "invalid_body"

    def test_unknown_failure_hides_stack(self):
        resp = _client(explode).get("/boom")

        assert resp.status_code == 500
        body = resp.json()
        assert body["meta"]["success"] is False
        assert body["meta"]["status"] == 500
        assert body["error"]["id"] == "server_error"
        assert "stack" not in body["error"]
        assert "cause" not in body["error"]

    def test_unknown_failure_with_stack_traces(self):
        hidden = _client(explode).get("/boom").json()
        shown = _client(explode, stack_traces=True).get("/boom").json()

        assert shown["error"]["id"] == hidden["error"]["id"]
        assert shown["error"]["message"] == hidden["error"]["message"]
        assert isinstance(shown["error"]["stack"], list)
        assert all(isinstance(line, str) for line in shown["error"]["stack"])
        assert shown["error"]["stack"][-1] == "ZeroDivisionError: division by zero"

    def test_domain_error_logged_as_warning(self):
        client = _client(missing)
        with capture_logs() as logs:
            resp = client.get("/widgets/7")

        assert resp.status_code == 404
        assert resp.json()["error"]["id"] == "not_found"
        levels = {entry["log_level"] for entry in logs if entry["event"] in ("request_failed", "error_occurred")}
        assert levels == {"warning"}

    def test_default_handler_is_not_found(self):
        resp = _client().get("/anything")
        assert resp.status_code == 404
        assert resp.json()["error"]["id"] == "not_found"

    def test_dispatch_timeout(self):
        import asyncio

        async def slow(ctx):
            await asyncio.sleep(1)

        resp = _client(slow, dispatch_timeout_seconds=0.01).get("/slow")
        assert resp.status_code == 504
        assert resp.json()["error"]["id"] == "request_timeout"

    def test_unrenderable_payload_is_json_error(self):
        async def dated(ctx):
            return {"when": datetime(2024, 1, 1)}

        resp = _client(dated).get("/dated")

        assert resp.status_code == 500
        assert resp.headers["content-type"] == "application/json"
        body = resp.json()
        assert body["error"]["id"] == "server_error"
        assert body["meta"]["name"] == "test-api"

    def test_blocking_sync_handler_timeout(self):
        def blocking(ctx):
            time.sleep(0.5)
            return {"late": True}

        resp = _client(blocking, dispatch_timeout_seconds=0.05).get("/slow")
        assert resp.status_code == 504
        assert resp.json()["error"]["id"] == "request_timeout"

    def test_console_logging_keeps_error_envelopes(self, monkeypatch):
        stream = io.StringIO()
        monkeypatch.setattr("sys.stdout", stream)
        app = create_app(settings=Settings(service_name="test-api", log_format="console"), handler=explode)

        with TestClient(app) as client:
            resp = client.get("/boom")

        assert resp.status_code == 500
        assert resp.json()["error"]["id"] == "server_error"
        assert "ZeroDivisionError: division by zero" in stream.getvalue()


class TestUploads:
    def test_uploaded_files_closed_after_response(self):
        uploads = []

        async def receive_file(ctx):
            upload = ctx.body["doc"]
            uploads.append(upload)
            return {"filename": upload.filename, "size": len(await upload.read())}

        resp = _client(receive_file).post(
            "/files",
            files={"doc": ("notes.txt", b"hello world", "text/plain")},
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["filename"] == "notes.txt"
        assert body["size"] == 11
        assert uploads[0].file.closed

    def test_uploaded_files_closed_after_failure(self):
        uploads = []

        async def reject_file(ctx):
            uploads.append(ctx.body["doc"])
            raise DomainError("unsupported_file", "Only images are accepted.", status=415)

        resp = _client(reject_file).post(
            "/files",
            files={"doc": ("notes.txt", b"hello", "text/plain")},
        )

        assert resp.status_code == 415
        assert uploads[0].file.closed


class TestHeaders:
    def test_request_id_echoed(self):
        resp = _client(list_items).get("/items", headers={"X-Request-ID": "req-42"})
        assert resp.headers["x-request-id"] == "req-42"

    def test_request_id_generated(self):
        resp = _client(list_items).get("/items")
        assert resp.headers["x-request-id"]

    def test_cors_simple_request(self):
        resp = _client(list_items).get("/items", headers={"Origin": "https://example.com"})
        assert resp.headers["access-control-allow-origin"] == "*"

    def test_cors_headers_on_errors(self):
        resp = _client(explode).get("/boom", headers={"Origin": "https://example.com"})
        assert resp.status_code == 500
        assert resp.headers["access-control-allow-origin"] == "*"

    def test_cors_preflight_skips_dispatch(self):
        calls = []

        async def handler(ctx):
            calls.append(ctx.path)
            return {}

        resp = _client(handler).options(
            "/items",
            headers={"Origin": "https://example.com", "Access-Control-Request-Method": "POST"},
        )
        assert resp.status_code == 200
        assert "access-control-allow-methods" in resp.headers
        assert calls == []


class TestConsistency:
    def test_first_terminal_action_wins(self):
        class DoubleWriter:
            name = "double"

            async def process(self, ctx):
                return StageOutcome.respond()

        settings = Settings(service_name="test-api")
        app = create_app(settings=settings, stages=[DoubleWriter(), DoubleWriter()])
        assert TestClient(app).get("/").status_code == 200

    def test_consistency_error_propagates(self):
        class Broken:
            name = "broken"

            async def process(self, ctx):
                raise ConsistencyError("state corrupted")

        app = create_app(settings=Settings(), stages=[Broken()])
        with capture_logs() as logs:
            with pytest.raises(ConsistencyError):
                TestClient(app).get("/")
        assert any(e["event"] == "consistency_violation" and e["log_level"] == "critical" for e in logs)

    def test_consistency_error_is_500_without_raising(self):
        class Broken:
            name = "broken"

            async def process(self, ctx):
                raise ConsistencyError("state corrupted")

        app = create_app(settings=Settings(), stages=[Broken()])
        resp = TestClient(app, raise_server_exceptions=False).get("/")
        assert resp.status_code == 500


class TestLifespan:
    def test_startup_and_shutdown(self):
        app = create_app(settings=Settings(log_level="WARNING"))
        with TestClient(app) as client:
            assert client.get("/x").status_code == 404
        assert app.state.pipeline.stage_names == ["cors", "response_init", "body", "dispatch"]
