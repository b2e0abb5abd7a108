"""
DocGate Backend - Admission Pipeline Tests
==========================================

What:  End-to-end tests through the full middleware stack, from the first
       byte in to the security headers on the way out.
How:   httpx.AsyncClient over ASGITransport against apps from create_app()
       with fake collaborators and a limiter on a fake clock.

Test Strategy:
    ✅ Liveness answers, is never rate limited, still obeys origin policy
    ✅ Unknown routes get the 404 envelope
    ✅ Every response, success or failure, carries the security headers
    ✅ Origin policy: echo, reject before any collaborator runs, preflight
    ✅ Rate limits per route class, with Retry-After and CORS on the 429
    ✅ Body ceiling inclusive, enforced for declared and chunked bodies
    ✅ Multipart uploads admitted or rejected before the collaborator
    ✅ Collaborator failures: generic 500, details only in development
"""

import logging
from datetime import datetime

import pytest

from conftest import ALLOWED_ORIGIN
from docgate.exceptions import CollaboratorError
from docgate.main import create_app
from docgate.middleware.error_handler import GENERIC_ERROR
from docgate.middleware.security_headers import SECURITY_HEADERS
from docgate.services.collaborator_base import CollaboratorReply

MIB = 1024 * 1024
EVIL_ORIGIN = "https://evil.example"


def assert_security_headers(response):
    for name, value in SECURITY_HEADERS.items():
        assert response.headers.get(name) == value, name


def json_body_of_size(size: int) -> bytes:
    """A valid JSON document of exactly `size` bytes."""
    body = b'{"a":"' + b"x" * (size - 8) + b'"}'
    assert len(body) == size
    return body


async def chunks(data: bytes, chunk_size: int = 256):
    for start in range(0, len(data), chunk_size):
        yield data[start:start + chunk_size]


# ══════════════════════════════════════════════════════════════════════════
# Liveness & Routing
# ══════════════════════════════════════════════════════════════════════════

class TestLiveness:
    @pytest.mark.asyncio
    async def test_health_check(self, client):
        response = await client.get("/api/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "OK"
        datetime.fromisoformat(body["timestamp"].replace("Z", "+00:00"))
        assert body["version"]
        assert body["uptime_seconds"] >= 0

    @pytest.mark.asyncio
    async def test_root(self, client):
        response = await client.get("/")

        assert response.status_code == 200
        assert response.text == "API is running"

    @pytest.mark.asyncio
    async def test_liveness_exempt_from_rate_limit(self, make_app, make_client):
        app = make_app(rate_limit_general_requests=1)
        async with make_client(app) as client:
            for _ in range(5):
                assert (await client.get("/api/health")).status_code == 200
                assert (await client.get("/")).status_code == 200

            assert (await client.get("/api/share")).status_code == 200
            assert (await client.get("/api/share")).status_code == 429

    @pytest.mark.asyncio
    async def test_liveness_still_obeys_origin_policy(self, client):
        response = await client.get("/api/health", headers={"Origin": EVIL_ORIGIN})

        assert response.status_code == 403
        assert response.json() == {"error": "Not allowed by CORS"}


class TestRouting:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/nope"),
            ("POST", "/api/unknown"),
            ("DELETE", "/api"),
            ("GET", "/api/uploads"),
        ],
    )
    async def test_unknown_route_returns_not_found_envelope(self, client, fake_collaborators, method, path):
        response = await client.request(method, path)

        assert response.status_code == 404
        assert response.json() == {"error": "Endpoint not found"}
        assert not any(c.calls for c in fake_collaborators.values())

    @pytest.mark.asyncio
    async def test_subpath_query_and_method_reach_collaborator(self, client, fake_collaborators):
        response = await client.put("/api/templates/abc/def?draft=1", json={"name": "Weekly"})

        assert response.status_code == 200
        assert response.json() == {"ok": True, "group": "templates"}
        call = fake_collaborators["templates"].calls[0]
        assert call.method == "PUT"
        assert call.subpath == "abc/def"
        assert call.query == "draft=1"
        assert call.json == {"name": "Weekly"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "path,group",
        [
            ("/api/upload", "upload"),
            ("/api/summarize", "summarize"),
            ("/api/share", "share"),
            ("/api/pdf", "pdf"),
            ("/api/templates", "templates"),
            ("/api/version-history/12", "version-history"),
            ("/api/export/csv", "export"),
        ],
    )
    async def test_each_group_forwards_to_its_collaborator(self, client, fake_collaborators, path, group):
        response = await client.get(path)

        assert response.status_code == 200
        assert len(fake_collaborators[group].calls) == 1

    @pytest.mark.asyncio
    async def test_binary_reply_rendered_with_media_type(self, client, fake_collaborators):
        fake_collaborators["pdf"].reply = CollaboratorReply(
            content=b"%PDF-1.4 fake",
            media_type="application/pdf",
            headers={"content-disposition": 'attachment; filename="note.pdf"'},
        )

        response = await client.post("/api/pdf", json={"noteId": 3})

        assert response.status_code == 200
        assert response.content == b"%PDF-1.4 fake"
        assert response.headers["content-type"] == "application/pdf"
        assert response.headers["content-disposition"] == 'attachment; filename="note.pdf"'

    @pytest.mark.asyncio
    async def test_collaborator_4xx_passed_through(self, client, fake_collaborators):
        fake_collaborators["templates"].reply = CollaboratorReply(
            status_code=404, content={"error": "Template not found"}
        )

        response = await client.get("/api/templates/missing")

        assert response.status_code == 404
        assert response.json() == {"error": "Template not found"}

    @pytest.mark.asyncio
    async def test_malformed_json_rejected(self, client, fake_collaborators):
        response = await client.post(
            "/api/share",
            content=b'{"to": ',
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid request payload"}
        assert fake_collaborators["share"].calls == []

    @pytest.mark.asyncio
    async def test_urlencoded_form_forwarded_as_fields(self, client, fake_collaborators):
        response = await client.post("/api/share", data={"to": "a@example.com", "noteId": "4"})

        assert response.status_code == 200
        call = fake_collaborators["share"].calls[0]
        assert call.form == {"to": "a@example.com", "noteId": "4"}
        assert call.files == []


class TestRequestId:
    @pytest.mark.asyncio
    async def test_generated_when_absent(self, client):
        response = await client.get("/api/health")
        assert len(response.headers["x-request-id"]) == 8

    @pytest.mark.asyncio
    async def test_client_value_echoed_and_forwarded(self, client, fake_collaborators):
        response = await client.get("/api/export", headers={"X-Request-ID": "trace-1"})

        assert response.headers["x-request-id"] == "trace-1"
        assert fake_collaborators["export"].calls[0].request_id == "trace-1"

    @pytest.mark.asyncio
    async def test_present_on_errors(self, client):
        response = await client.get("/nope", headers={"X-Request-ID": "trace-2"})
        assert response.headers["x-request-id"] == "trace-2"


class TestAccessLog:
    @pytest.mark.asyncio
    async def test_rejections_logged_at_warning(self, client, caplog):
        caplog.set_level(logging.INFO, logger="docgate.access")

        await client.get("/nope")

        records = [r for r in caplog.records if r.name == "docgate.access"]
        assert len(records) == 1
        assert records[0].levelno == logging.WARNING
        assert records[0].status == 404
        assert records[0].path == "/nope"

    @pytest.mark.asyncio
    async def test_successful_probes_not_logged(self, client, caplog):
        caplog.set_level(logging.INFO, logger="docgate.access")

        await client.get("/api/health")

        assert not [r for r in caplog.records if r.name == "docgate.access"]


# ══════════════════════════════════════════════════════════════════════════
# Security Headers
# ══════════════════════════════════════════════════════════════════════════

class TestSecurityHeaders:
    @pytest.mark.asyncio
    async def test_on_success(self, client):
        assert_security_headers(await client.get("/api/health"))

    @pytest.mark.asyncio
    async def test_on_not_found(self, client):
        assert_security_headers(await client.get("/nope"))

    @pytest.mark.asyncio
    async def test_on_origin_rejection(self, client):
        assert_security_headers(await client.get("/api/share", headers={"Origin": EVIL_ORIGIN}))

    @pytest.mark.asyncio
    async def test_on_rate_limit_rejection(self, make_app, make_client):
        async with make_client(make_app(rate_limit_heavy_requests=1)) as client:
            await client.post("/api/summarize", json={})
            response = await client.post("/api/summarize", json={})
        assert response.status_code == 429
        assert_security_headers(response)

    @pytest.mark.asyncio
    async def test_on_body_rejection(self, make_app, make_client):
        async with make_client(make_app(max_body_size=16)) as client:
            response = await client.post("/api/share", content=b"x" * 17)
        assert response.status_code == 413
        assert_security_headers(response)

    @pytest.mark.asyncio
    async def test_on_collaborator_failure(self, client, fake_collaborators):
        fake_collaborators["export"].error = RuntimeError("boom")
        response = await client.get("/api/export")
        assert response.status_code == 500
        assert_security_headers(response)

    @pytest.mark.asyncio
    async def test_on_preflight(self, client):
        response = await client.options(
            "/api/share",
            headers={"Origin": ALLOWED_ORIGIN, "Access-Control-Request-Method": "POST"},
        )
        assert_security_headers(response)


# ══════════════════════════════════════════════════════════════════════════
# Origin Policy
# ══════════════════════════════════════════════════════════════════════════

class TestOriginPolicy:
    @pytest.mark.asyncio
    async def test_allowed_origin_echoed_with_credentials(self, client):
        response = await client.get("/api/share", headers={"Origin": ALLOWED_ORIGIN})

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == ALLOWED_ORIGIN
        assert response.headers["access-control-allow-credentials"] == "true"
        assert "Origin" in response.headers["vary"]

    @pytest.mark.asyncio
    async def test_absent_origin_allowed_without_cors_headers(self, client):
        response = await client.get("/api/share")

        assert response.status_code == 200
        assert "access-control-allow-origin" not in response.headers

    @pytest.mark.asyncio
    async def test_disallowed_origin_rejected_before_collaborator(self, client, fake_collaborators):
        response = await client.post(
            "/api/summarize", json={"text": "x"}, headers={"Origin": EVIL_ORIGIN}
        )

        assert response.status_code == 403
        assert response.json() == {"error": "Not allowed by CORS"}
        assert "access-control-allow-origin" not in response.headers
        assert fake_collaborators["summarize"].calls == []

    @pytest.mark.asyncio
    async def test_disallowed_origin_does_not_consume_rate_limit(self, make_app, make_client):
        async with make_client(make_app(rate_limit_heavy_requests=1)) as client:
            for _ in range(3):
                await client.post("/api/pdf", headers={"Origin": EVIL_ORIGIN})
            response = await client.post("/api/pdf")
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_multiple_configured_origins(self, make_app, make_client):
        app = make_app(cors_origin="https://a.example, https://b.example")
        async with make_client(app) as client:
            response = await client.get("/api/share", headers={"Origin": "https://b.example"})
        assert response.headers["access-control-allow-origin"] == "https://b.example"

    @pytest.mark.asyncio
    async def test_preflight_answered_without_collaborator(self, client, fake_collaborators):
        response = await client.options(
            "/api/upload",
            headers={
                "Origin": ALLOWED_ORIGIN,
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "content-type",
            },
        )

        assert response.status_code == 204
        assert response.headers["access-control-allow-origin"] == ALLOWED_ORIGIN
        assert "POST" in response.headers["access-control-allow-methods"]
        assert response.headers["access-control-allow-headers"] == "content-type"
        assert fake_collaborators["upload"].calls == []

    @pytest.mark.asyncio
    async def test_preflight_does_not_consume_rate_limit(self, make_app, make_client):
        async with make_client(make_app(rate_limit_upload_requests=1)) as client:
            for _ in range(3):
                response = await client.options(
                    "/api/upload",
                    headers={"Origin": ALLOWED_ORIGIN, "Access-Control-Request-Method": "POST"},
                )
                assert response.status_code == 204
            assert (await client.post("/api/upload")).status_code == 200


# ══════════════════════════════════════════════════════════════════════════
# Rate Limiting
# ══════════════════════════════════════════════════════════════════════════

class TestRateLimiting:
    @pytest.mark.asyncio
    async def test_rejects_after_limit_with_retry_after(self, make_app, make_client, fake_collaborators):
        async with make_client(make_app(rate_limit_upload_requests=2, rate_limit_upload_window=900)) as client:
            first = await client.post("/api/upload")
            second = await client.post("/api/upload")
            third = await client.post("/api/upload")

        assert [first.status_code, second.status_code] == [200, 200]
        assert first.headers["ratelimit-limit"] == "2"
        assert first.headers["ratelimit-remaining"] == "1"
        assert third.status_code == 429
        assert third.json() == {"error": "Too many requests, please try again later."}
        assert third.headers["retry-after"] == "900"
        assert third.headers["ratelimit-remaining"] == "0"
        assert len(fake_collaborators["upload"].calls) == 2

    @pytest.mark.asyncio
    async def test_rejection_carries_cors_headers_for_allowed_origin(self, make_app, make_client):
        async with make_client(make_app(rate_limit_heavy_requests=1)) as client:
            await client.post("/api/summarize", headers={"Origin": ALLOWED_ORIGIN})
            response = await client.post("/api/summarize", headers={"Origin": ALLOWED_ORIGIN})

        assert response.status_code == 429
        assert response.headers["access-control-allow-origin"] == ALLOWED_ORIGIN
        assert response.headers["access-control-allow-credentials"] == "true"

    @pytest.mark.asyncio
    async def test_window_rollover(self, make_app, make_client, fake_clock):
        async with make_client(make_app(rate_limit_heavy_requests=1, rate_limit_heavy_window=60)) as client:
            assert (await client.post("/api/pdf")).status_code == 200
            assert (await client.post("/api/pdf")).status_code == 429
            fake_clock.advance(60)
            assert (await client.post("/api/pdf")).status_code == 200

    @pytest.mark.asyncio
    async def test_route_classes_counted_separately(self, make_app, make_client):
        app = make_app(
            rate_limit_general_requests=1,
            rate_limit_upload_requests=1,
            rate_limit_heavy_requests=1,
        )
        async with make_client(app) as client:
            assert (await client.get("/api/share")).status_code == 200
            assert (await client.post("/api/upload")).status_code == 200
            assert (await client.post("/api/summarize")).status_code == 200
            # summarize and pdf share the heavy bucket
            assert (await client.post("/api/pdf")).status_code == 429
            assert (await client.get("/api/templates")).status_code == 429

    @pytest.mark.asyncio
    async def test_non_api_paths_not_limited(self, make_app, make_client):
        async with make_client(make_app(rate_limit_general_requests=1)) as client:
            for _ in range(3):
                response = await client.get("/static/app.js")
                assert response.status_code == 404
                assert "ratelimit-limit" not in response.headers


# ══════════════════════════════════════════════════════════════════════════
# Body Admission
# ══════════════════════════════════════════════════════════════════════════

class TestBodyAdmission:
    @pytest.mark.asyncio
    async def test_body_at_ceiling_accepted(self, make_app, make_client, fake_collaborators):
        body = json_body_of_size(1024)
        async with make_client(make_app(max_body_size=1024)) as client:
            response = await client.post(
                "/api/share", content=body, headers={"Content-Type": "application/json"}
            )

        assert response.status_code == 200
        assert fake_collaborators["share"].calls[0].json == {"a": "x" * 1016}

    @pytest.mark.asyncio
    async def test_body_one_byte_over_rejected(self, make_app, make_client, fake_collaborators):
        body = json_body_of_size(1025)
        async with make_client(make_app(max_body_size=1024)) as client:
            response = await client.post(
                "/api/share", content=body, headers={"Content-Type": "application/json"}
            )

        assert response.status_code == 413
        assert response.json()["error"].startswith("Request body too large. Maximum size is")
        assert fake_collaborators["share"].calls == []

    @pytest.mark.asyncio
    async def test_default_ceiling_message(self, client):
        response = await client.post(
            "/api/share",
            content=json_body_of_size(10 * MIB + 1),
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 413
        assert response.json() == {"error": "Request body too large. Maximum size is 10MB."}

    @pytest.mark.asyncio
    async def test_chunked_body_over_ceiling_rejected(self, make_app, make_client, fake_collaborators):
        async with make_client(make_app(max_body_size=1024)) as client:
            response = await client.post(
                "/api/share",
                content=chunks(json_body_of_size(1025)),
                headers={"Content-Type": "application/json"},
            )

        assert response.status_code == 413
        assert fake_collaborators["share"].calls == []

    @pytest.mark.asyncio
    async def test_chunked_body_within_ceiling_replayed(self, make_app, make_client, fake_collaborators):
        async with make_client(make_app(max_body_size=1024)) as client:
            response = await client.post(
                "/api/share",
                content=chunks(json_body_of_size(1000)),
                headers={"Content-Type": "application/json"},
            )

        assert response.status_code == 200
        assert fake_collaborators["share"].calls[0].json == {"a": "x" * 992}

    @pytest.mark.asyncio
    async def test_urlencoded_body_over_ceiling_rejected(self, make_app, make_client):
        async with make_client(make_app(max_body_size=64)) as client:
            response = await client.post("/api/share", data={"text": "x" * 100})
        assert response.status_code == 413


# ══════════════════════════════════════════════════════════════════════════
# Upload Admission
# ══════════════════════════════════════════════════════════════════════════

class TestUploadAdmission:
    @pytest.mark.asyncio
    async def test_text_file_reaches_collaborator(self, client, fake_collaborators):
        response = await client.post(
            "/api/upload",
            files={"file": ("notes.txt", b"hello world", "text/plain")},
            data={"title": "Notes"},
        )

        assert response.status_code == 200
        call = fake_collaborators["upload"].calls[0]
        assert call.form == {"title": "Notes"}
        assert len(call.files) == 1
        uploaded = call.files[0]
        assert uploaded.field_name == "file"
        assert uploaded.filename == "notes.txt"
        assert uploaded.media_type == "text/plain"
        assert uploaded.content == b"hello world"

    @pytest.mark.asyncio
    async def test_disallowed_type_rejected(self, client, fake_collaborators):
        response = await client.post(
            "/api/upload",
            files={"file": ("doc.pdf", b"%PDF-1.4", "application/pdf")},
        )

        assert response.status_code == 400
        assert response.json() == {
            "error": "Invalid file type. Only .txt, .md, .json, and .csv files are allowed."
        }
        assert fake_collaborators["upload"].calls == []

    @pytest.mark.asyncio
    async def test_oversized_file_rejected_regardless_of_type(self, client, fake_collaborators):
        response = await client.post(
            "/api/upload",
            files={"file": ("big.pdf", b"a" * (10 * MIB + 1), "application/pdf")},
        )

        assert response.status_code == 400
        assert response.json() == {"error": "File too large. Maximum size is 10MB."}
        assert fake_collaborators["upload"].calls == []

    @pytest.mark.asyncio
    async def test_too_many_files_rejected(self, make_app, make_client, fake_collaborators):
        files = [("file", (f"{i}.txt", b"x", "text/plain")) for i in range(3)]
        async with make_client(make_app(max_upload_files=2)) as client:
            response = await client.post("/api/upload", files=files)

        assert response.status_code == 400
        assert response.json()["error"] == "Too many files. Maximum is 2 per request."
        assert fake_collaborators["upload"].calls == []

    @pytest.mark.asyncio
    async def test_upload_guard_applies_to_every_group(self, client, fake_collaborators):
        response = await client.post(
            "/api/export",
            files={"file": ("image.png", b"\x89PNG", "image/png")},
        )

        assert response.status_code == 400
        assert fake_collaborators["export"].calls == []


# ══════════════════════════════════════════════════════════════════════════
# Collaborator Failures
# ══════════════════════════════════════════════════════════════════════════

class TestCollaboratorFailures:
    @pytest.mark.asyncio
    async def test_production_hides_details(self, client, fake_collaborators):
        fake_collaborators["summarize"].error = CollaboratorError(
            "summarize", "summarize service answered 503"
        )

        response = await client.post("/api/summarize", json={"text": "x"})

        assert response.status_code == 500
        assert response.json() == {"error": GENERIC_ERROR}

    @pytest.mark.asyncio
    async def test_development_exposes_details(self, make_app, make_client, fake_collaborators):
        fake_collaborators["summarize"].error = CollaboratorError(
            "summarize", "summarize service answered 503"
        )
        async with make_client(make_app(environment="development")) as client:
            response = await client.post("/api/summarize", json={"text": "x"})

        assert response.status_code == 500
        assert response.json() == {
            "error": GENERIC_ERROR,
            "details": "summarize service answered 503",
        }

    @pytest.mark.asyncio
    async def test_unexpected_exception_translated(self, client, fake_collaborators):
        fake_collaborators["share"].error = ValueError("smtp exploded")

        response = await client.post("/api/share", json={"to": "a@b.c"})

        assert response.status_code == 500
        assert response.json() == {"error": GENERIC_ERROR}
        assert "smtp" not in response.text

    @pytest.mark.asyncio
    async def test_unconfigured_collaborator(self, make_settings, make_client):
        app = create_app(settings=make_settings(environment="development"), collaborators={})
        async with make_client(app) as client:
            response = await client.get("/api/templates")

        assert response.status_code == 500
        assert response.json()["details"] == "No upstream configured for the templates service"


class TestLifespan:
    @pytest.mark.asyncio
    async def test_shutdown_closes_collaborators(self, make_app, fake_collaborators, monkeypatch):
        monkeypatch.setattr("docgate.main.setup_logging", lambda level: None)
        app = make_app()

        async with app.router.lifespan_context(app):
            pass

        assert all(c.closed for c in fake_collaborators.values())
