"""Tests for POST /api/update and the debug/admin endpoints."""

from unittest.mock import patch

HINT = "https://moodle.example.com/lineitems/11/lineitem"


class TestUpdateEndpoint:
    async def test_update_with_ltik_query(self, client, seed_session, make_context):
        key = seed_session(make_context(session_key="ltik-1", line_item_hint=HINT))

        resp = await client.post(f"/api/update?ltik={key}", json={"score": 3, "attempts": 1})
        assert resp.status_code == 200
        resp = await client.post(f"/api/update?ltik={key}", json={"score": 4, "attempts": 1})

        data = resp.json()
        assert data["ok"] is True
        assert data["score"] == 7
        assert data["attempts"] == 2
        assert data["lineItemIds"][0] == HINT

    async def test_session_from_header(self, client, seed_session, make_context):
        key = seed_session(make_context(session_key="hdr-1", line_item_hint=HINT))

        resp = await client.post(
            "/api/update", json={"score": 2}, headers={"X-LTI-Launch-Id": key}
        )

        assert resp.status_code == 200
        assert resp.json()["score"] == 2
        assert resp.json()["attempts"] == 0

    async def test_session_from_cookie(self, client, seed_session, make_context):
        key = seed_session(make_context(session_key="cookie-1", line_item_hint=HINT))
        resp = await client.post(
            "/api/update",
            json={"score": 1, "attempts": 1},
            headers={"Cookie": f"passback_session={key}"},
        )

        assert resp.status_code == 200

    async def test_is_exit_alias(self, client, seed_session, make_context):
        key = seed_session(make_context(session_key="exit-1", line_item_hint=HINT))
        await client.post(f"/api/update?ltik={key}", json={"score": 5, "attempts": 1})

        resp = await client.post(
            f"/api/update?ltik={key}", json={"score": 999, "attempts": 9, "isExit": True}
        )

        assert resp.json()["score"] == 5
        assert resp.json()["attempts"] == 1

    async def test_missing_session_is_unauthorized(self, client):
        resp = await client.post("/api/update", json={"score": 1})
        assert resp.status_code == 401
        assert resp.json()["ok"] is False
        assert resp.json()["error"] == "MissingSession"

    async def test_unknown_session_is_unauthorized(self, client):
        resp = await client.post("/api/update?ltik=ghost", json={"score": 1})
        assert resp.status_code == 401
        assert resp.json()["error"] == "SessionNotFound"

    async def test_line_item_unavailable(self, client, grading_client, seed_session, make_context):
        key = seed_session(make_context(session_key="no-ags"))
        grading_client.fail_query = True

        resp = await client.post(f"/api/update?ltik={key}", json={"score": 1})

        assert resp.status_code == 424
        assert resp.json()["error"] == "LineItemUnavailable"

    async def test_submission_failure_is_server_error(
        self, client, grading_client, seed_session, make_context
    ):
        key = seed_session(make_context(session_key="down", line_item_hint=HINT))
        grading_client.fail_all_submits = True

        resp = await client.post(f"/api/update?ltik={key}", json={"score": 1})

        assert resp.status_code == 502
        assert resp.json()["error"] == "SubmissionFailure"

    async def test_invalid_body_rejected(self, client, seed_session, make_context):
        key = seed_session(make_context(session_key="bad", line_item_hint=HINT))
        resp = await client.post(f"/api/update?ltik={key}", json={"score": "lots"})
        assert resp.status_code == 422

    async def test_non_finite_numbers_rejected(self, client, seed_session, make_context):
        """1e400 parses as inf and NaN as nan; both are client errors."""
        key = seed_session(make_context(session_key="inf", line_item_hint=HINT))

        for raw in ('{"score": 1, "attempts": 1e400}', '{"score": NaN}'):
            resp = await client.post(
                f"/api/update?ltik={key}",
                content=raw,
                headers={"Content-Type": "application/json"},
            )
            assert resp.status_code == 422

        debug = await client.get("/api/debug/aggregates")
        assert debug.json()["count"] == 0


class TestDebugEndpoints:
    async def test_aggregates_lists_snapshots(self, client, seed_session, make_context):
        key = seed_session(make_context(session_key="dbg", learner_id="learner-dbg", line_item_hint=HINT))
        await client.post(f"/api/update?ltik={key}", json={"score": 4, "attempts": 2})

        resp = await client.get("/api/debug/aggregates")

        data = resp.json()
        assert data["count"] == 1
        assert data["aggregates"][0]["learner_id"] == "learner-dbg"
        assert data["aggregates"][0]["score"] == 4

    async def test_reset_clears_state(self, client, seed_session, make_context):
        ctx = make_context(session_key="rst", line_item_hint=HINT)
        key = seed_session(ctx)
        await client.post(f"/api/update?ltik={key}", json={"score": 4, "attempts": 2})

        resp = await client.post(
            "/api/debug/reset",
            json={
                "platform_issuer": ctx.platform_issuer,
                "course_id": ctx.course_id,
                "activity_id": ctx.activity_id,
                "learner_id": ctx.learner_id,
            },
        )
        assert resp.json()["reset"] is True
        assert resp.json()["line_items_forgotten"] == 1

        resp = await client.post(f"/api/update?ltik={key}", json={"score": 1, "attempts": 1})
        assert resp.json()["score"] == 1

    async def test_session_returns_context(self, client, seed_session, make_context):
        key = seed_session(make_context(session_key="ctx-1"))
        resp = await client.get("/api/debug/session", params={"ltik": key})
        assert resp.status_code == 200
        assert resp.json()["context"]["activity_id"] == "resource-7"

    async def test_session_unknown(self, client):
        resp = await client.get("/api/debug/session", params={"ltik": "nobody"})
        assert resp.status_code == 401

    async def test_debug_disabled_returns_404(self, client, test_settings):
        off = test_settings.model_copy(update={"debug": False})
        with patch("passback.api.routes.get_settings", return_value=off):
            resp = await client.get("/api/debug/aggregates")
        assert resp.status_code == 404


class TestAppRoutes:
    async def test_health(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "healthy"}

    async def test_home_page(self, client):
        resp = await client.get("/")
        assert "launched from your LMS" in resp.text

    async def test_csp_header_allows_framing(self, client):
        resp = await client.get("/health")
        assert resp.headers["content-security-policy"].startswith("frame-ancestors")

    async def test_update_unavailable_without_grading_client(self, test_settings):
        from httpx import ASGITransport, AsyncClient

        from passback.app import get_app, init_passback

        bare = get_app()
        init_passback(bare, test_settings)
        async with AsyncClient(transport=ASGITransport(app=bare), base_url="http://test") as c:
            resp = await c.post("/api/update?ltik=x", json={"score": 1})
        assert resp.status_code == 503
