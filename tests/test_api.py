import threading

import pytest


def _files(*items):
    return [("files", (name, content, "application/octet-stream")) for name, content in items]


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "llm": True}


class TestDocumentsAPI:
    @pytest.mark.asyncio
    async def test_upload_batch_reports_each_file(self, client):
        resp = await client.post(
            "/v1/documents/upload",
            data={"tenant_id": "1"},
            files=_files(("a.txt", b"alpha"), ("b.exe", b"MZ"), ("c.md", b"gamma")),
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["successful"] == 2
        assert body["failed"] == 1
        failed = body["results"][1]
        assert failed["ok"] is False
        assert failed["error_code"] == "UNSUPPORTED_FORMAT"

        listed = await client.get("/v1/documents", params={"tenant_id": 1})
        assert sorted(d["original_name"] for d in listed.json()) == ["a.txt", "c.md"]

    @pytest.mark.asyncio
    async def test_document_detail_stats_and_delete(self, client):
        upload = await client.post(
            "/v1/documents/upload", data={"tenant_id": "1"}, files=_files(("a.txt", b"alpha"))
        )
        doc_id = upload.json()["results"][0]["document_id"]

        detail = await client.get(f"/v1/documents/{doc_id}", params={"tenant_id": 1})
        assert detail.json()["full_text"] == "alpha"

        foreign = await client.get(f"/v1/documents/{doc_id}", params={"tenant_id": 2})
        assert foreign.status_code == 404
        assert foreign.json()["error"] == "NOT_FOUND"

        stats = await client.get("/v1/documents/stats", params={"tenant_id": 1})
        assert stats.json() == {"documents": 1, "chunks": 1}

        deleted = await client.delete(f"/v1/documents/{doc_id}", params={"tenant_id": 1})
        assert deleted.status_code == 200
        stats = await client.get("/v1/documents/stats", params={"tenant_id": 1})
        assert stats.json() == {"documents": 0, "chunks": 0}

    @pytest.mark.asyncio
    async def test_replace_and_export(self, client):
        await client.post("/v1/documents/upload", data={"tenant_id": "1"}, files=_files(("old.txt", b"old")))

        resp = await client.post(
            "/v1/documents/replace", data={"tenant_id": "1"}, files=_files(("new.txt", b"new"))
        )
        assert resp.json()["deleted"] == 1

        export = await client.get("/v1/documents/export", params={"tenant_id": 1})
        assert export.text == "=== new.txt ===\n\nnew"

    @pytest.mark.asyncio
    async def test_delete_all(self, client):
        await client.post(
            "/v1/documents/upload", data={"tenant_id": "1"}, files=_files(("a.txt", b"a1"), ("b.txt", b"b2"))
        )
        resp = await client.delete("/v1/documents", params={"tenant_id": 1})
        assert resp.json() == {"deleted": 2}


class TestChatAPI:
    @pytest.mark.asyncio
    async def test_conversation(self, client, generator):
        first = await client.post("/v1/chat/message", json={"tenant_id": 1, "display_name": "Alice"})
        assert first.status_code == 200
        body = first.json()
        assert body["is_new_session"] is True
        session_id = body["session_id"]

        second = await client.post(
            "/v1/chat/message", json={"tenant_id": 1, "session_id": session_id, "message": "祝你们幸福"}
        )
        assert second.json()["reply"] == generator.reply
        assert second.json()["classification"] == "blessing"

        history = await client.get("/v1/chat/history", params={"tenant_id": 1, "session_id": session_id})
        assert history.json()["count"] == 3
        assert [m["role"] for m in history.json()["messages"]] == ["assistant", "user", "assistant"]

        curated = await client.get("/v1/chat/curated", params={"tenant_id": 1, "kind": "blessing"})
        [item] = curated.json()
        assert item["guest_name"] == "Alice"

        read = await client.patch(f"/v1/chat/curated/{item['id']}/read", params={"tenant_id": 1})
        assert read.status_code == 200
        unread = await client.get("/v1/chat/curated", params={"tenant_id": 1, "unread_only": True})
        assert unread.json() == []

        sessions = await client.get("/v1/chat/sessions", params={"tenant_id": 1})
        assert [(s["id"], s["message_count"]) for s in sessions.json()] == [(session_id, 3)]

    @pytest.mark.asyncio
    async def test_foreign_session_is_forbidden(self, client):
        await client.post("/v1/chat/message", json={"tenant_id": 1, "session_id": "shared"})

        resp = await client.post("/v1/chat/message", json={"tenant_id": 2, "session_id": "shared", "message": "hi"})

        assert resp.status_code == 403
        assert resp.json()["error"] == "OWNERSHIP_CONFLICT"
        history = await client.get("/v1/chat/history", params={"tenant_id": 2, "session_id": "shared"})
        assert history.status_code == 403

    @pytest.mark.asyncio
    async def test_blank_follow_up_is_bad_request(self, client):
        await client.post("/v1/chat/message", json={"tenant_id": 1, "session_id": "s-1"})
        resp = await client.post("/v1/chat/message", json={"tenant_id": 1, "session_id": "s-1", "message": "  "})
        assert resp.status_code == 400
        assert resp.json()["error"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_generation_outage_is_service_unavailable(self, client, generator):
        from guestdesk.services.llm import GenerationUnavailable

        await client.post("/v1/chat/message", json={"tenant_id": 1, "session_id": "s-1"})
        generator.fail_with = GenerationUnavailable("down")

        resp = await client.post("/v1/chat/message", json={"tenant_id": 1, "session_id": "s-1", "message": "hello"})

        assert resp.status_code == 503
        history = await client.get("/v1/chat/history", params={"tenant_id": 1, "session_id": "s-1"})
        assert history.json()["count"] == 1

    @pytest.mark.asyncio
    async def test_clear_and_delete_session(self, client):
        await client.post("/v1/chat/message", json={"tenant_id": 1, "session_id": "s-1"})

        cleared = await client.delete("/v1/chat/history", params={"tenant_id": 1, "session_id": "s-1"})
        assert cleared.json()["cleared"] == 1

        deleted = await client.delete("/v1/chat/session", params={"tenant_id": 1, "session_id": "s-1"})
        assert deleted.status_code == 200
        missing = await client.get("/v1/chat/history", params={"tenant_id": 1, "session_id": "s-1"})
        assert missing.status_code == 404


class TestBlockingRoutes:
    @pytest.mark.asyncio
    async def test_ingestion_runs_in_worker_thread(self, client, ctx, monkeypatch):
        loop_thread = threading.get_ident()
        ingest_batch = ctx.knowledge.ingest_batch
        threads = []

        def spy(tenant_id, files):
            threads.append(threading.get_ident())
            return ingest_batch(tenant_id, files)

        monkeypatch.setattr(ctx.knowledge, "ingest_batch", spy)

        resp = await client.post("/v1/documents/upload", data={"tenant_id": "1"}, files=_files(("a.txt", b"alpha")))

        assert resp.json()["successful"] == 1
        assert threads and threads[0] != loop_thread
