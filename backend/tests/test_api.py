"""
Integration tests for the HTTP surface.
"""

import logging

import pytest
from fastapi.testclient import TestClient

from config import Settings
from main import create_app


@pytest.mark.integration
class TestAuthEndpoints:
    def test_register_returns_token_and_public_user(self, client: TestClient):
        response = client.post(
            "/api/auth/register", json={"username": "alice", "password": "pw1234"}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["token"]
        assert body["user"]["username"] == "alice"
        assert set(body["user"]) == {"id", "username"}

    def test_register_duplicate_is_409(self, client: TestClient, register):
        register("alice")

        response = client.post(
            "/api/auth/register", json={"username": "alice", "password": "other"}
        )

        assert response.status_code == 409
        assert response.json() == {"error": "username taken"}

    @pytest.mark.parametrize(
        "payload", [{}, {"username": "alice"}, {"password": "pw"}, {"username": "", "password": "pw"}]
    )
    def test_register_missing_fields_is_400(self, client: TestClient, payload):
        response = client.post("/api/auth/register", json=payload)

        assert response.status_code == 400
        assert response.json() == {"error": "username and password required"}

    def test_register_unencodable_username_is_400(self, client: TestClient, test_settings):
        response = client.post(
            "/api/auth/register",
            content='{"username": "a\\ud800", "password": "pw"}',
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert [p.name for p in test_settings.data_dir.iterdir()] == ["db.json"]

    def test_register_nul_byte_password_is_400(self, client: TestClient):
        response = client.post(
            "/api/auth/register", json={"username": "alice", "password": "pw\u0000x"}
        )

        assert response.status_code == 400
        assert response.json() == {"error": "invalid password"}

    def test_register_malformed_body_is_400(self, client: TestClient):
        response = client.post(
            "/api/auth/register",
            content="{nope",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert "error" in response.json()

    def test_login(self, client: TestClient, register):
        register("alice", "pw1234")

        ok = client.post("/api/auth/login", json={"username": "alice", "password": "pw1234"})
        bad = client.post("/api/auth/login", json={"username": "alice", "password": "nope"})
        unknown = client.post("/api/auth/login", json={"username": "bob", "password": "pw1234"})

        assert ok.status_code == 200
        assert ok.json()["user"]["username"] == "alice"
        assert bad.status_code == 401
        assert bad.json() == {"error": "invalid credentials"}
        assert unknown.json() == bad.json()

    def test_login_token_works(self, client: TestClient, register):
        register("alice", "pw1234")
        token = client.post(
            "/api/auth/login", json={"username": "alice", "password": "pw1234"}
        ).json()["token"]

        response = client.get("/api/tasks", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 200


@pytest.mark.integration
class TestTaskAuth:
    def test_missing_token(self, client: TestClient):
        response = client.get("/api/tasks")

        assert response.status_code == 401
        assert response.json() == {"error": "Missing token"}
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_wrong_scheme(self, client: TestClient, register):
        token = register()["Authorization"].split(" ", 1)[1]

        response = client.get("/api/tasks", headers={"Authorization": f"Token {token}"})

        assert response.status_code == 401
        assert response.json() == {"error": "Missing token"}

    def test_invalid_token(self, client: TestClient):
        response = client.get("/api/tasks", headers={"Authorization": "Bearer abc.def.ghi"})

        assert response.status_code == 401
        assert response.json() == {"error": "Invalid token"}

    def test_token_for_vanished_user(self, client: TestClient, register):
        headers = register()
        store = client.app.state.store
        with store.transaction() as doc:
            doc.users.clear()

        response = client.get("/api/tasks", headers=headers)

        assert response.status_code == 401
        assert response.json() == {"error": "Invalid token (user not found)"}

    def test_every_task_route_requires_auth(self, client: TestClient):
        assert client.post("/api/tasks", data={"title": "x"}).status_code == 401
        assert client.put("/api/tasks/abc", json={"title": "x"}).status_code == 401
        assert client.delete("/api/tasks/abc").status_code == 401


@pytest.mark.integration
class TestTaskEndpoints:
    def test_end_to_end_lifecycle(self, client: TestClient, register):
        headers = register("alice", "pw1234")

        created = client.post("/api/tasks", data={"title": "buy milk"}, headers=headers)
        assert created.status_code == 201
        task = created.json()
        assert task["title"] == "buy milk"
        assert task["description"] == ""
        assert task["attachment"] is None
        assert "updatedAt" not in task

        listed = client.get("/api/tasks", headers=headers).json()
        assert len(listed) == 1
        assert listed[0]["title"] == "buy milk"
        assert listed[0]["attachment"] is None

        deleted = client.delete(f"/api/tasks/{task['id']}", headers=headers)
        assert deleted.status_code == 200
        assert deleted.json() == {"ok": True, "deleted": task}

        assert client.get("/api/tasks", headers=headers).json() == []

    def test_create_from_json_body(self, client: TestClient, register):
        headers = register()

        response = client.post(
            "/api/tasks", json={"title": "buy milk", "description": "2l"}, headers=headers
        )

        assert response.status_code == 201
        assert (response.json()["title"], response.json()["description"]) == ("buy milk", "2l")
        assert client.get("/api/tasks", headers=headers).json()[0]["title"] == "buy milk"

    def test_create_with_empty_body(self, client: TestClient, register):
        headers = register()

        response = client.post("/api/tasks", headers=headers)

        assert response.status_code == 201
        assert (response.json()["title"], response.json()["description"]) == ("", "")

    @pytest.mark.parametrize(
        "content,content_type",
        [
            ('{"title": 5}', "application/json"),
            ("[1, 2]", "application/json"),
            ("{broken", "application/json"),
            ("buy milk", "text/plain"),
        ],
    )
    def test_create_rejects_unusable_bodies(
        self, client: TestClient, register, content, content_type
    ):
        headers = register()
        headers["Content-Type"] = content_type

        response = client.post("/api/tasks", content=content, headers=headers)

        assert response.status_code == 400
        assert "error" in response.json()
        assert client.get("/api/tasks", headers=headers).json() == []

    def test_unencodable_title_is_400(self, client: TestClient, register):
        headers = register()
        headers["Content-Type"] = "application/json"

        response = client.post(
            "/api/tasks", content='{"title": "bad \\ud800"}', headers=headers
        )

        assert response.status_code == 400
        assert response.json() == {"error": "text contains invalid characters"}

    def test_update_semantics(self, client: TestClient, register):
        headers = register()
        task = client.post(
            "/api/tasks", data={"title": "t", "description": "d"}, headers=headers
        ).json()
        url = f"/api/tasks/{task['id']}"

        only_title = client.put(url, json={"title": "t2"}, headers=headers).json()
        assert (only_title["title"], only_title["description"]) == ("t2", "d")
        assert "updatedAt" in only_title

        cleared = client.put(url, json={"description": ""}, headers=headers).json()
        assert (cleared["title"], cleared["description"]) == ("t2", "")

        nulls = client.put(url, json={"title": None}, headers=headers).json()
        assert nulls["title"] == "t2"

        no_op = client.put(url, json={}, headers=headers)
        assert no_op.status_code == 200
        assert no_op.json()["title"] == "t2"

        no_body = client.put(url, headers=headers)
        assert no_body.status_code == 200

    def test_foreign_task_is_404(self, client: TestClient, register):
        alice = register("alice")
        bob = register("bob")
        task = client.post("/api/tasks", data={"title": "alice's"}, headers=alice).json()
        url = f"/api/tasks/{task['id']}"

        put = client.put(url, json={"title": "bob was here"}, headers=bob)
        delete = client.delete(url, headers=bob)
        missing = client.delete("/api/tasks/does-not-exist", headers=bob)

        assert put.status_code == delete.status_code == missing.status_code == 404
        assert put.json() == delete.json() == missing.json() == {"error": "not found"}
        assert client.get("/api/tasks", headers=bob).json() == []
        assert client.get("/api/tasks", headers=alice).json()[0]["title"] == "alice's"

    def test_upload_attachment_is_served(self, client: TestClient, register):
        headers = register()

        response = client.post(
            "/api/tasks",
            data={"title": "with file", "description": "see attached"},
            files={"attachment": ("../../notes.txt", b"hello", "text/plain")},
            headers=headers,
        )

        assert response.status_code == 201
        task = response.json()
        assert task["attachment"].startswith(f"/uploads/{task['userId']}/")
        assert task["attachment"].endswith("_notes.txt")
        assert task["attachmentName"].endswith("notes.txt")
        assert ".." not in task["attachment"]

        served = client.get(task["attachment"])
        assert served.status_code == 200
        assert served.content == b"hello"

    def test_oversized_upload_is_400(self, client: TestClient, register):
        headers = register()
        payload = b"x" * (1024 * 1024 + 1)

        response = client.post(
            "/api/tasks",
            data={"title": "big"},
            files={"attachment": ("big.bin", payload, "application/octet-stream")},
            headers=headers,
        )

        assert response.status_code == 400
        assert response.json() == {"error": "attachment too large"}
        assert client.get("/api/tasks", headers=headers).json() == []


@pytest.mark.integration
class TestAppBehaviour:
    def test_health(self, client: TestClient):
        response = client.get("/api/health")

        assert response.status_code == 200
        assert response.json() == {"ok": True, "env": "test"}

    def test_unknown_api_route(self, client: TestClient):
        response = client.get("/api/nope")

        assert response.status_code == 404
        assert "error" in response.json()

    def test_startup_creates_storage(self, test_settings: Settings):
        create_app(test_settings)

        assert test_settings.db_file.exists()
        assert test_settings.uploads_dir.is_dir()

    def test_corrupt_document_is_generic_500(self, client: TestClient, register, test_settings):
        headers = register()
        test_settings.db_file.write_text("garbage")

        response = client.get("/api/tasks", headers=headers)

        assert response.status_code == 500
        assert response.json() == {"error": "Storage error"}

    def test_unexpected_error_is_generic_500(
        self, test_settings: Settings, monkeypatch, caplog
    ):
        app = create_app(test_settings)
        client = TestClient(app, raise_server_exceptions=False)
        token = client.post(
            "/api/auth/register", json={"username": "alice", "password": "pw"}
        ).json()["token"]

        def explode(user_id):
            raise RuntimeError("secret internals")

        monkeypatch.setattr(app.state.tasks, "list_tasks", explode)

        with caplog.at_level(logging.ERROR):
            response = client.get("/api/tasks", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 500
        assert response.json() == {"error": "Server error"}
        # The server logs the re-raised exception; the handler adds no second entry
        assert [r for r in caplog.records if r.name == "errors"] == []

    def test_security_headers(self, client: TestClient):
        for response in (client.get("/api/health"), client.get("/api/tasks")):
            assert response.headers["X-Content-Type-Options"] == "nosniff"
            assert response.headers["X-Frame-Options"] == "SAMEORIGIN"
            assert response.headers["Referrer-Policy"] == "no-referrer"

    def test_client_routes_fall_back_to_index(self, test_settings: Settings):
        test_settings.public_dir.mkdir(parents=True)
        (test_settings.public_dir / "index.html").write_text("<h1>tasks</h1>")
        client = TestClient(create_app(test_settings))

        response = client.get("/tasks/some/client/route")

        assert response.status_code == 200
        assert "<h1>tasks</h1>" in response.text

    def test_unknown_api_route_does_not_fall_back(self, test_settings: Settings):
        test_settings.public_dir.mkdir(parents=True)
        (test_settings.public_dir / "index.html").write_text("<h1>tasks</h1>")
        client = TestClient(create_app(test_settings))

        response = client.get("/api/nope")

        assert response.status_code == 404
        assert "error" in response.json()

    def test_missing_index_is_404(self, client: TestClient):
        response = client.get("/anything")

        assert response.status_code == 404
        assert response.json() == {"error": "404 - Not Found (no index.html)"}

    def test_public_index_is_served(self, test_settings: Settings):
        test_settings.public_dir.mkdir(parents=True)
        (test_settings.public_dir / "index.html").write_text("<h1>tasks</h1>")
        client = TestClient(create_app(test_settings))

        response = client.get("/")

        assert response.status_code == 200
        assert "<h1>tasks</h1>" in response.text
