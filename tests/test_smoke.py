from conftest import login


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True

    r = client.get("/healthz")
    assert r.status_code == 200


def test_api_requires_login_and_answers_json(client):
    r = client.get("/api/applications")
    assert r.status_code == 401
    assert r.json["error"] == "unauthenticated"

    r = client.get("/api/does-not-exist")
    assert r.status_code == 404
    assert r.json["error"] == "not_found"


def test_login_me_logout(client):
    r = client.post("/auth/login", json={"email": "inspector@example.com", "password": "wrong"})
    assert r.status_code == 401

    login(client, "inspector@example.com")
    r = client.get("/auth/me")
    assert r.status_code == 200
    assert r.json["user"]["email"] == "inspector@example.com"
    assert r.json["user"]["roles"] == ["inspector"]

    r = client.post("/auth/logout")
    assert r.status_code == 200
    assert client.get("/auth/me").status_code == 401


def test_missing_permission_is_403(client):
    login(client, "inspector@example.com")
    r = client.post("/api/applications", json={"applicationType": "New"})
    assert r.status_code == 403
    assert r.json["error"] == "unauthorized"
