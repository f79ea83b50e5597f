"""
HTTP tests for auth, agents, websites, surveys and offline messages.
"""


def _login(client, email, password="secret"):
    return client.post("/api/auth/login", json={"email": email, "password": password})


def test_login_errors(client, auth_headers):
    assert _login(client, "alice@example.com", "wrong").status_code == 401
    assert _login(client, "nobody@example.com").json() == {"error": "Invalid credentials"}
    r = client.post("/api/auth/login", json={"email": "alice@example.com"})
    assert r.status_code == 400


def test_register_duplicate_email(client, auth_headers):
    r = client.post("/api/auth/register", json={"name": "A2", "email": "alice@example.com", "password": "x"})
    assert r.status_code == 400
    assert r.json()["error"] == "Agent with this email already exists"


def test_verify_me_and_logout(client, auth_headers):
    me = client.get("/api/auth/me", headers=auth_headers).json()["agent"]
    assert me["email"] == "alice@example.com"
    assert me["status"] == "online"
    assert "password_hash" not in me

    assert client.get("/api/auth/verify", headers=auth_headers).json()["valid"] is True

    assert client.post("/api/auth/logout", headers=auth_headers).status_code == 200
    assert client.get("/api/auth/me", headers=auth_headers).status_code == 403
    # A revoked token still logs out cleanly
    assert client.post("/api/auth/logout", headers=auth_headers).json()["success"] is True


def test_agent_admin(client, auth_headers):
    r = client.post("/api/agents", json={"name": "Bob", "email": "bob@example.com", "password": "pw"},
                    headers=auth_headers)
    assert r.status_code == 201
    bob = r.json()["agent"]
    assert bob["status"] == "offline"
    assert bob["current_chats"] == 0

    agents = client.get("/api/agents", headers=auth_headers).json()["agents"]
    assert {a["email"] for a in agents} == {"alice@example.com", "bob@example.com"}

    r = client.put(f"/api/agents/{bob['id']}", json={"email": "alice@example.com"}, headers=auth_headers)
    assert r.status_code == 400

    r = client.put(f"/api/agents/{bob['id']}/status", json={"status": "online"}, headers=auth_headers)
    assert r.json()["agent"]["status"] == "online"

    r = client.post(f"/api/agents/{bob['id']}/change-password", json={"new_password": "new"},
                    headers=auth_headers)
    assert r.status_code == 200
    assert _login(client, "bob@example.com", "new").status_code == 200

    stats = client.get(f"/api/agents/{bob['id']}/stats", headers=auth_headers).json()["stats"]
    assert stats["total_sessions"] == 0

    assert client.delete(f"/api/agents/{bob['id']}", headers=auth_headers).status_code == 200
    assert client.get(f"/api/agents/{bob['id']}", headers=auth_headers).status_code == 404


def test_agent_status_change_is_broadcast(client, auth_headers):
    me = client.get("/api/auth/me", headers=auth_headers).json()["agent"]
    with client.websocket_connect("/ws") as ws:
        client.put(f"/api/agents/{me['id']}/status", json={"status": "offline"}, headers=auth_headers)
        frame = ws.receive_json()
    assert frame["event"] == "agent-status-changed"
    assert frame["data"]["agent_id"] == me["id"]
    assert frame["data"]["status"] == "offline"


def test_agent_status_validation(client, auth_headers):
    me = client.get("/api/auth/me", headers=auth_headers).json()["agent"]
    r = client.put(f"/api/agents/{me['id']}/status", json={"status": "busy"}, headers=auth_headers)
    assert r.status_code == 400


def test_website_admin(client, auth_headers):
    r = client.post("/api/websites/register", json={"name": "Shop", "domain": "Shop.Example.com"},
                    headers=auth_headers)
    assert r.status_code == 201
    site = r.json()["website"]
    assert site["domain"] == "shop.example.com"
    assert len(site["api_key"]) == 36

    r = client.post("/api/websites/register", json={"name": "Dup", "domain": "shop.example.com"},
                    headers=auth_headers)
    assert r.status_code == 400

    r = client.post(f"/api/websites/{site['id']}/regenerate-key", headers=auth_headers)
    assert r.json()["api_key"] != site["api_key"]

    client.post("/api/chats/start", json={"website_id": site["id"], "session_id": "S1"})
    detail = client.get(f"/api/websites/{site['id']}", headers=auth_headers).json()["website"]
    assert detail["waiting_sessions"] == 1

    r = client.delete(f"/api/websites/{site['id']}", headers=auth_headers)
    assert r.status_code == 400
    assert r.json()["error"] == "Cannot delete website with active or waiting chat sessions"

    r = client.put(f"/api/websites/{site['id']}", json={"status": "inactive"}, headers=auth_headers)
    assert r.json()["website"]["status"] == "inactive"
    r = client.post("/api/chats/start", json={"website_id": site["id"], "session_id": "S2"})
    assert r.status_code == 404


def test_surveys(client, auth_headers):
    site = client.post("/api/websites/register", json={"name": "Shop", "domain": "shop.example.com"},
                       headers=auth_headers).json()["website"]
    client.post("/api/chats/start", json={"website_id": site["id"], "session_id": "S1"})

    r = client.post("/api/surveys/submit", json={"session_id": "S1"})
    assert r.status_code == 400

    r = client.post("/api/surveys/submit", json={"session_id": "S1", "problem_solved": True, "rating": 4})
    assert r.status_code == 201
    survey_id = r.json()["survey"]["id"]

    assert client.get("/api/surveys/list").status_code == 401
    listing = client.get("/api/surveys/list", headers=auth_headers).json()
    assert listing["pagination"]["total"] == 1

    stats = client.get("/api/surveys/stats", headers=auth_headers).json()["stats"]
    assert stats["satisfaction_rate"] == 100.0

    assert client.get(f"/api/surveys/{survey_id}", headers=auth_headers).json()["survey"]["rating"] == 4
    assert client.delete("/api/surveys/clear", headers=auth_headers).json()["deleted"] == 1
    assert client.get(f"/api/surveys/{survey_id}", headers=auth_headers).status_code == 404


def test_offline_messages(client, auth_headers):
    site = client.post("/api/websites/register", json={"name": "Shop", "domain": "shop.example.com"},
                       headers=auth_headers).json()["website"]

    with client.websocket_connect("/ws") as ws:
        r = client.post("/api/chats/offline-messages", json={
            "website_id": site["id"], "message": "Call me", "customer_name": "Dana",
        })
        frame = ws.receive_json()
    assert r.status_code == 201
    assert frame["event"] == "new-offline-message"
    msg_id = r.json()["offline_message"]["id"]

    count = client.get("/api/chats/offline-messages/unread/count", headers=auth_headers).json()["count"]
    assert count == 1

    r = client.post(f"/api/chats/offline-messages/{msg_id}/reply",
                    json={"reply_message": "Calling now"}, headers=auth_headers)
    assert r.status_code == 201
    assert r.json()["offline_message"]["status"] == "replied"

    detail = client.get(f"/api/chats/offline-messages/{msg_id}", headers=auth_headers).json()["offline_message"]
    assert detail["replies"][0]["reply_message"] == "Calling now"

    r = client.put(f"/api/chats/offline-messages/{msg_id}/status", json={"status": "closed"},
                   headers=auth_headers)
    assert r.json()["offline_message"]["status"] == "closed"

    listing = client.get("/api/chats/offline-messages", params={"status": "closed"},
                         headers=auth_headers).json()["offline_messages"]
    assert [m["id"] for m in listing] == [msg_id]

    assert client.get("/api/chats/offline-messages/999", headers=auth_headers).status_code == 404
    r = client.post("/api/chats/offline-messages", json={"website_id": 999, "message": "x"})
    assert r.status_code == 404


def test_website_register_rejects_unparseable_domain(client, auth_headers):
    for domain in ("shop.example.com:abc", "[::1", "shop.example.com/path"):
        r = client.post("/api/websites/register", json={"name": "Bad", "domain": domain}, headers=auth_headers)
        assert r.status_code == 400
        assert r.json()["error"].startswith("Invalid domain")
    assert client.get("/api/websites", headers=auth_headers).json()["websites"] == []
