import asyncio

import httpx
import pytest

from src.client.api import DashboardAPI, DashboardAPIError
from src.client.controller import WELCOME_TEXT, DashboardController


class FakeAPI:
    """In-memory stand-in for DashboardAPI."""

    def __init__(self, token="tok"):
        self.token = token
        self.agent = {"id": 1, "name": "Alice", "status": "online"}
        self.sessions = [
            {"session_id": "S1", "status": "waiting", "agent_id": None},
            {"session_id": "S2", "status": "active", "agent_id": 1},
        ]
        self.messages = {"S1": [], "S2": []}
        self.calls = []
        self.fail = set()
        self._next_id = 100

    def _check(self, name):
        self.calls.append(name)
        if name in self.fail:
            raise DashboardAPIError(f"{name} failed")

    async def me(self):
        self._check("me")
        return self.agent

    async def list_sessions(self, status=None, limit=50, offset=0):
        self._check("list_sessions")
        return [dict(s) for s in self.sessions]

    async def list_websites(self):
        self._check("list_websites")
        return []

    async def list_agents(self):
        self._check("list_agents")
        return [self.agent]

    async def get_messages(self, session_id):
        self._check("get_messages")
        return list(self.messages[session_id])

    async def assign(self, session_id, agent_id):
        self._check("assign")
        for s in self.sessions:
            if s["session_id"] == session_id:
                s.update(status="active", agent_id=agent_id)
                return dict(s)

    async def send_message(self, session_id, content):
        self._check("send_message")
        self._next_id += 1
        msg = {"id": self._next_id, "session_id": session_id, "content": content,
               "sender_type": "agent", "created_at": f"2026-01-01T10:00:{self._next_id - 100:02d}+00:00"}
        self.messages[session_id].append(msg)
        return msg

    async def close(self, session_id):
        self._check("close")
        return {"session_id": session_id, "status": "closed"}

    async def delete(self, session_id):
        self._check("delete")


class FakeBus:
    def __init__(self):
        self.handlers = {}
        self.joined = []
        self.left = []
        self.typing_frames = []
        self.starts = 0
        self.started = False

    def on(self, event, handler):
        self.handlers.setdefault(event, []).append(handler)

    async def start(self):
        self.starts += 1
        self.started = True

    async def stop(self):
        self.started = False

    async def agent_join(self, agent_id):
        self.joined.append(("agent", agent_id))

    async def join_chat(self, session_id):
        self.joined.append(("chat", session_id))

    async def leave_chat(self, session_id):
        self.left.append(session_id)

    async def typing(self, session_id, user_id, is_typing):
        self.typing_frames.append((session_id, user_id, is_typing))

    async def fire(self, event, data):
        for h in self.handlers.get(event, []):
            await h(data)


@pytest.mark.asyncio
async def test_load_without_token_requires_login():
    api = FakeAPI(token=None)
    ctrl = DashboardController(api)
    assert await ctrl.load() is False
    assert api.calls == []


@pytest.mark.asyncio
async def test_load_fetches_directory_and_opens_bus():
    api, bus = FakeAPI(), FakeBus()
    ctrl = DashboardController(api, bus=bus)
    assert await ctrl.load() is True
    assert api.calls[0] == "me"
    assert set(api.calls[1:]) == {"list_sessions", "list_websites", "list_agents"}
    assert len(ctrl.sessions) == 2
    assert bus.started
    assert ("agent", 1) in bus.joined
    await ctrl.shutdown()


@pytest.mark.asyncio
async def test_load_with_bad_token_clears_it():
    api = FakeAPI()
    api.fail.add("me")
    errors = []
    ctrl = DashboardController(api, on_error=errors.append)
    assert await ctrl.load() is False
    assert api.token is None
    assert errors == ["me failed"]


@pytest.mark.asyncio
async def test_selecting_waiting_session_assigns_and_welcomes():
    api, bus = FakeAPI(), FakeBus()
    ctrl = DashboardController(api, bus=bus, poll_interval=60)
    await ctrl.load()

    await ctrl.select_session("S1")

    assert "assign" in api.calls
    assert api.messages["S1"][0]["content"] == WELCOME_TEXT.format(name="Alice")
    assert ctrl.current_session["status"] == "active"
    assert ("chat", "S1") in bus.joined
    assert [m["content"] for m in ctrl.store.messages()] == ["You are now connected with Alice! How can I help you?"]
    await ctrl.shutdown()


@pytest.mark.asyncio
async def test_selecting_active_session_does_not_assign():
    api = FakeAPI()
    ctrl = DashboardController(api, poll_interval=60)
    await ctrl.load()
    await ctrl.select_session("S2")
    assert "assign" not in api.calls
    await ctrl.shutdown()


@pytest.mark.asyncio
async def test_assign_failure_is_reported_not_raised():
    api = FakeAPI()
    api.fail.add("assign")
    errors = []
    ctrl = DashboardController(api, poll_interval=60, on_error=errors.append)
    await ctrl.load()
    await ctrl.select_session("S1")
    assert errors == ["assign failed"]
    assert api.messages["S1"] == []
    assert ctrl.current_session["status"] == "waiting"
    await ctrl.shutdown()


@pytest.mark.asyncio
async def test_push_and_poll_reconcile_without_duplicates():
    api, bus = FakeAPI(), FakeBus()
    ctrl = DashboardController(api, bus=bus, poll_interval=0.01)
    await ctrl.load()
    await ctrl.select_session("S2")

    incoming = {"id": 7, "session_id": "S2", "content": "hi", "sender_type": "customer",
                "created_at": "2026-01-01T09:00:00+00:00"}
    api.messages["S2"].append(incoming)
    await bus.fire("new-message", {"session_id": "S2", "message": incoming})
    await asyncio.sleep(0.05)

    assert [m["id"] for m in ctrl.store.messages()] == [7]
    await ctrl.shutdown()


@pytest.mark.asyncio
async def test_events_trigger_session_refetch():
    api, bus = FakeAPI(), FakeBus()
    ctrl = DashboardController(api, bus=bus)
    await ctrl.load()
    before = api.calls.count("list_sessions")

    api.sessions.append({"session_id": "S3", "status": "waiting", "agent_id": None})
    await bus.fire("new-chat-available", {"session_id": "S3"})
    await bus.fire("chat-status-changed", {"session_id": "S2", "status": "closed"})

    assert api.calls.count("list_sessions") == before + 2
    assert [s["session_id"] for s in ctrl.sessions] == ["S1", "S2", "S3"]
    await ctrl.shutdown()


@pytest.mark.asyncio
async def test_customer_message_alerts():
    api, bus = FakeAPI(), FakeBus()
    ctrl = DashboardController(api, bus=bus)
    await ctrl.load()
    await bus.fire("new-customer-message", {"session_id": "S1", "message": "hello?"})
    assert list(ctrl.alerts) == [{"session_id": "S1", "message": "hello?"}]
    await ctrl.shutdown()


@pytest.mark.asyncio
async def test_delete_current_session_clears_selection():
    api = FakeAPI()
    ctrl = DashboardController(api, poll_interval=60)
    await ctrl.load()
    await ctrl.select_session("S2")
    assert await ctrl.delete_session("S2") is True
    assert ctrl.current_session_id is None


@pytest.mark.asyncio
async def test_api_client_surfaces_server_error_message():
    def handler(request):
        return httpx.Response(400, json={"error": "Agent has reached maximum concurrent chats"})

    api = DashboardAPI("http://dash.test", token="t", transport=httpx.MockTransport(handler))
    with pytest.raises(DashboardAPIError) as exc:
        await api.assign("S1", 1)
    assert exc.value.message == "Agent has reached maximum concurrent chats"
    assert exc.value.status == 400
    await api.aclose()


@pytest.mark.asyncio
async def test_api_client_network_error_and_auth_header():
    seen = []

    def handler(request):
        seen.append(request.headers.get("authorization"))
        raise httpx.ConnectError("down", request=request)

    api = DashboardAPI("http://dash.test", token="abc", transport=httpx.MockTransport(handler))
    with pytest.raises(DashboardAPIError) as exc:
        await api.list_sessions()
    assert exc.value.message == "Network error"
    assert seen == ["Bearer abc"]
    await api.aclose()


@pytest.mark.asyncio
async def test_api_client_login_stores_token():
    def handler(request):
        return httpx.Response(200, json={"success": True, "token": "new-token", "agent": {"id": 1}})

    api = DashboardAPI("http://dash.test", transport=httpx.MockTransport(handler))
    agent = await api.login("a@example.com", "pw")
    assert agent == {"id": 1}
    assert api.token == "new-token"
    await api.aclose()


@pytest.mark.asyncio
async def test_reloading_does_not_duplicate_bus_handlers():
    api, bus = FakeAPI(), FakeBus()
    ctrl = DashboardController(api, bus=bus)
    await ctrl.load()
    await ctrl.load()

    assert len(bus.handlers["new-message"]) == 1
    before = api.calls.count("list_sessions")
    await bus.fire("new-chat-available", {"session_id": "S3"})
    assert api.calls.count("list_sessions") == before + 1

    await bus.fire("new-customer-message", {"session_id": "S1", "message": "hi"})
    assert len(ctrl.alerts) == 1
    await ctrl.shutdown()


@pytest.mark.asyncio
async def test_switching_sessions_leaves_previous_room():
    api, bus = FakeAPI(), FakeBus()
    ctrl = DashboardController(api, bus=bus, poll_interval=60)
    await ctrl.load()
    await ctrl.select_session("S2")
    await ctrl.select_session("S1")
    assert bus.left == ["S2"]
    assert ("chat", "S1") in bus.joined
    await ctrl.shutdown()


@pytest.mark.asyncio
async def test_send_clears_typing_indicator():
    api, bus = FakeAPI(), FakeBus()
    ctrl = DashboardController(api, bus=bus, poll_interval=60)
    await ctrl.load()
    await ctrl.select_session("S2")
    await ctrl.typing(True)
    await ctrl.send("one moment")
    assert bus.typing_frames == [("S2", 1, True), ("S2", 1, False)]
    await ctrl.shutdown()


@pytest.mark.asyncio
async def test_alerts_are_capped_and_cleared_when_session_opened():
    from src.client.controller import MAX_ALERTS

    api, bus = FakeAPI(), FakeBus()
    ctrl = DashboardController(api, bus=bus, poll_interval=60)
    await ctrl.load()
    for i in range(MAX_ALERTS + 10):
        await bus.fire("new-customer-message", {"session_id": "S2", "message": f"m{i}"})
    await bus.fire("new-customer-message", {"session_id": "S1", "message": "other"})
    assert len(ctrl.alerts) == MAX_ALERTS

    await ctrl.select_session("S2")
    assert list(ctrl.alerts) == [{"session_id": "S1", "message": "other"}]
    await ctrl.shutdown()


@pytest.mark.asyncio
async def test_api_client_escapes_session_id_in_path():
    seen = []

    def handler(request):
        seen.append(request.url.raw_path)
        return httpx.Response(200, json={"messages": []})

    api = DashboardAPI("http://dash.test", token="t", transport=httpx.MockTransport(handler))
    await api.get_messages("a/b?c#d")
    assert seen == [b"/api/chats/a%2Fb%3Fc%23d/messages"]
    await api.aclose()


@pytest.mark.asyncio
async def test_realtime_client_start_is_idempotent():
    from src.client.bus import RealtimeClient

    runs = []
    release = asyncio.Event()
    client = RealtimeClient("http://dash.test")

    async def fake_loop():
        runs.append(1)
        await release.wait()

    client._run_loop = fake_loop
    await client.start()
    await client.start()
    await asyncio.sleep(0)
    assert runs == [1]

    await client.stop()
    await client.start()
    await asyncio.sleep(0)
    assert runs == [1, 1]
    await client.stop()
