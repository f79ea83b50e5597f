import pytest

from src.realtime import ConnectionHub, agent_room, chat_room


class FakeSocket:
    def __init__(self, fail=False):
        self.sent = []
        self.accepted = False
        self.fail = fail

    async def accept(self):
        self.accepted = True

    async def send_json(self, data):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(data)

    def events(self):
        return [f["event"] for f in self.sent]


@pytest.mark.asyncio
async def test_publish_reaches_every_connection():
    hub = ConnectionHub()
    a, b = FakeSocket(), FakeSocket()
    await hub.connect(a)
    await hub.connect(b)

    await hub.publish("new-chat-available", {"session_id": "S1"})

    assert a.accepted and b.accepted
    assert a.sent == [{"event": "new-chat-available", "data": {"session_id": "S1"}}]
    assert b.events() == ["new-chat-available"]


@pytest.mark.asyncio
async def test_room_publish_only_reaches_members():
    hub = ConnectionHub()
    a, b = FakeSocket(), FakeSocket()
    ca = await hub.connect(a)
    await hub.connect(b)

    await hub.handle_frame(ca, {"event": "join-chat", "data": "S1"})
    await hub.handle_frame(ca, {"event": "agent-join", "data": 7})
    assert ca.rooms == {chat_room("S1"), agent_room(7)}

    await hub.publish_to_room("chat-S1", "message-received", {"x": 1})
    await hub.publish_to_room("agent-7", "agent-assigned", {"x": 2})
    await hub.publish_to_room("chat-S2", "message-received", {"x": 3})

    assert a.events() == ["message-received", "agent-assigned"]
    assert b.sent == []


@pytest.mark.asyncio
async def test_typing_is_relayed_to_room_except_sender():
    hub = ConnectionHub()
    a, b, c = FakeSocket(), FakeSocket(), FakeSocket()
    ca = await hub.connect(a)
    cb = await hub.connect(b)
    await hub.connect(c)
    for conn in (ca, cb):
        await hub.handle_frame(conn, {"event": "join-chat", "data": "S1"})

    await hub.handle_frame(ca, {"event": "typing-start", "data": {"session_id": "S1", "user_id": 3}})
    await hub.handle_frame(ca, {"event": "typing-stop", "data": {"session_id": "S1", "user_id": 3}})

    assert a.sent == []
    assert c.sent == []
    assert [f["data"]["is_typing"] for f in b.sent] == [True, False]
    assert b.sent[0]["event"] == "user-typing"


@pytest.mark.asyncio
async def test_failed_send_drops_connection():
    hub = ConnectionHub()
    good, bad = FakeSocket(), FakeSocket(fail=True)
    await hub.connect(good)
    await hub.connect(bad)
    assert hub.connection_count == 2

    await hub.publish("chat-status-updated", {"status": "closed"})

    assert hub.connection_count == 1
    assert good.events() == ["chat-status-updated"]


@pytest.mark.asyncio
async def test_disconnected_socket_misses_events():
    hub = ConnectionHub()
    a = FakeSocket()
    conn = await hub.connect(a)
    await hub.disconnect(conn)
    await hub.publish("new-message", {})
    assert a.sent == []


@pytest.mark.asyncio
async def test_ping_and_unknown_events():
    hub = ConnectionHub()
    a = FakeSocket()
    conn = await hub.connect(a)
    await hub.handle_frame(conn, {"event": "ping"})
    await hub.handle_frame(conn, {"event": "bogus"})
    assert a.events() == ["pong", "error"]


@pytest.mark.asyncio
async def test_leave_chat():
    hub = ConnectionHub()
    a = FakeSocket()
    conn = await hub.connect(a)
    await hub.handle_frame(conn, {"event": "join-chat", "data": "S1"})
    await hub.handle_frame(conn, {"event": "leave-chat", "data": "S1"})
    await hub.publish_to_room("chat-S1", "message-received", {})
    assert a.sent == []
