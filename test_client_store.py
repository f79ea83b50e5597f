from src.client.store import MessageStore


def _msg(mid, content, sender="customer", ts="2026-01-01T10:00:00+00:00", session_id="S1"):
    return {"id": mid, "session_id": session_id, "content": content, "sender_type": sender, "created_at": ts}


def test_push_and_poll_do_not_duplicate():
    store = MessageStore("S1")
    pushed = _msg(1, "hello")
    assert store.merge([pushed]) == 1
    # Poll returns the same message plus a new one
    assert store.merge([_msg(1, "hello"), _msg(2, "again", ts="2026-01-01T10:00:01+00:00")]) == 1
    assert [m["id"] for m in store.messages()] == [1, 2]


def test_local_echo_replaced_by_server_copy():
    store = MessageStore("S1")
    store.add_local("on it", sender_type="agent")
    assert len(store) == 1
    store.merge([_msg(5, "on it", sender="agent")])
    msgs = store.messages()
    assert len(msgs) == 1
    assert msgs[0]["id"] == 5


def test_idless_duplicates_collapse_on_content_sender_timestamp():
    store = MessageStore("S1")
    m = {"id": None, "content": "x", "sender_type": "customer", "created_at": "t1"}
    store.merge([m, dict(m)])
    assert len(store) == 1
    store.merge([{**m, "created_at": "t2"}])
    assert len(store) == 2


def test_other_sessions_ignored_and_reset():
    store = MessageStore("S1")
    store.merge([_msg(1, "mine"), _msg(2, "theirs", session_id="S2")])
    assert [m["content"] for m in store.messages()] == ["mine"]
    store.reset("S2")
    assert store.messages() == []
    assert store.session_id == "S2"


def test_messages_sorted_by_created_at_then_id():
    store = MessageStore("S1")
    store.merge([
        _msg(3, "c", ts="2026-01-01T10:00:02+00:00"),
        _msg(1, "a", ts="2026-01-01T10:00:00+00:00"),
        _msg(2, "b", ts="2026-01-01T10:00:00+00:00"),
    ])
    assert [m["content"] for m in store.messages()] == ["a", "b", "c"]
