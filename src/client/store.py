"""
Local mirror of the open session's messages.

Pushes, polls and optimistic local echoes all merge through ``merge`` so the
list never shows a message twice: server copies are keyed by id, and an
id-less echo is replaced once the server copy with the same content and
sender arrives.
"""
from typing import Iterable, Optional


def _dedupe_key(m: dict) -> tuple:
    return (m.get("content"), m.get("sender_type"), m.get("created_at"))


class MessageStore:
    def __init__(self, session_id: Optional[str] = None):
        self.session_id = session_id
        self._by_id: dict[int, dict] = {}
        self._pending: list[dict] = []

    def reset(self, session_id: Optional[str]) -> None:
        self.session_id = session_id
        self._by_id.clear()
        self._pending.clear()

    def __len__(self) -> int:
        return len(self._by_id) + len(self._pending)

    def add_local(self, content: str, sender_type: str = "agent", created_at: Optional[str] = None) -> dict:
        """Optimistic echo of a message the user just sent."""
        echo = {"id": None, "content": content, "sender_type": sender_type,
                "created_at": created_at, "pending": True}
        self._pending.append(echo)
        return echo

    def merge(self, messages: Iterable[dict]) -> int:
        """Merge server messages; returns how many were new."""
        added = 0
        for m in messages:
            if m.get("session_id") not in (None, self.session_id):
                continue
            mid = m.get("id")
            if mid is None:
                if not any(_dedupe_key(p) == _dedupe_key(m) for p in self._pending):
                    self._pending.append(dict(m))
                    added += 1
                continue
            if mid not in self._by_id:
                added += 1
            self._by_id[mid] = m
            self._drop_echo(m)
        return added

    def _drop_echo(self, m: dict) -> None:
        for i, p in enumerate(self._pending):
            same = p.get("content") == m.get("content") and p.get("sender_type") == m.get("sender_type")
            if same and (p.get("created_at") in (None, m.get("created_at"))):
                del self._pending[i]
                return

    def messages(self) -> list[dict]:
        """Confirmed messages in server order (created_at, id), then pending echoes."""
        confirmed = sorted(self._by_id.values(), key=lambda m: (m.get("created_at") or "", m["id"]))
        return confirmed + list(self._pending)
