"""
examples/support_agent.py - Simulated support agent

Drives the dashboard controller headless:
1. Logs in and opens the realtime connection
2. Picks up each new waiting chat (selecting it auto-assigns and greets)
3. Answers customer messages with canned replies
4. Closes the chat after N replies

Usage:
    python -m examples.support_agent --email agent@example.com --password secret --replies 2

Pair with examples/widget_customer.py.
"""
import asyncio
import argparse

from src.client.api import DashboardAPI
from src.client.bus import RealtimeClient
from src.client.controller import DashboardController

BASE_URL = "http://127.0.0.1:3000"

REPLIES = [
    "Thanks, let me look into that for you.",
    "I've refunded the duplicate charge; it should appear within 3 days.",
    "Anything else I can help with?",
]


async def main(email: str, password: str, replies: int, base_url: str):
    async with DashboardAPI(base_url) as api:
        bus = RealtimeClient(base_url)
        ctrl = DashboardController(api, bus=bus, on_error=lambda m: print(f"[Agent] error: {m}"))
        if not await ctrl.login(email, password):
            print("[Agent] Login failed"); return
        await ctrl.set_status("online")
        print(f"[Agent] {ctrl.agent['name']} online, waiting for chats…")

        answered: dict[str, int] = {}
        queue: asyncio.Queue = asyncio.Queue()

        async def on_new_chat(data):
            await queue.put(("new", data["session_id"]))

        async def on_customer(data):
            await queue.put(("customer", data["session_id"]))

        bus.on("new-chat-available", on_new_chat)
        bus.on("new-customer-message", on_customer)

        try:
            while True:
                kind, session_id = await queue.get()
                if kind == "new":
                    await ctrl.refresh_sessions()
                    await ctrl.select_session(session_id)
                    print(f"[Agent] Picked up {session_id}")
                    continue
                if session_id != ctrl.current_session_id:
                    continue
                n = answered.get(session_id, 0)
                await ctrl.send(REPLIES[n % len(REPLIES)])
                answered[session_id] = n + 1
                print(f"[Agent] → {REPLIES[n % len(REPLIES)]}")
                if answered[session_id] >= replies:
                    await ctrl.close_current()
                    print(f"[Agent] Closed {session_id}")
        finally:
            await ctrl.logout()


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("--email", required=True)
    parser.add_argument("--password", required=True)
    parser.add_argument("--replies", default=2, type=int)
    parser.add_argument("--base-url", default=BASE_URL, type=str)
    args = parser.parse_args()
    try:
        asyncio.run(main(args.email, args.password, args.replies, args.base_url))
    except KeyboardInterrupt:
        pass
