"""
examples/widget_customer.py - Simulated website widget

The customer side of a chat, as the embedded widget would drive it:
1. Starts a session on a registered website
2. Waits until an agent is assigned (polls /assignment)
3. Exchanges a few messages, polling for agent replies
4. Submits a satisfaction survey

Usage:
    python -m examples.widget_customer --website-id 1 --topic "Billing question"

Run this AFTER starting the server and registering a website:
    python -m src.cli add-website --name Shop --domain shop.example.com
    python -m src.cli serve
"""
import asyncio
import argparse
import uuid

import httpx

BASE_URL = "http://127.0.0.1:3000"

QUESTIONS = [
    "Hi, I was charged twice for my last order.",
    "The order number is 10423.",
    "Great, thanks for sorting that out!",
]


async def main(website_id: int, topic: str, base_url: str):
    session_id = f"widget-{uuid.uuid4().hex[:12]}"
    async with httpx.AsyncClient(base_url=base_url, timeout=30) as client:

        # 1. Start
        r = await client.post("/api/chats/start", json={
            "website_id": website_id,
            "session_id": session_id,
            "customer_name": "Dana Customer",
            "customer_email": "dana@example.com",
            "topic": topic,
        })
        if r.status_code != 201:
            print(f"[Widget] Start failed: {r.status_code} {r.json().get('error')}"); return
        print(f"[Widget] Session {session_id} started, waiting for an agent…")

        # 2. Wait for assignment
        while True:
            r = await client.get(f"/api/chats/assignment/{session_id}")
            data = r.json()["data"]
            if data["assigned"]:
                print(f"[Widget] Connected with {data['agent_name']}")
                break
            await asyncio.sleep(2)

        # 3. Conversation
        seen = set()
        for question in QUESTIONS:
            await client.post("/api/chats/message", json={
                "session_id": session_id, "message": question, "sender_type": "customer",
            })
            seen_before = len(seen)
            print(f"[Widget] → {question}")
            for _ in range(30):
                r = await client.get("/api/chats/messages", params={"session_id": session_id})
                for m in r.json()["messages"]:
                    if m["id"] in seen:
                        continue
                    seen.add(m["id"])
                    if m["sender_type"] != "customer":
                        print(f"[{m['sender_type']}] ← {m['content']}")
                if len(seen) > seen_before + 1:
                    break
                await asyncio.sleep(2)

        # 4. Survey
        r = await client.post("/api/surveys/submit", json={
            "session_id": session_id, "problem_solved": True, "rating": 5,
            "feedback": "Quick and friendly.",
        })
        print(f"[Widget] Survey submitted: {r.status_code}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("--website-id", default=1, type=int)
    parser.add_argument("--topic", default="Billing question", type=str)
    parser.add_argument("--base-url", default=BASE_URL, type=str)
    args = parser.parse_args()
    asyncio.run(main(args.website_id, args.topic, args.base_url))
