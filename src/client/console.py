"""
Terminal front-end for the dashboard controller.

Usage:
    python -m src.client.console --email agent@example.com --password secret
    python -m src.client.console --token <token> --open <session_id>

Prints the session list, follows realtime events and, with --open, the
message stream of one session. Lines typed on stdin are sent to the open
session; "/close" closes it and "/quit" exits.
"""
import argparse
import asyncio
import logging
import sys

from src.client.api import DashboardAPI
from src.client.bus import RealtimeClient
from src.client.controller import DashboardController
from src.config import CLIENT_BASE_URL

logger = logging.getLogger(__name__)


def _print_sessions(ctrl: DashboardController) -> None:
    print(f"\n── {len(ctrl.sessions)} sessions ──")
    for s in ctrl.sessions:
        who = s.get("agent_name") or "-"
        print(f"  [{s['status']:<7}] {s['session_id']}  {s.get('customer_name') or 'Unknown'}"
              f"  topic={s.get('topic') or '-'}  agent={who}")


class _Printer:
    def __init__(self):
        self.ctrl = None
        self.shown = 0

    def on_change(self, what: str) -> None:
        if what == "sessions":
            _print_sessions(self.ctrl)
        elif what == "messages":
            msgs = self.ctrl.store.messages()
            confirmed = [m for m in msgs if m.get("id") is not None]
            for m in confirmed[self.shown:]:
                print(f"  {m.get('created_at', '')[:19]}  {m['sender_type']:>8}: {m['content']}")
            self.shown = len(confirmed)
        elif what == "alerts":
            alert = self.ctrl.alerts[-1]
            print(f"\n🔔 New customer message in {alert.get('session_id')}: {alert.get('message')}")

    def on_error(self, message: str) -> None:
        print(f"⚠️  {message}", file=sys.stderr)


async def _read_stdin(ctrl: DashboardController) -> None:
    loop = asyncio.get_running_loop()
    while True:
        line = await loop.run_in_executor(None, sys.stdin.readline)
        if not line:
            return
        line = line.strip()
        if line == "/quit":
            return
        if line == "/close":
            await ctrl.close_current()
        elif line:
            await ctrl.send(line)


async def main(args: argparse.Namespace) -> int:
    printer = _Printer()
    async with DashboardAPI(args.base_url, token=args.token) as api:
        ctrl = DashboardController(
            api,
            bus=RealtimeClient(args.base_url),
            on_error=printer.on_error,
            on_change=printer.on_change,
        )
        printer.ctrl = ctrl

        if ctrl.needs_login:
            if not (args.email and args.password):
                print("Login required: pass --email and --password, or --token")
                return 1
            ok = await ctrl.login(args.email, args.password)
        else:
            ok = await ctrl.load()
        if not ok:
            return 1
        print(f"Logged in as {ctrl.agent['name']} (token: {api.token})")
        if not await ctrl.bus.wait_connected():
            print("Realtime connection not established yet; relying on polling until it is")

        if args.open:
            await ctrl.select_session(args.open)
        try:
            await _read_stdin(ctrl)
        finally:
            await ctrl.shutdown()
    return 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    parser = argparse.ArgumentParser(description="Central Chat Dashboard console")
    parser.add_argument("--base-url", default=CLIENT_BASE_URL)
    parser.add_argument("--email")
    parser.add_argument("--password")
    parser.add_argument("--token")
    parser.add_argument("--open", help="Session id to open (auto-assigns if waiting)")
    sys.exit(asyncio.run(main(parser.parse_args())))
