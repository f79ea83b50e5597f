import argparse
import asyncio
import getpass
import json

import uvicorn

from src.config import DEFAULT_MAX_CONCURRENT_CHATS, HOST, PORT


def _serve(args: argparse.Namespace) -> None:
    uvicorn.run(
        "src.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level="info",
        timeout_graceful_shutdown=3,
    )


async def _create_agent(args: argparse.Namespace) -> None:
    from src.auth import hash_password
    from src.db import crud
    from src.db.database import close_db, get_db

    password = args.password or getpass.getpass("Password: ")
    db = await get_db()
    try:
        agent = await crud.agent_create(db, args.name, args.email, hash_password(password), args.max_chats)
        print(f"Created agent {agent.id}: {agent.name} <{agent.email}>")
    finally:
        await close_db()


async def _add_website(args: argparse.Namespace) -> None:
    from src.db import crud
    from src.db.database import close_db, get_db
    from src.errors import ValidationError
    from src.notify import clean_domain

    try:
        domain = clean_domain(args.domain)
    except ValidationError as e:
        raise SystemExit(e.message)

    db = await get_db()
    try:
        website = await crud.website_create(db, args.name, domain, args.contact_email)
        print(f"Registered website {website.id}: {website.domain}  api_key={website.api_key}")
    finally:
        await close_db()


def _config(args: argparse.Namespace) -> None:
    from src.config import get_config_dict, save_config_dict

    if not args.set:
        print(json.dumps(get_config_dict(), indent=2))
        return
    updates = {}
    for item in args.set:
        key, sep, value = item.partition("=")
        if not sep or key.upper() not in get_config_dict():
            raise SystemExit(f"Unknown setting: {item!r}")
        updates[key.upper()] = value
    save_config_dict(updates)
    print(f"Saved {', '.join(sorted(updates))}; restart the server to apply")


def main() -> None:
    parser = argparse.ArgumentParser(description="Central Chat Dashboard server and admin commands")
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Run the HTTP/WebSocket server (default)")
    serve.add_argument("--host", default=HOST, help="Bind host")
    serve.add_argument("--port", type=int, default=PORT, help="Bind port")
    serve.add_argument(
        "--reload",
        action="store_true",
        help="Enable auto-reload for development",
    )

    agent = sub.add_parser("create-agent", help="Create an agent account")
    agent.add_argument("--name", required=True)
    agent.add_argument("--email", required=True)
    agent.add_argument("--password", help="Prompted for when omitted")
    agent.add_argument("--max-chats", type=int, default=DEFAULT_MAX_CONCURRENT_CHATS)

    site = sub.add_parser("add-website", help="Register a website that hosts the widget")
    site.add_argument("--name", required=True)
    site.add_argument("--domain", required=True)
    site.add_argument("--contact-email")

    cfg = sub.add_parser("config", help="Show or persist settings in data/config.json")
    cfg.add_argument("--set", action="append", metavar="KEY=VALUE", help="Setting to persist (repeatable)")

    args = parser.parse_args()

    if args.command == "create-agent":
        asyncio.run(_create_agent(args))
    elif args.command == "add-website":
        asyncio.run(_add_website(args))
    elif args.command == "config":
        _config(args)
    else:
        if args.command is None:
            args = parser.parse_args(["serve"])
        _serve(args)


if __name__ == "__main__":
    main()
