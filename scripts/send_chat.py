#!/usr/bin/env python3
"""
Dev helper: send a chat turn to a running MCE Chat Relay.

Posts one user message to the /chat endpoint and prints the reply. With
--stream the server-sent events are printed as they arrive: text fragments
inline, then the mceResult (or error) event.

Usage
-----
# Basic: non-streaming, against localhost:8000
python scripts/send_chat.py --message "Create an email announcing our spring sale"

# Stream the reply
python scripts/send_chat.py --stream --message "Ideas for a welcome series?"

# Relay with access control enabled
python scripts/send_chat.py --api-key "$CHAT_API_KEY" --message "hi"
python scripts/send_chat.py --token "<session token>" --message "hi"

# Show the request body without sending it
python scripts/send_chat.py --dry-run --message "hi"

Environment / .env
------------------
CHAT_API_KEY   Used for the X-API-Key header when --api-key is not given.
"""

import argparse
import json
import os
import sys
import textwrap
from pathlib import Path

import httpx
from dotenv import load_dotenv


def _build_headers(api_key: str | None, token: str | None) -> dict:
    headers = {"Content-Type": "application/json"}
    if api_key:
        headers["X-API-Key"] = api_key
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


def _print_response(response: httpx.Response) -> None:
    status = response.status_code
    symbol = "OK" if status == 200 else "FAIL"
    print(f"\n[{symbol}] HTTP {status}")
    try:
        print(json.dumps(response.json(), indent=2))
    except ValueError:
        print(response.text)


def _print_stream(client: httpx.Client, endpoint: str, body: dict, headers: dict) -> int:
    with client.stream("POST", endpoint, json=body, headers=headers) as response:
        if response.status_code != 200:
            response.read()
            _print_response(response)
            return 1

        for line in response.iter_lines():
            if not line.startswith("data: "):
                continue
            data = line[len("data: "):]
            if data == "[DONE]":
                print("\n[DONE]")
                break
            event = json.loads(data)
            if "text" in event:
                print(event["text"], end="", flush=True)
            elif "model" in event:
                print(f"[model: {event['model']}]\n")
            else:
                print("\n\n" + json.dumps(event, indent=2))
    return 0


def main() -> int:
    project_root = Path(__file__).resolve().parent.parent
    load_dotenv(project_root / ".env")
    load_dotenv(project_root / "backend" / ".env")

    parser = argparse.ArgumentParser(
        prog="send_chat.py",
        description=textwrap.dedent("""\
            Send a chat message to the MCE Chat Relay and print the reply.
        """),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            Examples:
              python scripts/send_chat.py --message "hi"
              python scripts/send_chat.py --stream --message "Create a welcome email"
              python scripts/send_chat.py --url http://localhost:8001 --message "hi"
        """),
    )
    parser.add_argument(
        "--url",
        default="http://localhost:8000",
        help="Relay base URL (default: http://localhost:8000)",
    )
    parser.add_argument(
        "--message",
        required=True,
        help="User message to send",
    )
    parser.add_argument(
        "--stream",
        action="store_true",
        help="Request a text/event-stream response",
    )
    parser.add_argument(
        "--api-key",
        default=None,
        metavar="KEY",
        help="Shared secret for X-API-Key. Defaults to CHAT_API_KEY env var.",
    )
    parser.add_argument(
        "--token",
        default=None,
        metavar="TOKEN",
        help="Session token from POST /api/auth/login",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=120.0,
        help="Request timeout in seconds (default: 120)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the request body without sending it.",
    )

    args = parser.parse_args()

    body = {
        "messages": [{"role": "user", "content": args.message}],
        "stream": args.stream,
    }
    endpoint = f"{args.url.rstrip('/')}/chat"
    headers = _build_headers(args.api_key or os.getenv("CHAT_API_KEY"), args.token)

    print(f"Endpoint : {endpoint}")
    print(f"Streaming: {args.stream}")

    if args.dry_run:
        print("\n[DRY RUN] Body:")
        print(json.dumps(body, indent=2))
        return 0

    try:
        with httpx.Client(timeout=args.timeout) as client:
            if args.stream:
                return _print_stream(client, endpoint, body, headers)
            response = client.post(endpoint, json=body, headers=headers)
    except httpx.HTTPError as exc:
        print(f"ERROR: request failed: {exc}", file=sys.stderr)
        return 1

    _print_response(response)
    return 0 if response.status_code == 200 else 1


if __name__ == "__main__":
    sys.exit(main())
