"""WebSocket CLI client for testing the signaling server.

Joins a room with a chosen role and prints every event the server sends.
Typed lines are sent as JSON messages; slash commands cover the control
messages.
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import Any
from urllib.parse import quote, urlencode

import websockets
from websockets.asyncio.client import ClientConnection

logger = logging.getLogger(__name__)

HELP_TEXT = """
Commands:
  /guests            - Request the guest list
  /kick <guestId>    - Evict a guest
  /mute <guestId>    - Force-mute a guest
  /unmute <guestId>  - Force-unmute a guest
  /ready             - Announce program-ready
  /quit              - Exit client
  /help              - Show this help

Any other line must be a JSON object and is sent verbatim.
"""


def build_room_url(
    server_url: str,
    room: str,
    name: str | None = None,
    role: str | None = None,
    password: str | None = None,
) -> str:
    """Build ``<server>/signal/<room>?name=&role=&password=``.

    Empty parameters are omitted so the server applies its defaults.
    """
    params = {
        key: value
        for key, value in (("name", name), ("role", role), ("password", password))
        if value
    }
    url = f"{server_url.rstrip('/')}/signal/{quote(room, safe='')}"
    if params:
        url += "?" + urlencode(params)
    return url


def parse_command(line: str) -> dict[str, Any] | None:
    """Translate an input line into an outbound message.

    Returns:
        Message dict, or None for lines that send nothing

    Raises:
        ValueError: Unknown command, missing argument or invalid JSON
    """
    line = line.strip()
    if not line:
        return None

    if not line.startswith("/"):
        data = json.loads(line)
        if not isinstance(data, dict) or not isinstance(data.get("type"), str):
            raise ValueError("Message must be a JSON object with a 'type' field")
        return data

    command, _, argument = line[1:].partition(" ")
    command = command.lower()
    argument = argument.strip()

    if command == "guests":
        return {"type": "get-guests"}
    if command == "ready":
        return {"type": "program-ready"}
    if command in ("kick", "mute", "unmute"):
        if not argument:
            raise ValueError(f"/{command} requires a guest id")
        if command == "kick":
            return {"type": "kick-guest", "guestId": argument}
        return {"type": "remote-mute", "guestId": argument, "muted": command == "mute"}

    raise ValueError(f"Unknown command: {command}")


def format_event(data: dict[str, Any]) -> str:
    """Render a server event as one line for the terminal."""
    msg_type = data.get("type")

    if msg_type == "guest-joined":
        return f"+ guest joined: {data.get('name')} ({data.get('guestId')})"
    if msg_type == "guest-left":
        name = data.get("name")
        who = f"{name} ({data.get('guestId')})" if name else data.get("guestId")
        return f"- guest left: {who}"
    if msg_type == "guests-list":
        guests = data.get("guests", [])
        if not guests:
            return "guests: (none)"
        return "guests: " + ", ".join(f"{g['name']} ({g['id']})" for g in guests)
    if msg_type == "director-present":
        return f"director present: {data.get('directorId')}"
    if msg_type == "force-mute":
        return f"force-mute: muted={data.get('muted')}"

    sender = data.get("senderName")
    if sender:
        return f"{msg_type} from {sender} ({data.get('senderRole')}, {data.get('senderId')})"
    return str(msg_type)


class CLIClient:
    """WebSocket CLI client for one signaling room."""

    def __init__(self, url: str, verbose: bool = False) -> None:
        """Initialize CLI client.

        Args:
            url: Full room URL (see build_room_url)
            verbose: Print raw JSON for every event
        """
        self.url = url
        self.verbose = verbose
        self.running = True
        self.kicked = False

        level = logging.DEBUG if verbose else logging.INFO
        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(message)s",
            datefmt="%H:%M:%S",
        )

    async def handle_message(self, message_data: str) -> None:
        """Handle incoming message from server."""
        try:
            data = json.loads(message_data)
        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON from server: {e}")
            return

        if not isinstance(data, dict):
            logger.warning(f"Unexpected message from server: {data!r}")
            return

        if data.get("type") == "kicked":
            self.kicked = True
            self.running = False

        print(f"\n< {format_event(data)}")
        if self.verbose:
            print(json.dumps(data, indent=2))

    async def receive_messages(self, websocket: ClientConnection) -> None:
        """Receive and handle messages from server."""
        try:
            async for message in websocket:
                if isinstance(message, bytes):
                    message = message.decode("utf-8")
                await self.handle_message(message)
        except websockets.exceptions.ConnectionClosed:
            logger.info("Connection closed by server")
        finally:
            self.running = False

    async def input_loop(self, websocket: ClientConnection) -> None:
        """Read commands from stdin and send them."""
        print(HELP_TEXT)

        loop = asyncio.get_running_loop()

        while self.running:
            try:
                line = await loop.run_in_executor(None, input, "> ")
            except EOFError:
                self.running = False
                break

            if line.strip() in ("/quit", "/exit"):
                self.running = False
                print("\nGoodbye!")
                break
            if line.strip() == "/help":
                print(HELP_TEXT)
                continue

            try:
                message = parse_command(line)
            except (ValueError, json.JSONDecodeError) as e:
                print(f"! {e}")
                continue

            if message is None:
                continue

            try:
                await websocket.send(json.dumps(message))
            except websockets.exceptions.ConnectionClosed:
                self.running = False
                break

    async def run(self) -> None:
        """Connect and run the input and receive loops until either ends."""
        try:
            async with websockets.connect(self.url) as websocket:
                logger.info(f"Connected to {self.url}")

                loop = asyncio.get_running_loop()
                for sig in (signal.SIGINT, signal.SIGTERM):
                    loop.add_signal_handler(sig, lambda: setattr(self, "running", False))

                try:
                    receiver = asyncio.create_task(self.receive_messages(websocket))
                    reader = asyncio.create_task(self.input_loop(websocket))
                    await asyncio.wait(
                        {receiver, reader}, return_when=asyncio.FIRST_COMPLETED
                    )
                    receiver.cancel()
                finally:
                    for sig in (signal.SIGINT, signal.SIGTERM):
                        loop.remove_signal_handler(sig)

        except websockets.exceptions.InvalidStatus as e:
            status = e.response.status_code
            body = e.response.body.decode("utf-8", errors="replace").strip()
            logger.error(f"Connection refused ({status}): {body}")
            sys.exit(1)
        except OSError as e:
            logger.error(f"Connection failed: {e}")
            sys.exit(1)


def main() -> None:
    """Main entry point for CLI client."""
    parser = argparse.ArgumentParser(description="CLI client for the studio signaling server")
    parser.add_argument(
        "--server",
        type=str,
        default="ws://localhost:8080",
        help="Signaling server URL (default: ws://localhost:8080)",
    )
    parser.add_argument("--room", type=str, required=True, help="Room name")
    parser.add_argument("--name", type=str, default=None, help="Display name")
    parser.add_argument(
        "--role",
        type=str,
        choices=["director", "guest", "program"],
        default="guest",
        help="Connection role (default: guest)",
    )
    parser.add_argument("--password", type=str, default=None, help="Director password")
    parser.add_argument("-v", "--verbose", action="store_true", help="Print raw events")

    args = parser.parse_args()
    url = build_room_url(args.server, args.room, args.name, args.role, args.password)

    try:
        asyncio.run(CLIClient(url, verbose=args.verbose).run())
    except KeyboardInterrupt:
        print("\nExiting...")
        sys.exit(0)


if __name__ == "__main__":
    main()
