from __future__ import annotations

"""Terminal client for the chat endpoint.

Posts one user message, folds the event stream into message parts and prints
each part once it reaches a terminal state.
"""

from typing import Any, Dict, Iterable, Iterator, List, Optional, TextIO
import argparse
import json
import sys
import uuid

import httpx

from lyrifind.backend.message_parts import MessageAssembler, TextPart, ToolCallPart, render_part
from lyrifind.mcp.logging_utils import configure_logging, get_logger


DEFAULT_CHAT_URL = "http://localhost:8000/api/chat"
RETRY_HINT = "Something went wrong. Run again with --retry to resend your message once."

logger = get_logger(__name__)


def build_request(lyrics: str) -> Dict[str, Any]:
    return {
        "messages": [
            {
                "id": f"msg_{uuid.uuid4().hex[:16]}",
                "role": "user",
                "parts": [{"type": "text", "text": lyrics}],
            }
        ]
    }


def iter_sse_events(lines: Iterable[str]) -> Iterator[Dict[str, Any]]:
    """Yield decoded ``data:`` frames until the ``[DONE]`` sentinel."""
    for line in lines:
        if not line.startswith("data:"):
            continue
        data = line[len("data:"):].strip()
        if data == "[DONE]":
            return
        if not data:
            continue
        try:
            event = json.loads(data)
        except json.JSONDecodeError:
            logger.warning("chat_cli_bad_frame data=%s", data[:200])
            continue
        if isinstance(event, dict):
            yield event


def run_turn(
    client: httpx.Client,
    url: str,
    lyrics: str,
    out: TextIO,
) -> MessageAssembler:
    """Send one turn and print parts as they settle. Transport failures become turn errors."""
    assembler = MessageAssembler()
    printed: set[int] = set()
    try:
        with client.stream("POST", url, json=build_request(lyrics)) as response:
            if response.status_code >= 400:
                response.read()
                assembler.error = _error_body(response)
                return assembler
            for event in iter_sse_events(response.iter_lines()):
                assembler.apply(event)
                _flush(assembler, printed, out, final=False)
    except httpx.HTTPError as exc:
        logger.error("chat_cli_request_failed url=%s error=%s", url, exc)
        assembler.error = f"Could not reach the chat service: {exc}"
    _flush(assembler, printed, out, final=True)
    return assembler


def _error_body(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return f"HTTP {response.status_code}"
    if isinstance(body, dict) and body.get("error"):
        return f"HTTP {response.status_code}: {body['error']}"
    return f"HTTP {response.status_code}"


def _flush(assembler: MessageAssembler, printed: set[int], out: TextIO, *, final: bool) -> None:
    # Text can keep growing until the next part starts, so only settled parts print early.
    for index, part in enumerate(assembler.parts):
        if index in printed:
            continue
        is_last = index == len(assembler.parts) - 1
        if isinstance(part, TextPart):
            if is_last and not final:
                continue
            if not part.text.strip():
                printed.add(index)
                continue
        elif isinstance(part, ToolCallPart) and not part.state.is_terminal and not final:
            continue
        print(render_part(part), file=out)
        printed.add(index)


def main(argv: Optional[List[str]] = None, out: TextIO = sys.stdout) -> int:
    parser = argparse.ArgumentParser(description="Identify a song from a lyric snippet.")
    parser.add_argument("lyrics", help="Lyric snippet to search for.")
    parser.add_argument("--url", default=DEFAULT_CHAT_URL, help="Chat endpoint URL.")
    parser.add_argument(
        "--retry",
        action="store_true",
        help="Resend the message once if the turn fails.",
    )
    parser.add_argument("--timeout", type=float, default=60.0, help="Request timeout in seconds.")
    args = parser.parse_args(argv)
    configure_logging()

    attempts = 2 if args.retry else 1
    with httpx.Client(timeout=args.timeout) as client:
        for attempt in range(1, attempts + 1):
            assembler = run_turn(client, args.url, args.lyrics, out)
            if assembler.error is None:
                return 0
            print(f"Error: {assembler.error}", file=out)
            if attempt < attempts:
                print("Retrying...", file=out)
    if not args.retry:
        print(RETRY_HINT, file=out)
    return 1


if __name__ == "__main__":
    sys.exit(main())
