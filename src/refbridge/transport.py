"""JSON-line framing and the serve loop."""

import asyncio
import json
import sys
from collections.abc import AsyncIterator
from typing import TextIO

from refbridge.dispatcher import Dispatcher
from refbridge.events import now_ms
from refbridge.log import get_logger
from refbridge.session import BridgeSession


def decode_line(line: str | bytes) -> dict[str, object] | None:
    """Decode one inbound line.

    :param line: Raw line, with or without its trailing newline.
    :returns: Request object, or ``None`` when the line is blank or malformed.
    """
    if isinstance(line, bytes) is True:
        try:
            line = line.decode("utf-8")  # type: ignore[union-attr]
        except UnicodeDecodeError:
            get_logger().debug("skipping line that is not UTF-8")
            return None
    text: str = line.strip()  # type: ignore[union-attr]
    if len(text) == 0:
        return None
    try:
        message: object = json.loads(text)
    except ValueError:
        get_logger().debug("skipping malformed line: %.200s", text)
        return None
    if isinstance(message, dict) is False:
        get_logger().debug("skipping non-object line: %.200s", text)
        return None
    return message  # type: ignore[return-value]


class JsonLineWriter:
    """Write timestamped JSON messages, one per line."""

    _stream: TextIO

    def __init__(self, stream: TextIO) -> None:
        """Initialize a writer.

        :param stream: Text stream for outbound messages.
        """
        self._stream = stream

    def send(self, message: dict[str, object]) -> None:
        """Stamp ``ts`` on a message and write it.

        Writes to a closed peer are logged and dropped.

        :param message: Outbound message.
        """
        stamped: dict[str, object] = dict(message)
        stamped["ts"] = now_ms()
        line: str = json.dumps(stamped, separators=(",", ":"))
        get_logger().debug("-> %s", line)
        try:
            self._stream.write(line + "\n")
            self._stream.flush()
        except (BrokenPipeError, OSError, ValueError) as exc:
            get_logger().debug("dropping outbound message: %s", exc)
            return


async def read_stdin_lines() -> AsyncIterator[str]:
    """Yield lines from standard input without blocking the event loop."""
    loop: asyncio.AbstractEventLoop = asyncio.get_running_loop()
    while True:
        line: str = await loop.run_in_executor(None, sys.stdin.readline)
        if len(line) == 0:
            return
        yield line


async def read_stream_lines(reader: asyncio.StreamReader) -> AsyncIterator[bytes]:
    """Yield lines from an asyncio stream until end of input.

    :param reader: Stream reader, for example from a pipe or socket.
    """
    while True:
        line: bytes = await reader.readline()
        if len(line) == 0:
            return
        yield line


async def serve(
    lines: AsyncIterator[str] | AsyncIterator[bytes],
    writer: JsonLineWriter,
    session: BridgeSession | None = None,
) -> BridgeSession:
    """Dispatch every inbound line until the input ends.

    Each request runs as its own task, so a slow call does not hold up the
    requests behind it, and replies can go out in a different order than the
    requests came in. When the input ends, in-flight requests are awaited
    and the session is closed.

    :param lines: Inbound lines.
    :param writer: Outbound message writer.
    :param session: Session to serve, a new one when omitted.
    :returns: The served session, closed.
    """
    active_session: BridgeSession = session if session is not None else BridgeSession(
        writer.send,
        loop=asyncio.get_running_loop(),
    )
    dispatcher: Dispatcher = Dispatcher(active_session)
    pending: set[asyncio.Task[None]] = set()

    async for line in lines:
        message: dict[str, object] | None = decode_line(line)
        if message is None:
            continue
        get_logger().debug("<- %s", message)
        task: asyncio.Task[None] = asyncio.create_task(dispatcher.handle_request(message))
        pending.add(task)
        task.add_done_callback(pending.discard)

    if len(pending) > 0:
        await asyncio.gather(*pending)
    active_session.close()
    return active_session
