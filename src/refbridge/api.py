"""User-facing entrypoints for running a bridge process."""

import asyncio
import sys
from typing import TextIO

from refbridge.config import BridgeConfig
from refbridge.log import configure_logging
from refbridge.session import BridgeSession
from refbridge.transport import JsonLineWriter
from refbridge.transport import read_stdin_lines
from refbridge.transport import serve


def _reply_stream(config: BridgeConfig) -> TextIO:
    if config.reply_stream == "stdout":
        return sys.stdout
    return sys.stderr


async def serve_stdio(config: BridgeConfig | None = None) -> BridgeSession:
    """Serve requests from standard input until it closes.

    :param config: Bridge settings, read from the environment when omitted.
    :returns: The closed session.
    """
    active_config: BridgeConfig = config if config is not None else BridgeConfig.from_env()
    configure_logging(active_config.debug)
    writer: JsonLineWriter = JsonLineWriter(_reply_stream(active_config))
    return await serve(read_stdin_lines(), writer)


def run_bridge(config: BridgeConfig | None = None) -> None:
    """Run a bridge on standard input and the configured reply stream.

    :param config: Bridge settings, read from the environment when omitted.
    """
    asyncio.run(serve_stdio(config))
