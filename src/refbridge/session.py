"""Per-bridge state: reference table, subscriptions and the root namespace."""

import asyncio
import importlib
from collections.abc import Callable

from refbridge.events import EventPollingAdaptor
from refbridge.log import ConsoleCapability
from refbridge.registry import ROOT_HANDLE
from refbridge.registry import ReferenceTable

Send = Callable[[dict[str, object]], None]


class BridgeSession:
    """Own the state one counterpart manipulates through handles.

    Handle ``0`` resolves to a mapping with ``console``, ``require``,
    ``startEventPolling`` and ``stopEventPolling``. Nothing else is
    reachable without first obtaining a handle through ``get``, ``call``
    or ``init``.
    """

    table: ReferenceTable
    events: EventPollingAdaptor
    _send: Send
    _closed: bool

    def __init__(self, send: Send, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Initialize session state and seed the root handle.

        :param send: Callable that writes one outbound message.
        :param loop: Loop for event deliveries. Defaults to the running loop.
        """
        root: dict[str, object] = {}
        self._send = send
        self._closed = False
        self.table = ReferenceTable(root)
        self.events = EventPollingAdaptor(self.table, self.send, loop=loop)
        root["console"] = ConsoleCapability()
        root["require"] = importlib.import_module
        root["startEventPolling"] = self.events.start
        root["stopEventPolling"] = self.events.stop

    @property
    def root(self) -> object:
        return self.table.resolve(ROOT_HANDLE)

    def send(self, message: dict[str, object]) -> None:
        """Write one reply or notification.

        :param message: Outbound message.
        """
        self._send(message)

    def close(self) -> None:
        """Stop all subscriptions and drop every handle except the root."""
        if self._closed is True:
            return
        self._closed = True
        self.events.close()
        self.table.clear()
