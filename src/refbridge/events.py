"""Event-to-polling adaptor.

The counterpart has no callback channel into this process. Instead it asks
for a subscription under a polling id it picks, and every event emission is
turned into a notification message that carries the polling id and a fresh
handle for the emitted arguments. Handlers never touch the reference table
directly; they schedule delivery on the session loop so that table updates
only happen between dispatch steps.
"""

import asyncio
import time
from collections.abc import Callable
from collections.abc import Hashable
from dataclasses import dataclass
from dataclasses import field

from refbridge.errors import NotCallableError
from refbridge.errors import ProtocolError
from refbridge.log import get_logger
from refbridge.registry import ReferenceTable

Notify = Callable[[dict[str, object]], None]

_REGISTER_METHOD_NAMES: tuple[str, ...] = ("on", "add_listener")
_DEREGISTER_METHOD_NAMES: tuple[str, ...] = ("off", "remove_listener")


@dataclass(eq=False)
class Subscription:
    """One active event subscription."""

    target_handle: int
    event_name: str
    polling_id: Hashable
    handler: Callable[..., None] | None = field(default=None, repr=False)


def _find_method(target: object, method_names: tuple[str, ...]) -> Callable[..., object] | None:
    """Return the first callable attribute of ``target`` among ``method_names``.

    :param target: Event source.
    :param method_names: Candidate method names in preference order.
    :returns: Bound method or ``None``.
    """
    for method_name in method_names:
        method: object = getattr(target, method_name, None)
        if callable(method) is True:
            return method  # type: ignore[return-value]
    return None


def now_ms() -> int:
    """Return wall-clock time in integer milliseconds."""
    return int(time.time() * 1000)


class EventPollingAdaptor:
    """Own subscriptions keyed by counterpart-chosen polling ids."""

    _table: ReferenceTable
    _notify: Notify
    _loop: asyncio.AbstractEventLoop | None
    _subscriptions: dict[Hashable, Subscription]

    def __init__(
        self,
        table: ReferenceTable,
        notify: Notify,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        """Initialize the adaptor.

        :param table: Reference table used to resolve targets and store bundles.
        :param notify: Callable that sends one notification message.
        :param loop: Loop that runs deliveries. Defaults to the running loop at ``start``.
        """
        self._table = table
        self._notify = notify
        self._loop = loop
        self._subscriptions = {}
        table.set_teardown(self.stop)

    def start(self, target_handle: int, event_name: str, polling_id: Hashable) -> bool:
        """Subscribe to ``event_name`` on the value behind ``target_handle``.

        An active subscription with the same polling id is stopped first.

        :param target_handle: Handle of the event source.
        :param event_name: Event name passed to the source's registration method.
        :param polling_id: Counterpart correlation key for notifications.
        :returns: ``True`` once the handler is registered.
        :raises ProtocolError: If the handle or polling id has the wrong type.
        :raises NotCallableError: If the target has no ``on``/``add_listener`` method.
        """
        if isinstance(target_handle, int) is False or isinstance(target_handle, bool) is True:
            raise ProtocolError("event polling target must be an integer handle")
        try:
            hash(polling_id)
        except TypeError as exc:
            raise ProtocolError("polling id must be hashable") from exc

        target: object = self._table.resolve(target_handle)
        register: Callable[..., object] | None = _find_method(target, _REGISTER_METHOD_NAMES)
        if register is None:
            raise NotCallableError(
                f"Value behind handle {target_handle} cannot register event handlers"
            )

        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        self.stop(polling_id)

        subscription: Subscription = Subscription(target_handle, event_name, polling_id)
        loop: asyncio.AbstractEventLoop = self._loop

        def handler(*args: object) -> None:
            loop.call_soon_threadsafe(self._deliver, subscription, list(args))

        subscription.handler = handler
        register(event_name, handler)
        self._subscriptions[polling_id] = subscription
        self._table.attach_subscription(target_handle, polling_id)
        get_logger().debug(
            "subscribed polling id %r to %r on handle %d",
            polling_id,
            event_name,
            target_handle,
        )
        return True

    def stop(self, polling_id: Hashable) -> None:
        """Stop one subscription. Unknown polling ids are ignored.

        :param polling_id: Counterpart correlation key.
        """
        try:
            subscription: Subscription | None = self._subscriptions.get(polling_id)
        except TypeError:
            return
        if subscription is None:
            return

        is_live: bool = subscription.target_handle in self._table
        if is_live is True:
            target: object = self._table.resolve(subscription.target_handle)
            deregister: Callable[..., object] | None = _find_method(target, _DEREGISTER_METHOD_NAMES)
            if deregister is None:
                get_logger().warning(
                    "handle %d has no off/remove_listener; handler for %r left registered",
                    subscription.target_handle,
                    polling_id,
                )
            else:
                # A raising deregistration leaves the subscription active and recorded.
                deregister(subscription.event_name, subscription.handler)

        self._subscriptions.pop(polling_id, None)
        self._table.detach_subscription(subscription.target_handle, polling_id)
        get_logger().debug("stopped polling id %r", polling_id)

    def close(self) -> None:
        """Stop every active subscription.

        A subscription whose deregistration raises is logged and discarded.
        """
        for polling_id in list(self._subscriptions.keys()):
            try:
                self.stop(polling_id)
            except Exception as exc:
                get_logger().warning("could not stop polling id %r: %s", polling_id, exc)
                self._subscriptions.pop(polling_id, None)

    def _deliver(self, subscription: Subscription, bundle: list[object]) -> None:
        """Store one emitted argument bundle and send its notification.

        :param subscription: Subscription whose handler fired.
        :param bundle: Emitted positional arguments.
        """
        current: Subscription | None = self._subscriptions.get(subscription.polling_id)
        if current is not subscription:
            return
        handle: int = self._table.allocate(bundle)
        message: dict[str, object] = {
            "r": now_ms(),
            "cb": subscription.polling_id,
            "val": handle,
        }
        self._notify(message)

    def __contains__(self, polling_id: object) -> bool:
        try:
            return polling_id in self._subscriptions
        except TypeError:
            return False

    def __len__(self) -> int:
        return len(self._subscriptions)
