"""Handle table for live values owned by the bridge."""

from collections.abc import Callable
from collections.abc import Hashable

from refbridge.errors import ReferenceNotFoundError

ROOT_HANDLE: int = 0

SubscriptionTeardown = Callable[[Hashable], None]


class ReferenceTable:
    """Store live values under monotonically allocated integer handles."""

    _by_handle: dict[int, object]
    _polling_ids_by_handle: dict[int, set[Hashable]]
    _next_handle: int
    _teardown: SubscriptionTeardown | None

    def __init__(self, root: object) -> None:
        """Initialize a table whose handle ``0`` holds ``root``.

        :param root: Root namespace value.
        """
        self._by_handle = {ROOT_HANDLE: root}
        self._polling_ids_by_handle = {}
        self._next_handle = ROOT_HANDLE + 1
        self._teardown = None

    def set_teardown(self, teardown: SubscriptionTeardown | None) -> None:
        """Install the hook that stops a subscription by polling id.

        :param teardown: Callable invoked once per attached polling id on release.
        """
        self._teardown = teardown

    def allocate(self, value: object) -> int:
        """Store a value under a fresh handle.

        Storing the same value twice yields two distinct handles.

        :param value: Value to store.
        :returns: Newly allocated handle.
        """
        handle: int = self._next_handle
        self._next_handle += 1
        self._by_handle[handle] = value
        return handle

    def resolve(self, handle: int) -> object:
        """Get a stored value.

        :param handle: Handle of the value.
        :returns: Stored value.
        :raises ReferenceNotFoundError: If the handle is unknown or freed.
        """
        exists: bool = handle in self._by_handle
        if exists is False:
            raise ReferenceNotFoundError(handle)
        return self._by_handle[handle]

    def release(self, handle: int) -> None:
        """Release a handle, stopping any subscription that targets it.

        The root handle is permanent and releasing it does nothing.

        :param handle: Handle to release.
        :raises ReferenceNotFoundError: If the handle is unknown or freed.
        :raises Exception: Whatever subscription teardown raises; the handle is kept.
        """
        exists: bool = handle in self._by_handle
        if exists is False:
            raise ReferenceNotFoundError(handle)
        if handle == ROOT_HANDLE:
            return

        # Teardown detaches each polling id itself. If it raises, the handle and
        # the remaining back-references stay in place for a later retry.
        teardown: SubscriptionTeardown | None = self._teardown
        if teardown is not None:
            for polling_id in list(self._polling_ids_by_handle.get(handle, ())):
                teardown(polling_id)

        self._polling_ids_by_handle.pop(handle, None)
        self._by_handle.pop(handle, None)

    def attach_subscription(self, handle: int, polling_id: Hashable) -> None:
        """Record that ``polling_id`` listens to events of ``handle``.

        :param handle: Subscription target handle.
        :param polling_id: Counterpart polling id.
        :raises ReferenceNotFoundError: If the handle is unknown or freed.
        """
        self.resolve(handle)
        polling_ids: set[Hashable] = self._polling_ids_by_handle.setdefault(handle, set())
        polling_ids.add(polling_id)

    def detach_subscription(self, handle: int, polling_id: Hashable) -> None:
        """Drop a back-reference recorded by :meth:`attach_subscription`.

        :param handle: Subscription target handle.
        :param polling_id: Counterpart polling id.
        """
        polling_ids: set[Hashable] | None = self._polling_ids_by_handle.get(handle)
        if polling_ids is None:
            return
        polling_ids.discard(polling_id)
        if len(polling_ids) == 0:
            self._polling_ids_by_handle.pop(handle, None)

    def polling_ids_for(self, handle: int) -> frozenset[Hashable]:
        """Return polling ids attached to ``handle``.

        :param handle: Handle to inspect.
        :returns: Attached polling ids.
        """
        return frozenset(self._polling_ids_by_handle.get(handle, ()))

    def clear(self) -> None:
        """Drop every handle except the root."""
        root: object = self._by_handle[ROOT_HANDLE]
        self._by_handle.clear()
        self._by_handle[ROOT_HANDLE] = root
        self._polling_ids_by_handle.clear()

    def __contains__(self, handle: object) -> bool:
        return handle in self._by_handle

    def __len__(self) -> int:
        return len(self._by_handle)
