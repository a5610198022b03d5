"""Request dispatch against the reference table."""

import inspect
import json
import pprint
import traceback
from collections.abc import Mapping
from collections.abc import Sequence

from refbridge.classify import DIRECT_TAGS
from refbridge.classify import TAG_FN
from refbridge.classify import TAG_OBJ
from refbridge.classify import WireTag
from refbridge.classify import classify_value
from refbridge.classify import wire_value
from refbridge.errors import AttributeNotFoundError
from refbridge.errors import InvocationError
from refbridge.errors import NotCallableError
from refbridge.errors import ProtocolError
from refbridge.errors import RefBridgeError
from refbridge.errors import SerializationError
from refbridge.log import get_logger
from refbridge.session import BridgeSession

ACTIONS: frozenset[str] = frozenset({"get", "call", "init", "inspect", "serialize", "free"})
HANDLE_KEY: str = "ffid"
_UNKNOWN_REQUEST_ID: int = -1


class CallableHolder:
    """Single-member object exposing a returned function under ``call``."""

    __slots__ = ("call",)

    def __init__(self, call: object) -> None:
        self.call = call

    def __repr__(self) -> str:
        return f"CallableHolder({self.call!r})"


def _require_request_id(message: dict[str, object]) -> int:
    """Extract and validate the request identifier.

    :param message: Request message.
    :returns: Request identifier.
    :raises ProtocolError: If ``r`` is missing or invalid.
    """
    request_id: object = message.get("r")
    if isinstance(request_id, int) is False or isinstance(request_id, bool) is True:
        raise ProtocolError("r must be an integer")
    return request_id  # type: ignore[return-value]


def _require_action(message: dict[str, object]) -> str:
    """Extract and validate the action string.

    :param message: Request message.
    :returns: Action string.
    :raises ProtocolError: If ``action`` is missing or unsupported.
    """
    action: object = message.get("action")
    if isinstance(action, str) is False:
        raise ProtocolError("action must be a string")
    is_known: bool = action in ACTIONS
    if is_known is False:
        raise ProtocolError(f"Unsupported action: {action}")
    return action  # type: ignore[return-value]


def _require_handle(value: object, field_name: str) -> int:
    """Validate one handle value.

    :param value: Candidate handle.
    :param field_name: Field name used in the error message.
    :returns: Handle.
    :raises ProtocolError: If the value is not a non-negative integer.
    """
    if isinstance(value, int) is False or isinstance(value, bool) is True:
        raise ProtocolError(f"{field_name} must be an integer handle")
    if value < 0:  # type: ignore[operator]
        raise ProtocolError(f"{field_name} must not be negative")
    return value  # type: ignore[return-value]


def _optional_key(message: dict[str, object]) -> str | int | None:
    """Extract the optional attribute key.

    :param message: Request message.
    :returns: Attribute name, sequence index or ``None``.
    :raises ProtocolError: If ``key`` has an unsupported type.
    """
    key: object = message.get("key")
    if key is None:
        return None
    if isinstance(key, bool) is True:
        raise ProtocolError("key must be a string, an integer or null")
    if isinstance(key, (str, int)) is False:
        raise ProtocolError("key must be a string, an integer or null")
    return key  # type: ignore[return-value]


def _is_handle_reference(value: object) -> bool:
    """Report whether an argument is a ``{"ffid": <handle>}`` reference.

    :param value: Raw argument.
    :returns: ``True`` for handle references.
    """
    if isinstance(value, dict) is False:
        return False
    if len(value) != 1:  # type: ignore[arg-type]
        return False
    handle: object = value.get(HANDLE_KEY)  # type: ignore[union-attr]
    return isinstance(handle, int) is True and isinstance(handle, bool) is False


def _invocation_error(exc: BaseException) -> InvocationError:
    formatted: str = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return InvocationError(type(exc).__name__, str(exc), formatted)


def _lookup_attribute(target: object, key: str | int) -> object:
    """Read ``key`` off ``target``.

    Mappings use item lookup and fall back to ``getattr`` for string keys they
    do not contain, so methods such as ``dict.get`` stay reachable. Sequences
    accept integer indices (also as decimal strings) and everything else uses
    ``getattr``.

    :param target: Live value.
    :param key: Attribute name or index.
    :returns: Attribute value.
    :raises AttributeNotFoundError: If the attribute does not exist.
    :raises InvocationError: If reading the attribute raised.
    """
    try:
        if isinstance(target, Mapping) is True:
            try:
                return target[key]  # type: ignore[index]
            except KeyError:
                if isinstance(key, str) is False:
                    raise

        is_sequence: bool = isinstance(target, Sequence) is True and isinstance(target, (str, bytes)) is False
        if is_sequence is True:
            if isinstance(key, int) is True:
                return target[key]  # type: ignore[index]
            if isinstance(key, str) is True and key.isdecimal() is True:
                return target[int(key)]  # type: ignore[index]

        if isinstance(key, str) is False:
            raise AttributeNotFoundError(f"{type(target).__name__} has no item {key!r}")
        return getattr(target, key)  # type: ignore[arg-type]
    except (KeyError, IndexError, AttributeError) as exc:
        raise AttributeNotFoundError(f"{type(target).__name__} has no attribute {key!r}") from exc
    except RefBridgeError:
        raise
    except Exception as exc:
        raise _invocation_error(exc) from exc


def _encode_default(value: object) -> object:
    """Encode plain objects through their instance dictionary.

    :param value: Value the JSON encoder cannot handle natively.
    :returns: Instance attributes.
    :raises TypeError: If the value is callable or has no ``__dict__``.
    """
    if callable(value) is True:
        raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")
    instance_dict: object = getattr(value, "__dict__", None)
    if isinstance(instance_dict, dict) is False:
        raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")
    return dict(instance_dict)  # type: ignore[arg-type]


def _reply(request_id: int, tag: WireTag, value: object) -> dict[str, object]:
    return {"r": request_id, "key": tag, "val": value}


class Dispatcher:
    """Execute counterpart requests against one bridge session."""

    _session: BridgeSession

    def __init__(self, session: BridgeSession) -> None:
        """Initialize a dispatcher.

        :param session: Session holding the reference table.
        """
        self._session = session

    @property
    def session(self) -> BridgeSession:
        return self._session

    async def handle_request(self, message: object) -> None:
        """Execute one request and send exactly one correlated reply.

        Failures never propagate out of this method; they are sent as error
        replies instead.

        :param message: Decoded request message.
        """
        try:
            if isinstance(message, dict) is False:
                raise ProtocolError("Incoming message must be an object")
            reply: dict[str, object] = await self._execute_request(message)  # type: ignore[arg-type]
        except Exception as exc:
            reply = self._error_reply(message, exc)
        self._session.send(reply)

    def _error_reply(self, message: object, exc: Exception) -> dict[str, object]:
        """Build an error reply for one failed request.

        :param message: Request message, possibly malformed.
        :param exc: Raised exception.
        :returns: Error reply.
        """
        request_id: int = _UNKNOWN_REQUEST_ID
        if isinstance(message, dict) is True:
            request_id_obj: object = message.get("r")  # type: ignore[union-attr]
            if isinstance(request_id_obj, int) is True and isinstance(request_id_obj, bool) is False:
                request_id = request_id_obj  # type: ignore[assignment]

        kind: str = InvocationError.kind
        if isinstance(exc, RefBridgeError) is True:
            kind = exc.kind  # type: ignore[attr-defined]
        if isinstance(exc, InvocationError) is True:
            get_logger().debug("request %d raised:\n%s", request_id, exc.original_traceback)  # type: ignore[attr-defined]
        else:
            get_logger().debug("request %d failed with %s: %s", request_id, kind, exc)
        return {"r": request_id, "error": kind, "message": str(exc)}

    def _resolve_args(self, raw_args: object) -> list[object]:
        """Replace handle references in ``args`` with their live values.

        :param raw_args: Raw ``args`` field.
        :returns: Positional arguments.
        :raises ProtocolError: If ``args`` is neither a list nor ``null``.
        """
        if raw_args is None:
            return []
        if isinstance(raw_args, list) is False:
            raise ProtocolError("args must be a list or null")
        args: list[object] = []
        for item in raw_args:  # type: ignore[union-attr]
            if _is_handle_reference(item) is True:
                args.append(self._session.table.resolve(item[HANDLE_KEY]))
                continue
            args.append(item)
        return args

    async def _execute_request(self, message: dict[str, object]) -> dict[str, object]:
        """Execute one request.

        :param message: Request message.
        :returns: Reply message.
        :raises ProtocolError: If request fields are invalid.
        """
        request_id: int = _require_request_id(message)
        action: str = _require_action(message)
        target_handle: int = _require_handle(message.get(HANDLE_KEY), HANDLE_KEY)
        target: object = self._session.table.resolve(target_handle)
        key: str | int | None = _optional_key(message)

        if action == "get":
            if key is None:
                raise ProtocolError("get requires a key")
            return await self.get(request_id, target_handle, target, key)

        if action == "call":
            args: list[object] = self._resolve_args(message.get("args"))
            return await self.call(request_id, target, key, args)

        if action == "init":
            args = self._resolve_args(message.get("args"))
            return self.init(request_id, target, key, args)

        if action == "inspect":
            return {"r": request_id, "val": pprint.pformat(target)}

        if action == "serialize":
            return {"r": request_id, "val": self.serialize(target)}

        self._session.table.release(target_handle)
        return {"r": request_id, "val": True}

    async def get(self, request_id: int, target_handle: int, target: object, key: str | int) -> dict[str, object]:
        """Read one attribute and shape the reply by its tag.

        Functions and classes are not allocated; the reply carries the
        target's own handle so the counterpart can call or construct
        through it.

        :param request_id: Request identifier.
        :param target_handle: Handle of ``target``.
        :param target: Resolved target value.
        :param key: Attribute name or index.
        :returns: Reply message.
        """
        value: object = _lookup_attribute(target, key)
        if inspect.isawaitable(value) is True:
            try:
                value = await value  # type: ignore[misc]
            except RefBridgeError:
                raise
            except Exception as exc:
                raise _invocation_error(exc) from exc

        tag: WireTag = classify_value(value)
        if tag == TAG_OBJ:
            handle: int = self._session.table.allocate(value)
            return _reply(request_id, tag, handle)
        if tag in DIRECT_TAGS:
            return _reply(request_id, tag, wire_value(tag, value))
        return _reply(request_id, tag, target_handle)

    async def call(
        self,
        request_id: int,
        target: object,
        key: str | int | None,
        args: list[object],
    ) -> dict[str, object]:
        """Invoke ``target[key](*args)``, awaiting awaitable results.

        A returned function is wrapped in :class:`CallableHolder` and replied
        as ``obj``, so the counterpart can still invoke it through ``call``.

        :param request_id: Request identifier.
        :param target: Resolved target value.
        :param key: Attribute to invoke, or ``None`` to invoke the target itself.
        :param args: Resolved positional arguments.
        :returns: Reply message.
        :raises NotCallableError: If the attribute is not callable.
        :raises InvocationError: If the callee raised.
        """
        function: object = target if key is None else _lookup_attribute(target, key)
        if callable(function) is False:
            raise NotCallableError(f"Attribute {key!r} of {type(target).__name__} is not callable")

        try:
            result: object = function(*args)  # type: ignore[operator]
            if inspect.isawaitable(result) is True:
                result = await result  # type: ignore[misc]
        except RefBridgeError:
            raise
        except Exception as exc:
            raise _invocation_error(exc) from exc

        tag: WireTag = classify_value(result)
        if tag in DIRECT_TAGS:
            return _reply(request_id, tag, wire_value(tag, result))
        if tag == TAG_FN:
            holder: CallableHolder = CallableHolder(result)
            return _reply(request_id, TAG_OBJ, self._session.table.allocate(holder))
        return _reply(request_id, tag, self._session.table.allocate(result))

    def init(
        self,
        request_id: int,
        target: object,
        key: str | int | None,
        args: list[object],
    ) -> dict[str, object]:
        """Construct ``target[key](*args)`` and store the instance.

        The reply tag is always ``obj``.

        :param request_id: Request identifier.
        :param target: Resolved target value.
        :param key: Constructor attribute, or ``None`` to construct the target itself.
        :param args: Resolved positional arguments.
        :returns: Reply message.
        :raises NotCallableError: If the attribute is not callable.
        :raises InvocationError: If the constructor raised.
        """
        constructor: object = target if key is None else _lookup_attribute(target, key)
        if callable(constructor) is False:
            raise NotCallableError(f"Attribute {key!r} of {type(target).__name__} is not constructible")

        try:
            instance: object = constructor(*args)  # type: ignore[operator]
        except RefBridgeError:
            raise
        except Exception as exc:
            raise _invocation_error(exc) from exc
        return _reply(request_id, TAG_OBJ, self._session.table.allocate(instance))

    def serialize(self, value: object) -> str:
        """Encode ``value`` as compact JSON.

        :param value: Live value.
        :returns: JSON text.
        :raises SerializationError: On cycles, NaN or non-encodable members.
        """
        try:
            return json.dumps(value, separators=(",", ":"), allow_nan=False, default=_encode_default)
        except (TypeError, ValueError, RecursionError) as exc:
            raise SerializationError(str(exc)) from exc
