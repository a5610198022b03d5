"""Public package API for refbridge."""

from refbridge.api import run_bridge
from refbridge.api import serve_stdio
from refbridge.classify import classify_value
from refbridge.config import BridgeConfig
from refbridge.dispatcher import CallableHolder
from refbridge.dispatcher import Dispatcher
from refbridge.errors import AttributeNotFoundError
from refbridge.errors import InvocationError
from refbridge.errors import NotCallableError
from refbridge.errors import ProtocolError
from refbridge.errors import RefBridgeError
from refbridge.errors import ReferenceNotFoundError
from refbridge.errors import SerializationError
from refbridge.events import EventPollingAdaptor
from refbridge.registry import ReferenceTable
from refbridge.session import BridgeSession
from refbridge.transport import JsonLineWriter
from refbridge.transport import serve

__all__: list[str] = [
    "run_bridge",
    "serve",
    "serve_stdio",
    "classify_value",
    "BridgeConfig",
    "BridgeSession",
    "CallableHolder",
    "Dispatcher",
    "EventPollingAdaptor",
    "JsonLineWriter",
    "ReferenceTable",
    "AttributeNotFoundError",
    "InvocationError",
    "NotCallableError",
    "ProtocolError",
    "RefBridgeError",
    "ReferenceNotFoundError",
    "SerializationError",
]
