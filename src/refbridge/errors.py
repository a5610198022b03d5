"""Custom error types for refbridge."""

from typing import ClassVar


class RefBridgeError(Exception):
    """Base class for all refbridge errors."""

    kind: ClassVar[str] = "RefBridgeError"


class ReferenceNotFoundError(RefBridgeError):
    """Raised when a handle is unknown or was already freed."""

    kind: ClassVar[str] = "ReferenceNotFound"

    handle: object

    def __init__(self, handle: object) -> None:
        """Initialize the error for one missing handle.

        :param handle: Handle that failed to resolve.
        """
        self.handle = handle
        super().__init__(f"Unknown or freed handle: {handle!r}")


class AttributeNotFoundError(RefBridgeError):
    """Raised when an attribute cannot be read from a live value."""

    kind: ClassVar[str] = "AttributeNotFound"


class NotCallableError(RefBridgeError):
    """Raised when a call or init target cannot be invoked."""

    kind: ClassVar[str] = "NotCallable"


class InvocationError(RefBridgeError):
    """Raised when a live value raised while being read, called or constructed."""

    kind: ClassVar[str] = "InvocationError"

    original_type_name: str
    original_message: str
    original_traceback: str

    def __init__(
        self,
        original_type_name: str,
        original_message: str,
        original_traceback: str,
    ) -> None:
        """Initialize an invocation failure wrapper.

        :param original_type_name: Type name of the raised exception.
        :param original_message: Message of the raised exception.
        :param original_traceback: Formatted traceback text.
        """
        self.original_type_name = original_type_name
        self.original_message = original_message
        self.original_traceback = original_traceback
        super().__init__(f"{original_type_name}: {original_message}")


class SerializationError(RefBridgeError):
    """Raised when a value cannot be encoded as JSON."""

    kind: ClassVar[str] = "SerializationError"


class ProtocolError(RefBridgeError):
    """Raised for malformed request messages."""

    kind: ClassVar[str] = "ProtocolError"
