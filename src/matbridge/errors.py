"""Custom error types for matbridge."""


class MatbridgeError(Exception):
    """Base class for all matbridge errors."""


class ConnectionFault(MatbridgeError):
    """Raised when the engine is unreachable or the session connection is lost."""


class TransportFault(MatbridgeError):
    """Raised when one get/set/evaluate/invoke round trip fails."""


class ProtocolError(TransportFault):
    """Raised for unexpected or broken messages on the session/worker channel."""


class ChannelLost(ProtocolError):
    """Raised when the worker can no longer be reached or its replies cannot be trusted."""


class RequestRejected(TransportFault):
    """Raised when the worker refuses one malformed request; the channel stays usable."""


class RemoteError(TransportFault):
    """Raised when the engine backend reports an exception inside the worker."""

    remote_type_name: str
    remote_message: str
    remote_traceback: str

    def __init__(
        self,
        remote_type_name: str,
        remote_message: str,
        remote_traceback: str,
    ) -> None:
        """Initialize a remote exception wrapper.

        :param remote_type_name: Original remote exception type name.
        :param remote_message: Original remote exception message.
        :param remote_traceback: Original remote traceback text.
        """
        self.remote_type_name = remote_type_name
        self.remote_message = remote_message
        self.remote_traceback = remote_traceback
        formatted: str = f"Engine backend raised {remote_type_name}: {remote_message}"
        super().__init__(formatted)


class ShapeMismatch(MatbridgeError):
    """Reported when an engine array does not fit the requested decode target."""
