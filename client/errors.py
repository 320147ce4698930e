"""Error types raised by the session client."""


class SessionError(Exception):
    """Base class for session client errors."""


class TransportError(SessionError, ConnectionError):
    """The connection to the session server could not be used."""


class ConnectTimeout(TransportError):
    """No open event arrived within the connect window."""


class ConnectionClosed(TransportError):
    """The channel closed before it finished opening."""


class ConnectFailed(TransportError):
    """The socket could not be opened (refused, DNS, handshake rejected)."""


class CommandRejected(SessionError):
    """The server answered a command with ``success: false``."""

    def __init__(self, message_type: str, error: str):
        super().__init__(f"{message_type} rejected: {error}")
        self.message_type = message_type
        self.error = error


class MediaAcquisitionError(SessionError, RuntimeError):
    """Local audio capture is unavailable or was denied."""
