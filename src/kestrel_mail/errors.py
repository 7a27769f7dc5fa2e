# =============================================================================
# Exceptions
# =============================================================================
# Error taxonomy shared by the session, the explorer and the commands.
#
#   MailError
#   ├── NotConnectedError     operation attempted before connect()
#   ├── AuthError             server rejected the credentials
#   ├── NetworkError          could not reach / lost the server
#   │   └── ConnectTimeoutError
#   ├── ProtocolError         malformed or unexpected server response
#   ├── NotFoundError         missing message or attachment
#   └── ValidationError       caller passed incomplete arguments
#
# Folder-scoped operations release their lock before any of these reach the
# caller. Connect/listing failures are turned into tree error items by the
# explorer; everything else is reported to the user by the commands.
# =============================================================================


class MailError(Exception):
    """Base exception for mail operations."""
    pass


class NotConnectedError(MailError):
    """Raised when an operation needs a connection and there is none."""

    def __init__(self, message: str = "Not connected to IMAP server") -> None:
        super().__init__(message)


class AuthError(MailError):
    """Raised when the server rejects the login."""
    pass


class NetworkError(MailError):
    """Raised when the server cannot be reached or the connection drops."""
    pass


class ConnectTimeoutError(NetworkError):
    """Raised when connecting or a command times out."""
    pass


class ProtocolError(MailError):
    """Raised when the server answers with something we cannot use."""
    pass


class NotFoundError(MailError):
    """Raised when a message or attachment does not exist."""
    pass


class ValidationError(MailError):
    """Raised when a caller passes incomplete or invalid arguments."""
    pass
