"""
Errors raised by the scale session. Each error carries a kind, so observers can
render or react to failures without matching on exception classes.
"""
from enum import Enum


class ErrorKind(Enum):
    UNSUPPORTED_PLATFORM = 'UnsupportedPlatform'
    OPEN_FAILED = 'OpenFailed'
    READ_FAILED = 'ReadFailed'
    WRITE_FAILED = 'WriteFailed'
    NOT_CONNECTED = 'NotConnected'


class SessionError(Exception):
    """ base class for failures reported by the scale session. """
    kind = None
    default_message = 'scale session error'

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)

    @property
    def retryable(self) -> bool:
        """ True if a new connect() may succeed without changing the host. """
        return self.kind is not ErrorKind.UNSUPPORTED_PLATFORM

    def to_dict(self):
        return {'message': self.message}

    def __eq__(self, other):
        return type(other) is type(self) and other.message == self.message

    def __hash__(self):
        return hash((type(self), self.message))

    def __repr__(self):
        return '%s(%r)' % (type(self).__name__, self.message)


class UnsupportedPlatformError(SessionError):
    """ The host has no serial port support. """
    kind = ErrorKind.UNSUPPORTED_PLATFORM
    default_message = 'Serial ports are not supported on this platform'


class OpenFailedError(SessionError):
    """ No port was selected, or the selected port could not be opened. """
    kind = ErrorKind.OPEN_FAILED
    default_message = 'Could not open the serial port'


class ReadFailedError(SessionError):
    """ An I/O error occurred while reading from the scale. """
    kind = ErrorKind.READ_FAILED
    default_message = 'Reading error'


class WriteFailedError(SessionError):
    """ A command could not be written to the scale. """
    kind = ErrorKind.WRITE_FAILED
    default_message = 'Command failed'


class NotConnectedError(SessionError):
    """ The operation requires a connected session. """
    kind = ErrorKind.NOT_CONNECTED
    default_message = 'No port connected'
