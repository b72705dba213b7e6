"""
Errors raised by the viable protocol engine. All of them derive from ViableError so that collaborators
can handle "anything the keyboard link did" in one place.
"""


class ViableError(Exception):
    """ Base class for errors raised by the protocol engine. """


class DeviceConnectionError(ViableError, ConnectionError):
    """ There is no device handle, or the handle was lost while an operation was in progress. """


class AmbiguousDeviceError(DeviceConnectionError):
    """ Opening a device matched zero or several attached devices. """

    def __init__(self, matches=()):
        self.matches = tuple(matches)
        super().__init__("expected exactly one matching device but found %d" % len(self.matches))


class BootstrapFailure(ViableError):
    """ A client lease could not be acquired.

    code is the device-reported error code, or None when the retries were exhausted.
    """

    def __init__(self, message, code=None):
        super().__init__(message)
        self.code = code


class CommandTimeout(ViableError):
    """ No matching response arrived before the deadline. """


class ProtocolError(ViableError):
    """ The device answered with an explicit error packet. """

    def __init__(self, code, command=None):
        self.code = code
        self.command = command
        super().__init__("device reported error code %d%s" %
                         (code, "" if command is None else " for command 0x%02x" % command))


class DecodeError(ViableError, ValueError):
    """ The payload is too short or malformed for the requested decode shape. """
