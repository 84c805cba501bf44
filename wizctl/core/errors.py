"""Domain-specific errors for wizctl."""


class WizctlError(Exception):
    """Base error for wizctl."""


class OptionsError(WizctlError):
    """Raised when connection options (ip, port, timeout, retries) are invalid."""


class PropertyValidationError(WizctlError):
    """Raised when light properties fall outside the ranges the device accepts."""


class PresetValidationError(WizctlError):
    """Raised when a preset file does not conform to schema or semantics."""


class PresetLoadError(WizctlError):
    """Raised when loading preset sources fails."""


class ResponseDecodeError(WizctlError):
    """Raised when a datagram is not JSON or lacks the expected reply shape."""


class DeviceError(WizctlError):
    """Raised when the device answers with an ``error`` object."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(f"Device rejected request (code {code}): {message}")
        self.code = code
        self.message = message


class TransportError(WizctlError):
    """Base transport error."""


class TransportSendError(TransportError):
    """Raised when the socket refuses to send a datagram on every attempt."""


class TransportTimeoutError(TransportError):
    """Raised when no matching reply arrives before the attempts run out."""


class TransportClosedError(TransportError):
    """Raised when a request is outstanding or issued after close()."""
