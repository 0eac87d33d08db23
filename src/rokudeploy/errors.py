"""Exception taxonomy for packaging and device operations."""

from typing import Optional

from httpx import TransportError

__all__ = [
    "RokuDeployError",
    "SpecificationError",
    "OutOfRootError",
    "MissingRequiredOptionError",
    "TransportError",
    "DeviceResponseError",
    "UnparsableDeviceResponseError",
    "FailedDeviceResponseError",
    "UnauthorizedDeviceResponseError",
    "InvalidDeviceResponseCodeError",
    "UnknownDeviceResponseError",
    "CompileError",
    "ConvertError",
]


class RokuDeployError(Exception):
    """Base class for every error raised by this package."""


class SpecificationError(RokuDeployError, ValueError):
    """Invalid file pattern or option shape."""


class OutOfRootError(SpecificationError):
    """A top-level string pattern matched a file outside rootDir."""


class MissingRequiredOptionError(RokuDeployError):
    """A credential or path needed by a device call was not supplied."""


class DeviceResponseError(RokuDeployError):
    """Base class for errors derived from a device's HTTP response.

    Attributes:
        results: The DeviceResponse that triggered the error, when available
    """

    def __init__(self, message: str, results=None):
        super().__init__(message)
        self.results = results


class UnparsableDeviceResponseError(DeviceResponseError):
    """Response body had no recognizable content."""


class FailedDeviceResponseError(DeviceResponseError):
    """Response body carried an explicit failure message.

    Attributes:
        messages: Classified DeviceMessages extracted from the body, if any
    """

    def __init__(self, message: str, results=None, messages=None):
        super().__init__(message, results)
        self.messages = messages

    @property
    def errors(self) -> list[str]:
        """Every error message reported by the device."""
        if self.messages is None:
            return [str(self)]
        return list(self.messages.errors)


class UnauthorizedDeviceResponseError(DeviceResponseError):
    """Device rejected the credentials (HTTP 401)."""


class InvalidDeviceResponseCodeError(DeviceResponseError):
    """Device answered with a status code outside the accepted set."""


class UnknownDeviceResponseError(DeviceResponseError):
    """Response was ambiguous or did not match what the caller expected."""


class CompileError(DeviceResponseError):
    """Device reported that the uploaded package failed to compile."""

    def __init__(self, message: str, results=None, messages=None):
        super().__init__(message, results)
        self.messages = messages


class ConvertError(DeviceResponseError):
    """Squashfs conversion did not report success."""

    def __init__(self, message: str, results=None, detail: Optional[str] = None):
        super().__init__(message, results)
        self.detail = detail
