"""Errors raised by the device plugin operator."""


class DevicePluginError(Exception):
    """Base class for operator errors."""


class UnknownFamilyError(DevicePluginError, ValueError):
    """The kind or family name is not one the operator manages."""


class UnsupportedVersionError(DevicePluginError, ValueError):
    """A resource was encoded under an API version that cannot be converted."""

    def __init__(self, api_version):
        super().__init__(f"Unsupported API version: {api_version}")
        self.api_version = api_version


class InvalidSpecError(DevicePluginError, ValueError):
    """The resource spec cannot be rendered into a DaemonSet."""


class ConflictError(DevicePluginError):
    """Optimistic-concurrency retries were exhausted for a write."""
