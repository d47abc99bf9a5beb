from __future__ import annotations


class ToolError(Exception):
    """Base class for failures the driver knows how to report."""


class ConfigError(ToolError):
    pass


class ConfigMissing(ConfigError):
    """Properties file unreadable or a required key absent/empty."""

    def __init__(self, message: str, keys: tuple[str, ...] = ()):
        super().__init__(message)
        self.keys = keys


class UnsupportedAlgorithm(ConfigError):
    pass


class KeystoreError(ToolError):
    pass


class DbConnectError(ToolError):
    pass


class TargetMetadataError(ToolError):
    pass


class UnsafeIdentifier(TargetMetadataError):
    pass


class RowSqlError(ToolError):
    pass


class EnvelopeError(ToolError):
    pass


class PayloadTooLarge(EnvelopeError):
    def __init__(self, size: int, limit: int):
        super().__init__(f"plaintext is {size} bytes; at most {limit} fit this RSA key and padding")
        self.size = size
        self.limit = limit


class CommitError(ToolError):
    pass
