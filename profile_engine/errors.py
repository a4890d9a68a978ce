"""
Domain exceptions for the profile engine.

Notes
-----
Engine code does not raise generic exceptions for expected failure modes.
Every expected failure maps to one of the classes below so that callers (CLI,
GUI adapter) can present a clear message without a stack trace.
"""

from __future__ import annotations


class TpmError(RuntimeError):
    """Base exception for all profile engine domain failures."""


class NotFoundError(TpmError):
    """Raised when a referenced tool, profile or path does not exist."""


class UnknownToolError(NotFoundError):
    """Raised when a tool id is not one of the supported tools."""


class ProfileNotFoundError(NotFoundError):
    """Raised when a profile name is not present for a tool."""


class UnknownPathError(NotFoundError):
    """Raised when a path is not one of a tool's native config files."""


class InvalidNameError(TpmError):
    """Raised when a profile name is empty, reserved or already taken."""


class InvalidCredentialsError(TpmError):
    """Raised when a new profile is missing its API key or base URL."""


class NativeConfigIOError(TpmError):
    """Raised when a native config file cannot be read or written."""


class EngineStateIOError(TpmError):
    """Raised when the engine's own settings or proxy records cannot be written."""


class NativeConfigParseError(TpmError):
    """Raised when a native config file is not in the expected format."""


class ProxyUnavailableError(TpmError):
    """Raised when a proxy operation requires a proxy that is not running or configured."""


class NoActiveProfileError(TpmError):
    """Raised when an overwrite import has no profile to overwrite."""


class SafetyViolationError(TpmError):
    """Raised when a filesystem operation is blocked by safety policy."""
