"""Exception types shared across the package."""

from __future__ import annotations


class FigmaMcpError(Exception):
    """Base class for errors raised by figma_mcp."""


class ConfigError(FigmaMcpError):
    """Raised when required configuration is missing or malformed."""


class UnsafePathError(FigmaMcpError):
    """Raised when a destination resolves to a protected system location."""


class DirectoryProvisionError(FigmaMcpError):
    """Raised when a destination directory cannot be created or written to."""


class InvalidFigmaUrlError(FigmaMcpError):
    """Raised when a Figma URL cannot be parsed into a file key."""
