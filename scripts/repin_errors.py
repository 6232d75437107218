"""Exception taxonomy shared by the manifest repinning helpers.

Every failure raised by the engine derives from :class:`RepinError` and carries
the manifest path it concerns, so callers can attribute errors without access
to the engine's internal state.
"""

from __future__ import annotations

import typing as typ

if typ.TYPE_CHECKING:
    from pathlib import Path

__all__ = [
    "FilesystemError",
    "ManifestStructureError",
    "ParseError",
    "RepinError",
    "SelectorError",
]


class RepinError(Exception):
    """Base class for errors raised while rewriting manifests."""

    def __init__(self, message: str, *, path: Path | None = None) -> None:
        """Store ``message`` and the optional ``path`` it relates to."""
        super().__init__(message)
        self.message = message
        self.path = path

    def __str__(self) -> str:
        """Prefix the message with the offending path when one is known."""
        if self.path is None:
            return self.message
        return f"{self.path}: {self.message}"


class FilesystemError(RepinError):
    """A path is missing, unreadable or unwritable."""


class ParseError(RepinError):
    """Manifest text is not valid TOML."""


class SelectorError(RepinError):
    """The pinning selector or identity filter is unusable."""


class ManifestStructureError(RepinError):
    """A manifest lacks required structure or patch targets collide."""
