"""
Psyche error taxonomy.

The core raises these; the registry surface (``psyche_registry``) turns them
into explicit failure values so no caller error ever aborts the process.
"""

from __future__ import annotations


class PsycheError(Exception):
    """Base class for all Psyche errors."""


class NotFoundError(PsycheError, KeyError):
    """Unknown handle, node, edge, sensor or effector id."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep plain messages readable.
        return str(self.args[0]) if self.args else ""


class InvalidInputError(PsycheError, ValueError):
    """Malformed config, negative counts or ranges, forbidden structure."""


class FormatError(PsycheError, ValueError):
    """A serialized payload could not be decoded."""


class InvalidHandleError(NotFoundError):
    """A destroyed network or handle was used again (e.g. as an evolution
    parent)."""
