# inference/errors.py

"""
Exception types raised by the inference core.

Every failure a caller can observe on a request is one of these, so a
presentation layer can render them by type.
"""

from __future__ import annotations


class InferenceCoreError(Exception):
    """Base class for all inference core errors."""


class ModelLoadError(InferenceCoreError):
    """The model artifact could not be loaded into a ready session."""


class ShapeMismatchError(InferenceCoreError, ValueError):
    """A domain input cannot be coerced to the declared input shape."""


class TypeConversionError(InferenceCoreError, ValueError):
    """A numeric conversion would lose information."""


class UnexpectedShapeError(InferenceCoreError, ValueError):
    """The runtime returned an output inconsistent with the declared contract."""


class InferenceError(InferenceCoreError):
    """The native runtime failed while running a request.

    ``fatal`` is set when the runtime state can no longer be trusted; the
    owning session stops accepting work when it sees one.
    """

    def __init__(self, message: str, *, fatal: bool = False):
        super().__init__(message)
        self.fatal = fatal


class SessionClosedError(InferenceCoreError):
    """The session is closing or closed."""


class SessionNotReadyError(InferenceCoreError):
    """The session has no loaded model."""


class RequestTimeoutError(InferenceCoreError, TimeoutError):
    """The request deadline passed before it was dispatched."""


class RequestCancelledError(InferenceCoreError):
    """The request was cancelled before it was dispatched."""
