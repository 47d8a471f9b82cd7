"""
Error taxonomy shared by the store, the poll controller and the collaborators.
"""
from __future__ import annotations


class LivePollError(RuntimeError):
    pass


class NotFoundError(LivePollError):
    pass


class ValidationError(LivePollError):
    """Malformed input caught before any network call."""


class BackendError(LivePollError):
    """Any failed read/write against the persistence layer."""


NetworkError = BackendError


class ConflictError(BackendError):
    """Unique constraint rejected the write (e.g. access code already active)."""


class GeneratorError(LivePollError):
    pass


class CaptureError(LivePollError):
    pass
