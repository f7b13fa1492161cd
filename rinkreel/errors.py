"""Exception taxonomy shared by the processing pipeline."""

from __future__ import annotations


class RinkReelError(Exception):
    """Base class for every error raised by the pipeline."""


class ValidationError(RinkReelError):
    """Raised when input is rejected before any work starts."""


class SessionNotFound(RinkReelError):
    pass


class JobNotFound(RinkReelError):
    pass


class AuthenticationError(RinkReelError):
    """Provider credentials or provider session are invalid or expired."""


class NotFoundError(RinkReelError):
    """The provider holds no feed for the requested rink and date."""


class TransientProviderError(RinkReelError):
    """Network, timeout or overload against the provider. Safe to retry."""


ProviderUnavailable = TransientProviderError


class FetchFailed(RinkReelError):
    def __init__(self, segment_id: str, reason: str) -> None:
        super().__init__(f"Failed to download segment {segment_id}: {reason}")
        self.segment_id = segment_id
        self.reason = reason


class EncoderError(RinkReelError):
    """The media encoder process exited with an error."""


class AssemblyFailed(RinkReelError):
    pass


class OverlayFailed(RinkReelError):
    pass


class StorageError(RinkReelError):
    pass


class InternalError(RinkReelError):
    """Unexpected failure surfaced on a job without its stack trace."""


class JobCancelled(Exception):
    """Raised when a running job has been cancelled."""
