"""Exception taxonomy for snapshot capture, configuration, and analysis."""

from __future__ import annotations


class HeapwatchError(Exception):
    """Base class for all heapwatch failures."""


class SessionConnectionError(HeapwatchError):
    """The debugging-protocol session could not be established."""


class ConnectionTimeout(SessionConnectionError):
    """The debugging-protocol handshake did not finish in time."""


class ConnectionFailed(SessionConnectionError):
    """The handshake completed with an error or without a session."""


class CaptureError(HeapwatchError):
    """A heap snapshot could not be captured."""


class NotConnectedError(CaptureError):
    """A capture was requested on a session that is not connected."""


class CaptureTimeoutError(CaptureError):
    """Snapshot chunks did not finish streaming in time."""


class EmptyCaptureError(CaptureError):
    """The protocol reported completion without sending any chunks."""


class MetadataWriteError(HeapwatchError):
    """Session metadata (snap-seq / run-meta) could not be written."""


class ConfigurationError(HeapwatchError):
    """A threshold, baseline, or runtime configuration is unusable."""


class AnalysisError(HeapwatchError):
    """The external leak analyzer failed."""
