from __future__ import annotations


class SiteSyncError(Exception):
    """Base class for errors raised inside the sync core."""


class TransportError(SiteSyncError):
    """The remote request could not produce a response body."""


class MalformedResponseError(SiteSyncError):
    """The response body does not have the expected JSON shape."""


class PersistenceError(SiteSyncError):
    """A blob could not be read, decoded or written."""


class DuplicateProjectError(SiteSyncError):
    pass
