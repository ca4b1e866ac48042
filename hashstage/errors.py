# -*- coding: utf-8 -*-
"""Exceptions raised while staging, archiving and storing blobs.

Every error is local to the item being processed. Only :class:`UploadError`
and the staging/archive errors are fatal to an item; a
:class:`DedupLookupError` is always downgraded to "not a duplicate".
"""


class HashStageError(Exception):
    """Base class for all hashstage errors."""


class StagingError(HashStageError):
    """The local staging artifact could not be created, written or flushed."""


class ArchiveError(HashStageError):
    """A header or copy failed while building or extracting an archive."""


class StoreError(HashStageError):
    """An object store operation failed."""

    def __init__(self, key, message=None):
        self.key = key
        super(StoreError, self).__init__(
            message or "Object store operation failed for {0!r}".format(key))


class DedupLookupError(StoreError):
    """The remote existence check failed or was inconclusive."""


class UploadError(StoreError):
    """The remote write of a blob failed."""
