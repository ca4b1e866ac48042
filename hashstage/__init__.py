# -*- coding: utf-8 -*-
"""HashStage stages files and directories as compressed, content-addressed
blobs and uploads them to an object store. What does that mean? Each upload is
streamed once through a hash, a gzip compressor and byte counters into a local
staging file. The blob is stored under a key derived from the hash of its
uncompressed bytes, and the upload is skipped when the store already holds
an identical object.

Typical use cases for this kind of system are ones where:

- Uploads are written once and never change (e.g. datasets, build artifacts).
- It's desirable to have no duplicate objects (e.g. user uploads).
- Directories should be stored as a single, reproducible archive.
"""

from .__meta__ import (
    __title__,
    __summary__,
    __url__,
    __version__,
    __author__,
    __email__,
    __license__,
)

from .errors import (
    HashStageError,
    StagingError,
    ArchiveError,
    StoreError,
    DedupLookupError,
    UploadError,
)
from .writer import Blob, CompositeWriter, CountingWriter, HashWriter
from .archive import (archive_dir, archive_payloads, archive_zip,
                      extract_archive)
from .store import FSObjectStore, StoreConfig
from .stage import HashStage, Outcome


__all__ = (
    "HashStage",
    "Outcome",
    "Blob",
    "CompositeWriter",
    "CountingWriter",
    "HashWriter",
    "FSObjectStore",
    "StoreConfig",
    "archive_dir",
    "archive_payloads",
    "archive_zip",
    "extract_archive",
    "HashStageError",
    "StagingError",
    "ArchiveError",
    "StoreError",
    "DedupLookupError",
    "UploadError",
)
