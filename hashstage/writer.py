# -*- coding: utf-8 -*-
"""Single pass writer chain that turns one stream of input bytes into a
compressed staging file, a content hash and byte counters.
"""

import gzip
import hashlib
import logging
import os
import tempfile
import zlib
from typing import Callable, Optional

from .errors import StagingError
from .utils import to_bytes


log = logging.getLogger(__name__)


class CompositeWriter(object):
    """Fan out every :meth:`write` to an ordered list of sinks.

    A sink is any object with a ``write(data)`` method. The first sink that
    raises aborts the call; later sinks never see that chunk.
    """

    def __init__(self, *sinks):
        self.sinks = list(sinks)

    def write(self, data: bytes) -> int:
        for sink in self.sinks:
            sink.write(data)
        return len(data)

    def flush(self):
        for sink in self.sinks:
            flush = getattr(sink, "flush", None)
            if flush is not None:
                flush()


class HashWriter(object):
    """Sink feeding every chunk into a ``hashlib`` accumulator."""

    def __init__(self, algorithm: str = "sha256"):
        self.algorithm = algorithm
        self._hash = hashlib.new(algorithm)

    def write(self, data: bytes) -> int:
        self._hash.update(data)
        return len(data)

    def digest(self) -> bytes:
        return self._hash.digest()

    def hexdigest(self) -> str:
        return self._hash.hexdigest()


class CountingWriter(object):
    """Sink counting the bytes written through it, forwarding them to
    `target` when one is given.
    """

    def __init__(self, target=None):
        self.target = target
        self.count = 0

    def write(self, data: bytes) -> int:
        if self.target is not None:
            self.target.write(data)
        self.count += len(data)
        return len(data)

    def flush(self):
        if self.target is not None:
            self.target.flush()


class Blob(object):
    """Gzip compressed staging artifact of either a single file or a tar
    archive of a directory.

    Bytes passed to :meth:`write` go to a hash accumulator and, through a
    gzip compressor, to a temporary file. The temporary file MUST be removed
    with :meth:`discard` once the blob is no longer needed; using the blob as
    a context manager does this on every exit path.

    Attributes:
        is_dir (bool): Whether the payload is an archive of a directory.
        reference (str): Human readable label, ie the original filename. It is
            user controlled, not unique and must not be used for any logic.
        algorithm (str): ``hashlib`` algorithm of the content hash.
        path (str): Location of the staging artifact.

    Args:
        compresslevel (int, optional): Gzip compression level. Defaults to
            ``9``.
        tempdir (str, optional): Directory the staging artifact is created in.
        observer (callable, optional): Called with the number of uncompressed
            bytes after every successful write, ie to report progress.
    """

    def __init__(self,
                 is_dir: bool = False,
                 reference: str = "",
                 algorithm: str = "sha256",
                 compresslevel: int = 9,
                 tempdir: Optional[str] = None,
                 observer: Optional[Callable[[int], None]] = None):
        self.is_dir = is_dir
        self.reference = reference
        self.algorithm = algorithm
        self.observer = observer
        self.path = None
        self._file = None
        self._finalized = False

        try:
            fd, self.path = tempfile.mkstemp(prefix="blob", dir=tempdir)
            self._file = os.fdopen(fd, "wb")
        except OSError as exc:
            self.discard()
            raise StagingError(
                "Blob: could not create temporary file") from exc

        self._compressed = CountingWriter(self._file)
        # mtime=0 and an empty filename keep the gzip header reproducible.
        self._gzip = gzip.GzipFile(filename="",
                                   mode="wb",
                                   compresslevel=compresslevel,
                                   fileobj=self._compressed,
                                   mtime=0)
        self._uncompressed = CountingWriter(self._gzip)
        self._hash = HashWriter(algorithm)
        self._chain = CompositeWriter(self._uncompressed, self._hash)

    def write(self, data) -> int:
        """Write a chunk of uncompressed bytes through the chain."""
        if self._finalized:
            raise ValueError("Blob: write to a finalized blob")

        data = to_bytes(data)

        try:
            self._chain.write(data)
        except (OSError, zlib.error) as exc:
            raise StagingError("Blob: could not write to {0!r}".format(
                self.path)) from exc

        if self.observer is not None:
            self.observer(len(data))

        return len(data)

    def finalize(self) -> "Blob":
        """Flush the compressor and close the staging artifact. The hash and
        sizes become readable afterwards. Calling it again has no effect.
        """
        if self._finalized:
            return self

        try:
            self._gzip.close()
            self._file.close()
        except (OSError, zlib.error) as exc:
            raise StagingError("Blob: could not flush {0!r}".format(
                self.path)) from exc

        self._finalized = True
        self._digest = self._hash.digest()
        log.debug("Staged %s (%d -> %d bytes) at %s", self.hexdigest,
                  self.uncompressed_size, self.size, self.path)

        return self

    @property
    def finalized(self) -> bool:
        return self._finalized

    @property
    def digest(self) -> bytes:
        """Content hash of the uncompressed bytes."""
        self._ensure_finalized()
        return self._digest

    @property
    def hexdigest(self) -> str:
        return self.digest.hex()

    @property
    def size(self) -> int:
        """Number of compressed bytes in the staging artifact."""
        self._ensure_finalized()
        return self._compressed.count

    @property
    def uncompressed_size(self) -> int:
        """Number of bytes written to the blob, or the size of the tar
        archive if the blob is a directory blob.
        """
        self._ensure_finalized()
        return self._uncompressed.count

    def open(self):
        """Open the compressed staging artifact for reading."""
        self._ensure_finalized()
        return open(self.path, "rb")

    def discard(self):
        """Close and delete the staging artifact. Safe to call repeatedly."""
        if self._file is not None and not self._file.closed:
            try:
                self._gzip.close()
                self._file.close()
            except (OSError, ValueError, zlib.error):
                log.debug("Blob: closing %s failed", self.path, exc_info=True)
                self._file.close()

        if self.path is not None:
            try:
                os.remove(self.path)
            except FileNotFoundError:
                pass
            self.path = None

    def _ensure_finalized(self):
        if not self._finalized:
            raise ValueError("Blob: not finalized")

    def __enter__(self) -> "Blob":
        return self

    def __exit__(self, *exc_info):
        self.discard()

    def __repr__(self):
        state = self.hexdigest if self._finalized else "pending"
        return "<Blob {0} is_dir={1} reference={2!r}>".format(
            state, self.is_dir, self.reference)
