# -*- coding: utf-8 -*-
"""Module for HashStage class."""

import gzip
import logging
import os
import shutil
from collections import namedtuple
from collections.abc import Mapping
from contextlib import closing, contextmanager
from typing import Callable, Iterable, List, Optional, Tuple, Union

from .archive import (archive_dir, archive_payloads, archive_zip,
                      extract_archive)
from .errors import (DedupLookupError, HashStageError, StagingError,
                     StoreError, UploadError)
from .store import FSObjectStore, StoreConfig, open_store
from .utils import CHUNK_SIZE, Stream, blob_key
from .writer import Blob

log = logging.getLogger(__name__)

UPLOADED = "uploaded"
DUPLICATE = "duplicate"
FAILED = "failed"


class Outcome(namedtuple("Outcome", ["status",
                                     "reference",
                                     "hexdigest",
                                     "key",
                                     "size",
                                     "uncompressed_size",
                                     "error"])):
    """Result of processing one upload item.

    Attributes:
        status: One of ``"uploaded"``, ``"duplicate"`` or ``"failed"``.
        reference: Label of the item, ie its filename.
        hexdigest: Content hash of the blob, ``None`` if it never got one.
        key: Object store key of the blob.
        size: Compressed size in bytes.
        uncompressed_size: Size of the uploaded bytes (or their tar archive).
        error: The exception that failed the item.
    """

    __slots__ = ()

    @classmethod
    def failed(cls, reference, error) -> "Outcome":
        return cls(FAILED, reference, None, None, None, None, error)

    @property
    def ok(self) -> bool:
        return self.status != FAILED

    def __str__(self):
        if self.status == FAILED:
            return "error: {0}: {1}".format(self.reference, self.error)
        if self.status == DUPLICATE:
            return "skipped {0:10d} byte (duplicate): {1}".format(
                self.uncompressed_size, self.reference)
        return "uploaded {0:10d} byte ({1} compressed): {2}".format(
            self.uncompressed_size, self.size, self.reference)


class HashStage(object):
    """Stage files and directories as compressed blobs and upload them to an
    object store under the hash of their content.

    Every item is written once through a :class:`hashstage.Blob`. When the
    store already holds an object of the same hash and size the upload is
    skipped. The local staging artifact is removed whatever the outcome.

    Attributes:
        store: Object store blobs are uploaded to. Anything providing
            ``exists_and_stat``, ``put``, ``delete``, ``openbin`` and
            ``metadata`` like :class:`hashstage.FSObjectStore` will do.
        prefix (str): Namespace of the blob keys. Defaults to ``'blob'``.
        suffix (str): Format suffix of the blob keys. Defaults to ``'.gz'``.
        algorithm (str): Hash algorithm to use when computing the content
            hash. Algorithm should be available in ``hashlib`` module.
            Defaults to ``'sha256'``.
        compresslevel (int): Gzip compression level. Defaults to ``9``.
        tempdir (str, optional): Directory staging artifacts are created in.
        observer (callable, optional): Called with incremental byte counts
            while a blob is written, ie to report progress.
    """

    def __init__(self,
                 store,
                 prefix: str = "blob",
                 suffix: str = ".gz",
                 algorithm: str = "sha256",
                 compresslevel: int = 9,
                 tempdir: Optional[str] = None,
                 observer: Optional[Callable[[int], None]] = None):
        if not hasattr(store, "exists_and_stat"):
            store = FSObjectStore(store)

        self.store = store
        self.prefix = prefix
        self.suffix = suffix
        self.algorithm = algorithm
        self.compresslevel = compresslevel
        self.tempdir = tempdir
        self.observer = observer

    @classmethod
    def from_config(cls, config: StoreConfig, **options) -> "HashStage":
        """Create a :class:`HashStage` for the store described by `config`."""
        return cls(open_store(config), **options)

    def key(self, hexdigest: str) -> str:
        """Return the object store key of a content hash."""
        return blob_key(hexdigest, self.prefix, self.suffix)

    def new_blob(self, is_dir: bool = False, reference: str = "") -> Blob:
        """Create an empty blob staged in :attr:`tempdir`."""
        return Blob(is_dir=is_dir,
                    reference=reference,
                    algorithm=self.algorithm,
                    compresslevel=self.compresslevel,
                    tempdir=self.tempdir,
                    observer=self.observer)

    def put(self, content, reference: Optional[str] = None) -> Outcome:
        """Stage and upload a single file.

        Args:
            content: Readable object or path to file.
            reference: Label stored with the blob. Defaults to the file's
                base name.

        Returns:
            Outcome: Whether the blob was uploaded or already present.

        Raises:
            ValueError: If `content` is neither readable nor a file path.
            StagingError: If `content` couldn't be opened or the blob couldn't
                be staged.
            UploadError: If the upload failed.
        """
        try:
            stream = Stream(content)
        except OSError as exc:
            raise StagingError("Could not open {0!r}: {1}".format(
                content, exc)) from exc
        if reference is None:
            reference = stream.name or ""

        with closing(stream):
            return self.stage(lambda blob: _copy(stream, blob),
                              reference=reference)

    def put_dir(self, src: str, reference: Optional[str] = None) -> Outcome:
        """Stage and upload the directory tree below `src` as one blob.

        Raises:
            ArchiveError: If the tree couldn't be archived.
        """
        if reference is None:
            reference = os.path.basename(os.path.normpath(src))

        return self.stage(lambda blob: archive_dir(src, blob),
                          is_dir=True,
                          reference=reference)

    def put_archive(self, payloads, reference: str = "") -> Outcome:
        """Archive named payloads together and upload them as one directory
        blob.

        Args:
            payloads: Mapping or iterable of ``(name, content)`` pairs, see
                :func:`hashstage.archive_payloads`.
            reference: Label stored with the blob.
        """
        return self.stage(lambda blob: archive_payloads(payloads, blob),
                          is_dir=True,
                          reference=reference)

    def put_zip(self, zip_file, reference: Optional[str] = None) -> Outcome:
        """Convert a zip archive to a tar archive and upload it as one
        directory blob.
        """
        if reference is None:
            name = zip_file if isinstance(zip_file, str) else getattr(
                zip_file, "name", "")
            reference = os.path.basename(name) if isinstance(name, str) else ""

        return self.stage(lambda blob: archive_zip(zip_file, blob),
                          is_dir=True,
                          reference=reference)

    def put_many(self, items: Union[Mapping, Iterable[Tuple[str, object]]]
                 ) -> List[Outcome]:
        """Stage and upload every item as its own blob.

        A failing item is reported with a ``"failed"`` outcome and doesn't
        stop the remaining items.

        Args:
            items: Mapping or iterable of ``(reference, content)`` pairs,
                where content is a readable object or path to file.

        Returns:
            list: One :class:`Outcome` per item, in order.
        """
        if isinstance(items, Mapping):
            items = items.items()

        outcomes = []
        for reference, content in items:
            try:
                outcome = self.put(content, reference)
            except (HashStageError, ValueError) as exc:
                log.error("Failed to process %r: %s", reference, exc)
                outcome = Outcome.failed(reference, exc)
            outcomes.append(outcome)

        return outcomes

    def stage(self,
              fill: Callable[[Blob], None],
              is_dir: bool = False,
              reference: str = "") -> Outcome:
        """Write a blob with `fill`, then upload it unless the store already
        holds it. The staging artifact is removed on every exit path.

        Args:
            fill: Called with the new blob to write its content.
            is_dir: Whether the content is a directory archive.
            reference: Label stored with the blob.
        """
        with self.new_blob(is_dir, reference) as blob:
            fill(blob)
            blob.finalize()

            key = self.key(blob.hexdigest)

            if self.is_duplicate(blob):
                log.info("Skipping %s, already stored as %s", reference, key)
                status = DUPLICATE
            else:
                self.upload(blob)
                status = UPLOADED

            return Outcome(status, reference, blob.hexdigest, key, blob.size,
                           blob.uncompressed_size, None)

    def is_duplicate(self, blob: Blob) -> bool:
        """Return whether the store holds an object with the hash and the
        compressed size of `blob`.

        Any failure to look the object up counts as "no duplicate", so an
        unreachable store leads to a redundant upload rather than a skipped
        one.
        """
        key = self.key(blob.hexdigest)

        try:
            found, size = self.store.exists_and_stat(key)
        except DedupLookupError as exc:
            log.warning("Dedup lookup of %s failed, uploading anyway: %s",
                        key, exc)
            return False

        if not found:
            return False

        if size != blob.size:
            log.warning("Stored object %s has %d bytes, expected %d",
                        key, size, blob.size)
            return False

        return True

    def upload(self, blob: Blob) -> str:
        """Upload a finalized blob with its metadata and return its key.

        If the upload fails, any partially written object is removed on a
        best effort basis before the error is raised.

        Raises:
            UploadError: If the upload failed.
        """
        key = self.key(blob.hexdigest)
        metadata = {
            "uncompressed_size": str(blob.uncompressed_size),
            "reference": blob.reference,
            "is_directory": "true" if blob.is_dir else "false",
        }

        try:
            self.store.put(key, blob.path, metadata)
        except UploadError:
            self._rollback(key)
            raise

        log.info("Uploaded %s as %s (%d -> %d bytes)", blob.reference, key,
                 blob.uncompressed_size, blob.size)

        return key

    @contextmanager
    def open(self, hexdigest: str):
        """Open the uncompressed content of a stored blob for reading.

        Raises:
            IOError: If there is no blob with that hash.
        """
        raw = self.store.openbin(self.key(hexdigest))
        with closing(raw), gzip.GzipFile(fileobj=raw, mode="rb") as f:
            yield f

    def get(self, hexdigest: str, fileobj) -> None:
        """Write the uncompressed content of a stored blob to `fileobj`."""
        with self.open(hexdigest) as f:
            shutil.copyfileobj(f, fileobj, CHUNK_SIZE)

    def extract(self, hexdigest: str, dst: str) -> None:
        """Extract a stored directory blob below `dst`.

        Raises:
            IOError: If there is no blob with that hash.
            ValueError: If the blob is a single file.
            StoreError: If the blob's metadata couldn't be read.
            ArchiveError: If extracting failed.
        """
        key = self.key(hexdigest)

        if self.store.metadata(key).get("is_directory") == "false":
            raise ValueError("Blob {0} is not a directory blob".format(key))

        with closing(self.store.openbin(key)) as f:
            extract_archive(dst, f)

    def metadata(self, hexdigest: str) -> dict:
        """Return the metadata stored with a blob."""
        return self.store.metadata(self.key(hexdigest))

    def __contains__(self, hexdigest: str) -> bool:
        return self.key(hexdigest) in self.store

    def _rollback(self, key: str) -> None:
        try:
            self.store.delete(key)
        except StoreError as exc:
            log.error("Could not remove partial upload %s: %s", key, exc)


def _copy(stream: Stream, blob: Blob) -> None:
    """Copy the chunks of `stream` into `blob`."""
    try:
        for data in stream:
            blob.write(data)
    except OSError as exc:
        raise StagingError("Could not read {0!r}: {1}".format(
            blob.reference, exc)) from exc
