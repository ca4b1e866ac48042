# -*- coding: utf-8 -*-


"""
common utils for hashstage
"""


import io
import os
from typing import Iterator, Optional, Union

import fs
import fs.base

#: Size of the chunks read from input streams.
CHUNK_SIZE = 64 * 1024


def compact(items):
    """Return only truthy elements of `items`."""
    return [item for item in items if item]


def to_bytes(text) -> bytes:
    if not isinstance(text, bytes):
        text = bytes(text, "utf8")
    return text


def issubdir(subpath, path):
    """Return whether `subpath` is a sub-directory of `path`."""
    # Append os.sep so that paths like /usr/var2/log doesn't match /usr/var.
    path = os.path.realpath(path) + os.sep
    subpath = os.path.realpath(subpath)
    return subpath.startswith(path)


def blob_key(hexdigest: str, prefix: str = "blob", suffix: str = "") -> str:
    """Build the object store key of a blob from its hex digest.

    Args:
        hexdigest: Lowercase hex encoded content hash.
        prefix: Namespace the key lives under.
        suffix: Optional format suffix, ie ``'.gz'``.

    Returns:
        str: Key such as ``blob/<hexdigest>.gz``.
    """
    if suffix and not suffix.startswith(os.extsep):
        suffix = os.extsep + suffix
    key = "/".join(compact([prefix.strip("/"), hexdigest.lower()]))
    return key + (suffix or "")


def load_fs(root: Union[fs.base.FS, str]) -> fs.base.FS:
    """Return `root` if it is already a filesystem, else open it as an FS URL
    (ie ``mem://``, ``osfs:///srv/blobs`` or ``s3://bucket``).
    """
    if isinstance(root, fs.base.FS):
        return root
    return fs.open_fs(root, writeable=True, create=True)


class Stream(object):
    """Common interface for file-like objects.

    The input `obj` can be a file-like object or a path to a file. If `obj` is
    a path to a file, then it will be opened until :meth:`close` is called.
    If `obj` is a seekable file-like object, then its original position will
    be restored when :meth:`close` is called instead of closing the object
    automatically. Closing of the stream is deferred to whatever process
    passed the stream in.

    Iterating the stream yields chunks of at most :data:`CHUNK_SIZE` bytes, so
    arbitrarily large inputs are never held in memory at once.
    """

    def __init__(self, obj, chunk_size: int = CHUNK_SIZE):
        if hasattr(obj, "read"):
            pos = obj.tell() if _seekable(obj) else None
            owned = False
        elif isinstance(obj, (str, os.PathLike)) and os.path.isfile(obj):
            obj = io.open(obj, "rb")
            pos = None
            owned = True
        else:
            raise ValueError(("Object must be a valid file path or "
                              "a readable object."))

        self._obj = obj
        self._pos = pos
        self._owned = owned
        self.chunk_size = chunk_size

    @property
    def name(self) -> Optional[str]:
        """Return the base name of the underlying file, if it has one."""
        name = getattr(self._obj, "name", None)
        if isinstance(name, str):
            return os.path.basename(name)
        return None

    def __iter__(self) -> Iterator[bytes]:
        """Read underlying IO object and yield results. Return object to
        original position if we didn't open it originally.
        """
        if self._pos is not None:
            self._obj.seek(0)

        while True:
            data = self._obj.read(self.chunk_size)

            if not data:
                break

            yield to_bytes(data)

        if self._pos is not None:
            self._obj.seek(self._pos)

    def close(self):
        """Close underlying IO object if we opened it, else return it to
        original position.
        """
        if self._owned:
            self._obj.close()
        elif self._pos is not None:
            self._obj.seek(self._pos)


def _seekable(obj) -> bool:
    try:
        return obj.seekable()
    except AttributeError:
        return hasattr(obj, "seek") and hasattr(obj, "tell")
