# -*- coding: utf-8 -*-
"""Deterministic tar archives of directory trees and their extraction.

Archives never depend on when or where they were built: entries are visited
in lexical order, modification times are reset to :data:`ARCHIVE_MTIME` and
ownership is dropped. Archiving the same tree twice therefore yields the same
bytes, and therefore the same content hash.
"""

import io
import logging
import os
import shutil
import stat
import tarfile
import zipfile
import zlib
from contextlib import contextmanager
from collections.abc import Mapping
from typing import BinaryIO, Iterable, Iterator, Tuple, Union

from .errors import ArchiveError, StagingError
from .utils import issubdir, to_bytes

log = logging.getLogger(__name__)

#: Modification time written into every header.
ARCHIVE_MTIME = 0

#: Size of the reusable buffer file contents are copied with.
COPY_BUFSIZE = 32 * 1024

#: Permission bits of entries that have no filesystem counterpart.
PAYLOAD_MODE = 0o640

Payloads = Union[Mapping[str, object], Iterable[Tuple[str, object]]]


def archive_dir(src: str, fileobj) -> None:
    """Write a tar stream of the tree below `src` to `fileobj`.

    The root itself is not part of the archive, entry names are relative to
    it. Directories, regular files and symbolic links are archived, any other
    kind of entry is skipped.

    Args:
        src: Directory to archive.
        fileobj: Writable object receiving the uncompressed tar stream.

    Raises:
        ArchiveError: If `src` is not a directory or an entry can't be read.
    """
    if not os.path.isdir(src):
        raise ArchiveError("Unable to tar files - {0!r} is not a directory"
                           .format(src))

    with _guard("Unable to tar {0!r}".format(src)):
        with _open_writer(fileobj) as tar:
            for path, name in walk_sorted(src):
                info = _fileinfo(path, name)
                if info is None:
                    log.warning("Tar: skipping unsupported entry %s", path)
                    continue

                if info.isreg():
                    with open(path, "rb") as f:
                        tar.addfile(info, f)
                else:
                    tar.addfile(info)

                log.debug("Tar: added %s", name)


def archive_payloads(payloads: Payloads, fileobj) -> None:
    """Write a tar stream of named payloads to `fileobj`.

    This is used for uploads that have no filesystem path, ie files received
    with a request. Payloads are ordered by name and archived as regular files
    with :data:`PAYLOAD_MODE` permissions.

    Args:
        payloads: Mapping or iterable of ``(name, content)`` pairs, where
            content is bytes, text or a readable object.
        fileobj: Writable object receiving the uncompressed tar stream.
    """
    if isinstance(payloads, Mapping):
        payloads = payloads.items()
    entries = sorted(payloads, key=lambda item: _normalize_name(item[0]))

    with _guard("Unable to tar payloads"):
        with _open_writer(fileobj) as tar:
            for name, content in entries:
                name = _normalize_name(name)
                if not name:
                    raise ArchiveError("Tar: payload without a name")

                data, size = _payload(content)
                info = _header(name, tarfile.REGTYPE, PAYLOAD_MODE, size)
                tar.addfile(info, data)
                log.debug("Tar: added payload %s (%d bytes)", name, size)


def archive_zip(zip_file, fileobj) -> None:
    """Convert a zip archive into a tar stream written to `fileobj`.

    Args:
        zip_file: Path or seekable readable object of the zip archive.
        fileobj: Writable object receiving the uncompressed tar stream.
    """
    with _guard("Could not convert zip archive"):
        with zipfile.ZipFile(zip_file) as zr, _open_writer(fileobj) as tar:
            for member in sorted(zr.infolist(), key=lambda m: m.filename):
                name = _normalize_name(member.filename)
                if not name:
                    continue

                mode = member.external_attr >> 16
                perm = stat.S_IMODE(mode)

                if member.is_dir():
                    tar.addfile(_header(name, tarfile.DIRTYPE, perm or 0o755))
                elif stat.S_ISLNK(mode):
                    target = zr.read(member).decode("utf8")
                    tar.addfile(_header(name, tarfile.SYMTYPE, perm or 0o777,
                                        linkname=target))
                else:
                    info = _header(name, tarfile.REGTYPE,
                                   perm or PAYLOAD_MODE, member.file_size)
                    with zr.open(member) as data:
                        tar.addfile(info, data)

                log.debug("Tar: converted zip member %s", name)


def extract_archive(dst: str, fileobj, compressed: bool = True) -> None:
    """Reconstruct the tree stored in a tar stream below `dst`.

    Entries are handled one at a time. Existing directories are reused,
    existing files are truncated and existing links replaced. Entries of an
    unknown type are logged and skipped. Entries extracted before an error
    are left on disk.

    Args:
        dst: Destination directory, created if missing.
        fileobj: Readable object of the archive.
        compressed (bool, optional): Whether the stream is gzip compressed.
            Defaults to ``True``.

    Raises:
        ArchiveError: On any read or filesystem error, or on entries whose
            name would land outside of `dst`.
    """
    mode = "r|gz" if compressed else "r|"

    with _guard("Unable to extract archive into {0!r}".format(dst)):
        os.makedirs(dst, exist_ok=True)

        with tarfile.open(fileobj=fileobj, mode=mode) as tar:
            for member in tar:
                target = _target_path(dst, member.name)

                if member.isdir():
                    os.makedirs(target, exist_ok=True)

                elif member.isreg():
                    os.makedirs(os.path.dirname(target), exist_ok=True)
                    if os.path.islink(target):
                        os.remove(target)
                    source = tar.extractfile(member)
                    with open(target, "wb") as f:
                        shutil.copyfileobj(source, f, COPY_BUFSIZE)
                    os.chmod(target, stat.S_IMODE(member.mode))

                elif member.issym():
                    os.makedirs(os.path.dirname(target), exist_ok=True)
                    if os.path.lexists(target):
                        os.remove(target)
                    os.symlink(member.linkname, target)

                else:
                    log.warning("Tar: ignoring unknown header %r (type %r)",
                                member.name, member.type)
                    continue

                log.debug("Tar: extracted %s", member.name)


def walk_sorted(root: str, prefix: str = "") -> Iterator[Tuple[str, str]]:
    """Recursively yield ``(path, name)`` pairs below `root` in lexical order,
    where name is the POSIX path relative to `root`. Symbolic links to
    directories are not followed.
    """
    with os.scandir(root) as it:
        entries = sorted(it, key=lambda entry: entry.name)

    for entry in entries:
        name = prefix + entry.name
        yield entry.path, name

        if entry.is_dir(follow_symlinks=False):
            for item in walk_sorted(entry.path, name + "/"):
                yield item


def _fileinfo(path: str, name: str):
    """Build the header of a filesystem entry, or ``None`` for entry kinds
    that aren't archived.
    """
    st = os.lstat(path)
    perm = stat.S_IMODE(st.st_mode)

    if stat.S_ISDIR(st.st_mode):
        return _header(name, tarfile.DIRTYPE, perm)
    if stat.S_ISREG(st.st_mode):
        return _header(name, tarfile.REGTYPE, perm, st.st_size)
    if stat.S_ISLNK(st.st_mode):
        return _header(name, tarfile.SYMTYPE, perm, linkname=os.readlink(path))

    return None


def _header(name, type, mode, size=0, linkname=""):
    info = tarfile.TarInfo(name)
    info.type = type
    info.mode = mode
    info.size = size
    info.linkname = linkname
    info.mtime = ARCHIVE_MTIME
    info.uid = info.gid = 0
    info.uname = info.gname = ""
    return info


def _payload(content) -> Tuple[BinaryIO, int]:
    """Return a readable object and the size of a payload."""
    if isinstance(content, (bytes, bytearray, str)):
        data = to_bytes(bytes(content) if isinstance(content, bytearray)
                        else content)
        return io.BytesIO(data), len(data)

    if hasattr(content, "read"):
        start = content.tell()
        size = content.seek(0, io.SEEK_END) - start
        content.seek(start)
        return content, size

    raise ArchiveError("Tar: unsupported payload {0!r}".format(content))


def _normalize_name(name) -> str:
    return str(name).replace(os.sep, "/").lstrip("/")


def _target_path(dst: str, name: str) -> str:
    if os.path.normpath(name) == os.curdir:
        return dst

    target = os.path.join(dst, *name.split("/"))
    parent = os.path.dirname(os.path.normpath(target))

    if os.path.isabs(name) or not (
            os.path.realpath(parent) == os.path.realpath(dst)
            or issubdir(parent, dst)):
        raise ArchiveError("Tar: entry {0!r} is outside of {1!r}".format(
            name, dst))

    return target


def _open_writer(fileobj) -> tarfile.TarFile:
    return tarfile.open(fileobj=fileobj,
                        mode="w|",
                        format=tarfile.PAX_FORMAT,
                        copybufsize=COPY_BUFSIZE)


@contextmanager
def _guard(message):
    """Turn read and filesystem errors into :class:`ArchiveError`, leaving
    errors of the staging writer untouched.
    """
    try:
        yield
    except (ArchiveError, StagingError):
        raise
    except (OSError, EOFError, tarfile.TarError, zipfile.BadZipFile,
            zlib.error) as exc:
        raise ArchiveError("{0}: {1}".format(message, exc)) from exc
