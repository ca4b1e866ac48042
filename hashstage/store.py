# -*- coding: utf-8 -*-
"""Object store adapter over a pyfilesystem2 filesystem, and the
configuration it is built from.
"""

import json
import logging
import os
from collections import namedtuple
from typing import Dict, Iterable, Mapping, Optional, Tuple, Union
from urllib.parse import quote, urlencode

import fs.base
import fs.errors
import fs.opener.errors
import fs.path
import fs.tools

from .errors import DedupLookupError, StoreError, UploadError
from .utils import load_fs

log = logging.getLogger(__name__)

#: Suffix of the sidecar file holding an object's metadata.
META_SUFFIX = ".meta.json"


class StoreConfig(namedtuple("StoreConfig", ["url",
                                             "key",
                                             "secret",
                                             "bucket",
                                             "endpoint",
                                             "location",
                                             "ssl"])):
    """Where blobs are stored.

    Either `url` is a pyfilesystem2 FS URL (ie ``mem://``,
    ``osfs:///srv/blobs``), or the S3 fields describe a bucket opened through
    ``fs-s3fs``. Build it once and pass it to
    :meth:`hashstage.HashStage.from_config`.
    """

    __slots__ = ()

    def __new__(cls, url=None, key=None, secret=None, bucket=None,
                endpoint=None, location=None, ssl=True):
        return super(StoreConfig, cls).__new__(
            cls, url, key, secret, bucket, endpoint, location, ssl)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None
                 ) -> "StoreConfig":
        """Read the configuration from ``HASHSTAGE_STORE_URL`` or the
        ``S3_*`` environment variables.
        """
        if environ is None:
            environ = os.environ

        return cls(
            url=environ.get("HASHSTAGE_STORE_URL") or None,
            key=environ.get("S3_KEY") or None,
            secret=environ.get("S3_SECRET") or None,
            bucket=environ.get("S3_BUCKET") or None,
            endpoint=environ.get("S3_ENDPOINT") or None,
            location=environ.get("S3_LOCATION") or None,
            ssl=environ.get("S3_SSL", "true").lower() not in ("0", "false",
                                                              "no"),
        )

    def fs_url(self) -> str:
        """Return the FS URL the store is opened with."""
        if self.url:
            return self.url

        if not self.bucket:
            raise ValueError("No object store configured: set a URL or "
                             "an S3 bucket.")

        auth = ""
        if self.key:
            auth = "{0}:{1}@".format(quote(self.key, safe=""),
                                     quote(self.secret or "", safe=""))

        params = {}
        if self.endpoint:
            scheme = "https" if self.ssl else "http"
            endpoint = self.endpoint
            if "://" not in endpoint:
                endpoint = "{0}://{1}".format(scheme, endpoint)
            params["endpoint_url"] = endpoint
        if self.location:
            params["region"] = self.location

        query = "?" + urlencode(params) if params else ""
        return "s3://{0}{1}{2}".format(auth, self.bucket, query)

    def __repr__(self):
        # Keep credentials out of logs.
        return "StoreConfig(url={0!r}, bucket={1!r}, endpoint={2!r})".format(
            self.url, self.bucket, self.endpoint)


class FSObjectStore(object):
    """Object store keyed by opaque strings, backed by any pyfilesystem2
    filesystem.

    Each object is a file at its key. Its metadata is kept next to it in a
    ``<key>.meta.json`` sidecar.

    Attributes:
        fs: Filesystem holding the objects.
    """

    def __init__(self, root: Union[fs.base.FS, str]):
        self.fs = load_fs(root)

    def exists_and_stat(self, key: str) -> Tuple[bool, int]:
        """Return whether `key` exists and the size of its object.

        Raises:
            DedupLookupError: If the backend failed to answer.
        """
        try:
            info = self.fs.getinfo(key, namespaces=["details"])
        except fs.errors.ResourceNotFound:
            return (False, 0)
        except fs.errors.FSError as exc:
            raise DedupLookupError(key, "Could not stat {0!r}: {1}".format(
                key, exc)) from exc

        if info.is_dir:
            raise DedupLookupError(key, "{0!r} is not an object".format(key))

        return (True, info.size)

    def put(self, key: str, path: str, metadata: Mapping[str, str]) -> None:
        """Upload the local file at `path` under `key` along with its
        metadata.

        Raises:
            UploadError: If the object or its metadata couldn't be written.
        """
        try:
            parent = fs.path.dirname(key)
            if parent:
                self.fs.makedirs(parent, recreate=True)
            with open(path, "rb") as f:
                self.fs.upload(key, f)
            self.fs.writetext(key + META_SUFFIX,
                              json.dumps(dict(metadata), sort_keys=True))
        except (fs.errors.FSError, OSError) as exc:
            raise UploadError(key, "Error while uploading {0!r}: {1}".format(
                key, exc)) from exc

    def openbin(self, key: str):
        """Return the object under `key` opened for reading.

        Raises:
            IOError: If there is no object under `key`.
        """
        if not self.fs.isfile(key):
            raise IOError("Could not locate object: {0}".format(key))
        return self.fs.openbin(key, "r")

    def metadata(self, key: str) -> Dict[str, str]:
        """Return the metadata stored with `key`, empty if there is none.

        Raises:
            StoreError: If the sidecar couldn't be read or decoded.
        """
        try:
            return json.loads(self.fs.readtext(key + META_SUFFIX))
        except fs.errors.ResourceNotFound:
            return {}
        except (fs.errors.FSError, ValueError) as exc:
            raise StoreError(key, "Could not read metadata of {0!r}: {1}"
                             .format(key, exc)) from exc

    def delete(self, key: str) -> None:
        """Delete the object under `key` and its metadata. Remove any empty
        directories after deleting. No exception is raised if the object
        doesn't exist.

        Raises:
            StoreError: If the backend failed to delete the object or its
                emptied folders.
        """
        for path in (key, key + META_SUFFIX):
            try:
                self.fs.remove(path)
            except fs.errors.ResourceNotFound:
                continue
            except fs.errors.FSError as exc:
                raise StoreError(key, "Could not delete {0!r}: {1}".format(
                    path, exc)) from exc

        try:
            self._remove_empty(fs.path.dirname(key))
        except fs.errors.FSError as exc:
            raise StoreError(key, "Could not prune folders of {0!r}: {1}"
                             .format(key, exc)) from exc

    def keys(self) -> Iterable[str]:
        """Return generator that yields the keys of all stored objects."""
        for path in self.fs.walk.files():
            if not path.endswith(META_SUFFIX):
                yield fs.path.relpath(path)

    def close(self):
        self.fs.close()

    def _remove_empty(self, path: str) -> None:
        """Successively remove all empty folders starting with `path` and
        proceeding "up" through the directory tree until reaching the root.
        """
        if path in ("", "/"):
            return
        try:
            fs.tools.remove_empty(self.fs, path)
        except fs.errors.ResourceNotFound:
            # Guard against paths that don't exist in the FS.
            return None

    def __contains__(self, key: str) -> bool:
        return self.fs.isfile(key)

    def __repr__(self):
        return "<FSObjectStore {0!r}>".format(self.fs)


def open_store(config: StoreConfig) -> FSObjectStore:
    """Open the object store described by `config`.

    Raises:
        StoreError: If the filesystem can't be opened, ie because the S3
            opener isn't installed.
    """
    log.debug("Opening object store %r", config)
    try:
        return FSObjectStore(config.fs_url())
    except (fs.errors.CreateFailed, fs.opener.errors.OpenerError) as exc:
        raise StoreError(None, "Could not open object store: {0}".format(
            exc)) from exc
