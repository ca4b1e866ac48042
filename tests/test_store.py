# -*- coding: utf-8 -*-

import fs.errors
import pytest
from fs.memoryfs import MemoryFS

from hashstage import FSObjectStore, StoreConfig
from hashstage.errors import DedupLookupError, StoreError, UploadError
from hashstage.store import META_SUFFIX, open_store
from hashstage.utils import blob_key, load_fs


class UnreachableFS(MemoryFS):
    def getinfo(self, path, namespaces=None):
        raise fs.errors.RemoteConnectionError(msg="connection refused")

    def remove(self, path):
        raise fs.errors.RemoteConnectionError(msg="connection refused")

    def openbin(self, path, mode="r", buffering=-1, **options):
        raise fs.errors.RemoteConnectionError(msg="connection refused")


class StuckFoldersFS(MemoryFS):
    def removedir(self, path):
        raise fs.errors.RemoteConnectionError(msg="connection refused")


class ReadOnlyFS(MemoryFS):
    def upload(self, path, file, chunk_size=None, **options):
        raise fs.errors.ResourceReadOnly(path)


@pytest.fixture
def store():
    return FSObjectStore(MemoryFS())


@pytest.fixture
def localfile(tmpdir):
    path = tmpdir.join("local.gz")
    path.write_binary(b"compressed bytes")
    return str(path)


def test_store_put(store, localfile):
    store.put("blob/abc.gz", localfile, {"reference": "a.txt"})

    assert "blob/abc.gz" in store
    assert store.exists_and_stat("blob/abc.gz") == (True, 16)
    assert store.metadata("blob/abc.gz") == {"reference": "a.txt"}
    assert list(store.keys()) == ["blob/abc.gz"]

    with store.openbin("blob/abc.gz") as f:
        assert f.read() == b"compressed bytes"


def test_store_missing(store):
    assert store.exists_and_stat("blob/missing.gz") == (False, 0)
    assert store.metadata("blob/missing.gz") == {}
    assert "blob/missing.gz" not in store

    with pytest.raises(IOError):
        store.openbin("blob/missing.gz")


def test_store_stat_directory(store):
    store.fs.makedirs("blob/dir")

    with pytest.raises(DedupLookupError):
        store.exists_and_stat("blob/dir")


def test_store_stat_backend_error():
    store = FSObjectStore(UnreachableFS())

    with pytest.raises(DedupLookupError) as excinfo:
        store.exists_and_stat("blob/abc.gz")

    assert excinfo.value.key == "blob/abc.gz"


def test_store_put_error(localfile):
    store = FSObjectStore(ReadOnlyFS())

    with pytest.raises(UploadError):
        store.put("blob/abc.gz", localfile, {})


def test_store_put_missing_file(store, tmpdir):
    with pytest.raises(UploadError):
        store.put("blob/abc.gz", str(tmpdir.join("missing")), {})


def test_store_delete(store, localfile):
    store.put("blob/abc.gz", localfile, {"reference": "a.txt"})
    store.delete("blob/abc.gz")

    assert "blob/abc.gz" not in store
    assert not store.fs.exists("blob/abc.gz" + META_SUFFIX)
    assert not store.fs.exists("blob")


def test_store_delete_keeps_other_objects(store, localfile):
    store.put("blob/abc.gz", localfile, {})
    store.put("blob/def.gz", localfile, {})
    store.delete("blob/abc.gz")

    assert list(store.keys()) == ["blob/def.gz"]


def test_store_delete_missing(store):
    store.delete("blob/missing.gz")


def test_store_delete_error():
    store = FSObjectStore(UnreachableFS())

    with pytest.raises(StoreError):
        store.delete("blob/abc.gz")


def test_store_delete_prune_error(localfile):
    store = FSObjectStore(StuckFoldersFS())
    store.put("blob/abc.gz", localfile, {})

    with pytest.raises(StoreError) as excinfo:
        store.delete("blob/abc.gz")

    assert excinfo.value.key == "blob/abc.gz"
    assert "blob/abc.gz" not in store


def test_store_metadata_corrupt(store, localfile):
    store.put("blob/abc.gz", localfile, {})
    store.fs.writetext("blob/abc.gz" + META_SUFFIX, u"{not json")

    with pytest.raises(StoreError):
        store.metadata("blob/abc.gz")


def test_store_metadata_backend_error():
    store = FSObjectStore(UnreachableFS())

    with pytest.raises(StoreError):
        store.metadata("blob/abc.gz")


def test_store_from_url():
    store = FSObjectStore("mem://")

    assert isinstance(store.fs, MemoryFS)


def test_load_fs(tmpdir):
    memfs = MemoryFS()

    assert load_fs(memfs) is memfs
    assert load_fs("osfs://" + str(tmpdir.join("created"))).exists("/")
    assert tmpdir.join("created").check(dir=1)


@pytest.mark.parametrize("args,expected", [
    (("abc",), "blob/abc"),
    (("ABC", "blob", ".gz"), "blob/abc.gz"),
    (("abc", "blob/", "gz"), "blob/abc.gz"),
    (("abc", "", ""), "abc"),
    (("abc", "ns/blob", ".tar.gz"), "ns/blob/abc.tar.gz"),
])
def test_blob_key(args, expected):
    assert blob_key(*args) == expected


def test_config_from_env_url():
    config = StoreConfig.from_env({"HASHSTAGE_STORE_URL": "mem://"})

    assert config.url == "mem://"
    assert config.fs_url() == "mem://"
    assert isinstance(open_store(config).fs, MemoryFS)


def test_config_from_env_s3():
    config = StoreConfig.from_env({
        "S3_KEY": "key",
        "S3_SECRET": "se/cret",
        "S3_BUCKET": "bucket",
        "S3_ENDPOINT": "minio.local:9000",
        "S3_LOCATION": "eu-west-1",
    })

    assert config.ssl
    assert config.fs_url() == (
        "s3://key:se%2Fcret@bucket"
        "?endpoint_url=https%3A%2F%2Fminio.local%3A9000&region=eu-west-1")
    assert "se/cret" not in repr(config)


def test_config_ssl_disabled():
    config = StoreConfig.from_env({"S3_BUCKET": "bucket",
                                   "S3_ENDPOINT": "minio.local",
                                   "S3_SSL": "false"})

    assert not config.ssl
    assert config.fs_url() == (
        "s3://bucket?endpoint_url=http%3A%2F%2Fminio.local")


def test_config_missing():
    with pytest.raises(ValueError):
        StoreConfig.from_env({}).fs_url()


def test_open_store_error():
    with pytest.raises(StoreError):
        open_store(StoreConfig(url="nosuchproto://somewhere"))
