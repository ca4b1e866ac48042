# -*- coding: utf-8 -*-

import hashlib
import os
import zipfile

import pytest

from hashstage import HashStage, cli


@pytest.fixture
def storepath(tmpdir):
    return tmpdir.join("store")


@pytest.fixture
def run(storepath, tmpdir, monkeypatch):
    staging = tmpdir.mkdir("staging")
    monkeypatch.delenv("HASHSTAGE_STORE_URL", raising=False)

    def run(*args):
        return cli.main(["--store", "osfs://" + str(storepath),
                         "--tempdir", str(staging)] + list(args))

    return run


@pytest.fixture
def files(tmpdir):
    src = tmpdir.mkdir("src")
    src.join("x").write_binary(b"1")
    src.join("y").write_binary(b"22")
    return src


def test_cli_put(run, files, storepath, capsys):
    assert run("put", str(files.join("x")), str(files.join("y"))) == 0

    out = capsys.readouterr().out.splitlines()

    assert len(out) == 2
    assert out[0].startswith("uploaded") and out[0].endswith(": x")
    assert out[1].startswith("uploaded") and out[1].endswith(": y")
    assert storepath.join("blob", hashlib.sha256(b"1").hexdigest()
                          + ".gz").check(file=1)

    assert run("put", str(files.join("x"))) == 0
    assert capsys.readouterr().out.startswith("skipped")


def test_cli_put_missing(run, files, capsys):
    assert run("put", str(files.join("x")), str(files.join("missing"))) == 1

    out = capsys.readouterr().out.splitlines()

    assert out[0].startswith("uploaded")
    assert out[1].startswith("error: missing")


def test_cli_put_dir_and_extract(run, files, tmpdir, capsys):
    assert run("put-dir", str(files)) == 0
    assert capsys.readouterr().out.endswith(": src\n")

    stage = HashStage("osfs://" + str(tmpdir.join("store")))
    key = next(iter(stage.store.keys()))
    hexdigest = key[len("blob/"):-len(".gz")]

    dst = tmpdir.join("restored")
    assert run("extract", hexdigest, str(dst)) == 0

    assert sorted(os.listdir(str(dst))) == ["x", "y"]
    assert dst.join("y").read_binary() == b"22"


def test_cli_put_archive(run, files, capsys):
    assert run("put-archive", "--reference", "batch",
               str(files.join("x")), str(files.join("y"))) == 0

    out = capsys.readouterr().out.splitlines()

    assert len(out) == 1
    assert out[0].endswith(": batch")


def test_cli_put_zip(run, tmpdir, capsys):
    path = tmpdir.join("upload.zip")
    with zipfile.ZipFile(str(path), "w") as zf:
        zf.writestr("x", b"1")

    assert run("put-zip", str(path)) == 0
    assert capsys.readouterr().out.endswith(": upload.zip\n")


def test_cli_get(run, files, tmpdir, capsys):
    assert run("put", str(files.join("y"))) == 0

    out = tmpdir.join("out")
    assert run("get", hashlib.sha256(b"22").hexdigest(), str(out)) == 0
    assert out.read_binary() == b"22"


def test_cli_get_missing(run, tmpdir, capsys):
    out = tmpdir.join("out")

    assert run("get", hashlib.sha256(b"nope").hexdigest(), str(out)) == 1
    assert "error:" in capsys.readouterr().err


def test_cli_no_store(monkeypatch, capsys):
    for name in ("HASHSTAGE_STORE_URL", "S3_BUCKET"):
        monkeypatch.delenv(name, raising=False)

    assert cli.main(["put", "whatever"]) == 1
    assert "No object store configured" in capsys.readouterr().err
