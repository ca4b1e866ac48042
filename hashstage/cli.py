# -*- coding: utf-8 -*-
"""Command line interface of hashstage.

The object store is read from ``HASHSTAGE_STORE_URL`` or the ``S3_*``
environment variables, see :meth:`hashstage.StoreConfig.from_env`.
"""

import argparse
import logging
import os
import sys
from contextlib import ExitStack
from typing import List, Optional, Sequence

from .errors import HashStageError
from .stage import HashStage, Outcome
from .store import StoreConfig

log = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hashstage",
        description="Upload files and directories as content-addressed "
                    "blobs.")
    parser.add_argument("--store",
                        help="FS URL of the object store, overrides the "
                             "environment")
    parser.add_argument("--prefix", default="blob",
                        help="namespace of blob keys (default: %(default)s)")
    parser.add_argument("--tempdir", help="directory for staging files")
    parser.add_argument("--log-level", default="WARNING",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])

    commands = parser.add_subparsers(dest="command", required=True)

    put = commands.add_parser("put", help="upload each file as its own blob")
    put.add_argument("files", nargs="+")

    put_dir = commands.add_parser("put-dir",
                                  help="upload a directory as one blob")
    put_dir.add_argument("directory")

    put_archive = commands.add_parser(
        "put-archive", help="upload files together as one directory blob")
    put_archive.add_argument("files", nargs="+")
    put_archive.add_argument("--reference", default="")

    put_zip = commands.add_parser("put-zip",
                                  help="upload a zip file as a directory blob")
    put_zip.add_argument("zipfile")

    get = commands.add_parser("get", help="download a single file blob")
    get.add_argument("hexdigest")
    get.add_argument("output")

    extract = commands.add_parser("extract",
                                  help="extract a directory blob")
    extract.add_argument("hexdigest")
    extract.add_argument("destination")

    return parser


def run(stage: HashStage, args: argparse.Namespace) -> List[Outcome]:
    """Execute the command of `args` and return the outcome of each item."""
    if args.command == "put":
        return stage.put_many((os.path.basename(path), path)
                              for path in args.files)

    if args.command == "get":
        with open(args.output, "wb") as f:
            stage.get(args.hexdigest, f)
        return []

    if args.command == "extract":
        stage.extract(args.hexdigest, args.destination)
        return []

    if args.command == "put-dir":
        def handle():
            return stage.put_dir(args.directory)
        reference = os.path.basename(os.path.normpath(args.directory))
    elif args.command == "put-archive":
        def handle():
            with ExitStack() as stack:
                payloads = [(os.path.basename(path),
                             stack.enter_context(open(path, "rb")))
                            for path in args.files]
                return stage.put_archive(payloads, args.reference)
        reference = args.reference
    else:
        def handle():
            return stage.put_zip(args.zipfile)
        reference = os.path.basename(args.zipfile)

    try:
        return [handle()]
    except (HashStageError, ValueError, OSError) as exc:
        log.error("Failed to process %r: %s", reference, exc)
        return [Outcome.failed(reference, exc)]


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    config = StoreConfig.from_env()
    if args.store:
        config = config._replace(url=args.store)

    try:
        stage = HashStage.from_config(config,
                                      prefix=args.prefix,
                                      tempdir=args.tempdir)
        outcomes = run(stage, args)
    except (HashStageError, ValueError, OSError) as exc:
        print("error: {0}".format(exc), file=sys.stderr)
        return 1

    for outcome in outcomes:
        print(outcome)

    return 1 if any(not outcome.ok for outcome in outcomes) else 0


if __name__ == "__main__":
    sys.exit(main())
