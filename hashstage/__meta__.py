# -*- coding: utf-8 -*-
"""Define project metadata
"""

__title__ = "hashstage"
__summary__ = "Stage, compress and upload content-addressed blobs to an object store."
__url__ = ""

__version__ = "0.1.0"

__install_requires__ = ["fs>=2.4"]
__extras_require__ = {"s3": ["fs-s3fs>=1.1"]}
__tests_require__ = ["pytest", "tox"]

__author__ = "hashstage contributors"
__email__ = ""

__license__ = "MIT License"
