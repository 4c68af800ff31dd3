# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

import sys

from vcenv.common import (
    ExecutionError,
    ResolutionError,
    VcenvException,
    __version__,
)
from vcenv.environ import MemoryEnvironment, ProcessEnvironment
from vcenv.importer import ImportResult, import_environment
from vcenv.toolchain import (
    ResolvedToolchain,
    import_toolchain_environment,
    register_locator,
    resolve,
)

MIN_SUPPORTED_PYTHON = (3, 10)

if sys.version_info < MIN_SUPPORTED_PYTHON:
    raise RuntimeError("vcenv requires Python 3.10 or newer.")


__all__ = [
    "ExecutionError",
    "ImportResult",
    "MemoryEnvironment",
    "ProcessEnvironment",
    "ResolutionError",
    "ResolvedToolchain",
    "VcenvException",
    "__version__",
    "import_environment",
    "import_toolchain_environment",
    "register_locator",
    "resolve",
]
