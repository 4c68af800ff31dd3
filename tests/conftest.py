# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
#
from __future__ import annotations

import logging
from typing import Iterator

import pytest

import vcenv.toolchain
from vcenv.environ import MemoryEnvironment
from tests._pytest_typing import fixture

# mypy: ignore-errors


log = logging.getLogger(__name__)

VS_ROOT_VARIABLES = tuple(_.root_env for _ in vcenv.toolchain.VERSIONS)


@fixture(autouse=True)
def restore_locators() -> Iterator[None]:
    saved = list(vcenv.toolchain._locators)
    try:
        yield
    finally:
        vcenv.toolchain._locators[:] = saved


@fixture
def clean_environ(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """
    Remove every Visual Studio root variable from the process environment.
    """
    for name in VS_ROOT_VARIABLES:
        monkeypatch.delenv(name, raising=False)
    yield


@fixture
def store() -> Iterator[MemoryEnvironment]:
    yield MemoryEnvironment({"PROCESSOR_ARCHITECTURE": "AMD64"})
