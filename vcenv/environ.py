# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Environment stores the importer reads from and writes to.
"""
from __future__ import annotations

import os
from typing import Iterator, Mapping, Optional, Protocol


class EnvironmentStore(Protocol):
    """Protocol capturing the environment operations the importer relies on."""

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Return the value of *name* or *default* when it is not set."""

    def set(self, name: str, value: str) -> None:
        """Set *name* to *value*, replacing any previous value."""

    def items(self) -> Iterator[tuple[str, str]]:
        """Iterate over every (name, value) pair in the store."""


def snapshot(store: EnvironmentStore) -> dict[str, str]:
    """
    Copy the current contents of a store.

    :param store: The store to copy
    :type store: ``vcenv.environ.EnvironmentStore``

    :return: A new mapping of every variable in the store
    :rtype: dict
    """
    return dict(store.items())


class ProcessEnvironment:
    """
    Store backed by the environment of the running process.

    Writes go through ``os.environ`` so child processes started afterwards
    inherit them.
    """

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return os.environ.get(name, default)

    def set(self, name: str, value: str) -> None:
        os.environ[name] = value

    def items(self) -> Iterator[tuple[str, str]]:
        return iter(list(os.environ.items()))

    def __repr__(self) -> str:
        return "ProcessEnvironment()"


class MemoryEnvironment:
    """
    Store kept in a plain dictionary.

    :param initial: Variables the store starts out with
    :type initial: dict
    """

    def __init__(self, initial: Optional[Mapping[str, str]] = None) -> None:
        self.data: dict[str, str] = dict(initial or {})

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.data.get(name, default)

    def set(self, name: str, value: str) -> None:
        self.data[name] = value

    def items(self) -> Iterator[tuple[str, str]]:
        return iter(list(self.data.items()))

    def __contains__(self, name: object) -> bool:
        return name in self.data

    def __len__(self) -> int:
        return len(self.data)

    def __repr__(self) -> str:
        return f"MemoryEnvironment({self.data!r})"
