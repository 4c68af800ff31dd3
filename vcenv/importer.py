# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Import the environment a command leaves behind into the current process.
"""
from __future__ import annotations

import argparse
import functools
import logging
import re
import sys
from typing import Callable, Iterable, Mapping, Optional, Sequence, Union

from .common import WIN32, ExecutionError, VcenvException, capture
from .emit import add_output_arguments, configure_logging, write_result
from .environ import EnvironmentStore, ProcessEnvironment, snapshot
from .shell import Shell, platform_shell

log = logging.getLogger(__name__)

# One variable per line, the name runs up to the first "=".
DUMP_LINE = re.compile(r"^([^=\r\n]+)=(.*)$", re.MULTILINE)

Runner = Callable[[Union[str, Sequence[str]], Mapping[str, str]], str]


class ImportResult:
    """
    What an import did to an environment store.

    :param applied: Every entry written to the store, in dump order
    :type applied: list
    :param added: Variables that did not exist before
    :type added: dict
    :param changed: Variables whose value changed, mapped to ``(old, new)``
    :type changed: dict
    :param removed: Variables that existed before but are missing from the
        dump, they are left untouched in the store
    :type removed: list
    """

    def __init__(
        self,
        applied: list[tuple[str, str]],
        added: dict[str, str],
        changed: dict[str, tuple[str, str]],
        removed: list[str],
    ) -> None:
        self.applied = applied
        self.added = added
        self.changed = changed
        self.removed = removed

    @property
    def count(self) -> int:
        """
        Number of variables set.
        """
        return len(self.applied)

    def changes(self) -> dict[str, str]:
        """
        Added and changed variables mapped to their new values.
        """
        result = dict(self.added)
        for name, (_, new) in self.changed.items():
            result[name] = new
        return result

    def __len__(self) -> int:
        return self.count

    def __repr__(self) -> str:
        return (
            f"ImportResult(count={self.count}, added={len(self.added)}, "
            f"changed={len(self.changed)}, removed={len(self.removed)})"
        )


def parse_dump(text: str) -> list[tuple[str, str]]:
    """
    Parse the output of an environment dump.

    Lines that do not look like ``name=value`` are skipped.

    :param text: The captured dump
    :type text: str

    :return: The (name, value) pairs in the order they appear
    :rtype: list
    """
    entries = []
    for match in DUMP_LINE.finditer(text):
        name, value = match.group(1), match.group(2)
        if value.endswith("\r"):
            value = value[:-1]
        entries.append((name, value))
    if log.isEnabledFor(logging.DEBUG):
        for line in text.splitlines():
            if line.strip() and not DUMP_LINE.match(line):
                log.debug("Skipping dump line: %r", line)
    return entries


def _fold(name: str) -> str:
    # Variable names are case insensitive on Windows
    if sys.platform == WIN32:
        return name.upper()
    return name


def apply_entries(
    entries: Iterable[tuple[str, str]],
    store: EnvironmentStore,
    before: Optional[Mapping[str, str]] = None,
) -> ImportResult:
    """
    Write entries into a store and work out what changed.

    Every entry is written, including ones whose value did not change, so
    applying the same entries twice leaves the store as it was after the
    first time. On Windows a name is written under the spelling the store
    already holds it with.

    :param entries: The (name, value) pairs to write
    :type entries: list
    :param store: The store to write to
    :type store: ``vcenv.environ.EnvironmentStore``
    :param before: The store's contents before the command ran, defaults to
        a snapshot taken now
    :type before: dict

    :return: The applied entries and the differences to *before*
    :rtype: ``vcenv.importer.ImportResult``
    """
    if before is None:
        before = snapshot(store)
    # Existing spelling of each name, writes go back under it
    keys = {_fold(name): name for name in snapshot(store)}
    applied: list[tuple[str, str]] = []
    added: dict[str, str] = {}
    changed: dict[str, tuple[str, str]] = {}
    for name, value in entries:
        name = keys.setdefault(_fold(name), name)
        old = store.get(name)
        store.set(name, value)
        applied.append((name, value))
        if name in added or old is None:
            added[name] = value
        elif old != value:
            first = changed.pop(name, (old, value))[0]
            if first != value:
                changed[name] = (first, value)
        log.debug("Set %s=%s", name, value)
    seen = {_fold(name) for name, _ in applied}
    removed = [name for name in before if _fold(name) not in seen]
    return ImportResult(applied, added, changed, removed)


def import_environment(
    command: str,
    parameters: Sequence[str] = (),
    store: Optional[EnvironmentStore] = None,
    shell: Optional[Shell] = None,
    runner: Optional[Runner] = None,
) -> ImportResult:
    """
    Run a command and import the environment it leaves behind.

    The command runs in a subordinate shell that dumps its environment once
    the command succeeds. Each variable found in the dump is written to the
    store. Variables the command removed are reported but not cleared.

    :param command: The executable or script to run
    :type command: str
    :param parameters: Arguments passed to the command
    :type parameters: list
    :param store: Where the variables are written, defaults to the process
        environment
    :type store: ``vcenv.environ.EnvironmentStore``
    :param shell: The subordinate shell, defaults to the platform's shell
    :type shell: ``vcenv.shell.Shell``
    :param runner: Callable running the shell and returning its output,
        defaults to ``vcenv.common.capture`` decoding with the shell's encoding
    :type runner: callable

    :return: What the import changed
    :rtype: ``vcenv.importer.ImportResult``

    :raises ExecutionError: If the shell can not be run, fails, or produces
        no environment dump
    """
    if store is None:
        store = ProcessEnvironment()
    if shell is None:
        shell = platform_shell()
    if runner is None:
        runner = functools.partial(capture, encoding=shell.encoding)
    line = shell.compose(command, parameters)
    log.debug("Composite %s command line: %s", shell.name, line)
    before = snapshot(store)
    try:
        output = runner(shell.argv(line), before)
    except OSError as exc:
        raise ExecutionError(f"Unable to run '{command}': {exc}") from exc
    entries = parse_dump(output)
    if not entries:
        raise ExecutionError(f"Running '{command}' produced no environment dump")
    result = apply_entries(entries, store, before)
    log.info(
        "Imported %d variables from %s (%d added, %d changed)",
        result.count,
        command,
        len(result.added),
        len(result.changed),
    )
    return result


def setup_parser(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> None:
    """
    Setup the subparser for the ``import`` command.

    :param subparsers: The subparsers object returned from ``add_subparsers``
    :type subparsers: argparse._SubParsersAction
    """
    subparser = subparsers.add_parser(
        "import",
        description=(
            "Run a command in a subordinate shell and print the environment "
            "variables it sets."
        ),
    )
    subparser.set_defaults(func=main)
    subparser.add_argument("command", help="The command or script to run")
    subparser.add_argument(
        "parameters",
        nargs=argparse.REMAINDER,
        help="Arguments passed to the command",
    )
    add_output_arguments(subparser)


def main(args: argparse.Namespace) -> None:
    """
    The entrypoint into the ``vcenv import`` command.

    :param args: The args passed to the command
    :type args: argparse.Namespace
    """
    configure_logging(args.log_level)
    try:
        result = import_environment(args.command, args.parameters)
    except VcenvException as exc:
        log.error("%s", exc)
        sys.exit(1)
    write_result(result, args.format, show_all=args.all)
    sys.exit(0)
