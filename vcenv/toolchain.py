# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Locate a Visual C++ toolchain and import the environment of its setup script.
"""
from __future__ import annotations

import argparse
import functools
import logging
import ntpath
import os
import pathlib
import subprocess
import sys
from typing import Optional, Protocol, Sequence

from .common import (
    VSWHERE_ENV,
    ExecutionError,
    ResolutionError,
    VcenvException,
    capture,
    is_64bit_os,
)
from .emit import add_output_arguments, configure_logging, write_result
from .environ import EnvironmentStore, ProcessEnvironment, snapshot
from .importer import ImportResult, Runner, import_environment
from .shell import Shell

log = logging.getLogger(__name__)

# Relative to the Common7\Tools directory a VS<NNN>COMNTOOLS variable points at
LEGACY_SCRIPT = ("..", "..", "VC", "vcvarsall.bat")
# Relative to the installation root reported by vswhere
MODERN_SCRIPT = ("VC", "Auxiliary", "Build", "vcvarsall.bat")

VC_TOOLS_COMPONENT = "Microsoft.VisualStudio.Component.VC.Tools.x86.x64"


class ToolchainVersion:
    """
    One Visual Studio release.

    :param year: The product year, e.g. ``2015``
    :type year: str
    :param version: The internal version, e.g. ``14.0``
    :type version: str
    :param root_env: The variable holding the toolchain root, ``None`` for
        releases that have to be discovered
    :type root_env: str
    :param script: Path of the setup script relative to the root
    :type script: tuple
    """

    def __init__(
        self,
        year: str,
        version: str,
        root_env: Optional[str] = None,
        script: Sequence[str] = LEGACY_SCRIPT,
    ) -> None:
        self.year = year
        self.version = version
        self.root_env = root_env
        self.script = tuple(script)

    @property
    def major(self) -> int:
        return int(self.version.split(".", 1)[0])

    @property
    def names(self) -> set[str]:
        """
        Every spelling this release is selected by, lower case.
        """
        return {
            self.year,
            f"vs{self.year}",
            self.version,
            str(self.major),
            self.version.replace(".", ""),
        }

    def matches(self, token: str) -> bool:
        return normalize_version(token) in self.names

    def setup_script(self, root: str) -> pathlib.PureWindowsPath:
        """
        Join a toolchain root with the relative path of the setup script.
        """
        return pathlib.PureWindowsPath(root, *self.script)

    def __repr__(self) -> str:
        return f"ToolchainVersion({self.year!r}, {self.version!r})"


# Newest first, the order installations are searched in.
VERSIONS = (
    ToolchainVersion("2015", "14.0", "VS140COMNTOOLS"),
    ToolchainVersion("2013", "12.0", "VS120COMNTOOLS"),
    ToolchainVersion("2012", "11.0", "VS110COMNTOOLS"),
    ToolchainVersion("2010", "10.0", "VS100COMNTOOLS"),
    ToolchainVersion("2008", "9.0", "VS90COMNTOOLS"),
)

DISCOVERED_VERSIONS = (
    ToolchainVersion("2022", "17.0", script=MODERN_SCRIPT),
    ToolchainVersion("2019", "16.0", script=MODERN_SCRIPT),
    ToolchainVersion("2017", "15.0", script=MODERN_SCRIPT),
)

ARCHES = ("x86", "amd64", "arm", "arm64")

ARCH_ALIASES = {
    "x64": "amd64",
    "win64": "amd64",
    "x86_64": "amd64",
    "em64t": "amd64",
    "win32": "x86",
    "i386": "x86",
    "i686": "x86",
    "ia32": "x86",
    "aarch64": "arm64",
}


def normalize_version(token: str) -> str:
    return str(token).strip().lower()


def find_version(token: str) -> Optional[ToolchainVersion]:
    """
    Look a version selector up in the fixed table.
    """
    for version in VERSIONS:
        if version.matches(token):
            return version
    return None


def canonical_arch(token: str) -> str:
    """
    Map an architecture name or alias to the token ``vcvarsall.bat`` expects.

    :raises ResolutionError: If the architecture is unknown
    """
    name = str(token).strip().lower()
    if name in ARCHES:
        return name
    if name in ARCH_ALIASES:
        return ARCH_ALIASES[name]
    raise ResolutionError(f"Unknown architecture {token}")


def native_arch(store: Optional[EnvironmentStore] = None) -> str:
    """
    Return ``amd64`` on a 64 bit operating system, ``x86`` otherwise.
    """
    environ = None if store is None else snapshot(store)
    if is_64bit_os(environ):
        return "amd64"
    return "x86"


def resolve_platform(
    host_arch: Optional[str] = None,
    target_arch: Optional[str] = None,
    store: Optional[EnvironmentStore] = None,
) -> str:
    """
    Work out the platform argument passed to the setup script.

    A combined selector such as ``x86_amd64`` may be given as *host_arch*
    with no *target_arch*.

    :param host_arch: The architecture the compiler runs on
    :type host_arch: str
    :param target_arch: The architecture the compiler builds for
    :type target_arch: str
    :param store: The environment used to detect the native architecture
    :type store: ``vcenv.environ.EnvironmentStore``

    :return: ``host`` when both are the same, ``host_target`` otherwise
    :rtype: str

    :raises ResolutionError: If an architecture is unknown
    """
    if host_arch and not target_arch:
        name = host_arch.strip().lower()
        if "_" in name and name not in ARCH_ALIASES:
            host_arch, target_arch = name.split("_", 1)
    if host_arch:
        host = canonical_arch(host_arch)
    else:
        host = native_arch(store)
    if not target_arch:
        return host
    target = canonical_arch(target_arch)
    if host == target:
        return host
    return f"{host}_{target}"


class Locator(Protocol):
    """Protocol for finding releases outside the fixed version table."""

    def locate(self, token: str) -> Optional[ToolchainVersion]:
        """Return the release *token* selects, or None when not handled."""

    def find_root(
        self, version: ToolchainVersion, store: EnvironmentStore
    ) -> Optional[str]:
        """Return the installation root of *version*, or None when not installed."""


class VsWhereLocator:
    """
    Find Visual Studio 2017 and newer with ``vswhere.exe``.

    :param vswhere: Path to ``vswhere.exe``, by default ``VCENV_VSWHERE`` or
        the Visual Studio Installer directory
    :type vswhere: str
    :param runner: Callable running vswhere and returning its output
    :type runner: callable
    """

    versions = DISCOVERED_VERSIONS

    def __init__(
        self, vswhere: Optional[str] = None, runner: Optional[Runner] = None
    ) -> None:
        self.vswhere = vswhere
        self.runner = runner or functools.partial(capture, encoding="utf-8")

    def locate(self, token: str) -> Optional[ToolchainVersion]:
        for version in self.versions:
            if version.matches(token):
                return version
        return None

    def vswhere_path(self, store: EnvironmentStore) -> Optional[str]:
        if self.vswhere:
            return self.vswhere
        override = store.get(VSWHERE_ENV)
        if override:
            return override
        program_files = store.get("ProgramFiles(x86)") or store.get("ProgramFiles")
        if not program_files:
            return None
        return ntpath.join(
            program_files, "Microsoft Visual Studio", "Installer", "vswhere.exe"
        )

    def args(self, vswhere: str, version: ToolchainVersion) -> list[str]:
        return [
            vswhere,
            "-nologo",
            "-utf8",
            "-latest",
            "-products",
            "*",
            "-version",
            f"[{version.major}.0,{version.major + 1}.0)",
            "-requires",
            VC_TOOLS_COMPONENT,
            "-property",
            "installationPath",
        ]

    def find_root(
        self, version: ToolchainVersion, store: EnvironmentStore
    ) -> Optional[str]:
        vswhere = self.vswhere_path(store)
        if not vswhere or not os.path.isfile(vswhere):
            log.debug("vswhere not found at %s", vswhere)
            return None
        try:
            output = self.runner(self.args(vswhere, version), snapshot(store))
        except ExecutionError as exc:
            raise ResolutionError(
                f"Unable to discover Visual Studio {version.year}: {exc}"
            ) from exc
        for line in output.splitlines():
            if line.strip():
                return line.strip()
        return None

    def __repr__(self) -> str:
        return f"VsWhereLocator({self.vswhere!r})"


_locators: list[Locator] = [VsWhereLocator()]


def register_locator(locator: Locator, first: bool = False) -> None:
    """
    Add a locator consulted for versions outside the fixed table.

    :param locator: The locator to add
    :param first: Consult it before the already registered ones
    :type first: bool
    """
    if first:
        _locators.insert(0, locator)
    else:
        _locators.append(locator)


def unregister_locator(locator: Locator) -> None:
    _locators.remove(locator)


def locators() -> list[Locator]:
    return list(_locators)


def _fixed_root(version: ToolchainVersion, store: EnvironmentStore) -> Optional[str]:
    if version.root_env is None:
        return None
    return store.get(version.root_env)


def resolve_version(
    version: Optional[str] = None,
    store: Optional[EnvironmentStore] = None,
) -> tuple[ToolchainVersion, str]:
    """
    Find the release a selector refers to and where it is installed.

    Without a selector the newest release with its root variable set wins.

    :param version: The version selector
    :type version: str
    :param store: The environment holding the root variables
    :type store: ``vcenv.environ.EnvironmentStore``

    :return: The release and its root directory
    :rtype: tuple

    :raises ResolutionError: If the version is unknown or not installed
    """
    if store is None:
        store = ProcessEnvironment()
    if version is None or not str(version).strip():
        for candidate in VERSIONS:
            root = _fixed_root(candidate, store)
            if root:
                log.debug("Found Visual Studio %s in %s", candidate.year, root)
                return candidate, root
        raise ResolutionError(
            "No installation found, none of {} are set".format(
                ", ".join(str(_.root_env) for _ in VERSIONS)
            )
        )
    found = find_version(version)
    if found is not None:
        root = _fixed_root(found, store)
        if not root:
            raise ResolutionError(
                f"Unknown toolchain version {version}: {found.root_env} is not set"
            )
        return found, root
    for locator in _locators:
        found = locator.locate(version)
        if found is None:
            continue
        root = locator.find_root(found, store)
        if not root:
            raise ResolutionError(
                f"No installation found for Visual Studio {found.year}"
            )
        return found, root
    raise ResolutionError(f"Unknown toolchain version {version}")


class ResolvedToolchain:
    """
    A toolchain setup script and the platform argument it is run with.
    """

    def __init__(
        self,
        version: ToolchainVersion,
        setup_script: pathlib.PureWindowsPath,
        platform: str,
    ) -> None:
        self.version = version
        self.setup_script = setup_script
        self.platform = platform

    def verify(self) -> None:
        """
        Make sure the setup script exists.

        :raises ResolutionError: If it does not
        """
        if not os.path.isfile(str(self.setup_script)):
            raise ResolutionError(f"Setup script not found: {self.setup_script}")

    def __repr__(self) -> str:
        return (
            f"ResolvedToolchain({self.version!r}, {str(self.setup_script)!r}, "
            f"{self.platform!r})"
        )


def resolve(
    version: Optional[str] = None,
    host_arch: Optional[str] = None,
    target_arch: Optional[str] = None,
    store: Optional[EnvironmentStore] = None,
) -> ResolvedToolchain:
    """
    Resolve a toolchain selector to a setup script and platform argument.

    :param version: The Visual Studio release, newest installed when omitted
    :type version: str
    :param host_arch: The host architecture, or a combined ``host_target``
    :type host_arch: str
    :param target_arch: The target architecture
    :type target_arch: str
    :param store: The environment holding the root variables
    :type store: ``vcenv.environ.EnvironmentStore``

    :rtype: ``vcenv.toolchain.ResolvedToolchain``

    :raises ResolutionError: If the version or an architecture is unknown, or
        no installation is found
    """
    if store is None:
        store = ProcessEnvironment()
    platform = resolve_platform(host_arch, target_arch, store)
    found, root = resolve_version(version, store)
    return ResolvedToolchain(found, found.setup_script(root), platform)


def list_installed(
    store: Optional[EnvironmentStore] = None,
) -> list[tuple[ToolchainVersion, str]]:
    """
    Return every release in the fixed table whose root variable is set.
    """
    if store is None:
        store = ProcessEnvironment()
    installed = []
    for version in VERSIONS:
        root = _fixed_root(version, store)
        if root:
            installed.append((version, root))
    return installed


def import_toolchain_environment(
    version: Optional[str] = None,
    host_arch: Optional[str] = None,
    target_arch: Optional[str] = None,
    store: Optional[EnvironmentStore] = None,
    shell: Optional[Shell] = None,
    runner: Optional[Runner] = None,
) -> ImportResult:
    """
    Import the environment of a toolchain's setup script.

    Nothing is run unless the toolchain resolves and its setup script exists.

    :raises ResolutionError: If the toolchain can not be resolved
    :raises ExecutionError: If the setup script can not be run
    """
    if store is None:
        store = ProcessEnvironment()
    toolchain = resolve(version, host_arch, target_arch, store)
    toolchain.verify()
    log.info(
        "Importing Visual Studio %s environment for %s",
        toolchain.version.year,
        toolchain.platform,
    )
    return import_environment(
        str(toolchain.setup_script),
        [toolchain.platform],
        store=store,
        shell=shell,
        runner=runner,
    )


def setup_parser(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> None:
    """
    Setup the subparser for the ``toolchain`` command.

    :param subparsers: The subparsers object returned from ``add_subparsers``
    :type subparsers: argparse._SubParsersAction
    """
    subparser = subparsers.add_parser(
        "toolchain",
        description=(
            "Import a Visual C++ toolchain environment. The variables are "
            "printed, or a command given after -- runs with them."
        ),
    )
    subparser.set_defaults(func=main)
    subparser.add_argument(
        "--vs",
        default=None,
        type=str,
        help="The Visual Studio release, e.g. 2015 or 14.0 [default: newest installed]",
    )
    subparser.add_argument(
        "--host-arch",
        default=None,
        type=str,
        help=(
            "The host architecture, or a combined host_target such as x86_amd64 "
            "[default: native]"
        ),
    )
    subparser.add_argument(
        "--target-arch",
        default=None,
        type=str,
        help="The target architecture [default: the host architecture]",
    )
    subparser.add_argument(
        "--list",
        default=False,
        action="store_true",
        help="List the installed releases and exit",
    )
    add_output_arguments(subparser)
    subparser.add_argument(
        "command",
        nargs=argparse.REMAINDER,
        help="Command to run in the imported environment",
    )


def main(args: argparse.Namespace) -> None:
    """
    The entrypoint into the ``vcenv toolchain`` command.

    :param args: The args passed to the command
    :type args: argparse.Namespace
    """
    configure_logging(args.log_level)
    if args.list:
        for version, root in list_installed():
            print(f"{version.year} {version.version} {root}")
        sys.exit(0)
    try:
        result = import_toolchain_environment(args.vs, args.host_arch, args.target_arch)
    except VcenvException as exc:
        log.error("%s", exc)
        sys.exit(1)
    command = list(args.command)
    if command and command[0] == "--":
        command = command[1:]
    if command:
        sys.exit(subprocess.call(command))
    write_result(result, args.format, show_all=args.all)
    sys.exit(0)
