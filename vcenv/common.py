# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Common classes and values used around vcenv.
"""
from __future__ import annotations

import logging
import os
import platform
import subprocess
import sys
from typing import Mapping, Optional, Sequence, Union

# vcenv package version
__version__ = "0.3.1"

log = logging.getLogger(__name__)

WIN32 = "win32"

VSWHERE_ENV = "VCENV_VSWHERE"
SHELL_ENV = "VCENV_SHELL"

_64BIT_MACHINES = ("amd64", "x86_64", "arm64", "aarch64", "ia64")


class VcenvException(Exception):
    """
    Base class for exeptions generated from vcenv.
    """


class ResolutionError(VcenvException):
    """
    Raised when a toolchain version, architecture or installation can not be resolved.
    """


class ExecutionError(VcenvException):
    """
    Raised when the subordinate shell can not be run or produces no environment dump.
    """


def build_arch() -> str:
    """
    Return the current machine.
    """
    machine = platform.machine()
    return machine.lower()


def is_64bit_os(environ: Optional[Mapping[str, str]] = None) -> bool:
    """
    True when the operating system is 64 bit.

    A 32 bit interpreter on 64 bit Windows reports a 32 bit machine, the real
    architecture is then found in ``PROCESSOR_ARCHITEW6432``.

    :param environ: The environment to inspect, defaults to ``os.environ``
    :type environ: dict

    :rtype: bool
    """
    if environ is None:
        environ = os.environ
    if sys.platform == WIN32:
        wow64 = environ.get("PROCESSOR_ARCHITEW6432", "")
        if wow64:
            return wow64.lower() in _64BIT_MACHINES
        arch = environ.get("PROCESSOR_ARCHITECTURE", "")
        if arch:
            return arch.lower() in _64BIT_MACHINES
    return build_arch() in _64BIT_MACHINES


def decode_output(data: bytes, encoding: Optional[str] = None) -> str:
    """
    Decode captured output.

    Without an encoding the bytes are decoded the way the operating system
    decodes file names and environment values, so undecodable bytes survive
    being written back into the environment.
    """
    if encoding:
        return data.decode(encoding, errors="replace")
    return os.fsdecode(data)


def capture(
    args: Union[str, Sequence[str]],
    env: Optional[Mapping[str, str]] = None,
    encoding: Optional[str] = None,
) -> str:
    """
    Run a command and return its standard output.

    A string is handed to the operating system untouched, which is what
    ``cmd.exe /s /c`` needs to see its own quoting.

    :param args: The command and its arguments
    :type args: list or str
    :param env: The environment the command runs with
    :type env: dict
    :param encoding: The encoding of the command's output, see
        ``decode_output``
    :type encoding: str

    :return: The captured standard output
    :rtype: str

    :raises ExecutionError: If the command can not be started or finishes
        with a non zero exit code
    """
    if not args:
        raise ExecutionError("No command provided to capture")
    if isinstance(args, str):
        cmdline = args
        cmd: Union[str, list[str]] = args
    else:
        cmdline = " ".join(map(str, args))
        cmd = list(args)
    log.debug("Running command: %s", cmdline)
    try:
        proc = subprocess.run(
            cmd,
            env=None if env is None else dict(env),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
    except OSError as exc:
        raise ExecutionError(f"Unable to run '{cmdline}': {exc}") from exc
    if proc.returncode != 0:
        stderr = proc.stderr.decode(encoding or "utf-8", errors="replace").strip()
        raise ExecutionError(
            "Command '{}' failed with exit code {}{}".format(
                cmdline,
                proc.returncode,
                f": {stderr}" if stderr else "",
            )
        )
    return decode_output(proc.stdout, encoding)
