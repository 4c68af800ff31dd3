# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Subordinate shells used to run a command and dump the environment it leaves behind.

The composite line always has the shape::

    <command> <parameters> > <null sink> && <dump command>

The command's own output goes to the null sink so the captured output holds
nothing but the environment dump.
"""
from __future__ import annotations

import os
import shlex
import sys
from typing import Optional, Sequence, Union

from .common import SHELL_ENV, WIN32

_CMD_SPECIAL = set(" \t&|<>()^,;=%!\"")


class Shell:
    """
    Base class for subordinate shells.

    :param executable: The shell executable, when not given it is looked up
        from ``VCENV_SHELL`` and then the platform default
    :type executable: str
    """

    name = ""
    null_sink = ""
    dump_command = ""
    # Encoding of the dump, None decodes like the operating system does
    encoding: Optional[str] = None

    def __init__(self, executable: Optional[str] = None) -> None:
        self.executable = (
            executable or os.environ.get(SHELL_ENV) or self.default_executable()
        )

    def default_executable(self) -> str:
        raise NotImplementedError

    def quote(self, arg: str) -> str:
        raise NotImplementedError

    def quote_command(self, command: str) -> str:
        raise NotImplementedError

    def compose(self, command: str, parameters: Sequence[str] = ()) -> str:
        """
        Build the composite line running *command* and dumping the environment.

        :param command: The executable or script to run
        :type command: str
        :param parameters: Arguments for the command, quoted one by one
        :type parameters: list

        :return: The composite command line
        :rtype: str
        """
        parts = [self.quote_command(command)]
        parts.extend(self.quote(str(_)) for _ in parameters)
        return f"{' '.join(parts)} > {self.null_sink} && {self.dump_command}"

    def argv(self, line: str) -> Union[str, list[str]]:
        """
        Return what gets handed to the operating system to run *line*.
        """
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name}, {self.executable!r})"


class CmdShell(Shell):
    """
    Windows ``cmd.exe``.

    A batch file started from the composite line runs inside the same
    ``cmd.exe`` process, so its ``set`` statements are visible to the dump.
    """

    name = "cmd"
    null_sink = "nul"
    dump_command = "set"
    # /u makes built in commands write UTF-16 instead of the OEM code page
    encoding = "utf-16-le"

    def default_executable(self) -> str:
        return os.environ.get("COMSPEC") or "cmd.exe"

    def quote(self, arg: str) -> str:
        if not arg:
            return '""'
        if _CMD_SPECIAL.intersection(arg):
            return '"{}"'.format(arg.replace('"', '""'))
        return arg

    def quote_command(self, command: str) -> str:
        if os.path.exists(command) or _CMD_SPECIAL.intersection(command):
            return '"{}"'.format(command.strip('"'))
        return command

    def argv(self, line: str) -> str:
        # /s makes cmd.exe strip exactly the outer pair of quotes
        return '"{}" /d /u /s /c "{}"'.format(self.executable, line)


class PosixShell(Shell):
    """
    POSIX ``sh``.

    Existing files are sourced with ``.`` after their arguments are put in
    place with ``set --``, so exports made by the script reach the dump the
    same way a batch file's do under ``cmd.exe``.
    """

    name = "sh"
    null_sink = "/dev/null"
    dump_command = "env"

    def default_executable(self) -> str:
        return "/bin/sh"

    def quote(self, arg: str) -> str:
        return shlex.quote(arg)

    def quote_command(self, command: str) -> str:
        return shlex.quote(command)

    def compose(self, command: str, parameters: Sequence[str] = ()) -> str:
        if not os.path.isfile(command):
            return super().compose(command, parameters)
        positional = ["set", "--"]
        positional.extend(self.quote(str(_)) for _ in parameters)
        script = self.quote(os.path.abspath(command))
        return (
            f"{' '.join(positional)} && . {script} > {self.null_sink} "
            f"&& {self.dump_command}"
        )

    def argv(self, line: str) -> list[str]:
        return [self.executable, "-c", line]


def platform_shell(plat: Optional[str] = None) -> Shell:
    """
    Return the subordinate shell for the platform.

    :param plat: The platform, defaults to ``sys.platform``
    :type plat: str

    :rtype: ``vcenv.shell.Shell``
    """
    if not plat:
        plat = sys.platform
    if plat == WIN32:
        return CmdShell()
    return PosixShell()
