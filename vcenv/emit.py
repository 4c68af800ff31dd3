# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Render imported variables so a parent shell can pick them up.
"""
from __future__ import annotations

import argparse
import json
import logging
import re
import shlex
import sys
from typing import IO, TYPE_CHECKING, Callable, Mapping, Optional

from .common import WIN32

if TYPE_CHECKING:
    from .importer import ImportResult

FORMATS = ("sh", "cmd", "powershell", "json")

_PS_BARE_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def default_format() -> str:
    """
    Return the output format native to the platform.
    """
    if sys.platform == WIN32:
        return "cmd"
    return "sh"


def format_sh(variables: Mapping[str, str]) -> str:
    script = ""
    for k, v in variables.items():
        script += f"export {k}={shlex.quote(v)}\n"
    return script


def format_cmd(variables: Mapping[str, str]) -> str:
    script = ""
    for k, v in variables.items():
        script += f'set "{k}={v}"\n'
    return script


def format_powershell(variables: Mapping[str, str]) -> str:
    script = ""
    for k, v in variables.items():
        value = v.replace("'", "''")
        if _PS_BARE_NAME.match(k):
            script += f"$env:{k} = '{value}'\n"
        else:
            script += f"${{env:{k}}} = '{value}'\n"
    return script


def format_json(variables: Mapping[str, str]) -> str:
    return json.dumps(dict(variables), indent=2) + "\n"


FORMATTERS: dict[str, Callable[[Mapping[str, str]], str]] = {
    "sh": format_sh,
    "cmd": format_cmd,
    "powershell": format_powershell,
    "json": format_json,
}


def render(variables: Mapping[str, str], fmt: str) -> str:
    """
    Render variables in the requested format.

    :param variables: The variables to render
    :type variables: dict
    :param fmt: One of ``sh``, ``cmd``, ``powershell`` or ``json``
    :type fmt: str

    :rtype: str
    """
    try:
        formatter = FORMATTERS[fmt]
    except KeyError:
        raise ValueError(f"Unknown output format {fmt}") from None
    return formatter(variables)


def write_result(
    result: "ImportResult",
    fmt: str,
    show_all: bool = False,
    stream: Optional[IO[str]] = None,
) -> None:
    """
    Write the outcome of an import to a stream.

    Only added and changed variables are written unless *show_all* is set.
    """
    if stream is None:
        stream = sys.stdout
    if show_all:
        variables = dict(result.applied)
    else:
        variables = result.changes()
    stream.write(render(variables, fmt))
    stream.flush()


def add_output_arguments(subparser: argparse.ArgumentParser) -> None:
    """
    Add the output and logging options shared by the commands.

    :param subparser: The parser of the command
    :type subparser: argparse.ArgumentParser
    """
    subparser.add_argument(
        "--format",
        default=default_format(),
        choices=FORMATS,
        type=str,
        help="How variables are written to stdout [default: %(default)s]",
    )
    subparser.add_argument(
        "--all",
        default=False,
        action="store_true",
        help="Write every imported variable, not only added and changed ones",
    )
    subparser.add_argument(
        "--log-level",
        default="warning",
        choices=("debug", "info", "warning", "error", "critical"),
        type=str.lower,
        help="Log level [default: %(default)s]",
    )


def configure_logging(log_level: str = "warning") -> None:
    """
    Send log records to stderr at the requested level.
    """
    level = logging.getLevelName(log_level.upper())
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
