# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

import os
import pathlib
from typing import Mapping, Optional, Sequence, Union
from unittest.mock import patch

import pytest

from vcenv.common import ExecutionError
from vcenv.environ import MemoryEnvironment
from vcenv.importer import ImportResult, apply_entries, import_environment, parse_dump
from vcenv.shell import CmdShell, PosixShell

DUMP = "\n".join(
    [
        "ALLUSERSPROFILE=C:\\ProgramData",
        "INCLUDE=C:\\VS\\VC\\include;",
        "EMPTY=",
        "Setting environment for using Microsoft Visual Studio",
        "=C:=C:\\Users\\build",
        "LIBPATH=a=b",
        "",
    ]
)


class FakeRunner:
    def __init__(self, output: str) -> None:
        self.output = output
        self.calls: list[tuple[Union[str, Sequence[str]], dict[str, str]]] = []
        self.encodings: list[Optional[str]] = []

    def __call__(
        self,
        argv: Union[str, Sequence[str]],
        env: Mapping[str, str],
        encoding: Optional[str] = None,
    ) -> str:
        self.calls.append((argv, dict(env)))
        self.encodings.append(encoding)
        return self.output


def test_parse_dump() -> None:
    assert parse_dump(DUMP) == [
        ("ALLUSERSPROFILE", "C:\\ProgramData"),
        ("INCLUDE", "C:\\VS\\VC\\include;"),
        ("EMPTY", ""),
        ("LIBPATH", "a=b"),
    ]


def test_parse_dump_crlf() -> None:
    assert parse_dump("FOO=1\r\nBAR=2\r\n") == [("FOO", "1"), ("BAR", "2")]


def test_parse_dump_nothing() -> None:
    assert parse_dump("") == []
    assert parse_dump("no variables here\nat all\n") == []


def test_apply_entries_reports_changes() -> None:
    store = MemoryEnvironment({"KEEP": "same", "EDIT": "old", "GONE": "x"})
    result = apply_entries(
        [("KEEP", "same"), ("EDIT", "new"), ("NEW", "1")], store
    )
    assert isinstance(result, ImportResult)
    assert result.count == 3
    assert len(result) == 3
    assert result.added == {"NEW": "1"}
    assert result.changed == {"EDIT": ("old", "new")}
    assert result.removed == ["GONE"]
    assert result.changes() == {"NEW": "1", "EDIT": "new"}
    # removed variables stay in the store
    assert store.data == {"KEEP": "same", "EDIT": "new", "GONE": "x", "NEW": "1"}


def test_apply_entries_is_idempotent() -> None:
    entries = parse_dump(DUMP)
    store = MemoryEnvironment({"INCLUDE": "old"})
    apply_entries(entries, store)
    first = dict(store.data)
    result = apply_entries(entries, store)
    assert store.data == first
    assert result.count == len(entries)
    assert result.added == {}
    assert result.changed == {}


def test_apply_entries_repeated_name_keeps_first_old_value() -> None:
    store = MemoryEnvironment({"FOO": "0"})
    result = apply_entries([("FOO", "1"), ("FOO", "2")], store)
    assert result.count == 2
    assert result.changed == {"FOO": ("0", "2")}
    assert store.get("FOO") == "2"


def test_apply_entries_value_restored_is_not_changed() -> None:
    store = MemoryEnvironment({"FOO": "0"})
    result = apply_entries([("FOO", "1"), ("FOO", "0")], store)
    assert result.changed == {}
    assert result.added == {}
    assert store.get("FOO") == "0"


def test_apply_entries_names_case_insensitive_on_windows() -> None:
    store = MemoryEnvironment({"PATH": "C:\\bin", "TEMP": "C:\\tmp"})
    with patch("vcenv.importer.sys.platform", "win32"):
        result = apply_entries(
            [("Path", "C:\\bin;C:\\VS\\bin"), ("temp", "C:\\tmp")], store
        )
    assert store.data == {"PATH": "C:\\bin;C:\\VS\\bin", "TEMP": "C:\\tmp"}
    assert result.added == {}
    assert result.changed == {"PATH": ("C:\\bin", "C:\\bin;C:\\VS\\bin")}
    assert result.removed == []
    assert result.applied == [("PATH", "C:\\bin;C:\\VS\\bin"), ("TEMP", "C:\\tmp")]


def test_apply_entries_names_case_sensitive_on_posix() -> None:
    store = MemoryEnvironment({"PATH": "/bin"})
    with patch("vcenv.importer.sys.platform", "linux"):
        result = apply_entries([("Path", "/opt/bin")], store)
    assert store.data == {"PATH": "/bin", "Path": "/opt/bin"}
    assert result.added == {"Path": "/opt/bin"}
    assert result.removed == ["PATH"]


def test_import_environment() -> None:
    store = MemoryEnvironment({"INCLUDE": "old", "PATH": "/bin"})
    runner = FakeRunner(DUMP)
    result = import_environment(
        "vcvarsall.bat", ["x86"], store=store, shell=CmdShell("cmd.exe"), runner=runner
    )
    assert result.count == 4
    assert store.get("INCLUDE") == "C:\\VS\\VC\\include;"
    assert store.get("EMPTY") == ""
    assert store.get("LIBPATH") == "a=b"
    assert result.removed == ["PATH"]
    assert store.get("PATH") == "/bin"
    argv, env = runner.calls[0]
    assert argv == '"cmd.exe" /d /u /s /c "vcvarsall.bat x86 > nul && set"'
    assert env == {"INCLUDE": "old", "PATH": "/bin"}


def test_import_environment_quotes_command_path() -> None:
    runner = FakeRunner(DUMP)
    import_environment(
        "C:\\Program Files\\tool.bat",
        ["x86"],
        store=MemoryEnvironment(),
        shell=CmdShell("cmd.exe"),
        runner=runner,
    )
    argv = runner.calls[0][0]
    assert '"C:\\Program Files\\tool.bat" x86 > nul && set' in argv


def test_import_environment_no_dump() -> None:
    store = MemoryEnvironment({"FOO": "1"})
    with pytest.raises(ExecutionError, match="no environment dump"):
        import_environment(
            "tool", store=store, shell=PosixShell("/bin/sh"), runner=FakeRunner("")
        )
    assert store.data == {"FOO": "1"}


def test_import_environment_runner_fails() -> None:
    def runner(argv, env):
        raise ExecutionError("boom")

    store = MemoryEnvironment()
    with pytest.raises(ExecutionError, match="boom"):
        import_environment("tool", store=store, shell=PosixShell("/bin/sh"), runner=runner)
    assert len(store) == 0


def test_import_environment_runner_oserror() -> None:
    def runner(argv, env):
        raise FileNotFoundError("no shell")

    with pytest.raises(ExecutionError, match="Unable to run 'tool'"):
        import_environment(
            "tool",
            store=MemoryEnvironment(),
            shell=PosixShell("/bin/sh"),
            runner=runner,
        )


def test_import_environment_defaults_to_process_environment(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("VCENV_IMPORTED", "old")
    runner = FakeRunner("VCENV_IMPORTED=new\n")
    with patch("vcenv.importer.capture", runner):
        result = import_environment("tool", shell=PosixShell("/bin/sh"))
    assert os.environ["VCENV_IMPORTED"] == "new"
    assert result.changed == {"VCENV_IMPORTED": ("old", "new")}


def test_import_environment_decodes_with_shell_encoding() -> None:
    runner = FakeRunner("FOO=1\n")
    with patch("vcenv.importer.capture", runner):
        for shell in (CmdShell("cmd.exe"), PosixShell("/bin/sh")):
            import_environment("tool", store=MemoryEnvironment(), shell=shell)
    assert runner.encodings == ["utf-16-le", None]


@pytest.mark.skip_on_windows
def test_import_environment_sources_script(tmp_path: pathlib.Path) -> None:
    script = tmp_path / "setup env.sh"
    script.write_text('echo "some noise"\nexport VCENV_GREETING="$1"\n')
    store = MemoryEnvironment({"PATH": os.environ.get("PATH", "/usr/bin:/bin")})
    result = import_environment(
        str(script), ["hello world"], store=store, shell=PosixShell("/bin/sh")
    )
    assert store.get("VCENV_GREETING") == "hello world"
    assert result.added["VCENV_GREETING"] == "hello world"
    assert all("noise" not in name for name, _ in result.applied)


@pytest.mark.skip_on_windows
def test_import_environment_command_fails() -> None:
    store = MemoryEnvironment({"PATH": os.environ.get("PATH", "/usr/bin:/bin")})
    with pytest.raises(ExecutionError):
        import_environment("false", store=store, shell=PosixShell("/bin/sh"))
    assert list(store.data) == ["PATH"]


@pytest.mark.skip_unless_on_windows
def test_import_environment_runs_batch_file(tmp_path: pathlib.Path) -> None:
    script = tmp_path / "setup env.bat"
    script.write_text("@echo some noise\n@set VCENV_GREETING=%~1\n")
    store = MemoryEnvironment(dict(os.environ))
    import_environment(str(script), ["hello"], store=store, shell=CmdShell())
    assert store.get("VCENV_GREETING") == "hello"


@pytest.mark.skip_unless_on_windows
def test_import_environment_non_ascii_value(tmp_path: pathlib.Path) -> None:
    script = tmp_path / "setup.bat"
    script.write_text("@set VCENV_OWNER=%~1\n")
    store = MemoryEnvironment(dict(os.environ))
    import_environment(str(script), ["J\u00fcrgen"], store=store, shell=CmdShell())
    assert store.get("VCENV_OWNER") == "J\u00fcrgen"
