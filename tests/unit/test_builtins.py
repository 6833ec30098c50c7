"""Unit tests for the script-facing builtins."""
import os
from unittest.mock import MagicMock

import pytest

from ovas.errors import ReentrancyViolation
from ovas.toolkit.builtins import BUILTINS, ScriptBuiltins


@pytest.fixture
def builtins():
    return ScriptBuiltins()


def test_file_builtins(builtins, tmp_path):
    target = str(tmp_path / "out.txt")

    assert builtins.fwrite(data="hello", file=target) == 5
    assert builtins.fread(path=target) == b"hello"
    assert builtins.file_stat(path=target) == 5
    assert builtins.unlink(path=target) is True
    assert builtins.file_stat(path=target) is None


def test_failures_return_none(builtins, tmp_path):
    real = tmp_path / "real"
    real.write_text("x")
    link = tmp_path / "link"
    os.symlink(real, link)

    assert builtins.fread(path=str(link)) is None
    assert builtins.fread(path=str(tmp_path / "missing")) is None
    assert builtins.unlink(path=str(tmp_path / "missing")) is None
    assert builtins.pread(cmd="x", argv=["no-such-command-ovas-test"]) is None


def test_missing_arguments(builtins):
    assert builtins.fread() is None
    assert builtins.fwrite(data="x") is None
    assert builtins.unlink() is None
    assert builtins.file_stat() is None
    assert builtins.find_in_path() is None
    assert builtins.pread(cmd="echo") is None
    assert builtins.pread(cmd="echo", argv=[]) is None


def test_pread_and_find_in_path(builtins):
    assert builtins.pread(cmd="echo", argv=["echo", "hi"]) == b"hi\n"
    assert builtins.find_in_path(cmd="sh") is True
    assert builtins.find_in_path(cmd="no-such-command-ovas-test") is False


def test_reentrant_pread_returns_none():
    executor = MagicMock()
    executor.run.side_effect = ReentrancyViolation("pread is not reentrant")
    assert ScriptBuiltins(executor=executor).pread(cmd="id", argv=["id"]) is None


def test_call_by_script_name(builtins, tmp_path):
    assert builtins.call("get_tmp_dir").endswith(os.sep)
    assert set(BUILTINS) == {
        "pread", "find_in_path", "fread", "fwrite", "unlink", "file_stat", "get_tmp_dir",
    }
    with pytest.raises(KeyError):
        builtins.call("system")
