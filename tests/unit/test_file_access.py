"""Unit tests for the symlink-safe file primitives."""
import errno
import os
from unittest.mock import MagicMock, patch

import pytest

from ovas.errors import FileAccessError, SymlinkAttackDetected
from ovas.toolkit.file_access import FileIdentity, SecureFileAccessor


@pytest.fixture
def files():
    return SecureFileAccessor()


def test_write_then_read_returns_same_bytes(files, tmp_path):
    target = str(tmp_path / "report.bin")
    content = b"\x00\x01binary\xffpayload" * 1000

    assert files.write(target, content) == len(content)
    assert files.read(target) == content


def test_new_file_is_private(files, tmp_path):
    target = tmp_path / "secret"
    files.write(str(target), b"x")
    assert (target.stat().st_mode & 0o777) == 0o600


def test_write_truncates_existing_content(files, tmp_path):
    target = tmp_path / "notes.txt"
    target.write_bytes(b"a much longer original content")

    assert files.write(str(target), "short") == 5
    assert target.read_bytes() == b"short"


def test_read_missing_file_fails(files, tmp_path):
    with pytest.raises(FileAccessError):
        files.read(str(tmp_path / "missing"))


def test_read_through_symlink_is_refused(files, tmp_path):
    real = tmp_path / "real"
    real.write_bytes(b"do not leak")
    link = tmp_path / "link"
    os.symlink(real, link)

    with pytest.raises(SymlinkAttackDetected):
        files.read(str(link))


def test_write_through_symlink_is_refused(files, tmp_path):
    real = tmp_path / "passwd"
    real.write_bytes(b"root:x:0:0")
    link = tmp_path / "link"
    os.symlink(real, link)

    with pytest.raises(SymlinkAttackDetected):
        files.write(str(link), b"owned")
    assert real.read_bytes() == b"root:x:0:0"


def test_identity_mismatch_refuses_read_without_io(files, tmp_path):
    target = tmp_path / "swapped"
    target.write_bytes(b"content")

    with patch.object(FileIdentity, "of_fd", return_value=FileIdentity(0, 0, 0)), \
            patch("ovas.toolkit.file_access.os.read") as mock_read:
        with pytest.raises(SymlinkAttackDetected):
            files.read(str(target))
    mock_read.assert_not_called()


def test_identity_mismatch_refuses_write_and_keeps_file(files, tmp_path):
    target = tmp_path / "swapped"
    target.write_bytes(b"original")

    with patch.object(FileIdentity, "of_fd", return_value=FileIdentity(0, 0, 0)):
        with pytest.raises(SymlinkAttackDetected):
            files.write(str(target), b"replacement")
    assert target.read_bytes() == b"original"


def test_identity_mismatch_on_missing_path_leaves_nothing(files, tmp_path):
    target = tmp_path / "vanished"
    stale = (FileIdentity(1, 2, 0o100600), 0)

    with patch.object(SecureFileAccessor, "_precheck", return_value=stale):
        with pytest.raises(FileAccessError):
            files.write(str(target), b"data")
    assert not target.exists()


def test_fstat_failure_counts_as_attack(files, tmp_path):
    target = tmp_path / "f"
    target.write_bytes(b"x")

    with patch.object(FileIdentity, "of_fd", side_effect=OSError(errno.EBADF, "Bad file descriptor")):
        with pytest.raises(SymlinkAttackDetected):
            files.read(str(target))


def test_failed_write_removes_partial_file(files, tmp_path):
    target = tmp_path / "big"

    with patch("ovas.toolkit.file_access.os.write",
               side_effect=OSError(errno.ENOSPC, "No space left on device")):
        with pytest.raises(FileAccessError) as excinfo:
            files.write(str(target), b"x" * 10000)

    assert excinfo.value.details["errno"] == errno.ENOSPC
    assert not target.exists()


def test_interrupted_write_is_retried(files, tmp_path):
    target = tmp_path / "retry"
    real_write = os.write
    calls = []

    def flaky(fd, data):
        calls.append(len(data))
        if len(calls) == 1:
            raise InterruptedError()
        return real_write(fd, data)

    with patch("ovas.toolkit.file_access.os.write", side_effect=flaky):
        assert files.write(str(target), b"payload") == 7
    assert target.read_bytes() == b"payload"


def test_stat_reports_size_or_none(files, tmp_path):
    target = tmp_path / "sized"
    target.write_bytes(b"12345")

    assert files.stat(str(target)) == 5
    assert files.stat(str(tmp_path / "nope")) is None


def test_unlink(files, tmp_path):
    target = tmp_path / "gone"
    target.write_bytes(b"x")

    files.unlink(str(target))
    assert not target.exists()
    with pytest.raises(FileAccessError):
        files.unlink(str(target))


def test_get_tmp_dir_has_trailing_separator(files, tmp_path):
    with patch("ovas.toolkit.file_access.tempfile.gettempdir", return_value=str(tmp_path)):
        assert files.get_tmp_dir() == str(tmp_path) + os.sep


def test_get_tmp_dir_unusable(files, tmp_path):
    with patch("ovas.toolkit.file_access.tempfile.gettempdir", return_value=str(tmp_path / "absent")):
        with pytest.raises(FileAccessError):
            files.get_tmp_dir()


def test_identity_of_path_matches_descriptor(tmp_path):
    target = tmp_path / "same"
    target.write_bytes(b"x")
    fd = os.open(str(target), os.O_RDONLY)
    try:
        assert FileIdentity.of_path(str(target)) == FileIdentity.of_fd(fd)
    finally:
        os.close(fd)


def test_errors_are_structured(files, tmp_path):
    with pytest.raises(FileAccessError) as excinfo:
        files.read(str(tmp_path / "missing"))
    record = excinfo.value.to_dict()
    assert record["code"] == "FILE_002"
    assert record["kind"] == "FileAccessError"
    assert record["details"]["errno"] == errno.ENOENT
    assert '"FILE_002"' in excinfo.value.to_json()


def _plant_after_check(path, plant):
    """lstat that reports ``path`` absent, then lets ``plant`` create it."""
    real_lstat = os.lstat

    def lstat(p, *args, **kwargs):
        if os.fspath(p) == path:
            plant()
            raise FileNotFoundError(errno.ENOENT, "No such file or directory", p)
        return real_lstat(p, *args, **kwargs)

    return patch("ovas.toolkit.file_access.os.lstat", side_effect=lstat)


def test_read_refuses_symlink_planted_after_check(files, tmp_path):
    shadow = tmp_path / "shadow"
    shadow.write_bytes(b"root:$6$secret")
    report = str(tmp_path / "report")

    with _plant_after_check(report, lambda: os.symlink(shadow, report)), \
            patch("ovas.toolkit.file_access.os.read") as mock_read:
        with pytest.raises(SymlinkAttackDetected):
            files.read(report)
    mock_read.assert_not_called()


def test_read_refuses_file_planted_after_check(files, tmp_path):
    report = tmp_path / "report"

    with _plant_after_check(str(report), lambda: report.write_bytes(b"planted")):
        with pytest.raises(SymlinkAttackDetected):
            files.read(str(report))


def test_write_refuses_symlink_planted_after_check(files, tmp_path):
    shadow = tmp_path / "shadow"
    shadow.write_bytes(b"root:x:0:0")
    report = str(tmp_path / "report")

    with _plant_after_check(report, lambda: os.symlink(shadow, report)):
        with pytest.raises(FileAccessError):
            files.write(report, b"owned")
    assert shadow.read_bytes() == b"root:x:0:0"


def test_read_fails_when_size_disagrees(files, tmp_path):
    target = tmp_path / "short"
    target.write_bytes(b"12345")
    fd = os.open(str(target), os.O_RDONLY)
    try:
        real = os.fstat(fd)
        grown = MagicMock(st_mode=real.st_mode, st_size=real.st_size + 10)
        with patch("ovas.toolkit.file_access.os.fstat", return_value=grown):
            with pytest.raises(FileAccessError) as excinfo:
                files._read_all(fd, real.st_size, str(target))
    finally:
        os.close(fd)
    assert excinfo.value.details["read"] == 5
    assert excinfo.value.details["size"] == 15
