# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Tests for SessionLog and work directory setup.
"""

import json

import pytest

from rtcstats.capture.session_log import SessionLog, serialize_record, setup_work_directory


class TestSetupWorkDirectory:
    """Test work directory initialization."""

    def test_creates_missing_directory(self, tmp_path):
        """A missing work directory is created, including parents."""
        work_dir = tmp_path / "a" / "temp"
        setup_work_directory(work_dir)
        assert work_dir.is_dir()

    def test_purges_stale_logs(self, tmp_path):
        """Logs from a previous run are removed, not resumed."""
        work_dir = tmp_path / "temp"
        work_dir.mkdir()
        (work_dir / "stale-session").write_text('{"fileFormat":2}\n')

        setup_work_directory(work_dir)

        assert work_dir.is_dir()
        assert list(work_dir.iterdir()) == []


class TestSessionLog:
    """Test the append-only log handle."""

    def test_append_writes_one_line_per_record(self, tmp_path):
        """Records are written as compact JSON lines in order."""
        log = SessionLog.open(tmp_path, "s1")
        assert log.append({"path": "/room", "fileFormat": 2})
        assert log.append(["getstats", "PC_0", {"a": 1}, 10])
        log.close()

        lines = (tmp_path / "s1").read_text().splitlines()
        assert lines == ['{"path":"/room","fileFormat":2}', '["getstats","PC_0",{"a":1},10]']
        assert log.records_written == 2

    def test_appends_reach_disk_by_close(self, tmp_path):
        """Small appends may sit in the buffer until the log is closed."""
        log = SessionLog.open(tmp_path, "s1")
        log.append(["getstats", "PC_0", {}, 10])
        assert (tmp_path / "s1").read_text() in ("", '["getstats","PC_0",{},10]\n')
        log.close()
        assert (tmp_path / "s1").read_text() == '["getstats","PC_0",{},10]\n'

    def test_append_after_close_is_rejected(self, tmp_path):
        """A closed log accepts no further records."""
        log = SessionLog.open(tmp_path, "s2")
        log.append({"fileFormat": 2})
        log.close()

        assert not log.is_open
        assert log.append(["late", None]) is False
        assert (tmp_path / "s2").read_text().count("\n") == 1

    def test_close_twice_is_harmless(self, tmp_path):
        """Closing an already closed log does nothing."""
        log = SessionLog.open(tmp_path, "s3")
        log.close()
        log.close()
        assert (tmp_path / "s3").exists()

    def test_discard_removes_file(self, tmp_path):
        """Discarding deletes the file without writing anything else."""
        log = SessionLog.open(tmp_path, "s4")
        log.append({"fileFormat": 2})
        log.discard()

        assert not (tmp_path / "s4").exists()
        assert log.append(["x", None]) is False
        # Already gone
        log.discard()

    def test_open_refuses_existing_file(self, tmp_path):
        """Session ids are never reused for an existing file."""
        (tmp_path / "dup").write_text("")
        with pytest.raises(FileExistsError):
            SessionLog.open(tmp_path, "dup")

    def test_unserializable_record_raises(self, tmp_path):
        """Non-JSON records are reported to the caller."""
        log = SessionLog.open(tmp_path, "s5")
        with pytest.raises(TypeError):
            log.append({"bad": object()})
        log.close()


def test_serialize_record_is_compact():
    """Serialized records contain no extra whitespace."""
    assert serialize_record(["close", None, None, 5]) == '["close",null,null,5]'
    assert json.loads(serialize_record({"k": [1, 2]})) == {"k": [1, 2]}
