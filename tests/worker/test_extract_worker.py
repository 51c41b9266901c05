# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Tests for the extraction worker entry point.
"""

import io
import json

from rtcstats.worker.extract import main, run

LOG = (
    '{"path":"/r","origin":"https://meet.example.com","url":"https://meet.example.com/r",'
    '"userAgent":"UA","time":1000,"fileFormat":2}\n'
    '["create","PC_0",{},1001]\n'
    '["create","PC_1",{},1002]\n'
    '["close",null,null,1500]\n'
)


class TestRun:
    """Test a single extraction run."""

    def test_writes_one_line_per_result(self, tmp_path):
        (tmp_path / "s1").write_text(LOG)
        out = io.StringIO()

        assert run("s1", tmp_path, out) == 0

        messages = [json.loads(line) for line in out.getvalue().splitlines()]
        assert [m["connection_id"] for m in messages] == ["PC_0", "PC_1"]
        assert messages[0]["client_features"]["sessionDuration"] == 500

    def test_missing_log_fails(self, tmp_path):
        out = io.StringIO()
        assert run("missing", tmp_path, out) == 1
        assert out.getvalue() == ""

    def test_corrupt_log_fails(self, tmp_path):
        (tmp_path / "bad").write_text("not json at all\n")
        assert run("bad", tmp_path, io.StringIO()) == 1


class TestMain:
    """Test argument and environment handling."""

    def test_uses_work_dir_from_environment(self, tmp_path, monkeypatch, capsys):
        (tmp_path / "s1").write_text(LOG)
        monkeypatch.setenv("RTCSTATS_WORK_DIR", str(tmp_path))

        assert main(["s1"]) == 0

        lines = capsys.readouterr().out.splitlines()
        assert len(lines) == 2
        assert json.loads(lines[0])["session_id"] == "s1"

    def test_usage_error(self, capsys):
        assert main([]) == 1
        assert capsys.readouterr().out == ""
