#!/usr/bin/env python3

import os

import pytest

from gen_provenance.errors import ScanError
from gen_provenance.pipeline.identity import Scanner, scan, scan_targets

ID_A = "11111111-1111-4111-8111-111111111111"
ID_B = "22222222-2222-4222-8222-222222222222"
ID_C = "33333333-3333-4333-8333-333333333333"


def write(path, content):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)


def marked(generated_id, body=b"x = 1\n"):
    return f"# @generated-id: {generated_id}\n".encode() + body


class TestScanner:
    """Test cases for the identity scanner"""

    def test_indexes_marked_files_with_posix_paths(self, tmp_path):
        write(tmp_path / "a.py", marked(ID_A))
        write(tmp_path / "pkg" / "sub" / "b.py", marked(ID_B))
        write(tmp_path / "plain.py", b"x = 1\n")

        result = scan(tmp_path)

        assert result.uuid_to_path == {ID_A: "a.py", ID_B: "pkg/sub/b.py"}
        assert result.path_to_uuid == {"a.py": ID_A, "pkg/sub/b.py": ID_B}
        assert result.collisions == {}

    @pytest.mark.parametrize("skipped", [".git", "node_modules", "vendor", ".venv", "__pycache__"])
    def test_skips_tool_directories(self, tmp_path, skipped):
        write(tmp_path / skipped / "x.py", marked(ID_A))
        assert scan(tmp_path).uuid_to_path == {}

    def test_skips_binary_files(self, tmp_path):
        write(tmp_path / "blob.py", marked(ID_A, b"\x00\x01\x02"))
        assert scan(tmp_path).uuid_to_path == {}

    def test_reports_collisions(self, tmp_path):
        write(tmp_path / "b.py", marked(ID_A))
        write(tmp_path / "a.py", marked(ID_A))
        write(tmp_path / "c.py", marked(ID_B))

        result = scan(tmp_path)

        assert result.collisions == {ID_A: ["a.py", "b.py"]}
        assert result.uuid_to_path[ID_A] == "a.py"
        assert result.path_to_uuid["b.py"] == ID_A

    def test_missing_root_is_fatal(self, tmp_path):
        with pytest.raises(ScanError):
            scan(tmp_path / "missing")

    def test_file_root_is_fatal(self, tmp_path):
        write(tmp_path / "file.py", b"")
        with pytest.raises(ScanError):
            scan(tmp_path / "file.py")

    @pytest.mark.skipif(os.name != "posix" or os.geteuid() == 0, reason="needs POSIX permissions as non-root")
    def test_unreadable_file_is_skipped(self, tmp_path, caplog):
        write(tmp_path / "ok.py", marked(ID_A))
        locked = tmp_path / "locked.py"
        write(locked, marked(ID_B))
        locked.chmod(0)
        try:
            result = scan(tmp_path)
        finally:
            locked.chmod(0o644)
        assert result.uuid_to_path == {ID_A: "ok.py"}
        assert "locked.py" in caplog.text

    def test_skips_symlinks(self, tmp_path):
        write(tmp_path / "real.py", marked(ID_A))
        (tmp_path / "link.py").symlink_to(tmp_path / "real.py")
        assert scan(tmp_path).path_to_uuid == {"real.py": ID_A}

    def test_exclude_skips_nested_directory(self, tmp_path):
        write(tmp_path / "a.py", marked(ID_A))
        write(tmp_path / "inner" / "b.py", marked(ID_B))
        result = Scanner(tmp_path, exclude=[tmp_path / "inner"]).scan()
        assert result.uuid_to_path == {ID_A: "a.py"}


class TestScanTargets:
    """Test cases for multi-target scanning"""

    def test_nested_root_belongs_to_deepest_target(self, tmp_path):
        write(tmp_path / "outer.py", marked(ID_A))
        write(tmp_path / "nested" / "inner.py", marked(ID_B))

        result = scan_targets({"outer": tmp_path, "inner": tmp_path / "nested"})

        assert result.per_target["outer"].uuid_to_path == {ID_A: "outer.py"}
        assert result.per_target["inner"].uuid_to_path == {ID_B: "inner.py"}
        assert result.cross_target_collisions == {}

    def test_reports_cross_target_collisions(self, tmp_path):
        write(tmp_path / "a" / "x.py", marked(ID_A))
        write(tmp_path / "b" / "y.py", marked(ID_A))
        write(tmp_path / "b" / "z.py", marked(ID_C))

        result = scan_targets({"a": tmp_path / "a", "b": tmp_path / "b"})

        assert result.cross_target_collisions == {ID_A: ["a", "b"]}
        assert result.per_target["b"].collisions == {}
