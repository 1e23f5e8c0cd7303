"""
Tests for change detection, per-file diffs and pristine restore.
"""

from __future__ import annotations

import pytest

from gen_provenance.pipeline import FileChangeSummary, compute_file_diff, detect_file_changes, restore_pristine, scan
from gen_provenance.pipeline.changes import unified_diff
from gen_provenance.pipeline.identity import extract_generated_id

from conftest import make_config, make_engine

OUTPUT = {
    "models.py": b"class Pet:\n    name: str\n",
    "client.py": b"def get():\n    pass\n",
    "old.py": b"OLD = True\n",
}


@pytest.fixture
def generated(repo_dir):
    engine, _ = make_engine(make_config(repo_dir), {"sdk": OUTPUT})
    engine.run()
    return engine, repo_dir / "sdk"


class TestFileChangeSummary:
    """Tests for FileChangeSummary formatting."""

    def test_empty(self):
        summary = FileChangeSummary()
        assert summary.is_empty()
        assert summary.format_summary() == ""

    def test_format(self):
        summary = FileChangeSummary(deleted=["gone.py"], moved={"a.py": "b/a.py"}, modified=["m.py"])
        assert summary.format_summary() == "  D gone.py\n  R a.py -> b/a.py\n  M m.py"

    def test_truncated(self):
        summary = FileChangeSummary(modified=[f"f{i}.py" for i in range(5)])
        assert summary.format_summary(max_lines=2) == "  M f0.py\n  M f1.py\n  ... and 3 more"


class TestDetectFileChanges:
    """Tests for detect_file_changes."""

    def test_untouched_tree_has_no_changes(self, generated):
        engine, out = generated
        assert detect_file_changes(engine.healer, "sdk", out, scan(out)).is_empty()

    def test_detects_deleted_moved_and_modified(self, generated):
        engine, out = generated
        (out / "old.py").unlink()
        (out / "pkg").mkdir()
        (out / "client.py").rename(out / "pkg" / "client.py")
        models = out / "models.py"
        models.write_bytes(models.read_bytes() + b"    age: int\n")

        summary = detect_file_changes(engine.healer, "sdk", out, scan(out))

        assert summary.deleted == ["old.py"]
        assert summary.moved == {"client.py": "pkg/client.py"}
        assert summary.modified == ["models.py"]

    def test_target_without_snapshot(self, repo_dir):
        engine, _ = make_engine(make_config(repo_dir), {})
        out = repo_dir / "sdk"
        out.mkdir()
        assert detect_file_changes(engine.healer, "sdk", out, scan(out)).is_empty()


class TestFileDiff:
    """Tests for unified_diff and compute_file_diff."""

    def test_unified_diff_counts_lines(self):
        file_diff = unified_diff(b"a\nb\n", b"a\nB\nc\n", "x.py")
        assert file_diff.added == 2
        assert file_diff.removed == 1
        assert file_diff.diff_text.startswith("--- generated/x.py\n+++ current/x.py\n")
        assert file_diff.has_changes

    def test_line_endings_are_ignored(self):
        assert not unified_diff(b"a\nb\n", b"a\r\nb\r\n", "x.py").has_changes

    def test_binary(self):
        assert unified_diff(b"\x00a", b"\x00b", "x.bin").diff_text == "(binary file)"

    def test_diff_of_edited_file(self, generated):
        engine, out = generated
        models = out / "models.py"
        models.write_bytes(models.read_bytes() + b"    age: int\n")

        file_diff = compute_file_diff(engine.healer, "sdk", out, "models.py", extract_generated_id(models.read_bytes()))

        assert file_diff.added == 1
        assert "+    age: int" in file_diff.diff_text

    def test_diff_follows_moved_file(self, generated):
        engine, out = generated
        (out / "pkg").mkdir()
        moved = out / "pkg" / "client.py"
        (out / "client.py").rename(moved)

        file_diff = compute_file_diff(engine.healer, "sdk", out, "pkg/client.py", extract_generated_id(moved.read_bytes()))

        assert not file_diff.has_changes

    def test_no_base(self, generated):
        engine, out = generated
        (out / "new.py").write_bytes(b"x\n")
        assert compute_file_diff(engine.healer, "sdk", out, "new.py").diff_text == "(no pristine base available)"

    def test_missing_file(self, generated):
        engine, out = generated
        (out / "old.py").unlink()
        assert compute_file_diff(engine.healer, "sdk", out, "old.py").diff_text == "(file not found on disk)"


class TestRestorePristine:
    """Tests for restore_pristine."""

    def test_restores_edited_file(self, generated):
        engine, out = generated
        models = out / "models.py"
        pristine = models.read_bytes()
        models.write_bytes(b"broken\n")

        assert restore_pristine(engine.healer, "sdk", out, "models.py")
        assert models.read_bytes() == pristine

    def test_restores_deleted_file(self, generated):
        engine, out = generated
        (out / "old.py").unlink()
        assert restore_pristine(engine.healer, "sdk", out, "old.py")
        assert (out / "old.py").read_bytes().endswith(OUTPUT["old.py"])

    def test_unknown_file(self, generated):
        engine, out = generated
        assert not restore_pristine(engine.healer, "sdk", out, "unknown.py")
        assert not (out / "unknown.py").exists()
