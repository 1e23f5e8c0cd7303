#!/usr/bin/env python3

import subprocess
import threading

import pytest

from gen_provenance.errors import GitCancelledError, GitError, GitTimeoutError, NetworkError
from gen_provenance.pipeline.store import GitRepository, Identity, TreeEntry
from gen_provenance.pipeline.store.git import MODE_EXECUTABLE, MODE_FILE, MODE_TREE

from conftest import run_git


def test_run_includes_stderr_details_on_failure(monkeypatch, tmp_path):
    class FakePopen:
        returncode = 128

        def __init__(self, *args, **kwargs):
            pass

        def communicate(self, input=None, timeout=None):
            return b"", b"fatal: not a git repository"

    monkeypatch.setattr("gen_provenance.pipeline.store.git.subprocess.Popen", FakePopen)

    with pytest.raises(GitError) as exc_info:
        GitRepository(tmp_path).run(["status"])
    assert "git status" in str(exc_info.value)
    assert exc_info.value.stderr == "fatal: not a git repository"
    assert exc_info.value.returncode == 128


def test_run_times_out(monkeypatch, tmp_path):
    killed = []

    class SlowPopen:
        returncode = None
        pid = 1

        def __init__(self, *args, **kwargs):
            pass

        def communicate(self, input=None, timeout=None):
            if killed:
                return b"", b""
            raise subprocess.TimeoutExpired("git", timeout)

        def kill(self):
            killed.append(True)

    monkeypatch.setattr("gen_provenance.pipeline.store.git.subprocess.Popen", SlowPopen)

    with pytest.raises(GitTimeoutError):
        GitRepository(tmp_path).run(["fetch"], timeout=0.05)
    assert killed


def test_run_honors_cancel(monkeypatch, tmp_path):
    class SlowPopen:
        returncode = None
        pid = 1

        def __init__(self, *args, **kwargs):
            pass

        def communicate(self, input=None, timeout=None):
            raise subprocess.TimeoutExpired("git", timeout)

        def kill(self):
            pass

    monkeypatch.setattr("gen_provenance.pipeline.store.git.subprocess.Popen", SlowPopen)
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(GitCancelledError):
        GitRepository(tmp_path).run(["fetch"], timeout=10, cancel=cancel)


class TestGitRepository:
    """Test cases against a real repository"""

    def test_discover_finds_top_level(self, repo_dir):
        (repo_dir / "sub").mkdir()
        repo = GitRepository.discover(repo_dir / "sub")
        assert repo.root.resolve() == repo_dir.resolve()

    def test_discover_outside_repository(self, tmp_path):
        outside = tmp_path / "plain"
        outside.mkdir()
        with pytest.raises(GitError):
            GitRepository.discover(outside)

    def test_blob_round_trip(self, git_repo):
        sha = git_repo.write_blob(b"hello\x00world")
        assert git_repo.has_object(sha)
        assert git_repo.read_blob(sha) == b"hello\x00world"
        assert git_repo.write_blob(b"hello\x00world") == sha

    def test_read_blobs_reports_missing(self, git_repo):
        present = git_repo.write_blob(b"x\n")
        missing = "0123456789abcdef0123456789abcdef01234567"
        blobs = git_repo.read_blobs([present, missing])
        assert blobs == {present: b"x\n", missing: None}

    def test_tree_commit_and_refs(self, git_repo):
        blob = git_repo.write_blob(b"echo hi\n")
        sub = git_repo.write_tree([TreeEntry("run.sh", MODE_EXECUTABLE, blob)])
        root = git_repo.write_tree([TreeEntry("a.txt", MODE_FILE, blob), TreeEntry("bin", MODE_TREE, sub)])

        files = {f.path: f for f in git_repo.ls_tree(root)}
        assert set(files) == {"a.txt", "bin/run.sh"}
        assert files["bin/run.sh"].mode == MODE_EXECUTABLE

        commit = git_repo.commit_tree(root, None, "first\n", Identity("Gen", "gen@example.com"))
        git_repo.update_ref("refs/test/x", commit, None, "create")
        assert git_repo.resolve_commit("refs/test/x") == commit
        assert git_repo.list_refs("refs/test/") == {"refs/test/x": commit}
        assert "Gen <gen@example.com>" in run_git(["log", "-1", "--format=%an <%ae>", commit], git_repo.root)

        second = git_repo.commit_tree(root, commit, "second\n", Identity("Gen", "gen@example.com"))
        assert git_repo.is_ancestor(commit, second)
        assert not git_repo.is_ancestor(second, commit)

    def test_update_ref_compare_and_swap(self, git_repo):
        tree = git_repo.write_tree([])
        first = git_repo.commit_tree(tree, None, "a\n", Identity("G", "g@x"))
        second = git_repo.commit_tree(tree, first, "b\n", Identity("G", "g@x"))
        git_repo.update_ref("refs/test/cas", first, None, "create")

        with pytest.raises(GitError):
            git_repo.update_ref("refs/test/cas", second, None, "must not exist")
        with pytest.raises(GitError):
            git_repo.update_ref("refs/test/cas", second, second, "wrong old value")
        git_repo.update_ref("refs/test/cas", second, first, "advance")
        assert git_repo.resolve_commit("refs/test/cas") == second

    def test_resolve_missing_ref(self, git_repo):
        assert git_repo.resolve_commit("refs/test/none") is None

    def test_check_ref_format(self, git_repo):
        assert git_repo.check_ref_format("refs/speakeasy/gen/python-sdk")
        assert not git_repo.check_ref_format("refs/speakeasy/gen/bad..name")

    def test_network_calls_without_remote(self, git_repo):
        with pytest.raises(NetworkError):
            git_repo.fetch_ref("origin", "refs/x:refs/x", timeout=5)
        with pytest.raises(NetworkError):
            git_repo.fetch_objects("origin", ["a" * 40], timeout=5)
        git_repo.fetch_objects("origin", [], timeout=5)
        assert git_repo.remote_url("origin") is None

    def test_set_conflict_state(self, git_repo, repo_dir):
        (repo_dir / "f.txt").write_text("merged\n")
        git_repo.set_conflict_state("f.txt", b"base\n", b"ours\n", b"theirs\n")
        stages = run_git(["ls-files", "-u", "--", "f.txt"], repo_dir).splitlines()
        assert sorted(line.split()[2] for line in stages) == ["1", "2", "3"]
