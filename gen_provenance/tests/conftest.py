"""
Shared fixtures: throwaway git repositories, bare remotes and clones built
with the real git executable.
"""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import pytest

from gen_provenance.pipeline import GenerationEngine, ProvenanceConfig, RemoteConfig, StaticGenerator, TargetConfig
from gen_provenance.pipeline.store import GitRepository

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git executable not available")


def run_git(args: list[str], cwd: Path) -> str:
    """Run git in cwd and return stdout."""
    completed = subprocess.run(["git", *args], cwd=str(cwd), text=True, capture_output=True, check=True)
    return completed.stdout


def init_repo(path: Path) -> Path:
    """Create a repository with one commit on main."""
    path.mkdir(parents=True, exist_ok=True)
    run_git(["init", "-q", "--initial-branch=main"], path)
    run_git(["config", "user.name", "Test User"], path)
    run_git(["config", "user.email", "test@example.com"], path)
    run_git(["config", "commit.gpgsign", "false"], path)
    (path / "README.md").write_text("test repository\n")
    run_git(["add", "README.md"], path)
    run_git(["commit", "-q", "-m", "initial"], path)
    return path


def git_version() -> tuple[int, ...]:
    """Version of the git executable, e.g. (2, 44, 0)."""
    out = run_git(["--version"], Path.cwd()).split()[2]
    return tuple(int(part) for part in out.split(".")[:3] if part.isdigit())


def missing_objects(path: Path, rev: str) -> list[str]:
    """Ids of objects reachable from rev that a partial clone lacks."""
    out = run_git(["rev-list", "--objects", "--missing=print", rev], path)
    return [line[1:] for line in out.splitlines() if line.startswith("?")]


def commit_all(path: Path, message: str = "update") -> None:
    run_git(["add", "-A"], path)
    run_git(["commit", "-q", "--allow-empty", "-m", message], path)


def make_config(repo_root: Path, target_ids: list[str] | tuple[str, ...] = ("sdk",), **kwargs) -> ProvenanceConfig:
    """Config with one target per id, each writing to a directory of the same name."""
    remote = kwargs.pop("remote", RemoteConfig(fetch=False, publish=False))
    return ProvenanceConfig(
        repo_root=str(repo_root),
        targets=[TargetConfig(id=t, output_dir=t) for t in target_ids],
        remote=remote,
        **kwargs,
    )


def make_engine(config: ProvenanceConfig, outputs: dict[str, dict[str, bytes]]) -> tuple[GenerationEngine, StaticGenerator]:
    generator = StaticGenerator(outputs)
    engine = GenerationEngine(config, generator, repo=GitRepository(config.repo_root))
    return engine, generator


@pytest.fixture(autouse=True)
def isolated_git_config(tmp_path_factory, monkeypatch):
    """Keep the user's global git configuration out of the tests."""
    home = tmp_path_factory.mktemp("home")
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(home / ".gitconfig"))
    monkeypatch.delenv("GIT_DIR", raising=False)
    monkeypatch.delenv("GIT_WORK_TREE", raising=False)


@pytest.fixture
def repo_dir(tmp_path) -> Path:
    """A fresh repository with one commit."""
    if shutil.which("git") is None:
        pytest.skip("git executable not available")
    return init_repo(tmp_path / "work")


@pytest.fixture
def git_repo(repo_dir) -> GitRepository:
    return GitRepository(repo_dir)


@pytest.fixture
def remote_dir(tmp_path, repo_dir) -> Path:
    """A bare repository registered as origin of repo_dir, with main pushed."""
    remote = tmp_path / "remote.git"
    run_git(["init", "-q", "--bare", "--initial-branch=main", str(remote)], tmp_path)
    run_git(["remote", "add", "origin", str(remote)], repo_dir)
    run_git(["push", "-q", "origin", "main"], repo_dir)
    return remote


@pytest.fixture
def clone_of(tmp_path):
    """Factory cloning a remote into a new directory with a test identity.

    A partial clone skips every blob not needed for the checkout.
    """

    def _clone(remote: Path, name: str = "clone", partial: bool = False) -> Path:
        dest = tmp_path / name
        if partial:
            run_git(["config", "uploadpack.allowFilter", "true"], remote)
            run_git(["config", "uploadpack.allowAnySHA1InWant", "true"], remote)
            run_git(["clone", "-q", "--filter=blob:none", remote.as_uri(), str(dest)], tmp_path)
        else:
            run_git(["clone", "-q", str(remote), str(dest)], tmp_path)
        run_git(["config", "user.name", "Other User"], dest)
        run_git(["config", "user.email", "other@example.com"], dest)
        run_git(["config", "commit.gpgsign", "false"], dest)
        return dest

    return _clone
